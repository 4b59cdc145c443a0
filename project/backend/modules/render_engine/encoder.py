"""
ffmpeg / ffprobe invocation.

Processes are started from argument lists (no shell), with stdout and
stderr merged and a hard timeout. A run only counts as successful when the
exit code is zero, the output carries none of the known failure messages,
and the expected output file exists and is non-empty.
"""

import asyncio
import os
from typing import List, Optional

from shared.config import settings
from shared.errors import EncodeError, StageTimeoutError
from shared.logging import get_logger
from modules.render_engine.paths import to_forward_slashes

logger = get_logger("render_engine.encoder")

FAILURE_INDICATORS = (
    "Error initializing filter",
    "Error opening",
    "No such file or directory",
    "Invalid argument",
    "Unable to open",
    "Conversion failed!",
    "Error while filtering",
    "Permission denied",
    "Invalid data found when processing input",
)

_OUTPUT_TAIL = 2000


def find_failure_indicator(output: str) -> Optional[str]:
    for indicator in FAILURE_INDICATORS:
        if indicator in output:
            return indicator
    return None


async def run_process(binary: str, args: List[str], timeout: float) -> tuple:
    """
    Run a process to completion.

    Returns:
        (return code, combined output)

    Raises:
        StageTimeoutError: If the process outlives ``timeout``; it is killed
        EncodeError: If the binary cannot be started
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT
        )
    except OSError as e:
        raise EncodeError(f"Could not start {binary}: {str(e)}", code="ENCODER_UNAVAILABLE") from e

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise StageTimeoutError(f"{binary} exceeded {timeout:.0f}s", code="ENCODER_TIMEOUT")

    return proc.returncode, (stdout or b"").decode("utf-8", errors="replace")


async def run_ffmpeg(args: List[str], output_path: str, timeout: Optional[float] = None) -> str:
    """
    Run ffmpeg and verify it produced ``output_path``.

    Args:
        args: Arguments after the binary name
        output_path: File ffmpeg is expected to write
        timeout: Seconds before the process is killed (default ``settings.encoder_timeout``)

    Returns:
        Combined ffmpeg output

    Raises:
        EncodeError: On any failure signal
        StageTimeoutError: On timeout
    """
    timeout = timeout or settings.encoder_timeout
    logger.debug("Running ffmpeg", extra={"args": args})
    returncode, output = await run_process(settings.ffmpeg_binary, args, timeout)
    tail = output[-_OUTPUT_TAIL:]

    if returncode != 0:
        raise EncodeError(f"ffmpeg exited with code {returncode}", output=tail)

    indicator = find_failure_indicator(output)
    if indicator:
        raise EncodeError(f"ffmpeg reported: {indicator}", output=tail)

    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise EncodeError(f"ffmpeg produced no output at {output_path}", output=tail)

    return output


def build_encode_args(
    manifest_path: str,
    audio_path: str,
    filter_graph: str,
    output_path: str,
    fps: int
) -> List[str]:
    """Arguments for the final encode: concat images + narration + filter chain."""
    return [
        "-y",
        "-hide_banner",
        "-f", "concat",
        "-safe", "0",
        "-i", to_forward_slashes(manifest_path),
        "-i", to_forward_slashes(audio_path),
        "-vf", filter_graph,
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-r", str(fps),
        "-c:v", "libx264",
        "-profile:v", "high",
        "-preset", "medium",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "192k",
        "-shortest",
        "-movflags", "+faststart",
        to_forward_slashes(output_path),
    ]


async def convert_vtt_to_srt(vtt_path: str, srt_path: str) -> None:
    """Convert WebVTT captions to SubRip for the subtitles filter."""
    await run_ffmpeg(
        ["-y", "-hide_banner", "-i", to_forward_slashes(vtt_path), to_forward_slashes(srt_path)],
        srt_path,
        timeout=60
    )


async def media_duration(path: str) -> Optional[float]:
    """Container duration in seconds, or None if ffprobe cannot tell."""
    try:
        returncode, output = await run_process(
            settings.ffprobe_binary,
            ["-v", "quiet", "-show_entries", "format=duration", "-of", "csv=p=0", to_forward_slashes(path)],
            timeout=30
        )
    except EncodeError as e:
        logger.warning(f"ffprobe failed: {e.message}")
        return None

    if returncode != 0:
        return None
    try:
        return float(output.strip().splitlines()[0])
    except (IndexError, ValueError):
        return None
