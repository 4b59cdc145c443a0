"""
Caption builder.

Deterministic captions from narration text: no external call, so there is
no fallback chain.

Timing is proportional to character count. Cue boundaries come from the
cumulative character share, so cues tile ``[0, total_duration]`` exactly.
Known limitation: punctuation pauses and speaking-rate variance are ignored.
"""

import re
from typing import List

from shared.models.pipeline import CaptionCue

MAX_LINE_CHARS = 42
MAX_LINES = 2
WORDS_PER_MINUTE = 150
MIN_ESTIMATED_DURATION = 5.0

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> List[str]:
    """Split narration on sentence-ending punctuation."""
    normalized = re.sub(r"\s+", " ", text or "").strip()
    if not normalized:
        return []
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(normalized) if s.strip()]


def estimate_duration(text: str) -> float:
    """Narration length at 150 words per minute, never below 5 seconds."""
    words = len((text or "").split())
    return max(MIN_ESTIMATED_DURATION, words / WORDS_PER_MINUTE * 60)


def wrap_lines(text: str, max_chars: int = MAX_LINE_CHARS) -> List[str]:
    """Greedy word wrap. A single word longer than ``max_chars`` gets its own line."""
    lines: List[str] = []
    line: List[str] = []
    for word in text.split():
        candidate = " ".join(line + [word])
        if len(candidate) > max_chars and line:
            lines.append(" ".join(line))
            line = [word]
        else:
            line.append(word)
    if line:
        lines.append(" ".join(line))
    return lines


def wrap_cue_text(text: str, max_chars: int = MAX_LINE_CHARS) -> List[str]:
    """
    Lay out one cue on at most two lines.

    Text that fits in two ``max_chars`` lines is word-wrapped. Longer text is
    balanced into two halves split at the word boundary nearest the middle,
    so those lines may run past ``max_chars``.
    """
    lines = wrap_lines(text, max_chars)
    if len(lines) <= MAX_LINES:
        return lines

    joined = " ".join(lines)
    mid = len(joined) // 2
    spaces = [i for i, char in enumerate(joined) if char == " "]
    split_at = min(spaces, key=lambda i: abs(i - mid))
    return [joined[:split_at].strip(), joined[split_at:].strip()]


def build_captions(text: str, total_duration: float) -> List[CaptionCue]:
    """
    Build one caption cue per sentence, spanning ``[0, total_duration]``.

    Args:
        text: Narration text
        total_duration: Narration length in seconds

    Returns:
        Ordered cues with no gaps or overlaps
    """
    total = max(float(total_duration), 0.0)
    texts = split_sentences(text)
    if not texts:
        return [CaptionCue(index=1, start=0.0, end=total, text=(text or "").strip() or " ")]

    total_chars = sum(len(t) for t in texts)
    cues = []
    consumed = 0
    start = 0.0
    for i, cue_text in enumerate(texts):
        consumed += len(cue_text)
        end = total if i == len(texts) - 1 else total * consumed / total_chars
        cues.append(CaptionCue(index=i + 1, start=start, end=end, text=cue_text))
        start = end
    return cues


def format_timestamp(seconds: float) -> str:
    """SubRip ``hh:mm:ss,mmm``."""
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def to_srt(cues: List[CaptionCue]) -> str:
    """Render cues as SubRip text."""
    blocks = []
    for cue in cues:
        body = "\n".join(wrap_cue_text(cue.text)) or " "
        blocks.append(
            f"{cue.index}\n{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n{body}\n"
        )
    return "\n".join(blocks)
