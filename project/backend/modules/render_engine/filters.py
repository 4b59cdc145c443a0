"""
Filter graph construction.

The video filter chain is a list of discrete stages rendered in a fixed
order, never assembled by string concatenation at the call site.
"""

from typing import List, Optional

from pydantic import BaseModel

from modules.render_engine.paths import normalize

SUBTITLE_STYLE = (
    "FontSize=20,Outline=1,Shadow=0,BorderStyle=1,BackColour=&H00000000,"
    "PrimaryColour=&H00FFFFFF,Alignment=2,MarginV=80,MarginL=20,MarginR=20,WrapStyle=2"
)

# Frames in one full zoom-in/zoom-out cycle, in seconds of output
ZOOM_CYCLE_SECONDS = 12


class FilterStage(BaseModel):
    """One ``name=args`` filter."""

    name: str
    args: Optional[str] = None

    def render(self) -> str:
        return f"{self.name}={self.args}" if self.args else self.name


class FilterGraph(BaseModel):
    """Ordered chain of stages joined with commas."""

    stages: List[FilterStage] = []

    def add(self, name: str, args: Optional[str] = None) -> "FilterGraph":
        self.stages.append(FilterStage(name=name, args=args))
        return self

    def names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def build(self) -> str:
        return ",".join(stage.render() for stage in self.stages)


def zoom_expression(max_zoom: float, fps: int) -> str:
    """Slow zoom oscillating between 1.0 and ``max_zoom``; never exceeds the bound."""
    period = max(int(ZOOM_CYCLE_SECONDS * fps), 1)
    amplitude = max_zoom - 1.0
    return f"1+{amplitude:.4f}*(0.5-0.5*cos(2*PI*on/{period}))"


def build_video_filters(
    width: int,
    height: int,
    fps: int,
    max_zoom: float,
    subtitles_path: Optional[str] = None
) -> FilterGraph:
    """
    Build the scene filter chain.

    Order: scale (aspect fit), pad (letterbox), fps, zoompan, eq, vignette,
    then the subtitle overlay when ``subtitles_path`` is given.

    Args:
        width: Output width in pixels
        height: Output height in pixels
        fps: Output frame rate
        max_zoom: Upper bound of the Ken Burns zoom
        subtitles_path: Captions file to burn in, or None

    Returns:
        FilterGraph ready to ``build()``
    """
    graph = FilterGraph()
    graph.add("scale", f"{width}:{height}:force_original_aspect_ratio=decrease")
    graph.add("pad", f"{width}:{height}:(ow-iw)/2:(oh-ih)/2:black")
    # zoompan emits one frame per input frame, so the stills are resampled first
    graph.add("fps", str(fps))
    graph.add(
        "zoompan",
        f"z='{zoom_expression(max_zoom, fps)}':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
        f":d=1:s={width}x{height}:fps={fps}"
    )
    graph.add("eq", "contrast=1.08:saturation=1.03:brightness=0.01")
    graph.add("vignette", "PI/4")
    if subtitles_path:
        graph.add("subtitles", f"'{normalize(subtitles_path)}':force_style='{SUBTITLE_STYLE}'")
    return graph
