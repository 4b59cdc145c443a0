"""
Asset Orchestrator Module.

Idempotent generation of narration audio, captions and per-scene images.
"""

from modules.asset_orchestrator.orchestrator import AssetOrchestrator, measure_audio_duration

__all__ = [
    "AssetOrchestrator",
    "measure_audio_duration",
]
