"""
Provider Gateway Module.

Speech, image and caption generation behind ordered fallback chains.
"""

from modules.providers.base import ProviderResult, VoiceParams
from modules.providers.gateway import ProviderGateway
from modules.providers.safety import SAFE_PREFIX, is_content_policy_message, soften_prompt

__all__ = [
    "ProviderGateway",
    "ProviderResult",
    "VoiceParams",
    "SAFE_PREFIX",
    "is_content_policy_message",
    "soften_prompt",
]
