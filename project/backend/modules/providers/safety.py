"""
Prompt safety helpers.

Deterministic prompt softening used after a content-policy rejection, and
classification of raw provider error text.
"""

import re

SAFE_PREFIX = "A wholesome, family-friendly, safe-for-work scene: "

_SENSITIVE_PATTERNS = [
    re.compile(r"\b(nude|nudity|nsfw|explicit|sex|sexy|lingerie|underwear)\b", re.IGNORECASE),
    re.compile(r"\b(gore|blood|bloody|violent|violence|weapon|gun|knife|shoot|kill|dead|corpse)\b", re.IGNORECASE),
    re.compile(r"\b(child|kid|minor|underage)\b", re.IGNORECASE),
    re.compile(r"\b(dark|sinister|erotic|fetish|obscene)\b", re.IGNORECASE),
]

_POLICY_MARKERS = (
    "content_policy_violation",
    "blocked by our content filters",
    "inappropriate content",
    "violates our content policy",
    "safety system",
)

# Used when softening strips a prompt down to nothing
_NEUTRAL_SUBJECT = "a calm everyday moment in soft daylight"


def soften_prompt(prompt: str) -> str:
    """
    Rewrite an image prompt to avoid content-policy rejections.

    Removes a fixed set of sensitive words, collapses whitespace and
    prepends a neutral framing phrase. Applying it twice gives the same
    result as applying it once.

    Args:
        prompt: Original image prompt

    Returns:
        Softened prompt
    """
    text = prompt or ""
    if text.startswith(SAFE_PREFIX):
        text = text[len(SAFE_PREFIX):]

    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub("", text)
    text = re.sub(r"\s+", " ", text).strip()

    return SAFE_PREFIX + (text or _NEUTRAL_SUBJECT)


def is_content_policy_message(text: str) -> bool:
    """True if a provider error message reports a content-policy block."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _POLICY_MARKERS)
