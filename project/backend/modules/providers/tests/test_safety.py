"""
Tests for prompt softening and policy message detection.
"""

import pytest

from modules.providers.safety import SAFE_PREFIX, is_content_policy_message, soften_prompt


class TestSoftenPrompt:
    """Test deterministic prompt softening."""

    def test_prefix_and_sensitive_words_removed(self):
        softened = soften_prompt("A  bloody knife on a dark   table")

        assert softened == SAFE_PREFIX + "A on a table"

    def test_idempotent(self):
        once = soften_prompt("Explicit violence in a sinister alley")
        assert soften_prompt(once) == once

    @pytest.mark.parametrize("prompt", ["", "gore blood", "   "])
    def test_empty_result_gets_neutral_subject(self, prompt):
        softened = soften_prompt(prompt)

        assert softened.startswith(SAFE_PREFIX)
        assert len(softened) > len(SAFE_PREFIX)
        assert soften_prompt(softened) == softened

    def test_matching_is_case_insensitive_whole_word(self):
        softened = soften_prompt("GUN shop next to the Gunnison river")

        assert "GUN " not in softened
        assert "Gunnison" in softened

    def test_harmless_prompt_only_gains_prefix(self):
        assert soften_prompt("A fox at sunrise") == SAFE_PREFIX + "A fox at sunrise"


class TestContentPolicyMessage:
    """Test classification of provider error text."""

    @pytest.mark.parametrize("message", [
        "Error code: 400 - {'error': {'code': 'content_policy_violation'}}",
        "Your request was rejected as a result of our safety system.",
        "This request has been blocked by our content filters.",
        "Prompt VIOLATES OUR CONTENT POLICY",
    ])
    def test_policy_messages(self, message):
        assert is_content_policy_message(message)

    @pytest.mark.parametrize("message", ["Rate limit exceeded", "", None, "timeout"])
    def test_other_messages(self, message):
        assert not is_content_policy_message(message)
