"""
Unit tests for token estimation.

Tests the precise and quick estimators, guards and adjustments.
"""

import pytest

from ai_footprint.core.token_counter import (
    EstimationMode,
    TokenUsage,
    estimate,
    estimate_tokens,
    estimate_tokens_quick,
)


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150


class TestPreciseEstimate:
    """Test the estimator used for finished turns."""

    def test_sentence_uses_larger_approximation(self):
        """9 words / 43 chars: word-based 12 beats char-based 11."""
        assert estimate_tokens("The quick brown fox jumps over the lazy dog") == 12

    def test_char_based_wins_for_long_words(self):
        """A single 40-char word is estimated by characters."""
        assert estimate_tokens("a" * 40) == 10

    @pytest.mark.parametrize("text", ["", "  ", "\n\t  \n"])
    def test_blank_text_is_zero(self, text):
        """Empty and whitespace-only input yields 0."""
        assert estimate_tokens(text) == 0

    @pytest.mark.parametrize("value", [None, 42, ["hi"], b"bytes"])
    def test_non_string_is_zero(self, value):
        """Non-string input yields 0 instead of raising."""
        assert estimate_tokens(value) == 0

    def test_short_text_has_minimum_of_one(self):
        """Any non-blank text counts as at least one token."""
        assert estimate_tokens("hi") >= 1
        assert estimate_tokens("a") == 2

    def test_surrounding_whitespace_is_ignored(self):
        """Leading and trailing whitespace do not change the estimate."""
        assert estimate_tokens("   hello world   ") == estimate_tokens("hello world")

    def test_code_block_adds_flat_tokens(self):
        """Fenced code adds 10 tokens."""
        # 14 chars -> 4, 1 word -> 2, max 4, +10
        assert estimate_tokens("```print(1)```") == 14

    def test_url_adds_flat_tokens(self):
        """URL-like text adds 5 tokens."""
        # 15 chars -> 4, 2 words -> 3, max 4, +5
        assert estimate_tokens("see http://x.io") == 9

    def test_non_ascii_multiplies(self):
        """Non-ASCII text is scaled by 1.2 and floored."""
        # 3 words -> 4, 12 chars -> 3, max 4, * 1.2 = 4.8
        assert estimate_tokens("café au lait") == 4

    def test_adjustments_apply_in_order(self):
        """Flat additions happen before the non-ASCII multiplier."""
        # base 4, +10, +5 = 19, * 1.2 = 22.8
        assert estimate_tokens("```x``` http é") == 22

    def test_deterministic(self):
        """Same text always gives the same estimate."""
        text = "Explain ```code``` at https://example.com, naïvely"
        assert estimate_tokens(text) == estimate_tokens(text)


class TestQuickEstimate:
    """Test the word-count estimator used for drafts."""

    def test_word_count_only(self):
        """Quick estimate is ceil(words * 1.3)."""
        assert estimate_tokens_quick("The quick brown fox jumps over the lazy dog") == 12

    def test_ignores_adjustments(self):
        """Code, URL and non-ASCII adjustments are not applied."""
        assert estimate_tokens_quick("```x``` http é") == 4

    def test_ignores_character_length(self):
        """Long single words still count as one word."""
        assert estimate_tokens_quick("a" * 40) == 2

    @pytest.mark.parametrize("value", ["", "   ", None, 7])
    def test_guard(self, value):
        """Blank or non-string input yields 0."""
        assert estimate_tokens_quick(value) == 0


class TestEstimateDispatch:
    """Test mode selection."""

    def test_default_is_precise(self):
        assert estimate("a" * 40) == 10

    def test_quick_mode(self):
        assert estimate("a" * 40, EstimationMode.QUICK) == 2
