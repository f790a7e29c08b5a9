"""
Token estimation for observed conversation text.

Approximates token counts from rendered text without a tokenizer.
"""

import math
from dataclasses import dataclass
from enum import Enum


WORD_TOKEN_RATIO = 1.3  # ~1.3 tokens per word
CHARS_PER_TOKEN = 4  # ~4 characters per token

CODE_BLOCK_MARKER = "```"
CODE_BLOCK_TOKENS = 10
URL_MARKER = "http"
URL_TOKENS = 5
NON_ASCII_MULTIPLIER = 1.2


class EstimationMode(Enum):
    """Which estimator to use for a piece of text."""
    PRECISE = "precise"  # Finished turns
    QUICK = "quick"      # In-flight drafts


@dataclass(frozen=True)
class TokenUsage:
    """Provider-reported token usage for a single completion.

    Exact counts taken from an API response, no estimation involved.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def _word_count(text: str) -> int:
    return len(text.split())


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a finished turn.

    Takes the larger of a word-based and a character-based approximation so
    that impact is overcounted rather than undercounted, then adjusts for
    content that tokenizes poorly.

    Args:
        text: Observed text, may contain whitespace runs, code fences,
            URLs or non-ASCII script

    Returns:
        0 for empty, whitespace-only or non-string input, otherwise >= 1
    """
    if not isinstance(text, str):
        return 0

    trimmed = text.strip()
    if not trimmed:
        return 0

    word_based = math.ceil(_word_count(trimmed) * WORD_TOKEN_RATIO)
    char_based = math.ceil(len(trimmed) / CHARS_PER_TOKEN)
    tokens = max(word_based, char_based)

    # Adjustments apply in this order
    if CODE_BLOCK_MARKER in trimmed:
        tokens += CODE_BLOCK_TOKENS
    if URL_MARKER in trimmed:
        tokens += URL_TOKENS
    if any(ord(char) > 127 for char in trimmed):
        tokens *= NON_ASCII_MULTIPLIER

    return max(math.floor(tokens), 1)


def estimate_tokens_quick(text: str) -> int:
    """Word-count-only estimate for drafts that have not been sent yet.

    Args:
        text: Draft text

    Returns:
        0 for empty, whitespace-only or non-string input
    """
    if not isinstance(text, str):
        return 0

    trimmed = text.strip()
    if not trimmed:
        return 0

    return math.ceil(_word_count(trimmed) * WORD_TOKEN_RATIO)


def estimate(text: str, mode: EstimationMode = EstimationMode.PRECISE) -> int:
    """Estimate tokens with the requested estimator."""
    if mode == EstimationMode.QUICK:
        return estimate_tokens_quick(text)
    return estimate_tokens(text)
