"""
Token counting and usage tracking.

Provides the token usage value type and a text-length based estimator
used when a provider does not report token counts.
"""

from dataclasses import dataclass

# Characters counted as punctuation/special for the overhead heuristic
SPECIAL_CHARACTERS = frozenset(".,!?;:()[]{}\"'`-_=+*/\\|@#$%^&<>")

# Fixed input-token allowance for one inline image when usage is not reported
IMAGE_TOKEN_ESTIMATE = 765


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    input_tokens: int
    output_tokens: int
    estimated_cost: float = 0.0

    def __post_init__(self):
        """Validate counts and cost are non-negative."""
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")
        if self.estimated_cost < 0:
            raise ValueError("estimated_cost cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens


def _count_newlines(text: str) -> int:
    return text.count("\n") + text.count("\r") - text.count("\r\n")


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    Approximates a BPE tokenizer at roughly four characters per token, then
    applies overheads in a fixed order: JSON brackets, dense punctuation,
    many newlines, and finally a conservative global multiplier. This is an
    estimate only and is never used when a provider reports real counts.

    Args:
        text: Prompt or response text

    Returns:
        Estimated token count, at least 1
    """
    character_count = len(text)
    token_count = max(1, character_count // 4)

    # JSON structure overhead
    if "{" in text or "[" in text:
        token_count = int(token_count * 1.15)

    # More than 5% special characters
    special_count = sum(1 for ch in text if ch in SPECIAL_CHARACTERS)
    if special_count > character_count // 20:
        token_count = int(token_count * 1.1)

    newline_count = _count_newlines(text)
    if newline_count > 5:
        token_count += newline_count // 2

    token_count = int(token_count * 1.2)

    return max(1, token_count)
