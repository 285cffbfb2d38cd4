"""Token estimation helpers.

Uses a simple characters-per-token heuristic, the same one used across the
package for analytics and routing decisions.
"""

import math

__all__ = ["CHARS_PER_TOKEN", "estimate_tokens", "savings_pct"]


# Approximate characters per token for estimation
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text.

    Args:
        text: Text to measure.

    Returns:
        Estimated token count (ceil of chars / 4).
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def savings_pct(original_tokens: int, optimized_tokens: int) -> float:
    """Percentage of tokens saved, 0.0 when nothing was there to save."""
    if original_tokens <= 0:
        return 0.0
    saved = max(0, original_tokens - optimized_tokens)
    return saved / original_tokens * 100
