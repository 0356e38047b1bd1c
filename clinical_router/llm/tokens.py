"""
Heuristic token estimators.

No vendor tokenizer is bundled, so counts are approximations good enough
for budgeting prompt size. Adapters take an estimator at construction;
the default is script-aware because CJK text packs far fewer characters
into each token than Latin text.
"""

from __future__ import annotations

import math
from typing import Protocol

# CJK unified ideographs (+ ext. A), Hiragana/Katakana, Hangul syllables
_DENSE_RANGES: tuple[tuple[int, int], ...] = (
    (0x3040, 0x30FF),
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xAC00, 0xD7AF),
)


def _is_dense(ch: str) -> bool:
    cp = ord(ch)
    return any(lo <= cp <= hi for lo, hi in _DENSE_RANGES)


class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int:
        ...


class CharRatioEstimator:
    """ceil(len(text) / chars_per_token), script-blind."""

    def __init__(self, chars_per_token: float = 4.0):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)


class ScriptAwareEstimator:
    """
    ~4 characters per token for most text, ~1.5 for CJK, Kana and Hangul.

    Never decreases as text grows: every extra character adds a positive
    fraction of a token before the final ceil.
    """

    def __init__(
        self,
        chars_per_token: float = 4.0,
        dense_chars_per_token: float = 1.5,
    ):
        if chars_per_token <= 0 or dense_chars_per_token <= 0:
            raise ValueError("character ratios must be positive")
        self.chars_per_token = chars_per_token
        self.dense_chars_per_token = dense_chars_per_token

    def estimate(self, text: str) -> int:
        dense = sum(1 for ch in text if _is_dense(ch))
        sparse = len(text) - dense
        return math.ceil(
            sparse / self.chars_per_token + dense / self.dense_chars_per_token
        )


DEFAULT_ESTIMATOR = ScriptAwareEstimator()
