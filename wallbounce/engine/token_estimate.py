"""Character-count token estimates used when no usage record exists.

There are two heuristics and they are not interchangeable. The generic
one is what Codex usage fallbacks report. The CJK-weighted one is for
Japanese/Chinese-heavy text, where one character is closer to one or
two tokens.
"""
from __future__ import annotations

import math
import re

# Hiragana, Katakana, CJK unified ideographs.
_CJK_RE = re.compile("[\u3040-\u309f\u30a0-\u30ff\u4e00-\u9faf]")


def estimate_tokens_generic(text: str) -> int:
    """Four characters per token, rounded up."""
    return math.ceil(len(text) / 4)


def estimate_tokens_cjk_weighted(text: str | list[str]) -> int:
    """1.5 tokens per CJK character plus 0.25 per other character."""
    if isinstance(text, list):
        return sum(estimate_tokens_cjk_weighted(t) for t in text)
    cjk = len(_CJK_RE.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk * 1.5 + other * 0.25)
