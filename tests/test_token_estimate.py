from __future__ import annotations

from wallbounce.engine.token_estimate import (
    estimate_tokens_cjk_weighted,
    estimate_tokens_generic,
)


def test_generic_rounds_up() -> None:
    assert estimate_tokens_generic("") == 0
    assert estimate_tokens_generic("abc") == 1
    assert estimate_tokens_generic("abcd") == 1
    assert estimate_tokens_generic("abcde") == 2


def test_cjk_weighted_counts_dense_scripts_higher() -> None:
    # 4 CJK characters -> 6.0
    assert estimate_tokens_cjk_weighted("日本語だ") == 6
    # 8 ASCII characters -> 2.0
    assert estimate_tokens_cjk_weighted("abcdefgh") == 2
    # 2 CJK (3.0) + 2 other (0.5) -> ceil(3.5)
    assert estimate_tokens_cjk_weighted("テスab") == 4


def test_cjk_weighted_sums_lists() -> None:
    assert estimate_tokens_cjk_weighted(["abcd", "日本"]) == 1 + 3


def test_heuristics_differ_on_cjk_text() -> None:
    text = "設計レビュー"
    assert estimate_tokens_generic(text) == 2
    assert estimate_tokens_cjk_weighted(text) == 9
