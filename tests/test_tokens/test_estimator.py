"""Tests for turnbudget.tokens.estimator."""

from __future__ import annotations

import pytest

from tests.conftest import make_turn
from turnbudget.models.turn import ConversationTurn, ImageRef
from turnbudget.tokens.estimator import (
    IMAGE_TOKEN_FORMULAS,
    TokenEstimator,
    estimate_image,
    estimate_text,
    register_image_formula,
)


class _WordTokenizer:
    def count_tokens(self, text: str) -> int:
        return len(text.split())


class TestEstimateText:
    """Chars-per-token heuristic."""

    def test_empty_and_none_cost_nothing(self) -> None:
        assert estimate_text("") == 0
        assert estimate_text(None) == 0

    def test_rounds_up(self) -> None:
        assert estimate_text("abcde", 4.0) == 2
        assert estimate_text("abcd", 4.0) == 1

    def test_non_empty_text_is_at_least_one(self) -> None:
        assert estimate_text("a", 8.0) == 1

    def test_ratio_changes_estimate(self) -> None:
        text = "x" * 300
        assert estimate_text(text, 3.0) == 100
        assert estimate_text(text, 1.5) == 200

    def test_rejects_non_positive_ratio(self) -> None:
        with pytest.raises(ValueError, match="chars_per_token"):
            estimate_text("abc", 0)


class TestEstimateImage:
    """Per-provider image formulas."""

    def test_openai_tiles(self) -> None:
        # 1024x1024 -> 2x2 tiles
        assert estimate_image(1024, 1024, "openai") == 85 + 170 * 4

    def test_partial_tiles_round_up(self) -> None:
        assert estimate_image(513, 10, "openai") == 85 + 170 * 2

    def test_anthropic_tiles(self) -> None:
        assert estimate_image(1024, 512, "anthropic") == 1600 * 2

    def test_google_is_flat(self) -> None:
        assert estimate_image(4000, 3000, "google") == 258

    def test_xai_matches_openai(self) -> None:
        assert estimate_image(800, 600, "xai") == estimate_image(800, 600, "openai")

    def test_unknown_provider_uses_default(self) -> None:
        assert estimate_image(512, 512, "mystery") == 85 + 170

    def test_missing_dimensions_cost_nothing(self) -> None:
        assert estimate_image(None, 512, "openai") == 0
        assert estimate_image(512, 0, "openai") == 0

    def test_register_formula(self) -> None:
        register_image_formula("Custom", lambda w, h: 7)
        try:
            assert estimate_image(100, 100, "custom") == 7
        finally:
            IMAGE_TOKEN_FORMULAS.pop("custom")


class TestTokenEstimatorTurns:
    """estimate_turn and the memo side-table."""

    def test_sums_user_assistant_and_images(self) -> None:
        estimator = TokenEstimator("openai")
        turn = make_turn(
            "t1", 10, assistant_tokens=5, images=[ImageRef(id="i1", width=512, height=512)],
        )
        assert estimator.estimate_turn(turn, 4.0) == 10 + 5 + 255

    def test_provider_changes_image_cost(self) -> None:
        turn = make_turn("t1", 0, images=[ImageRef(id="i1", width=512, height=512)])
        assert TokenEstimator("anthropic").estimate_turn(turn, 4.0) == 1600
        assert TokenEstimator("google").estimate_turn(turn, 4.0) == 258

    def test_cache_is_filled(self) -> None:
        estimator = TokenEstimator()
        estimator.estimate_turn(make_turn("t1", 10), 4.0)
        assert estimator.cache_size == 1

    def test_cached_and_uncached_results_match(self) -> None:
        turns = [make_turn(f"t{i}", i * 3, assistant_tokens=i) for i in range(1, 6)]
        cached = TokenEstimator()
        plain = TokenEstimator(use_cache=False)
        for cpt in (4.0, 2.5, 4.0):
            assert [cached.estimate_turn(t, cpt) for t in turns] == [
                plain.estimate_turn(t, cpt) for t in turns
            ]
        assert plain.cache_size == 0

    def test_ratio_change_is_a_cache_miss(self) -> None:
        estimator = TokenEstimator()
        turn = make_turn("t1", 10)
        assert estimator.estimate_turn(turn, 4.0) == 10
        assert estimator.estimate_turn(turn, 2.0) == 20

    def test_length_change_is_a_cache_miss(self) -> None:
        estimator = TokenEstimator()
        estimator.estimate_turn(make_turn("t1", 10), 4.0)
        assert estimator.estimate_turn(make_turn("t1", 20), 4.0) == 20

    def test_invalidate_drops_entry(self) -> None:
        estimator = TokenEstimator()
        estimator.estimate_turn(make_turn("t1", 10), 4.0)
        estimator.invalidate("t1")
        assert estimator.cache_size == 0

    def test_image_change_is_a_cache_miss(self) -> None:
        estimator = TokenEstimator()
        estimator.estimate_turn(make_turn("t1", 10), 4.0)
        with_image = make_turn("t1", 10, images=[ImageRef(id="i1", width=512, height=512)])
        assert estimator.estimate_turn(with_image, 4.0) == 10 + 255
        resized = make_turn("t1", 10, images=[ImageRef(id="i1", width=1024, height=1024)])
        assert estimator.estimate_turn(resized, 4.0) == 10 + 765

    def test_same_length_text_edit_needs_invalidate(self) -> None:
        estimator = TokenEstimator(tokenizer=_WordTokenizer())
        estimator.estimate_turn(ConversationTurn(id="t1", user_text="aaaa bbbb"), 4.0)
        edited = ConversationTurn(id="t1", user_text="a b c d e")
        assert estimator.estimate_turn(edited, 4.0) == 2
        estimator.invalidate("t1")
        assert estimator.estimate_turn(edited, 4.0) == 5

    def test_cache_cleared_when_full(self) -> None:
        estimator = TokenEstimator(max_cache_size=2)
        for i in range(3):
            estimator.estimate_turn(make_turn(f"t{i}", 1), 4.0)
        assert estimator.cache_size == 1


class TestForProvider:
    """Per-provider siblings."""

    def test_same_provider_returns_self(self) -> None:
        estimator = TokenEstimator("openai")
        assert estimator.for_provider("OpenAI") is estimator

    def test_sibling_is_reused(self) -> None:
        estimator = TokenEstimator("openai")
        sibling = estimator.for_provider("anthropic")
        assert sibling.provider_id == "anthropic"
        assert estimator.for_provider("anthropic") is sibling

    def test_invalidate_reaches_siblings(self) -> None:
        estimator = TokenEstimator("openai")
        sibling = estimator.for_provider("anthropic")
        sibling.estimate_turn(make_turn("t1", 4), 4.0)
        estimator.invalidate("t1")
        assert sibling.cache_size == 0

    def test_clear_cache_reaches_siblings(self) -> None:
        estimator = TokenEstimator("openai")
        sibling = estimator.for_provider("google")
        sibling.estimate_turn(make_turn("t1", 4), 4.0)
        estimator.clear_cache()
        assert sibling.cache_size == 0
