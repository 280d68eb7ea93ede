"""Tests for turnbudget.context.allocator."""

from __future__ import annotations

import pytest

from tests.conftest import make_history, make_turn
from turnbudget.context.allocator import BudgetAllocator
from turnbudget.exceptions import UserPromptTooLargeError
from turnbudget.models.budget import BudgetParameters
from turnbudget.models.turn import ImageRef


def _params(c: int, *, ura: int = 0, para: int = 0, system: int = 0) -> BudgetParameters:
    return BudgetParameters(
        max_context=c, user_request_allowance=ura, provider_reserve=para, system_tokens=system,
    )


def _user_text(tokens: int) -> str:
    return "q" * (tokens * 4)


class TestPredict:
    """Newest-first admission under HLP."""

    def test_all_turns_fit(self) -> None:
        turns = make_history(100, 100, 100)
        pred = BudgetAllocator().predict(turns, _params(1000, ura=100))
        assert [t.id for t in pred.predicted] == ["t0", "t1", "t2"]
        assert pred.predicted_token_sum == 300
        assert pred.excluded == []
        assert pred.candidate_capacity == 900

    def test_stops_at_first_overflowing_turn(self) -> None:
        turns = make_history(50, 400, 300, 200)
        pred = BudgetAllocator().predict(turns, _params(1000, ura=100, para=100, system=100))
        # HLP = 700: 200 + 300 fit, 400 does not; the older 50 is not reconsidered
        assert [t.id for t in pred.predicted] == ["t2", "t3"]
        assert [t.id for t in pred.excluded] == ["t0", "t1"]

    def test_oversize_single_turn_yields_empty_prediction(self) -> None:
        turns = [make_turn("big", 10_000)]
        pred = BudgetAllocator().predict(turns, _params(500, ura=300))
        assert pred.candidate_capacity == 200
        assert pred.predicted == []
        assert pred.predicted_token_sum == 0
        assert [t.id for t in pred.excluded] == ["big"]

    def test_hlp_never_negative(self) -> None:
        pred = BudgetAllocator().predict(make_history(1), _params(100, ura=500))
        assert pred.candidate_capacity == 0
        assert pred.predicted == []

    def test_empty_history(self) -> None:
        pred = BudgetAllocator().predict([], _params(100))
        assert pred.predicted == [] and pred.excluded == []

    def test_prediction_is_contiguous_suffix(self) -> None:
        turns = make_history(30, 10, 90, 20, 60, 40)
        for hlp in range(0, 260, 7):
            pred = BudgetAllocator().predict(turns, _params(hlp + 1, ura=1))
            n = len(pred.predicted)
            assert pred.predicted == turns[len(turns) - n :]
            assert pred.predicted_token_sum <= hlp


class TestFinalize:
    """Exact user sizing and oldest-first eviction."""

    def test_scenario_a_drops_oldest(self) -> None:
        allocator = BudgetAllocator()
        params = _params(900)
        predicted = make_history(400, 400)
        final = allocator.finalize(predicted, params, new_user_text=_user_text(250))
        assert final.history_limit == 650
        assert final.initial_history_tokens == 800
        assert [t.id for t in final.included] == ["t1"]
        assert [t.id for t in final.evicted] == ["t0"]
        assert final.history_tokens == 400
        assert final.input_tokens == 650
        assert final.remaining_context == 250
        assert final.trimmed_count == 1

    def test_scenario_b_user_prompt_too_large(self) -> None:
        allocator = BudgetAllocator()
        with pytest.raises(UserPromptTooLargeError) as exc_info:
            allocator.finalize(make_history(10), _params(100), new_user_text=_user_text(150))
        assert exc_info.value.code == "user_prompt_too_large"
        assert exc_info.value.details["user_tokens"] == 150

    def test_system_counts_toward_guard(self) -> None:
        with pytest.raises(UserPromptTooLargeError):
            BudgetAllocator().finalize([], _params(100, system=60), new_user_text=_user_text(50))

    def test_no_trimming_when_within_limit(self) -> None:
        predicted = make_history(100, 100)
        final = BudgetAllocator().finalize(predicted, _params(1000, para=100), new_user_text="hi")
        assert final.included == predicted
        assert final.evicted == []

    def test_provider_reserve_reduces_limit(self) -> None:
        predicted = make_history(300, 300)
        final = BudgetAllocator().finalize(
            predicted, _params(1000, para=300), new_user_text=_user_text(100),
        )
        assert final.history_limit == 600
        assert [t.id for t in final.included] == ["t0", "t1"]
        tighter = BudgetAllocator().finalize(
            predicted, _params(1000, para=301), new_user_text=_user_text(100),
        )
        assert [t.id for t in tighter.included] == ["t1"]

    def test_evicts_everything_when_needed(self) -> None:
        predicted = make_history(50, 50)
        final = BudgetAllocator().finalize(predicted, _params(100), new_user_text=_user_text(100))
        assert final.included == []
        assert final.history_limit == 0
        assert final.remaining_context == 0

    def test_images_count_toward_user_tokens(self) -> None:
        allocator = BudgetAllocator()
        image = ImageRef(id="i1", width=512, height=512)
        final = allocator.finalize([], _params(1000), new_user_text="abcd", images=[image])
        assert final.user_tokens == 1 + 255

    def test_precomputed_user_tokens_win(self) -> None:
        final = BudgetAllocator().finalize([], _params(1000), new_user_text="abcd", user_tokens=42)
        assert final.user_tokens == 42

    def test_invariant_holds_across_sizes(self) -> None:
        allocator = BudgetAllocator()
        turns = make_history(120, 80, 200, 40, 160, 90, 10)
        for c in (300, 450, 700, 1000):
            for user in (0, 50, 150):
                for para in (0, 60):
                    params = _params(c, ura=100, para=para, system=20)
                    pred = allocator.predict(turns, params)
                    final = allocator.finalize(pred.predicted, params, new_user_text=_user_text(user))
                    history = sum(allocator.turn_tokens(t, params) for t in final.included)
                    assert final.system_tokens + final.user_tokens + history <= final.max_context
                    assert final.included == pred.predicted[len(final.evicted) :]

    def test_is_idempotent(self) -> None:
        allocator = BudgetAllocator()
        predicted = make_history(300, 200, 100)
        params = _params(700, para=50)
        first = allocator.finalize(predicted, params, new_user_text=_user_text(200))
        second = allocator.finalize(predicted, params, new_user_text=_user_text(200))
        assert first == second


class TestComputeEnvelope:
    """predict + finalize end to end."""

    def test_returns_both_phases(self) -> None:
        turns = make_history(400, 400, 400)
        prediction, final = BudgetAllocator().compute_envelope(
            turns, _params(1000, ura=100), _user_text(300),
        )
        assert [t.id for t in prediction.predicted] == ["t1", "t2"]
        assert [t.id for t in final.included] == ["t2"]
