"""Two-phase history admission: predict, then finalize with local trimming.

Symbols used below:

* ``C``: model capacity (``max_context``)
* ``URA``: tokens reserved for the not-yet-sized next user turn
* ``PARA``: provider reserve for the reply
* ``HLP``: history limit during prediction, ``C - URA - system - PARA``
* ``HLA``: history limit once the user turn is known, ``C - user - system - PARA``
"""

from __future__ import annotations

import logging

from turnbudget.exceptions import ContextOverflowError, UserPromptTooLargeError
from turnbudget.models.budget import BudgetParameters, FinalizedHistory, Prediction
from turnbudget.models.turn import ConversationTurn, ImageRef
from turnbudget.tokens.estimator import TokenEstimator

logger = logging.getLogger(__name__)


class BudgetAllocator:
    """Selects which historical turns fit inside a capacity envelope.

    Both operations are pure given the estimator: identical inputs yield
    identical selections.  Turns must be ordered oldest first.

    Usage::

        allocator = BudgetAllocator(TokenEstimator("anthropic"))
        params = BudgetParameters(max_context=8000, user_request_allowance=600)
        prediction = allocator.predict(turns, params)
        final = allocator.finalize(prediction.predicted, params, new_user_text="Hi")
    """

    __slots__ = ("_estimator",)

    def __init__(self, estimator: TokenEstimator | None = None) -> None:
        self._estimator = estimator or TokenEstimator()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(estimator={self._estimator!r})"

    @property
    def estimator(self) -> TokenEstimator:
        return self._estimator

    def turn_tokens(self, turn: ConversationTurn, params: BudgetParameters) -> int:
        return self._estimator.estimate_turn(turn, params.chars_per_token)

    def predict(self, turns: list[ConversationTurn], params: BudgetParameters) -> Prediction:
        """Admit the newest turns that fit in ``HLP``.

        Walks newest to oldest and stops before the first turn that would
        overflow.  A turn larger than ``HLP`` is never admitted, so an
        oversize newest turn yields an empty prediction rather than an error.
        """
        hlp = max(
            0,
            params.max_context
            - params.user_request_allowance
            - params.system_tokens
            - params.provider_reserve,
        )

        admitted: list[ConversationTurn] = []
        total = 0
        for turn in reversed(turns):
            tokens = self.turn_tokens(turn, params)
            if total + tokens > hlp:
                break
            admitted.append(turn)
            total += tokens
        admitted.reverse()

        cut = len(turns) - len(admitted)
        logger.debug(
            "predict: C=%d HLP=%d admitted=%d/%d tokens=%d",
            params.max_context, hlp, len(admitted), len(turns), total,
        )
        return Prediction(
            max_context=params.max_context,
            candidate_capacity=hlp,
            system_tokens=params.system_tokens,
            provider_reserve=params.provider_reserve,
            predicted=admitted,
            predicted_token_sum=total,
            excluded=list(turns[:cut]),
        )

    def user_tokens(
        self,
        params: BudgetParameters,
        new_user_text: str | None,
        images: list[ImageRef] | None = None,
    ) -> int:
        """Exact estimate for the outgoing turn: text plus attached images."""
        tokens = self._estimator.estimate_text(new_user_text, params.chars_per_token)
        if images:
            tokens += self._estimator.estimate_images(images)
        return tokens

    def finalize(
        self,
        predicted: list[ConversationTurn],
        params: BudgetParameters,
        *,
        new_user_text: str | None = None,
        images: list[ImageRef] | None = None,
        user_tokens: int | None = None,
    ) -> FinalizedHistory:
        """Trim the predicted set oldest-first until it fits ``HLA``.

        Parameters:
            predicted: Output of :meth:`predict`, oldest first.
            params: The same envelope used for prediction.
            new_user_text: Text of the outgoing turn.
            images: Attachments of the outgoing turn, with dimensions.
            user_tokens: Precomputed outgoing-turn estimate; overrides
                ``new_user_text`` and ``images`` when given.

        Raises:
            UserPromptTooLargeError: The outgoing turn plus the system
                preamble exceed ``C`` on their own.
            ContextOverflowError: Trimming could not reach ``HLA``.
        """
        c = params.max_context
        system = params.system_tokens
        if user_tokens is None:
            user_tokens = self.user_tokens(params, new_user_text, images)

        if user_tokens + system > c:
            msg = f"User prompt ({user_tokens}) plus system ({system}) exceeds capacity ({c})"
            raise UserPromptTooLargeError(
                msg, details={"max_context": c, "user_tokens": user_tokens, "system_tokens": system},
            )

        hla = max(0, c - user_tokens - system - params.provider_reserve)
        sizes = [self.turn_tokens(t, params) for t in predicted]
        h0 = sum(sizes)

        start = 0
        total = h0
        while start < len(predicted) and total > hla:
            total -= sizes[start]
            start += 1

        if total > hla:
            msg = f"History still needs {total} tokens after trimming; limit is {hla}"
            raise ContextOverflowError(
                msg, details={"max_context": c, "history_limit": hla, "initial_history_tokens": h0},
            )

        if start:
            logger.debug("finalize: evicted %d oldest turn(s) to fit HLA=%d", start, hla)

        return FinalizedHistory(
            max_context=c,
            user_tokens=user_tokens,
            system_tokens=system,
            history_limit=hla,
            initial_history_tokens=h0,
            history_tokens=total,
            included=list(predicted[start:]),
            evicted=list(predicted[:start]),
        )

    def compute_envelope(
        self,
        turns: list[ConversationTurn],
        params: BudgetParameters,
        new_user_text: str | None = None,
        images: list[ImageRef] | None = None,
    ) -> tuple[Prediction, FinalizedHistory]:
        """Run :meth:`predict` and :meth:`finalize` end to end."""
        prediction = self.predict(turns, params)
        final = self.finalize(
            prediction.predicted, params, new_user_text=new_user_text, images=images,
        )
        return prediction, final
