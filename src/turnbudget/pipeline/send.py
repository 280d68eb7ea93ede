"""SendPipeline -- budgets a turn, sends it, and recovers from provider overflow."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from turnbudget._callbacks import fire_callbacks
from turnbudget.catalog import ModelCatalog, ModelInfo
from turnbudget.context.allocator import BudgetAllocator
from turnbudget.exceptions import (
    ContextOverflowError,
    MissingApiKeyError,
    PipelineBusyError,
    ProviderError,
    SendCancelledError,
    TurnBudgetError,
)
from turnbudget.models.budget import BudgetParameters, FinalizedHistory, Prediction
from turnbudget.models.chat import ChatMessage, ChatRequest, ChatResponse, RequestOptions
from turnbudget.models.telemetry import (
    AttemptOutcome,
    SendAttempt,
    SendResult,
    TelemetryEvent,
    TelemetryStatus,
    TurnSelection,
)
from turnbudget.models.turn import ConversationTurn, ImageRef, sort_chronologically
from turnbudget.protocols.images import ImageMetadataSource
from turnbudget.protocols.provider import Provider
from turnbudget.providers.registry import ProviderRegistry
from turnbudget.settings import Settings, SettingsProvider, StaticSettings
from turnbudget.tokens.estimator import TokenEstimator

from .cancellation import TIMEOUT_REASON, CancellationToken
from .messages import build_messages

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineState(StrEnum):
    """Phase of the most recent send."""

    IDLE = "idle"
    ESTIMATING = "estimating"
    PREDICTING = "predicting"
    LOCALLY_TRIMMING = "locally_trimming"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SendRequest(BaseModel):
    """One outgoing user turn plus the transcript it continues.

    Parameters:
        model: Catalog model id.
        user_text: Text of the new user turn.
        history: Prior turns in any order; the pipeline sorts them by
            ``created_at``.
        attachments: Image ids for the new turn, resolved through the
            pipeline's image metadata source.
        system_text: Optional system preamble.
        options: Generation options forwarded to the provider.
        conversation_id: Opaque id echoed in telemetry.
    """

    model_config = ConfigDict(frozen=True)

    model: str
    user_text: str = ""
    history: list[ConversationTurn] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    system_text: str | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)
    conversation_id: str | None = None


class _SendTrace:
    """Per-send accumulator that stamps telemetry events with current numbers."""

    __slots__ = (
        "attempts_used",
        "base",
        "messages",
        "selection",
        "terminal_emitted",
        "trimmed_internal",
        "trimmed_provider",
    )

    def __init__(self, request: SendRequest, provider_id: str) -> None:
        self.base: dict[str, Any] = {
            "conversation_id": request.conversation_id,
            "model": request.model,
            "provider_id": provider_id,
        }
        self.attempts_used = 0
        self.trimmed_internal = 0
        self.trimmed_provider = 0
        self.selection: tuple[TurnSelection, ...] = ()
        self.messages: tuple[ChatMessage, ...] = ()
        self.terminal_emitted = False

    def event(self, status: TelemetryStatus, **fields: Any) -> TelemetryEvent:
        if status.is_terminal:
            self.terminal_emitted = True
        data = {
            **self.base,
            "attempts_used": self.attempts_used,
            "trimmed_internal": self.trimmed_internal,
            "trimmed_provider": self.trimmed_provider,
            "trimmed_count": self.trimmed_internal + self.trimmed_provider,
            "selection": self.selection,
            "messages": self.messages,
            **fields,
        }
        return TelemetryEvent(status=status, **data)


class SendPipeline:
    """Budgets, assembles and sends one user turn at a time.

    Usage::

        registry = ProviderRegistry()
        registry.register("anthropic", AnthropicProvider())
        pipeline = SendPipeline(ModelCatalog(), registry).add_sink(InMemoryTelemetrySink())
        result = await pipeline.send(SendRequest(model="claude-haiku-4-5", user_text="Hi"))

    The send follows this flow:
        1. Estimate system and user tokens (images resolved asynchronously)
        2. Predict the admissible history with the user-request allowance
        3. Reject a user turn that cannot fit on its own
        4. Trim the prediction oldest-first until the real user turn fits
        5. Assemble messages and check provider and API key
        6. Call the provider, dropping the oldest turn on each overflow

    One send runs at a time per pipeline; a second concurrent call raises
    :class:`PipelineBusyError`.

    Parameters:
        catalog: Resolves the model to capacity and provider.
        registry: Provider adapters and API keys.
        estimator: Shared token estimator; per-provider siblings are derived.
        settings: A settings snapshot or a :class:`SettingsProvider`; read
            once per send.
        image_source: Resolves attachment ids to dimensions.
        sinks: Telemetry sinks (objects with ``emit`` or plain callables).
    """

    __slots__ = (
        "_catalog",
        "_current_attempt",
        "_estimator",
        "_image_source",
        "_in_flight",
        "_registry",
        "_settings",
        "_sinks",
        "_state",
    )

    def __init__(
        self,
        catalog: ModelCatalog,
        registry: ProviderRegistry,
        estimator: TokenEstimator | None = None,
        settings: Settings | SettingsProvider | None = None,
        image_source: ImageMetadataSource | None = None,
        sinks: Sequence[Any] = (),
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._estimator = estimator or TokenEstimator()
        if settings is None or isinstance(settings, Settings):
            self._settings: SettingsProvider = StaticSettings(settings)
        else:
            self._settings = settings
        self._image_source = image_source
        self._sinks: list[Any] = list(sinks)
        self._state = PipelineState.IDLE
        self._current_attempt = 0
        self._in_flight = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(state={self._state.value!r}, "
            f"sinks={len(self._sinks)}, registry={self._registry!r})"
        )

    # -- Read-only properties --

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_attempt(self) -> int:
        """Attempt number while in ``SENDING``; the last attempt afterwards."""
        return self._current_attempt

    @property
    def is_busy(self) -> bool:
        return self._in_flight

    # -- Configuration --

    def add_sink(self, sink: Any) -> SendPipeline:
        """Register a telemetry sink. Returns self for chaining."""
        self._sinks.append(sink)
        return self

    def with_image_source(self, source: ImageMetadataSource) -> SendPipeline:
        """Set the image metadata source. Returns self for chaining."""
        self._image_source = source
        return self

    def _emit(self, event: TelemetryEvent) -> None:
        fire_callbacks(self._sinks, "emit", event, logger=logger, log_level=logging.WARNING)

    # -- Public entry point --

    async def send(
        self, request: SendRequest, cancel: CancellationToken | None = None
    ) -> SendResult:
        """Budget and send ``request``.

        Parameters:
            request: The outgoing turn and its transcript.
            cancel: Optional token; firing it cancels the in-flight provider
                call.  A deferred timeout fires the same token.

        Returns:
            The provider response with the final selection and counters.

        Raises:
            PipelineBusyError: Another send is in flight.
            UserPromptTooLargeError: The user turn plus system exceed capacity.
            ContextOverflowError: Local or provider-driven trimming ran out.
            ProviderNotRegisteredError: No adapter for the model's provider.
            MissingApiKeyError: No key for the model's provider.
            ProviderError: Non-overflow provider failure.
            SendCancelledError: The token fired (``SendTimeoutError`` on timeout).
        """
        if self._in_flight:
            msg = "A send is already in flight on this pipeline"
            raise PipelineBusyError(msg)

        token = cancel or CancellationToken()
        trace = _SendTrace(request, provider_id="")
        timer: asyncio.TimerHandle | None = None
        self._in_flight = True
        self._current_attempt = 0
        try:
            settings = self._settings.get()
            info = self._catalog.resolve(request.model)
            trace.base["provider_id"] = info.provider_id
            timer = asyncio.get_running_loop().call_later(
                settings.request_timeout_seconds, token.cancel, TIMEOUT_REASON,
            )
            result = await self._execute(request, settings, info, token, trace)
        except SendCancelledError as exc:
            self._fail(trace, exc, TelemetryStatus.CANCELLED)
            raise
        except TurnBudgetError as exc:
            self._fail(trace, exc, TelemetryStatus.ERROR)
            raise
        except asyncio.CancelledError:
            self._state = PipelineState.FAILED
            if not trace.terminal_emitted:
                self._emit(trace.event(TelemetryStatus.CANCELLED, error_code="cancelled", messages=()))
            raise
        except Exception as exc:
            self._state = PipelineState.FAILED
            if not trace.terminal_emitted:
                self._emit(
                    trace.event(TelemetryStatus.ERROR, error_code=type(exc).__name__, messages=()),
                )
            raise
        finally:
            if timer is not None:
                timer.cancel()
            self._in_flight = False

        self._state = PipelineState.SUCCEEDED
        return result

    def _fail(self, trace: _SendTrace, exc: TurnBudgetError, status: TelemetryStatus) -> None:
        self._state = PipelineState.FAILED
        exc.attempts_used = trace.attempts_used
        logger.info(
            "Send failed (%s) after %d attempt(s), trimmed %d+%d",
            exc.code, trace.attempts_used, trace.trimmed_internal, trace.trimmed_provider,
        )
        if not trace.terminal_emitted:
            self._emit(trace.event(status, error_code=exc.code, messages=()))

    # -- Phases --

    async def _execute(
        self,
        request: SendRequest,
        settings: Settings,
        info: ModelInfo,
        token: CancellationToken,
        trace: _SendTrace,
    ) -> SendResult:
        cpt = settings.chars_per_token
        estimator = self._estimator.for_provider(info.provider_id)
        allocator = BudgetAllocator(estimator)

        self._state = PipelineState.ESTIMATING
        history = sort_chronologically(request.history)
        attachments = await self._resolve_attachments(request.attachments, token)
        token.raise_if_cancelled()
        params = BudgetParameters(
            max_context=info.max_context,
            user_request_allowance=settings.user_request_allowance,
            provider_reserve=info.provider_reserve(settings),
            system_tokens=estimator.estimate_text(request.system_text, cpt),
            chars_per_token=cpt,
        )
        user_tokens = allocator.user_tokens(params, request.user_text, attachments)
        trace.base.update(
            max_context=params.max_context,
            system_tokens=params.system_tokens,
            user_tokens=user_tokens,
            chars_per_token=cpt,
        )

        self._state = PipelineState.PREDICTING
        prediction = allocator.predict(history, params)
        trace.base.update(
            predicted_count=len(prediction.predicted),
            predicted_history_tokens=prediction.predicted_token_sum,
            predicted_total_tokens=prediction.predicted_token_sum + settings.user_request_allowance,
        )

        self._state = PipelineState.LOCALLY_TRIMMING
        final = allocator.finalize(prediction.predicted, params, user_tokens=user_tokens)
        trace.trimmed_internal = len(final.evicted)
        trace.base["remaining_context"] = final.remaining_context
        trace.selection = self._selection(estimator, final.included, cpt)
        trace.messages = tuple(build_messages(final.included, request.user_text, attachments))
        self._emit(trace.event(TelemetryStatus.PREFLIGHT))

        provider = self._registry.require(info.provider_id)
        api_key = self._registry.api_keys.get(info.provider_id)
        if not api_key:
            msg = f"No API key configured for '{info.provider_id}'"
            raise MissingApiKeyError(msg, details={"provider_id": info.provider_id})

        return await self._send_with_retries(
            request, settings, info, token, trace,
            provider=provider,
            api_key=api_key,
            estimator=estimator,
            prediction=prediction,
            final=final,
            attachments=attachments,
        )

    async def _send_with_retries(
        self,
        request: SendRequest,
        settings: Settings,
        info: ModelInfo,
        token: CancellationToken,
        trace: _SendTrace,
        *,
        provider: Provider,
        api_key: str,
        estimator: TokenEstimator,
        prediction: Prediction,
        final: FinalizedHistory,
        attachments: list[ImageRef],
    ) -> SendResult:
        cpt = settings.chars_per_token
        max_attempts = settings.effective_max_trim_attempts
        options = self._request_options(request.options, info, final)
        working: tuple[ConversationTurn, ...] = tuple(final.included)
        attempts: list[SendAttempt] = []

        while True:
            token.raise_if_cancelled()
            trace.attempts_used += 1
            attempt = trace.attempts_used
            self._state = PipelineState.SENDING
            self._current_attempt = attempt

            messages = build_messages(working, request.user_text, attachments)
            trace.selection = self._selection(estimator, working, cpt)
            trace.messages = tuple(messages)
            self._emit(trace.event(TelemetryStatus.ATTEMPT, attempt_number=attempt))

            chat_request = ChatRequest(
                model=info.id,
                messages=messages,
                system=request.system_text or None,
                options=options,
                api_key=api_key,
            )

            def record(outcome: AttemptOutcome, sent: tuple[ConversationTurn, ...] = working) -> None:
                attempts.append(
                    SendAttempt(
                        attempt=attempt,
                        sent_turn_ids=tuple(t.id for t in sent),
                        trimmed_internal=trace.trimmed_internal,
                        trimmed_provider=trace.trimmed_provider,
                        outcome=outcome,
                    ),
                )

            try:
                response = await self._call_provider(provider, chat_request, token)
            except SendCancelledError:
                record(AttemptOutcome.CANCELLED)
                raise
            except ProviderError as exc:
                if not exc.is_overflow:
                    record(AttemptOutcome.ERROR)
                    raise
                record(AttemptOutcome.OVERFLOW)
                if not working or attempt >= max_attempts:
                    msg = (
                        f"Provider still reports overflow after {attempt} attempt(s) "
                        f"and {trace.trimmed_provider} provider trim(s)"
                    )
                    raise ContextOverflowError(
                        msg,
                        details={"attempts_used": attempt, "max_attempts": max_attempts},
                    ) from exc
                logger.info(
                    "Provider overflow on attempt %d/%d; dropping oldest turn %s",
                    attempt, max_attempts, working[0].id,
                )
                working = working[1:]
                trace.trimmed_provider += 1
                continue

            record(AttemptOutcome.SUCCESS)
            self._emit(trace.event(TelemetryStatus.SUCCESS, attempt_number=attempt))
            logger.info(
                "Send succeeded on attempt %d with %d turn(s), trimmed %d+%d",
                attempt, len(working), trace.trimmed_internal, trace.trimmed_provider,
            )
            return SendResult(
                response=response,
                budget=final,
                included=list(working),
                attempts_used=attempt,
                trimmed_internal=trace.trimmed_internal,
                trimmed_provider=trace.trimmed_provider,
                attempts=attempts,
            )

    # -- Helpers --

    async def _call_provider(
        self, provider: Provider, request: ChatRequest, token: CancellationToken
    ) -> ChatResponse:
        return await _until_cancelled(provider.send(request), token, "Provider call")

    async def _resolve_attachments(
        self, image_ids: list[str], token: CancellationToken
    ) -> list[ImageRef]:
        """Resolve attachment ids to dimensioned refs; failures cost zero tokens."""
        resolved: list[ImageRef] = []
        for image_id in image_ids:
            ref: ImageRef | None = None
            if self._image_source is not None:
                try:
                    lookup = self._image_source.get_dimensions(image_id)
                    ref = await _until_cancelled(lookup, token, "Image lookup")
                except SendCancelledError:
                    raise
                except Exception:
                    logger.warning(
                        "Image lookup failed for %s; estimating 0 tokens", image_id, exc_info=True,
                    )
            resolved.append(ref if ref is not None else ImageRef(id=image_id))
        return resolved

    @staticmethod
    def _selection(
        estimator: TokenEstimator, turns: Sequence[ConversationTurn], cpt: float
    ) -> tuple[TurnSelection, ...]:
        return tuple(TurnSelection(id=t.id, tokens=estimator.estimate_turn(t, cpt)) for t in turns)

    @staticmethod
    def _request_options(
        options: RequestOptions, info: ModelInfo, final: FinalizedHistory
    ) -> RequestOptions:
        """Apply catalog defaults: web search flag and the output-rate cap."""
        update: dict[str, Any] = {}
        if options.web_search is None and info.web_search is not None:
            update["web_search"] = info.web_search
        if info.otpm is not None:
            requested = options.max_output_tokens or final.remaining_context
            update["max_output_tokens"] = max(1, min(requested, info.otpm))
        if not update:
            return options
        return options.model_copy(update=update)


async def _until_cancelled(aw: Awaitable[T], token: CancellationToken, label: str) -> T:
    """Run ``aw`` as a task raced against the cancellation token.

    Raises:
        SendCancelledError: The token fired first; the task is cancelled
            and awaited before raising.
    """
    call = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (call, waiter):
            if not task.done():
                task.cancel()

    if call in done:
        return call.result()
    await asyncio.wait({call})
    logger.debug("%s cancelled (%s)", label, token.reason)
    token.raise_if_cancelled()
    msg = f"{label} ended without a result"
    raise SendCancelledError(msg)
