"""Tests for cancellation and the send timeout."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import HANG, FakeImageSource, FakeProvider, make_history
from turnbudget.catalog import ModelCatalog
from turnbudget.exceptions import SendCancelledError, SendTimeoutError
from turnbudget.models.telemetry import TelemetryStatus
from turnbudget.observability.sinks import InMemoryTelemetrySink
from turnbudget.pipeline.cancellation import CancellationToken
from turnbudget.pipeline.send import PipelineState, SendPipeline, SendRequest
from turnbudget.providers.registry import ProviderRegistry
from turnbudget.settings import Settings


def _build(
    catalog: ModelCatalog,
    registry: ProviderRegistry,
    provider: FakeProvider,
    settings: Settings | None = None,
    image_source: FakeImageSource | None = None,
) -> tuple[SendPipeline, InMemoryTelemetrySink]:
    registry.register("fake", provider)
    sink = InMemoryTelemetrySink()
    pipeline = SendPipeline(
        catalog, registry, settings=settings, image_source=image_source, sinks=[sink],
    )
    return pipeline, sink


async def _wait_for_call(provider: FakeProvider) -> None:
    while provider.call_count == 0:
        await asyncio.sleep(0)


class TestCancellationToken:
    """Token semantics."""

    @pytest.mark.asyncio
    async def test_first_reason_wins(self) -> None:
        token = CancellationToken()
        token.cancel("user")
        token.cancel("timeout")
        assert token.cancelled
        assert token.reason == "user"
        assert not token.timed_out

    @pytest.mark.asyncio
    async def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("user")
        with pytest.raises(SendCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code == "cancelled"

    @pytest.mark.asyncio
    async def test_timeout_reason_raises_timeout_error(self) -> None:
        token = CancellationToken()
        token.cancel("timeout")
        with pytest.raises(SendTimeoutError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code == "timeout"

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self) -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_soon(token.cancel, "user")
        assert await token.wait() == "user"


class TestSendCancellation:
    """Cancelling an in-flight send."""

    @pytest.mark.asyncio
    async def test_cancel_during_provider_call(
        self, catalog: ModelCatalog, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider(HANG)
        pipeline, sink = _build(catalog, registry, provider)
        token = CancellationToken()
        task = asyncio.create_task(
            pipeline.send(SendRequest(model="small", user_text="hi", history=make_history(10)), cancel=token),
        )
        await _wait_for_call(provider)
        token.cancel("user")

        with pytest.raises(SendCancelledError) as exc_info:
            await task
        assert not isinstance(exc_info.value, SendTimeoutError)
        assert exc_info.value.attempts_used == 1
        assert provider.cancelled_calls == 1
        statuses = sink.statuses()
        assert statuses[-1] == TelemetryStatus.CANCELLED
        assert TelemetryStatus.ERROR not in statuses
        assert sink.last is not None and sink.last.error_code == "cancelled"
        assert pipeline.state == PipelineState.FAILED
        assert not pipeline.is_busy

    @pytest.mark.asyncio
    async def test_cancel_before_send(self, catalog: ModelCatalog, registry: ProviderRegistry) -> None:
        provider = FakeProvider()
        pipeline, sink = _build(catalog, registry, provider)
        token = CancellationToken()
        token.cancel("user")
        with pytest.raises(SendCancelledError):
            await pipeline.send(SendRequest(model="small", user_text="hi"), cancel=token)
        assert provider.call_count == 0
        assert sink.statuses() == [TelemetryStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_timeout(self, catalog: ModelCatalog, registry: ProviderRegistry) -> None:
        provider = FakeProvider(HANG)
        # below the validated minimum so the test stays fast
        settings = Settings.model_construct(request_timeout_seconds=0.05)
        pipeline, sink = _build(catalog, registry, provider, settings=settings)
        with pytest.raises(SendTimeoutError) as exc_info:
            await pipeline.send(SendRequest(model="small", user_text="hi"))
        assert exc_info.value.code == "timeout"
        assert provider.cancelled_calls == 1
        assert sink.last is not None
        assert sink.last.status == TelemetryStatus.CANCELLED
        assert sink.last.error_code == "timeout"

    @pytest.mark.asyncio
    async def test_timer_is_disarmed_after_success(
        self, catalog: ModelCatalog, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider("done")
        settings = Settings.model_construct(request_timeout_seconds=0.01)
        pipeline, _ = _build(catalog, registry, provider, settings=settings)
        token = CancellationToken()
        await pipeline.send(SendRequest(model="small", user_text="hi"), cancel=token)
        await asyncio.sleep(0.03)
        assert not token.cancelled

    @pytest.mark.asyncio
    async def test_external_task_cancellation_propagates(
        self, catalog: ModelCatalog, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider(HANG)
        pipeline, sink = _build(catalog, registry, provider)
        task = asyncio.create_task(pipeline.send(SendRequest(model="small", user_text="hi")))
        await _wait_for_call(provider)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert sink.last is not None
        assert sink.last.status == TelemetryStatus.CANCELLED
        assert not pipeline.is_busy

    @pytest.mark.asyncio
    async def test_timeout_ends_hung_image_lookup(
        self, catalog: ModelCatalog, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider()
        source = FakeImageSource({}, hanging={"img"})
        settings = Settings.model_construct(request_timeout_seconds=0.05)
        pipeline, sink = _build(catalog, registry, provider, settings=settings, image_source=source)
        request = SendRequest(model="small", user_text="hi", attachments=["img"])
        with pytest.raises(SendTimeoutError):
            await asyncio.wait_for(pipeline.send(request), timeout=2)
        assert source.cancelled_lookups == 1
        assert provider.call_count == 0
        assert sink.statuses() == [TelemetryStatus.CANCELLED]
        assert not pipeline.is_busy

    @pytest.mark.asyncio
    async def test_cancel_during_image_lookup(
        self, catalog: ModelCatalog, registry: ProviderRegistry
    ) -> None:
        provider = FakeProvider()
        source = FakeImageSource({}, hanging={"img"})
        pipeline, sink = _build(catalog, registry, provider, image_source=source)
        token = CancellationToken()
        task = asyncio.create_task(
            pipeline.send(SendRequest(model="small", user_text="hi", attachments=["img"]), cancel=token),
        )
        while not source.lookups:
            await asyncio.sleep(0)
        token.cancel("user")
        with pytest.raises(SendCancelledError) as exc_info:
            await task
        assert not isinstance(exc_info.value, SendTimeoutError)
        assert source.cancelled_lookups == 1
        assert provider.call_count == 0
        assert sink.last is not None and sink.last.error_code == "cancelled"
