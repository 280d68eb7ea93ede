"""Example: Token Budget Management. Run with: python examples/budget_management.py

Demonstrates how the boundary cache previews which history turns fit a
model's capacity, and how the send pipeline trims history again when a
provider still rejects the request as too long.

No network access or API key is needed: a scripted provider stands in
for a real one.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from turnbudget import (
    ApiKeyStore,
    BoundaryCache,
    ChatRequest,
    ChatResponse,
    ConversationTurn,
    InMemoryTelemetrySink,
    ModelCatalog,
    ModelInfo,
    ProviderError,
    ProviderErrorKind,
    ProviderRegistry,
    SendPipeline,
    SendRequest,
    Settings,
)

# ---------------------------------------------------------------------------
# A tiny transcript and catalog
# ---------------------------------------------------------------------------

START = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)


def build_history() -> list[ConversationTurn]:
    """Five exchanges of growing length, oldest first."""
    topics = ["greetings", "context windows", "token budgets", "eviction", "retries"]
    return [
        ConversationTurn(
            id=f"turn-{i}",
            created_at=START + timedelta(minutes=i),
            user_text=f"Tell me about {topic}. " * (i + 1) * 6,
            assistant_text=f"Here is what I know about {topic}. " * (i + 1) * 6,
        )
        for i, topic in enumerate(topics)
    ]


def build_catalog() -> ModelCatalog:
    catalog = ModelCatalog()
    catalog.add(ModelInfo(id="demo-small", provider_id="demo", context_window=2000, tpm=1500))
    return catalog


# ---------------------------------------------------------------------------
# Example 1: Previewing the boundary
# ---------------------------------------------------------------------------


def show_boundary() -> None:
    """Display which turns would be sent with the next message."""
    history = build_history()
    cache = BoundaryCache(build_catalog(), Settings(user_request_allowance=200))
    cache.update_turns(history)
    cache.set_model("demo-small")
    cache.set_system_text("You are a concise assistant.")

    snapshot = cache.get_boundary()
    stats = snapshot.stats
    print("=== Boundary preview ===")
    print(f"Model: {stats.model} (max context {stats.max_context} tokens)")
    print(f"Included: {stats.included_count}/{len(history)} turns")
    print(f"Predicted history: {stats.predicted_history_tokens} tokens")
    print(f"Predicted total:   {stats.predicted_total_tokens} tokens")
    print("Excluded (oldest):", ", ".join(t.id for t in snapshot.excluded) or "none")

    # A second read reuses the cached snapshot until something changes
    assert cache.get_boundary() is snapshot
    cache.apply_settings({"user_request_allowance": 800})
    print(f"After raising the allowance: {cache.get_boundary().stats.included_count} turns")


# ---------------------------------------------------------------------------
# Example 2: Sending with provider-side trimming
# ---------------------------------------------------------------------------


class ScriptedProvider:
    """Rejects the first request as too long, then answers."""

    def __init__(self) -> None:
        self.calls = 0

    async def send(self, request: ChatRequest) -> ChatResponse:
        self.calls += 1
        if self.calls == 1:
            raise ProviderError(ProviderErrorKind.OVERFLOW, "prompt is too long")
        return ChatResponse(content=f"Answered with {len(request.messages)} messages.")


async def run_send() -> None:
    """Send one message and print the telemetry trail."""
    sink = InMemoryTelemetrySink()
    registry = ProviderRegistry(ApiKeyStore({"demo": "not-a-real-key"}, use_env=False))
    registry.register("demo", ScriptedProvider())

    pipeline = SendPipeline(build_catalog(), registry, settings=Settings()).add_sink(sink)
    result = await pipeline.send(
        SendRequest(
            model="demo-small",
            user_text="How does the retry loop decide what to drop?",
            history=build_history(),
            system_text="You are a concise assistant.",
        ),
    )

    print("=== Send ===")
    print(f"Reply: {result.content}")
    print(f"Attempts: {result.attempts_used}")
    print(f"Trimmed locally: {result.trimmed_internal}, by the provider: {result.trimmed_provider}")
    print("Sent turns:", ", ".join(t.id for t in result.included))
    print()
    print("Telemetry:")
    for event in sink.get_events():
        print(
            f"  {event.status.value:<10} attempt={event.attempt_number} "
            f"selected={len(event.selection)} remaining={event.remaining_context}"
        )


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    show_boundary()
    print()
    asyncio.run(run_send())


if __name__ == "__main__":
    main()
