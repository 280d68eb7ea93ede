"""Tests for top-level package exports."""

from __future__ import annotations

import turnbudget


class TestTopLevelExports:
    """Verify all expected symbols are importable from the top-level package."""

    def test_budgeting_exports(self) -> None:
        from turnbudget import (
            BoundaryCache,
            BudgetAllocator,
            Clean,
            Dirty,
            TokenEstimator,
            estimate_image,
            estimate_text,
        )

        assert BoundaryCache is not None
        assert BudgetAllocator is not None
        assert Clean is not None
        assert Dirty is not None
        assert TokenEstimator is not None
        assert estimate_image is not None
        assert estimate_text is not None

    def test_sending_exports(self) -> None:
        from turnbudget import CancellationToken, PipelineState, SendPipeline, SendRequest

        assert CancellationToken is not None
        assert PipelineState is not None
        assert SendPipeline is not None
        assert SendRequest is not None

    def test_optional_integrations_import_lazily(self) -> None:
        from turnbudget import AnthropicProvider, OTLPTelemetrySink, TiktokenCounter

        assert AnthropicProvider is not None
        assert OTLPTelemetrySink is not None
        assert TiktokenCounter is not None

    def test_all_names_resolve(self) -> None:
        missing = [name for name in turnbudget.__all__ if not hasattr(turnbudget, name)]
        assert missing == []

    def test_version_is_string(self) -> None:
        assert isinstance(turnbudget.__version__, str)
