"""turnbudget: token-budgeted conversation history for capped chat models.

Budgeting:
    TokenEstimator, BudgetAllocator, BoundaryCache, Clean, Dirty,
    estimate_text, estimate_image, register_image_formula

Sending:
    SendPipeline, SendRequest, PipelineState, CancellationToken,
    build_messages

Providers:
    ProviderRegistry, ApiKeyStore, AnthropicProvider,
    InMemoryImageMetadataSource, classify_status

Configuration:
    Settings, StaticSettings, ModelCatalog, ModelInfo

Telemetry:
    InMemoryTelemetrySink, LoggingTelemetrySink, JsonlFileTelemetrySink,
    OTLPTelemetrySink

Protocols (extension points):
    Tokenizer, Provider, ImageMetadataSource, TelemetrySink, SettingsProvider

Models & Types:
    ConversationTurn, ImageRef, BudgetParameters, Prediction,
    FinalizedHistory, BoundarySnapshot, BoundaryStats, ChatMessage,
    ChatRequest, ChatResponse, RequestOptions, Usage, TelemetryEvent,
    TelemetryStatus, SendAttempt, SendResult

Exceptions:
    TurnBudgetError, UserPromptTooLargeError, ContextOverflowError,
    ProviderError, ProviderErrorKind, ProviderNotRegisteredError,
    MissingApiKeyError, SendCancelledError, SendTimeoutError,
    PipelineBusyError, ModelNotFoundError, SettingsError

Tokens:
    TiktokenCounter
"""

from importlib.metadata import PackageNotFoundError, version

from turnbudget.catalog import BUILTIN_MODELS, ModelCatalog, ModelInfo
from turnbudget.context import BoundaryCache, BudgetAllocator, Clean, Dirty
from turnbudget.exceptions import (
    ContextOverflowError,
    MissingApiKeyError,
    ModelNotFoundError,
    PipelineBusyError,
    ProviderError,
    ProviderErrorKind,
    ProviderNotRegisteredError,
    SendCancelledError,
    SendTimeoutError,
    SettingsError,
    TurnBudgetError,
    UserPromptTooLargeError,
)
from turnbudget.models import (
    BoundarySnapshot,
    BoundaryStats,
    BudgetParameters,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ConversationTurn,
    FinalizedHistory,
    ImageRef,
    Prediction,
    RequestOptions,
    SendAttempt,
    SendResult,
    TelemetryEvent,
    TelemetryStatus,
    Usage,
)
from turnbudget.observability import (
    InMemoryTelemetrySink,
    JsonlFileTelemetrySink,
    LoggingTelemetrySink,
    OTLPTelemetrySink,
)
from turnbudget.pipeline import (
    CancellationToken,
    PipelineState,
    SendPipeline,
    SendRequest,
    build_messages,
)
from turnbudget.protocols import ImageMetadataSource, Provider, TelemetrySink, Tokenizer
from turnbudget.providers import (
    AnthropicProvider,
    ApiKeyStore,
    InMemoryImageMetadataSource,
    ProviderRegistry,
    classify_status,
)
from turnbudget.settings import Settings, SettingsProvider, StaticSettings
from turnbudget.tokens import (
    TiktokenCounter,
    TokenEstimator,
    estimate_image,
    estimate_text,
    register_image_formula,
)

try:
    __version__ = version("turnbudget")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "BUILTIN_MODELS",
    "AnthropicProvider",
    "ApiKeyStore",
    "BoundaryCache",
    "BoundarySnapshot",
    "BoundaryStats",
    "BudgetAllocator",
    "BudgetParameters",
    "CancellationToken",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Clean",
    "ContextOverflowError",
    "ConversationTurn",
    "Dirty",
    "FinalizedHistory",
    "ImageMetadataSource",
    "ImageRef",
    "InMemoryImageMetadataSource",
    "InMemoryTelemetrySink",
    "JsonlFileTelemetrySink",
    "LoggingTelemetrySink",
    "MissingApiKeyError",
    "ModelCatalog",
    "ModelInfo",
    "ModelNotFoundError",
    "OTLPTelemetrySink",
    "PipelineBusyError",
    "PipelineState",
    "Prediction",
    "Provider",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderNotRegisteredError",
    "ProviderRegistry",
    "RequestOptions",
    "SendAttempt",
    "SendCancelledError",
    "SendPipeline",
    "SendRequest",
    "SendResult",
    "SendTimeoutError",
    "Settings",
    "SettingsError",
    "SettingsProvider",
    "StaticSettings",
    "TelemetryEvent",
    "TelemetrySink",
    "TelemetryStatus",
    "TiktokenCounter",
    "TokenEstimator",
    "Tokenizer",
    "TurnBudgetError",
    "Usage",
    "UserPromptTooLargeError",
    "__version__",
    "build_messages",
    "classify_status",
    "estimate_image",
    "estimate_text",
    "register_image_formula",
]
