"""Send pipeline: budgeting, assembly, provider retry loop and cancellation."""

from .cancellation import CancellationToken
from .messages import build_messages
from .send import PipelineState, SendPipeline, SendRequest

__all__ = [
    "CancellationToken",
    "PipelineState",
    "SendPipeline",
    "SendRequest",
    "build_messages",
]
