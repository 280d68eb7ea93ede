"""Provider-neutral request and response models."""

from __future__ import annotations

from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from .turn import ImageRef

Role: TypeAlias = Literal["user", "assistant"]


class ChatMessage(BaseModel):
    """A single message in an assembled request.

    Images are only ever attached to ``user`` messages.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    images: list[ImageRef] = Field(default_factory=list)


class RequestOptions(BaseModel):
    """Optional generation parameters forwarded to the provider."""

    model_config = ConfigDict(frozen=True)

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_output_tokens: int | None = Field(default=None, gt=0)
    web_search: bool | None = None


class ChatRequest(BaseModel):
    """Everything a provider adapter needs for one network call."""

    model_config = ConfigDict(frozen=True)

    model: str
    messages: list[ChatMessage]
    system: str | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)
    api_key: str | None = Field(default=None, repr=False)


class Usage(BaseModel):
    """Provider-reported token usage."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ChatResponse(BaseModel):
    """The provider's reply."""

    model_config = ConfigDict(frozen=True)

    content: str
    usage: Usage | None = None
