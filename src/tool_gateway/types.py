"""
Core types for tool-gateway.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum, StrEnum
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field

__all__ = [
    "Capability",
    "CostClass",
    "FileKind",
    "TransportKind",
    "Role",
    "ToolRequest",
    "ModelDescriptor",
    "FileRef",
    "ConversationTurn",
    "ConversationThread",
    "TurnDraft",
    "GenerationRequest",
    "GenerationResult",
    "ErrorInfo",
    "ToolResponse",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Capability(StrEnum):
    TEXT_GENERATION = "text_generation"
    VISION_GENERATION = "vision_generation"
    FUNCTION_CALLING = "function_calling"


class CostClass(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class FileKind(StrEnum):
    IMAGE = "image"
    CODE = "code"
    OTHER = "other"


class TransportKind(StrEnum):
    STREAM = "stream"
    CLI = "cli"


Role = Literal["user", "assistant", "tool"]


@dataclass(frozen=True, slots=True)
class ToolRequest:
    """A transport-neutral tool invocation."""

    tool_name: str
    arguments: Mapping[str, Any]
    transport: TransportKind
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """A concrete model hosted by one provider."""

    provider: str
    model_id: str
    capabilities: frozenset[Capability]
    cost_class: CostClass
    context_window: int
    aliases: tuple[str, ...] = ()
    max_image_size_mb: float = 20.0
    description: str = ""

    def supports(self, required: frozenset[Capability] | set[Capability]) -> bool:
        return set(required) <= self.capabilities

    @property
    def qualified_name(self) -> str:
        return f"{self.provider}:{self.model_id}"


# Persisted records are pydantic models so they round-trip through the store as JSON.


class FileRef(BaseModel):
    model_config = {"frozen": True}

    host_path: str
    sandbox_path: str
    kind: FileKind


class ConversationTurn(BaseModel):
    index: int
    role: Role
    content: str
    files: list[FileRef] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    tool_name: str | None = None
    model_provider: str | None = None
    model_name: str | None = None


class ConversationThread(BaseModel):
    continuation_id: str
    tool_name: str
    turns: list[ConversationTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    # bumped on every write; the store compares it before replacing a record
    version: int = 0


@dataclass(slots=True)
class TurnDraft:
    """A turn before the Conversation Manager assigns its index."""

    role: Role
    content: str
    files: list[FileRef] = field(default_factory=list)
    tool_name: str | None = None
    model_provider: str | None = None
    model_name: str | None = None


@dataclass(slots=True)
class GenerationRequest:
    """Canonical generation request handed to a provider client."""

    prompt: str
    system_prompt: str = ""
    history: list[ConversationTurn] = field(default_factory=list)
    images: list[FileRef] = field(default_factory=list)
    params: dict[str, Any] | None = None


@dataclass(slots=True)
class GenerationResult:
    """Canonical generation result returned by every provider client."""

    text: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    model: str | None = None
    provider: str | None = None
    raw: Any = None


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    kind: str
    code: int
    exit_code: int
    message: str


@dataclass(slots=True)
class ToolResponse:
    """Unified response object for both transports."""

    request_id: str
    tool_name: str
    status: Literal["success", "error"]
    content: str = ""
    continuation_id: str | None = None
    model: str | None = None
    provider: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    remaining_turns: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: ErrorInfo | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> None:
        if self.is_error:
            raise RuntimeError(self.error.message)
