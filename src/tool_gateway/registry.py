"""Read-only catalog of the tools the gateway serves."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ValidationError

from tool_gateway.errors import ArgumentError, UnknownToolError
from tool_gateway.types import Capability, ConversationTurn, FileRef

if TYPE_CHECKING:
    from tool_gateway.router import ModelRouter, ModelSelection

__all__ = ["ToolContext", "ToolResult", "ToolHandler", "ToolDefinition", "ToolRegistry"]


@dataclass(slots=True)
class ToolContext:
    """Everything a handler sees besides its model and arguments."""

    continuation_id: str | None = None
    # index of this call's own user turn within the thread
    turn_index: int | None = None
    history: list[ConversationTurn] = field(default_factory=list)
    files: list[FileRef] = field(default_factory=list)
    images: list[FileRef] = field(default_factory=list)
    router: Optional["ModelRouter"] = None
    registry: Optional["ToolRegistry"] = None


@dataclass(slots=True)
class ToolResult:
    text: str
    attachments: list[FileRef] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[Optional["ModelSelection"], BaseModel, ToolContext], Awaitable[ToolResult]]


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"]) or "arguments"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    required_capabilities: frozenset[Capability]
    arguments_model: type[BaseModel]
    handler: ToolHandler
    accepts_files: bool = False
    accepts_images: bool = False
    # introspection tools answer locally, without a model or a thread
    requires_model: bool = True

    def __post_init__(self) -> None:
        fields = self.arguments_model.model_fields
        if self.accepts_files and "files" not in fields:
            raise ValueError(f"{self.name}: accepts_files needs a 'files' argument")
        if self.accepts_images and "images" not in fields:
            raise ValueError(f"{self.name}: accepts_images needs an 'images' argument")

    def parse_arguments(self, arguments: Mapping[str, Any]) -> BaseModel:
        """Validate raw arguments into the tool's typed arguments model."""
        if arguments.get("files") and not self.accepts_files:
            raise ArgumentError(f"Tool {self.name!r} does not accept files")
        if arguments.get("images") and not self.accepts_images:
            raise ArgumentError(f"Tool {self.name!r} does not accept images")
        try:
            return self.arguments_model.model_validate(dict(arguments))
        except ValidationError as exc:
            raise ArgumentError(f"Invalid arguments for {self.name!r}: {_describe(exc)}") from exc

    def input_schema(self) -> dict[str, Any]:
        return self.arguments_model.model_json_schema()


class ToolRegistry:
    """Built once at startup and never mutated afterwards."""

    def __init__(self, definitions: Iterable[ToolDefinition]) -> None:
        tools: dict[str, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in tools:
                raise ValueError(f"Duplicate tool name: {definition.name!r}")
            tools[definition.name] = definition
        self._tools: Mapping[str, ToolDefinition] = MappingProxyType(tools)

    def resolve(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def list(self) -> tuple[ToolDefinition, ...]:
        return tuple(self._tools[name] for name in sorted(self._tools))

    def names(self) -> frozenset[str]:
        return frozenset(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
