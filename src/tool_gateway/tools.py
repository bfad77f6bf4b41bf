"""
Default tool catalog.

Every model-backed tool shares one generation handler; what differs is the
capability requirement, which attachments it takes, its typed arguments and a
one-line system prompt. Prompt engineering for individual tools lives outside
this package.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tool_gateway.attachments import read_text_file
from tool_gateway.params import params_from_arguments
from tool_gateway.provider import Provider
from tool_gateway.registry import ToolContext, ToolDefinition, ToolHandler, ToolRegistry, ToolResult
from tool_gateway.router import ModelSelection
from tool_gateway.types import Capability, ConversationTurn, FileKind, GenerationRequest

__all__ = [
    "ToolArguments",
    "FileToolArguments",
    "ImageToolArguments",
    "make_generation_handler",
    "build_default_registry",
]

TEXT = frozenset({Capability.TEXT_GENERATION})
VISION = frozenset({Capability.VISION_GENERATION})

# per-file cap when embedding file contents into a prompt
FILE_CHAR_LIMIT = 100_000


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(min_length=1, description="The request for the tool")
    model: Optional[str] = Field(
        default=None,
        description="Model id or alias, or 'auto' / 'text' / 'vision' / 'tools' for automatic selection",
    )
    provider: Optional[str] = Field(default=None, description="Restrict selection to one provider")
    continuation_id: Optional[str] = Field(
        default=None, description="Thread id returned by an earlier call, to continue it"
    )
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    thinking_mode: Optional[Literal["minimal", "low", "medium", "high", "max"]] = None

    def instructions(self) -> list[str]:
        """Extra lines a tool's own arguments add to the prompt."""
        return []


class FileToolArguments(ToolArguments):
    files: list[str] = Field(
        default_factory=list, description="Absolute host paths of files to include"
    )


class ImageToolArguments(FileToolArguments):
    images: list[str] = Field(
        default_factory=list, description="Absolute host paths of images to include"
    )


class CodeReviewArguments(FileToolArguments):
    review_type: Literal["full", "security", "performance", "quick"] = "full"
    focus_on: Optional[str] = None

    def instructions(self) -> list[str]:
        lines = [f"Review type: {self.review_type}"]
        if self.focus_on:
            lines.append(f"Focus on: {self.focus_on}")
        return lines


class DebugArguments(FileToolArguments):
    error_context: Optional[str] = Field(default=None, description="Stack trace or logs")

    def instructions(self) -> list[str]:
        return [f"Error context:\n{self.error_context}"] if self.error_context else []


class ConsensusArguments(FileToolArguments):
    stance: Literal["for", "against", "neutral"] = "neutral"

    def instructions(self) -> list[str]:
        return [f"Argue from a {self.stance} stance."]


class PlannerArguments(ToolArguments):
    step_number: int = Field(default=1, ge=1)
    total_steps: int = Field(default=1, ge=1)

    def instructions(self) -> list[str]:
        return [f"Planning step {self.step_number} of {self.total_steps}."]


class IntrospectionArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _compose_prompt(arguments: ToolArguments, context: ToolContext) -> str:
    sections = [arguments.prompt, *arguments.instructions()]
    for ref in context.files:
        if ref.kind is FileKind.IMAGE:
            continue
        body = read_text_file(ref, FILE_CHAR_LIMIT)
        sections.append(f"--- BEGIN FILE: {ref.host_path} ---\n{body}\n--- END FILE: {ref.host_path} ---")
    return "\n\n".join(sections)


def _prior_turns(context: ToolContext) -> list[ConversationTurn]:
    # this call's own user turn goes out as the prompt, not as history
    if context.turn_index is None:
        return list(context.history)
    return [turn for turn in context.history if turn.index < context.turn_index]


def make_generation_handler(system_prompt: str) -> ToolHandler:
    async def handle(
        selection: ModelSelection, arguments: ToolArguments, context: ToolContext
    ) -> ToolResult:
        request = GenerationRequest(
            prompt=_compose_prompt(arguments, context),
            system_prompt=system_prompt,
            history=_prior_turns(context),
            images=list(context.images),
            params=params_from_arguments(arguments.temperature, arguments.thinking_mode),
        )
        result = await selection.client.generate(request)
        return ToolResult(
            text=result.text,
            usage=result.usage,
            finish_reason=result.finish_reason,
        )

    return handle


async def list_models(
    selection: None, arguments: IntrospectionArguments, context: ToolContext
) -> ToolResult:
    router = context.router
    if router is None:
        raise RuntimeError("listmodels needs a router in its context")

    lines = []
    available = set(router.available_providers())
    order = list(router.config.provider_preference)
    extra = sorted({Provider(m.provider) for m in router.catalog} - set(order))
    providers = order + extra
    for provider in providers:
        models = router.catalog.for_provider(provider)
        if not models:
            continue
        status = "configured" if provider in available else "no credential"
        lines.append(f"{provider} ({status})")
        for model in models:
            caps = ", ".join(sorted(c.value for c in model.capabilities))
            aliases = f" [aliases: {', '.join(model.aliases)}]" if model.aliases else ""
            lines.append(
                f"  - {model.model_id}{aliases}: {caps}; {model.context_window:,} tokens; "
                f"cost {model.cost_class.name.lower()}"
            )
    return ToolResult(
        text="\n".join(lines),
        metadata={"available_providers": [p.value for p in order if p in available]},
    )


async def version(
    selection: None, arguments: IntrospectionArguments, context: ToolContext
) -> ToolResult:
    from tool_gateway import __version__

    tools = sorted(context.registry.names()) if context.registry else []
    providers = [p.value for p in context.router.available_providers()] if context.router else []
    text = (
        f"tool-gateway {__version__}\n"
        f"Configured providers: {', '.join(providers) or 'none'}\n"
        f"Tools: {', '.join(tools)}"
    )
    return ToolResult(text=text, metadata={"version": __version__})


def _model_tool(
    name: str,
    description: str,
    system_prompt: str,
    arguments_model: type[ToolArguments] = FileToolArguments,
    *,
    capabilities: frozenset[Capability] = TEXT,
) -> ToolDefinition:
    fields = arguments_model.model_fields
    return ToolDefinition(
        name=name,
        description=description,
        required_capabilities=capabilities,
        arguments_model=arguments_model,
        handler=make_generation_handler(system_prompt),
        accepts_files="files" in fields,
        accepts_images="images" in fields,
    )


def build_default_registry() -> ToolRegistry:
    return ToolRegistry(
        [
            _model_tool(
                "chat",
                "General conversation and brainstorming with a second model",
                "You are a senior engineer acting as a thoughtful collaborator.",
            ),
            _model_tool(
                "thinkdeep",
                "Extended reasoning to challenge and deepen an analysis",
                "Think deeply about the problem and surface what the caller missed.",
            ),
            _model_tool(
                "codereview",
                "Code review covering quality, security and performance",
                "You are an expert code reviewer. Report issues by severity.",
                CodeReviewArguments,
            ),
            _model_tool(
                "debug",
                "Root-cause analysis of bugs and errors",
                "You are a debugging expert. Identify the root cause and a minimal fix.",
                DebugArguments,
            ),
            _model_tool(
                "analyze",
                "Architecture and codebase analysis",
                "Analyze the provided code for structure, patterns and risks.",
            ),
            _model_tool(
                "consensus",
                "A stance-driven second opinion on a proposal",
                "Evaluate the proposal from the requested stance, then give a verdict.",
                ConsensusArguments,
            ),
            _model_tool(
                "planner",
                "Step-by-step planning of a project or change",
                "Break the task into concrete, ordered steps.",
                PlannerArguments,
            ),
            _model_tool(
                "precommit",
                "Pre-commit validation of pending changes",
                "Check the changes for regressions and incomplete work before commit.",
            ),
            _model_tool(
                "testgen",
                "Test generation with edge-case coverage",
                "Write thorough tests, including edge cases, for the given code.",
            ),
            _model_tool(
                "refactor",
                "Refactoring opportunities and decomposition",
                "Propose refactorings that improve structure without changing behavior.",
            ),
            _model_tool(
                "tracer",
                "Call-flow and dependency tracing",
                "Trace execution flow and dependencies through the given code.",
            ),
            _model_tool(
                "seer",
                "Visual analysis of screenshots, diagrams and images",
                "Describe and analyze the attached images precisely.",
                ImageToolArguments,
                capabilities=VISION,
            ),
            ToolDefinition(
                name="listmodels",
                description="List every model by provider and whether it is usable",
                required_capabilities=frozenset(),
                arguments_model=IntrospectionArguments,
                handler=list_models,
                requires_model=False,
            ),
            ToolDefinition(
                name="version",
                description="Show the gateway version and configuration summary",
                required_capabilities=frozenset(),
                arguments_model=IntrospectionArguments,
                handler=version,
                requires_model=False,
            ),
        ]
    )
