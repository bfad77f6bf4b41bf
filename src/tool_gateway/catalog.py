"""Static catalog of the models each provider hosts."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from tool_gateway.provider import Provider
from tool_gateway.types import Capability, CostClass, ModelDescriptor

__all__ = ["ModelCatalog", "BUILTIN_MODELS", "build_catalog"]

TEXT = Capability.TEXT_GENERATION
VISION = Capability.VISION_GENERATION
TOOLS = Capability.FUNCTION_CALLING


def _model(
    provider: Provider,
    model_id: str,
    caps: Iterable[Capability],
    cost: CostClass,
    context_window: int,
    *aliases: str,
    max_image_size_mb: float = 20.0,
    description: str = "",
) -> ModelDescriptor:
    return ModelDescriptor(
        provider=provider.value,
        model_id=model_id,
        capabilities=frozenset(caps),
        cost_class=cost,
        context_window=context_window,
        aliases=tuple(aliases),
        max_image_size_mb=max_image_size_mb,
        description=description,
    )


BUILTIN_MODELS: tuple[ModelDescriptor, ...] = (
    _model(Provider.GEMINI, "gemini-2.5-pro", (TEXT, VISION, TOOLS), CostClass.HIGH, 1_048_576,
           "pro", "gemini-pro", description="Deep reasoning, large context"),
    _model(Provider.GEMINI, "gemini-2.5-flash", (TEXT, VISION, TOOLS), CostClass.LOW, 1_048_576,
           "flash", "gemini-flash", description="Fast, low cost"),
    _model(Provider.OPENAI, "o3", (TEXT, VISION, TOOLS), CostClass.HIGH, 200_000,
           description="Strong logical reasoning"),
    _model(Provider.OPENAI, "o4-mini", (TEXT, VISION, TOOLS), CostClass.MEDIUM, 200_000,
           "mini", "o4mini", description="Fast reasoning"),
    _model(Provider.OPENAI, "gpt-4.1", (TEXT, VISION, TOOLS), CostClass.MEDIUM, 1_047_576,
           "gpt4.1", description="Long-context general model"),
    _model(Provider.ANTHROPIC, "claude-sonnet-4-0", (TEXT, VISION, TOOLS), CostClass.MEDIUM, 200_000,
           "sonnet", max_image_size_mb=5.0, description="Balanced coding model"),
    _model(Provider.ANTHROPIC, "claude-3-5-haiku-latest", (TEXT, TOOLS), CostClass.LOW, 200_000,
           "haiku", description="Fast, low cost"),
    _model(Provider.XAI, "grok-3", (TEXT, TOOLS), CostClass.MEDIUM, 131_072,
           "grok", "grok3", description="General reasoning"),
    _model(Provider.XAI, "grok-3-fast", (TEXT, TOOLS), CostClass.HIGH, 131_072,
           "grokfast", description="Low-latency variant of grok-3"),
    _model(Provider.OPENROUTER, "meta-llama/llama-3.3-70b-instruct", (TEXT, TOOLS), CostClass.LOW, 131_072,
           "llama", description="Open-weights model via OpenRouter"),
    _model(Provider.OPENROUTER, "mistralai/mistral-large", (TEXT, TOOLS), CostClass.MEDIUM, 128_000,
           "mistral", description="Mistral's flagship via OpenRouter"),
)


def custom_model(name: str, context_window: int = 32_768) -> ModelDescriptor:
    """Descriptor for the model served by the custom endpoint."""
    return _model(Provider.CUSTOM, name, (TEXT,), CostClass.LOW, context_window,
                  "local", description="Self-hosted model")


class ModelCatalog:
    """Immutable lookup of models by id or alias (case-insensitive)."""

    def __init__(self, models: Iterable[ModelDescriptor]) -> None:
        self._models: tuple[ModelDescriptor, ...] = tuple(models)
        names: dict[str, ModelDescriptor] = {}
        for model in self._models:
            for name in (model.model_id, *model.aliases):
                key = name.lower()
                if key in names and names[key] is not model:
                    raise ValueError(
                        f"Model name {name!r} is used by both "
                        f"{names[key].qualified_name} and {model.qualified_name}"
                    )
                names[key] = model
        self._by_name: Mapping[str, ModelDescriptor] = MappingProxyType(names)

    def lookup(self, name: str) -> ModelDescriptor | None:
        return self._by_name.get(name.strip().lower())

    def for_provider(self, provider: Provider | str) -> tuple[ModelDescriptor, ...]:
        provider = Provider(provider)
        return tuple(m for m in self._models if m.provider == provider.value)

    def available(self, providers: Iterable[Provider]) -> tuple[ModelDescriptor, ...]:
        wanted = {Provider(p).value for p in providers}
        return tuple(m for m in self._models if m.provider in wanted)

    def __iter__(self):
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None


def build_catalog(custom_model_name: str | None = None) -> ModelCatalog:
    models = list(BUILTIN_MODELS)
    if custom_model_name:
        models.append(custom_model(custom_model_name))
    return ModelCatalog(models)
