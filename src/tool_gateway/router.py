"""
Model selection.

``ModelRouter`` turns a tool's capability requirements plus an optional model
hint into an ordered list of candidate models, and binds a provider client to
the one being tried. Selection is deterministic: the same configuration and
catalog always produce the same candidates in the same order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from tool_gateway.catalog import ModelCatalog
from tool_gateway.client import BaseProviderClient, create_client
from tool_gateway.config import GatewayConfig
from tool_gateway.errors import ModelNotFoundError, NoAvailableModelError
from tool_gateway.provider import Provider
from tool_gateway.types import Capability, ModelDescriptor

__all__ = ["ModelRouter", "ModelSelection", "GENERIC_ALIASES", "is_generic_hint"]

_logger = logging.getLogger(__name__)

# hints that ask for automatic selection, with the capabilities they add
GENERIC_ALIASES: dict[str, frozenset[Capability]] = {
    "auto": frozenset(),
    "text": frozenset({Capability.TEXT_GENERATION}),
    "vision": frozenset({Capability.VISION_GENERATION}),
    "tools": frozenset({Capability.FUNCTION_CALLING}),
}

ClientFactory = Callable[[ModelDescriptor], BaseProviderClient]


def is_generic_hint(hint: str | None) -> bool:
    return hint is None or hint.strip().lower() in GENERIC_ALIASES


def _caps(required: Iterable[Capability]) -> str:
    return ", ".join(sorted(c.value for c in required)) or "none"


@dataclass(frozen=True, slots=True)
class ModelSelection:
    """A catalog model with the provider client bound to it."""

    model: ModelDescriptor
    client: BaseProviderClient


class ModelRouter:
    def __init__(
        self,
        config: GatewayConfig,
        catalog: ModelCatalog,
        *,
        client_factory: Optional[ClientFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.catalog = catalog
        self.logger = logger or _logger
        self._client_factory = client_factory or (
            lambda model: create_client(model, config=config)
        )
        self._clients: dict[str, BaseProviderClient] = {}

    def available_providers(self) -> tuple[Provider, ...]:
        """Credentialed providers in preference order."""
        return tuple(p for p in self.config.provider_preference if self.config.has_credential(p))

    def candidates(
        self,
        required: Iterable[Capability],
        hint: str | None = None,
        provider: str | None = None,
    ) -> list[ModelDescriptor]:
        """
        Ordered fallback chain of models satisfying *required*.

        An explicit model hint yields exactly that model or ModelNotFoundError;
        a generic hint runs automatic selection, raising NoAvailableModelError
        when nothing qualifies.
        """
        required = frozenset(required)
        restrict = self._parse_provider(provider)
        if hint is None or not hint.strip():
            hint = self.config.default_model

        if not is_generic_hint(hint):
            return [self._resolve_explicit(hint, required, restrict)]

        required = required | GENERIC_ALIASES[hint.strip().lower()]
        chain: list[ModelDescriptor] = []

        if Capability.VISION_GENERATION in required and self.config.default_vision_model:
            preferred = self.catalog.lookup(self.config.default_vision_model)
            if preferred is not None and self._usable(preferred, required, restrict):
                chain.append(preferred)
            else:
                self.logger.warning(
                    "Default vision model %r is unavailable, selecting automatically",
                    self.config.default_vision_model,
                )

        for candidate_provider in self.available_providers():
            if restrict is not None and candidate_provider is not restrict:
                continue
            for model in self._ranked(candidate_provider, required):
                if model not in chain:
                    chain.append(model)

        if not chain:
            scope = f" from provider {restrict.value}" if restrict else ""
            raise NoAvailableModelError(
                f"No configured provider{scope} offers a model with capabilities: {_caps(required)}"
            )
        self.logger.debug(
            "Candidates for [%s]: %s", _caps(required), [m.qualified_name for m in chain]
        )
        return chain

    def select(
        self,
        required: Iterable[Capability],
        hint: str | None = None,
        provider: str | None = None,
    ) -> ModelSelection:
        return self.bind(self.candidates(required, hint, provider)[0])

    def bind(self, model: ModelDescriptor) -> ModelSelection:
        client = self._clients.get(model.qualified_name)
        if client is None:
            client = self._client_factory(model)
            self._clients[model.qualified_name] = client
        return ModelSelection(model=model, client=client)

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aclose()

    def _ranked(self, provider: Provider, required: frozenset[Capability]) -> list[ModelDescriptor]:
        qualifying = [m for m in self.catalog.for_provider(provider) if m.supports(required)]
        # every qualifying model matches all of `required`, so the match count never breaks a tie
        return sorted(qualifying, key=lambda m: (m.cost_class, -m.context_window, m.model_id))

    def _usable(
        self,
        model: ModelDescriptor,
        required: frozenset[Capability],
        restrict: Provider | None,
    ) -> bool:
        return (
            model.supports(required)
            and self.config.has_credential(Provider(model.provider))
            and (restrict is None or model.provider == restrict.value)
        )

    def _resolve_explicit(
        self,
        hint: str,
        required: frozenset[Capability],
        restrict: Provider | None,
    ) -> ModelDescriptor:
        model = self.catalog.lookup(hint)
        if model is None:
            raise ModelNotFoundError(
                f"Model {hint!r} is not in the catalog. Use 'auto' or one of: "
                + ", ".join(sorted(m.model_id for m in self.catalog))
            )
        if restrict is not None and model.provider != restrict.value:
            raise ModelNotFoundError(
                f"Model {model.model_id!r} is hosted by {model.provider}, not {restrict.value}"
            )
        if not model.supports(required):
            missing = required - model.capabilities
            raise ModelNotFoundError(
                f"Model {model.model_id!r} lacks required capabilities: {_caps(missing)}"
            )
        if not self.config.has_credential(Provider(model.provider)):
            raise ModelNotFoundError(
                f"Model {model.model_id!r} requires provider {model.provider}, "
                "which has no configured credential"
            )
        return model

    @staticmethod
    def _parse_provider(provider: str | None) -> Provider | None:
        if provider is None or not provider.strip():
            return None
        try:
            return Provider(provider.strip().lower())
        except ValueError:
            raise ModelNotFoundError(f"Unknown provider {provider!r}") from None
