"""Shared fixtures: a scripted provider client and a fully wired dispatcher."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import pytest

from tool_gateway.attachments import EncodedImage
from tool_gateway.catalog import build_catalog
from tool_gateway.client import BaseProviderClient
from tool_gateway.config import GatewayConfig, RetryPolicy
from tool_gateway.conversation import ConversationManager
from tool_gateway.dispatcher import Dispatcher
from tool_gateway.paths import MountMapping, PathTranslator
from tool_gateway.provider import Provider
from tool_gateway.router import ModelRouter
from tool_gateway.storage import InMemoryThreadStore
from tool_gateway.tools import build_default_registry
from tool_gateway.types import GenerationRequest, GenerationResult, ModelDescriptor

HOST_ROOT = "/Users/dev/project"


class Hang:
    """Script entry that blocks until the client's timeout fires."""


class _PassThroughAdapter:
    def to_provider(self, request, model, images=()):
        return {"prompt": request.prompt}

    def from_provider(self, raw: GenerationResult) -> GenerationResult:
        return raw


class ScriptedClient(BaseProviderClient):
    """Provider client that replays scripted outcomes instead of calling a vendor."""

    def __init__(self, model: ModelDescriptor, script: "ProviderScript", **kwargs: Any) -> None:
        super().__init__(model, **kwargs)
        self.provider = Provider(model.provider)
        self.script = script
        self.closed = False

    @property
    def adapter(self) -> _PassThroughAdapter:
        return _PassThroughAdapter()

    async def _generate_impl(
        self, request: GenerationRequest, images: Sequence[EncodedImage]
    ) -> GenerationResult:
        self.script.calls.append((self.model, request, list(images)))
        outcome = self.script.next_outcome(self.model)
        if isinstance(outcome, Hang):
            await asyncio.sleep(3600)
        if isinstance(outcome, BaseException):
            raise outcome
        return GenerationResult(
            text=outcome,
            usage={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
            finish_reason="stop",
        )

    async def aclose(self) -> None:
        self.closed = True


class ProviderScript:
    """Per-model queues of outcomes; an exhausted queue answers with a default reply."""

    def __init__(self) -> None:
        self.outcomes: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, GenerationRequest, list[EncodedImage]]] = []
        self.timeout = 5.0

    def add(self, model_id: str, *outcomes: Any) -> None:
        self.outcomes.setdefault(model_id, []).extend(outcomes)

    def next_outcome(self, model_id: str) -> Any:
        queue = self.outcomes.get(model_id)
        if queue:
            return queue.pop(0)
        return f"reply from {model_id}"

    def factory(self, model: ModelDescriptor) -> ScriptedClient:
        return ScriptedClient(model, self, timeout=self.timeout)

    @property
    def models_called(self) -> list[str]:
        return [model for model, _, _ in self.calls]


@pytest.fixture
def script() -> ProviderScript:
    return ProviderScript()


@pytest.fixture
def sandbox(tmp_path):
    """Directory the host workspace is mounted at."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def config(sandbox) -> GatewayConfig:
    return GatewayConfig(
        credentials={
            Provider.GEMINI: "gemini-key",
            Provider.OPENAI: "openai-key",
            Provider.ANTHROPIC: "anthropic-key",
        },
        mounts=(MountMapping(HOST_ROOT, str(sandbox)),),
        max_turns=6,
        retry=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
    )


@pytest.fixture
def store() -> InMemoryThreadStore:
    return InMemoryThreadStore()


@pytest.fixture
def conversations(store, config) -> ConversationManager:
    return ConversationManager(
        store,
        max_turns=config.max_turns,
        ttl=config.thread_ttl,
        context_budget=config.context_budget,
    )


@pytest.fixture
def router(config, script) -> ModelRouter:
    return ModelRouter(config, build_catalog(), client_factory=script.factory)


@pytest.fixture
def dispatcher(config, router, conversations) -> Dispatcher:
    return Dispatcher(
        build_default_registry(),
        router,
        conversations,
        PathTranslator(config.mounts),
        retry=config.retry,
    )
