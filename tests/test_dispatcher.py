"""End-to-end request lifecycle through the dispatcher with a scripted provider."""

import asyncio

import pytest
from pydantic import BaseModel, ConfigDict

from conftest import HOST_ROOT, Hang
from tool_gateway.catalog import build_catalog
from tool_gateway.config import GatewayConfig
from tool_gateway.conversation import ConversationManager
from tool_gateway.dispatcher import Dispatcher
from tool_gateway.paths import PathTranslator
from tool_gateway.provider import Provider
from tool_gateway.registry import ToolDefinition, ToolRegistry
from tool_gateway.router import ModelRouter
from tool_gateway.storage import InMemoryThreadStore
from tool_gateway.tools import build_default_registry
from tool_gateway.types import ToolRequest, TransportKind

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _request(tool, **arguments):
    return ToolRequest(tool_name=tool, arguments=arguments, transport=TransportKind.STREAM)


class YieldingStore(InMemoryThreadStore):
    """In-memory store that yields to the event loop on every read, like a network store."""

    async def get(self, token):
        await asyncio.sleep(0)
        return await super().get(token)


def _wired(config, script, store=None, registry=None):
    conversations = ConversationManager(store or InMemoryThreadStore(), max_turns=config.max_turns)
    catalog = build_catalog(config.custom_model_name if config.custom_api_url else None)
    router = ModelRouter(config, catalog, client_factory=script.factory)
    dispatcher = Dispatcher(
        registry or build_default_registry(),
        router,
        conversations,
        PathTranslator(config.mounts),
        retry=config.retry,
    )
    return dispatcher, conversations


class TestSuccessfulCalls:
    """A request that reaches a model and comes back with a thread."""

    @pytest.mark.asyncio
    async def test_chat_selects_cheapest_preferred_model(self, dispatcher, script, conversations):
        response = await dispatcher.dispatch(_request("chat", prompt="Explain this stack trace"))

        assert response.status == "success"
        assert response.error is None
        assert response.provider == "gemini"
        assert response.model == "gemini-2.5-flash"
        assert response.content == "reply from gemini-2.5-flash"
        assert response.usage["total_tokens"] == 15
        assert response.remaining_turns == 4

        thread = await conversations.get_thread(response.continuation_id)
        assert [t.role for t in thread.turns] == ["user", "assistant"]
        assert [t.index for t in thread.turns] == [0, 1]
        assert thread.turns[1].model_name == "gemini-2.5-flash"
        assert thread.turns[1].model_provider == "gemini"

    @pytest.mark.asyncio
    async def test_continuation_replays_history(self, dispatcher, script):
        first = await dispatcher.dispatch(_request("chat", prompt="first question"))
        second = await dispatcher.dispatch(
            _request("chat", prompt="follow up", continuation_id=first.continuation_id)
        )

        assert second.continuation_id == first.continuation_id
        assert second.remaining_turns == 2

        _, request, _ = script.calls[-1]
        assert [t.content for t in request.history] == [
            "first question",
            "reply from gemini-2.5-flash",
        ]
        assert request.prompt.startswith("follow up")

    @pytest.mark.asyncio
    async def test_files_are_embedded_in_prompt(self, dispatcher, script, sandbox):
        (sandbox / "main.py").write_text("print('hello')\n")

        response = await dispatcher.dispatch(
            _request("codereview", prompt="Review this", files=[f"{HOST_ROOT}/main.py"])
        )

        assert response.status == "success"
        _, request, _ = script.calls[0]
        assert f"--- BEGIN FILE: {HOST_ROOT}/main.py ---" in request.prompt
        assert "print('hello')" in request.prompt
        assert "Review type: full" in request.prompt

    @pytest.mark.asyncio
    async def test_seer_sends_validated_image(self, dispatcher, script, sandbox, conversations):
        (sandbox / "screenshot.png").write_bytes(PNG)

        response = await dispatcher.dispatch(
            _request("seer", prompt="What is shown?", images=[f"{HOST_ROOT}/screenshot.png"])
        )

        assert response.status == "success"
        model, _, images = script.calls[0]
        assert model == "gemini-2.5-flash"
        assert len(images) == 1
        assert images[0].media_type == "image/png"

        thread = await conversations.get_thread(response.continuation_id)
        ref = thread.turns[0].files[0]
        assert ref.host_path == f"{HOST_ROOT}/screenshot.png"
        assert ref.sandbox_path == str(sandbox / "screenshot.png")

    @pytest.mark.asyncio
    async def test_explicit_model_alias(self, dispatcher, script):
        response = await dispatcher.dispatch(_request("chat", prompt="hi", model="sonnet"))

        assert response.provider == "anthropic"
        assert response.model == "claude-sonnet-4-0"

    @pytest.mark.asyncio
    async def test_listmodels_needs_no_model_or_thread(self, dispatcher, script, store):
        response = await dispatcher.dispatch(_request("listmodels"))

        assert response.status == "success"
        assert response.continuation_id is None
        assert "gemini (configured)" in response.content
        assert "xai (no credential)" in response.content
        assert script.calls == []
        assert len(store) == 0


class TestRetryAndFallback:
    """Transient failures advance through candidates; others surface at once."""

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_next_candidate(self, dispatcher, script):
        script.timeout = 0.05
        script.add("gemini-2.5-flash", Hang())

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.status == "success"
        assert response.model == "gemini-2.5-pro"
        assert script.models_called == ["gemini-2.5-flash", "gemini-2.5-pro"]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_keep_the_thread(self, dispatcher, script, conversations):
        for model in ("gemini-2.5-flash", "gemini-2.5-pro", "gpt-4.1"):
            script.add(model, TimeoutError("upstream timed out"))

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.status == "error"
        assert response.error.kind == "NoAvailableModelError"
        assert response.error.code == -32002
        assert response.error.exit_code == 6
        assert len(script.calls) == 3

        # the user turn survives so the caller can retry on the same thread
        thread = await conversations.get_thread(response.continuation_id)
        assert [t.role for t in thread.turns] == ["user"]

        retry = await dispatcher.dispatch(
            _request("chat", prompt="again", continuation_id=response.continuation_id)
        )
        assert retry.status == "success"
        thread = await conversations.get_thread(response.continuation_id)
        assert [t.index for t in thread.turns] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_explicit_model_is_retried_not_replaced(self, dispatcher, script):
        script.add("o3", TimeoutError(), TimeoutError())

        response = await dispatcher.dispatch(_request("chat", prompt="hi", model="o3"))

        assert response.status == "success"
        assert response.model == "o3"
        assert script.models_called == ["o3", "o3", "o3"]

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, dispatcher, script):
        script.add("gemini-2.5-flash", ValueError("invalid api key"))

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.error.kind == "ProviderError.permanent"
        assert response.error.exit_code == 7
        assert "invalid api key" in response.error.message
        assert len(script.calls) == 1

    @pytest.mark.asyncio
    async def test_short_chain_keeps_full_attempt_budget(self, config, script):
        xai_only = GatewayConfig(credentials={Provider.XAI: "xai-key"}, retry=config.retry)
        dispatcher, _ = _wired(xai_only, script)
        script.add("grok-3", TimeoutError())
        script.add("grok-3-fast", TimeoutError())

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.status == "success"
        assert response.model == "grok-3-fast"
        assert script.models_called == ["grok-3", "grok-3-fast", "grok-3-fast"]

    @pytest.mark.asyncio
    async def test_last_candidate_takes_remaining_attempts(self, config, script):
        xai_only = GatewayConfig(credentials={Provider.XAI: "xai-key"}, retry=config.retry)
        dispatcher, _ = _wired(xai_only, script)
        script.add("grok-3", TimeoutError())
        script.add("grok-3-fast", TimeoutError(), TimeoutError())

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.error.kind == "NoAvailableModelError"
        assert script.models_called == ["grok-3", "grok-3-fast", "grok-3-fast"]

    @pytest.mark.asyncio
    async def test_single_candidate_chain_is_retried(self, config, script):
        custom_only = GatewayConfig(
            credentials={Provider.CUSTOM: "EMPTY"},
            custom_api_url="http://localhost:11434/v1",
            retry=config.retry,
        )
        dispatcher, _ = _wired(custom_only, script)
        script.add("llama3.2", TimeoutError(), TimeoutError())

        response = await dispatcher.dispatch(_request("chat", prompt="hi"))

        assert response.status == "success"
        assert response.provider == "custom"
        assert script.models_called == ["llama3.2", "llama3.2", "llama3.2"]


class TestConcurrentContinuations:
    """Calls racing on one thread never overrun its turn limit."""

    @pytest.mark.asyncio
    async def test_only_one_call_gets_the_last_exchange(self, config, script):
        dispatcher, conversations = _wired(config, script, store=YieldingStore())
        first = await dispatcher.dispatch(_request("chat", prompt="one"))
        token = first.continuation_id
        await dispatcher.dispatch(_request("chat", prompt="two", continuation_id=token))

        responses = await asyncio.gather(
            dispatcher.dispatch(_request("chat", prompt="three a", continuation_id=token)),
            dispatcher.dispatch(_request("chat", prompt="three b", continuation_id=token)),
        )

        assert sorted(r.status for r in responses) == ["error", "success"]
        failed = next(r for r in responses if r.status == "error")
        assert failed.error.kind == "ThreadFullError"
        thread = await conversations.get_thread(token)
        assert [t.role for t in thread.turns] == ["user", "assistant"] * 3
        assert len(script.calls) == 3

    @pytest.mark.asyncio
    async def test_each_call_sees_only_earlier_turns(self, config, script):
        dispatcher, conversations = _wired(config, script, store=YieldingStore())
        first = await dispatcher.dispatch(_request("chat", prompt="opening"))
        token = first.continuation_id

        responses = await asyncio.gather(
            dispatcher.dispatch(_request("chat", prompt="left", continuation_id=token)),
            dispatcher.dispatch(_request("chat", prompt="right", continuation_id=token)),
        )

        assert [r.status for r in responses] == ["success", "success"]
        thread = await conversations.get_thread(token)
        assert [t.index for t in thread.turns] == [0, 1, 2, 3, 4, 5]
        for _, request, _ in script.calls[1:]:
            own = request.prompt.split("\n\n")[0]
            assert own not in [t.content for t in request.history]
            assert [t.content for t in request.history][:2] == [
                "opening",
                "reply from gemini-2.5-flash",
            ]


class TestFailures:
    """Errors short-circuit into an error response with the right kind."""

    @pytest.mark.asyncio
    async def test_path_outside_workspace(self, dispatcher, script, store):
        response = await dispatcher.dispatch(
            _request("chat", prompt="read this", files=["/etc/passwd"])
        )

        assert response.error.kind == "PathOutsideWorkspaceError"
        assert response.error.code == -32007
        assert response.error.exit_code == 11
        assert script.calls == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_path_traversal(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("chat", prompt="x", files=[f"{HOST_ROOT}/../../etc/passwd"])
        )

        assert response.error.kind == "PathTraversalError"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher):
        response = await dispatcher.dispatch(_request("rm_rf", prompt="x"))

        assert response.error.kind == "UnknownToolError"
        assert response.error.code == -32601

    @pytest.mark.asyncio
    async def test_unknown_model_is_not_substituted(self, dispatcher, script):
        response = await dispatcher.dispatch(_request("chat", prompt="x", model="gpt-9"))

        assert response.error.kind == "ModelNotFoundError"
        assert script.calls == []

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, dispatcher):
        response = await dispatcher.dispatch(_request("chat", prompt="", temperature=5))

        assert response.error.kind == "ArgumentError"
        assert "prompt" in response.error.message
        assert "temperature" in response.error.message

    @pytest.mark.asyncio
    async def test_images_rejected_by_text_tool(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("chat", prompt="x", images=[f"{HOST_ROOT}/a.png"])
        )

        assert response.error.kind == "ArgumentError"

    @pytest.mark.asyncio
    async def test_unknown_continuation(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("chat", prompt="x", continuation_id="not-a-thread")
        )

        assert response.error.kind == "ThreadNotFoundError"
        assert response.error.exit_code == 9

    @pytest.mark.asyncio
    async def test_thread_full(self, dispatcher, script):
        token = None
        for _ in range(3):
            response = await dispatcher.dispatch(
                _request("chat", prompt="again", continuation_id=token)
            )
            token = response.continuation_id
        assert response.remaining_turns == 0

        response = await dispatcher.dispatch(
            _request("chat", prompt="one more", continuation_id=token)
        )

        assert response.error.kind == "ThreadFullError"
        assert response.error.exit_code == 10
        assert len(script.calls) == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal_error(self, router, conversations, config):
        class NoArguments(BaseModel):
            model_config = ConfigDict(extra="forbid")

        async def explode(selection, arguments, context):
            raise RuntimeError("boom")

        registry = ToolRegistry(
            [
                ToolDefinition(
                    name="explode",
                    description="always fails",
                    required_capabilities=frozenset(),
                    arguments_model=NoArguments,
                    handler=explode,
                    requires_model=False,
                )
            ]
        )
        dispatcher = Dispatcher(registry, router, conversations, PathTranslator(config.mounts))

        response = await dispatcher.dispatch(_request("explode"))

        assert response.error.kind == "InternalError"
        assert response.error.code == -32603
        assert response.error.exit_code == 1
        assert "boom" in response.error.message

    @pytest.mark.asyncio
    async def test_unexpected_exception_after_thread_opened_keeps_token(self, config, script):
        class PromptOnly(BaseModel):
            model_config = ConfigDict(extra="forbid")
            prompt: str
            continuation_id: str | None = None

        async def explode(selection, arguments, context):
            raise RuntimeError("collaborator crashed")

        registry = ToolRegistry(
            [
                ToolDefinition(
                    name="fragile",
                    description="model-backed tool that fails",
                    required_capabilities=frozenset(),
                    arguments_model=PromptOnly,
                    handler=explode,
                )
            ]
        )
        dispatcher, conversations = _wired(config, script, registry=registry)

        response = await dispatcher.dispatch(_request("fragile", prompt="hello"))

        assert response.error.kind == "InternalError"
        assert "collaborator crashed" in response.error.message
        assert response.continuation_id is not None
        thread = await conversations.get_thread(response.continuation_id)
        assert [t.role for t in thread.turns] == ["user"]

        again = await dispatcher.dispatch(
            _request("fragile", prompt="retry", continuation_id=response.continuation_id)
        )
        assert again.continuation_id == response.continuation_id
        thread = await conversations.get_thread(response.continuation_id)
        assert [t.index for t in thread.turns] == [0, 1]
