"""
One request lifecycle, from a normalized ToolRequest to a ToolResponse.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tool_gateway.catalog import build_catalog
from tool_gateway.config import GatewayConfig, RetryPolicy
from tool_gateway.conversation import ConversationManager
from tool_gateway.errors import (
    INTERNAL_ERROR_CODE,
    INTERNAL_EXIT_CODE,
    GatewayError,
    InternalError,
    NoAvailableModelError,
    is_transient,
)
from tool_gateway.paths import PathTranslator
from tool_gateway.registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from tool_gateway.router import ModelRouter, ModelSelection, is_generic_hint
from tool_gateway.storage import create_store
from tool_gateway.tools import build_default_registry
from tool_gateway.types import ErrorInfo, FileRef, ModelDescriptor, ToolRequest, ToolResponse, TurnDraft

__all__ = ["Dispatcher", "build_dispatcher"]

_logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Orchestrates registry, router, path translator and conversation manager.

    All collaborators are constructed once and passed in; the dispatcher holds
    no other state, so any number of requests may run through it concurrently.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        router: ModelRouter,
        conversations: ConversationManager,
        translator: PathTranslator,
        *,
        retry: RetryPolicy | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.router = router
        self.conversations = conversations
        self.translator = translator
        self.retry = retry or router.config.retry
        self.logger = logger or _logger

    async def dispatch(self, request: ToolRequest) -> ToolResponse:
        """Run one request; every failure comes back as an error response."""
        self.logger.info(
            "Dispatching %s (request %s via %s)",
            request.tool_name, request.request_id, request.transport,
        )
        try:
            return await self._run(request)
        except InternalError as exc:
            self.logger.error(
                "Unexpected failure in request %s", request.request_id, exc_info=exc.__cause__
            )
            return self.error_response(request, exc)
        except GatewayError as exc:
            self.logger.warning(
                "Request %s for %s failed: %s: %s",
                request.request_id, request.tool_name, exc.kind, exc,
            )
            return self.error_response(request, exc)
        except Exception as exc:
            self.logger.exception("Unexpected failure in request %s", request.request_id)
            return self.error_response(request, exc)

    @staticmethod
    def error_response(request: ToolRequest, exc: Exception) -> ToolResponse:
        if isinstance(exc, GatewayError):
            info = ErrorInfo(kind=exc.kind, code=exc.code, exit_code=exc.exit_code, message=str(exc))
        else:
            info = ErrorInfo(
                kind="InternalError",
                code=INTERNAL_ERROR_CODE,
                exit_code=INTERNAL_EXIT_CODE,
                message=f"{type(exc).__name__}: {exc}",
            )
        # a thread that was opened before the failure stays usable
        token = getattr(exc, "continuation_id", None)
        return ToolResponse(
            request_id=request.request_id,
            tool_name=request.tool_name,
            status="error",
            continuation_id=token,
            error=info,
        )

    async def _run(self, request: ToolRequest) -> ToolResponse:
        definition = self.registry.resolve(request.tool_name)
        arguments = definition.parse_arguments(request.arguments)

        if not definition.requires_model:
            context = ToolContext(router=self.router, registry=self.registry)
            result = await definition.handler(None, arguments, context)
            return self._success(request, result)

        hint = getattr(arguments, "model", None)
        candidates = self.router.candidates(
            definition.required_capabilities, hint, getattr(arguments, "provider", None)
        )

        files = self.translator.translate_all(getattr(arguments, "files", []))
        images = self.translator.translate_all(getattr(arguments, "images", []))

        draft = TurnDraft(
            role="user",
            content=arguments.prompt,
            files=files + images,
            tool_name=definition.name,
        )
        token, turn_index = await self.conversations.begin_exchange(
            getattr(arguments, "continuation_id", None), definition.name, draft
        )
        try:
            return await self._generate(
                request, definition, arguments, candidates, token, turn_index, images
            )
        except GatewayError as exc:
            # the thread survives so the caller can retry with the same continuation_id
            exc.continuation_id = token
            raise
        except Exception as exc:
            error = InternalError(f"{type(exc).__name__}: {exc}")
            error.continuation_id = token
            raise error from exc
        finally:
            self.conversations.end_exchange(token, turn_index)

    async def _generate(
        self,
        request: ToolRequest,
        definition: ToolDefinition,
        arguments: BaseModel,
        candidates: list[ModelDescriptor],
        token: str,
        turn_index: int,
        images: list[FileRef],
    ) -> ToolResponse:
        history = await self.conversations.load_context(token)
        context = ToolContext(
            continuation_id=token,
            turn_index=turn_index,
            history=history,
            files=ConversationManager.collect_files(history),
            images=images,
            router=self.router,
            registry=self.registry,
        )

        # automatic selection falls through the candidate chain; an explicit model is retried as-is
        hint = (getattr(arguments, "model", None) or "").strip() or self.router.config.default_model
        advance = is_generic_hint(hint)
        selection, result = await self._invoke_with_fallback(
            definition, arguments, context, candidates, advance
        )

        await self.conversations.append_turn(
            token,
            TurnDraft(
                role="assistant",
                content=result.text,
                files=list(result.attachments),
                tool_name=definition.name,
                model_provider=selection.model.provider,
                model_name=selection.model.model_id,
            ),
            reply_to=turn_index,
        )
        remaining = await self.conversations.remaining_turns(token)
        return self._success(request, result, selection=selection, token=token, remaining=remaining)

    async def _invoke_with_fallback(
        self,
        definition: ToolDefinition,
        arguments: BaseModel,
        context: ToolContext,
        candidates: list[ModelDescriptor],
        advance: bool,
    ) -> tuple[ModelSelection, ToolResult]:
        policy = self.retry
        attempts = policy.max_attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    # the last candidate takes any attempts left over
                    position = min(number - 1, len(candidates) - 1) if advance else 0
                    model = candidates[position]
                    selection = self.router.bind(model)
                    self.logger.info(
                        "Running %s on %s (attempt %d/%d)",
                        definition.name, model.qualified_name, number, attempts,
                    )
                    result = await definition.handler(selection, arguments, context)
                    return selection, result
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise NoAvailableModelError(
                f"All {attempts} attempts failed with transient provider errors; last: {last}"
            ) from last
        raise AssertionError("retry loop exited without a result")

    def _success(
        self,
        request: ToolRequest,
        result: ToolResult,
        *,
        selection: ModelSelection | None = None,
        token: str | None = None,
        remaining: int | None = None,
    ) -> ToolResponse:
        metadata = dict(result.metadata)
        if result.finish_reason:
            metadata["finish_reason"] = result.finish_reason
        if result.attachments:
            metadata["attachments"] = [ref.host_path for ref in result.attachments]
        return ToolResponse(
            request_id=request.request_id,
            tool_name=request.tool_name,
            status="success",
            content=result.text,
            continuation_id=token,
            model=selection.model.model_id if selection else None,
            provider=selection.model.provider if selection else None,
            usage=dict(result.usage),
            remaining_turns=remaining,
            metadata=metadata,
        )

    async def aclose(self) -> None:
        await self.router.aclose()
        await self.conversations.store.aclose()

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def build_dispatcher(config: GatewayConfig, *, registry: ToolRegistry | None = None) -> Dispatcher:
    """Wire the default collaborators for *config*."""
    catalog = build_catalog(config.custom_model_name if config.custom_api_url else None)
    conversations = ConversationManager(
        create_store(config),
        max_turns=config.max_turns,
        ttl=config.thread_ttl,
        context_budget=config.context_budget,
    )
    return Dispatcher(
        registry or build_default_registry(),
        ModelRouter(config, catalog),
        conversations,
        PathTranslator(config.mounts),
        retry=config.retry,
    )
