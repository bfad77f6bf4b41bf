"""
Provider clients with one uniform ``generate()`` method.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Protocol, Self, Sequence, Type

from anthropic import AsyncAnthropic
from anthropic.types import Message
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion

from tool_gateway.adapters import (
    AnthropicRequestAdapter,
    GeminiRequestAdapter,
    OpenAIRequestAdapter,
)
from tool_gateway.attachments import EncodedImage, encode_image, validate_images
from tool_gateway.config import GatewayConfig
from tool_gateway.errors import classify_error
from tool_gateway.provider import Provider
from tool_gateway.types import GenerationRequest, GenerationResult, ModelDescriptor

__all__ = [
    "RequestAdapter",
    "BaseProviderClient",
    "OpenAICompatibleClient",
    "OpenAIClient",
    "GeminiClient",
    "XAIClient",
    "OpenRouterClient",
    "CustomClient",
    "AnthropicClient",
    "create_client",
]


class RequestAdapter(Protocol):
    """Protocol for adapting between the canonical format and a provider's format."""

    def to_provider(
        self,
        request: GenerationRequest,
        model: str,
        images: Sequence[EncodedImage] = (),
    ) -> dict[str, Any]:
        """Convert a canonical request to provider-specific request arguments."""
        ...

    def from_provider(self, raw: Any) -> GenerationResult:
        """Convert a provider response to a canonical GenerationResult."""
        ...


class BaseProviderClient(ABC):
    """
    Abstract base class for async provider clients bound to one model.
    """

    provider: ClassVar[Provider]

    def __init__(
        self,
        model: ModelDescriptor,
        *,
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        self.descriptor = model
        self.model = model.model_id
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.name = name or self.__class__.__name__

    @abstractmethod
    async def _generate_impl(
        self,
        request: GenerationRequest,
        images: Sequence[EncodedImage],
    ) -> Any:
        """
        Core asynchronous call to the provider. Must be implemented by subclasses.

        Args:
            request: The canonical generation request.
            images: Validated, encoded image attachments.

        Returns:
            The raw provider response.
        """
        ...

    @property
    @abstractmethod
    def adapter(self) -> RequestAdapter:
        """Request adapter for this provider."""
        ...

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Send a generation request and return the canonical result.

        Attachments are validated before any network traffic. Provider
        failures are raised as ProviderError tagged transient or permanent;
        exceeding the per-call timeout is transient.
        """
        media_types = validate_images(request.images, self.descriptor)
        images = [encode_image(ref, mt) for ref, mt in zip(request.images, media_types)]

        try:
            raw = await asyncio.wait_for(
                self._generate_impl(request, images), timeout=self.timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise classify_error(exc, self.provider.value, self.logger) from exc

        result = self.adapter.from_provider(raw)
        result.provider = self.provider.value
        result.model = result.model or self.model
        return result

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

    # --- lifecycle ---------------------------------------------------------
    async def aclose(self) -> None:
        """
        Close underlying async HTTP clients to avoid cleanup after the loop closes.
        Safe to call multiple times.
        """
        client = getattr(self, "_client", None)
        close = getattr(client, "close", None)
        if close:
            await close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model!r})"


class OpenAICompatibleClient(BaseProviderClient):
    """
    Client for any endpoint speaking the OpenAI chat-completions API.

    Use ``from_client`` when you already have an ``AsyncOpenAI`` instance.
    """

    default_base_url: ClassVar[Optional[str]] = None
    adapter_class: ClassVar[Type[OpenAIRequestAdapter]] = OpenAIRequestAdapter

    def __init__(
        self,
        model: ModelDescriptor,
        *,
        api_key: str,
        timeout: float = 120.0,
        max_retries: int = 0,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        super().__init__(model, timeout=timeout, logger=logger, name=name)
        self.api_key = api_key
        self._client = AsyncOpenAI(
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            base_url=base_url or self.default_base_url,
        )
        self._adapter = self.adapter_class()

    @classmethod
    def from_client(
        cls,
        model: ModelDescriptor,
        client: AsyncOpenAI,
        *,
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """
        Build a client around an already-configured ``AsyncOpenAI`` client.
        """
        if not isinstance(client, AsyncOpenAI):
            raise TypeError(
                f"{cls.__name__}.from_client expects AsyncOpenAI; got {type(client).__name__}"
            )

        self = cls.__new__(cls)  # bypass __init__
        BaseProviderClient.__init__(self, model, timeout=timeout, logger=logger, name=name)
        self.api_key = client.api_key or ""
        self._client = client
        self._adapter = cls.adapter_class()
        return self

    @property
    def adapter(self) -> RequestAdapter:
        return self._adapter

    async def _generate_impl(
        self,
        request: GenerationRequest,
        images: Sequence[EncodedImage],
    ) -> ChatCompletion:
        args = {
            "model": self.model,
            **self._adapter.to_provider(request, self.model, images),
        }
        self._log(
            f"Sending request to {self.provider.value} model {self.model} "
            f"({len(args['messages'])} messages, {len(images)} images)",
            logging.DEBUG,
        )
        response: ChatCompletion = await self._client.chat.completions.create(**args)
        return response


class OpenAIClient(OpenAICompatibleClient):
    provider = Provider.OPENAI


_DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class GeminiClient(OpenAICompatibleClient):
    """
    Gemini via the OpenAI-compatible endpoint.
    """

    provider = Provider.GEMINI
    default_base_url = _DEFAULT_GEMINI_BASE_URL
    adapter_class = GeminiRequestAdapter


class XAIClient(OpenAICompatibleClient):
    provider = Provider.XAI
    default_base_url = "https://api.x.ai/v1"


class OpenRouterClient(OpenAICompatibleClient):
    provider = Provider.OPENROUTER
    default_base_url = "https://openrouter.ai/api/v1"


class CustomClient(OpenAICompatibleClient):
    """Self-hosted OpenAI-compatible endpoint (Ollama, vLLM, LM Studio)."""

    provider = Provider.CUSTOM

    def __init__(self, model: ModelDescriptor, *, base_url: Optional[str] = None, **kwargs: Any) -> None:
        if not base_url:
            raise ValueError("CustomClient requires base_url (CUSTOM_API_URL)")
        super().__init__(model, base_url=base_url, **kwargs)


class AnthropicClient(BaseProviderClient):
    """
    Anthropic Messages API client.

    Use ``AnthropicClient.from_client`` when you already have an ``AsyncAnthropic`` instance.
    """

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        model: ModelDescriptor,
        *,
        api_key: str,
        timeout: float = 120.0,
        max_retries: int = 0,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        super().__init__(model, timeout=timeout, logger=logger, name=name)
        self.api_key = api_key
        self._client = AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            base_url=base_url,
        )
        self._adapter = AnthropicRequestAdapter()

    @classmethod
    def from_client(
        cls,
        model: ModelDescriptor,
        client: AsyncAnthropic,
        *,
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """
        Wrap an existing ``AsyncAnthropic`` client.
        """
        if not isinstance(client, AsyncAnthropic):
            raise TypeError(
                f"AnthropicClient.from_client expects AsyncAnthropic; got {type(client).__name__}"
            )

        self = cls.__new__(cls)  # bypass __init__
        BaseProviderClient.__init__(self, model, timeout=timeout, logger=logger, name=name)
        self.api_key = client.api_key or ""
        self._client = client
        self._adapter = AnthropicRequestAdapter()
        return self

    @property
    def adapter(self) -> RequestAdapter:
        return self._adapter

    async def _generate_impl(
        self,
        request: GenerationRequest,
        images: Sequence[EncodedImage],
    ) -> Message:
        args = {
            "model": self.model,
            **self._adapter.to_provider(request, self.model, images),
        }
        self._log(
            f"Sending request to Anthropic model {self.model} "
            f"({len(args['messages'])} messages, {len(images)} images)",
            logging.DEBUG,
        )
        response: Message = await self._client.messages.create(**args)
        return response


# Factory for creating provider clients

_CLIENT_REGISTRY: dict[Provider, Type[BaseProviderClient]] = {
    Provider.OPENAI: OpenAIClient,
    Provider.ANTHROPIC: AnthropicClient,
    Provider.GEMINI: GeminiClient,
    Provider.XAI: XAIClient,
    Provider.OPENROUTER: OpenRouterClient,
    Provider.CUSTOM: CustomClient,
}


def create_client(
    model: ModelDescriptor,
    *,
    config: GatewayConfig,
    logger: logging.Logger | None = None,
    **provider_kwargs: Any,
) -> BaseProviderClient:
    """
    Factory for creating the client variant that serves *model*.

    Args:
        model: The catalog entry to bind.
        config: Supplies the credential, the per-call timeout and, for the
            custom provider, the endpoint URL.
        logger: Optional custom logger.
        **provider_kwargs: Any extra args to pass through (max_retries, base_url).
    """
    provider = Provider(model.provider)
    try:
        client_cls = _CLIENT_REGISTRY[provider]
    except KeyError as exc:
        raise ValueError(f"Unsupported provider: {provider}") from exc

    if provider is Provider.CUSTOM:
        provider_kwargs.setdefault("base_url", config.custom_api_url)

    return client_cls(
        model,
        api_key=config.credential(provider),
        timeout=config.provider_timeout,
        logger=logger,
        **provider_kwargs,
    )
