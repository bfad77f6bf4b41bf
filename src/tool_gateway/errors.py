"""
Gateway error taxonomy, plus translation of noisy provider SDK tracebacks into
a `ProviderError` tagged transient or permanent. The original SDK exception is
preserved as ``__cause__`` for full tracebacks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final, Optional, Type

import anthropic
import openai

__all__: tuple[str, ...] = (
    "GatewayError",
    "ProtocolError",
    "ArgumentError",
    "UnknownToolError",
    "ModelNotFoundError",
    "NoAvailableModelError",
    "ProviderError",
    "InvalidAttachmentError",
    "ThreadNotFoundError",
    "ThreadFullError",
    "PathOutsideWorkspaceError",
    "PathTraversalError",
    "InternalError",
    "INTERNAL_ERROR_CODE",
    "INTERNAL_EXIT_CODE",
    "classify_error",
    "is_transient",
)

INTERNAL_ERROR_CODE: Final = -32603
INTERNAL_EXIT_CODE: Final = 1


class GatewayError(Exception):
    """Base class for every error the gateway reports to a caller.

    Attributes:
        code: Error code used in the stream transport's error envelope.
        exit_code: Process exit status used by the command-line transport.
    """

    code: int = INTERNAL_ERROR_CODE
    exit_code: int = INTERNAL_EXIT_CODE
    # set by the dispatcher once a thread exists for the failed request
    continuation_id: str | None = None

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class ProtocolError(GatewayError):
    """Malformed stream framing or an unknown method name."""

    code = -32600
    exit_code = 3


class ArgumentError(GatewayError):
    """Arguments that do not parse into a mapping or fail the tool's schema."""

    code = -32602
    exit_code = 2


class UnknownToolError(GatewayError):
    code = -32601
    exit_code = 4

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name!r}")
        self.name = name


class ModelNotFoundError(GatewayError):
    """An explicitly requested model cannot be honored."""

    code = -32001
    exit_code = 5


class NoAvailableModelError(GatewayError):
    code = -32002
    exit_code = 6


class ProviderError(GatewayError):
    """Upstream generation failure.

    Attributes:
        transient: True for timeouts, rate limits and upstream outages which a
            caller may retry; False for bad credentials and policy rejections.
        provider: Provider identifier the call was made against.
        original_exc: The underlying SDK exception, if any.
    """

    code = -32003
    exit_code = 7

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        provider: str | None = None,
        original_exc: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.provider = provider
        self.original_exc = original_exc
        if original_exc is not None:
            self.__cause__ = original_exc

    @property
    def kind(self) -> str:
        return "ProviderError.transient" if self.transient else "ProviderError.permanent"


class InvalidAttachmentError(GatewayError):
    code = -32004
    exit_code = 8


class ThreadNotFoundError(GatewayError):
    code = -32005
    exit_code = 9

    def __init__(self, token: str) -> None:
        super().__init__(
            f"Conversation thread {token!r} was not found or has expired. "
            "Start a new conversation without a continuation_id."
        )
        self.token = token


class ThreadFullError(GatewayError):
    code = -32006
    exit_code = 10

    def __init__(self, token: str, max_turns: int) -> None:
        super().__init__(
            f"Conversation thread {token!r} reached the limit of {max_turns} turns"
        )
        self.token = token
        self.max_turns = max_turns


class PathOutsideWorkspaceError(GatewayError):
    code = -32007
    exit_code = 11


class PathTraversalError(GatewayError):
    code = -32008
    exit_code = 12


class InternalError(GatewayError):
    """Unexpected failure inside a handler; the original exception is the ``__cause__``."""


# Rate limits, connection failures, timeouts and upstream 5xx are worth another try.
TRANSIENT_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)

RATE_LIMIT_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.RateLimitError,
    anthropic.RateLimitError,
)

CONN_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)

API_ERRORS: Final[tuple[Type[Exception], ...]] = (
    openai.APIError,
    anthropic.APIError,
)


def classify_error(
    exc: Exception,
    provider: str | None = None,
    logger: Optional[logging.Logger] = None,
) -> ProviderError:
    """Wrap an SDK exception in a ProviderError with a concise message."""
    log = logger or logging.getLogger("tool_gateway.errors")

    if isinstance(exc, ProviderError):
        return exc

    transient = isinstance(exc, TRANSIENT_ERRORS)
    if isinstance(exc, RATE_LIMIT_ERRORS):
        msg = "Rate limit exceeded, retry later"
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)) or "Timeout" in type(exc).__name__:
        msg = "Provider call timed out"
        transient = True
    elif isinstance(exc, CONN_ERRORS):
        msg = "Connection problem, unable to reach the provider"
    elif isinstance(exc, API_ERRORS):
        status = getattr(exc, "status_code", "unknown")
        msg = f"Provider rejected the request ({status})"
    else:
        msg = exc.__class__.__name__

    detail = str(exc)
    message = f"{msg}: {detail}" if detail else msg
    log.warning(
        "Wrapping provider exception (%s, transient=%s)",
        type(exc).__name__,
        transient,
        extra={"exc": exc, "provider": provider},
    )
    return ProviderError(message, transient=transient, provider=provider, original_exc=exc)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient
