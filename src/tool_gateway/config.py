"""
Process-wide configuration.

Everything is read once at startup into an immutable ``GatewayConfig`` that is
passed explicitly to the components that need it. Values come from the
environment, with a ``.env`` file in the working directory loaded first.

Environment variables:
    GEMINI_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY, XAI_API_KEY,
    OPENROUTER_API_KEY: provider credentials
    CUSTOM_API_URL, CUSTOM_API_KEY, CUSTOM_MODEL_NAME: OpenAI-compatible endpoint
    PROVIDER_PREFERENCE: comma-separated provider order
    DEFAULT_MODEL: model hint used when a request names none (default: auto)
    DEFAULT_VISION_MODEL: preferred model for automatic vision selection
    WORKSPACE_MOUNTS: ``host=sandbox`` pairs separated by ``;``
    WORKSPACE_ROOT / SANDBOX_ROOT: single mapping shorthand
    PROVIDER_TIMEOUT: seconds per provider call (default: 120)
    MAX_CONVERSATION_TURNS: turn cap per thread (default: 20)
    CONVERSATION_TIMEOUT_HOURS: inactivity TTL (default: 3)
    CONVERSATION_CONTEXT_CHARS: history budget in characters (default: 400000)
    MAX_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY: retry policy
    REDIS_URL, REDIS_KEY_PREFIX: thread store
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from dotenv import load_dotenv

from tool_gateway.paths import MountMapping, parse_mounts
from tool_gateway.provider import DEFAULT_PREFERENCE, Provider, configured_credentials

__all__ = ["GatewayConfig", "RetryPolicy"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    credentials: Mapping[Provider, str] = field(default_factory=dict)
    provider_preference: tuple[Provider, ...] = DEFAULT_PREFERENCE
    default_model: str = "auto"
    default_vision_model: str | None = None
    custom_api_url: str | None = None
    custom_model_name: str = "llama3.2"
    mounts: tuple[MountMapping, ...] = ()
    provider_timeout: float = 120.0
    max_turns: int = 20
    thread_ttl: float = 3 * 3600.0
    context_budget: int = 400_000
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    redis_url: str | None = None
    redis_key_prefix: str = "tool_gateway"

    def __post_init__(self) -> None:
        if self.max_turns < 2:
            # every invocation stores a user turn and an assistant turn
            raise ValueError("max_turns must be at least 2")
        if self.provider_timeout <= 0:
            raise ValueError("provider_timeout must be positive")

    def has_credential(self, provider: Provider) -> bool:
        return provider in self.credentials

    def credential(self, provider: Provider) -> str:
        try:
            return self.credentials[provider]
        except KeyError:
            raise RuntimeError(f"No credential configured for {provider!s}") from None

    def copy(self, **overrides: Any) -> "GatewayConfig":
        return replace(self, **overrides)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        load_env_file: bool = True,
    ) -> "GatewayConfig":
        if environ is None:
            if load_env_file:
                load_dotenv()
            environ = os.environ

        credentials = configured_credentials(environ)
        custom_url = environ.get("CUSTOM_API_URL", "").strip() or None
        if custom_url:
            # the custom endpoint's key is optional (local servers ignore it)
            credentials[Provider.CUSTOM] = environ.get("CUSTOM_API_KEY", "").strip() or "EMPTY"

        return cls(
            credentials=credentials,
            provider_preference=_parse_preference(environ.get("PROVIDER_PREFERENCE")),
            default_model=environ.get("DEFAULT_MODEL", "").strip() or "auto",
            default_vision_model=environ.get("DEFAULT_VISION_MODEL", "").strip() or None,
            custom_api_url=custom_url,
            custom_model_name=environ.get("CUSTOM_MODEL_NAME", "").strip() or "llama3.2",
            mounts=_parse_mount_env(environ),
            provider_timeout=_get_float(environ, "PROVIDER_TIMEOUT", 120.0),
            max_turns=_get_int(environ, "MAX_CONVERSATION_TURNS", 20),
            thread_ttl=_get_float(environ, "CONVERSATION_TIMEOUT_HOURS", 3.0) * 3600.0,
            context_budget=_get_int(environ, "CONVERSATION_CONTEXT_CHARS", 400_000),
            retry=RetryPolicy(
                max_attempts=_get_int(environ, "MAX_ATTEMPTS", 3),
                base_delay=_get_float(environ, "RETRY_BASE_DELAY", 1.0),
                max_delay=_get_float(environ, "RETRY_MAX_DELAY", 10.0),
            ),
            redis_url=environ.get("REDIS_URL", "").strip() or None,
            redis_key_prefix=environ.get("REDIS_KEY_PREFIX", "").strip() or "tool_gateway",
        )


def _parse_preference(raw: str | None) -> tuple[Provider, ...]:
    if not raw or not raw.strip():
        return DEFAULT_PREFERENCE
    order: list[Provider] = []
    for name in raw.split(","):
        name = name.strip().lower()
        if not name:
            continue
        try:
            provider = Provider(name)
        except ValueError:
            raise ValueError(f"Unknown provider in PROVIDER_PREFERENCE: {name!r}") from None
        if provider not in order:
            order.append(provider)
    return tuple(order)


def _parse_mount_env(environ: Mapping[str, str]) -> tuple[MountMapping, ...]:
    mounts = parse_mounts(environ.get("WORKSPACE_MOUNTS", ""))
    root = environ.get("WORKSPACE_ROOT", "").strip()
    if root:
        sandbox = environ.get("SANDBOX_ROOT", "").strip() or "/workspace"
        mounts = (*mounts, MountMapping(root.rstrip("/") or "/", sandbox))
    return mounts


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
