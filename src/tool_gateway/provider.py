from __future__ import annotations

import os
from enum import StrEnum
from typing import Final, Mapping


class Provider(StrEnum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    XAI = "xai"
    OPENROUTER = "openrouter"
    CUSTOM = "custom"


DEFAULT_PREFERENCE: Final[tuple[Provider, ...]] = (
    Provider.GEMINI,
    Provider.OPENAI,
    Provider.ANTHROPIC,
    Provider.XAI,
    Provider.OPENROUTER,
    Provider.CUSTOM,
)

_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.XAI: "XAI_API_KEY",
    Provider.OPENROUTER: "OPENROUTER_API_KEY",
    # custom endpoints are keyed by URL; the key itself is optional
    Provider.CUSTOM: "CUSTOM_API_URL",
}


def credential_env_var(provider: Provider) -> str:
    try:
        return _ENV_VARS[provider]
    except KeyError:
        raise RuntimeError(f"No config for {provider!s}") from None


def get_api_key(provider: Provider, environ: Mapping[str, str] | None = None) -> str:
    """Return the credential for *provider* or raise RuntimeError."""
    env = os.environ if environ is None else environ
    env_var = credential_env_var(provider)
    key = env.get(env_var, "").strip()
    if not key:
        raise RuntimeError(f"{env_var} missing")
    return key


def configured_credentials(environ: Mapping[str, str] | None = None) -> dict[Provider, str]:
    """Map each provider with a non-empty credential to that credential."""
    found: dict[Provider, str] = {}
    for provider in Provider:
        try:
            found[provider] = get_api_key(provider, environ)
        except RuntimeError:
            continue
    return found


__all__ = [
    "Provider",
    "DEFAULT_PREFERENCE",
    "credential_env_var",
    "get_api_key",
    "configured_credentials",
]
