"""Gemini adapter for the OpenAI-compatible endpoint.

Message shapes are identical to OpenAI's. Parameters differ: Gemini 2.5
models think and sample at once, so they take ``reasoning_effort`` alongside
``temperature`` and keep ``max_tokens`` under its usual name.
"""

from __future__ import annotations

from typing import Any

from tool_gateway.params import normalize_params

from .openai import OpenAIRequestAdapter

_THINKING_PREFIXES = ("gemini-2.5",)


class GeminiRequestAdapter(OpenAIRequestAdapter):
    def build_params(self, params: dict[str, Any] | None, model: str) -> dict[str, Any]:
        base_params = dict(normalize_params(params))
        extras = base_params.pop("extra", {})

        if not model.startswith(_THINKING_PREFIXES):
            extras.pop("reasoning_effort", None)

        for k, v in extras.items():
            base_params.setdefault(k, v)
        return base_params
