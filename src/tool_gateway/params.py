"""
Generation parameter normalization.

Contract
- Standard keys work across providers:
  temperature: float
  max_tokens: int
  top_p: float
  stop: str | list[str]
  seed: int

- Provider specific keys go under `extra` and pass through unchanged.
  Examples:
    extra.reasoning_effort: "low" | "medium" | "high"
    extra.thinking: dict

Unknown top-level keys are moved into extra.
None values are dropped; adapters never forward an explicit null.
"""

from __future__ import annotations

from typing import Any

STANDARD_KEYS = {
    "temperature",
    "max_tokens",
    "top_p",
    "stop",
    "seed",
}

# thinking_mode tool argument -> reasoning effort understood by reasoning models
THINKING_EFFORT = {
    "minimal": "low",
    "low": "low",
    "medium": "medium",
    "high": "high",
    "max": "high",
}


def normalize_params(params: dict | None) -> dict:
    """
    Normalize a params dict to a single internal shape.

    Returns a dict with only standard keys plus an `extra` dict.

    Example
    -------
    >>> normalize_params({"temperature": 0.2, "reasoning_effort": "high"})
    {'temperature': 0.2, 'extra': {'reasoning_effort': 'high'}}
    """
    if params is None:
        return {"extra": {}}
    if not isinstance(params, dict):
        raise TypeError(f"params must be a dict, got {type(params).__name__}")

    user_extra = params.get("extra") or {}
    if not isinstance(user_extra, dict):
        raise TypeError("params['extra'] must be a dict")

    std: dict = {}
    extra: dict = {}
    for key, value in params.items():
        if key == "extra" or value is None:
            continue
        if key in STANDARD_KEYS:
            std[key] = value
        else:
            extra[key] = value

    # moved unknowns first, then caller-provided extra wins
    std["extra"] = {**extra, **{k: v for k, v in user_extra.items() if v is not None}}
    return std


def params_from_arguments(
    temperature: float | None = None,
    thinking_mode: str | None = None,
    max_tokens: int | None = None,
) -> dict:
    """Build normalized params from the generation options a tool accepts."""
    raw: dict[str, Any] = {"temperature": temperature, "max_tokens": max_tokens}
    if thinking_mode:
        raw["reasoning_effort"] = THINKING_EFFORT.get(thinking_mode, "medium")
    return normalize_params(raw)
