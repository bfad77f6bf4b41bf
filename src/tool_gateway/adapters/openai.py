"""OpenAI adapter for pure request/response transformations."""

from __future__ import annotations

from typing import Any, Sequence

from openai.types.chat import ChatCompletion

from tool_gateway.attachments import EncodedImage
from tool_gateway.params import normalize_params
from tool_gateway.types import GenerationRequest, GenerationResult

# stored tool turns have no tool_call_id to pair with, so they replay as user text
_ROLE_MAP = {"user": "user", "assistant": "assistant", "tool": "user"}

# Models that require max_completion_tokens and reject sampling parameters
_REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")


class OpenAIRequestAdapter:
    """Adapter for converting between canonical format and OpenAI format."""

    def build_messages(
        self, request: GenerationRequest, images: Sequence[EncodedImage] = ()
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})

        for turn in request.history:
            content = turn.content
            if turn.role == "tool":
                content = f"[tool output]\n{content}"
            messages.append({"role": _ROLE_MAP[turn.role], "content": content})

        if images:
            parts: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
            parts.extend(
                {"type": "image_url", "image_url": {"url": image.data_url}}
                for image in images
            )
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": "user", "content": request.prompt})
        return messages

    def build_params(self, params: dict[str, Any] | None, model: str) -> dict[str, Any]:
        base_params = dict(normalize_params(params))
        extras = base_params.pop("extra", {})

        if self._is_reasoning_model(model):
            if "max_tokens" in base_params:
                base_params["max_completion_tokens"] = base_params.pop("max_tokens")
            for key in ("temperature", "top_p"):
                base_params.pop(key, None)
        else:
            extras.pop("reasoning_effort", None)

        for k, v in extras.items():
            base_params.setdefault(k, v)
        return base_params

    def to_provider(
        self,
        request: GenerationRequest,
        model: str,
        images: Sequence[EncodedImage] = (),
    ) -> dict[str, Any]:
        """Convert a canonical request to OpenAI chat-completions arguments."""
        return {
            "messages": self.build_messages(request, images),
            **self.build_params(request.params, model),
        }

    def from_provider(self, raw: ChatCompletion) -> GenerationResult:
        """Convert OpenAI response to a canonical GenerationResult."""
        text = ""
        finish_reason = None
        if raw.choices:
            choice = raw.choices[0]
            finish_reason = choice.finish_reason
            if choice.message:
                text = choice.message.content or ""

        usage: dict[str, int] = {}
        if raw.usage is not None:
            usage = {
                "input_tokens": raw.usage.prompt_tokens,
                "output_tokens": raw.usage.completion_tokens,
                "total_tokens": raw.usage.total_tokens,
            }
        return GenerationResult(
            text=text,
            usage=usage,
            finish_reason=finish_reason,
            model=raw.model,
            raw=raw,
        )

    def _is_reasoning_model(self, model: str) -> bool:
        return any(model.startswith(prefix) for prefix in _REASONING_PREFIXES)
