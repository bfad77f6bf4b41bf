"""Anthropic adapter for pure request/response transformations."""

from __future__ import annotations

from typing import Any, Sequence

from anthropic.types import Message

from tool_gateway.attachments import EncodedImage
from tool_gateway.params import normalize_params
from tool_gateway.types import GenerationRequest, GenerationResult

DEFAULT_MAX_TOKENS = 4096

# extra keys other providers understand but the Messages API rejects
_UNSUPPORTED_EXTRAS = ("reasoning_effort",)


class AnthropicRequestAdapter:
    """Adapter for converting between canonical format and Anthropic format."""

    def build_messages(
        self, request: GenerationRequest, images: Sequence[EncodedImage] = ()
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for turn in request.history:
            if turn.role == "tool":
                messages.append({"role": "user", "content": f"[tool output]\n{turn.content}"})
            else:
                messages.append({"role": turn.role, "content": turn.content})

        if images:
            # Anthropic recommends images before the text that refers to them
            blocks: list[dict[str, Any]] = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": image.media_type,
                        "data": image.data,
                    },
                }
                for image in images
            ]
            blocks.append({"type": "text", "text": request.prompt})
            messages.append({"role": "user", "content": blocks})
        else:
            messages.append({"role": "user", "content": request.prompt})
        return messages

    def build_params(self, params: dict[str, Any] | None) -> dict[str, Any]:
        base_params = dict(normalize_params(params))
        extras = base_params.pop("extra", {})

        # Anthropic requires max_tokens
        base_params.setdefault("max_tokens", DEFAULT_MAX_TOKENS)

        if "stop" in base_params:
            stop = base_params.pop("stop")
            base_params["stop_sequences"] = stop if isinstance(stop, list) else [stop]
        base_params.pop("seed", None)

        for k, v in extras.items():
            if k not in _UNSUPPORTED_EXTRAS:
                base_params.setdefault(k, v)
        return base_params

    def to_provider(
        self,
        request: GenerationRequest,
        model: str,
        images: Sequence[EncodedImage] = (),
    ) -> dict[str, Any]:
        """Convert a canonical request to Anthropic Messages API arguments."""
        args: dict[str, Any] = {
            "messages": self.build_messages(request, images),
            **self.build_params(request.params),
        }
        if request.system_prompt:
            args["system"] = request.system_prompt
        return args

    def from_provider(self, raw: Message) -> GenerationResult:
        """Convert Anthropic response to a canonical GenerationResult."""
        text_parts = [block.text for block in raw.content or [] if block.type == "text"]
        usage: dict[str, int] = {}
        if raw.usage is not None:
            usage = {
                "input_tokens": raw.usage.input_tokens,
                "output_tokens": raw.usage.output_tokens,
                "total_tokens": raw.usage.input_tokens + raw.usage.output_tokens,
            }
        return GenerationResult(
            text="".join(text_parts),
            usage=usage,
            finish_reason=raw.stop_reason,
            model=raw.model,
            raw=raw,
        )
