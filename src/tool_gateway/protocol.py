"""
Translation between the two entry transports and the canonical request and
response types. Nothing in here performs I/O.
"""

from __future__ import annotations

import json
from typing import Any, Collection, Mapping, Sequence

from tool_gateway.errors import ArgumentError, ProtocolError
from tool_gateway.types import ToolRequest, ToolResponse, TransportKind

__all__ = [
    "OUTPUT_FORMAT_ENV",
    "parse_stream_message",
    "parse_cli_invocation",
    "format_stream_response",
    "format_cli_output",
    "response_payload",
    "wants_machine_readable",
]

OUTPUT_FORMAT_ENV = "GATEWAY_OUTPUT"


def _decode(raw: str | bytes, error: type[Exception], what: str) -> Any:
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise error(f"{what} is not valid JSON: {exc}") from exc


def parse_stream_message(
    raw: str | bytes | Mapping[str, Any], known_methods: Collection[str]
) -> ToolRequest:
    """Normalize one ``{"id"?, "method", "params"?}`` stream message."""
    message = raw if isinstance(raw, Mapping) else _decode(raw, ProtocolError, "Message")
    if not isinstance(message, Mapping):
        raise ProtocolError(f"Message must be a JSON object, got {type(message).__name__}")

    method = message.get("method")
    if not isinstance(method, str) or not method:
        raise ProtocolError("Message has no method name")
    if method not in known_methods:
        raise ProtocolError(f"Unknown method {method!r}")

    params = message.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, Mapping):
        raise ProtocolError(f"params for {method!r} must be an object, got {type(params).__name__}")

    kwargs: dict[str, Any] = {}
    if message.get("id") is not None:
        kwargs["request_id"] = str(message["id"])
    return ToolRequest(
        tool_name=method,
        arguments=dict(params),
        transport=TransportKind.STREAM,
        **kwargs,
    )


def parse_cli_invocation(argv: Sequence[str]) -> ToolRequest:
    """Normalize ``[tool_name, json_blob?]``; a missing blob means no arguments."""
    if not argv or not argv[0]:
        raise ArgumentError("Missing tool name")
    if len(argv) > 2:
        raise ArgumentError(
            f"Expected a tool name and one JSON argument blob, got {len(argv)} arguments"
        )

    arguments: Any = {}
    if len(argv) == 2 and argv[1].strip():
        arguments = _decode(argv[1], ArgumentError, "Argument blob")
    if not isinstance(arguments, dict):
        raise ArgumentError(
            f"Argument blob must be a JSON object, got {type(arguments).__name__}"
        )
    return ToolRequest(tool_name=argv[0], arguments=arguments, transport=TransportKind.CLI)


def response_payload(response: ToolResponse) -> dict[str, Any]:
    """The result body shared by both transports."""
    payload: dict[str, Any] = {
        "tool": response.tool_name,
        "status": response.status,
        "content": response.content,
    }
    if response.continuation_id is not None:
        payload["continuation_id"] = response.continuation_id
    if response.remaining_turns is not None:
        payload["remaining_turns"] = response.remaining_turns
    if response.model is not None:
        payload["model"] = response.model
        payload["provider"] = response.provider
    if response.usage:
        payload["usage"] = dict(response.usage)
    if response.metadata:
        payload["metadata"] = dict(response.metadata)
    return payload


def format_stream_response(response: ToolResponse) -> dict[str, Any]:
    if response.error is None:
        return {"id": response.request_id, "result": response_payload(response)}

    data: dict[str, Any] = {"kind": response.error.kind}
    if response.continuation_id is not None:
        data["continuation_id"] = response.continuation_id
    return {
        "id": response.request_id,
        "error": {
            "code": response.error.code,
            "message": response.error.message,
            "data": data,
        },
    }


def format_cli_output(response: ToolResponse, machine_readable: bool) -> tuple[str, int]:
    """Render *response* for a terminal; returns ``(text, exit_code)``."""
    exit_code = response.error.exit_code if response.error else 0
    if machine_readable:
        return json.dumps(format_stream_response(response), indent=2, ensure_ascii=False), exit_code

    if response.error is not None:
        lines = [f"Error ({response.error.kind}): {response.error.message}"]
        if response.continuation_id:
            lines.append(f"continuation_id: {response.continuation_id}")
        return "\n".join(lines), exit_code

    lines = [response.content]
    footer = []
    if response.model:
        footer.append(f"model: {response.provider}/{response.model}")
    if response.continuation_id:
        footer.append(f"continuation_id: {response.continuation_id}")
    if response.remaining_turns is not None:
        footer.append(f"remaining turns: {response.remaining_turns}")
    if footer:
        lines += ["", "---", *footer]
    return "\n".join(lines), exit_code


def wants_machine_readable(environ: Mapping[str, str]) -> bool:
    return environ.get(OUTPUT_FORMAT_ENV, "").strip().lower() == "json"
