"""
MCP stdio transport.

Every tool in the registry is advertised with the JSON schema of its arguments
model; each call is normalized through the stream protocol, dispatched and
answered with the stream envelope as a single text item.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from tool_gateway import __version__
from tool_gateway.config import GatewayConfig
from tool_gateway.dispatcher import Dispatcher, build_dispatcher
from tool_gateway.errors import GatewayError
from tool_gateway.logging_config import setup_logging
from tool_gateway.protocol import format_stream_response, parse_stream_message
from tool_gateway.types import ToolRequest, TransportKind

__all__ = ["create_server", "serve", "main"]

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 300.0


def create_server(dispatcher: Dispatcher) -> Server:
    server: Server = Server("tool-gateway", version=__version__)
    registry = dispatcher.registry

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=definition.name,
                description=definition.description,
                inputSchema=definition.input_schema(),
            )
            for definition in registry.list()
        ]

    # argument validation belongs to the tool's own model so errors keep their kind
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[types.TextContent]:
        envelope = await handle_call(dispatcher, name, arguments)
        return [types.TextContent(type="text", text=json.dumps(envelope, ensure_ascii=False))]

    return server


async def handle_call(
    dispatcher: Dispatcher, name: str, arguments: dict[str, Any] | None
) -> dict[str, Any]:
    """One ``call_tool`` round trip, returned as the stream envelope."""
    message = {"method": name, "params": arguments}
    try:
        request = parse_stream_message(message, dispatcher.registry.names())
    except GatewayError as exc:
        logger.warning("Rejected stream message for %r: %s", name, exc)
        placeholder = ToolRequest(tool_name=name, arguments={}, transport=TransportKind.STREAM)
        return format_stream_response(Dispatcher.error_response(placeholder, exc))
    response = await dispatcher.dispatch(request)
    return format_stream_response(response)


async def serve(config: GatewayConfig) -> None:
    dispatcher = build_dispatcher(config)
    server = create_server(dispatcher)
    sweeper = asyncio.create_task(
        dispatcher.conversations.run_sweeper(SWEEP_INTERVAL), name="thread-sweeper"
    )
    providers = [p.value for p in dispatcher.router.available_providers()]
    logger.info(
        "tool-gateway %s serving %d tools over stdio; providers: %s",
        __version__, len(dispatcher.registry), ", ".join(providers) or "none",
    )
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await dispatcher.aclose()


def main() -> None:
    config = GatewayConfig.from_env()
    setup_logging()
    if not config.credentials:
        logger.warning("No provider credentials configured; only introspection tools will work")
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
