"""
Command-line transport: ``tool-gateway <tool> '<json arguments>'``.

Set ``GATEWAY_OUTPUT=json`` for the machine-readable envelope. The process exit
status is 0 on success and the error kind's exit code otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Optional, Sequence

from tool_gateway import __version__
from tool_gateway.config import GatewayConfig
from tool_gateway.dispatcher import Dispatcher, build_dispatcher
from tool_gateway.errors import GatewayError
from tool_gateway.logging_config import setup_logging
from tool_gateway.protocol import format_cli_output, parse_cli_invocation, wants_machine_readable
from tool_gateway.tools import build_default_registry
from tool_gateway.types import ToolRequest, ToolResponse, TransportKind

__all__ = ["build_parser", "run", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tool-gateway",
        description="Invoke one gateway tool and print its response.",
        epilog="Example: tool-gateway chat '{\"prompt\": \"Explain this stack trace\"}'",
    )
    parser.add_argument("tool", nargs="?", help="Tool name, e.g. chat, codereview, listmodels")
    parser.add_argument("arguments", nargs="*", help="Tool arguments as one JSON object")
    parser.add_argument("--json", action="store_true", help="Print the JSON envelope")
    parser.add_argument("--list", action="store_true", help="List the available tools and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run(dispatcher: Dispatcher, argv: Sequence[str]) -> ToolResponse:
    try:
        request = parse_cli_invocation(argv)
    except GatewayError as exc:
        name = argv[0] if argv else ""
        placeholder = ToolRequest(tool_name=name, arguments={}, transport=TransportKind.CLI)
        return Dispatcher.error_response(placeholder, exc)
    return await dispatcher.dispatch(request)


async def _invoke(config: GatewayConfig, argv: Sequence[str]) -> ToolResponse:
    async with build_dispatcher(config) as dispatcher:
        return await run(dispatcher, argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = GatewayConfig.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    # stderr stays quiet for a CLI unless debugging; the log file gets everything
    setup_logging(console=os.environ.get("LOG_LEVEL", "").upper() == "DEBUG")

    if args.list:
        for d in build_default_registry().list():
            print(f"{d.name:<12} {d.description}")
        return 0

    invocation = [args.tool, *args.arguments] if args.tool else []
    response = asyncio.run(_invoke(config, invocation))
    machine_readable = args.json or wants_machine_readable(os.environ)
    text, exit_code = format_cli_output(response, machine_readable)
    # human-readable errors go to stderr; the JSON envelope always goes to stdout
    print(text, file=sys.stderr if response.is_error and not machine_readable else sys.stdout)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
