#!/usr/bin/env python
"""Talk to the gateway as an MCP client over stdio.

Spawns ``tool-gateway-mcp``, lists the advertised tools and calls
``listmodels``. Requires the package to be installed (``pip install -e .``).
"""

from __future__ import annotations

import asyncio
import json
import os

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


async def main() -> None:
    params = StdioServerParameters(command="tool-gateway-mcp", env=dict(os.environ))
    async with stdio_client(params) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()

            tools = await session.list_tools()
            for tool in tools.tools:
                print(f"{tool.name:<12} {tool.description}")

            result = await session.call_tool("listmodels", {})
            envelope = json.loads(result.content[0].text)
            print(envelope.get("result", {}).get("content") or envelope["error"])


if __name__ == "__main__":
    asyncio.run(main())
