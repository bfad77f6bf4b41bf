#!/usr/bin/env python
"""Two-turn conversation through the dispatcher, the way a transport drives it.

1. Ask ``chat`` a question; the response carries a ``continuation_id``.
2. Pass the id back with a follow-up; the model sees the first exchange.

Execute directly with at least one provider key in the environment (or in a
``.env`` file), e.g. ``GEMINI_API_KEY=… ./conversation.py``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from tool_gateway import GatewayConfig, ToolRequest, TransportKind, build_dispatcher

_LOGGER = logging.getLogger("examples.conversation")
logging.basicConfig(level=logging.INFO, format="%(message)s")

_QUESTION: Final[str] = "In two sentences, what is a race condition?"
_FOLLOW_UP: Final[str] = "Give a minimal Python example of one."


async def main() -> None:
    config = GatewayConfig.from_env()
    async with build_dispatcher(config) as dispatcher:
        first = await dispatcher.dispatch(
            ToolRequest("chat", {"prompt": _QUESTION}, TransportKind.CLI)
        )
        first.raise_for_error()
        _LOGGER.info("[%s/%s] %s", first.provider, first.model, first.content)

        second = await dispatcher.dispatch(
            ToolRequest(
                "chat",
                {"prompt": _FOLLOW_UP, "continuation_id": first.continuation_id},
                TransportKind.CLI,
            )
        )
        second.raise_for_error()
        _LOGGER.info("[%s/%s] %s", second.provider, second.model, second.content)
        _LOGGER.info("%s turns left on thread %s", second.remaining_turns, second.continuation_id)


if __name__ == "__main__":
    asyncio.run(main())
