"""
Multi-turn conversation memory.

Each tool invocation without a ``continuation_id`` opens a thread; the id is
returned to the caller, who passes it back to continue. Threads live in a
``ThreadStore`` so that a restarted (or a second) gateway process can pick a
conversation up. Appends to one thread are serialized twice over: by an
in-process lock per token, and by the store's compare-and-swap on the record
version, which is what keeps indices gap-free across processes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional, Sequence

from tool_gateway.errors import ThreadFullError, ThreadNotFoundError
from tool_gateway.storage import ThreadStore
from tool_gateway.types import (
    ConversationThread,
    ConversationTurn,
    FileRef,
    TurnDraft,
    utcnow,
)

__all__ = ["ConversationManager"]

_logger = logging.getLogger(__name__)


class ConversationManager:
    def __init__(
        self,
        store: ThreadStore,
        *,
        max_turns: int = 20,
        ttl: float = 3 * 3600.0,
        context_budget: int = 400_000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.max_turns = max_turns
        self.ttl = ttl
        self.context_budget = context_budget
        self.logger = logger or _logger
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = defaultdict(int)
        # user turn indices still waiting on a reply, per token
        self._held: dict[str, set[int]] = defaultdict(set)

    # --- locking -----------------------------------------------------------
    @asynccontextmanager
    async def _token_lock(self, token: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(token, asyncio.Lock())
        self._waiters[token] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[token] -= 1
            if not self._waiters[token]:
                del self._waiters[token]
                self._locks.pop(token, None)

    # --- queries -----------------------------------------------------------
    def _is_expired(self, thread: ConversationThread, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return now - thread.last_activity_at > timedelta(seconds=self.ttl)

    async def get_thread(self, token: str) -> ConversationThread:
        thread = await self.store.get(token)
        if thread is None:
            raise ThreadNotFoundError(token)
        if self._is_expired(thread):
            # the sweeper has not caught it yet; retire it now
            await self.store.delete(token)
            self.logger.info("Thread %s expired on access", token)
            raise ThreadNotFoundError(token)
        return thread

    async def remaining_turns(self, token: str) -> int:
        thread = await self.get_thread(token)
        return max(0, self.max_turns - len(thread.turns))

    async def load_context(self, token: str, budget: int | None = None) -> list[ConversationTurn]:
        """
        Turns for prompt reconstruction, oldest first.

        When the combined content exceeds *budget* characters the oldest turns
        are dropped first; the most recent turn is always kept.
        """
        thread = await self.get_thread(token)
        limit = self.context_budget if budget is None else budget
        turns = list(thread.turns)
        total = sum(len(turn.content) for turn in turns)
        dropped = 0
        while len(turns) > 1 and total > limit:
            total -= len(turns.pop(0).content)
            dropped += 1
        if dropped:
            self.logger.debug(
                "Context for %s over budget (%d chars), dropped %d oldest turns",
                token, limit, dropped,
            )
        return turns

    # --- mutations ---------------------------------------------------------
    async def create_thread(self, tool_name: str, first_turn: TurnDraft) -> str:
        while True:
            token = str(uuid.uuid4())
            now = utcnow()
            thread = ConversationThread(
                continuation_id=token,
                tool_name=tool_name,
                turns=[self._materialize(first_turn, 0, now)],
                created_at=now,
                last_activity_at=now,
            )
            if await self.store.create(thread, self.ttl):
                self.logger.info("Created thread %s for tool %s", token, tool_name)
                return token
            self.logger.warning("Continuation id collision on %s, regenerating", token)

    async def begin_exchange(
        self, token: Optional[str], tool_name: str, prompt: TurnDraft
    ) -> tuple[str, int]:
        """
        Store the user turn of one call and hold a slot for its reply.

        Without *token* a new thread is opened. A continued thread must have
        room for the user turn and the reply, counting the reply slots other
        in-flight calls on it already hold, or ``ThreadFullError`` is raised
        and nothing is appended. Returns the token and the user turn's index;
        the slot is released by ``append_turn(..., reply_to=index)`` or by
        ``end_exchange``.
        """
        if not token:
            token = await self.create_thread(tool_name, prompt)
            self._held[token].add(0)
            return token, 0

        async with self._token_lock(token):
            turn = await self._append(token, prompt, slots=2)
            self._held[token].add(turn.index)
        return token, turn.index

    def end_exchange(self, token: str, index: int) -> None:
        """Release the reply slot held for user turn *index*, if still held."""
        held = self._held.get(token)
        if held is None:
            return
        held.discard(index)
        if not held:
            del self._held[token]

    async def append_turn(
        self, token: str, turn: TurnDraft, *, reply_to: int | None = None
    ) -> ConversationTurn:
        """Append *turn*; with *reply_to* it fills the slot held for that user turn."""
        async with self._token_lock(token):
            new_turn = await self._append(token, turn, slots=1, own=reply_to)
            if reply_to is not None:
                self.end_exchange(token, reply_to)
        return new_turn

    async def _append(
        self, token: str, turn: TurnDraft, *, slots: int, own: int | None = None
    ) -> ConversationTurn:
        # caller holds the token lock
        while True:
            thread = await self.get_thread(token)
            held = self._held.get(token, set())
            pending = len(held) - (1 if own in held else 0)
            if len(thread.turns) + pending + slots > self.max_turns:
                raise ThreadFullError(token, self.max_turns)

            now = utcnow()
            new_turn = self._materialize(turn, len(thread.turns), now)
            updated = thread.model_copy(
                update={
                    "turns": [*thread.turns, new_turn],
                    "last_activity_at": now,
                    "version": thread.version + 1,
                }
            )
            if await self.store.compare_and_swap(updated, thread.version, self.ttl):
                self.logger.debug(
                    "Appended %s turn %d to thread %s", turn.role, new_turn.index, token
                )
                return new_turn
            # another process wrote first; reload and retry

    async def close_thread(self, token: str) -> bool:
        async with self._token_lock(token):
            removed = await self.store.delete(token)
        if removed:
            self.logger.info("Closed thread %s", token)
        return removed

    async def sweep_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=self.ttl)
        purged = await self.store.purge_inactive(cutoff)
        if purged:
            self.logger.info("Swept %d expired threads", purged)
        return purged

    async def run_sweeper(self, interval: float = 300.0) -> None:
        """Sweep forever; run as a background task and cancel to stop."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_expired()
            except Exception:
                self.logger.exception("Thread sweep failed")

    # --- helpers -----------------------------------------------------------
    @staticmethod
    def _materialize(draft: TurnDraft, index: int, now: datetime) -> ConversationTurn:
        return ConversationTurn(
            index=index,
            role=draft.role,
            content=draft.content,
            files=list(draft.files),
            timestamp=now,
            tool_name=draft.tool_name,
            model_provider=draft.model_provider,
            model_name=draft.model_name,
        )

    @staticmethod
    def collect_files(turns: Sequence[ConversationTurn]) -> list[FileRef]:
        """File refs across *turns*, newest first, each sandbox path once."""
        seen: set[str] = set()
        files: list[FileRef] = []
        for turn in reversed(turns):
            for ref in turn.files:
                if ref.sandbox_path not in seen:
                    seen.add(ref.sandbox_path)
                    files.append(ref)
        return files
