# sessions.py
"""
In-memory conversation store.

One ConversationContext per conversation id, each paired with its own
asyncio.Lock. Every turn runs inside `session()`, so two messages for the
same conversation are processed one after the other while different
conversations proceed in parallel. Contexts idle for longer than
SESSION_TTL_MINUTES are discarded; nothing is persisted.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, Optional

from .models import ConversationContext
from .settings import settings

log = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, ttl_minutes: Optional[int] = None):
        self.ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.SESSION_TTL_MINUTES)
        self._contexts: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    def create(self) -> ConversationContext:
        self.evict_idle()
        context = ConversationContext()
        self._contexts[context.conversation_id] = context
        self._locks[context.conversation_id] = asyncio.Lock()
        log.info(f"Started conversation {context.conversation_id}")
        return context

    def get(self, conversation_id: Optional[str]) -> Optional[ConversationContext]:
        if not conversation_id:
            return None
        return self._contexts.get(conversation_id)

    def get_or_create(self, conversation_id: Optional[str]) -> ConversationContext:
        return self.get(conversation_id) or self.create()

    @asynccontextmanager
    async def session(self, conversation_id: str) -> AsyncIterator[ConversationContext]:
        """Holds the conversation's lock for the duration of one turn."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            raise KeyError(conversation_id)
        async with lock:
            context = self._contexts.get(conversation_id)
            if context is None:
                raise KeyError(conversation_id)
            try:
                yield context
            finally:
                context.touch()

    def discard(self, conversation_id: str) -> None:
        self._contexts.pop(conversation_id, None)
        self._locks.pop(conversation_id, None)

    def evict_idle(self) -> int:
        cutoff = datetime.now(timezone.utc) - self.ttl
        stale = [
            cid for cid, ctx in self._contexts.items()
            if ctx.last_active < cutoff and not self._locks[cid].locked()
        ]
        for cid in stale:
            self.discard(cid)
        if stale:
            log.info(f"Cleanup: discarded {len(stale)} idle conversations.")
        return len(stale)
