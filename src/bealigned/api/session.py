"""
In-memory registry of reflection orchestrators for the API.

Each client gets a short handle that maps to its own ReflectionOrchestrator.
The backing store and chat functions are Supabase when configured, otherwise
an in-memory store with chat functions disabled.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from ..core.config import ReflectionConfig
from ..core.orchestrator import ReflectionOrchestrator, SessionState
from ..core.phase_loader import PhasePromptLoader
from ..data.store import InMemoryReflectionStore, ReflectionStore, SupabaseReflectionStore
from ..llm.chat_function import (
    AIResponder,
    ChatFunctionClient,
    FunctionInvoker,
    SupabaseFunctionInvoker,
    UnconfiguredInvoker,
)
from ..llm.client import LLMClient

logger = logging.getLogger(__name__)

EVICTABLE_STATES = (SessionState.COMPLETED, SessionState.NO_SESSION)


class SessionManager:
    """
    Manages active reflection orchestrators in memory.

    Backends are created lazily on first use, so the manager can be built
    outside a running event loop. At most `max_sessions` handles are kept;
    completed or idle handles are evicted first, then the oldest.
    """

    def __init__(
        self,
        config: Optional[ReflectionConfig] = None,
        store: Optional[ReflectionStore] = None,
        invoker: Optional[FunctionInvoker] = None,
        llm: Optional[LLMClient] = None,
        max_sessions: int = 100,
    ):
        self.config = config or ReflectionConfig.from_env()
        self.store = store
        self.invoker = invoker
        self.llm = llm
        self.max_sessions = max_sessions
        self.phase_loader: Optional[PhasePromptLoader] = None
        self._sessions: Dict[str, ReflectionOrchestrator] = {}
        self._lock = asyncio.Lock()

    async def ensure_backend(self) -> None:
        async with self._lock:
            if self.store is None or self.invoker is None:
                if self.config.has_supabase:
                    from supabase import create_async_client

                    client = await create_async_client(
                        self.config.supabase_url, self.config.supabase_key
                    )
                    self.store = self.store or SupabaseReflectionStore(client)
                    self.invoker = self.invoker or SupabaseFunctionInvoker(client)
                    logger.info("[SESSION] Using Supabase backend")
                else:
                    logger.warning("[SESSION] Supabase not configured, using in-memory store")
                    self.store = self.store or InMemoryReflectionStore()
                    self.invoker = self.invoker or UnconfiguredInvoker()

            if self.llm is None:
                self.llm = LLMClient()

            if self.phase_loader is None:
                self.phase_loader = PhasePromptLoader(self.store)
                await self.phase_loader.load()

    async def create_session(self) -> str:
        """Create a new orchestrator and return its handle."""
        await self.ensure_backend()
        self._evict()
        handle = str(uuid.uuid4())[:8]
        chat = ChatFunctionClient(self.invoker)
        self._sessions[handle] = ReflectionOrchestrator(
            store=self.store,
            chat=chat,
            responder=AIResponder(chat, self.llm),
            phases=self.phase_loader.phases,
            config=self.config,
        )
        logger.info(f"[SESSION] Created handle {handle}")
        return handle

    def get_orchestrator(self, handle: str) -> Optional[ReflectionOrchestrator]:
        return self._sessions.get(handle)

    def session_exists(self, handle: str) -> bool:
        return handle in self._sessions

    def delete_session(self, handle: str) -> None:
        orchestrator = self._sessions.pop(handle, None)
        if orchestrator is not None:
            orchestrator.reset_session()

    def list_sessions(self) -> List[str]:
        return list(self._sessions.keys())

    def _evict(self) -> None:
        """Drop handles until there is room for one more."""
        while self._sessions and len(self._sessions) >= self.max_sessions:
            handle = next(
                (h for h, o in self._sessions.items() if o.state in EVICTABLE_STATES),
                next(iter(self._sessions)),
            )
            logger.info(f"[SESSION] Evicting handle {handle}")
            self.delete_session(handle)
