"""
Persistence for reflection sessions, chat messages and phase prompts.

`SupabaseReflectionStore` talks to the hosted tables through the supabase
async client. `InMemoryReflectionStore` keeps the same rows in dictionaries
for local runs and tests.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..core.messages import STATUS_IN_PROGRESS

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "reflection_sessions"
MESSAGES_TABLE = "chat_messages"
PHASE_PROMPTS_TABLE = "phase_prompts"
PROFILES_TABLE = "profiles"


class StoreError(Exception):
    """Raised when a database read or write fails."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"{table}: {message}")


class ReflectionStore(ABC):
    """Data access used by the session orchestrator and phase loader."""

    @abstractmethod
    async def current_user_id(self) -> Optional[str]:
        """Signed-in user's id, or None when nobody is signed in."""

    @abstractmethod
    async def create_session(self, owner_id: str) -> Dict[str, Any]:
        """Insert an in-progress session at step 1 and return the row."""

    @abstractmethod
    async def get_session(self, session_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def latest_in_progress_session(self, owner_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """Messages of a session, oldest first."""

    @abstractmethod
    async def insert_message(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def list_phase_prompts(self) -> List[Dict[str, Any]]:
        """phase_prompts rows ordered by phase_number."""

    @abstractmethod
    async def get_profile_role(self, user_id: str) -> Optional[str]:
        ...


class SupabaseReflectionStore(ReflectionStore):
    """Store backed by Supabase (PostgREST tables + Auth)."""

    def __init__(self, client):
        self.client = client

    @classmethod
    async def connect(cls, url: str, key: str) -> "SupabaseReflectionStore":
        from supabase import create_async_client

        client = await create_async_client(url, key)
        return cls(client)

    async def _execute(self, table: str, query):
        try:
            return await query.execute()
        except Exception as e:
            raise StoreError(table, str(e) or e.__class__.__name__) from e

    async def current_user_id(self) -> Optional[str]:
        try:
            response = await self.client.auth.get_user()
        except Exception as e:
            logger.warning(f"[DB] Could not read current user: {e}")
            return None
        if response is None or response.user is None:
            return None
        return response.user.id

    async def create_session(self, owner_id: str) -> Dict[str, Any]:
        response = await self._execute(
            SESSIONS_TABLE,
            self.client.table(SESSIONS_TABLE).insert({
                "owner_id": owner_id,
                "current_step": 1,
                "step_data": {},
                "status": STATUS_IN_PROGRESS,
            }),
        )
        if not response.data:
            raise StoreError(SESSIONS_TABLE, "insert returned no row")
        return response.data[0]

    async def get_session(self, session_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            SESSIONS_TABLE,
            self.client.table(SESSIONS_TABLE)
            .select("*")
            .eq("id", session_id)
            .eq("owner_id", owner_id)
            .limit(1),
        )
        return response.data[0] if response.data else None

    async def latest_in_progress_session(self, owner_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            SESSIONS_TABLE,
            self.client.table(SESSIONS_TABLE)
            .select("*")
            .eq("owner_id", owner_id)
            .eq("status", STATUS_IN_PROGRESS)
            .order("created_at", desc=True)
            .limit(1),
        )
        return response.data[0] if response.data else None

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> None:
        await self._execute(
            SESSIONS_TABLE,
            self.client.table(SESSIONS_TABLE).update(updates).eq("id", session_id),
        )

    async def list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        response = await self._execute(
            MESSAGES_TABLE,
            self.client.table(MESSAGES_TABLE)
            .select("*")
            .eq("session_id", session_id)
            .order("created_at", desc=False),
        )
        return list(response.data or [])

    async def insert_message(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._execute(
            MESSAGES_TABLE, self.client.table(MESSAGES_TABLE).insert(row)
        )
        return response.data[0] if response.data else dict(row)

    async def list_phase_prompts(self) -> List[Dict[str, Any]]:
        response = await self._execute(
            PHASE_PROMPTS_TABLE,
            self.client.table(PHASE_PROMPTS_TABLE).select("*").order("phase_number", desc=False),
        )
        return list(response.data or [])

    async def get_profile_role(self, user_id: str) -> Optional[str]:
        response = await self._execute(
            PROFILES_TABLE,
            self.client.table(PROFILES_TABLE).select("role").eq("id", user_id).limit(1),
        )
        return response.data[0].get("role") if response.data else None


class InMemoryReflectionStore(ReflectionStore):
    """Dictionary-backed store with the same row shapes as the Supabase tables."""

    def __init__(
        self,
        user_id: Optional[str] = "local-user",
        phase_prompts: Optional[List[Dict[str, Any]]] = None,
        roles: Optional[Dict[str, str]] = None,
    ):
        self.user_id = user_id
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []
        self.phase_prompts: List[Dict[str, Any]] = list(phase_prompts or [])
        self.roles: Dict[str, str] = dict(roles or {})
        self._clock = itertools.count()
        self._epoch = datetime.now(timezone.utc)

    def _created_at(self) -> str:
        # Strictly increasing timestamps keep ordering stable within a test.
        return (self._epoch + timedelta(microseconds=next(self._clock))).isoformat()

    async def current_user_id(self) -> Optional[str]:
        return self.user_id

    async def create_session(self, owner_id: str) -> Dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "current_step": 1,
            "step_data": {},
            "status": STATUS_IN_PROGRESS,
            "thread_id": None,
            "title": None,
            "created_at": self._created_at(),
        }
        self.sessions[row["id"]] = row
        return dict(row)

    async def get_session(self, session_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        row = self.sessions.get(session_id)
        if row is None or row["owner_id"] != owner_id:
            return None
        return dict(row)

    async def latest_in_progress_session(self, owner_id: str) -> Optional[Dict[str, Any]]:
        candidates = [
            row for row in self.sessions.values()
            if row["owner_id"] == owner_id and row["status"] == STATUS_IN_PROGRESS
        ]
        if not candidates:
            return None
        return dict(max(candidates, key=lambda row: row["created_at"]))

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> None:
        row = self.sessions.get(session_id)
        if row is None:
            raise StoreError(SESSIONS_TABLE, f"no session {session_id}")
        row.update(updates)

    async def list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        rows = [dict(m) for m in self.messages if m["session_id"] == session_id]
        return sorted(rows, key=lambda m: m["created_at"])

    async def insert_message(self, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = {"id": str(uuid.uuid4()), "created_at": self._created_at(), **row}
        self.messages.append(stored)
        return dict(stored)

    async def list_phase_prompts(self) -> List[Dict[str, Any]]:
        return sorted(self.phase_prompts, key=lambda row: row.get("phase_number", 0))

    async def get_profile_role(self, user_id: str) -> Optional[str]:
        return self.roles.get(user_id)
