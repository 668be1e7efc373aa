"""
Session and message data types.

Message content arrives from the chat function either as plain text or as a
structured JSON object; both are modeled explicitly rather than as Any.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM)

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class TextContent:
    text: str

    def to_wire(self) -> str:
        return self.text

    def preview(self, length: int = 50) -> str:
        return self.text[:length]


@dataclass(frozen=True)
class StructuredContent:
    """Structured reply from the chat function."""
    summary: str = ""
    prompts_for_user: List[str] = field(default_factory=list)
    grounding: str = ""
    draft_message: str = ""
    notes: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "prompts_for_user": list(self.prompts_for_user),
            "grounding": self.grounding,
            "draft_message": self.draft_message,
            "notes": self.notes,
        }

    def preview(self, length: int = 50) -> str:
        return (self.summary or self.draft_message)[:length]

    @property
    def text(self) -> str:
        parts = [self.summary, *self.prompts_for_user, self.draft_message]
        return "\n\n".join(p for p in parts if p)


MessageContent = Union[TextContent, StructuredContent]


def parse_content(raw: Any) -> MessageContent:
    """Convert a wire value (string or JSON object) into a content variant."""
    if isinstance(raw, (TextContent, StructuredContent)):
        return raw
    if isinstance(raw, dict):
        prompts = raw.get("prompts_for_user") or []
        if isinstance(prompts, str):
            prompts = [prompts]
        return StructuredContent(
            summary=str(raw.get("summary") or ""),
            prompts_for_user=[str(p) for p in prompts],
            grounding=str(raw.get("grounding") or ""),
            draft_message=str(raw.get("draft_message") or ""),
            notes=str(raw.get("notes") or ""),
        )
    if raw is None:
        return TextContent("")
    return TextContent(str(raw))


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    role: str
    content: MessageContent
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_phase_header(self) -> bool:
        return bool(self.metadata.get("isPhaseHeader"))

    @property
    def is_greeting(self) -> bool:
        return bool(self.metadata.get("isGreeting") or self.metadata.get("isInitialGreeting"))

    @property
    def text(self) -> str:
        return self.content.text

    def to_history_entry(self) -> Dict[str, Any]:
        """Shape used in the chat function's conversationHistory."""
        return {
            "role": self.role,
            "content": self.content.to_wire(),
            "metadata": dict(self.metadata),
        }

    def to_row(self, session_id: str, owner_id: str, message_index: int) -> Dict[str, Any]:
        """Shape of a chat_messages row."""
        return {
            "session_id": session_id,
            "owner_id": owner_id,
            "role": self.role,
            "content": self.content.to_wire(),
            "metadata": dict(self.metadata),
            "message_index": message_index,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        created = row.get("created_at")
        if isinstance(created, str):
            timestamp = datetime.fromisoformat(created.replace("Z", "+00:00"))
        elif isinstance(created, datetime):
            timestamp = created
        else:
            timestamp = _now()
        return cls(
            id=str(row.get("id") or uuid.uuid4().hex),
            role=row.get("role", ROLE_ASSISTANT),
            content=parse_content(row.get("content")),
            metadata=dict(row.get("metadata") or {}),
            timestamp=timestamp,
        )


@dataclass
class ReflectionSession:
    id: Optional[str] = None
    current_step: int = 1
    responses: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    is_complete: bool = False
    thread_id: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ReflectionSession":
        return cls(
            id=row.get("id"),
            current_step=row.get("current_step") or 1,
            responses=dict(row.get("step_data") or {}),
            is_complete=row.get("status") == STATUS_COMPLETED,
            thread_id=row.get("thread_id"),
            title=row.get("title"),
        )

    def record_response(self, user_input: str) -> Dict[str, Dict[str, Any]]:
        """Return a copy of responses with the input stored under the current step."""
        updated = {key: dict(value) for key, value in self.responses.items()}
        updated.setdefault(f"step{self.current_step}", {})["userInput"] = user_input
        return updated

    def response_text(self, step: int) -> Optional[str]:
        return (self.responses.get(f"step{step}") or {}).get("userInput")
