"""
Pydantic request/response models for the BeAligned reflection API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# REQUEST MODELS
# =============================================================================

class StartSessionRequest(BaseModel):
    """Request to open a reflection session."""
    session_id: Optional[str] = Field(None, description="Load this stored session instead of the latest one")
    resume: bool = Field(True, description="Resume the latest in-progress session if there is one")


class MessageRequest(BaseModel):
    """One user turn."""
    content: str = Field(..., description="User's message text")
    wait: bool = Field(True, description="Wait for phase openings and completion messages")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class QuickReplyData(BaseModel):
    label: str
    value: str
    style: str = "primary"


class MessageData(BaseModel):
    """A chat message as shown to the client."""
    id: str
    role: str
    content: Union[str, Dict[str, Any]]
    text: str
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PhaseData(BaseModel):
    number: int
    title: str
    description: str
    prompts: List[str] = Field(default_factory=list)
    validation_criteria: List[str] = Field(default_factory=list)
    help_text: str = ""


class PhasesResponse(BaseModel):
    source: str
    error: Optional[str] = None
    phases: List[PhaseData]


class SessionResponse(BaseModel):
    """Snapshot of a session and its messages."""
    handle: str
    session_id: Optional[str] = None
    state: str
    current_step: int
    phase_title: str
    title: Optional[str] = None
    thread_id: Optional[str] = None
    is_complete: bool = False
    is_typing: bool = False
    is_phase_transitioning: bool = False
    error: Optional[str] = None
    messages: List[MessageData] = Field(default_factory=list)
    quick_replies: Optional[List[QuickReplyData]] = None


class StatusResponse(BaseModel):
    supabase_configured: bool
    llm_available: bool
    advancement: str
    validation_mode: str
    active_sessions: int
