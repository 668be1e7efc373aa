"""
REST API routes for BeAligned reflections.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..content.phases import get_phase_title
from ..core.messages import ROLE_ASSISTANT
from ..core.orchestrator import ReflectionOrchestrator
from ..core.quick_replies import detect_quick_replies
from .schemas import (
    MessageData,
    MessageRequest,
    PhaseData,
    PhasesResponse,
    QuickReplyData,
    SessionResponse,
    StartSessionRequest,
    StatusResponse,
)
from .session import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Global session manager, created on first request
session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    global session_manager
    if session_manager is None:
        session_manager = SessionManager()
    return session_manager


def _get_orchestrator(sm: SessionManager, handle: str) -> ReflectionOrchestrator:
    orchestrator = sm.get_orchestrator(handle)
    if orchestrator is None:
        raise HTTPException(404, f"Session {handle} not found")
    return orchestrator


def build_session_response(handle: str, orchestrator: ReflectionOrchestrator) -> SessionResponse:
    """Snapshot the orchestrator, with quick replies for the last assistant message."""
    session = orchestrator.session
    messages = [
        MessageData(
            id=m.id,
            role=m.role,
            content=m.content.to_wire(),
            text=m.text,
            timestamp=m.timestamp,
            metadata=m.metadata,
        )
        for m in orchestrator.messages
    ]

    quick_replies = None
    if orchestrator.messages and orchestrator.messages[-1].role == ROLE_ASSISTANT:
        replies = detect_quick_replies(orchestrator.messages[-1].text)
        if replies:
            quick_replies = [QuickReplyData(**r.to_dict()) for r in replies]

    phase = next((p for p in orchestrator.phases if p.number == session.current_step), None)
    return SessionResponse(
        handle=handle,
        session_id=session.id,
        state=orchestrator.state.value,
        current_step=session.current_step,
        phase_title=phase.title if phase else get_phase_title(session.current_step),
        title=session.title,
        thread_id=session.thread_id,
        is_complete=session.is_complete,
        is_typing=orchestrator.is_typing,
        is_phase_transitioning=orchestrator.is_phase_transitioning,
        error=orchestrator.error,
        messages=messages,
        quick_replies=quick_replies,
    )


@router.get("/status", response_model=StatusResponse)
async def status(sm: SessionManager = Depends(get_session_manager)):
    """Check backend configuration and LLM fallback availability."""
    await sm.ensure_backend()
    return StatusResponse(
        supabase_configured=sm.config.has_supabase,
        llm_available=sm.llm.is_available,
        advancement=sm.config.advancement,
        validation_mode=sm.config.validation_mode,
        active_sessions=len(sm.list_sessions()),
    )


@router.get("/phases", response_model=PhasesResponse)
async def phases(sm: SessionManager = Depends(get_session_manager)):
    """Phase definitions currently in use (database or built-in)."""
    await sm.ensure_backend()
    loader = sm.phase_loader
    return PhasesResponse(
        source="database" if loader.enhanced_phases else "fallback",
        error=loader.error,
        phases=[PhaseData(**p.to_dict()) for p in loader.phases],
    )


@router.post("/session/start", response_model=SessionResponse)
async def start_session(
    request: StartSessionRequest = StartSessionRequest(),
    sm: SessionManager = Depends(get_session_manager),
):
    """Open a reflection: a specific stored session, the latest one, or a new one."""
    handle = await sm.create_session()
    orchestrator = _get_orchestrator(sm, handle)

    if request.session_id:
        if not await orchestrator.load_session(request.session_id):
            sm.delete_session(handle)
            raise HTTPException(404, f"Reflection {request.session_id} not found")
    elif request.resume:
        await orchestrator.load_or_create_session()
    else:
        await orchestrator.start_session()

    if orchestrator.session.id is None:
        error = orchestrator.error or "Please sign in to start a session"
        sm.delete_session(handle)
        raise HTTPException(401, error)

    await orchestrator.check_admin_status()
    return build_session_response(handle, orchestrator)


@router.post("/session/{handle}/message", response_model=SessionResponse)
async def send_message(
    handle: str,
    request: MessageRequest,
    sm: SessionManager = Depends(get_session_manager),
):
    """Run one user turn. 409 while the previous turn is still being processed."""
    orchestrator = _get_orchestrator(sm, handle)
    accepted = await orchestrator.send_message(request.content)
    if not accepted and orchestrator.is_busy:
        raise HTTPException(409, orchestrator.error)
    if request.wait:
        await orchestrator.wait_for_background()
    return build_session_response(handle, orchestrator)


@router.post("/session/{handle}/new", response_model=SessionResponse)
async def new_session(handle: str, sm: SessionManager = Depends(get_session_manager)):
    """Close the current reflection and start a fresh one on the same handle."""
    orchestrator = _get_orchestrator(sm, handle)
    await orchestrator.start_new_session()
    return build_session_response(handle, orchestrator)


@router.get("/session/{handle}", response_model=SessionResponse)
async def get_session(handle: str, sm: SessionManager = Depends(get_session_manager)):
    orchestrator = _get_orchestrator(sm, handle)
    return build_session_response(handle, orchestrator)
