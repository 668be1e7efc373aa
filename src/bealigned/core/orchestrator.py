"""
ReflectionOrchestrator: owns one reflection session and its message list.

Lifecycle:
    NO_SESSION → CREATING → ACTIVE ⇄ AWAITING_REPLY
                             ACTIVE → PHASE_TRANSITIONING → ACTIVE
                             ACTIVE → COMPLETING → COMPLETED

Each user turn goes to the remote chat function, which answers with content
and a structured phase signal. The orchestrator persists both sides of the
turn, advances `current_step`, and runs the slower side effects (phase
opening message, completion sequence) as background tasks so the reply is
visible first.

Ordering per turn:
    1. user message appended and persisted
    2. chat function called
    3. assistant reply appended and persisted
    4. phase row updated, then opening or completion task scheduled
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import numpy as np

from ..content.phases import (
    REFLECTION_STEPS,
    TOTAL_PHASES,
    PhaseDefinition,
    get_phase_question,
    get_phase_title,
)
from ..content.templates import (
    BUSY_MESSAGE,
    DEFAULT_GREETING,
    ERROR_MESSAGE,
    PHASE_OPENING_REQUEST,
)
from ..data.store import ReflectionStore, StoreError
from ..llm.chat_function import (
    AIResponder,
    ChatFunctionClient,
    ChatFunctionResponse,
)
from .completion import (
    CompletionContext,
    format_clear_block,
    generate_clear_message,
    generate_closing_reflection,
)
from .config import ReflectionConfig
from .greeting import WelcomeGenerator, build_profile, classify_response_type
from .messages import (
    ROLE_ASSISTANT,
    ROLE_USER,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Message,
    ReflectionSession,
    TextContent,
    parse_content,
)
from .titles import DEFAULT_TITLE, generate_session_title
from .validation import PhaseValidator

logger = logging.getLogger(__name__)

SessionUpdatedCallback = Callable[[str, Dict[str, Any]], None]


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    CREATING = "creating"
    ACTIVE = "active"
    AWAITING_REPLY = "awaiting_reply"
    PHASE_TRANSITIONING = "phase_transitioning"
    COMPLETING = "completing"
    COMPLETED = "completed"


# NO_SESSION is reachable from every state (reset).
TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.NO_SESSION: {SessionState.CREATING, SessionState.ACTIVE, SessionState.COMPLETED},
    SessionState.CREATING: {SessionState.ACTIVE, SessionState.COMPLETED},
    SessionState.ACTIVE: {SessionState.CREATING, SessionState.AWAITING_REPLY},
    SessionState.AWAITING_REPLY: {
        SessionState.ACTIVE,
        SessionState.PHASE_TRANSITIONING,
        SessionState.COMPLETING,
    },
    SessionState.PHASE_TRANSITIONING: {SessionState.ACTIVE},
    SessionState.COMPLETING: {SessionState.COMPLETED},
    SessionState.COMPLETED: {SessionState.CREATING},
}

# States in which a reply, phase opening or completion is still pending.
BUSY_STATES = frozenset({
    SessionState.CREATING,
    SessionState.AWAITING_REPLY,
    SessionState.PHASE_TRANSITIONING,
    SessionState.COMPLETING,
})


class SessionStateError(RuntimeError):
    """Raised on a transition the lifecycle does not allow."""


class SessionStartError(Exception):
    pass


class ReflectionOrchestrator:
    """
    Session state machine for one user.

    Usage:
        orchestrator = ReflectionOrchestrator(store, chat, config=config)
        await orchestrator.load_or_create_session()
        await orchestrator.send_message("My co-parent keeps changing the schedule")
        await orchestrator.wait_for_background()
    """

    def __init__(
        self,
        store: ReflectionStore,
        chat: ChatFunctionClient,
        responder: Optional[AIResponder] = None,
        welcome: Optional[WelcomeGenerator] = None,
        phases: Optional[Sequence[PhaseDefinition]] = None,
        config: Optional[ReflectionConfig] = None,
        validator: Optional[PhaseValidator] = None,
        on_session_updated: Optional[SessionUpdatedCallback] = None,
        seed: Optional[int] = None,
    ):
        self.config = config or ReflectionConfig()
        self.store = store
        self.chat = chat
        self.responder = responder or AIResponder(chat)
        self.welcome = welcome or WelcomeGenerator(
            chat, seed=seed, cache_ttl=self.config.welcome_cache_ttl
        )
        self.phases: List[PhaseDefinition] = list(phases or REFLECTION_STEPS)
        self.validator = validator or PhaseValidator(mode=self.config.validation_mode)
        self.on_session_updated = on_session_updated
        self.rng = np.random.default_rng(seed)

        self.session = ReflectionSession()
        self.messages: List[Message] = []
        self.user_id: Optional[str] = None
        self.is_admin = False

        self._state = SessionState.NO_SESSION
        self._error: Optional[str] = None
        self._loading = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_typing(self) -> bool:
        return self._state is SessionState.AWAITING_REPLY

    @property
    def is_phase_transitioning(self) -> bool:
        return self._state is SessionState.PHASE_TRANSITIONING

    @property
    def is_creating_session(self) -> bool:
        return self._state is SessionState.CREATING

    @property
    def is_busy(self) -> bool:
        return self._state in BUSY_STATES

    @property
    def loading(self) -> bool:
        return self._loading or self._state is SessionState.CREATING

    @property
    def error(self) -> Optional[str]:
        return self._error

    def _can_transition(self, new_state: SessionState) -> bool:
        return new_state is SessionState.NO_SESSION or new_state in TRANSITIONS[self._state]

    def _transition(self, new_state: SessionState) -> None:
        if not self._can_transition(new_state):
            raise SessionStateError(f"{self._state.value} -> {new_state.value}")
        if new_state is not self._state:
            logger.debug(f"[SESSION] {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_background(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    async def wait_for_background(self) -> None:
        """Wait until phase openings and completion sequences have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Persistence helpers (failures are logged, never raised)
    # -------------------------------------------------------------------------

    async def _save_message(self, session_id: Optional[str], message: Message) -> None:
        if not session_id or not self.user_id:
            return
        try:
            index = next(
                (i for i, m in enumerate(self.messages) if m.id == message.id),
                len(self.messages),
            )
            await self.store.insert_message(message.to_row(session_id, self.user_id, index))
            logger.debug(f"[DB] Saved {message.role} message ({message.content.preview()!r})")
        except StoreError as e:
            logger.error(
                f"[DB] Failed to save message (session={session_id}, role={message.role}): {e}"
            )

    async def _update_session_row(self, session_id: Optional[str], updates: Dict[str, Any]) -> None:
        if not session_id:
            return
        try:
            await self.store.update_session(session_id, updates)
        except StoreError as e:
            logger.error(f"[DB] Failed to update session {session_id} ({sorted(updates)}): {e}")

    def _notify(self, session_id: str, updates: Dict[str, Any]) -> None:
        if self.on_session_updated is not None:
            self.on_session_updated(session_id, updates)

    def _phase_title(self, number: int) -> str:
        for phase in self.phases:
            if phase.number == number:
                return phase.title
        return get_phase_title(number)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _adopt(self, row: Dict[str, Any], message_rows: List[Dict[str, Any]]) -> None:
        self.reset_session()
        self.session = ReflectionSession.from_row(row)
        self.messages = [Message.from_row(m) for m in message_rows]
        self._transition(
            SessionState.COMPLETED if self.session.is_complete else SessionState.ACTIVE
        )
        logger.info(
            f"[SESSION] Loaded session {self.session.id} at phase {self.session.current_step} "
            f"({len(self.messages)} messages)"
        )

    async def load_session(self, session_id: str) -> bool:
        """Load a session owned by the signed-in user. Returns False if not found."""
        self.user_id = await self.store.current_user_id()
        if not self.user_id:
            return False
        try:
            row = await self.store.get_session(session_id, self.user_id)
            if row is None:
                logger.warning(f"[SESSION] Session {session_id} not found")
                return False
            message_rows = await self.store.list_messages(session_id)
        except StoreError as e:
            logger.error(f"[DB] Error loading session {session_id}: {e}")
            return False
        self._adopt(row, message_rows)
        return True

    async def load_or_create_session(self) -> None:
        """Resume the latest in-progress session, or start a new one."""
        self.user_id = await self.store.current_user_id()
        if not self.user_id:
            return
        try:
            row = await self.store.latest_in_progress_session(self.user_id)
            message_rows = await self.store.list_messages(row["id"]) if row else []
        except StoreError as e:
            logger.error(f"[DB] Error loading session: {e}")
            return

        if row:
            self._adopt(row, message_rows)
        else:
            await self.start_session()

    async def check_admin_status(self) -> bool:
        user_id = await self.store.current_user_id()
        if not user_id:
            self.is_admin = False
            return False
        try:
            self.is_admin = (await self.store.get_profile_role(user_id)) == "admin"
        except StoreError as e:
            logger.info(f"[DB] Admin check failed, assuming non-admin user: {e}")
            self.is_admin = False
        return self.is_admin

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def reset_session(self) -> None:
        """Forget the current session and cancel its pending background work."""
        self._cancel_background()
        self._generation += 1
        self.session = ReflectionSession()
        self.messages = []
        self._error = None
        self._transition(SessionState.NO_SESSION)

    async def start_session(self) -> None:
        """
        Create a session row and the phase 1 greeting.

        A call made while another creation is in flight is ignored. On
        failure `error` is set and the previous state is restored.
        """
        if self._state is SessionState.CREATING:
            logger.info("[SESSION] Session creation already in progress, skipping")
            return
        if not self._can_transition(SessionState.CREATING):
            logger.warning(f"[SESSION] Cannot start a session while {self._state.value}")
            return

        previous = self._state
        self._transition(SessionState.CREATING)
        self._loading = True
        self._error = None
        generation = self._generation

        try:
            self.user_id = await self.store.current_user_id()
            if not self.user_id:
                raise SessionStartError("Please sign in to start a session")

            row = await self.store.create_session(self.user_id)
            greeting = await self.welcome.cached_generate(build_profile())
            if not self._is_current(generation):
                return

            response_type = classify_response_type(greeting)
            logger.info(f"[WELCOME] Greeting ready (responseType={response_type})")
            message = Message(
                role=ROLE_ASSISTANT,
                content=TextContent(f"**{self._phase_title(1)}**\n\n{greeting or DEFAULT_GREETING}"),
                metadata={
                    "isPhaseHeader": True,
                    "phase": 1,
                    "functionUsed": "chat",
                    "isInitialGreeting": True,
                    "responseType": response_type,
                },
            )
            self.session = ReflectionSession(id=row["id"])
            self.messages = [message]
            await self._save_message(row["id"], message)
            if not self._is_current(generation):
                return

            self._transition(SessionState.ACTIVE)
            logger.info(f"[SESSION] Started session {row['id']}")
            self._notify(row["id"], {
                "id": row["id"],
                "title": DEFAULT_TITLE,
                "status": STATUS_IN_PROGRESS,
                "created_at": row.get("created_at"),
                "current_step": 1,
            })
        except (SessionStartError, StoreError) as e:
            logger.error(f"[SESSION] Failed to start session: {e}")
            if self._is_current(generation):
                self._error = str(e)
                self._state = previous
        finally:
            self._loading = False

    async def start_new_session(self) -> None:
        """Close the current session (best effort) and start a fresh one."""
        if self.session.id:
            await self._update_session_row(self.session.id, {"status": STATUS_COMPLETED})
        self.reset_session()
        await self.start_session()

    def update_messages(self, updater: Callable[[List[Message]], List[Message]]) -> None:
        self.messages = list(updater(list(self.messages)))

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    async def send_message(self, content: str) -> bool:
        """
        Append the user's message and run one turn. Returns whether the
        message was accepted.

        Blank content, a missing session or a completed session are ignored.
        While a reply, phase opening or completion is pending the message is
        rejected and `error` tells the user to resend it.
        """
        if not content or not content.strip():
            return False
        if not self.session.id:
            return False
        if self._state in BUSY_STATES:
            logger.warning(f"[CHAT] Rejected message while {self._state.value}")
            self._error = BUSY_MESSAGE
            return False
        if self._state is not SessionState.ACTIVE:
            logger.debug(f"[CHAT] Ignoring message while {self._state.value}")
            return False

        self._transition(SessionState.AWAITING_REPLY)
        self._error = None
        generation = self._generation
        message = Message(role=ROLE_USER, content=TextContent(content))
        self.messages.append(message)
        await self._save_message(self.session.id, message)
        if self._is_current(generation):
            await self.process_user_input(content, list(self.messages), exclude_id=message.id)
        return True

    def _conversation_history(
        self,
        user_input: str,
        messages: Sequence[Message],
        exclude_id: Optional[str],
    ) -> List[Dict[str, Any]]:
        history = []
        for message in messages:
            if message.is_phase_header or message.is_greeting:
                continue
            if exclude_id is not None:
                if message.id == exclude_id:
                    continue
            elif message.role == ROLE_USER and message.text == user_input:
                continue
            history.append(message.to_history_entry())
        return history

    def _decide_advance(self, user_input: str, response: ChatFunctionResponse) -> bool:
        policy = self.config.advancement
        remote = bool(response.phase_advanced)
        if policy == "remote":
            return remote
        local = self.validator.should_advance(
            self.session.current_step, user_input, self.session.responses
        )
        if policy == "local":
            return local
        return remote and local

    async def process_user_input(
        self,
        user_input: str,
        messages: Optional[Sequence[Message]] = None,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Send one turn to the chat function and apply its phase signal."""
        if not self.session.id:
            return
        if self._state is SessionState.ACTIVE:
            self._transition(SessionState.AWAITING_REPLY)
        elif self._state is not SessionState.AWAITING_REPLY:
            logger.debug(f"[CHAT] Ignoring input while {self._state.value}")
            return

        session_id = self.session.id
        generation = self._generation
        current_step = self.session.current_step
        responses = self.session.record_response(user_input)
        self.session.responses = responses

        if current_step == 1 and len(user_input.strip()) > 10:
            title = generate_session_title(user_input, current_step)
            self.session.title = title
            await self._update_session_row(session_id, {"title": title})
            logger.info(f"[SESSION] Session title updated to: {title!r}")
            self._notify(session_id, {"title": title})

        history = self._conversation_history(
            user_input, messages if messages is not None else self.messages, exclude_id
        )
        logger.info(
            f"[CHAT] Sending turn (phase={current_step}, input_len={len(user_input)}, "
            f"history_len={len(history)})"
        )

        try:
            response = await self.chat.chat({
                "userInput": user_input,
                "currentPhase": current_step,
                "conversationHistory": history,
                "sessionContext": {"sessionId": session_id, "threadId": self.session.thread_id},
                "sessionId": session_id,
            })
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[CHAT] Failed to generate AI response: {e}")
            if self._is_current(generation):
                # Shown inline only; not persisted.
                self.messages.append(Message(
                    role=ROLE_ASSISTANT,
                    content=TextContent(ERROR_MESSAGE.format(error=str(e))),
                    metadata={"isError": True, "phase": current_step},
                ))
                self._transition(SessionState.ACTIVE)
            return

        if not self._is_current(generation):
            logger.info("[CHAT] Session changed while waiting for reply, discarding it")
            return

        if response.thread_id and not self.session.thread_id:
            self.session.thread_id = response.thread_id
            await self._update_session_row(session_id, {"thread_id": response.thread_id})

        advanced = self._decide_advance(user_input, response)
        next_phase = response.next_phase or response.current_phase or current_step
        if advanced and next_phase <= current_step:
            next_phase = current_step + 1

        logger.info(
            f"[PHASE] Reply for phase {current_step}: advanced={advanced}, "
            f"next_phase={next_phase}, status={response.phase_status}"
        )

        metadata = dict(response.metadata)
        metadata.update({
            "phase": response.current_phase or current_step,
            "functionUsed": "chat",
            "responseType": "structured_json",
            "phase_status": response.phase_status,
            "phase_advanced": advanced,
            "original_phase": response.original_phase,
            "next_phase": next_phase,
        })
        if advanced:
            metadata["newPhase"] = next_phase
        if response.model:
            metadata["model"] = response.model

        reply = Message(role=ROLE_ASSISTANT, content=parse_content(response.content), metadata=metadata)
        self.messages.append(reply)
        await self._save_message(session_id, reply)
        if not self._is_current(generation):
            return

        if advanced and next_phase <= TOTAL_PHASES:
            self.session.current_step = next_phase
            await self._update_session_row(
                session_id, {"current_step": next_phase, "step_data": responses}
            )
            if not self._is_current(generation):
                return
            logger.info(f"[PHASE] Advanced from {current_step} to {next_phase}")
            title = (
                response.phase_data.title
                if response.phase_data and response.phase_data.title
                else self._phase_title(next_phase)
            )
            self._transition(SessionState.PHASE_TRANSITIONING)
            self._spawn(self._open_phase(generation, session_id, next_phase, title))
        elif advanced:
            logger.info(f"[PHASE] Final phase complete, closing session {session_id}")
            self._transition(SessionState.COMPLETING)
            self._spawn(self._complete_session(generation, session_id, responses))
        else:
            self._transition(SessionState.ACTIVE)

    # -------------------------------------------------------------------------
    # Background side effects
    # -------------------------------------------------------------------------

    async def _open_phase(self, generation: int, session_id: str, phase: int, title: str) -> None:
        """Post the header and opening prompt of the phase just entered."""
        header = f"**{title}**"
        metadata = {"isPhaseHeader": True, "phase": phase, "functionUsed": "chat"}
        try:
            await asyncio.sleep(self.config.phase_opening_delay)
            recent = [m.to_history_entry() for m in self.messages[-5:]]
            opening = await self.responder.generate(
                PHASE_OPENING_REQUEST, phase, recent, session_id=session_id
            )
            if not self._is_current(generation):
                return

            body = opening.content
            if opening.error:
                logger.warning(
                    f"[PHASE] No AI opening for phase {phase} ({opening.error}), using catalog question"
                )
                body = get_phase_question(phase) or ""
            content = f"{header}\n\n{body}" if body else header
            message = Message(
                role=ROLE_ASSISTANT,
                content=TextContent(content),
                metadata={**metadata, "isCombinedPhaseMessage": bool(body)},
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[PHASE] Failed to generate phase {phase} opening: {e}")
            if not self._is_current(generation):
                return
            message = Message(role=ROLE_ASSISTANT, content=TextContent(header), metadata=metadata)

        try:
            self.messages.append(message)
            await self._save_message(session_id, message)
        finally:
            if self._is_current(generation) and self._state is SessionState.PHASE_TRANSITIONING:
                self._transition(SessionState.ACTIVE)

    async def _complete_session(
        self, generation: int, session_id: str, responses: Dict[str, Dict[str, Any]]
    ) -> None:
        """CLEAR draft, then closing reflection, then mark the session completed."""
        context = CompletionContext.from_responses(responses)
        clear_message = generate_clear_message(context)
        closing = generate_closing_reflection(self.rng)

        await asyncio.sleep(self.config.clear_message_delay)
        if not self._is_current(generation):
            return
        clear = Message(
            role=ROLE_ASSISTANT,
            content=TextContent(format_clear_block(clear_message)),
            metadata={"isCompletion": True},
        )
        self.messages.append(clear)
        await self._save_message(session_id, clear)

        await asyncio.sleep(self.config.closing_delay - self.config.clear_message_delay)
        if not self._is_current(generation):
            return
        final = Message(
            role=ROLE_ASSISTANT,
            content=TextContent(closing),
            metadata={"isCompletion": True, "isFinal": True},
        )
        self.messages.append(final)
        await self._save_message(session_id, final)

        await self._update_session_row(
            session_id, {"status": STATUS_COMPLETED, "step_data": responses}
        )
        if not self._is_current(generation):
            return
        self.session.is_complete = True
        self.session.responses = responses
        self._transition(SessionState.COMPLETED)
        logger.info(f"[SESSION] Session {session_id} completed")
