"""
Tests for the reflection session state machine.

Covers session start and resume, turn processing, phase advancement with
the asynchronous phase opening, the completion sequence, error handling,
and cancellation of background work on reset.
"""

import asyncio

import pytest

from conftest import AI_WELCOME, StubInvoker, advance_reply

from bealigned.content.phases import get_phase_question
from bealigned.content.templates import BUSY_MESSAGE
from bealigned.core.config import ReflectionConfig
from bealigned.core.messages import ROLE_ASSISTANT, ROLE_USER, STATUS_COMPLETED
from bealigned.core.orchestrator import (
    TRANSITIONS,
    ReflectionOrchestrator,
    SessionState,
    SessionStateError,
)
from bealigned.data.store import InMemoryReflectionStore, StoreError
from bealigned.llm.chat_function import (
    CHAT_FUNCTION,
    AIResponder,
    ChatFunctionClient,
    SupabaseFunctionInvoker,
)


def make_orchestrator(store, invoker, config, **kwargs):
    chat = ChatFunctionClient(invoker)
    return ReflectionOrchestrator(
        store=store,
        chat=chat,
        responder=AIResponder(chat),
        config=config,
        seed=7,
        **kwargs,
    )


async def started(store, invoker, config, **kwargs):
    orchestrator = make_orchestrator(store, invoker, config, **kwargs)
    await orchestrator.start_session()
    return orchestrator


async def at_step(store, invoker, config, step):
    """Orchestrator loaded on a stored session sitting at `step`."""
    row = await store.create_session("user-1")
    await store.update_session(row["id"], {"current_step": step})
    await store.insert_message({
        "session_id": row["id"],
        "owner_id": "user-1",
        "role": "assistant",
        "content": "**🌿 PHASE 1: LET'S NAME IT**\n\nWhat's on your mind?",
        "metadata": {"isPhaseHeader": True, "phase": 1, "isInitialGreeting": True},
        "message_index": 0,
    })
    orchestrator = make_orchestrator(store, invoker, config)
    assert await orchestrator.load_session(row["id"])
    return orchestrator


class SlowStore(InMemoryReflectionStore):
    """Yields to the event loop while creating a row, like a network store."""

    async def create_session(self, owner_id):
        await asyncio.sleep(0.01)
        return await super().create_session(owner_id)


class RaisingInvoker(StubInvoker):
    """Chat calls raise `error` as-is, without wrapping it in ChatFunctionError."""

    def __init__(self, error):
        super().__init__()
        self.error = error

    async def invoke(self, function_name, body):
        if function_name == CHAT_FUNCTION and self.error is not None:
            raise self.error
        return await super().invoke(function_name, body)


class FailingWritesStore(InMemoryReflectionStore):
    """Store whose message inserts and session updates always fail."""

    async def insert_message(self, row):
        raise StoreError("chat_messages", "connection reset")

    async def update_session(self, session_id, updates):
        raise StoreError("reflection_sessions", "connection reset")


class NetworkDownFunctions:
    async def invoke(self, function_name, invoke_options=None):
        raise ConnectionError("Network request failed")


class NetworkDownClient:
    functions = NetworkDownFunctions()


# =============================================================================
# STATE TABLE
# =============================================================================

class TestSessionState:
    def test_every_state_has_transitions(self):
        assert set(TRANSITIONS) == set(SessionState)

    def test_invalid_transition_raises(self, store, invoker, fast_config):
        orchestrator = make_orchestrator(store, invoker, fast_config)
        with pytest.raises(SessionStateError):
            orchestrator._transition(SessionState.COMPLETING)

    def test_initial_flags(self, store, invoker, fast_config):
        orchestrator = make_orchestrator(store, invoker, fast_config)
        assert orchestrator.state is SessionState.NO_SESSION
        assert not orchestrator.is_typing
        assert not orchestrator.is_phase_transitioning
        assert not orchestrator.is_creating_session
        assert not orchestrator.loading


# =============================================================================
# STARTING SESSIONS
# =============================================================================

class TestStartSession:
    @pytest.mark.asyncio
    async def test_greeting_is_first_message(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)

        assert orchestrator.state is SessionState.ACTIVE
        assert len(orchestrator.messages) == 1
        greeting = orchestrator.messages[0]
        assert greeting.role == ROLE_ASSISTANT
        assert greeting.text.startswith("**🌿 PHASE 1: LET'S NAME IT**\n\n")
        assert AI_WELCOME in greeting.text
        assert greeting.metadata["isInitialGreeting"] is True
        assert greeting.metadata["isPhaseHeader"] is True
        assert greeting.metadata["responseType"] == "ai_vector"

    @pytest.mark.asyncio
    async def test_greeting_is_persisted(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        rows = await store.list_messages(orchestrator.session.id)
        assert len(rows) == 1
        assert rows[0]["metadata"]["isInitialGreeting"] is True
        assert rows[0]["owner_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_static_welcome_when_function_fails(self, store, fast_config):
        invoker = StubInvoker(welcome_error="timeout")
        orchestrator = await started(store, invoker, fast_config)
        assert orchestrator.messages[0].metadata["responseType"] == "fallback"

    @pytest.mark.asyncio
    async def test_session_row_created(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        row = store.sessions[orchestrator.session.id]
        assert row["current_step"] == 1
        assert row["status"] == "in_progress"
        assert orchestrator.session.current_step == 1

    @pytest.mark.asyncio
    async def test_concurrent_start_creates_one_row(self, invoker, fast_config):
        store = SlowStore(user_id="user-1")
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await asyncio.gather(orchestrator.start_session(), orchestrator.start_session())
        assert len(store.sessions) == 1
        assert len(orchestrator.messages) == 1

    @pytest.mark.asyncio
    async def test_creating_state_during_start(self, invoker, fast_config):
        store = SlowStore(user_id="user-1")
        orchestrator = make_orchestrator(store, invoker, fast_config)
        task = asyncio.create_task(orchestrator.start_session())
        await asyncio.sleep(0)
        assert orchestrator.is_creating_session
        assert orchestrator.loading
        await task
        assert not orchestrator.is_creating_session

    @pytest.mark.asyncio
    async def test_no_user_sets_error(self, invoker, fast_config):
        store = InMemoryReflectionStore(user_id=None)
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await orchestrator.start_session()
        assert orchestrator.error == "Please sign in to start a session"
        assert orchestrator.state is SessionState.NO_SESSION
        assert orchestrator.messages == []
        assert store.sessions == {}

    @pytest.mark.asyncio
    async def test_callback_receives_summary(self, store, invoker, fast_config):
        updates = []
        orchestrator = make_orchestrator(
            store, invoker, fast_config,
            on_session_updated=lambda sid, data: updates.append((sid, data)),
        )
        await orchestrator.start_session()
        session_id, summary = updates[0]
        assert session_id == orchestrator.session.id
        assert summary["title"] == "New Reflection"
        assert summary["status"] == "in_progress"
        assert summary["current_step"] == 1

    @pytest.mark.asyncio
    async def test_start_new_session_resets_to_phase_one(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        orchestrator = await started(store, invoker, fast_config)
        first_id = orchestrator.session.id
        await orchestrator.send_message("My co-parent keeps changing pickup times")
        await orchestrator.wait_for_background()
        assert orchestrator.session.current_step == 2

        await orchestrator.start_new_session()

        assert orchestrator.session.id != first_id
        assert orchestrator.session.current_step == 1
        assert len(orchestrator.messages) == 1
        assert orchestrator.messages[0].metadata["isInitialGreeting"] is True
        assert store.sessions[first_id]["status"] == STATUS_COMPLETED

    @pytest.mark.asyncio
    async def test_persistence_failure_is_not_fatal(self, invoker, fast_config):
        store = FailingWritesStore(user_id="user-1")
        orchestrator = await started(store, invoker, fast_config)
        assert orchestrator.state is SessionState.ACTIVE
        assert len(orchestrator.messages) == 1


class TestLoadSession:
    @pytest.mark.asyncio
    async def test_resumes_latest_in_progress(self, store, invoker, fast_config):
        first = await started(store, invoker, fast_config)
        await first.send_message("The holidays schedule is a mess again")
        await first.wait_for_background()

        resumed = make_orchestrator(store, invoker, fast_config)
        await resumed.load_or_create_session()

        assert resumed.session.id == first.session.id
        assert [m.role for m in resumed.messages] == [ROLE_ASSISTANT, ROLE_USER, ROLE_ASSISTANT]
        assert resumed.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_creates_when_none_in_progress(self, store, invoker, fast_config):
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await orchestrator.load_or_create_session()
        assert len(store.sessions) == 1
        assert orchestrator.messages[0].metadata["isInitialGreeting"] is True

    @pytest.mark.asyncio
    async def test_no_user_is_silent(self, invoker, fast_config):
        store = InMemoryReflectionStore(user_id=None)
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await orchestrator.load_or_create_session()
        assert orchestrator.state is SessionState.NO_SESSION
        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_foreign_session_not_loaded(self, invoker, fast_config):
        store = InMemoryReflectionStore(user_id="user-1")
        row = await store.create_session("someone-else")
        orchestrator = make_orchestrator(store, invoker, fast_config)
        assert await orchestrator.load_session(row["id"]) is False
        assert orchestrator.session.id is None

    @pytest.mark.asyncio
    async def test_completed_session_loads_as_completed(self, store, invoker, fast_config):
        row = await store.create_session("user-1")
        await store.update_session(row["id"], {"status": STATUS_COMPLETED, "current_step": 7})
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await orchestrator.load_session(row["id"])
        assert orchestrator.state is SessionState.COMPLETED
        assert orchestrator.session.is_complete

    @pytest.mark.asyncio
    async def test_admin_status(self, invoker, fast_config):
        store = InMemoryReflectionStore(user_id="user-1", roles={"user-1": "admin"})
        orchestrator = make_orchestrator(store, invoker, fast_config)
        assert await orchestrator.check_admin_status() is True
        assert orchestrator.is_admin


# =============================================================================
# TURNS
# =============================================================================

class TestSendMessage:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    async def test_blank_input_is_noop(self, store, invoker, fast_config, content):
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message(content)
        assert len(orchestrator.messages) == 1
        assert invoker.chat_calls == []

    @pytest.mark.asyncio
    async def test_no_session_is_noop(self, store, invoker, fast_config):
        orchestrator = make_orchestrator(store, invoker, fast_config)
        await orchestrator.send_message("hello there, anyone home?")
        assert orchestrator.messages == []
        assert invoker.chat_calls == []

    @pytest.mark.asyncio
    async def test_user_message_persisted_before_remote_call(self, store, fast_config):
        seen = []

        class Recording(StubInvoker):
            async def invoke(self, function_name, body):
                if function_name == "chat":
                    seen.append([m["role"] for m in await store.list_messages(body["sessionId"])])
                return await super().invoke(function_name, body)

        invoker = Recording()
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("We argued about bedtime again")
        assert seen[0] == ["assistant", "user"]

    @pytest.mark.asyncio
    async def test_payload_and_history(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("We argued about bedtime again")
        await orchestrator.send_message("It keeps happening every weekend")

        first, second = invoker.turn_calls
        assert first["userInput"] == "We argued about bedtime again"
        assert first["currentPhase"] == 1
        assert first["sessionId"] == orchestrator.session.id
        # Greeting and the message being sent are excluded
        assert first["conversationHistory"] == []
        assert [h["role"] for h in second["conversationHistory"]] == ["user", "assistant"]
        assert second["conversationHistory"][0]["content"] == "We argued about bedtime again"

    @pytest.mark.asyncio
    async def test_repeated_text_stays_in_history(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("I don't know what to do")
        await orchestrator.send_message("I don't know what to do")
        history = invoker.turn_calls[1]["conversationHistory"]
        assert history[0]["content"] == "I don't know what to do"

    @pytest.mark.asyncio
    async def test_reply_appended_and_persisted(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[{
            "content": {"summary": "It sounds like weekends feel chaotic.", "prompts_for_user": ["What happens then?"]},
            "current_phase": 1,
            "next_phase": 1,
            "phase_advanced": False,
            "phase_status": "in_progress",
            "metadata": {"tokens": 42},
        }])
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("Weekends are chaos for the kids")

        reply = orchestrator.messages[-1]
        assert reply.role == ROLE_ASSISTANT
        assert reply.content.summary == "It sounds like weekends feel chaotic."
        assert reply.metadata["responseType"] == "structured_json"
        assert reply.metadata["tokens"] == 42
        assert reply.metadata["phase_advanced"] is False
        rows = await store.list_messages(orchestrator.session.id)
        assert rows[-1]["content"]["summary"] == "It sounds like weekends feel chaotic."
        assert orchestrator.state is SessionState.ACTIVE
        assert not orchestrator.is_typing

    @pytest.mark.asyncio
    async def test_title_updated_on_phase_one(self, store, invoker, fast_config):
        updates = []
        orchestrator = await started(
            store, invoker, fast_config,
            on_session_updated=lambda sid, data: updates.append(data),
        )
        await orchestrator.send_message("I feel exhausted by the constant back and forth")
        assert store.sessions[orchestrator.session.id]["title"] == "Feeling Exhausted"
        assert updates[-1] == {"title": "Feeling Exhausted"}

    @pytest.mark.asyncio
    async def test_short_phase_one_input_keeps_title(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("custody")
        assert store.sessions[orchestrator.session.id]["title"] is None

    @pytest.mark.asyncio
    async def test_thread_id_stored_once(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[
            {"content": "ok", "threadId": "thread-1"},
            {"content": "ok", "threadId": "thread-2"},
        ])
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("first message here")
        await orchestrator.send_message("second message here")
        assert orchestrator.session.thread_id == "thread-1"
        assert store.sessions[orchestrator.session.id]["thread_id"] == "thread-1"

    @pytest.mark.asyncio
    async def test_responses_recorded_per_step(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("The schedule keeps changing")
        assert orchestrator.session.responses["step1"]["userInput"] == "The schedule keeps changing"

    @pytest.mark.asyncio
    async def test_update_messages(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        orchestrator.update_messages(lambda messages: messages[:0])
        assert orchestrator.messages == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_network_error_appends_inline_message(self, store, fast_config):
        orchestrator = await at_step(
            store, SupabaseFunctionInvoker(NetworkDownClient()), fast_config, step=2
        )
        await orchestrator.send_message("I feel so angry and hurt about the custody schedule")

        last = orchestrator.messages[-1]
        assert last.role == ROLE_ASSISTANT
        assert last.text.startswith("Error:")
        assert "Network request failed" in last.text
        assert not orchestrator.is_typing
        assert orchestrator.state is SessionState.ACTIVE
        assert orchestrator.session.current_step == 2

    @pytest.mark.asyncio
    async def test_error_message_not_persisted(self, store, fast_config):
        orchestrator = await at_step(store, StubInvoker(chat_error="boom"), fast_config, step=2)
        await orchestrator.send_message("Something happened again today")
        rows = await store.list_messages(orchestrator.session.id)
        assert [r["role"] for r in rows] == ["assistant", "user"]

    @pytest.mark.asyncio
    async def test_malformed_reply_is_an_error(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[{"content": None, "response": None}])
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("Something happened again today")
        assert orchestrator.messages[-1].text.startswith("Error:")

    @pytest.mark.asyncio
    async def test_can_send_again_after_error(self, store, fast_config):
        invoker = StubInvoker(chat_error="boom")
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("first try at this")
        invoker.chat_error = None
        await orchestrator.send_message("second try at this")
        assert orchestrator.messages[-1].text == "Tell me more about that."

    @pytest.mark.asyncio
    async def test_any_invoker_exception_is_shown_inline(self, store, fast_config):
        invoker = RaisingInvoker(ConnectionError("network down"))
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("hello there world")

        assert orchestrator.messages[-1].text.startswith("Error: network down")
        assert orchestrator.messages[-1].metadata["isError"] is True
        assert not orchestrator.is_typing
        assert orchestrator.state is SessionState.ACTIVE

        invoker.error = None
        assert await orchestrator.send_message("second try") is True
        assert orchestrator.messages[-1].text == "Tell me more about that."

    @pytest.mark.asyncio
    async def test_store_failures_keep_session_in_memory(self, fast_config):
        store = FailingWritesStore(user_id="user-1")
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("My co-parent cancelled again")
        await orchestrator.wait_for_background()
        assert orchestrator.session.current_step == 2
        assert orchestrator.messages[-1].is_phase_header


# =============================================================================
# PHASE ADVANCEMENT
# =============================================================================

class TestPhaseAdvancement:
    @pytest.mark.asyncio
    async def test_custody_schedule_scenario(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[{
            "content": "It makes sense that you feel angry and hurt.",
            "current_phase": 2,
            "next_phase": 3,
            "phase_advanced": True,
        }])
        orchestrator = await at_step(store, invoker, fast_config, step=2)
        await orchestrator.send_message("I feel so angry and hurt about the custody schedule")

        assert orchestrator.session.current_step == 3
        await orchestrator.wait_for_background()

        assistant = [m for m in orchestrator.messages[1:] if m.role == ROLE_ASSISTANT]
        assert len(assistant) == 2
        assert assistant[0].text == "It makes sense that you feel angry and hurt."
        header = assistant[1]
        assert header.is_phase_header
        assert header.metadata["phase"] == 3
        assert header.text.startswith("**💫 PHASE 3: YOUR WHY**")
        assert "Let's begin phase 3" in header.text
        assert orchestrator.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_row_updated_with_step_data(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(2)])
        orchestrator = await at_step(store, invoker, fast_config, step=2)
        await orchestrator.send_message("I feel hurt and sad about it")
        row = store.sessions[orchestrator.session.id]
        assert row["current_step"] == 3
        assert row["step_data"]["step2"]["userInput"] == "I feel hurt and sad about it"

    @pytest.mark.asyncio
    async def test_phase_transitioning_until_opening_posted(self, store, invoker, fast_config):
        invoker.chat_replies = [advance_reply(1)]
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("The pickup schedule keeps changing")
        assert orchestrator.is_phase_transitioning
        # New input is held back while the opening is pending
        await orchestrator.send_message("hello?")
        assert invoker.turn_calls[-1]["userInput"] == "The pickup schedule keeps changing"

        await orchestrator.wait_for_background()
        assert not orchestrator.is_phase_transitioning

    @pytest.mark.asyncio
    async def test_header_uses_phase_data_title(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(1, title="PHASE 2: CUSTOM")])
        orchestrator = await started(store, invoker, fast_config)
        await orchestrator.send_message("The pickup schedule keeps changing")
        await orchestrator.wait_for_background()
        assert orchestrator.messages[-1].text.startswith("**PHASE 2: CUSTOM**")

    @pytest.mark.asyncio
    async def test_opening_falls_back_to_catalog_question(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        offline = ChatFunctionClient(SupabaseFunctionInvoker(NetworkDownClient()))
        orchestrator = make_orchestrator(store, invoker, fast_config)
        orchestrator.responder = AIResponder(offline)
        await orchestrator.start_session()
        await orchestrator.send_message("The pickup schedule keeps changing")
        await orchestrator.wait_for_background()

        header = orchestrator.messages[-1]
        assert header.is_phase_header
        assert get_phase_question(2) in header.text

    @pytest.mark.asyncio
    async def test_no_advance_keeps_step(self, store, invoker, fast_config):
        orchestrator = await at_step(store, invoker, fast_config, step=4)
        await orchestrator.send_message("They might be stressed too")
        await orchestrator.wait_for_background()
        assert orchestrator.session.current_step == 4
        assert not orchestrator.messages[-1].is_phase_header

    @pytest.mark.asyncio
    async def test_local_policy_uses_validator(self, store, invoker):
        config = ReflectionConfig(
            phase_opening_delay=0.0, clear_message_delay=0.0, closing_delay=0.0,
            advancement="local", validation_mode="legacy",
        )
        orchestrator = await at_step(store, invoker, config, step=2)
        await orchestrator.send_message("ok")
        assert orchestrator.session.current_step == 2
        await orchestrator.send_message("I feel frustrated and anxious about the handoffs")
        await orchestrator.wait_for_background()
        assert orchestrator.session.current_step == 3

    @pytest.mark.asyncio
    async def test_both_policy_requires_agreement(self, store):
        config = ReflectionConfig(
            phase_opening_delay=0.0, clear_message_delay=0.0, closing_delay=0.0,
            advancement="both", validation_mode="legacy",
        )
        invoker = StubInvoker(chat_replies=[advance_reply(2)])
        orchestrator = await at_step(store, invoker, config, step=2)
        await orchestrator.send_message("maybe")
        assert orchestrator.session.current_step == 2


# =============================================================================
# COMPLETION
# =============================================================================

class TestCompletion:
    @pytest.mark.asyncio
    async def test_final_phase_appends_two_messages(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(7)])
        orchestrator = await at_step(store, invoker, fast_config, step=7)
        await orchestrator.send_message("I'll send the message about the weekend plan")
        assert orchestrator.state is SessionState.COMPLETING
        before = len(orchestrator.messages)

        await orchestrator.wait_for_background()

        added = orchestrator.messages[before:]
        assert len(added) == 2
        assert added[0].text.startswith("## 📝 Your CLEAR Message Draft")
        assert added[0].metadata == {"isCompletion": True}
        assert added[1].metadata == {"isCompletion": True, "isFinal": True}
        assert orchestrator.session.is_complete
        assert orchestrator.state is SessionState.COMPLETED
        assert store.sessions[orchestrator.session.id]["status"] == STATUS_COMPLETED

    @pytest.mark.asyncio
    async def test_clear_message_uses_earlier_answers(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(7)])
        orchestrator = await at_step(store, invoker, fast_config, step=7)
        orchestrator.session.responses = {
            "step1": {"userInput": "the late pickups"},
            "step2": {"userInput": "I feel frustrated and tired"},
            "step3": {"userInput": "stability for my son"},
        }
        await orchestrator.send_message("I'll talk to them on Sunday")
        await orchestrator.wait_for_background()

        clear = orchestrator.messages[-2].text
        assert "When the late pickups happened, I felt frustrated because stability for my son." in clear
        step_data = store.sessions[orchestrator.session.id]["step_data"]
        assert step_data["step7"]["userInput"] == "I'll talk to them on Sunday"

    @pytest.mark.asyncio
    async def test_no_input_after_completion(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(7)])
        orchestrator = await at_step(store, invoker, fast_config, step=7)
        await orchestrator.send_message("Sending it tonight")
        await orchestrator.wait_for_background()
        count = len(orchestrator.messages)
        await orchestrator.send_message("one more thing")
        assert len(orchestrator.messages) == count


# =============================================================================
# INPUT WHILE BUSY
# =============================================================================

class TestBusyInput:
    @pytest.mark.asyncio
    async def test_message_during_phase_opening_is_rejected(self, store):
        config = ReflectionConfig(phase_opening_delay=10.0, clear_message_delay=0.0, closing_delay=0.0)
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        orchestrator = await started(store, invoker, config)
        await orchestrator.send_message("The pickup schedule keeps changing")
        assert orchestrator.is_phase_transitioning
        count = len(orchestrator.messages)

        accepted = await orchestrator.send_message("I feel angry and hurt")

        assert accepted is False
        assert orchestrator.is_busy
        assert orchestrator.error == BUSY_MESSAGE
        assert len(orchestrator.messages) == count
        assert len(invoker.turn_calls) == 1
        orchestrator.reset_session()
        await orchestrator.wait_for_background()

    @pytest.mark.asyncio
    async def test_resend_after_opening_clears_error(self, store):
        config = ReflectionConfig(phase_opening_delay=0.01, clear_message_delay=0.0, closing_delay=0.0)
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        orchestrator = await started(store, invoker, config)
        await orchestrator.send_message("The pickup schedule keeps changing")
        assert await orchestrator.send_message("I feel angry and hurt") is False

        await orchestrator.wait_for_background()
        assert await orchestrator.send_message("I feel angry and hurt") is True
        assert orchestrator.error is None
        assert any(m.text == "I feel angry and hurt" for m in orchestrator.messages)
        assert orchestrator.messages[-1].text == "Tell me more about that."

    @pytest.mark.asyncio
    async def test_completed_session_ignores_without_error(self, store, fast_config):
        invoker = StubInvoker(chat_replies=[advance_reply(7)])
        orchestrator = await at_step(store, invoker, fast_config, step=7)
        await orchestrator.send_message("Sending it tonight")
        await orchestrator.wait_for_background()
        assert await orchestrator.send_message("one more thing") is False
        assert orchestrator.error is None


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancellation:
    @pytest.mark.asyncio
    async def test_reset_cancels_pending_opening(self, store):
        config = ReflectionConfig(phase_opening_delay=10.0, clear_message_delay=0.0, closing_delay=0.0)
        invoker = StubInvoker(chat_replies=[advance_reply(1)])
        orchestrator = await started(store, invoker, config)
        first_id = orchestrator.session.id
        await orchestrator.send_message("The pickup schedule keeps changing")
        assert orchestrator.is_phase_transitioning

        await orchestrator.start_new_session()
        await orchestrator.wait_for_background()

        assert orchestrator.session.id != first_id
        assert len(orchestrator.messages) == 1
        assert not any(m.is_phase_header and m.metadata.get("phase") == 2 for m in orchestrator.messages)
        rows = await store.list_messages(first_id)
        assert not any(r["metadata"].get("phase") == 2 and r["metadata"].get("isPhaseHeader") for r in rows)

    @pytest.mark.asyncio
    async def test_reset_clears_state(self, store, invoker, fast_config):
        orchestrator = await started(store, invoker, fast_config)
        orchestrator.reset_session()
        assert orchestrator.state is SessionState.NO_SESSION
        assert orchestrator.session.id is None
        assert orchestrator.messages == []
