"""Shared stubs for the chat functions and a fast, deterministic config."""

import pytest

from bealigned.content.templates import PHASE_OPENING_REQUEST
from bealigned.core.config import ReflectionConfig
from bealigned.data.store import InMemoryReflectionStore
from bealigned.llm.chat_function import CHAT_FUNCTION, WELCOME_FUNCTION, ChatFunctionError

AI_WELCOME = (
    "Welcome back. Take a breath; whatever brought you here today is worth "
    "a few quiet minutes. What's on your mind?"
)


class StubInvoker:
    """
    Records Edge Function calls and answers from a script.

    `chat_replies` are returned in order for user turns; phase opening
    requests get a fixed opening line and never consume a scripted reply.
    """

    def __init__(self, chat_replies=None, welcome=AI_WELCOME, welcome_error=None, chat_error=None):
        self.chat_replies = list(chat_replies or [])
        self.welcome = welcome
        self.welcome_error = welcome_error
        self.chat_error = chat_error
        self.calls = []

    @property
    def chat_calls(self):
        return [body for name, body in self.calls if name == CHAT_FUNCTION]

    @property
    def turn_calls(self):
        return [b for b in self.chat_calls if b["userInput"] != PHASE_OPENING_REQUEST]

    async def invoke(self, function_name, body):
        self.calls.append((function_name, body))
        if function_name == WELCOME_FUNCTION:
            if self.welcome_error:
                raise ChatFunctionError(function_name, self.welcome_error)
            return {"welcomeMessage": self.welcome, "toneCategory": "validating", "generatedBy": "ai"}

        if self.chat_error:
            raise ChatFunctionError(function_name, self.chat_error)
        if body["userInput"] == PHASE_OPENING_REQUEST:
            return {
                "content": f"Let's begin phase {body['currentPhase']}. What comes up for you?",
                "current_phase": body["currentPhase"],
                "phase_advanced": False,
            }
        if self.chat_replies:
            return self.chat_replies.pop(0)
        return {
            "content": "Tell me more about that.",
            "current_phase": body["currentPhase"],
            "next_phase": body["currentPhase"],
            "phase_advanced": False,
            "phase_status": "in_progress",
        }


def advance_reply(current, title=None, content="Thank you for sharing that."):
    reply = {
        "content": content,
        "current_phase": current,
        "next_phase": current + 1,
        "phase_advanced": True,
        "phase_status": "completed",
    }
    if title:
        reply["phase_data"] = {"title": title}
    return reply


@pytest.fixture
def fast_config():
    return ReflectionConfig(phase_opening_delay=0.0, clear_message_delay=0.0, closing_delay=0.0)


@pytest.fixture
def store():
    return InMemoryReflectionStore(user_id="user-1")


@pytest.fixture
def invoker():
    return StubInvoker()
