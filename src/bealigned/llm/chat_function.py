"""
Client for the remote `chat` and `generate-ai-welcome` Edge Functions.

The chat function is opaque: it receives the user's input with the current
phase and history, and answers with content plus structured phase signals.
`AIResponder` wraps it in a fallback chain (Edge Function → direct LLM →
static text) for content that must always be produced.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..content.templates import CONNECTION_TROUBLE_MESSAGE
from .client import LLMAPIError, LLMClient

logger = logging.getLogger(__name__)

CHAT_FUNCTION = "chat"
WELCOME_FUNCTION = "generate-ai-welcome"


class ChatFunctionError(Exception):
    """Raised when an Edge Function call fails or returns an unusable body."""

    def __init__(self, function_name: str, message: str):
        self.function_name = function_name
        super().__init__(f"Function Error ({function_name}): {message}")


class PhaseData(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None


class ChatFunctionResponse(BaseModel):
    """Structured reply of the chat function."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: Any = None
    current_phase: Optional[int] = None
    next_phase: Optional[int] = None
    phase_advanced: bool = False
    phase_status: Optional[str] = None
    phase_data: Optional[PhaseData] = None
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    original_phase: Optional[int] = None
    model: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("content") is None and "response" in data:
            data["content"] = data["response"]
        if data.get("current_phase") is None and "currentPhase" in data:
            data["current_phase"] = data["currentPhase"]
        if data.get("phase_advanced") is None:
            data["phase_advanced"] = False
        if data.get("metadata") is None:
            data["metadata"] = {}
        return data


class FunctionInvoker(Protocol):
    async def invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        ...


class SupabaseFunctionInvoker:
    """Invokes Edge Functions through a supabase AsyncClient."""

    def __init__(self, client):
        self.client = client

    async def invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            data = await self.client.functions.invoke(
                function_name,
                invoke_options={"body": body, "responseType": "json"},
            )
        except Exception as e:
            raise ChatFunctionError(function_name, str(e) or e.__class__.__name__) from e

        if isinstance(data, (bytes, bytearray, str)):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise ChatFunctionError(function_name, f"invalid JSON body: {e}") from e
        if not isinstance(data, dict):
            raise ChatFunctionError(function_name, f"unexpected body type {type(data).__name__}")
        if data.get("error"):
            raise ChatFunctionError(function_name, str(data["error"]))
        return data


class UnconfiguredInvoker:
    """Stand-in used when no Supabase project is configured; every call fails."""

    async def invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        raise ChatFunctionError(function_name, "Supabase is not configured (set SUPABASE_URL and SUPABASE_KEY)")


class ChatFunctionClient:
    """Typed access to the chat and welcome functions."""

    def __init__(self, invoker: FunctionInvoker):
        self.invoker = invoker

    async def chat(self, payload: Dict[str, Any]) -> ChatFunctionResponse:
        logger.debug(
            f"[CHAT] Invoking chat (phase={payload.get('currentPhase')}, "
            f"history_len={len(payload.get('conversationHistory') or [])})"
        )
        data = await self.invoker.invoke(CHAT_FUNCTION, payload)
        try:
            response = ChatFunctionResponse.model_validate(data)
        except ValidationError as e:
            raise ChatFunctionError(CHAT_FUNCTION, f"malformed response: {e}") from e
        if response.content is None:
            raise ChatFunctionError(CHAT_FUNCTION, "response has no content")
        return response

    async def welcome(self, user_profile: Dict[str, Any]) -> str:
        data = await self.invoker.invoke(WELCOME_FUNCTION, {"userProfile": user_profile})
        message = data.get("welcomeMessage")
        if not message:
            raise ChatFunctionError(WELCOME_FUNCTION, "no welcome message returned")
        logger.debug(
            f"[WELCOME] AI welcome generated (tone={data.get('toneCategory')}, "
            f"by={data.get('generatedBy')})"
        )
        return message


# =============================================================================
# FALLBACK CHAIN
# =============================================================================

DIRECT_FALLBACK_SYSTEM_PROMPT = """\
You are a warm co-parenting reflection coach.

Current Phase: {phase}

Do NOT include phase headers like "PHASE 2: WHAT'S BENEATH THAT?" in your response.
Be natural and conversational in your response.
Focus on the current phase objectives only.
Provide warm, reflective guidance without phase transitions."""


@dataclass
class AIResponse:
    content: str
    model: str
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AIResponder:
    """
    Produces assistant text with a three-step fallback chain:
    the chat Edge Function, then a direct LLM call, then a static message.
    """

    def __init__(self, chat: ChatFunctionClient, llm: Optional[LLMClient] = None):
        self.chat = chat
        self.llm = llm

    async def generate(
        self,
        user_input: str,
        current_phase: int,
        conversation_history: Optional[List[Dict[str, Any]]] = None,
        session_id: Optional[str] = None,
    ) -> AIResponse:
        history = list(conversation_history or [])[-10:]
        try:
            response = await self.chat.chat({
                "userInput": user_input,
                "currentPhase": current_phase,
                "conversationHistory": history,
                "sessionContext": {"sessionId": session_id},
                "sessionId": session_id,
            })
            content = response.content
            if isinstance(content, dict):
                content = content.get("summary") or json.dumps(content)
            return AIResponse(
                content=str(content),
                model=response.model or "chat-function",
                metadata=dict(response.metadata),
            )
        except ChatFunctionError as e:
            logger.warning(f"[AI] Chat function failed, trying direct LLM: {e}")

        if self.llm is not None and self.llm.is_available:
            messages = [
                {"role": "system", "content": DIRECT_FALLBACK_SYSTEM_PROMPT.format(phase=current_phase)},
            ]
            for entry in history:
                content = entry.get("content")
                if isinstance(content, dict):
                    content = content.get("summary") or json.dumps(content)
                messages.append({"role": entry.get("role", "user"), "content": str(content or "")})
            messages.append({"role": "user", "content": user_input})
            try:
                text = await asyncio.to_thread(
                    self.llm.chat_completion,
                    messages,
                    0.7,
                    600 if current_phase == 6 else 300,
                )
                return AIResponse(content=text, model=f"{self.llm.model}-fallback")
            except LLMAPIError as e:
                logger.error(f"[AI] Direct LLM fallback also failed: {e}")
                return AIResponse(
                    content=CONNECTION_TROUBLE_MESSAGE, model="fallback-static", error=str(e)
                )

        return AIResponse(
            content=CONNECTION_TROUBLE_MESSAGE,
            model="fallback-static",
            error="no AI provider available",
        )
