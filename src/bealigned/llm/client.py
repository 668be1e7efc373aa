"""
HTTP wrapper for OpenAI-compatible /v1/chat/completions endpoints.

Used as the direct fallback when the chat Edge Function is unreachable.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..core.config import load_dotenv

logger = logging.getLogger(__name__)


class LLMAPIError(Exception):
    """Raised when the LLM API returns an error."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"LLM API error {status_code}: {message}")


@dataclass
class LLMClient:
    """
    HTTP wrapper for OpenAI-compatible /v1/chat/completions endpoints.

    Configure via environment variables:
        LLM_API_KEY / OPENAI_API_KEY: API key
        LLM_BASE_URL: API base URL (default: OpenAI)
        LLM_MODEL: Default model name
    """

    api_key: str = ""
    model: str = ""
    base_url: str = ""
    timeout: float = 30.0
    max_retries: int = 2

    def __post_init__(self):
        load_dotenv()
        if not self.base_url:
            self.base_url = os.environ.get(
                "LLM_BASE_URL", "https://api.openai.com/v1"
            ).strip().rstrip("/")
        if not self.model:
            self.model = os.environ.get("LLM_MODEL", "gpt-4o").strip()
        if not self.api_key:
            self.api_key = self._load_api_key()

    def _load_api_key(self) -> str:
        for env_var in ("LLM_API_KEY", "OPENAI_API_KEY"):
            key = os.environ.get(env_var, "").strip()
            if key:
                return key
        return ""

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _do_request(self, url: str, body: Dict[str, Any]) -> str:
        """Make a single chat completion request. Returns content or raises."""
        resp = requests.post(
            url,
            headers=self._headers(),
            json=body,
            timeout=self.timeout,
        )

        if resp.status_code == 200:
            data = resp.json()
            message = data["choices"][0]["message"]
            return message.get("content") or ""

        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After", "?")
            raise LLMAPIError(429, f"Rate limited (Retry-After: {retry_after}s)")

        raise LLMAPIError(resp.status_code, resp.text)

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 300,
        model_override: Optional[str] = None,
    ) -> str:
        """
        Call /v1/chat/completions.

        Client errors (4xx other than 429) fail immediately; timeouts,
        connection errors and server errors are retried with backoff.
        Raises LLMAPIError on failure.
        """
        if not self.api_key:
            raise LLMAPIError(401, "No LLM_API_KEY or OPENAI_API_KEY found in env or .env file")

        body: Dict[str, Any] = {
            "model": model_override or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        url = f"{self.base_url}/chat/completions"

        last_error: Optional[LLMAPIError] = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._do_request(url, body)
            except LLMAPIError as e:
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise
                last_error = e
            except requests.exceptions.Timeout:
                logger.warning(f"[LLMClient] Request timed out (attempt {attempt + 1}/{self.max_retries + 1})")
                last_error = LLMAPIError(408, "Request timed out")
            except requests.exceptions.ConnectionError as e:
                logger.warning(f"[LLMClient] Connection error: {e}")
                last_error = LLMAPIError(0, f"Connection error: {e}")

            if attempt < self.max_retries:
                time.sleep(2 ** attempt)

        raise last_error  # type: ignore

    @property
    def is_available(self) -> bool:
        """Check if the client has an API key configured."""
        return bool(self.api_key)
