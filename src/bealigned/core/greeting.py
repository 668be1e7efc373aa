"""
Welcome greeting for the first assistant message of a session.

The AI welcome function is tried first; on any failure a static prompt is
picked from the tone category that best fits the user's profile.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..content.templates import (
    EMERGENCY_WELCOME,
    STATIC_WELCOME_PATTERNS,
    WELCOME_PROMPTS,
)
from ..llm.chat_function import ChatFunctionClient, ChatFunctionError

logger = logging.getLogger(__name__)

TONES = ("reflective", "validating", "sorting", "direct")

RESPONSE_TYPE_AI = "ai_vector"
RESPONSE_TYPE_FALLBACK = "fallback"


@dataclass
class WelcomeProfile:
    preferred_tone: Optional[str] = None          # a tone, or "mixed"
    communication_style: Optional[str] = None     # gentle, direct, supportive, structured
    has_completed_sessions: bool = False
    time_of_day: Optional[str] = None             # morning, afternoon, evening, late

    def cache_key(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    def to_payload(self) -> Dict:
        return {
            "preferredTone": self.preferred_tone,
            "communicationStyle": self.communication_style,
            "sessionHistory": {"hasCompletedSessions": self.has_completed_sessions},
            "timeOfDay": self.time_of_day,
        }


def build_profile(now: Optional[datetime] = None) -> WelcomeProfile:
    """Basic profile derived from the local time."""
    hour = (now or datetime.now()).hour
    if hour < 12:
        time_of_day = "morning"
    elif hour < 18:
        time_of_day = "afternoon"
    elif hour < 22:
        time_of_day = "evening"
    else:
        time_of_day = "late"
    return WelcomeProfile(communication_style="supportive", time_of_day=time_of_day)


def classify_response_type(greeting: Optional[str]) -> str:
    """
    Tell AI-generated greetings apart from static ones.

    Only used to color-code greetings for admins.
    """
    if not greeting or len(greeting) < 30:
        return RESPONSE_TYPE_FALLBACK
    if any(pattern in greeting for pattern in STATIC_WELCOME_PATTERNS):
        return RESPONSE_TYPE_FALLBACK
    return RESPONSE_TYPE_AI


class WelcomeGenerator:
    """
    Produces welcome greetings.

    Owns its randomness and its cache, so separate generators never share
    state.
    """

    def __init__(
        self,
        chat: Optional[ChatFunctionClient] = None,
        seed: Optional[int] = None,
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chat = chat
        self.rng = np.random.default_rng(seed)
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: Dict[str, Tuple[str, float]] = {}

    # -------------------------------------------------------------------------
    # Static selection
    # -------------------------------------------------------------------------

    def all_prompts(self) -> List[str]:
        return [prompt for tone in TONES for prompt in WELCOME_PROMPTS[tone]]

    def random_prompt(self) -> str:
        prompts = self.all_prompts()
        return prompts[int(self.rng.integers(len(prompts)))]

    def prompt_by_category(self, tone: str) -> str:
        prompts = WELCOME_PROMPTS.get(tone) or WELCOME_PROMPTS["validating"]
        return prompts[int(self.rng.integers(len(prompts)))]

    def weighted_prompt(self, weights: Optional[Dict[str, float]] = None) -> str:
        """Pick a prompt with per-tone weights (default 1 each)."""
        weights = {tone: 1.0 for tone in TONES} | dict(weights or {})
        prompts: List[str] = []
        probs: List[float] = []
        for tone in TONES:
            for prompt in WELCOME_PROMPTS[tone]:
                prompts.append(prompt)
                probs.append(max(float(weights.get(tone, 1.0)), 0.0))
        p = np.asarray(probs, dtype=np.float64)
        if p.sum() <= 0:
            return self.random_prompt()
        return str(self.rng.choice(prompts, p=p / p.sum()))

    def determine_tone(self, profile: WelcomeProfile) -> str:
        if profile.preferred_tone and profile.preferred_tone != "mixed":
            return profile.preferred_tone

        if profile.time_of_day == "morning":
            return "reflective"
        if profile.time_of_day in ("evening", "late"):
            return "validating"

        if profile.communication_style == "direct":
            return "direct"
        if profile.communication_style == "gentle":
            return "validating"
        if profile.communication_style == "structured":
            return "sorting"

        # Returning users get a more direct start
        if profile.has_completed_sessions:
            return "direct" if self.rng.random() > 0.5 else "sorting"

        return "validating"

    def static_welcome(self, profile: Optional[WelcomeProfile] = None) -> str:
        tone = self.determine_tone(profile or WelcomeProfile())
        logger.debug(f"[WELCOME] Using static fallback with tone: {tone}")
        return self.prompt_by_category(tone)

    # -------------------------------------------------------------------------
    # AI-backed generation
    # -------------------------------------------------------------------------

    async def generate(self, profile: Optional[WelcomeProfile] = None) -> str:
        """AI welcome first, static tone-matched prompt on any failure."""
        profile = profile or WelcomeProfile()
        if self.chat is not None:
            try:
                return await self.chat.welcome(profile.to_payload())
            except ChatFunctionError as e:
                logger.warning(f"[WELCOME] AI welcome failed, using static prompt: {e}")
        try:
            return self.static_welcome(profile)
        except (KeyError, ValueError) as e:
            logger.error(f"[WELCOME] Static welcome selection failed: {e}")
            return EMERGENCY_WELCOME

    async def cached_generate(self, profile: Optional[WelcomeProfile] = None) -> str:
        profile = profile or WelcomeProfile()
        key = profile.cache_key()
        cached = self._cache.get(key)
        now = self._clock()
        if cached and now - cached[1] < self.cache_ttl:
            return cached[0]

        message = await self.generate(profile)
        self._cache[key] = (message, now)
        return message
