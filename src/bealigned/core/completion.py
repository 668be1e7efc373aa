"""
Closing sequence for a finished reflection.

Builds the CLEAR message draft and a closing reflection from what the user
said in earlier phases. No AI call is made here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np

from ..content.templates import (
    CLEAR_MESSAGE,
    CLEAR_MESSAGE_BLOCK,
    CLOSING_REFLECTIONS,
    GENERIC_CLEAR_MESSAGE,
)

KEY_EMOTIONS = [
    "angry", "frustrated", "hurt", "sad", "worried", "overwhelmed",
    "scared", "anxious", "confused", "disappointed", "upset", "stressed",
]


@dataclass
class CompletionContext:
    issue: Optional[str] = None
    feelings: Optional[str] = None
    why: Optional[str] = None
    child_needs: Optional[str] = None
    chosen_option: Optional[str] = None

    @classmethod
    def from_responses(cls, responses: Mapping[str, Mapping]) -> "CompletionContext":
        def answer(step: int) -> Optional[str]:
            return (responses.get(f"step{step}") or {}).get("userInput")

        return cls(
            issue=answer(1),
            feelings=answer(2),
            why=answer(3),
            child_needs=answer(5),
            chosen_option=answer(6) or answer(7),
        )


def extract_key_phrase(text: Optional[str], max_words: int = 8) -> str:
    """Shorten a long answer to its leading phrase, lowercased."""
    if not text or not text.strip():
        return "this situation"

    words = text.strip().split()
    if len(words) <= max_words:
        return text.strip().lower()

    first_sentence = re.split(r"[.!?]", text)[0].strip()
    if len(first_sentence.split()) <= max_words:
        return first_sentence.lower()

    return " ".join(words[:max_words]).lower()


def extract_key_emotion(text: Optional[str]) -> str:
    if not text:
        return "concerned"
    lower = text.lower()
    for emotion in KEY_EMOTIONS:
        if emotion in lower:
            return emotion
    return "concerned"


def generate_clear_message(context: CompletionContext) -> str:
    # Without issue, feelings and why, hand back the fill-in template.
    if not (context.issue and context.feelings and context.why):
        return GENERIC_CLEAR_MESSAGE
    return CLEAR_MESSAGE.format(
        situation=extract_key_phrase(context.issue),
        emotion=extract_key_emotion(context.feelings),
        reason=extract_key_phrase(context.why),
    )


def generate_closing_reflection(rng: Optional[np.random.Generator] = None) -> str:
    rng = rng or np.random.default_rng()
    return CLOSING_REFLECTIONS[int(rng.integers(len(CLOSING_REFLECTIONS)))]


def format_clear_block(message: str) -> str:
    return CLEAR_MESSAGE_BLOCK.format(message=message)
