"""
Short human-readable session titles for the session list.
"""

from __future__ import annotations

import re

DEFAULT_TITLE = "New Reflection"

EMOTION_TITLES = {
    "grateful": "Feeling Grateful",
    "angry": "Dealing With Anger",
    "frustrated": "Feeling Frustrated",
    "sad": "Feeling Sad",
    "hurt": "Feeling Hurt",
    "worried": "Feeling Worried",
    "anxious": "Feeling Anxious",
    "overwhelmed": "Feeling Overwhelmed",
    "disappointed": "Feeling Disappointed",
    "confused": "Feeling Confused",
    "stressed": "Feeling Stressed",
    "upset": "Feeling Upset",
}

TOPIC_TITLES = [
    (("husband", "wife", "spouse"), "Relationship Issue"),
    (("child", "kid", "daughter", "son"), "Parenting Issue"),
    (("work", "job", "boss"), "Work Issue"),
    (("money", "financial"), "Financial Issue"),
]

_FEELING = re.compile(r"feel(?:ing)?\s+(\w+)", re.I)


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def generate_session_title(user_input: str, current_step: int) -> str:
    """
    Derive a title from what the user wrote.

    Phase 1 looks for "feel X", then emotion words, then topic keywords,
    then falls back to the first sentence. Later phases use a truncated
    copy of the input.
    """
    text = user_input.strip()
    if len(text) < 10:
        return DEFAULT_TITLE

    if current_step == 1:
        lower = text.lower()

        match = _FEELING.search(lower)
        if match:
            return f"Feeling {_capitalize(match.group(1))}"

        for word, title in EMOTION_TITLES.items():
            if word in lower:
                return title

        for keywords, title in TOPIC_TITLES:
            if any(k in lower for k in keywords):
                return title

        first_sentence = re.split(r"[.!?]", text)[0].strip()
        if len(first_sentence) <= 25:
            return _capitalize(first_sentence)
        return first_sentence[:22] + "..."

    if len(text) > 30:
        return text[:27] + "..."
    return _capitalize(text)
