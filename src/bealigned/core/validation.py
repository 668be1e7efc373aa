"""
Heuristic phase-completion validators.

Each phase has a strategy `(user_input, context) -> bool` that looks for a
minimum engagement signal: emotion vocabulary for phase 2, causal and value
language for phase 3, perspective pronouns for phase 4, child references for
phase 5, solution and desire words for phase 6, message-structure words for
phase 7.

Two modes are available. "ai_driven" only rejects trivially short input and
leaves the advancement decision to the chat function. "legacy" runs the
per-phase strategies.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping, Optional

Validator = Callable[[str, Mapping[str, Any]], bool]

SUBSTANTIVE_LENGTH = 15

MINIMAL_RESPONSE = re.compile(r"^(yes|ok|okay|sure|maybe|idk|i don't know)$", re.I)
COMPLETION_SIGNAL = re.compile(r"^(no|nothing|that's it|that's all|i'm done|thats it)$", re.I)

EMOTION_WORDS = re.compile(
    r"\b(angry|sad|hurt|frustrated|disappointed|scared|worried|anxious|happy|relieved|"
    r"confused|overwhelmed|upset|mad|afraid|nervous|excited|hopeful|grateful|peaceful|"
    r"calm|stressed|shame|guilt|embarrassed|betrayed|abandoned|rejected|lonely|helpless|"
    r"powerless|bitter|resentful|exhausted|defeated|inadequate|hate|stuck|regretful|torn|"
    r"conflicted|trapped|drained|furious|devastated|heartbroken|guilty|ashamed|disgusted|"
    r"annoyed|irritated|jealous|envious|terrified|panicked)\b",
    re.I,
)
FEELING_PHRASES = re.compile(
    r"feel|feeling|emotion|overwhelm|lash out|don't want to be|envisioned|that's it|"
    r"nothing else|hate|love|loathe|can't stand|drives me crazy|makes me|i'm so|it's so|"
    r"just want|don't know what to do",
    re.I,
)
WHY_INDICATORS = re.compile(
    r"\b(because|need|want|value|important|matter|care about|believe|hope|wish|love|"
    r"protect|safe|secure|family|child|respect|trust|connection)\b",
    re.I,
)
VALUES_PHRASES = re.compile(r"for my|for our|so that|i want them|best for|what matters", re.I)
PERSPECTIVE_WORDS = re.compile(
    r"\b(they|them|their|might|maybe|perhaps|could be|probably|understand|feel|need|want)\b",
    re.I,
)
CHILD_WORDS = re.compile(
    r"\b(he|she|they|child|kid|son|daughter|wants|needs|feels|thinks|notices|sees|"
    r"confused|scared|happy|sad)\b",
    re.I,
)
CHILD_PHRASES = re.compile(
    r"just wants|might be|probably|likely|doesn't want|would feel|is feeling", re.I
)
SOLUTION_WORDS = re.compile(
    r"\b(could|would|can|will|try|maybe we|what if|how about|suggest|idea|option)\b", re.I
)
DESIRE_WORDS = re.compile(
    r"\b(want|hope|wish|need|would like|looking for|trying to|goal|desire)\b", re.I
)
OUTCOME_WORDS = re.compile(
    r"\b(voice|change|different|better|stop|end|freedom|respect|peace|harmony|work together)\b",
    re.I,
)
STUCK_SIGNALS = re.compile(
    r"^(i don't know|nothing|no ideas|i'm stuck|it won't work|never going to work)$", re.I
)
MESSAGE_STRUCTURE = re.compile(
    r"\b(feel|when|because|we both|would like|appreciate|understand)\b", re.I
)
CHOICE_WORDS = re.compile(
    r"\b(yes|ok|sure|try|first|option|message|draft|send|tell|say|communicate)\b", re.I
)
PREFERENCE_WORDS = re.compile(
    r"\b(prefer|like|better|best|choose|pick|go with|sounds good)\b", re.I
)


def _substantive(text: str) -> bool:
    return len(text) > SUBSTANTIVE_LENGTH


def validate_name_it(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text)


def validate_feelings(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text) and bool(
        EMOTION_WORDS.search(text)
        or FEELING_PHRASES.search(text)
        or COMPLETION_SIGNAL.match(text)
        or len(text) > 25
    )


def validate_why(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text) and bool(
        WHY_INDICATORS.search(text) or VALUES_PHRASES.search(text) or len(text) > 20
    )


def validate_co_parent_perspective(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text) and bool(
        PERSPECTIVE_WORDS.search(text) or COMPLETION_SIGNAL.match(text)
    )


def validate_child_perspective(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text) and bool(
        CHILD_WORDS.search(text)
        or CHILD_PHRASES.search(text)
        or COMPLETION_SIGNAL.match(text)
        or len(text) > 20
    )


def validate_options(text: str, context: Mapping[str, Any]) -> bool:
    return _substantive(text) and bool(
        SOLUTION_WORDS.search(text)
        or DESIRE_WORDS.search(text)
        or OUTCOME_WORDS.search(text)
        or STUCK_SIGNALS.match(text)
        or len(text) > 25
    )


def validate_message(text: str, context: Mapping[str, Any]) -> bool:
    # Any substantive reply counts once a draft is on the table.
    return _substantive(text) and bool(
        MESSAGE_STRUCTURE.search(text)
        or CHOICE_WORDS.search(text)
        or PREFERENCE_WORDS.search(text)
        or len(text) > SUBSTANTIVE_LENGTH
    )


LEGACY_VALIDATORS: Dict[int, Validator] = {
    1: validate_name_it,
    2: validate_feelings,
    3: validate_why,
    4: validate_co_parent_perspective,
    5: validate_child_perspective,
    6: validate_options,
    7: validate_message,
}


def ai_driven_validator(text: str, context: Mapping[str, Any]) -> bool:
    """Minimal check; the chat function owns the real decision."""
    return len(text) > 2


class PhaseValidator:
    """
    Per-phase completion check with a switchable mode.

    Strategies can be replaced per phase with `register`.
    """

    def __init__(
        self,
        mode: str = "ai_driven",
        validators: Optional[Mapping[int, Validator]] = None,
    ):
        if mode not in ("ai_driven", "legacy"):
            raise ValueError(f"Unknown validation mode: {mode}")
        self.mode = mode
        self.validators: Dict[int, Validator] = dict(validators or LEGACY_VALIDATORS)

    def register(self, step_number: int, validator: Validator) -> None:
        self.validators[step_number] = validator

    def should_advance(
        self,
        step_number: int,
        user_input: Optional[str],
        responses: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        text = (user_input or "").strip()
        context = {"step": step_number, "responses": responses or {}}

        if self.mode == "ai_driven":
            return ai_driven_validator(text, context)

        validator = self.validators.get(step_number)
        if validator is None:
            return False
        if MINIMAL_RESPONSE.match(text) and not COMPLETION_SIGNAL.match(text):
            return False
        return validator(text, context)


def validate_step_completion(
    step_number: int,
    user_input: Optional[str],
    responses: Optional[Mapping[str, Any]] = None,
    mode: str = "ai_driven",
) -> bool:
    """Functional shortcut for a one-off check."""
    return PhaseValidator(mode=mode).should_advance(step_number, user_input, responses)
