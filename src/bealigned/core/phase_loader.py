"""
Phase definitions loaded from the admin-editable `phase_prompts` table.

Rows are converted to `PhaseDefinition`s. When the table is empty or the
query fails, the compiled-in catalog is used instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..content.phases import REFLECTION_STEPS, PhaseDefinition
from ..data.store import ReflectionStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class EnhancedPhasePrompt:
    """One row of phase_prompts."""
    phase_number: int
    phase_header: str
    welcome_prompt: str
    id: str = ""
    semantic_id: str = ""
    phase_name: str = ""
    followup_prompts: List[str] = field(default_factory=list)
    expected_intent: str = ""
    ai_guidance: str = ""
    transition_rules: Dict[str, Any] = field(default_factory=dict)
    reflection_goal: str = ""
    validation_keywords: List[str] = field(default_factory=list)
    example_responses: str = ""
    is_active: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EnhancedPhasePrompt":
        followups = row.get("followup_prompts")
        keywords = row.get("validation_keywords")
        return cls(
            id=str(row.get("id") or ""),
            semantic_id=row.get("semantic_id") or "",
            phase_name=row.get("phase_name") or "",
            phase_header=row.get("phase_header") or "",
            welcome_prompt=row.get("welcome_prompt") or "",
            followup_prompts=list(followups) if isinstance(followups, list) else [],
            expected_intent=row.get("expected_intent") or "",
            ai_guidance=row.get("ai_guidance") or "",
            transition_rules=dict(row.get("transition_rules") or {}),
            reflection_goal=row.get("reflection_goal") or "",
            validation_keywords=list(keywords) if isinstance(keywords, list) else [],
            example_responses=row.get("example_responses") or "",
            phase_number=int(row["phase_number"]),
            is_active=bool(row.get("is_active", True)),
        )


def transform_enhanced_to_legacy(enhanced: List[EnhancedPhasePrompt]) -> List[PhaseDefinition]:
    phases = []
    for phase in enhanced:
        if phase.reflection_goal:
            help_text = phase.reflection_goal
        elif phase.ai_guidance:
            help_text = phase.ai_guidance[:150] + "..."
        else:
            help_text = ""
        phases.append(PhaseDefinition(
            number=phase.phase_number,
            title=phase.phase_header,
            description=phase.welcome_prompt,
            prompts=[phase.welcome_prompt, *phase.followup_prompts],
            validation_criteria=[phase.expected_intent],
            help_text=help_text,
        ))
    return phases


class PhasePromptLoader:
    """
    Loads phase definitions once per app session.

    `phases` is always usable; `enhanced_phases` is empty when the
    fallback catalog is in use; `error` holds the last load failure.
    """

    def __init__(self, store: ReflectionStore):
        self.store = store
        self.phases: List[PhaseDefinition] = list(REFLECTION_STEPS)
        self.enhanced_phases: List[EnhancedPhasePrompt] = []
        self.error: Optional[str] = None
        self.loading = False

    async def load(self) -> List[PhaseDefinition]:
        self.loading = True
        self.error = None
        try:
            rows = await self.store.list_phase_prompts()
            if not rows:
                logger.warning("[PHASE] No phase prompts found, using fallback")
                self.phases = list(REFLECTION_STEPS)
                self.enhanced_phases = []
                return self.phases

            enhanced = sorted(
                (EnhancedPhasePrompt.from_row(row) for row in rows),
                key=lambda p: p.phase_number,
            )
            self.enhanced_phases = enhanced
            self.phases = transform_enhanced_to_legacy(enhanced)
            logger.info(f"[PHASE] Loaded {len(enhanced)} phase prompts from database")
        except (StoreError, KeyError, TypeError, ValueError) as e:
            logger.error(f"[PHASE] Failed to load phase prompts: {e}")
            self.error = str(e) or "Failed to load enhanced phases"
            self.phases = list(REFLECTION_STEPS)
            self.enhanced_phases = []
        finally:
            self.loading = False
        return self.phases

    async def refresh(self) -> List[PhaseDefinition]:
        return await self.load()

    def phase(self, number: int) -> Optional[PhaseDefinition]:
        for phase in self.phases:
            if phase.number == number:
                return phase
        return None

    def by_semantic_id(self, semantic_id: str) -> Optional[EnhancedPhasePrompt]:
        for phase in self.enhanced_phases:
            if phase.semantic_id == semantic_id:
                return phase
        return None

    def by_number(self, number: int) -> Optional[EnhancedPhasePrompt]:
        for phase in self.enhanced_phases:
            if phase.phase_number == number:
                return phase
        return None

    def validation_keywords(self, number: int) -> List[str]:
        phase = self.by_number(number)
        return list(phase.validation_keywords) if phase else []

    def ai_guidance(self, number: int) -> str:
        phase = self.by_number(number)
        return phase.ai_guidance if phase else ""

    def expected_intent(self, number: int) -> str:
        phase = self.by_number(number)
        return phase.expected_intent if phase else ""

    def welcome_prompt(self, number: int) -> str:
        phase = self.by_number(number)
        if phase and phase.welcome_prompt:
            return phase.welcome_prompt
        legacy = self.phase(number)
        return legacy.description if legacy else ""
