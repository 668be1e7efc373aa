"""
Phase catalog for the BeAligned reflection process.

Seven ordered phases, from naming the issue to drafting a CLEAR message.
This is display and fallback data: the remote chat function decides how the
conversation actually moves between phases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PhaseDefinition:
    """One phase of the reflection process."""
    number: int
    title: str
    description: str
    prompts: List[str] = field(default_factory=list)
    validation_criteria: List[str] = field(default_factory=list)
    help_text: str = ""

    def to_dict(self) -> Dict:
        return {
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "prompts": list(self.prompts),
            "validation_criteria": list(self.validation_criteria),
            "help_text": self.help_text,
        }


TOTAL_PHASES = 7

REFLECTION_STEPS: List[PhaseDefinition] = [
    # Phase 1: Name it
    PhaseDefinition(
        number=1,
        title="🌿 PHASE 1: LET'S NAME IT",
        description="What's the situation that's been sticking with you lately?",
        prompts=[
            "What specific situation would you like to reflect on?",
            "Can we phrase this in a way that focuses on the situation, not the person?",
            "What's the heart of the matter here?",
            "How would you describe this issue in one neutral sentence?",
        ],
        validation_criteria=[
            "Issue is stated clearly and briefly",
            "Language is neutral and non-blaming",
            "Focuses on the situation, not attacking the person",
        ],
        help_text=(
            "Start by expressing what's weighing on you, even if it feels messy. "
            "We'll work together to capture the core issue in neutral language "
            "that invites conversation rather than conflict."
        ),
    ),

    # Phase 2: Feelings
    PhaseDefinition(
        number=2,
        title="🌊 PHASE 2: WHAT'S BENEATH THAT?",
        description="What feelings come up when you think about this?",
        prompts=[
            "What feelings are coming up for you?",
            "What else do you notice when you sit with that feeling?",
            "Sometimes beneath anger or frustration, there are softer feelings like hurt or disappointment. Do any of those resonate?",
            "What do these feelings tell you about what matters most to you?",
        ],
        validation_criteria=[
            "Names specific emotions",
            "Explores beyond surface feelings",
            "Connects feelings to what matters",
        ],
        help_text=(
            "Strong emotions like anger often sit on the surface. Beneath them may "
            "be more vulnerable feelings. Being curious about all your emotions "
            "helps discover what truly matters to you."
        ),
    ),

    # Phase 3: Values
    PhaseDefinition(
        number=3,
        title="💫 PHASE 3: YOUR WHY",
        description="What is it about this that feels important to you?",
        prompts=[
            "Why does this matter to you?",
            "What value or hope sits underneath this?",
            "What do you most want your child to experience here?",
            "If this were resolved in a way that aligned with your deeper purpose, what would that look like?",
        ],
        validation_criteria=[
            "Identifies core values or needs",
            "Moves beyond \"what I want\" to \"why it matters\"",
            "Connects to child-centered purpose",
        ],
        help_text=(
            "Your Why is about values, vision, and purpose - like safety, belonging, "
            "respect, or stability. When you anchor in Why rather than What, it "
            "reduces defensiveness and helps find shared ground."
        ),
    ),

    # Phase 4: Co-parent perspective
    PhaseDefinition(
        number=4,
        title="👥 PHASE 4: STEP INTO YOUR CO-PARENT'S SHOES",
        description="If your co-parent described this, how might they see it?",
        prompts=[
            "If you were in their shoes, what might they be worried about?",
            "What might your co-parent say matters most to them here?",
            "What might be the deeper Why behind their position?",
        ],
        validation_criteria=[
            "Shows genuine attempt to understand other perspectives",
            "Acknowledges without necessarily agreeing",
        ],
        help_text=(
            "This isn't about agreement; it's about awareness. By imagining how "
            "others see the situation, you expand from \"me versus you\" to "
            "understanding what's happening in the whole family system."
        ),
    ),

    # Phase 5: Child perspective
    PhaseDefinition(
        number=5,
        title="👶 PHASE 5: SEE THROUGH YOUR CHILD'S EYES",
        description="What might your child be noticing about this?",
        prompts=[
            "What might your child be noticing about this situation?",
            "How might they be feeling?",
            "What might they need right now - not from either parent, but in general?",
            "What would your child hope for if they could express it?",
        ],
        validation_criteria=[
            "Considers the child's perspective",
            "Names what the child might feel or need",
        ],
        help_text=(
            "Center your child's experience and needs. Children notice more than "
            "we think, and their view often clarifies what matters most."
        ),
    ),

    # Phase 6: Options
    PhaseDefinition(
        number=6,
        title="💡 PHASE 6: EXPLORE ALIGNED OPTIONS",
        description="Given everything we've explored, what ideas come to mind?",
        prompts=[
            "Given everything we've explored, your why, your co-parent's possible why, your child's needs, here are some concrete options to consider.",
            "Do any of these resonate with you? Would you like to explore one further, or would blending them work better?",
        ],
        validation_criteria=[
            "Recognizes preference for specific option",
            "Expresses desire to blend approaches",
            "Indicates readiness to move forward",
        ],
        help_text=(
            "Rather than asking you to generate ideas from scratch, concrete "
            "options are offered based on everything you've shared. You can "
            "choose one, blend several, or use them as inspiration."
        ),
    ),

    # Phase 7: CLEAR message
    PhaseDefinition(
        number=7,
        title="✉️ PHASE 7: CHOOSE + COMMUNICATE",
        description="Which of these feels most aligned with everyone's needs?",
        prompts=[
            "Based on your choice, let's draft a CLEAR message.",
            "Concise • Listener-Ready • Essential • Appropriate • Relevant",
            "Would you like to adjust this message, create an alternative version, or plan how to deliver it?",
        ],
        validation_criteria=[
            "Approves message draft",
            "Requests message modifications",
            "Expresses readiness to communicate",
        ],
        help_text=(
            "The CLEAR framework keeps your message powerful yet appropriate. "
            "We'll refine the draft until it feels aligned with your values and goals."
        ),
    ),
]

# Opening questions shown when a phase begins. Phase 6 is adaptive: the
# chat function produces either open questions or structured options.
PHASE_QUESTIONS: Dict[int, Optional[str]] = {
    2: "What feelings come up when you think about this? Sometimes anger masks hurt, or control masks fear. What might be underneath that for you?",
    3: "What is it about this that feels important to you? What are you hoping for, for your child, for yourself, or for the relationship?",
    4: "If your co-parent described this, how might they see it? What do you imagine they're feeling or needing?",
    5: "What might your child be noticing? How might they be feeling? What might they need right now?",
    6: None,
    7: "Would you like help crafting a message that reflects this shared purpose, either for yourself, your child, or your co-parent?",
}


def get_step_by_number(step_number: int) -> Optional[PhaseDefinition]:
    """Look up a phase by its number (1-7)."""
    for step in REFLECTION_STEPS:
        if step.number == step_number:
            return step
    return None


def get_phase_title(step_number: int) -> str:
    step = get_step_by_number(step_number)
    return step.title if step else f"PHASE {step_number}"


def get_phase_question(step_number: int) -> Optional[str]:
    return PHASE_QUESTIONS.get(step_number)
