"""
Message templates for welcome greetings and session closing.
"""

from __future__ import annotations

# =============================================================================
# WELCOME PROMPTS, organized by tone
# =============================================================================

WELCOME_PROMPTS = {
    "reflective": [
        "Being here isn't about having all the answers. It's about quieting the noise long enough to see what's really underneath. What's on your mind today?",
        "Sometimes the hardest part is slowing down enough to notice what matters. What's asking for your attention today?",
        "This is your pause button. What's the noise you most want to quiet?",
    ],
    "validating": [
        "Some days feel like too much. What's the one thing weighing most on you right now?",
        "You showed up, and that's already progress. Where do you want to start from here?",
        "I'm not here to hand you answers. I'm here to help you uncover the ones already within you. Where should we start?",
        "You made it here, and that's something. What do you want to work through first?",
    ],
    "sorting": [
        "You don't need to fix everything at once. What's the first piece you'd like to sort through?",
        "This space isn't about judgment. It's about finding clarity in the middle of the mess. What's showing up for you right now?",
        "Carrying a heavy load today? What can you set down here?",
        "You've got a lot on your plate. What's one piece we can clear off together?",
    ],
    "direct": [
        "Have at me. Bring the mess, the questions, the weight of it all. This is where we make it lighter. What do you want to lay down first?",
        "Lay it on me. What do you want to get off your chest first?",
        "Hit me with it. What's taking up the most space in your head right now?",
        "Go ahead, get it out. What's the thing you want to let go of the most?",
        "Don't hold back. What's the first thing you need to say?",
        "Bring it. Big or small, what's on you that we can unpack here?",
    ],
}

EMERGENCY_WELCOME = (
    "Let's take a moment to explore what's on your mind. "
    "What situation would you like to reflect on?"
)

DEFAULT_GREETING = (
    "It's great that you're here. What's the situation on your mind "
    "that you'd like to delve into today?"
)

# Openings of the static prompts above; a greeting that contains one of these
# was not produced by the AI welcome function.
STATIC_WELCOME_PATTERNS = [
    "You made it here",
    "You showed up",
    "Some days feel like too much",
    "Being here isn't about having all the answers",
    "Sometimes the hardest part is slowing down",
    "This is your pause button",
    "You don't need to fix everything at once",
    "Have at me. Bring the mess",
    "Lay it on me",
    "Hit me with it",
    "Go ahead, get it out",
    "Don't hold back",
    "Bring it. Big or small",
    "This space isn't about judgment",
    "Carrying a heavy load today",
    "You've got a lot on your plate",
    "I'm not here to hand you answers",
    "Let's take a moment to explore what's on your mind",
]

# =============================================================================
# SESSION CLOSING
# =============================================================================

GENERIC_CLEAR_MESSAGE = (
    "I've been reflecting on our situation, and I want to share something important. "
    "When [specific situation] happened, I felt [emotion] because [what matters to you]. "
    "I'm not asking you to agree with everything, but I am asking that we both center "
    "our child's needs. What I'd most appreciate is [specific request]. "
    "I believe we both want [shared goal for our child]."
)

CLEAR_MESSAGE = (
    "I've been reflecting on our situation, and I want to share something important. "
    "When {situation} happened, I felt {emotion} because {reason}. "
    "I'm not asking you to agree with everything, but I am asking that we both center "
    "our child's needs. What I'd most appreciate is finding a way to work together on this. "
    "I believe we both want what's best for our child."
)

CLEAR_MESSAGE_BLOCK = (
    "## 📝 Your CLEAR Message Draft\n\n"
    "\"{message}\"\n\n"
    "*Feel free to adapt this language to match your voice and situation.*"
)

CLOSING_REFLECTIONS = [
    "You've done some powerful reflection today, moving from confusion to clarity about what truly matters. Remember: Alignment doesn't mean agreement. It means staying centered on what's important. You've got this.",
    "What I see in you today is someone who chose to pause instead of react. That kind of reflection takes real courage, and it's exactly what creates the space for real solutions to emerge.",
    "You showed up today with honesty about your struggles and openness to seeing beyond your first reaction. That willingness to explore is what transforms conflict into collaboration.",
    "The fact that you're here, doing this work, shows your commitment to something bigger than being right. You're choosing to be the kind of parent who creates stability even in chaos.",
]

ERROR_MESSAGE = "Error: {error} - Please try again or contact support."

BUSY_MESSAGE = "Still working on the last reply. Please wait a moment and send your message again."

CONNECTION_TROUBLE_MESSAGE = (
    "I'm having trouble connecting right now. Let's take a breath together. "
    "What's weighing on your heart today?"
)

PHASE_OPENING_REQUEST = "Please provide the opening prompt for this phase."
