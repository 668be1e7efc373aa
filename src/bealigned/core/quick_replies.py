"""
Quick reply suggestions for assistant messages.

Detects yes/no questions and numbered option lists so the client can offer
one-tap answers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class QuickReply:
    label: str
    value: str
    style: str = "primary"

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "value": self.value, "style": self.style}


# Must be specific enough not to match open questions like
# "What do you want to work through?"
YES_NO_PATTERNS = [
    re.compile(r"would you like (help )?(choosing|crafting|drafting|me to adjust|me to)", re.I),
    re.compile(r"would you like me to", re.I),
    re.compile(r"should i", re.I),
    re.compile(r"^do you want (?:me )?to", re.I | re.M),
    re.compile(r"are you ready to", re.I),
    re.compile(r"can i help you (?:with|to)", re.I),
    re.compile(r"shall i", re.I),
    re.compile(r"does (?:this|that) (?:sound|look|feel|work)", re.I),
    re.compile(r"is (?:this|that) (?:good|okay|alright)", re.I),
]

CONTEXT_REPLIES: Dict[str, List[QuickReply]] = {
    "which of these": [
        QuickReply("Option 1", "1"),
        QuickReply("Option 2", "2"),
        QuickReply("Option 3", "3"),
    ],
    "drafting": [
        QuickReply("Yes, draft", "yes draft"),
        QuickReply("No thanks", "no", "secondary"),
    ],
    "adjust": [
        QuickReply("Yes, adjust", "yes"),
        QuickReply("Looks good", "no", "secondary"),
    ],
    "ready": [
        QuickReply("I'm ready", "yes"),
        QuickReply("Not yet", "no", "secondary"),
    ],
}

DEFAULT_YES_NO = [
    QuickReply("Yes", "yes"),
    QuickReply("No", "no", "secondary"),
]

NUMBERED_OPTIONS = re.compile(r"\b1[).]\s+.+\b2[).]\s+.+\b3[).]", re.I | re.S)
OPTION_LINE = re.compile(r"(\d+)[).]\s+([^\n]+)")
MAX_OPTION_LABEL = 45


def detect_quick_replies(content: Optional[str]) -> Optional[List[QuickReply]]:
    """Return suggested replies for a message, or None."""
    if not content:
        return None

    # Numbered options take priority
    if NUMBERED_OPTIONS.search(content):
        matches = OPTION_LINE.findall(content)
        if len(matches) >= 3:
            replies = []
            for number, text in matches[:3]:
                text = text.strip()
                if len(text) > MAX_OPTION_LABEL:
                    text = text[:MAX_OPTION_LABEL] + "..."
                replies.append(QuickReply(f"Option {number}: {text}", number))
            return replies
        return list(CONTEXT_REPLIES["which of these"])

    if not any(pattern.search(content) for pattern in YES_NO_PATTERNS):
        return None

    lower = content.lower()
    for keyword, replies in CONTEXT_REPLIES.items():
        if keyword in lower:
            return list(replies)
    return list(DEFAULT_YES_NO)
