"""Heuristic intent classification for chat messages.

Defines:
- Intent: closed set of intent labels plus the UNKNOWN sentinel.
- IntentDecision: Dataclass carrying the chosen intent and rationale.
- classify_intent: deterministic, offline classifier producing an IntentDecision.

Used to short-circuit trivial interactions (greetings, thanks, farewells)
before spending a generation call.
"""
import re
from dataclasses import dataclass
from enum import Enum


class Intent(str, Enum):
    GREETING = "greeting"
    THANKS = "thanks"
    FAREWELL = "farewell"
    SUMMARY = "summary"
    QUESTION = "question"
    UNKNOWN = "unknown"


@dataclass
class IntentDecision:
    """Classification result.

    Attributes:
        intent: One of the Intent labels.
        reason: Short human-readable rationale for the chosen intent.
    """
    intent: Intent
    reason: str


QUESTION_WORDS = {
    "what", "how", "why", "when", "where", "which", "who", "whom", "whose",
    "is", "are", "can", "could", "does", "do", "did", "should", "would", "will",
    "explain", "describe", "tell",
}
SUMMARY_TERMS = ("summarize", "summarise", "summary", "tl;dr", "tldr", "key points", "main points", "gist")
GREETING = re.compile(r"^(hi|hello|hey|hiya|yo|greetings|good (morning|afternoon|evening))\b")
THANKS = re.compile(r"\b(thanks|thank you|thx|ty|cheers|much appreciated)\b")
FAREWELL = re.compile(r"\b(bye|goodbye|see you|see ya|farewell|good night|later)\b")
WORDS = re.compile(r"[a-z0-9']+")


def classify_intent(text: str) -> IntentDecision:
    """Classify a chat message using heuristics.

    Args:
        text: The raw message.

    Returns:
        IntentDecision: Selected intent and rationale.

    Heuristics (first match wins):
        - 'summary' when the message asks for a summary/key points.
        - 'question' for a trailing '?' or a leading question/instruction word.
        - 'thanks', 'farewell', 'greeting' for short social phrases.
        - 'unknown' otherwise, including messages with no words at all.
    """
    tl = text.strip().lower()
    words = WORDS.findall(tl)
    if not words:
        return IntentDecision(intent=Intent.UNKNOWN, reason="no words")

    if any(t in tl for t in SUMMARY_TERMS):
        return IntentDecision(intent=Intent.SUMMARY, reason="summary terms present")

    if tl.endswith("?") or words[0] in QUESTION_WORDS:
        return IntentDecision(intent=Intent.QUESTION, reason="question-form message")

    # Social phrases only count when the message is short
    if len(words) <= 6:
        if THANKS.search(tl):
            return IntentDecision(intent=Intent.THANKS, reason="gratitude phrase")
        if FAREWELL.search(tl):
            return IntentDecision(intent=Intent.FAREWELL, reason="farewell phrase")
        if GREETING.search(tl):
            return IntentDecision(intent=Intent.GREETING, reason="greeting phrase")

    return IntentDecision(intent=Intent.UNKNOWN, reason="no rule matched")
