"""conversation.py
Conversation state and the typed events the turn-taking machine reacts to.

Device threads never touch the state directly: they post one of the events
below to the event loop, and the machine applies it on the loop thread.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum, auto

from intents import Intent


class Phase(Enum):
    """Where the assistant is in the current turn."""
    IDLE = auto()               # Session not started yet
    AWAITING_WAKE = auto()      # Capturing, waiting for the assistant's name
    LISTENING = auto()          # Name heard, taking the command
    RESOLVING = auto()          # Waiting for the intent server
    SPEAKING = auto()           # Playing the reply


@dataclass
class ConversationState:
    assistant_name: str
    assistant_language: str = "en-US"
    user_name: str = ""
    phase: Phase = Phase.IDLE
    is_speaking: bool = False
    is_listening: bool = False
    mic_permission_denied: bool = False
    user_text: str = ""
    ai_text: str = ""


def contains_wake_word(text: str, wake_word: str) -> bool:
    return bool(wake_word) and wake_word.lower() in text.lower()


def strip_wake_word(text: str, wake_word: str) -> str:
    """Removes the first occurrence of the wake word and the punctuation around it."""
    stripped = re.sub(re.escape(wake_word), "", text, count=1, flags=re.IGNORECASE)
    return " ".join(stripped.split()).strip(" ,.!?;:")


@dataclass(frozen=True)
class Utterance:
    text: str
    timestamp: float
    contains_wake_word: bool

    @classmethod
    def from_transcript(cls, text: str, wake_word: str) -> "Utterance":
        text = text.strip()
        return cls(text=text, timestamp=time.time(), contains_wake_word=contains_wake_word(text, wake_word))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class RestartRequested:
    """The user explicitly asked the assistant to listen again."""
    pass


@dataclass(frozen=True)
class CaptureStarted:
    pass


@dataclass(frozen=True)
class CaptureEnded:
    pass


@dataclass(frozen=True)
class CaptureFailed:
    error: str


@dataclass(frozen=True)
class TranscriptReceived:
    """Raw transcript text; the wake word is matched against the current name on the loop."""
    text: str


@dataclass(frozen=True)
class ProfileUpdated:
    """The assistant was renamed on the server."""
    assistant_name: str


@dataclass(frozen=True)
class IntentResolved:
    turn: int
    intent: Intent


@dataclass(frozen=True)
class PlaybackEnded:
    utterance_id: int


@dataclass(frozen=True)
class PlaybackFailed:
    utterance_id: int
    error: str = field(default="")


PERMISSION_ERRORS = frozenset({"not-allowed", "permission-denied"})
