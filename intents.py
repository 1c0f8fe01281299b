"""intents.py
The closed set of intent types and the immutable Intent record shared by the
server (which produces intents) and the client (which dispatches them).

Wire format is a JSON object: {"type": ..., "userInput": ..., "response": ...}
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class IntentType(str, Enum):
    CHAT = "chat"
    WEB_SEARCH = "google-search"
    MEDIA_SEARCH = "Youtube"
    MEDIA_PLAY = "youtube-play"
    GET_TIME = "get-time"
    GET_DATE = "get-date"
    GET_DAY = "get-day"
    GET_MONTH = "get-month"
    CALCULATOR_OPEN = "calculator-open"
    INSTAGRAM_OPEN = "instagram-open"
    FACEBOOK_OPEN = "facebook-open"
    WEATHER_SHOW = "weather-show"
    NEWS_SHOW = "news-show"
    JOKE = "joke"
    QUOTE = "quote"
    WIKIPEDIA_SEARCH = "wikipedia-search"
    WHATSAPP_OPEN = "whatsapp-open"
    MAPS_OPEN = "maps-open"
    DEFINE = "define"
    SUMMARIZE = "summarize"
    TRANSLATE = "translate"
    # Produced by the resolver only, never offered to the model.
    ERROR = "error"
    CLARIFY = "clarify"

    @classmethod
    def from_wire(cls, value: Any) -> Optional["IntentType"]:
        """Case-insensitive lookup against the whole closed set."""
        if not isinstance(value, str):
            return None
        return _BY_FOLDED.get(value.strip().casefold())


_BY_FOLDED = {t.value.casefold(): t for t in IntentType}

# What the model may answer with.
MODEL_TYPES = tuple(t for t in IntentType if t not in (IntentType.ERROR, IntentType.CLARIFY))

# Answers computed from the local clock instead of the model's text.
CLOCK_TYPES = frozenset({
    IntentType.GET_TIME,
    IntentType.GET_DATE,
    IntentType.GET_DAY,
    IntentType.GET_MONTH,
})


@dataclass(frozen=True)
class Intent:
    type: IntentType
    user_input: str
    response: str

    @classmethod
    def error(cls, user_input: str, response: str) -> "Intent":
        return cls(IntentType.ERROR, user_input, response)

    @classmethod
    def clarify(cls, user_input: str, response: str) -> "Intent":
        return cls(IntentType.CLARIFY, user_input, response)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Intent":
        """
        Builds an Intent from its wire form.
        Raises ValueError if the type is unknown or the response is missing.
        """
        intent_type = IntentType.from_wire(data.get("type"))
        if intent_type is None:
            raise ValueError(f"Unknown intent type: {data.get('type')!r}")
        response = data.get("response")
        if not isinstance(response, str):
            raise ValueError("Intent is missing a response.")
        user_input = data.get("userInput")
        return cls(intent_type, user_input if isinstance(user_input, str) else "", response)

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type.value, "userInput": self.user_input, "response": self.response}
