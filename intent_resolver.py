"""intent_resolver.py
Turns one spoken command into a structured Intent.

The command is wrapped in a prompt that asks the generative model for a single
JSON object ({"type", "userInput", "response"}). The reply is parsed, its type
is case-folded against the whitelist and validated. Date and time answers are
recomputed from the local clock so they never depend on the model.

`resolve` never raises: every failure comes back as an `error` intent, and a
type the assistant does not know comes back as a `clarify` intent.
"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import pytz
from tzlocal import get_localzone_name
from zoneinfo import ZoneInfoNotFoundError

from config import get_settings
from generative_client import ConfigurationError, GenerativeAPIError, get_client
from intents import CLOCK_TYPES, MODEL_TYPES, Intent, IntentType

MISCONFIGURED_REPLY = "Server misconfiguration. Please contact admin."
FAILURE_REPLY = "Sorry, the assistant ran into a problem. Please try again later."
INCOMPLETE_REPLY = "Assistant didn't understand properly. Please repeat."
UNKNOWN_COMMAND_REPLY = "I didn't understand that command."

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")


def build_prompt(command: str, assistant_name: str, user_name: str,
                 assistant_language: str = "en-US") -> str:
    """Creates the single prompt sent to the model for one command."""
    type_list = " | ".join(f'"{t.value}"' for t in MODEL_TYPES)
    return (
        f"You are a smart, friendly, and multilingual voice assistant named {assistant_name}, "
        f"created by {user_name}.\n"
        "Respond in this **strict JSON** format only:\n\n"
        "{\n"
        f'  "type": {type_list},\n'
        '  "userInput": "<essential part of user request>",\n'
        '  "response": "<spoken reply>"\n'
        "}\n\n"
        "Rules:\n"
        f'- If user asks who created you, say "{user_name}".\n'
        f'- Write "response" in the language of the {assistant_language} locale; it is read aloud by a {assistant_language} voice.\n'
        "- Keep the reply short, warm and natural to hear out loud.\n"
        "- Respond ONLY as JSON. No extra text.\n\n"
        f"User: {command}"
    )


def parse_model_text(raw_text: str) -> Dict[str, Any]:
    """
    Parses the model's reply as one JSON object, falling back to a ```json fenced block.
    Raises ValueError if neither yields an object.
    """
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(raw_text)
        if not match:
            raise ValueError("Unable to parse model response as JSON.")
        try:
            parsed = json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise ValueError(f"Fenced block is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object.")
    return parsed


def _get_user_timezone() -> Optional[str]:
    """
    Reads the user's configured timezone from settings,
    falling back to auto-detection if not present.
    """
    configured_timezone = get_settings().get("timezone")
    if configured_timezone:
        return configured_timezone
    try:
        return get_localzone_name()
    except ZoneInfoNotFoundError:
        return None


def _local_now() -> datetime:
    timezone = _get_user_timezone()
    if timezone:
        try:
            return datetime.now(pytz.timezone(timezone))
        except pytz.UnknownTimeZoneError:
            print(f"Warning: Unknown timezone '{timezone}', using system local time.")
    return datetime.now()


def clock_response(intent_type: IntentType, now: datetime) -> str:
    if intent_type is IntentType.GET_DATE:
        return f"Current date is {now.strftime('%Y-%m-%d')}"
    if intent_type is IntentType.GET_TIME:
        return f"Current time is {now.strftime('%I:%M %p')}"
    if intent_type is IntentType.GET_DAY:
        return f"Today is {now.strftime('%A')}"
    if intent_type is IntentType.GET_MONTH:
        return f"Month is {now.strftime('%B')}"
    raise ValueError(f"{intent_type.value} is not a clock intent")


def resolve(utterance: str, assistant_name: str, user_name: str,
            assistant_language: str = "en-US",
            client=None, now: Callable[[], datetime] = _local_now) -> Intent:
    """Resolves one command into an Intent. Never raises."""
    try:
        client = client or get_client()
        raw_text = client.generate(build_prompt(utterance, assistant_name, user_name, assistant_language))
    except ConfigurationError as e:
        print(f"❌ {e}")
        return Intent.error(utterance, MISCONFIGURED_REPLY)
    except GenerativeAPIError as e:
        print(f"❌ Generative API error: {e}")
        return Intent.error(utterance, FAILURE_REPLY)
    except Exception as e:
        print(f"❌ Unexpected error calling the generative API: {e}")
        return Intent.error(utterance, FAILURE_REPLY)

    print(f"🔵 Model raw response: {raw_text}")

    try:
        data = parse_model_text(raw_text)
    except ValueError as e:
        print(f"❌ {e}")
        return Intent.error(utterance, FAILURE_REPLY)

    raw_type = data.get("type")
    response = data.get("response")
    if not raw_type or not isinstance(response, str) or not response.strip():
        print(f"⚠️ Model returned an incomplete object: {data}")
        return Intent.error(utterance, INCOMPLETE_REPLY)

    user_input = data.get("userInput")
    if not isinstance(user_input, str) or not user_input.strip():
        user_input = utterance

    intent_type = IntentType.from_wire(raw_type)
    if intent_type not in MODEL_TYPES:
        print(f"⚠️ Model returned an unknown type: {raw_type!r}")
        return Intent.clarify(user_input, UNKNOWN_COMMAND_REPLY)

    if intent_type in CLOCK_TYPES:
        try:
            response = clock_response(intent_type, now())
        except Exception as e:
            print(f"❌ Could not read the clock: {e}")
            return Intent.error(user_input, FAILURE_REPLY)

    return Intent(intent_type, user_input, response)
