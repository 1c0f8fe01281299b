import os
import json
from dotenv import load_dotenv

load_dotenv()

# --- API Keys / Endpoints ---
GEMINI_API_URL = os.getenv("GEMINI_API_URL")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
TRANSCRIBE_MODEL = os.getenv("TRANSCRIBE_MODEL", "whisper-1")

# --- Database Settings ---
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# --- Server Settings ---
WEB_UI_PORT = int(os.getenv("WEB_UI_PORT", 5001))
ASSISTANT_SERVER_URL = os.getenv("ASSISTANT_SERVER_URL", f"http://127.0.0.1:{WEB_UI_PORT}")
GENERATIVE_TIMEOUT_SEC = float(os.getenv("GENERATIVE_TIMEOUT_SEC", 20.0))
SERVER_TIMEOUT_SEC = float(os.getenv("SERVER_TIMEOUT_SEC", 30.0))

# --- Turn-taking timings (seconds) ---
PLAYBACK_SETTLE_SEC = 0.8        # after speech ends, before the mic reopens
PLAYBACK_ERROR_SETTLE_SEC = 1.2
CAPTURE_RESTART_SEC = 1.0        # after capture ends on its own
CAPTURE_ERROR_RESTART_SEC = 1.2
EMPTY_SPEECH_RESTART_SEC = 0.5
TRANSCRIPT_CLEAR_SEC = 3.0
LINK_OPEN_DELAY_SEC = 0.5

# --- Audio Settings ---
VAD_RMS_THRESHOLD = float(os.getenv("VAD_RMS_THRESHOLD", 0.01)) # Threshold for voice activity detection
VAD_SENSITIVITY = int(os.getenv("VAD_SENSITIVITY", 3))
SPEECH_TIMEOUT_SEC = float(os.getenv("SPEECH_TIMEOUT_SEC", 1.5))

# --- User settings file ---
SETTINGS_FILE = os.getenv("SETTINGS_FILE", "settings.json")

DEFAULT_SETTINGS = {
    "user_id": "local",
    "user_name": "friend",
    "assistant_name": "Nova",
    "assistant_language": "en-US",
    "tts_engine": "pyttsx3",
    "greeting": True,
}


def get_settings() -> dict:
    """Reads settings from the settings file, layered over the defaults."""
    settings = dict(DEFAULT_SETTINGS)
    try:
        with open(SETTINGS_FILE, 'r') as f:
            settings.update(json.load(f))
    except (FileNotFoundError, json.JSONDecodeError):
        pass
    return settings


def save_settings(settings_data: dict) -> None:
    """Writes settings to the settings file."""
    with open(SETTINGS_FILE, 'w') as f:
        json.dump(settings_data, f, indent=4)
