"""main.py
Voice assistant process.

Workflow:
    1. Capture speech continuously and transcribe each phrase.
    2. When a phrase contains the assistant's name, send the rest of it to the
       intent server.
    3. Speak the reply and, for link intents, open the matching page.
    4. Go back to listening for the assistant's name.

Usage:
    python main.py [--server-url URL] [--socket-port PORT]

Press Ctrl+C to exit.
"""
from __future__ import annotations

import argparse

import config
from assistant import Assistant
from audio_in import SpeechCapture
from conversation import ConversationState, ProfileUpdated, RestartRequested, StartRequested
from event_loop import EventLoop
from intent_client import IntentClient
from socket_client import ui_notifier
from speak import SpeechOutput


def _parse_device_id(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        print(f"Warning: Invalid microphone device ID '{value}'. Using default.")
        return None


def build_state(settings: dict, profile: dict | None) -> ConversationState:
    """The profile from the server wins over the local settings file."""
    profile = profile or {}
    return ConversationState(
        assistant_name=profile.get("assistantName") or settings["assistant_name"],
        assistant_language=profile.get("assistantLanguage") or settings["assistant_language"],
        user_name=profile.get("name") or settings["user_name"],
    )


def main(server_url: str, web_ui_socket_port: int | None = None) -> None:
    settings = config.get_settings()
    client = IntentClient(server_url)
    state = build_state(settings, client.current_user())

    loop = EventLoop()
    capture = SpeechCapture(
        loop.post,
        language=state.assistant_language,
        device_index=_parse_device_id(settings.get("mic_device_id")),
    )
    output = SpeechOutput(engine=settings.get("tts_engine", "pyttsx3"))

    notifier = None
    if web_ui_socket_port:
        ui_notifier.on_restart_listening = lambda: loop.post(RestartRequested())
        ui_notifier.on_profile_updated = lambda name: loop.post(ProfileUpdated(name))
        ui_notifier.start(port=web_ui_socket_port)
        notifier = ui_notifier

    assistant = Assistant(
        state, capture, output, client.resolve, loop,
        notifier=notifier, greeting=bool(settings.get("greeting", True)),
    )

    print(f"Assistant is up and running. Say '{state.assistant_name}' followed by a command.")
    loop.post(StartRequested())
    try:
        loop.run_forever(assistant.handle)
    except KeyboardInterrupt:
        print("Shutting down assistant.")
    finally:
        assistant.stop()
        loop.stop()
        client.close()
        if notifier:
            ui_notifier.stop()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the voice assistant.")
    parser.add_argument(
        '--server-url',
        default=config.ASSISTANT_SERVER_URL,
        help='Base URL of the intent server'
    )
    parser.add_argument(
        '--socket-port',
        type=int,
        help='Port for the web UI socket connection (optional)'
    )
    args = parser.parse_args()
    main(args.server_url, web_ui_socket_port=args.socket_port)
