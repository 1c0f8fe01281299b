from __future__ import annotations

from typing import Callable, Optional

import config
from command_dispatch import CommandDispatcher
from conversation import (
    PERMISSION_ERRORS,
    CaptureEnded,
    CaptureFailed,
    CaptureStarted,
    ConversationState,
    IntentResolved,
    Phase,
    PlaybackEnded,
    PlaybackFailed,
    ProfileUpdated,
    RestartRequested,
    StartRequested,
    TranscriptReceived,
    Utterance,
    strip_wake_word,
)
from intents import Intent

SERVER_ERROR_REPLY = "Sorry, I couldn't reach the assistant server."


class Assistant:
    """
    The turn-taking state machine of the voice assistant.

    It owns the ConversationState and is the only code that mutates it. Events
    arrive through `handle` on the event-loop thread; the microphone and the
    speaker are driven through the `capture` and `output` objects, and the
    intent server through the `resolver` callable.
    """

    def __init__(self, state: ConversationState, capture, output,
                 resolver: Callable[[str], Intent], loop,
                 notifier=None, open_url: Optional[Callable[[str], object]] = None,
                 greeting: bool = True):
        self.state = state
        self.capture = capture
        self.output = output
        self.resolver = resolver
        self.loop = loop
        self.notifier = notifier
        self.greeting = greeting
        self.active = False

        dispatcher_kwargs = {"open_url": open_url} if open_url else {}
        self.dispatcher = CommandDispatcher(self._speak, loop, **dispatcher_kwargs)

        self._utterance_id = 0
        self._turn = 0
        self._restart_timer = None
        self._clear_timer = None

        self._handlers = {
            StartRequested: self._on_start,
            RestartRequested: self._on_restart_requested,
            CaptureStarted: self._on_capture_started,
            CaptureEnded: self._on_capture_ended,
            CaptureFailed: self._on_capture_failed,
            TranscriptReceived: self._on_transcript,
            ProfileUpdated: self._on_profile_updated,
            IntentResolved: self._on_intent_resolved,
            PlaybackEnded: self._on_playback_finished,
            PlaybackFailed: self._on_playback_finished,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle(self, event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            print(f"Ignoring unknown event: {event!r}")
            return
        handler(event)

    def stop(self) -> None:
        """Ends the session: no more restarts, capture and playback stopped."""
        self.active = False
        for timer in (self._restart_timer, self._clear_timer):
            if timer is not None:
                timer.cancel()
        self._restart_timer = self._clear_timer = None
        self.output.cancel()
        self.state.is_speaking = False
        if self.state.is_listening:
            self.capture.stop()
            self.state.is_listening = False

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _set_phase(self, new_phase: Phase) -> None:
        if self.state.phase == new_phase:
            return
        print(f"ASSISTANT STATE: {self.state.phase.name} -> {new_phase.name}")
        self.state.phase = new_phase
        if self.notifier:
            self.notifier.update_assistant_state(new_phase.name.lower())

    def _set_user_text(self, text: str) -> None:
        self.state.user_text = text
        if self.notifier:
            self.notifier.update_user_speech(text)

    def _set_ai_text(self, text: str) -> None:
        self.state.ai_text = text
        if self.notifier:
            self.notifier.update_ai_speech(text)

    def _start_capture(self) -> None:
        """No-op while the mic is already open or the assistant is talking."""
        if self.state.is_listening or self.state.is_speaking:
            return
        self.state.is_listening = True
        self.capture.start()

    def _stop_capture(self) -> None:
        if self.state.is_listening:
            self.capture.stop()
            self.state.is_listening = False

    def _schedule_restart(self, delay: float) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
        self._restart_timer = self.loop.call_later(delay, self._request_restart)

    def _request_restart(self) -> None:
        self._restart_timer = None
        if (self.state.is_speaking or not self.active
                or self.state.mic_permission_denied
                or self.state.phase != Phase.AWAITING_WAKE):
            print("Capture restart skipped: conditions not met.")
            return
        self._start_capture()

    def _speak(self, text: str) -> None:
        """Starts playback of text, replacing anything still playing."""
        self._stop_capture()
        self.output.cancel()

        self._utterance_id += 1
        utterance_id = self._utterance_id
        self._set_phase(Phase.SPEAKING)

        if not text:
            print("Speak called with no text.")
            self._finish_speaking(config.EMPTY_SPEECH_RESTART_SEC)
            return

        self.state.is_speaking = True
        self._set_ai_text(text)
        print(f"ASSISTANT: {text}")
        try:
            self.output.speak(
                text,
                self.state.assistant_language,
                on_end=lambda: self.loop.post(PlaybackEnded(utterance_id)),
                on_error=lambda error: self.loop.post(PlaybackFailed(utterance_id, error)),
            )
        except Exception as e:
            self.loop.post(PlaybackFailed(utterance_id, str(e)))

    def _finish_speaking(self, delay: float) -> None:
        self.state.is_speaking = False
        self._set_ai_text("")
        self._set_phase(Phase.AWAITING_WAKE)
        self._schedule_restart(delay)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_start(self, event: StartRequested) -> None:
        if self.state.phase != Phase.IDLE:
            return
        self.active = True
        if self.greeting:
            self._speak(f"Hello {self.state.user_name}, what can I help you with?")
        else:
            self._set_phase(Phase.AWAITING_WAKE)
            self._start_capture()

    def _on_restart_requested(self, event: RestartRequested) -> None:
        if not self.active:
            return
        self.state.mic_permission_denied = False
        if self.state.phase == Phase.AWAITING_WAKE:
            self._start_capture()

    def _on_profile_updated(self, event: ProfileUpdated) -> None:
        name = event.assistant_name.strip()
        if not name or name == self.state.assistant_name:
            return
        print(f"Assistant renamed: {self.state.assistant_name} -> {name}")
        self.state.assistant_name = name

    def _on_capture_started(self, event: CaptureStarted) -> None:
        # A start that lands after we stopped the mic (or began talking) is stale.
        if (not self.state.is_listening or self.state.is_speaking
                or self.state.phase != Phase.AWAITING_WAKE):
            self.capture.stop()
            self.state.is_listening = False
            return
        self.state.mic_permission_denied = False
        print("🎙️ Speech capture started.")

    def _on_capture_ended(self, event: CaptureEnded) -> None:
        self.state.is_listening = False
        print("Speech capture ended.")
        if self.active and self.state.phase == Phase.AWAITING_WAKE:
            self._schedule_restart(config.CAPTURE_RESTART_SEC)

    def _on_capture_failed(self, event: CaptureFailed) -> None:
        self.state.is_listening = False
        print(f"Speech capture error: {event.error}")
        if event.error in PERMISSION_ERRORS:
            self.state.mic_permission_denied = True
            print("⚠️ Microphone permission denied. Allow microphone access, then restart listening.")
        elif event.error != "aborted" and self.active:
            self._schedule_restart(config.CAPTURE_ERROR_RESTART_SEC)

    def _on_transcript(self, event: TranscriptReceived) -> None:
        if self.state.phase != Phase.AWAITING_WAKE:
            print(f"Dropping transcript received while {self.state.phase.name}.")
            return

        utterance = Utterance.from_transcript(event.text, self.state.assistant_name)
        print(f"USER: {utterance.text}")
        self._set_user_text(utterance.text)

        if not utterance.contains_wake_word:
            self._schedule_clear_user_text(utterance.text)
            return

        self._stop_capture()
        self._set_phase(Phase.LISTENING)

        command = strip_wake_word(utterance.text, self.state.assistant_name)
        if not command:
            self._speak(f"Yes, how can I help you, {self.state.user_name}?")
            return

        self._set_phase(Phase.RESOLVING)
        self._turn += 1
        turn = self._turn
        self.loop.run_in_background(
            lambda: self._resolve_safely(command),
            lambda intent: self.loop.post(IntentResolved(turn, intent)),
        )

    def _schedule_clear_user_text(self, text: str) -> None:
        def _clear():
            self._clear_timer = None
            if not self.state.is_speaking and self.state.user_text == text:
                self._set_user_text("")

        if self._clear_timer is not None:
            self._clear_timer.cancel()
        self._clear_timer = self.loop.call_later(config.TRANSCRIPT_CLEAR_SEC, _clear)

    def _resolve_safely(self, command: str) -> Intent:
        try:
            return self.resolver(command)
        except Exception as e:
            print(f"Error resolving command: {e}")
            return Intent.error(command, SERVER_ERROR_REPLY)

    def _on_intent_resolved(self, event: IntentResolved) -> None:
        if event.turn != self._turn or self.state.phase != Phase.RESOLVING or not self.active:
            return
        print(f"Resolved intent: {event.intent.type.value}")
        self.dispatcher.dispatch(event.intent)

    def _on_playback_finished(self, event) -> None:
        if event.utterance_id != self._utterance_id or self.state.phase != Phase.SPEAKING:
            return
        failed = isinstance(event, PlaybackFailed)
        if failed:
            print(f"Speech playback error: {event.error}")
        self._finish_speaking(config.PLAYBACK_ERROR_SETTLE_SEC if failed else config.PLAYBACK_SETTLE_SEC)
