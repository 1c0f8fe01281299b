"""Tests for the turn-taking state machine in assistant.Assistant."""

from __future__ import annotations

import json
import random

import pytest

import config
from conversation import (
    CaptureEnded,
    CaptureFailed,
    CaptureStarted,
    Phase,
    PlaybackEnded,
    PlaybackFailed,
    ProfileUpdated,
    RestartRequested,
    StartRequested,
    TranscriptReceived,
)
from intent_resolver import resolve
from intents import Intent, IntentType
from tests.conftest import FakeNotifier, FakeResolver


def heard(text: str) -> TranscriptReceived:
    return TranscriptReceived(text)


def started(assistant, fake_loop) -> None:
    """Starts the session without a greeting and confirms the mic opened."""
    fake_loop.post(StartRequested())
    fake_loop.post(CaptureStarted())
    fake_loop.drain()
    assert assistant.state.phase is Phase.AWAITING_WAKE
    assert assistant.state.is_listening


class TestStart:
    def test_start_without_greeting_opens_the_mic(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        assert assistant.state.phase is Phase.IDLE

        fake_loop.post(StartRequested())
        fake_loop.drain()

        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert fake_capture.starts == 1

    def test_greeting_is_spoken_before_listening(self, make_assistant, fake_loop, fake_capture,
                                                 fake_output) -> None:
        assistant = make_assistant(greeting=True)
        fake_loop.post(StartRequested())
        fake_loop.drain()

        assert assistant.state.phase is Phase.SPEAKING
        assert fake_output.spoken == ["Hello Sam, what can I help you with?"]
        assert fake_capture.starts == 0

        fake_output.finish()
        fake_loop.advance(config.PLAYBACK_SETTLE_SEC)

        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert fake_capture.starts == 1

    def test_second_start_is_ignored(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)
        fake_loop.post(StartRequested())
        fake_loop.drain()
        assert fake_capture.starts == 1


class TestWakeWord:
    def test_transcript_without_wake_word_is_not_resolved(self, make_assistant, fake_loop,
                                                          fake_capture) -> None:
        resolver = FakeResolver()
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("what's the weather"))
        fake_loop.drain()

        assert resolver.calls == []
        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert assistant.state.is_listening
        assert fake_capture.stops == 0
        assert assistant.state.user_text == "what's the weather"

    def test_unmatched_transcript_is_cleared_after_quiet_period(self, make_assistant, fake_loop) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)

        fake_loop.post(heard("hello there"))
        fake_loop.advance(config.TRANSCRIPT_CLEAR_SEC - 0.1)
        assert assistant.state.user_text == "hello there"

        fake_loop.advance(0.1)
        assert assistant.state.user_text == ""

    def test_wake_word_stops_capture_and_resolves_stripped_command(self, make_assistant, fake_loop,
                                                                   fake_capture) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "joke", "Here is one."))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova, tell me a joke"))
        fake_loop.drain()

        assert fake_capture.stops == 1
        assert not assistant.state.is_listening
        assert resolver.calls == ["tell me a joke"]
        assert assistant.state.phase is Phase.SPEAKING

    def test_wake_word_match_is_case_insensitive(self, make_assistant, fake_loop) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "hi", "Hi!"))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("hey NOVA how are you"))
        fake_loop.drain()

        assert resolver.calls == ["hey how are you"]

    def test_bare_wake_word_gets_clarifying_prompt(self, make_assistant, fake_loop, fake_output) -> None:
        resolver = FakeResolver()
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova"))
        fake_loop.drain()

        assert resolver.calls == []
        assert fake_output.spoken == ["Yes, how can I help you, Sam?"]
        assert assistant.state.phase is Phase.SPEAKING

    def test_renamed_assistant_answers_to_the_new_name(self, make_assistant, fake_loop) -> None:
        resolver = FakeResolver(Intent(IntentType.GET_TIME, "time", "Current time is 10:00 AM"))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(ProfileUpdated("Jarvis"))
        fake_loop.post(heard("Nova what time is it"))
        fake_loop.drain()
        assert resolver.calls == []

        fake_loop.post(heard("Jarvis what time is it"))
        fake_loop.drain()
        assert assistant.state.assistant_name == "Jarvis"
        assert resolver.calls == ["what time is it"]

    def test_blank_rename_is_ignored(self, make_assistant, fake_loop) -> None:
        assistant = make_assistant()
        fake_loop.post(ProfileUpdated("  "))
        fake_loop.drain()
        assert assistant.state.assistant_name == "Nova"

    def test_transcripts_are_dropped_outside_awaiting_wake(self, make_assistant, fake_loop) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "ok"))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova first question"))
        fake_loop.post(heard("Nova second question"))
        fake_loop.drain()

        assert resolver.calls == ["first question"]


class TestPlayback:
    def test_playback_end_returns_to_awaiting_wake_after_settle_delay(self, make_assistant, fake_loop,
                                                                     fake_capture, fake_output) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "Sure."))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)
        fake_loop.post(heard("Nova hi"))
        fake_loop.drain()

        fake_output.finish()
        fake_loop.drain()
        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert not assistant.state.is_speaking
        assert assistant.state.ai_text == ""

        fake_loop.advance(config.PLAYBACK_SETTLE_SEC - 0.1)
        assert fake_capture.starts == 1
        fake_loop.advance(0.1)
        assert fake_capture.starts == 2

    def test_playback_error_uses_longer_delay(self, make_assistant, fake_loop, fake_capture,
                                              fake_output) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "Sure."))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)
        fake_loop.post(heard("Nova hi"))
        fake_loop.drain()

        fake_output.fail("audio-busy")
        fake_loop.advance(config.PLAYBACK_SETTLE_SEC)
        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert fake_capture.starts == 1

        fake_loop.advance(config.PLAYBACK_ERROR_SETTLE_SEC - config.PLAYBACK_SETTLE_SEC)
        assert fake_capture.starts == 2

    def test_only_capture_events_never_end_speaking(self, make_assistant, fake_loop, fake_capture) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "Sure."))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)
        fake_loop.post(heard("Nova hi"))
        fake_loop.drain()

        fake_loop.post(CaptureEnded())
        fake_loop.post(CaptureFailed("no-speech"))
        fake_loop.advance(5)

        assert assistant.state.phase is Phase.SPEAKING
        assert fake_capture.starts == 1

    def test_stale_playback_completion_is_ignored(self, make_assistant, fake_loop, fake_output) -> None:
        assistant = make_assistant(greeting=True)
        fake_loop.post(StartRequested())
        fake_loop.drain()

        fake_loop.post(PlaybackEnded(utterance_id=99))
        fake_loop.post(PlaybackFailed(utterance_id=99, error="x"))
        fake_loop.drain()

        assert assistant.state.phase is Phase.SPEAKING
        assert assistant.state.is_speaking

    def test_output_that_raises_is_treated_as_playback_error(self, make_assistant, fake_loop,
                                                             fake_output, monkeypatch) -> None:
        def _broken(*args, **kwargs):
            raise RuntimeError("no audio device")

        monkeypatch.setattr(fake_output, "speak", _broken)
        assistant = make_assistant(greeting=True)
        fake_loop.post(StartRequested())
        fake_loop.drain()

        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert not assistant.state.is_speaking


class TestCaptureRecovery:
    def test_capture_end_restarts_after_delay(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)

        fake_loop.post(CaptureEnded())
        fake_loop.drain()
        assert not assistant.state.is_listening

        fake_loop.advance(config.CAPTURE_RESTART_SEC)
        assert fake_capture.starts == 2
        assert assistant.state.is_listening

    def test_capture_error_restarts_after_longer_delay(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)

        fake_loop.post(CaptureFailed("network"))
        fake_loop.advance(config.CAPTURE_RESTART_SEC)
        assert fake_capture.starts == 1

        fake_loop.advance(config.CAPTURE_ERROR_RESTART_SEC - config.CAPTURE_RESTART_SEC)
        assert fake_capture.starts == 2

    def test_aborted_capture_is_not_restarted(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)

        fake_loop.post(CaptureFailed("aborted"))
        fake_loop.advance(10)
        assert fake_capture.starts == 1

    @pytest.mark.parametrize("error", ["not-allowed", "permission-denied"])
    def test_permission_denial_is_sticky(self, make_assistant, fake_loop, fake_capture, fake_output,
                                         error: str) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "ok"))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(CaptureFailed(error))
        fake_loop.advance(10)
        assert assistant.state.mic_permission_denied
        assert fake_capture.starts == 1

        fake_loop.post(CaptureEnded())
        fake_loop.advance(10)
        assert fake_capture.starts == 1

    def test_explicit_restart_clears_denial(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)
        fake_loop.post(CaptureFailed("not-allowed"))
        fake_loop.drain()

        fake_loop.post(RestartRequested())
        fake_loop.drain()

        assert not assistant.state.mic_permission_denied
        assert fake_capture.starts == 2

    def test_capture_start_is_noop_when_already_listening(self, make_assistant, fake_loop,
                                                          fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)

        fake_loop.post(RestartRequested())
        fake_loop.drain()
        assert fake_capture.starts == 1

    def test_late_capture_start_while_speaking_is_stopped(self, make_assistant, fake_loop,
                                                          fake_capture) -> None:
        assistant = make_assistant(greeting=True)
        fake_loop.post(StartRequested())
        fake_loop.post(CaptureStarted())
        fake_loop.drain()

        assert fake_capture.stops == 1
        assert not assistant.state.is_listening
        assert assistant.state.is_speaking

    def test_restart_dropped_after_stop(self, make_assistant, fake_loop, fake_capture) -> None:
        assistant = make_assistant()
        started(assistant, fake_loop)
        fake_loop.post(CaptureEnded())
        fake_loop.drain()

        assistant.stop()
        fake_loop.advance(10)
        assert fake_capture.starts == 1


class TestCancellation:
    def test_new_speech_cancels_previous_and_only_latest_completion_counts(
        self, make_assistant, fake_loop, fake_output
    ) -> None:
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "second"))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)
        fake_loop.post(heard("Nova hi"))
        fake_loop.drain()

        cancels_before = fake_output.cancels
        assistant.dispatcher.dispatch(Intent(IntentType.CHAT, "x", "latest"))
        assert fake_output.cancels == cancels_before + 1
        assert fake_output.spoken[-1] == "latest"

        fake_output.finish(index=0)
        fake_loop.drain()
        assert assistant.state.phase is Phase.SPEAKING

        fake_output.finish(index=-1)
        fake_loop.drain()
        assert assistant.state.phase is Phase.AWAITING_WAKE


class TestNotifier:
    def test_phase_and_text_updates_are_pushed(self, make_assistant, fake_loop, fake_output) -> None:
        notifier = FakeNotifier()
        resolver = FakeResolver(Intent(IntentType.JOKE, "joke", "Why did the chicken..."))
        assistant = make_assistant(resolver, notifier=notifier)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova tell me a joke"))
        fake_loop.drain()
        fake_output.finish()
        fake_loop.drain()

        assert notifier.states == ["awaiting_wake", "listening", "resolving", "speaking", "awaiting_wake"]
        assert notifier.user_speech == ["Nova tell me a joke"]
        assert notifier.ai_speech == ["Why did the chicken...", ""]


class FakeGenerativeClient:
    def __init__(self, text: str) -> None:
        self.text = text

    def generate(self, prompt: str) -> str:
        return self.text


class TestEndToEnd:
    def test_weather_turn(self, make_assistant, fake_loop, fake_capture, fake_output, opened_urls) -> None:
        model_reply = json.dumps({"type": "weather-show", "userInput": "weather",
                                  "response": "Here is the weather for today."})
        commands = []

        def _resolver(command: str) -> Intent:
            commands.append(command)
            return resolve(command, "Nova", "Sam", client=FakeGenerativeClient(model_reply))

        assistant = make_assistant(_resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova what's the weather"))
        fake_loop.drain()

        assert commands == ["what's the weather"]
        assert fake_output.spoken == ["Here is the weather for today."]
        assert opened_urls == []

        fake_loop.advance(config.LINK_OPEN_DELAY_SEC)
        assert opened_urls == ["https://www.google.com/search?q=weather"]

        fake_output.finish()
        fake_loop.advance(config.PLAYBACK_SETTLE_SEC)
        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert fake_capture.starts == 2

    def test_no_restart_after_turn_when_permission_denied(self, make_assistant, fake_loop, fake_capture,
                                                          fake_output) -> None:
        resolver = FakeResolver(Intent(IntentType.WEATHER_SHOW, "weather", "Sunny."))
        assistant = make_assistant(resolver)
        started(assistant, fake_loop)

        fake_loop.post(heard("Nova what's the weather"))
        fake_loop.post(CaptureFailed("not-allowed"))
        fake_loop.drain()
        fake_output.finish()
        fake_loop.advance(10)

        assert assistant.state.phase is Phase.AWAITING_WAKE
        assert fake_capture.starts == 1


ALLOWED_TRANSITIONS = {
    ("idle", "awaiting_wake"),
    ("idle", "speaking"),
    ("awaiting_wake", "listening"),
    ("listening", "resolving"),
    ("listening", "speaking"),
    ("resolving", "speaking"),
    ("speaking", "awaiting_wake"),
}


class TestRandomInterleavings:
    @pytest.mark.parametrize("seed", range(25))
    def test_never_listening_and_speaking(self, make_assistant, fake_loop, fake_output, seed: int) -> None:
        rng = random.Random(seed)
        notifier = FakeNotifier()
        resolver = FakeResolver(Intent(IntentType.CHAT, "x", "reply"))
        assistant = make_assistant(resolver, greeting=rng.random() < 0.5, notifier=notifier)
        fake_loop.post(StartRequested())
        fake_loop.drain()

        for _ in range(200):
            choice = rng.randrange(10)
            if choice == 0:
                fake_loop.post(CaptureStarted())
            elif choice == 1:
                fake_loop.post(CaptureEnded())
            elif choice == 2:
                fake_loop.post(CaptureFailed(rng.choice(["no-speech", "network", "aborted", "not-allowed"])))
            elif choice == 3:
                fake_loop.post(heard(rng.choice(["Nova hello", "Nova", "hello", "nova what time is it"])))
            elif choice == 4 and fake_output.callbacks:
                fake_output.finish(index=rng.randrange(len(fake_output.callbacks)))
            elif choice == 5 and fake_output.callbacks:
                fake_output.fail(index=rng.randrange(len(fake_output.callbacks)))
            elif choice == 6:
                fake_loop.post(RestartRequested())
            elif choice == 7:
                fake_loop.post(PlaybackEnded(rng.randrange(5)))
            else:
                fake_loop.advance(rng.choice([0.1, 0.5, 1.0, 3.0]))
            fake_loop.drain()

            state = assistant.state
            assert not (state.is_listening and state.is_speaking)

        phases = ["idle"] + notifier.states
        for before, after in zip(phases, phases[1:]):
            assert (before, after) in ALLOWED_TRANSITIONS
