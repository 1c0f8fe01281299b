"""Shared test fixtures. No microphone, speaker or network needed."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from assistant import Assistant
from conversation import ConversationState
from intents import Intent


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], Any]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Deterministic stand-in for event_loop.EventLoop driven by a manual clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handler: Callable[[Any], Any] | None = None
        self.queue: list[Any] = []
        self.timers: list[FakeTimer] = []

    def post(self, event: Any) -> None:
        self.queue.append(event)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def run_in_background(self, func: Callable[[], Any], on_done: Callable[[Any], Any]) -> None:
        result = func()
        self.queue.append(lambda: on_done(result))

    def drain(self) -> None:
        while self.queue:
            item = self.queue.pop(0)
            if callable(item):
                item()
            else:
                assert self.handler is not None
                self.handler(item)

    def advance(self, seconds: float) -> None:
        """Moves the clock forward, firing due timers in order."""
        target = self.now + seconds
        self.drain()
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
            self.drain()
        self.now = target

    def pending_timers(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeCapture:
    def __init__(self) -> None:
        self.starts = 0
        self.stops = 0

    def start(self) -> None:
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1


class FakeOutput:
    """Records playback requests; the test decides when each one ends."""

    def __init__(self) -> None:
        self.spoken: list[str] = []
        self.languages: list[str] = []
        self.cancels = 0
        self.callbacks: list[tuple[Callable[[], None], Callable[[str], None]]] = []

    def speak(self, text: str, language: str,
              on_end: Callable[[], None], on_error: Callable[[str], None]) -> None:
        self.spoken.append(text)
        self.languages.append(language)
        self.callbacks.append((on_end, on_error))

    def cancel(self) -> None:
        self.cancels += 1

    def finish(self, index: int = -1) -> None:
        self.callbacks[index][0]()

    def fail(self, error: str = "synthesis-failed", index: int = -1) -> None:
        self.callbacks[index][1](error)


class FakeResolver:
    def __init__(self, intent: Intent | None = None) -> None:
        self.intent = intent
        self.calls: list[str] = []

    def __call__(self, command: str) -> Intent:
        self.calls.append(command)
        if self.intent is None:
            raise AssertionError("resolver should not have been called")
        return self.intent


class FakeNotifier:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.user_speech: list[str] = []
        self.ai_speech: list[str] = []

    def update_assistant_state(self, state: str) -> None:
        self.states.append(state)

    def update_user_speech(self, text: str) -> None:
        self.user_speech.append(text)

    def update_ai_speech(self, text: str) -> None:
        self.ai_speech.append(text)


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def fake_capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def fake_output() -> FakeOutput:
    return FakeOutput()


@pytest.fixture
def opened_urls() -> list[str]:
    return []


@pytest.fixture
def make_assistant(fake_loop: FakeLoop, fake_capture: FakeCapture, fake_output: FakeOutput,
                   opened_urls: list[str]) -> Callable[..., Assistant]:
    def _make(resolver: Callable[[str], Intent] | None = None, greeting: bool = False,
              notifier: Any = None) -> Assistant:
        state = ConversationState(assistant_name="Nova", assistant_language="en-US", user_name="Sam")
        assistant = Assistant(
            state, fake_capture, fake_output, resolver or FakeResolver(), fake_loop,
            notifier=notifier, open_url=opened_urls.append, greeting=greeting,
        )
        fake_loop.handler = assistant.handle
        return assistant

    return _make
