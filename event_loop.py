"""event_loop.py
Single-threaded event loop for the assistant process.

Everything that changes conversation state runs on the thread that calls
`run_forever`. Capture and playback threads, timers and background workers
only `post` to the queue.
"""
from __future__ import annotations

import queue
import threading
from typing import Any, Callable


class TimerHandle:
    """A pending delayed call. `cancel()` is safe at any time, even after it fired."""

    def __init__(self):
        self.cancelled = False
        self._timer: threading.Timer | None = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class _Call:
    def __init__(self, callback: Callable[[], Any], handle: TimerHandle | None = None):
        self.callback = callback
        self.handle = handle


class EventLoop:
    def __init__(self):
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._stopped = threading.Event()

    def post(self, event: Any) -> None:
        """Queues an event for the handler. Safe to call from any thread."""
        self._queue.put(event)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Runs callback on the loop thread after `delay` seconds."""
        handle = TimerHandle()
        timer = threading.Timer(delay, lambda: self._queue.put(_Call(callback, handle)))
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle

    def run_in_background(self, func: Callable[[], Any], on_done: Callable[[Any], Any]) -> None:
        """
        Runs func on a worker thread and delivers its result to on_done on the loop thread.
        func is expected not to raise; if it does, the error is printed and on_done is skipped.
        """
        def _worker():
            try:
                result = func()
            except Exception as e:
                print(f"Background task failed: {e}")
                return
            self._queue.put(_Call(lambda: on_done(result)))

        threading.Thread(target=_worker, daemon=True).start()

    def stop(self) -> None:
        self._stopped.set()

    def run_forever(self, handler: Callable[[Any], Any]) -> None:
        """Dispatches queued events to handler until stop() is called."""
        while not self._stopped.is_set():
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                if isinstance(item, _Call):
                    if item.handle is None or not item.handle.cancelled:
                        item.callback()
                else:
                    handler(item)
            except Exception as e:
                print(f"Error while handling {item!r}: {e}")
