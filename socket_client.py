"""socket_client.py
Socket.IO link from the assistant process to the web UI server.

Outgoing: the live transcript, the reply being spoken and the conversation
phase, relayed by the server to every browser. Incoming: 'restart_listening',
the user's explicit request to reopen the microphone, and 'profile_updated',
sent when the assistant is renamed.
"""
import threading
from typing import Any, Callable, Dict, Optional

import socketio

MAX_RETRY_DELAY_SEC = 30.0


class UiNotifier:
    def __init__(self, client: Optional[socketio.Client] = None):
        self.sio = client or socketio.Client()
        self.url: Optional[str] = None
        self.thread: Optional[threading.Thread] = None
        self.is_connected = False
        self.on_restart_listening: Optional[Callable[[], None]] = None
        self.on_profile_updated: Optional[Callable[[str], None]] = None
        self._stopping = threading.Event()

        self.sio.on('connect', self._on_connect)
        self.sio.on('connect_error', self._on_connect_error)
        self.sio.on('disconnect', self._on_disconnect)
        self.sio.on('restart_listening', self._on_restart_listening)
        self.sio.on('profile_updated', self._on_profile_updated)

    # --- Socket.IO handlers ---

    def _on_connect(self):
        self.is_connected = True
        print(f"Connected to the web UI at {self.url}.")

    def _on_connect_error(self, data=None):
        self.is_connected = False
        print(f"Web UI connection error: {data}")

    def _on_disconnect(self, *args):
        self.is_connected = False
        print("Disconnected from the web UI.")

    def _on_restart_listening(self, data=None):
        print("Web UI asked the assistant to listen again.")
        if self.on_restart_listening:
            self.on_restart_listening()

    def _on_profile_updated(self, data=None):
        name = (data or {}).get('assistantName')
        if not name:
            return
        print(f"Web UI renamed the assistant to '{name}'.")
        if self.on_profile_updated:
            self.on_profile_updated(name)

    # --- Connection lifecycle ---

    def _connect_with_retry(self):
        delay = 1.0
        while not self._stopping.is_set():
            try:
                self.sio.connect(self.url)
                break
            except socketio.exceptions.ConnectionError as e:
                print(f"Web UI not reachable ({e}). Retrying in {delay:.0f}s...")
                if self._stopping.wait(delay):
                    return
                delay = min(delay * 2, MAX_RETRY_DELAY_SEC)

        if self.sio.connected:
            self.sio.wait()

    def start(self, port: int = 5001, host: str = "127.0.0.1"):
        """Connects in a background thread, retrying until the server is up."""
        self.url = f"http://{host}:{port}"
        self._stopping.clear()
        if self.thread is None or not self.thread.is_alive():
            self.thread = threading.Thread(target=self._connect_with_retry, daemon=True)
            self.thread.start()

    def stop(self):
        self._stopping.set()
        if self.sio.connected:
            self.sio.disconnect()

    # --- Outgoing updates ---

    def _send(self, event: str, payload: Dict[str, Any]) -> bool:
        """Emits when connected; updates made while offline are dropped."""
        if not self.is_connected:
            return False
        try:
            self.sio.emit(event, payload)
        except socketio.exceptions.SocketIOError as e:
            print(f"Could not send '{event}' to the web UI: {e}")
            return False
        return True

    def update_user_speech(self, text: str):
        self._send('user_speech_update', {'text': text})

    def update_ai_speech(self, text: str):
        self._send('ai_speech_update', {'text': text})

    def update_assistant_state(self, state: str):
        """state is the lower-cased phase name, e.g. 'awaiting_wake' or 'speaking'."""
        self._send('assistant_state_update', {'state': state})


ui_notifier = UiNotifier()
