"""web_ui.py
Flask server of the assistant: resolves commands into intents, serves the
user profile and settings, starts/stops the assistant process, and relays its
live state to browser clients over Socket.IO.
"""
import os
import subprocess
import sys
import atexit

from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

import config
import database
from config import get_settings, save_settings
from intent_resolver import resolve

app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*")


class AssistantProcess:
    """The main.py voice loop, run as a child process of the server."""

    def __init__(self, port: int):
        self.port = port
        self._process = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def command(self) -> list:
        script = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'main.py')
        return [
            sys.executable, script,
            '--socket-port', str(self.port),
            '--server-url', f'http://127.0.0.1:{self.port}',
        ]

    def start(self) -> bool:
        """Returns False if it was already running."""
        if self.running:
            return False
        cmd = self.command()
        print(f"Starting assistant process: {' '.join(cmd)}")
        self._process = subprocess.Popen(cmd)
        return True

    def stop(self, timeout: float = 5) -> bool:
        """Returns False if it was not running."""
        if not self.running:
            self._process = None
            return False
        print("Stopping assistant process...")
        self._process.terminate()
        try:
            self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
        self._process = None
        return True


assistant_process = AssistantProcess(config.WEB_UI_PORT)


def _current_user_id() -> str:
    return str(get_settings().get("user_id") or "local")


def _status() -> str:
    return 'running' if assistant_process.running else 'stopped'


def emit_status_update():
    """Broadcasts whether the assistant runs, and under which name."""
    socketio.emit('status_update', {
        'status': _status(),
        'assistant_name': get_settings().get("assistant_name"),
    })


@app.route('/')
def index():
    return jsonify({'status': _status()})


@socketio.on('connect')
def handle_connect():
    print("Client connected. Sending initial status.")
    emit_status_update()


# --- Relay from the assistant process to every browser ---

@socketio.on('user_speech_update')
def handle_user_speech(data):
    socketio.emit('user_speech_update', data)

@socketio.on('ai_speech_update')
def handle_ai_speech(data):
    socketio.emit('ai_speech_update', data)

@socketio.on('assistant_state_update')
def handle_assistant_state(data):
    socketio.emit('assistant_state_update', data)


# --- Profile ---

@app.route('/api/user/current')
def get_current_user():
    user = database.get_user(_current_user_id())
    if not user:
        return jsonify({"message": "User not found"}), 400
    return jsonify(user)


@app.route('/api/user/update', methods=['POST'])
def update_assistant():
    body = request.get_json(silent=True) or {}
    user = database.update_assistant(
        _current_user_id(),
        body.get("assistantName"),
        body.get("imageUrl"),
    )
    if not user:
        return jsonify({"message": "Update assistant error"}), 500
    # The running assistant process matches its wake word against this name.
    socketio.emit('profile_updated', {'assistantName': user["assistantName"]})
    return jsonify(user)


# --- Intent resolution ---

@app.route('/api/assistant/ask', methods=['POST'])
def ask_to_assistant():
    """Resolves one spoken command into an intent for the assistant process."""
    body = request.get_json(silent=True) or {}
    command = body.get("command")
    if not isinstance(command, str) or not command.strip():
        return jsonify({"response": "Sorry, I can't understand."}), 400

    try:
        user_id = _current_user_id()
        user = database.get_user(user_id)
        if not user:
            return jsonify({"response": "User not found"}), 400
        database.append_history(user_id, command)

        intent = resolve(command, user["assistantName"], user["name"],
                         assistant_language=user.get("assistantLanguage") or "en-US")
    except Exception as e:
        print(f"askToAssistant error: {e}")
        return jsonify({"response": "Ask assistant error"}), 500

    print(f"Resolved '{command}' -> {intent.type.value}")
    return jsonify(intent.to_dict())


@app.route('/api/assistant/restart', methods=['POST'])
def restart_listening():
    """Explicit user request to reopen the microphone, e.g. after granting permission."""
    socketio.emit('restart_listening', {})
    return jsonify({'status': 'sent'})


# --- Settings ---

@app.route('/api/settings', methods=['GET'])
def get_settings_endpoint():
    return jsonify(get_settings())

@app.route('/api/settings', methods=['POST'])
def save_settings_endpoint():
    """Merges the posted keys into the stored settings."""
    new_settings = request.get_json(silent=True)
    if not isinstance(new_settings, dict):
        return jsonify({'status': 'error', 'message': 'Settings must be a JSON object.'}), 400
    settings = get_settings()
    settings.update(new_settings)
    save_settings(settings)
    emit_status_update()
    return jsonify({'status': 'success', 'settings': settings})


# --- Assistant process control ---

@app.route('/start', methods=['POST'])
def start_app():
    started = assistant_process.start()
    emit_status_update()
    message = 'Assistant started.' if started else 'Assistant is already running.'
    return jsonify({'status': 'running', 'message': message})

@app.route('/stop', methods=['POST'])
def stop_app():
    stopped = assistant_process.stop()
    emit_status_update()
    message = 'Assistant stopped.' if stopped else 'Assistant was not running.'
    return jsonify({'status': 'stopped', 'message': message})


def cleanup_assistant_process():
    if assistant_process.running:
        print("Web UI is shutting down, terminating assistant process...")
        assistant_process.stop()

atexit.register(cleanup_assistant_process)


def main():
    """Starts the Flask server with Socket.IO."""
    socketio.run(app, host="127.0.0.1", port=config.WEB_UI_PORT, debug=False, allow_unsafe_werkzeug=True)

if __name__ == "__main__":
    main()
