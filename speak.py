"""speak.py
Text-to-speech playback for the assistant process.

Two engines:
1. `pyttsx3` (offline; `nsss`, `sapi5` or `espeak` back-ends), the default.
2. The native `say` command on macOS or `espeak`/`espeak-ng` on Linux,
   selected with the `tts_engine: "system"` setting.

Only one utterance plays at a time: every `speak` cancels whatever is still
playing and waits for that playback thread to wind down before starting the
next one. Completion is reported through the `on_end` / `on_error` callbacks,
which run on the playback thread.
"""

from __future__ import annotations

import shutil
import subprocess
import sys
import threading
from typing import Callable, Iterable, Optional

PLAYBACK_HANDOVER_SEC = 2.0


def _voice_languages(voice) -> list[str]:
    """Normalised language tags of a pyttsx3 voice, e.g. ['en-us']."""
    tags = []
    for lang in getattr(voice, "languages", None) or []:
        if isinstance(lang, bytes):
            # espeak reports languages as b'\x05en-us'
            lang = "".join(ch for ch in lang.decode("utf-8", errors="ignore") if ch.isprintable())
        tags.append(str(lang).strip().lower().replace("_", "-"))
    return tags


def select_voice(voices: Iterable, language: str):
    """
    Picks the voice for a language tag like 'hi-IN':
    exact tag match, then same base language ('hi'), then the first English voice.
    Returns None when nothing matches, leaving the engine default.
    """
    voices = list(voices)
    wanted = language.lower().replace("_", "-")
    base = wanted.split("-")[0]

    for voice in voices:
        if wanted in _voice_languages(voice):
            return voice
    for voice in voices:
        if any(tag == base or tag.startswith(base + "-") for tag in _voice_languages(voice)):
            return voice
    for voice in voices:
        if any(tag == "en" or tag.startswith("en-") for tag in _voice_languages(voice)):
            return voice
    return None


class SpeechOutput:
    def __init__(self, engine: str = "pyttsx3", handover_timeout: float = PLAYBACK_HANDOVER_SEC):
        self.engine = engine
        self.handover_timeout = handover_timeout
        self._lock = threading.Lock()
        self._pyttsx3_engine = None
        self._process: Optional[subprocess.Popen] = None
        self._worker: Optional[threading.Thread] = None
        self._generation = 0

    def cancel(self) -> None:
        """Immediately halt any ongoing playback."""
        with self._lock:
            self._generation += 1

            if self._pyttsx3_engine is not None:
                try:
                    self._pyttsx3_engine.stop()
                except Exception as e:
                    print(f"Could not stop pyttsx3 playback: {e}")

            if self._process and self._process.poll() is None:
                try:
                    self._process.terminate()
                except OSError as e:
                    print(f"Could not terminate TTS process: {e}")
            self._process = None

    def _wait_for_previous(self) -> None:
        """The engine's run loop accepts one caller at a time."""
        previous = self._worker
        if previous is None or previous is threading.current_thread() or not previous.is_alive():
            return
        previous.join(self.handover_timeout)
        if previous.is_alive():
            print(f"Previous playback still running after {self.handover_timeout}s.")

    def speak(self, text: str, language: str,
              on_end: Callable[[], None], on_error: Callable[[str], None]) -> None:
        """Stops current playback, then speaks text in a background thread."""
        self.cancel()
        self._wait_for_previous()
        with self._lock:
            generation = self._generation

        if self.engine == "system":
            target = self._speak_with_command
        else:
            target = self._speak_pyttsx3

        def _worker():
            try:
                target(text, language, generation)
            except Exception as e:
                print(f"[TTS error] {e}")
                on_error(str(e))
                return
            on_end()

        self._worker = threading.Thread(target=_worker, daemon=True)
        self._worker.start()

    def _speak_pyttsx3(self, text: str, language: str, generation: int) -> None:
        import pyttsx3

        with self._lock:
            if self._pyttsx3_engine is None:
                self._pyttsx3_engine = pyttsx3.init()
            engine = self._pyttsx3_engine
            voice = select_voice(engine.getProperty("voices"), language)
            if voice is not None:
                engine.setProperty("voice", voice.id)
            else:
                print(f"No suitable voice found for '{language}', using the default.")
            if generation != self._generation:
                return
        engine.say(text)
        engine.runAndWait()

    def _system_command(self, text: str, language: str) -> list[str]:
        if sys.platform == "darwin":
            return ["say", text]
        if sys.platform.startswith("linux"):
            binary = "espeak-ng" if shutil.which("espeak-ng") else "espeak"
            return [binary, "-v", language.lower(), text]
        raise RuntimeError("No system TTS command available for this platform.")

    def _speak_with_command(self, text: str, language: str, generation: int) -> None:
        cmd = self._system_command(text, language)
        if shutil.which(cmd[0]) is None:
            raise RuntimeError(f"'{cmd[0]}' is not installed.")

        with self._lock:
            if generation != self._generation:
                return
            process = subprocess.Popen(cmd)
            self._process = process

        returncode = process.wait()
        with self._lock:
            cancelled = generation != self._generation
        if returncode != 0 and not cancelled:
            raise RuntimeError(f"{cmd[0]} exited with status {returncode}")
