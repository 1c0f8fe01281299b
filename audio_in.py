"""audio_in.py
Continuous speech capture for the assistant process: the microphone is
recorded phrase by phrase (VAD-gated), each phrase is transcribed with OpenAI
Whisper, and the result is posted as a TranscriptReceived event.

Dependencies (the `audio` extra):
    - sounddevice
    - soundfile
    - numpy
    - webrtcvad
    - openai

Capture reports its lifecycle through the same `post` callback:
CaptureStarted when the stream opens, then either CaptureEnded (stopped or
stream closed) or CaptureFailed(error) with one of the error codes below.
"""
from __future__ import annotations

import io
import threading
from collections import deque
from typing import Callable, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf
import webrtcvad
from openai import OpenAI, OpenAIError

import config
from conversation import CaptureEnded, CaptureFailed, CaptureStarted, TranscriptReceived


def classify_capture_error(exc: Exception) -> str:
    """Maps an exception from the audio stack to a capture error code."""
    if isinstance(exc, OpenAIError):
        return "network"
    if isinstance(exc, PermissionError):
        return "not-allowed"
    if isinstance(exc, sd.PortAudioError):
        message = str(exc).lower()
        if "permission" in message or "access denied" in message:
            return "not-allowed"
        return "audio-capture"
    return "unknown"


class Transcriber:
    def __init__(self, language: str = "en-US", model: str = config.TRANSCRIBE_MODEL):
        self.language = language.split("-")[0].lower()
        self.model = model
        self._client = OpenAI(api_key=config.OPENAI_API_KEY)

    def transcribe_audio(self, audio_data: bytes) -> str:
        if not audio_data:
            return ""

        with io.BytesIO(audio_data) as buffer:
            with sf.SoundFile(buffer, 'r') as sound_file:
                duration = sound_file.frames / sound_file.samplerate
        if duration < 0.2:
            print(f"🎤 Audio too short ({duration:.2f}s), skipping transcription.")
            return ""

        result = self._client.audio.transcriptions.create(
            model=self.model,
            file=("speech.wav", audio_data),
            language=self.language,
        )
        text = (result.text or "").strip()
        print(f"✍️  Transcribed text: '{text}'")
        return text


class SpeechCapture:
    def __init__(self, post: Callable[[object], None],
                 language: str = "en-US", device_index: Optional[int] = None,
                 transcriber: Optional[Transcriber] = None):
        self.post = post
        self.device_index = device_index
        self.transcriber = transcriber or Transcriber(language)
        self.vad = webrtcvad.Vad(config.VAD_SENSITIVITY)
        self.sample_rate = 16000
        self.frame_duration_ms = 30
        self.frame_length = int(self.sample_rate * self.frame_duration_ms / 1000)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _rms(self, block):
        return np.sqrt(np.mean(np.square(block, dtype=np.float64)))

    def _run(self) -> None:
        try:
            with sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=self.frame_length,
                device=self.device_index,
            ) as stream:
                self.post(CaptureStarted())
                print("👂 Listening...")
                while not self._stop.is_set():
                    audio_data = self._record_phrase(stream)
                    if self._stop.is_set() or not audio_data:
                        continue
                    text = self.transcriber.transcribe_audio(audio_data)
                    if text and not self._stop.is_set():
                        self.post(TranscriptReceived(text))
        except Exception as e:
            print(f"An error occurred in speech capture: {e}")
            self.post(CaptureFailed(classify_capture_error(e)))
            return
        self.post(CaptureEnded())

    def _record_phrase(self, stream) -> Optional[bytes]:
        """Reads frames until a phrase followed by silence is captured, or capture is stopped."""
        silence_frames_needed = int(config.SPEECH_TIMEOUT_SEC * 1000 / self.frame_duration_ms)
        pre_buffer = deque(maxlen=int(0.5 * self.sample_rate / self.frame_length))
        recording_started = False
        chunks = []
        silent_frames = 0

        while not self._stop.is_set():
            block, _ = stream.read(self.frame_length)

            is_speech = False
            if self._rms(block.astype(np.float32) / 32768.0) >= config.VAD_RMS_THRESHOLD:
                is_speech = self.vad.is_speech(block.tobytes(), self.sample_rate)

            if is_speech:
                if not recording_started:
                    recording_started = True
                    chunks.extend(pre_buffer)
                    pre_buffer.clear()
                chunks.append(block)
                silent_frames = 0
            elif not recording_started:
                pre_buffer.append(block)
            else:
                chunks.append(block)
                silent_frames += 1
                if silent_frames >= silence_frames_needed:
                    break

        if not chunks or self._stop.is_set():
            return None

        recording = np.concatenate(chunks, axis=0)
        buffer = io.BytesIO()
        sf.write(buffer, recording, self.sample_rate, format='WAV', subtype='PCM_16')
        return buffer.getvalue()
