"""
audio_utils.py

Turns the raw PCM returned by Gemini text-to-speech into something playable.

Gemini answers speech requests with headerless 16-bit mono little-endian PCM
(24 kHz unless the MIME type says otherwise). This module wraps that payload
in a standard 44-byte RIFF/WAVE header, exposes it as a data URL for the
session, plays it through an explicitly owned player process and exports it
to disk on request.
"""

import base64
import io
import logging
import os
import signal
import subprocess
import tempfile
import threading
import wave

from pydub import AudioSegment

from errors import DecodeError
from media import decode_base64, split_data_url
from models import DEFAULT_SAMPLE_RATE

WAV_HEADER_SIZE = 44
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes, 16-bit PCM
PLAYER_COMMAND = ("ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet")
PAUSE_SUPPORTED = hasattr(signal, "SIGSTOP") and hasattr(signal, "SIGCONT")


def pcm_bytes_to_wav(pcm: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Wraps raw 16-bit mono PCM in a WAV container and returns the file bytes."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(CHANNELS)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def pcm_to_wav(base64_pcm: str, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """
    Decodes a base64 PCM buffer and wraps it in a WAV container.

    The output is a 44-byte header followed by the PCM payload unchanged, so
    the same input always yields the same bytes.

    Raises:
        DecodeError: if `base64_pcm` is not valid base64.
    """
    return pcm_bytes_to_wav(decode_base64(base64_pcm), sample_rate)


def wav_to_data_url(wav: bytes) -> str:
    return "data:audio/wav;base64," + base64.b64encode(wav).decode("ascii")


def wav_from_data_url(value: str) -> bytes:
    mime_type, data = split_data_url(value, default_mime="audio/wav")
    if mime_type not in ("audio/wav", "audio/x-wav", "audio/wave"):
        raise DecodeError(f"Expected a WAV data URL, got '{mime_type}'.")
    return decode_base64(data)


def wav_duration(wav: bytes) -> float:
    try:
        with wave.open(io.BytesIO(wav), "rb") as wf:
            return wf.getnframes() / float(wf.getframerate())
    except (wave.Error, EOFError) as e:
        raise DecodeError(f"Not a readable WAV buffer: {e}") from e


def export_audio(wav: bytes, output_path: str) -> str:
    """
    Saves narration audio to disk.

    `.wav` targets receive the bytes verbatim; any other extension is
    transcoded with pydub (which needs ffmpeg on the PATH).
    """
    ext = os.path.splitext(output_path)[1].lower().lstrip(".") or "wav"
    if ext == "wav":
        with open(output_path, "wb") as f:
            f.write(wav)
    else:
        segment = AudioSegment.from_wav(io.BytesIO(wav))
        segment.export(output_path, format=ext)
    logging.info(f"Audio saved to {output_path}")
    return output_path


class AudioPlayer:
    """
    Owns the one playback process the application may have running.

    Whoever creates the player is responsible for stopping it; used as a
    context manager it stops on exit whatever path leaves the block.
    Pausing suspends the player process with SIGSTOP and resuming sends
    SIGCONT; where those signals do not exist pausing stops playback.
    """

    def __init__(self, command=PLAYER_COMMAND):
        self._command = list(command)
        self._process = None
        self._temp_path = None
        self._paused = False
        self._lock = threading.Lock()

    def _alive(self) -> bool:
        process = self._process
        return process is not None and process.poll() is None

    @property
    def is_playing(self) -> bool:
        return self._alive() and not self._paused

    @property
    def is_paused(self) -> bool:
        return self._alive() and self._paused

    def play(self, wav: bytes):
        self.stop()
        fd, path = tempfile.mkstemp(prefix="mindfulgen_", suffix=".wav")
        with os.fdopen(fd, "wb") as f:
            f.write(wav)
        try:
            process = subprocess.Popen(
                [*self._command, path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            os.remove(path)
            raise RuntimeError(f"Audio player '{self._command[0]}' not found. Install ffmpeg to enable playback.") from e
        with self._lock:
            self._process, self._temp_path, self._paused = process, path, False
        logging.info("▶️ Playback started.")

    def pause(self):
        if not self.is_playing:
            return
        if not PAUSE_SUPPORTED:
            self.stop()
            return
        with self._lock:
            self._process.send_signal(signal.SIGSTOP)
            self._paused = True
        logging.info("⏸️ Playback paused.")

    def resume(self):
        if not self.is_paused:
            return
        with self._lock:
            self._process.send_signal(signal.SIGCONT)
            self._paused = False
        logging.info("▶️ Playback resumed.")

    def reap(self) -> bool:
        """
        Cleans up after a player that reached the end on its own.

        Returns True when playback had finished and was cleaned up.
        """
        with self._lock:
            process, path = self._process, self._temp_path
            if process is None or process.poll() is None:
                return False
            self._process, self._temp_path, self._paused = None, None, False
        if path and os.path.exists(path):
            os.remove(path)
        logging.info("Playback finished.")
        return True

    def stop(self):
        with self._lock:
            process, path, paused = self._process, self._temp_path, self._paused
            self._process, self._temp_path, self._paused = None, None, False
        if process is not None and process.poll() is None:
            process.terminate()
            if paused:
                # a stopped process only acts on SIGTERM once continued
                process.send_signal(signal.SIGCONT)
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            logging.info("⏹️ Playback stopped.")
        if path and os.path.exists(path):
            os.remove(path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
