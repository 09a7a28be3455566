"""
pipeline.py

Controllers that sit between the GUI and the Gemini client.

MeditationController runs the "write a script, paint an image, narrate it"
sequence and owns the current MeditationSession. WatermarkController runs a
single watermark removal and owns the current ProcessedImage. Both are driven
by a StatusMachine that lets at most one generation be in flight: the GUI
calls them from worker threads, and a second call while one is running is
turned away before it reaches the network. A reset moves the status back to
IDLE straight away, but the gate stays closed until the abandoned call has
returned; its result is then thrown away.
"""

import logging
import threading

from audio_utils import pcm_bytes_to_wav, wav_from_data_url, wav_to_data_url
from config import DEFAULT_CONFIG
from errors import ServiceError
from models import IMAGE_SIZES, AppStatus, MeditationSession, ProcessedImage

FALLBACK_SCRIPT = (
    "Take a deep breath. Focus on the present moment. Inhale peace, exhale tension. "
    "(Service unavailable, please retry)."
)


class StatusMachine:
    """
    IDLE -> PROCESSING -> SUCCESS | ERROR, ERROR -> IDLE on retry, and any
    state -> IDLE on reset.

    `try_begin` is the single-flight gate. It opens again only when the
    worker calls `finish`, not when the status changes, so a reset cannot
    let a second run start next to one that is still waiting on the network.
    """

    def __init__(self, on_change=None):
        self._lock = threading.RLock()
        self._status = AppStatus.IDLE
        self._error = None
        self._in_flight = False
        self._listeners = [on_change] if on_change else []

    @property
    def status(self) -> AppStatus:
        return self._status

    @property
    def error(self):
        return self._error

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def subscribe(self, callback):
        self._listeners.append(callback)

    def _set(self, status, error=None):
        self._status, self._error = status, error
        for listener in list(self._listeners):
            listener(status, error)

    def try_begin(self) -> bool:
        with self._lock:
            if self._in_flight or self._status is AppStatus.PROCESSING:
                return False
            self._in_flight = True
            self._set(AppStatus.PROCESSING)
            return True

    def finish(self):
        with self._lock:
            self._in_flight = False

    def succeed(self):
        with self._lock:
            self._set(AppStatus.SUCCESS)

    def fail(self, error):
        with self._lock:
            self._set(AppStatus.ERROR, error)

    def retry(self) -> bool:
        with self._lock:
            if self._status is not AppStatus.ERROR:
                return False
            self._set(AppStatus.IDLE)
            return True

    def reset(self):
        with self._lock:
            self._set(AppStatus.IDLE)


class MeditationController:
    """Orchestrates meditation session creation and narration playback."""

    def __init__(self, client, player, config=None, on_change=None):
        self.client = client
        self.player = player
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.state = StatusMachine(on_change)
        self._session = None
        self._run_id = 0

    @property
    def status(self) -> AppStatus:
        return self.state.status

    @property
    def error(self):
        return self.state.error

    @property
    def is_busy(self) -> bool:
        """True while a generation, possibly an abandoned one, is still waiting on Gemini."""
        return self.state.in_flight

    @property
    def session(self):
        return self._session

    def create_session(self, topic: str, image_size=None):
        """
        Generates a new meditation session for `topic`.

        Returns the new MeditationSession, or None when another generation is
        still running, this one failed (the error is kept on `self.error`) or
        the controller was reset before it finished.
        """
        topic = (topic or "").strip()
        if not topic:
            raise ValueError("Please enter a topic first.")
        image_size = image_size or self.config.get("IMAGE_SIZE", "1K")
        if image_size not in IMAGE_SIZES:
            raise ValueError(f"Unsupported image size '{image_size}'. Choose one of {IMAGE_SIZES}.")

        if not self.state.try_begin():
            logging.warning("A session is already being generated. Ignoring new request.")
            return None

        try:
            return self._run_session(topic, image_size)
        finally:
            self.state.finish()

    def _run_session(self, topic, image_size):
        self.player.stop()
        self._session = None
        run_id = self._run_id
        try:
            logging.info(f"Starting meditation session for topic: '{topic}'")
            script = self.client.generate_script(topic)
            image_url = self.client.generate_image(topic, image_size, self.config.get("IMAGE_ASPECT_RATIO"))
            audio_url = ""
            if self.config.get("GENERATE_AUDIO", True):
                audio = self.client.generate_speech(script, self.config.get("TTS_VOICE"))
                audio_url = wav_to_data_url(pcm_bytes_to_wav(audio.pcm, audio.sample_rate))
        except ServiceError as e:
            logging.error(f"Session generation failed: {e}")
            if run_id == self._run_id:
                self.state.fail(e)
            return None
        except Exception as e:
            logging.error(f"Unexpected error while generating session: {e}", exc_info=True)
            if run_id == self._run_id:
                self.state.fail(e)
            raise

        if run_id != self._run_id:
            logging.info("Session was reset while generating. Discarding result.")
            return None
        session = MeditationSession(topic=topic, script=script, image_url=image_url, audio_url=audio_url)
        self._session = session
        self.state.succeed()
        logging.info("✅ Meditation session ready.")
        return session

    def toggle_playback(self) -> bool:
        """
        Plays, pauses or resumes the narration. Returns True while it is
        audible.
        """
        if self.player.is_playing:
            self.player.pause()
            return False
        if self.player.is_paused:
            self.player.resume()
            return True
        session = self._session
        if session is None or not session.audio_url:
            logging.warning("No narration available to play.")
            return False
        self.player.play(wav_from_data_url(session.audio_url))
        return True

    def retry(self) -> bool:
        return self.state.retry()

    def reset(self):
        self.player.stop()
        self._run_id += 1
        self._session = None
        self.state.reset()
        logging.info("Session cleared.")


class WatermarkController:
    """Holds one uploaded image and its watermark-free counterpart."""

    def __init__(self, client, on_change=None):
        self.client = client
        self.state = StatusMachine(on_change)
        self._image = None
        self._run_id = 0

    @property
    def status(self) -> AppStatus:
        return self.state.status

    @property
    def error(self):
        return self.state.error

    @property
    def is_busy(self) -> bool:
        return self.state.in_flight

    @property
    def image(self):
        return self._image

    def load_image(self, data_url: str) -> bool:
        if self.state.in_flight:
            logging.warning("Cannot replace the image while it is being processed.")
            return False
        self._image = ProcessedImage(original=data_url)
        self.state.reset()
        return True

    def process(self, custom_instruction: str = ""):
        """Removes watermarks from the loaded image. Returns the ProcessedImage or None."""
        image = self._image
        if image is None:
            raise ValueError("Upload an image first.")
        if not self.state.try_begin():
            logging.warning("Watermark removal already in progress. Ignoring new request.")
            return None
        run_id = self._run_id
        try:
            result = self.client.remove_watermark(image.original, custom_instruction)
        except ServiceError as e:
            logging.error(f"Watermark removal failed: {e}")
            if run_id == self._run_id:
                self.state.fail(e)
            return None
        except Exception as e:
            logging.error(f"Unexpected error during watermark removal: {e}", exc_info=True)
            if run_id == self._run_id:
                self.state.fail(e)
            raise
        finally:
            self.state.finish()

        if run_id != self._run_id:
            logging.info("Image was cleared while processing. Discarding result.")
            return None
        self._image = ProcessedImage(original=image.original, result=result)
        self.state.succeed()
        logging.info("✅ Watermark removal complete.")
        return self._image

    def retry(self) -> bool:
        return self.state.retry()

    def reset(self):
        self._run_id += 1
        self._image = None
        self.state.reset()
