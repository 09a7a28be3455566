"""Shared fakes for the MindfulGen tests."""

import base64
import json
import threading

import pytest
import requests

from models import AudioResult


def make_response(status_code, body):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode("utf-8")
    response.headers["Content-Type"] = "application/json"
    response.request = requests.Request("POST", "https://generativelanguage.googleapis.com/v1beta/models/test:generateContent").prepare()
    return response


def parts_response(*parts, finish_reason="STOP"):
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}, "finishReason": finish_reason}]}


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class FakePost:
    """Stands in for requests.post, recording every call and replaying queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakePlayer:
    def __init__(self):
        self.played = []
        self.stop_calls = 0
        self._playing = False
        self._paused = False
        self.pause_calls = 0

    @property
    def is_playing(self):
        return self._playing and not self._paused

    @property
    def is_paused(self):
        return self._playing and self._paused

    def play(self, wav):
        self.played.append(wav)
        self._playing = True
        self._paused = False

    def pause(self):
        self.pause_calls += 1
        self._paused = True

    def resume(self):
        self._paused = False

    def stop(self):
        self.stop_calls += 1
        self._playing = False
        self._paused = False


class FakeGeminiClient:
    """Records calls in order; any step can be made to fail or to block until released."""

    def __init__(self, fail_on=None, error=None, block_on=None):
        self.calls = []
        self.fail_on = fail_on
        self.error = error
        self.block_on = block_on
        self.started = threading.Event()
        self.release = threading.Event()
        self.chat_histories = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter_lock = threading.Lock()

    def _step(self, name):
        with self._counter_lock:
            self.calls.append(name)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if name == self.block_on:
                self.started.set()
                self.release.wait(timeout=5)
            if name == self.fail_on:
                raise self.error
        finally:
            with self._counter_lock:
                self.in_flight -= 1

    def generate_script(self, topic):
        self._step("script")
        return f"Breathe in {topic}."

    def generate_image(self, prompt, size="1K", aspect_ratio=None):
        self._step("image")
        return "data:image/png;base64," + b64(b"\x89PNG fake")

    def generate_speech(self, text, voice=None):
        self._step("speech")
        return AudioResult(pcm=b"\x01\x00\x02\x00", sample_rate=24000)

    def remove_watermark(self, image_base64, custom_instruction=""):
        self._step("watermark")
        return "data:image/png;base64," + b64(b"clean")

    def chat(self, history, message):
        self.chat_histories.append(tuple(history))
        self._step("chat")
        return f"reply {len(self.chat_histories)}"


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("API_KEY", "test-key")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    return "test-key"


@pytest.fixture
def no_api_key(monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
