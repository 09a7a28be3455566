"""
api_clients.py

This module centralizes all interactions with the Gemini API into one client.
It handles the construction of API requests, sending them, and processing the
responses, including robust error handling. This keeps the controllers clean
and focused on orchestration rather than API specifics.

Every operation goes through `GeminiClient.execute`, which looks the request
kind up in OPERATIONS to find the model, the expected response shape and the
error to raise, sends exactly one generateContent call and decodes the first
matching response part. Nothing is retried or cached here; retries belong to
the caller.
"""
import re
import logging
import unicodedata
from dataclasses import dataclass
from enum import Enum
from functools import wraps

import requests
from google.api_core import exceptions as google_exceptions

from config import DEFAULT_CONFIG, get_api_key
from errors import (
    ChatFailed,
    DecodeError,
    GenerationFailed,
    ImageGenerationFailed,
    MissingApiKey,
    NoImageReturned,
    ServiceError,
    SpeechGenerationFailed,
)
from media import decode_base64, split_data_url
from models import (
    DEFAULT_SAMPLE_RATE,
    IMAGE_SIZES,
    USER_ROLE,
    AudioResult,
    GenerationRequest,
    ImageResult,
    RequestKind,
    TextResult,
)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
HIGH_RES_IMAGE_SIZES = ("2K", "4K")

# --- Prompts ---
SCRIPT_PROMPT_TEMPLATE = (
    'Write a short, soothing guided meditation script about: "{topic}". \n'
    "The script should be around 150-200 words. \n"
    "Focus on sensory details (sight, sound, feeling) and deep breathing. \n"
    "Do not include instructions like [Pause] or *soft music*, just the spoken words. \n"
    "Start directly with the meditation."
)
IMAGE_PROMPT_TEMPLATE = (
    "meditation background, {prompt}, serene, artistic, soft lighting, 8k, "
    "highly detailed, spiritual atmosphere, digital art, no text"
)
GUIDE_PERSONA = "You are a calming, empathetic meditation guide. Keep responses concise and soothing."
DEFAULT_WATERMARK_INSTRUCTION = (
    "Remove all watermarks, logos, and text overlays from this image. "
    "Reconstruct the background naturally where the watermarks were removed. Output the clean image."
)
CUSTOM_EDIT_TEMPLATE = "Edit this image: {instruction}. Output only the modified image."
NARRATION_STYLE = "Read this guided meditation slowly, in a calm, warm and soothing voice:"


class ResponseShape(Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


@dataclass(frozen=True)
class Operation:
    model_key: str
    shape: ResponseShape
    error: type


OPERATIONS = {
    RequestKind.SCRIPT: Operation("TEXT_MODEL", ResponseShape.TEXT, GenerationFailed),
    RequestKind.IMAGE: Operation("IMAGE_MODEL", ResponseShape.IMAGE, ImageGenerationFailed),
    RequestKind.CHAT: Operation("TEXT_MODEL", ResponseShape.TEXT, ChatFailed),
    RequestKind.WATERMARK_REMOVAL: Operation("IMAGE_MODEL", ResponseShape.IMAGE, NoImageReturned),
    RequestKind.SPEECH: Operation("TTS_MODEL", ResponseShape.AUDIO, SpeechGenerationFailed),
}


def sanitize_for_tts(text: str) -> str:
    """Removes emojis and markdown emphasis and normalizes text for TTS processing."""
    emoji_pattern = re.compile(
        "["
        "\U0001F300-\U0001FAFF"  # symbols, pictographs, emoticons
        "\U00002600-\U000027BF"  # misc symbols & dingbats
        "]+", re.UNICODE)
    text = emoji_pattern.sub('', text)
    text = unicodedata.normalize("NFKC", text)
    text = text.replace('*', '')
    text = re.sub(r'[ \t\r\f\v]+', ' ', text).strip()
    return text.replace('“', '"').replace('”', '"').replace('’', "'").replace('—', '-').replace('–', '-')


def parse_sample_rate(mime_type: str, default: int = DEFAULT_SAMPLE_RATE) -> int:
    """Reads the `rate=` parameter of an audio MIME type such as `audio/L16;codec=pcm;rate=24000`."""
    match = re.search(r"rate=(\d+)", mime_type or "")
    return int(match.group(1)) if match else default


def decode_parts(response_json: dict, shape: ResponseShape, error_cls=ServiceError):
    """
    Maps the parts of a generateContent response onto a GenerationResult.

    The first part of the requested shape wins. Text parts flagged as model
    thoughts are skipped. A response with no matching part raises
    `error_cls` instead of returning an empty value.
    """
    candidates = response_json.get("candidates") or []
    if not candidates:
        block_reason = (response_json.get("promptFeedback") or {}).get("blockReason", "NO_CANDIDATES")
        raise error_cls(f"Gemini returned no candidates (reason: {block_reason}).")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        if shape is ResponseShape.TEXT:
            if part.get("text") and not part.get("thought"):
                return TextResult(part["text"])
            continue

        inline = part.get("inlineData") or part.get("inline_data") or {}
        data = inline.get("data")
        if not data:
            continue
        mime_type = inline.get("mimeType") or inline.get("mime_type") or ""
        if shape is ResponseShape.IMAGE and (not mime_type or mime_type.startswith("image/")):
            return ImageResult(data, mime_type or "image/png")
        if shape is ResponseShape.AUDIO and (not mime_type or mime_type.startswith("audio/")):
            return AudioResult(decode_base64(data), parse_sample_rate(mime_type))

    finish_reason = candidates[0].get("finishReason", "UNKNOWN")
    raise error_cls(f"No {shape.value} part found in the Gemini response (finish reason: {finish_reason}).")


def handle_api_errors(func):
    """A decorator that turns provider and transport errors into the operation's typed error."""
    @wraps(func)
    def wrapper(self, request, *args, **kwargs):
        error_cls = OPERATIONS[request.kind].error
        try:
            return func(self, request, *args, **kwargs)
        except ServiceError:
            raise
        except google_exceptions.TooManyRequests as e:
            error_message = f"Gemini API Quota Exceeded: {e.message}. Please check usage or billing."
            logging.error(error_message, exc_info=True)
            raise error_cls(error_message) from e
        except google_exceptions.GoogleAPICallError as e:
            error_message = f"Gemini API error during {request.kind.value} request: {e.message}"
            logging.error(error_message, exc_info=True)
            raise error_cls(error_message) from e
        except requests.exceptions.RequestException as e:
            error_message = f"Could not reach the Gemini API: {e}"
            logging.error(error_message, exc_info=True)
            raise error_cls(error_message) from e
    return wrapper


class GeminiClient:
    """Client for all Gemini text, image and speech interactions."""

    def __init__(self, api_key=None, config=None):
        self.api_key = api_key
        self.config = {**DEFAULT_CONFIG, **(config or {})}

    @property
    def timeout(self):
        return self.config.get("REQUEST_TIMEOUT") or None

    def _resolve_api_key(self) -> str:
        api_key = self.api_key or get_api_key(self.config)
        if not api_key:
            raise MissingApiKey("Gemini API key is missing. Set the API_KEY environment variable or add it in Settings.")
        return api_key

    def model_for(self, request: GenerationRequest) -> str:
        if request.kind is RequestKind.IMAGE and request.image_size in HIGH_RES_IMAGE_SIZES:
            return self.config["IMAGE_MODEL_HIGH_RES"]
        return self.config[OPERATIONS[request.kind].model_key]

    def build_payload(self, request: GenerationRequest) -> dict:
        """Builds the generateContent request body for one GenerationRequest."""
        kind = request.kind
        payload = {}

        if kind is RequestKind.CHAT:
            contents = [{"role": m.role, "parts": [{"text": m.text}]} for m in request.history]
            contents.append({"role": USER_ROLE, "parts": [{"text": request.text}]})
            payload["systemInstruction"] = {"parts": [{"text": GUIDE_PERSONA}]}
        else:
            if kind is RequestKind.SCRIPT:
                prompt = SCRIPT_PROMPT_TEMPLATE.format(topic=request.text)
            elif kind is RequestKind.IMAGE:
                prompt = IMAGE_PROMPT_TEMPLATE.format(prompt=request.text)
            elif kind is RequestKind.WATERMARK_REMOVAL:
                instruction = request.custom_instruction.strip()
                prompt = CUSTOM_EDIT_TEMPLATE.format(instruction=instruction) if instruction else DEFAULT_WATERMARK_INSTRUCTION
            else:
                prompt = f"{NARRATION_STYLE}\n{request.text}"
            parts = [{"text": prompt}]
            if request.image_data:
                parts.append({"inlineData": {"mimeType": request.image_mime_type, "data": request.image_data}})
            contents = [{"role": USER_ROLE, "parts": parts}]
        payload["contents"] = contents

        if kind is RequestKind.IMAGE:
            generation_config = {"responseModalities": ["TEXT", "IMAGE"]}
            image_config = {}
            if request.image_size in HIGH_RES_IMAGE_SIZES:
                image_config["imageSize"] = request.image_size
            if request.aspect_ratio:
                image_config["aspectRatio"] = request.aspect_ratio
            if image_config:
                generation_config["imageConfig"] = image_config
            payload["generationConfig"] = generation_config
        elif kind is RequestKind.WATERMARK_REMOVAL:
            payload["generationConfig"] = {"responseModalities": ["TEXT", "IMAGE"]}
        elif kind is RequestKind.SPEECH:
            voice = request.voice or self.config.get("TTS_VOICE", "Kore")
            payload["generationConfig"] = {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            }
        return payload

    def _generate_content(self, model: str, payload: dict, api_key: str) -> dict:
        api_url = f"{GEMINI_API_BASE}/{model}:generateContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        response = requests.post(api_url, headers=headers, json=payload, timeout=self.timeout)
        if response.status_code >= 400:
            raise google_exceptions.from_http_response(response)
        return response.json()

    @handle_api_errors
    def execute(self, request: GenerationRequest):
        """Sends one request and returns its decoded GenerationResult."""
        operation = OPERATIONS[request.kind]
        api_key = self._resolve_api_key()
        model = self.model_for(request)
        payload = self.build_payload(request)
        logging.info(f"Sending {request.kind.value} request to {model}...")
        response_json = self._generate_content(model, payload, api_key)
        return decode_parts(response_json, operation.shape, operation.error)

    def generate_script(self, topic: str) -> str:
        logging.info(f"Writing meditation script for '{topic}'...")
        return self.execute(GenerationRequest(RequestKind.SCRIPT, text=topic)).text

    def generate_image(self, prompt: str, size: str = "1K", aspect_ratio=None) -> str:
        if size not in IMAGE_SIZES:
            raise ValueError(f"Unsupported image size '{size}'. Choose one of {IMAGE_SIZES}.")
        logging.info(f"Generating {size} meditation image for '{prompt}'...")
        request = GenerationRequest(RequestKind.IMAGE, text=prompt, image_size=size, aspect_ratio=aspect_ratio)
        return self.execute(request).data_url

    def chat(self, history, message: str) -> str:
        request = GenerationRequest(RequestKind.CHAT, text=message, history=tuple(history))
        return self.execute(request).text

    def remove_watermark(self, image_base64: str, custom_instruction: str = "") -> str:
        """
        Sends an image for watermark removal (or a custom edit) and returns the
        edited image as a data URL.

        `image_base64` may be a full data URL or bare base64; the header is
        stripped before transmission and its MIME type is sent along.
        """
        mime_type, data = split_data_url(image_base64)
        if not data.strip():
            raise DecodeError("No image data to process. Upload an image first.")
        logging.info("Requesting watermark removal" + (f" with instruction: '{custom_instruction.strip()}'" if custom_instruction.strip() else "..."))
        request = GenerationRequest(
            RequestKind.WATERMARK_REMOVAL,
            image_data=data,
            image_mime_type=mime_type,
            custom_instruction=custom_instruction or "",
        )
        return self.execute(request).data_url

    def generate_speech(self, text: str, voice=None) -> AudioResult:
        logging.info("Generating narration with Gemini TTS...")
        request = GenerationRequest(RequestKind.SPEECH, text=sanitize_for_tts(text), voice=voice)
        return self.execute(request)
