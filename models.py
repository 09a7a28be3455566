"""
models.py

Plain data types passed between the gateway client, the controllers and the
GUI. All of them are frozen: a session, a chat message or a processed image
is replaced as a whole, never edited field by field.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union

USER_ROLE = "user"
MODEL_ROLE = "model"
CHAT_ROLES = (USER_ROLE, MODEL_ROLE)

IMAGE_SIZES = ("1K", "2K", "4K")
DEFAULT_SAMPLE_RATE = 24000


class AppStatus(Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class RequestKind(Enum):
    SCRIPT = "script"
    IMAGE = "image"
    CHAT = "chat"
    WATERMARK_REMOVAL = "watermark_removal"
    SPEECH = "speech"


@dataclass(frozen=True)
class ChatMessage:
    """One turn of the guide conversation."""

    role: str
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.role not in CHAT_ROLES:
            raise ValueError(f"Chat role must be one of {CHAT_ROLES}, got '{self.role}'.")


@dataclass(frozen=True)
class GenerationRequest:
    """A single call to the remote model, built fresh for every operation."""

    kind: RequestKind
    text: str = ""
    image_data: Optional[str] = None  # base64 without the data URL header
    image_mime_type: str = "image/jpeg"
    history: Tuple[ChatMessage, ...] = ()
    image_size: Optional[str] = None
    aspect_ratio: Optional[str] = None
    custom_instruction: str = ""
    voice: Optional[str] = None


@dataclass(frozen=True)
class TextResult:
    text: str


@dataclass(frozen=True)
class ImageResult:
    data: str
    mime_type: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class AudioResult:
    pcm: bytes
    sample_rate: int = DEFAULT_SAMPLE_RATE


GenerationResult = Union[TextResult, ImageResult, AudioResult]


@dataclass(frozen=True)
class MeditationSession:
    topic: str
    script: str
    image_url: str
    audio_url: str = ""


@dataclass(frozen=True)
class ProcessedImage:
    original: str
    result: str = ""
