"""
errors.py

The small error taxonomy shared by the gateway client, the audio helpers and
the controllers. Every failure the application can recover from is a
ServiceError, so the UI layer only needs one except clause to move a
controller into its error state and show something calm to the user.
"""


class ServiceError(Exception):
    """Base class for every recoverable application error."""


class MissingApiKey(ServiceError):
    """No Gemini API key was configured when a call was attempted."""


class GenerationFailed(ServiceError):
    """The meditation script could not be generated."""


class ImageGenerationFailed(ServiceError):
    """The image request failed or the response carried no inline image."""


class NoImageReturned(ServiceError):
    """Watermark removal returned no inline image part."""


class ChatFailed(ServiceError):
    """A chat turn failed or came back without any text."""


class SpeechGenerationFailed(ServiceError):
    """Narration failed or the response carried no audio part."""


class DecodeError(ServiceError):
    """Base64 or PCM input could not be decoded."""
