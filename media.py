"""
media.py

Helpers for moving images and audio around as base64 data URLs, which is the
only form the controllers and the GUI exchange media in.
"""

import base64
import binascii
import io
import logging

from PIL import Image, UnidentifiedImageError

from errors import DecodeError

DEFAULT_IMAGE_MIME = "image/jpeg"


def decode_base64(data: str) -> bytes:
    """Strictly decodes a base64 string, raising DecodeError on malformed input."""
    if isinstance(data, str):
        data = "".join(data.split())
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e


def to_data_url(data: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{data}"


def split_data_url(value: str, default_mime: str = DEFAULT_IMAGE_MIME):
    """
    Splits a data URL into its MIME type and base64 payload.

    Input without a `data:` header is taken to be bare base64 of
    `default_mime`.

    Returns:
        tuple: (mime_type, base64_data)
    """
    value = value.strip()
    if value.startswith("data:") and "," in value:
        header, data = value.split(",", 1)
        mime_type = header[len("data:"):].split(";")[0].strip()
        return mime_type or default_mime, data
    return default_mime, value


def data_url_to_bytes(value: str) -> bytes:
    _, data = split_data_url(value)
    return decode_base64(data)


def load_image_as_data_url(path: str) -> str:
    """Reads an image file from disk and returns it as a data URL with its real MIME type."""
    with open(path, "rb") as f:
        raw = f.read()
    try:
        with Image.open(io.BytesIO(raw)) as img:
            mime_type = Image.MIME.get(img.format, DEFAULT_IMAGE_MIME)
    except UnidentifiedImageError as e:
        raise DecodeError(f"'{path}' is not a readable image.") from e
    logging.info(f"Loaded image '{path}' ({mime_type}, {len(raw)} bytes).")
    return to_data_url(base64.b64encode(raw).decode("ascii"), mime_type)


def image_from_data_url(value: str) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data_url_to_bytes(value)))
        img.load()
    except UnidentifiedImageError as e:
        raise DecodeError("Data URL does not contain a readable image.") from e
    return img


def extension_for_mime(mime_type: str) -> str:
    return {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/webp": ".webp",
        "audio/wav": ".wav",
    }.get(mime_type, ".bin")
