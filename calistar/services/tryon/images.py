"""Decoding of client-supplied photos into binary uploads."""

import base64
import binascii
import re
from dataclasses import dataclass

from calistar.common.errors import InvalidImageData

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w.+-]+=[\w.+-]+)*;base64,", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.mime_type, "jpg")


def sniff_mime(data: bytes) -> str | None:
    """Identify the image format from its magic bytes."""

    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def decode_image_payload(value: str | None) -> ImagePayload:
    """Decode a data URI or raw base64 string into an image.

    Anything that is not strictly valid base64 of a known image format is a
    client error.
    """

    if not isinstance(value, str) or not value.strip():
        raise InvalidImageData(detail="empty image payload")
    text = value.strip()
    match = _DATA_URI.match(text)
    if match:
        text = text[match.end():]
    elif text.startswith("data:"):
        raise InvalidImageData(detail="data URI is not base64 encoded")
    text = _WHITESPACE.sub("", text)
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageData(detail="invalid base64") from exc
    mime_type = sniff_mime(data)
    if mime_type is None:
        raise InvalidImageData(detail="unsupported or corrupt image")
    return ImagePayload(data=data, mime_type=mime_type)
