"""Decoding of user photos sent as base64."""

import base64

import pytest

from calistar.common.errors import InvalidImageData
from calistar.services.tryon.images import ImagePayload, decode_image_payload, sniff_mime

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 24


def test_data_uri_is_decoded():
    payload = decode_image_payload("data:image/png;base64," + base64.b64encode(PNG_BYTES).decode())
    assert payload == ImagePayload(PNG_BYTES, "image/png")
    assert payload.extension == "png"


def test_raw_base64_with_line_breaks():
    encoded = base64.b64encode(JPEG_BYTES).decode()
    payload = decode_image_payload(encoded[:10] + "\n" + encoded[10:])
    assert payload.mime_type == "image/jpeg"
    assert payload.extension == "jpg"


def test_declared_mime_is_not_trusted():
    payload = decode_image_payload("data:image/png;base64," + base64.b64encode(JPEG_BYTES).decode())
    assert payload.mime_type == "image/jpeg"


@pytest.mark.parametrize(
    "value",
    [
        None,
        "",
        "   ",
        "not base64 at all!",
        "data:image/png,rawbytes",
        base64.b64encode(b"plain text, not an image").decode(),
    ],
)
def test_invalid_payloads(value):
    with pytest.raises(InvalidImageData):
        decode_image_payload(value)


def test_sniff_known_formats():
    assert sniff_mime(b"GIF89a....") == "image/gif"
    assert sniff_mime(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_mime(b"hello") is None
