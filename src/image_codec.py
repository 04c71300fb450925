"""Image encoding helpers shared by every generation job.

Converts raw image resources into the base64 transport encoding used by
the remote service, validates uploads against the supported media types,
and keeps the in-memory preview handles handed out to the UI.
"""

import base64
import io
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from errors import ValidationError

logger = logging.getLogger(__name__)

PNG = "image/png"
JPEG = "image/jpeg"
SUPPORTED_MEDIA_TYPES = (PNG, JPEG)

# Pillow format name -> media type
_FORMAT_MEDIA_TYPES = {
    "PNG": PNG,
    "JPEG": JPEG,
}

UPLOAD_ERROR = "Please upload a valid image file (JPG or PNG)."
DOWNLOAD_BASENAME = "ai-fashion-try-on"


@dataclass(frozen=True)
class ImageResource:
    """An opaque binary image plus its declared media type."""
    data: bytes
    media_type: str

    @property
    def is_supported(self) -> bool:
        return self.media_type in SUPPORTED_MEDIA_TYPES

    def __repr__(self) -> str:
        return f"ImageResource(media_type={self.media_type!r}, size={len(self.data)})"


@dataclass(frozen=True)
class ImageInput:
    """Transport form of an image: base64 text plus media type."""
    data: str
    media_type: str


def to_image_input(resource: ImageResource) -> ImageInput:
    """Encode an image resource for the remote service."""
    return ImageInput(
        data=base64.b64encode(resource.data).decode("ascii"),
        media_type=resource.media_type,
    )


def decode_image_input(image: ImageInput) -> bytes:
    """Decode the base64 payload of an image input."""
    return base64.b64decode(image.data)


def sniff_media_type(data: bytes) -> str | None:
    """Detect the media type of image bytes with Pillow.

    Returns:
        The media type, or None if the bytes are not a PNG or JPEG image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _FORMAT_MEDIA_TYPES.get(img.format)
    except (UnidentifiedImageError, OSError):
        return None


def validate_upload(data: bytes, declared_type: str | None) -> ImageResource:
    """Accept an uploaded image only if it is a real PNG or JPEG.

    Args:
        data: Raw image bytes
        declared_type: Media type claimed by the uploader

    Returns:
        The validated image resource

    Raises:
        ValidationError: If the declared type is unsupported or the bytes
            are not an image of that type
    """
    if declared_type == "image/jpg":
        declared_type = JPEG
    if declared_type not in SUPPORTED_MEDIA_TYPES:
        raise ValidationError(UPLOAD_ERROR)

    actual = sniff_media_type(data)
    if actual is None:
        raise ValidationError(UPLOAD_ERROR)
    if actual != declared_type:
        logger.debug(f"Declared {declared_type} but content is {actual}, using content type")

    return ImageResource(data=data, media_type=actual)


def decode_upload(payload: str, declared_type: str | None) -> ImageResource:
    """Validate a base64 upload (optionally a data: URL)."""
    if payload.startswith("data:") and "," in payload:
        header, payload = payload.split(",", 1)
        if declared_type is None:
            declared_type = header[5:].split(";", 1)[0]
    try:
        data = base64.b64decode(payload, validate=True)
    except ValueError:
        raise ValidationError(UPLOAD_ERROR)
    return validate_upload(data, declared_type)


def load_image(path: Path) -> ImageResource:
    """Load and validate an image file from disk."""
    declared_type, _ = mimetypes.guess_type(str(path))
    return validate_upload(path.read_bytes(), declared_type)


def to_png_bytes(data: bytes) -> bytes:
    """Re-encode image bytes as PNG for download.

    Raises:
        ValidationError: If the bytes cannot be decoded as an image
    """
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return data
    try:
        with Image.open(io.BytesIO(data)) as img:
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Generated image could not be decoded: {e}")


def download_filename(index: int, upscaled: bool = False) -> str:
    """Filename offered for downloading the result at a 0-based index."""
    suffix = "-upscaled" if upscaled else ""
    return f"{DOWNLOAD_BASENAME}-{index + 1}{suffix}.png"


class PreviewStore:
    """In-memory preview handles for selected images.

    A handle stays valid until revoked. Owners must revoke handles they
    replace, otherwise the image bytes stay alive for the process lifetime.
    """

    def __init__(self):
        self._previews: dict[str, ImageResource] = {}

    def create(self, resource: ImageResource) -> str:
        handle = uuid.uuid4().hex
        self._previews[handle] = resource
        return handle

    def get(self, handle: str) -> ImageResource | None:
        return self._previews.get(handle)

    def revoke(self, handle: str | None) -> None:
        if handle is not None:
            self._previews.pop(handle, None)

    def revoke_all(self) -> int:
        count = len(self._previews)
        self._previews.clear()
        return count

    def __contains__(self, handle: str) -> bool:
        return handle in self._previews

    def __len__(self) -> int:
        return len(self._previews)
