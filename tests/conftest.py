"""Shared test fixtures for all test modules."""

import asyncio
import io
import sys
import tempfile
from pathlib import Path

import pytest
from PIL import Image

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import BatchConfig, ProgressConfig, Settings
from errors import RemoteError
from image_codec import ImageResource, decode_image_input


def make_image_bytes(color: str = "red", fmt: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    """Encode a small solid-color image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_resource(color: str = "red", fmt: str = "PNG") -> ImageResource:
    """Build an image resource of the given format."""
    media_type = "image/png" if fmt == "PNG" else "image/jpeg"
    return ImageResource(data=make_image_bytes(color, fmt), media_type=media_type)


class FakeRemoteClient:
    """In-process stand-in for the remote generation service.

    Args:
        image: Bytes returned by generate()
        enhanced: Bytes returned by enhance()
        fail_when: Predicate(base, reference, instruction) selecting calls to fail
        delay: Seconds each call takes (a callable receives the instruction)
    """

    def __init__(self, image=None, enhanced=None, fail_when=None, delay=0.0):
        self.image = image or make_image_bytes("blue")
        self.enhanced = enhanced or make_image_bytes("green", size=(16, 16))
        self.fail_when = fail_when
        self.delay = delay
        self.enhance_error: Exception | None = None
        self.calls: list[dict] = []
        self.enhance_calls: list[bytes] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _wait(self, key) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delay(key) if callable(self.delay) else self.delay
            await asyncio.sleep(delay)
        finally:
            self.in_flight -= 1

    async def generate(self, base, reference, instruction, variation=False):
        call = {
            "base": decode_image_input(base),
            "reference": decode_image_input(reference) if reference is not None else None,
            "instruction": instruction,
            "variation": variation,
        }
        self.calls.append(call)
        await self._wait(instruction)
        if self.fail_when and self.fail_when(call["base"], call["reference"], instruction):
            raise RemoteError("refused", "The AI could not generate an image. Reason: refused")
        return self.image

    async def enhance(self, image):
        self.enhance_calls.append(decode_image_input(image))
        await self._wait(None)
        if self.enhance_error is not None:
            raise self.enhance_error
        return self.enhanced


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def png_bytes():
    """A small PNG image."""
    return make_image_bytes("red", "PNG")


@pytest.fixture
def jpeg_bytes():
    """A small JPEG image."""
    return make_image_bytes("red", "JPEG")


@pytest.fixture
def model_a():
    """A PNG model photo."""
    return make_resource("red", "PNG")


@pytest.fixture
def model_b():
    """A JPEG model photo."""
    return make_resource("yellow", "JPEG")


@pytest.fixture
def outfit_image():
    """A PNG outfit photo."""
    return make_resource("purple", "PNG")


@pytest.fixture
def fake_client():
    """A remote client that always succeeds."""
    return FakeRemoteClient()


@pytest.fixture
def fast_settings():
    """Settings with a fast progress ticker."""
    return Settings(
        progress=ProgressConfig(interval_ms=5, seconds_per_job=0.05),
        batch=BatchConfig(),
    )
