"""
Shared pytest fixtures for the Tabletop Companion test suite.

Every test runs against the in-memory store and blob store; the Gemini
client is always a canned mock, never the network.
"""

import io
import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from PIL import Image

from agents.tools.gemini_tool import GeminiClient
from tools.store import MemoryBlobStore, MemoryStore


# ---------------------------------------------------------------------------
# Gemini Mock Helpers (reusable classes)
# ---------------------------------------------------------------------------

class MockGeminiResponse:
    """Simulates a Gemini response with .text property."""

    def __init__(self, text: str):
        self.text = text


class MockGeneratedImage:
    """Simulates one entry of generate_images(): .image.image_bytes."""

    def __init__(self, image_bytes: bytes):
        self.image = MagicMock()
        self.image.image_bytes = image_bytes


class MockImagesResponse:
    def __init__(self, image_bytes: bytes):
        self.generated_images = [MockGeneratedImage(image_bytes)]


class MockGeminiClient:
    """Mock Gemini client that returns canned text and image responses.

    Usage:
        client = MockGeminiClient(['{"name": "Elara"}'], images=[b"png"])
        resp = await client.aio.models.generate_content(model=..., contents=...)
        assert resp.text == '{"name": "Elara"}'

    A response that is an Exception instance is raised instead of returned.
    Every call's keyword arguments are kept in `calls`.
    """

    def __init__(self, responses=None, images=None):
        self._responses = list(responses or [])
        self._images = list(images or [])
        self._call_count = 0
        self._image_count = 0
        self.calls = []

    @property
    def aio(self):
        return self

    @property
    def models(self):
        return self

    @property
    def call_count(self):
        return self._call_count + self._image_count

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self._call_count < len(self._responses):
            resp = self._responses[self._call_count]
        else:
            resp = '{"error": "no more canned responses"}'
        self._call_count += 1
        if isinstance(resp, Exception):
            raise resp
        if isinstance(resp, (dict, list)):
            resp = json.dumps(resp)
        if isinstance(resp, str):
            return MockGeminiResponse(resp)
        # Allow passing pre-built response objects
        return resp

    async def generate_images(self, **kwargs):
        self.calls.append(kwargs)
        if self._image_count < len(self._images):
            image = self._images[self._image_count]
        else:
            image = b"\x89PNG fallback"
        self._image_count += 1
        if isinstance(image, Exception):
            raise image
        return MockImagesResponse(image)


def make_image(width: int = 64, height: int = 32, fmt: str = "PNG") -> bytes:
    """Encode a blank image with Pillow."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (40, 90, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


SAMPLE_SHEET = {
    "name": "Elara",
    "race": "Elf",
    "class": "Wizard",
    "age": 112,
    "level": 1,
    "experience": {"current": 0, "nextLevel": 300},
    "health": {"current": 10, "max": 10},
    "stamina": {"current": 100, "max": 100},
    "resource": {"name": "Mana", "current": 20, "max": 20},
    "stats": {"strength": 8, "intelligence": 17, "charisma": 12},
    "skills": [{"name": "Arcane Bolt", "description": "1d8 force damage, costs 2 mana."}],
    "personalityTraits": ["Curious", "Proud"],
    "fears": "Being forgotten.",
    "backstory": "A scholar who left the library to see the world.",
    "inventory": [{"name": "Spellbook", "quantity": 1}],
}


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def mock_gemini_limiter():
    """AsyncMock for the generation quota — patches acquire() as a no-op."""
    limiter = MagicMock()
    limiter.acquire = AsyncMock()
    with patch("agents.tools.gemini_tool.gemini_quota", limiter):
        yield limiter


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def make_gemini():
    """Factory: GeminiClient wired to a MockGeminiClient.

    Usage:
        gemini, mock = make_gemini(['{"name": "Elara"}'], images=[png])
    """

    def factory(responses=None, images=None):
        mock = MockGeminiClient(responses, images)
        return GeminiClient(client=mock), mock

    return factory


@pytest.fixture
def sample_sheet():
    return json.loads(json.dumps(SAMPLE_SHEET))


@pytest.fixture
def png_bytes():
    return make_image(64, 32, "PNG")


@pytest.fixture
def jpeg_bytes():
    return make_image(160, 90, "JPEG")
