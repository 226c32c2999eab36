"""Pytest configuration and fixtures."""

from io import BytesIO
from typing import AsyncGenerator, Generator

import pytest
from PIL import Image

from image_gateway.api.models import TransformRequest
from image_gateway.core.cache import CacheService, LRUCache
from image_gateway.core.engine import ImageEngine
from image_gateway.core.transform import ImageTransformer

SOURCE_URL = "https://img.example.com/photos/cat.png"

SVG_SOURCE = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
    b'<rect width="10" height="10" fill="red"/></svg>'
)


def encode(image: Image.Image, fmt: str = "PNG") -> bytes:
    """Encode an image to bytes."""
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
async def cache_service() -> AsyncGenerator[CacheService, None]:
    """Create cache service backed by a small in-memory LRU cache."""
    service = CacheService(LRUCache(max_size_mb=1, ttl_seconds=60))
    yield service


@pytest.fixture
def image_transformer() -> ImageTransformer:
    """Create image transformer instance."""
    return ImageTransformer()


@pytest.fixture
def engine() -> Generator[ImageEngine, None, None]:
    """Create a running image engine."""
    image_engine = ImageEngine(concurrency=2)
    image_engine.startup()
    yield image_engine
    if image_engine.running:
        image_engine.shutdown()


@pytest.fixture
def base_request() -> TransformRequest:
    """Transform request with every parameter at its default."""
    return TransformRequest(url=SOURCE_URL)


@pytest.fixture
def sample_image() -> Image.Image:
    """Create a gradient test image."""
    img = Image.new("RGB", (400, 300), color=(255, 255, 255))

    pixels = img.load()
    if pixels is not None:
        for i in range(img.size[0]):
            for j in range(img.size[1]):
                pixels[i, j] = (
                    int(255 * i / img.size[0]),
                    int(255 * j / img.size[1]),
                    128,
                )

    return img


@pytest.fixture
def sample_png(sample_image: Image.Image) -> bytes:
    """Gradient test image encoded as PNG."""
    return encode(sample_image)


@pytest.fixture
def quadrant_image() -> Image.Image:
    """
    2x2 image with a distinct color per pixel.

    Layout:  red   green
             blue  white
    """
    img = Image.new("RGB", (2, 2))
    img.putpixel((0, 0), (255, 0, 0))
    img.putpixel((1, 0), (0, 255, 0))
    img.putpixel((0, 1), (0, 0, 255))
    img.putpixel((1, 1), (255, 255, 255))
    return img
