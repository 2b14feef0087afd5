"""
Pytest fixtures for testing.
"""

import io
import os

import numpy as np
import pytest
from PIL import Image

# Set test environment variables before importing the package
os.environ["LOG_LEVEL"] = "ERROR"
os.environ["LOG_FORMAT"] = "text"

from catsdogs.model_loader import InferenceSession, ModelLoader


class FakeSession(InferenceSession):
    """In-memory session returning a fixed probability."""

    framework = "fake"

    def __init__(self, probability=0.9, error=None):
        self.probability = probability
        self.error = error
        self.calls = []
        self.closed = False

    def run(self, tensor):
        self.calls.append(tensor)
        if self.error is not None:
            raise self.error
        return np.array([[self.probability]], dtype=np.float32)

    def close(self):
        self.closed = True


def encode_image(image, fmt="JPEG"):
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_loader(tmp_path):
    """
    Factory for loaded ModelLoaders backed by a FakeSession.

    Returns:
        Callable taking the same arguments as FakeSession
    """
    def _make(probability=0.9, error=None):
        loader = ModelLoader(model_dir=tmp_path, model_format="savedmodel")
        loader.session = FakeSession(probability, error)
        return loader
    return _make


@pytest.fixture
def sample_image():
    """
    Fixture providing a sample RGB image.

    Returns:
        PIL.Image: Sample 320x240 RGB image
    """
    return Image.new("RGB", (320, 240), color=(73, 109, 137))


@pytest.fixture
def sample_image_bytes(sample_image):
    """Sample image encoded as JPEG bytes."""
    return encode_image(sample_image)


@pytest.fixture
def image_file(tmp_path, sample_image):
    """Sample image written to a JPEG file."""
    path = tmp_path / "pet.jpg"
    sample_image.save(path, format="JPEG")
    return path
