"""
Shared fixtures for the attendance pipeline tests.
"""

import numpy as np
import pytest

from face_attendance.config import Config
from face_attendance.gallery import GalleryManager
from face_attendance.models import BoundingBox, Detection
from face_attendance.stores import InMemoryStore

FRAME = np.zeros((480, 640, 3), dtype=np.uint8)


def _descriptor(index=0, value=1.0, length=128):
    descriptor = np.zeros(length, dtype=np.float32)
    descriptor[index] = value
    return descriptor


def _detection(
    descriptor=None,
    width=200.0,
    height=200.0,
    score=1.0,
    has_landmarks=True,
    expressions=None,
    box=True,
):
    if expressions is None:
        expressions = {'neutral': 1.0, 'happy': 0.0}
    return Detection(
        descriptor=_descriptor() if descriptor is None else descriptor,
        box=BoundingBox(10.0, 10.0, width, height) if box else None,
        score=score,
        has_landmarks=has_landmarks,
        expressions=expressions,
    )


class FakeDetector:
    """Returns queued detection lists; repeats the last one when the queue runs out."""

    def __init__(self, *results):
        self.results = list(results) or [[]]
        self.calls = 0
        self.error = None

    def detect(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeCamera:
    def __init__(self, frame=FRAME):
        self.frame = frame
        self.released = False
        self.reads = 0

    def read(self):
        if self.released:
            return None
        self.reads += 1
        return self.frame

    def release(self):
        self.released = True


class ManualClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def make_config():
    def factory(**overrides):
        return Config(**overrides)
    return factory


@pytest.fixture
def descriptor():
    return _descriptor


@pytest.fixture
def make_detection():
    return _detection


@pytest.fixture
def frame():
    return FRAME.copy()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def gallery_manager(store, config):
    return GalleryManager(store, config)


@pytest.fixture
def fake_detector():
    return FakeDetector


@pytest.fixture
def fake_camera():
    return FakeCamera


@pytest.fixture
def clock():
    return ManualClock()
