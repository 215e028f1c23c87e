import io

import pytest
import requests
from PIL import Image

from deksmo.log import set_verbosity
from deksmo.model import ChapterImage, SourceHandle


@pytest.fixture(autouse=True)
def quiet_logging():
    set_verbosity(False, False)
    yield
    set_verbosity(False, False)


def encode_image(width, height, fmt="JPEG", color=(200, 30, 30), mode="RGB"):
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    img.save(out, fmt)
    return out.getvalue()


@pytest.fixture
def make_image():
    return encode_image


@pytest.fixture
def image_from_bytes():
    def build(name, data, mime=None):
        return ChapterImage(name=name, source=SourceHandle.from_bytes(data, mime))

    return build


class FakeClock:
    """Monotonic clock whose ``sleep`` only moves time forward."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeResponse:
    def __init__(self, content=b"", status_code=200, headers=None):
        self.content = content
        self.status_code = status_code
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    """Stands in for requests.Session: maps URL -> bytes, anything else fails."""

    def __init__(self, pages=None, headers=None):
        self.pages = dict(pages or {})
        self.headers = headers or {}
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        if url not in self.pages:
            raise requests.exceptions.ConnectionError(f"cannot reach {url}")
        return FakeResponse(self.pages[url], headers=self.headers)


@pytest.fixture
def fake_session():
    return FakeSession
