"""Shared fixtures: synthetic images and a scriptable provider transport"""

import json
from io import BytesIO

import pytest
from PIL import Image


def make_image_bytes(size=(64, 48), color=(200, 120, 40), fmt="JPEG", mode="RGB"):
    img = Image.new(mode, size, color)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def captions_body(*texts, category="Lifestyle"):
    return json.dumps(
        {
            "captions": [
                {
                    "text": text,
                    "category": category,
                    "hashtags": ["sun"],
                    "emojis": [],
                    "viral_score": 7,
                }
                for text in texts
            ]
        }
    )


class ProviderHTTPError(Exception):
    """Stand-in for a provider SDK error carrying an HTTP status"""

    def __init__(self, status_code, message="provider error"):
        super().__init__(message)
        self.status_code = status_code


class FakeTransport:
    """Async transport returning scripted replies; exceptions in the script are raised"""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    async def __call__(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    @property
    def calls(self):
        return len(self.requests)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def image_bytes():
    return make_image_bytes()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
