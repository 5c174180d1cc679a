"""
Pytest configuration and fixtures for poster processor tests.
"""

import io
import json
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest
from PIL import Image

from poster_processor.config import Settings
from poster_processor.data_models import CalendarType, EventDetails
from poster_processor.google_session import GoogleSession
from poster_processor.normalizer import ResponseNormalizer


FIXED_NOW = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

VALID_MODEL_RESPONSE = json.dumps({
    "title": "Meetup",
    "startDate": "2024-12-15T09:00:00.000Z",
    "endDate": "2024-12-15T13:00:00.000Z",
    "location": "Hall A",
    "description": "desc",
    "calendar": "Nationaal",
})


class FakeResponse:
    """Stands in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, body: Any = ""):
        self.status = status
        self.body = body if isinstance(body, str) else json.dumps(body)

    async def text(self) -> str:
        return self.body

    async def json(self, content_type=None) -> Any:
        return json.loads(self.body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; replays queued responses in order."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url: str, **kwargs):
        return self.request('POST', url, **kwargs)

    def get(self, url: str, **kwargs):
        return self.request('GET', url, **kwargs)

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def normalizer(clock) -> ResponseNormalizer:
    return ResponseNormalizer(event_timezone="Europe/Amsterdam", clock=clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openrouter_api_key="test-openrouter-key",
        anthropic_api_key="",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_refresh_token="refresh-token",
        google_drive_folder_id="folder-123",
        google_calendar_nationaal="nat@group.calendar.google.com",
        google_calendar_internationaal="int@group.calendar.google.com",
        google_calendar_beurzen="beurs@group.calendar.google.com",
    )


@pytest.fixture
def sample_event() -> EventDetails:
    """Sample event for testing."""
    return EventDetails(
        title="Radio Velddag",
        startDate="2024-12-15T09:00:00.000Z",
        endDate="2024-12-15T13:00:00.000Z",
        location="Scoutinggebouw, Zeist",
        description="Jaarlijkse velddag van de afdeling",
        calendar=CalendarType.NATIONAAL,
        rawText="RADIO VELDDAG\n15 december\nZeist",
    )


def make_image_bytes(size=(800, 600), image_format='JPEG', mode='RGB') -> bytes:
    img = Image.new(mode, size, color='white')
    buffer = io.BytesIO()
    img.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def sample_image_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def sample_image_path(tmp_path, sample_image_bytes) -> str:
    """Create a sample image file for testing."""
    image_path = tmp_path / "test_poster.jpg"
    image_path.write_bytes(sample_image_bytes)
    return str(image_path)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def google(fake_session) -> GoogleSession:
    """GoogleSession with a cached access token, so no token exchange is queued."""
    session = GoogleSession("client-id", "client-secret", "refresh-token", session=fake_session)
    session._access_token = "cached-token"
    session._expires_at = time.time() + 3600
    return session
