"""Shared fixtures: a throwaway database and a scripted HTTP transport."""
from dataclasses import dataclass
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.config import settings
from app.db.database import Base
from app.services.http_transport import HttpTransport


class _FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = "", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


class TransportFailure:
    """Queued entry that raises instead of answering."""

    def __init__(self, error: Exception, after_body: bool = True):
        self.error = error
        self.after_body = after_body


@dataclass
class _Call:
    method: str
    url: str
    kwargs: Dict[str, Any]

    @property
    def data(self):
        return self.kwargs.get("data") or {}

    @property
    def json(self):
        return self.kwargs.get("json")

    @property
    def headers(self):
        return self.kwargs.get("headers") or {}


class FakeTransport(HttpTransport):
    """Replays queued responses in order and records every request."""

    def __init__(self, *responses):
        super().__init__()
        self.responses: List[Any] = list(responses)
        self.calls: List[_Call] = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def calls_to(self, fragment: str) -> List[_Call]:
        return [call for call in self.calls if fragment in call.url]

    async def request(self, method: str, url: str, **kwargs):
        if not self.responses:
            raise AssertionError(f"Unexpected {method} {url}")
        response = self.responses.pop(0)

        if isinstance(response, TransportFailure) and not response.after_body:
            self.calls.append(_Call(method, url, kwargs))
            raise response.error

        content = kwargs.get("content")
        if content is not None and hasattr(content, "__aiter__"):
            kwargs["content"] = b"".join([chunk async for chunk in content])
        self.calls.append(_Call(method, url, kwargs))

        if isinstance(response, TransportFailure):
            raise response.error
        if callable(response):
            return await response(method, url, kwargs)
        return response


@pytest.fixture
def fake_response():
    return _FakeResponse


@pytest.fixture
def transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def oauth_settings(monkeypatch):
    """Credentials for every platform plus instant TikTok polling."""
    values = {
        "tiktok_client_key": "tt-key",
        "tiktok_client_secret": "tt-secret",
        "tiktok_redirect_uri": "http://localhost:5173/oauth/tiktok/callback",
        "youtube_client_id": "yt-client",
        "youtube_client_secret": "yt-secret",
        "youtube_redirect_uri": "http://localhost:5173/oauth/youtube/callback",
        "facebook_app_id": "fb-app",
        "facebook_app_secret": "fb-secret",
        "facebook_redirect_uri": "http://localhost:5173/oauth/facebook/callback",
    }
    for name, value in values.items():
        monkeypatch.setattr(settings, name, value)
    return settings


@pytest.fixture
def make_video(tmp_path):
    def _make(size: int, name: str = "clip.mp4"):
        path = tmp_path / name
        path.write_bytes(bytes(i % 251 for i in range(size)) if size < 65536 else b"\x01" * size)
        return path
    return _make


@pytest.fixture
def no_sleep():
    calls = []

    async def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep
