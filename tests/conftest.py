"""
Pytest configuration and fixtures for MediaRelay test suite.

The source and destination are faked with httpx.MockTransport: FakeSource
serves HEAD and ranged GET, FakeDestination implements the resumable
upload protocol and records every request it receives.
"""

import re
from typing import Callable, Dict, Iterable, List, Optional

import httpx
import pytest
import pytest_asyncio

from app.core.retry import RetryConfig
from app.services.credentials import StaticTokenSupplier


SOURCE_URL = "https://media.test/videos/clip.mp4"
UPLOAD_URL = "https://upload.test/upload/youtube/v3/videos"
SESSION_URL = "https://upload.test/upload/youtube/v3/videos?upload_id=session-1"

_RANGE_RE = re.compile(r"bytes=(\d+)-(\d+)")
_CONTENT_RANGE_RE = re.compile(r"bytes (?:(\d+)-(\d+)|\*)/(\d+)")


def make_payload(size: int) -> bytes:
    """Deterministic, non-repeating-per-chunk test content."""
    block = bytes(range(251))
    return (block * (size // len(block) + 1))[:size]


class FakeSource:
    """HTTP source serving one asset with HEAD and Range support."""

    def __init__(
        self,
        data: bytes,
        content_type: Optional[str] = "video/mp4",
        omit_headers: Iterable[str] = (),
        honor_range: bool = True
    ):
        self.data = data
        self.content_type = content_type
        self.omit_headers = set(omit_headers)
        self.honor_range = honor_range
        self.heads = 0
        self.ranges: List[str] = []
        self.scripted: List[Callable] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            self.heads += 1
            headers = {}
            if "Content-Length" not in self.omit_headers:
                headers["Content-Length"] = str(len(self.data))
            if self.content_type and "Content-Type" not in self.omit_headers:
                headers["Content-Type"] = self.content_type
            return httpx.Response(200, headers=headers)

        range_header = request.headers.get("Range")
        self.ranges.append(range_header)
        if self.scripted:
            result = self.scripted.pop(0)(self, request)
            if result is not None:
                return result

        if not self.honor_range or not range_header:
            return httpx.Response(200, content=self.data)
        match = _RANGE_RE.fullmatch(range_header)
        start, end = int(match.group(1)), int(match.group(2))
        return httpx.Response(
            206,
            content=self.data[start:end + 1],
            headers={"Content-Range": f"bytes {start}-{end}/{len(self.data)}"}
        )


class FakeDestination:
    """Resumable upload endpoint that stores bytes in order."""

    def __init__(self, total_size: int, asset_id: str = "dQw4w9WgXcQ"):
        self.total_size = total_size
        self.asset_id = asset_id
        self.received = bytearray()
        self.posts: List[httpx.Request] = []
        self.content_ranges: List[str] = []
        self.authorizations: List[str] = []
        self.offset_violations: List[str] = []
        self.scripted: List[Callable] = []
        self.session_status = 200
        self.session_headers: Dict[str, str] = {"Location": SESSION_URL}

    @property
    def puts(self) -> int:
        return len(self.content_ranges)

    def script(self, *actions: Callable) -> None:
        """Queue behaviours for the next PUT requests, one per request."""
        self.scripted.extend(actions)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.posts.append(request)
            return httpx.Response(self.session_status, headers=self.session_headers, text="session")

        content_range = request.headers["Content-Range"]
        self.content_ranges.append(content_range)
        self.authorizations.append(request.headers.get("Authorization"))
        body = request.read()

        if self.scripted:
            result = self.scripted.pop(0)(self, request, body)
            if result is not None:
                return result

        match = _CONTENT_RANGE_RE.fullmatch(content_range)
        if match.group(1) is not None:
            start = int(match.group(1))
            if start != len(self.received):
                self.offset_violations.append(content_range)
                return httpx.Response(400, text="offset mismatch")
            self.received.extend(body)
        return self.status_response()

    def status_response(self) -> httpx.Response:
        if len(self.received) == self.total_size:
            return httpx.Response(201, json={"kind": "youtube#video", "id": self.asset_id})
        headers = {}
        if self.received:
            headers["Range"] = f"bytes=0-{len(self.received) - 1}"
        return httpx.Response(308, headers=headers)


def respond(status: int, headers: Optional[Dict[str, str]] = None, text: str = "error") -> Callable:
    """Scripted action: answer with a fixed status, storing nothing."""
    def action(dest, request, body):
        return httpx.Response(status, headers=headers or {}, text=text)
    return action


def drop_connection() -> Callable:
    """Scripted action: the connection breaks before anything is stored."""
    def action(dest, request, body):
        raise httpx.ReadError("connection reset by peer", request=request)
    return action


def keep_until_then_drop(offset: int) -> Callable:
    """Scripted action: store bytes up to offset, then break the connection."""
    def action(dest, request, body):
        dest.received.extend(body[:offset - len(dest.received)])
        raise httpx.ReadError("connection reset by peer", request=request)
    return action


def make_client(*routes) -> httpx.AsyncClient:
    """Build a client that dispatches by host: routes are (host, handler) pairs."""
    table = dict(routes)

    def handler(request: httpx.Request) -> httpx.Response:
        return table[request.url.host](request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def fast_retry():
    """Retry configuration without waiting."""
    return RetryConfig(max_attempts=5, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def token_supplier():
    return StaticTokenSupplier("test-access-token")


@pytest.fixture
def small_granularity(monkeypatch):
    """Allow chunk sizes in multiples of 1000 bytes."""
    from app.core.config import settings
    monkeypatch.setattr(settings, "chunk_granularity", 1000)
    return 1000


@pytest_asyncio.fixture
async def transport_factory():
    """Create mock-transport clients and close them after the test."""
    clients: List[httpx.AsyncClient] = []

    def factory(
        source: Optional[FakeSource] = None,
        destination: Optional[FakeDestination] = None,
        extra_routes: Optional[Dict[str, Callable]] = None
    ):
        routes = list((extra_routes or {}).items())
        if source is not None:
            routes.append(("media.test", source.handle))
        if destination is not None:
            routes.append(("upload.test", destination.handle))
        client = make_client(*routes)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
