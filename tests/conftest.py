"""
Pytest configuration and shared fixtures.

The client never touches the network in unit tests: REST calls go through
FakeTransport (scripted responses, recorded calls) and streams come from
FakeStreamOpener, which hands out FakeConnection objects whose frames are
pushed by the test.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from dxtrade.config.config import ClientConfig, TimeoutConfig
from dxtrade.data.framing import encode_frame
from dxtrade.data.transport import HttpError, HttpResponse
from dxtrade.domain.models import Envelope
from dxtrade.session.context import ClientCallbacks, ClientContext

BASE_URL = "https://dxtrade.ftmo.com"
CORRELATION_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"
ACCOUNT_ID = "ACC-1"


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


# ── REST ────────────────────────────────────────────────────────────────────


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: Dict[str, str]
    json_body: Any


class FakeTransport:
    """
    Scripted stand-in for RestTransport.

    Routes are matched in registration order on method and URL (exact match
    or substring). A route result is an HttpResponse, an exception to raise,
    or a callable receiving the RecordedCall. Passing a list makes the route
    answer with each entry in turn, repeating the last one.
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self.closed = False
        self._routes: List[list] = []

    def add(self, method: str, url_part: str, *results) -> "FakeTransport":
        self._routes.append([method, url_part, list(results)])
        return self

    async def request(self, method, url, headers=None, json_body=None) -> HttpResponse:
        call = RecordedCall(method, url, dict(headers or {}), json_body)
        self.calls.append(call)

        for route_method, url_part, results in self._routes:
            if route_method != method or not (url == url_part or url_part in url):
                continue
            result = results.pop(0) if len(results) > 1 else results[0]
            if callable(result) and not isinstance(result, BaseException):
                result = result(call)
            if isinstance(result, BaseException):
                raise result
            return result

        raise HttpError(f"No route for {method} {url}", status=404)

    def calls_to(self, method: str, url_part: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method and url_part in c.url]

    async def close(self) -> None:
        self.closed = True


# ── Stream ──────────────────────────────────────────────────────────────────

_END = object()


def frame(msg_type, body: Any, account_id: Optional[str] = ACCOUNT_ID) -> str:
    return encode_frame(Envelope(type=msg_type, account_id=account_id, body=body))


class FakeConnection:
    """Receive-only duplex connection fed from a queue."""

    def __init__(self, *frames: Any):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        for raw in frames:
            self.push(raw)

    def push(self, raw: Any) -> None:
        self._queue.put_nowait(raw)

    def push_envelope(self, msg_type, body: Any, account_id: Optional[str] = ACCOUNT_ID) -> None:
        self.push(frame(msg_type, body, account_id))

    def fail(self, error: BaseException) -> None:
        """The next read raises ``error``."""
        self._queue.put_nowait(error)

    def end(self) -> None:
        """The remote side closes after the frames queued so far."""
        self._queue.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class FakeStreamOpener:
    """Hands out queued FakeConnections (or fresh empty ones) and records every open."""

    def __init__(self):
        self.queued: List[FakeConnection] = []
        self.opened: List[FakeConnection] = []
        self.urls: List[str] = []
        self.headers: List[Dict[str, str]] = []
        self.error: Optional[BaseException] = None

    def queue(self, *connections: FakeConnection) -> None:
        self.queued.extend(connections)

    async def __call__(self, url: str, headers: Dict[str, str]) -> FakeConnection:
        self.urls.append(url)
        self.headers.append(dict(headers))
        if self.error is not None:
            raise self.error
        connection = self.queued.pop(0) if self.queued else FakeConnection()
        self.opened.append(connection)
        return connection


def handshake_connection(account_id: str = ACCOUNT_ID) -> FakeConnection:
    """The frames a gateway sends when a session goes live."""
    return FakeConnection(
        f"36|{CORRELATION_ID}|0|X|",
        "1|X",
        frame("ACCOUNT_METRICS", {"allMetrics": {}}, account_id=None),
        frame("POSITIONS", [], account_id=account_id),
    )


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        username="trader",
        password="secret",
        broker="FTMO",
        retries=1,
        timeouts=TimeoutConfig(
            handshake=1.0,
            stream=1.0,
            order=1.0,
            close=1.0,
            poll_interval=0.01,
            instruments_settle=0.05,
            limits_settle=0.05,
            ohlc_init_settle=0.05,
            ohlc_bar_settle=0.05,
        ),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def opener() -> FakeStreamOpener:
    return FakeStreamOpener()


@pytest.fixture
def callbacks() -> ClientCallbacks:
    return ClientCallbacks(
        on_error=MagicMock(),
        on_login=MagicMock(),
        on_account_switch=MagicMock(),
        on_order_placed=MagicMock(),
        on_order_update=MagicMock(),
    )


@pytest.fixture
def fresh_ctx(config, callbacks, transport, opener) -> ClientContext:
    """A context before any handshake."""
    return ClientContext(config, callbacks, transport=transport, stream_opener=opener)


@pytest.fixture
def ctx(fresh_ctx) -> ClientContext:
    """A context with a live session (ephemeral mode)."""
    fresh_ctx.session.cookies = {"session": "abc123"}
    fresh_ctx.session.csrf = "csrf-token"
    fresh_ctx.session.correlation_id = CORRELATION_ID
    fresh_ctx.session.account_id = ACCOUNT_ID
    return fresh_ctx


@pytest_asyncio.fixture
async def live(ctx, opener) -> FakeConnection:
    """Persistent mode: ``ctx.stream_manager`` reads from the returned connection."""
    connection = FakeConnection()
    opener.queue(connection)
    manager = ctx.new_stream_manager()
    await manager.connect(ctx.websocket_url(), ctx.stream_headers())
    ctx.stream_manager = manager
    yield connection
    await manager.close()


@pytest.fixture
def make_frame() -> Callable[..., str]:
    """Encode an envelope as a wire frame: ``make_frame("POSITIONS", [...])``."""
    return frame


@pytest.fixture
def stream_factory(opener) -> Callable[..., FakeConnection]:
    """Queue a connection for the next stream open, pre-loaded with frames."""

    def make(*frames: Any) -> FakeConnection:
        connection = FakeConnection(*frames)
        opener.queue(connection)
        return connection

    return make


@pytest.fixture
def handshake_factory(opener) -> Callable[..., FakeConnection]:
    """Queue a connection that goes live for ``account_id``."""

    def make(account_id: str = ACCOUNT_ID) -> FakeConnection:
        connection = handshake_connection(account_id)
        opener.queue(connection)
        return connection

    return make


@pytest.fixture
def responding() -> Callable[..., Callable[[RecordedCall], HttpResponse]]:
    """Route result that runs ``effect`` (e.g. pushes a confirmation) before answering."""

    def make(response: HttpResponse, effect: Callable[[RecordedCall], None]):
        def handler(call: RecordedCall) -> HttpResponse:
            effect(call)
            return response

        return handler

    return make
