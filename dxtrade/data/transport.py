"""
REST and duplex-stream transports.

Handles:
- REST calls over aiohttp (cookies are managed by the session context, not
  by aiohttp's jar)
- Stream connections over websockets (receive-only; the client never sends)
"""
import json
import ssl
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import aiohttp
import certifi
import websockets

from dxtrade.constants import DEFAULT_HTTP_TIMEOUT
from dxtrade.monitoring.logger import get_logger

logger = get_logger(__name__)

_ssl_context: Optional[ssl.SSLContext] = None


def _get_ssl_context() -> ssl.SSLContext:
    """Reusable SSL context with certifi certificates."""
    global _ssl_context
    if _ssl_context is None:
        _ssl_context = ssl.create_default_context(cafile=certifi.where())
    return _ssl_context


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    set_cookies: List[str] = field(default_factory=list)
    data: Any = None


class HttpError(Exception):
    """HTTP-level failure exposing the status code when one was received."""

    def __init__(self, message: str, status: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.status = status
        self.data = data

    @property
    def broker_message(self) -> Optional[str]:
        if isinstance(self.data, dict):
            msg = self.data.get("message")
            return str(msg) if msg else None
        return None


class StreamConnection(Protocol):
    """What the multiplexer needs from a duplex connection."""

    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def close(self) -> None: ...


StreamOpener = Callable[[str, Dict[str, str]], Awaitable[StreamConnection]]


class RestTransport:
    """
    Thin aiohttp wrapper returning HttpResponse.

    Raises HttpError for status >= 400 and for network failures.
    """

    def __init__(self, timeout: float = DEFAULT_HTTP_TIMEOUT):
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=_get_ssl_context())
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
    ) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(method, url, headers=headers, json=json_body) as response:
                text = await response.text()
                data: Any = text
                if text and "json" in (response.content_type or ""):
                    try:
                        data = json.loads(text)
                    except ValueError:
                        data = text

                if response.status >= 400:
                    raise HttpError(
                        f"Request failed with status code {response.status}",
                        status=response.status,
                        data=data,
                    )

                return HttpResponse(
                    status=response.status,
                    headers={k: v for k, v in response.headers.items()},
                    set_cookies=response.headers.getall("Set-Cookie", []),
                    data=data,
                )
        except aiohttp.ClientError as e:
            raise HttpError(f"{type(e).__name__}: {e}") from e

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None


async def open_stream(url: str, headers: Dict[str, str]) -> StreamConnection:
    """Open a websocket connection; resolves once the transport is open."""
    logger.debug("Opening stream", url=url.split("?", 1)[0])
    return await websockets.connect(
        url,
        additional_headers=headers,
        ssl=_get_ssl_context(),
        max_size=None,
        ping_interval=20,
        ping_timeout=20,
        close_timeout=5,
    )


def is_rate_limit_error(error: BaseException) -> bool:
    """Detect a 429 on a REST call."""
    if isinstance(error, HttpError):
        return error.status == 429
    return getattr(error, "status", None) == 429


def is_stream_rate_limit(error: BaseException) -> bool:
    """Stream errors only carry a message; a 429 anywhere in it counts."""
    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True
    return "429" in str(error)


def describe_error(error: BaseException) -> str:
    """Human-readable reason, preferring the broker's own message."""
    if isinstance(error, HttpError) and error.broker_message:
        return error.broker_message
    return str(error) or type(error).__name__
