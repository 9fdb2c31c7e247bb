"""
Per-client session context.

One ClientContext is owned by one DxtradeClient and passed explicitly to
every service function. It holds the session (cookies, CSRF token, stream
correlation id, account id), the transports, and the persistent stream
manager once connect() has run.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, NoReturn, Optional

from dxtrade.config.config import ClientConfig
from dxtrade.constants import endpoints, resolve_broker_url
from dxtrade.data.stream_manager import StreamManager
from dxtrade.data.transport import HttpResponse, RestTransport, StreamOpener, open_stream
from dxtrade.exceptions import DxtradeError, NoSessionError, error_for
from dxtrade.monitoring.logger import get_logger
from dxtrade.monitoring.stream_debug import DebugFilter
from dxtrade.utils.cookies import merge_cookies, parse_cookies, serialize_cookies
from dxtrade.utils.headers import auth_headers, base_headers, cookie_only_headers

logger = get_logger(__name__)


@dataclass
class ClientCallbacks:
    """Optional observability hooks."""
    on_error: Optional[Callable[[DxtradeError], None]] = None
    on_login: Optional[Callable[[], None]] = None
    on_account_switch: Optional[Callable[[str], None]] = None
    on_order_placed: Optional[Callable[[Any], None]] = None
    on_order_update: Optional[Callable[[Any], None]] = None


@dataclass
class Session:
    cookies: Dict[str, str] = field(default_factory=dict)
    csrf: Optional[str] = None
    correlation_id: Optional[str] = None
    account_id: Optional[str] = None

    def clear(self) -> None:
        self.cookies = {}
        self.csrf = None
        self.correlation_id = None
        self.account_id = None


class ClientContext:
    """Explicit, injectable state shared by the handshake and all services."""

    def __init__(
        self,
        config: ClientConfig,
        callbacks: Optional[ClientCallbacks] = None,
        transport: Optional[RestTransport] = None,
        stream_opener: Optional[StreamOpener] = None,
    ):
        self.config = config
        self.callbacks = callbacks or ClientCallbacks()
        self.transport = transport or RestTransport(timeout=config.timeouts.request)
        self.stream_opener = stream_opener or open_stream
        self.session = Session()
        self.base_url = resolve_broker_url(config.broker, config.broker_urls)
        self.retries = config.retries
        self.debug = DebugFilter.parse(config.debug)
        self.stream_manager: Optional[StreamManager] = None

    # ── Session guards ──────────────────────────────────────────────────────

    @property
    def cookies(self) -> Dict[str, str]:
        return self.session.cookies

    @property
    def csrf(self) -> Optional[str]:
        return self.session.csrf

    @property
    def account_id(self) -> Optional[str]:
        """The live session account, falling back to the configured one."""
        return self.session.account_id or self.config.account_id

    def ensure_session(self) -> None:
        if not self.session.csrf:
            error = NoSessionError()
            self.report(error)
            raise error

    def throw_error(self, code: str, message: str) -> NoReturn:
        """Raise the error for ``code``, notifying on_error first."""
        error = error_for(code, message)
        self.report(error)
        raise error

    def report(self, error: DxtradeError) -> None:
        self.emit("on_error", error)

    def emit(self, name: str, *args: Any) -> None:
        """Invoke an optional callback; callback failures are logged, never raised."""
        callback = getattr(self.callbacks, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Client callback failed", callback=name)

    # ── Cookies / headers ───────────────────────────────────────────────────

    @property
    def cookie_header(self) -> str:
        return serialize_cookies(self.session.cookies)

    def absorb_cookies(self, response: HttpResponse) -> None:
        incoming = parse_cookies(response.set_cookies)
        if incoming:
            self.session.cookies = merge_cookies(self.session.cookies, incoming)

    def auth_headers(self) -> Dict[str, str]:
        self.ensure_session()
        return auth_headers(self.session.csrf, self.cookie_header)

    def base_headers(self) -> Dict[str, str]:
        return {**base_headers(), "Cookie": self.cookie_header}

    def stream_headers(self) -> Dict[str, str]:
        return cookie_only_headers(self.cookie_header)

    # ── Streams ─────────────────────────────────────────────────────────────

    def websocket_url(self) -> str:
        return endpoints.websocket(self.base_url, self.session.correlation_id)

    def new_stream_manager(self) -> StreamManager:
        return StreamManager(debug=self.debug, opener=self.stream_opener)

    @asynccontextmanager
    async def ephemeral_stream(self) -> AsyncIterator[StreamManager]:
        """A fresh single-purpose stream, always closed on exit."""
        manager = self.new_stream_manager()
        try:
            await manager.connect(self.websocket_url(), self.stream_headers())
            yield manager
        finally:
            await manager.close()

    @asynccontextmanager
    async def stream(self) -> AsyncIterator[StreamManager]:
        """The persistent manager when connected, otherwise an ephemeral stream."""
        if self.stream_manager is not None:
            yield self.stream_manager
            return
        async with self.ephemeral_stream() as manager:
            yield manager
