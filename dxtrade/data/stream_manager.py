"""
Stream multiplexer.

Owns one duplex connection and turns it into many logical channels:

- a last-value cache keyed by envelope type
- durable per-type subscriptions (fan-out in subscription order)
- one-shot waits ("next or cached value of type T") with timeouts

The gateway only pushes; request-style calls are synthesized by waiting for
the next push of the right type. All state is touched from the event loop
only (reader task, subscribe/unsubscribe), so no locking is needed.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

from dxtrade.constants import DEFAULT_STREAM_TIMEOUT
from dxtrade.data.framing import parse_frame
from dxtrade.data.transport import StreamConnection, StreamOpener, is_stream_rate_limit, open_stream
from dxtrade.domain.models import Envelope
from dxtrade.exceptions import (
    DxtradeError,
    ErrorCode,
    RateLimitError,
    StreamError,
    StreamTimeoutError,
)
from dxtrade.monitoring.logger import get_logger
from dxtrade.monitoring.stream_debug import DebugFilter

logger = get_logger(__name__)

Callback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


def classify_stream_error(error: BaseException, code: str = ErrorCode.WS_MANAGER_ERROR) -> DxtradeError:
    """Map a transport failure to RateLimitError (429) or StreamError."""
    if isinstance(error, DxtradeError):
        return error
    if is_stream_rate_limit(error):
        return RateLimitError(f"Rate limited on stream: {error}")
    return StreamError(code, f"Stream error: {error}")


class StreamManager:
    """
    Multiplexes one persistent stream connection.

    Usage:
        manager = StreamManager(debug=DebugFilter.parse("POSITIONS"))
        await manager.connect(url, {"Cookie": cookie_str})
        positions = await manager.wait_for(MessageType.POSITIONS)
        unsubscribe = manager.subscribe(MessageType.ORDERS, on_orders)
        ...
        await manager.close()
    """

    def __init__(self, debug: Optional[DebugFilter] = None, opener: Optional[StreamOpener] = None):
        self._debug = debug or DebugFilter()
        self._opener = opener or open_stream
        self._connection: Optional[StreamConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._closed = False
        self._cache: Dict[str, Any] = {}
        self._subscribers: Dict[str, List[Callback]] = {}
        self._envelope_subscribers: List[Callback] = []
        self._error_subscribers: List[Callable[[DxtradeError], None]] = []
        self._pending: Set[asyncio.Future] = set()

    # ── Connection ──────────────────────────────────────────────────────────

    async def connect(self, url: str, headers: Dict[str, str]) -> None:
        """Open the connection and start routing frames."""
        if self._connection is not None:
            raise StreamError(ErrorCode.WS_CONNECT_ERROR, "Stream already connected")

        try:
            connection = await self._opener(url, headers)
        except Exception as e:
            if is_stream_rate_limit(e):
                raise RateLimitError(f"Rate limited opening stream: {e}") from e
            raise

        self._connection = connection
        self._closed = False
        self._reader = asyncio.get_running_loop().create_task(self._read_loop(connection))
        logger.debug("Stream manager connected")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._closed

    async def close(self) -> None:
        """
        Close the connection, clear the cache and drop all subscribers. Idempotent.

        Pending waits and error subscribers receive WS_CLOSED.
        """
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        was_open = not self._closed
        self._closed = True

        closed = StreamError(ErrorCode.WS_CLOSED, "Stream closed")
        if was_open:
            self._broadcast_error(closed)
        else:
            self._fail_pending(closed)

        self._cache.clear()
        self._subscribers.clear()
        self._envelope_subscribers.clear()
        self._error_subscribers.clear()

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug("Error while closing stream", error=str(e))

    async def _read_loop(self, connection: StreamConnection) -> None:
        try:
            async for raw in connection:
                self.handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closed:
                return
            logger.warning("Stream connection error", error=str(e), error_type=type(e).__name__)
            self._connection = None
            self._closed = True
            self._broadcast_error(classify_stream_error(e))
            return

        if not self._closed:
            logger.info("Stream closed by remote")
            self._connection = None
            self._closed = True
            self._broadcast_error(StreamError(ErrorCode.WS_CLOSED, "Stream closed by remote"))

    def _broadcast_error(self, error: DxtradeError) -> None:
        self._fail_pending(error)
        for callback in list(self._error_subscribers):
            self._safe_call(callback, error, "error")

    # ── Inbound routing ─────────────────────────────────────────────────────

    def handle_frame(self, raw: Any) -> None:
        """Decode one frame; cache and fan out envelopes, drop everything else."""
        msg = parse_frame(raw)
        self._debug.log(msg)
        if isinstance(msg, str):
            return
        self.dispatch(msg)

    def dispatch(self, envelope: Envelope) -> None:
        key = str(envelope.type)
        self._cache[key] = envelope.body

        for callback in list(self._envelope_subscribers):
            self._safe_call(callback, envelope, key)
        for callback in list(self._subscribers.get(key, ())):
            self._safe_call(callback, envelope.body, key)

    @staticmethod
    def _safe_call(callback: Callable, arg: Any, key: str) -> None:
        try:
            callback(arg)
        except Exception:
            logger.exception("Stream subscriber failed", type=key)

    # ── Subscriptions ───────────────────────────────────────────────────────

    def subscribe(self, msg_type, callback: Callback) -> Unsubscribe:
        """Register a durable listener for an envelope type; returns a disposer."""
        key = str(msg_type)
        self._subscribers.setdefault(key, []).append(callback)
        return lambda: self.unsubscribe(key, callback)

    def unsubscribe(self, msg_type, callback: Callback) -> None:
        key = str(msg_type)
        callbacks = self._subscribers.get(key)
        if not callbacks:
            return
        try:
            callbacks.remove(callback)
        except ValueError:
            return
        if not callbacks:
            del self._subscribers[key]

    def on_envelope(self, callback: Callable[[Envelope], None]) -> Unsubscribe:
        """Register a listener for every envelope regardless of type."""
        self._envelope_subscribers.append(callback)

        def dispose() -> None:
            if callback in self._envelope_subscribers:
                self._envelope_subscribers.remove(callback)

        return dispose

    def on_error(self, callback: Callable[[DxtradeError], None]) -> Unsubscribe:
        self._error_subscribers.append(callback)

        def dispose() -> None:
            if callback in self._error_subscribers:
                self._error_subscribers.remove(callback)

        return dispose

    def listener_count(self, msg_type) -> int:
        return len(self._subscribers.get(str(msg_type), ()))

    # ── Cache ───────────────────────────────────────────────────────────────

    def get_cached(self, msg_type) -> Optional[Any]:
        return self._cache.get(str(msg_type))

    async def wait_for(self, msg_type, timeout: float = DEFAULT_STREAM_TIMEOUT) -> Any:
        """
        Return the cached body for a type, or the next one to arrive.

        Raises StreamTimeoutError after ``timeout`` seconds; the one-shot
        listener is removed either way.
        """
        key = str(msg_type)
        if key in self._cache:
            return self._cache[key]

        if self._closed:
            raise StreamError(ErrorCode.WS_CLOSED, "Stream closed")

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_message(body: Any) -> None:
            if not future.done():
                future.set_result(body)

        self.subscribe(key, on_message)
        self._pending.add(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise StreamTimeoutError(
                ErrorCode.WS_MANAGER_TIMEOUT,
                f"Timed out waiting for {key}",
            ) from None
        finally:
            self._pending.discard(future)
            self.unsubscribe(key, on_message)

    def _fail_pending(self, error: DxtradeError) -> None:
        for future in list(self._pending):
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
