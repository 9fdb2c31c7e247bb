"""
Custom exception hierarchy for the DXtrade client.

Every error raised to callers carries a stable machine-readable ``code``
plus a human-readable message.

Hierarchy:

    DxtradeError (base, .code)
    ├── NoSessionError            — authenticated call before handshake
    ├── AuthenticationError
    │   ├── LoginError            — LOGIN_FAILED / LOGIN_ERROR
    │   ├── CsrfError             — CSRF_NOT_FOUND / CSRF_ERROR
    │   └── AccountSwitchError
    ├── TransportError            — transient network / stream failures
    │   ├── RateLimitError        — HTTP 429 on REST or stream, never retried
    │   ├── HandshakeError
    │   │   └── HandshakeTimeoutError
    │   ├── StreamError
    │   │   └── StreamTimeoutError
    │   └── RequestTimeoutError   — domain wait exceeded its budget
    ├── StreamRequiresConnectError
    ├── OrderError
    │   ├── OrderRejectedError
    │   └── OrderTimeoutError
    └── PositionError
        ├── PositionCloseError
        ├── PositionCloseTimeoutError
        └── PositionNotFoundError

Rules:
    - DxtradeError subclasses cross layers unchanged (never re-wrapped).
    - Anything else is converted at the domain-call boundary.
"""
from typing import Dict, Type


class ErrorCode:
    """Stable error codes."""
    NO_SESSION = "NO_SESSION"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_ERROR = "LOGIN_ERROR"
    CSRF_NOT_FOUND = "CSRF_NOT_FOUND"
    CSRF_ERROR = "CSRF_ERROR"
    ACCOUNT_SWITCH_ERROR = "ACCOUNT_SWITCH_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    WS_HANDSHAKE_ERROR = "WS_HANDSHAKE_ERROR"
    WS_HANDSHAKE_TIMEOUT = "WS_HANDSHAKE_TIMEOUT"
    WS_CONNECT_ERROR = "WS_CONNECT_ERROR"
    WS_MANAGER_ERROR = "WS_MANAGER_ERROR"
    WS_MANAGER_TIMEOUT = "WS_MANAGER_TIMEOUT"
    WS_CLOSED = "WS_CLOSED"
    STREAM_REQUIRES_CONNECT = "STREAM_REQUIRES_CONNECT"

    ORDER_ERROR = "ORDER_ERROR"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_TIMEOUT = "ORDER_TIMEOUT"
    ORDERS_ERROR = "ORDERS_ERROR"
    ORDERS_TIMEOUT = "ORDERS_TIMEOUT"
    CANCEL_ORDER_ERROR = "CANCEL_ORDER_ERROR"

    ACCOUNT_POSITIONS_ERROR = "ACCOUNT_POSITIONS_ERROR"
    ACCOUNT_POSITIONS_TIMEOUT = "ACCOUNT_POSITIONS_TIMEOUT"
    POSITION_METRICS_ERROR = "POSITION_METRICS_ERROR"
    POSITION_METRICS_TIMEOUT = "POSITION_METRICS_TIMEOUT"
    POSITION_CLOSE_ERROR = "POSITION_CLOSE_ERROR"
    POSITION_CLOSE_TIMEOUT = "POSITION_CLOSE_TIMEOUT"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"

    ACCOUNT_METRICS_ERROR = "ACCOUNT_METRICS_ERROR"
    ACCOUNT_METRICS_TIMEOUT = "ACCOUNT_METRICS_TIMEOUT"
    TRADE_HISTORY_ERROR = "TRADE_HISTORY_ERROR"
    TRADE_JOURNAL_ERROR = "TRADE_JOURNAL_ERROR"

    NO_SUGGESTIONS = "NO_SUGGESTIONS"
    SUGGEST_ERROR = "SUGGEST_ERROR"
    NO_SYMBOL_INFO = "NO_SYMBOL_INFO"
    SYMBOL_INFO_ERROR = "SYMBOL_INFO_ERROR"
    LIMITS_ERROR = "LIMITS_ERROR"
    LIMITS_TIMEOUT = "LIMITS_TIMEOUT"
    INSTRUMENTS_ERROR = "INSTRUMENTS_ERROR"
    INSTRUMENTS_TIMEOUT = "INSTRUMENTS_TIMEOUT"
    OHLC_ERROR = "OHLC_ERROR"
    OHLC_TIMEOUT = "OHLC_TIMEOUT"
    ASSESSMENTS_ERROR = "ASSESSMENTS_ERROR"


class DxtradeError(Exception):
    """Base exception for all client errors."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NoSessionError(DxtradeError):
    """Authenticated operation attempted before the handshake completed."""

    def __init__(self, message: str = "No active session. Call login() and fetch_csrf() or connect() first."):
        super().__init__(ErrorCode.NO_SESSION, message)


# ============ AUTHENTICATION ============

class AuthenticationError(DxtradeError):
    """Login, CSRF or account switch failure."""
    pass


class LoginError(AuthenticationError):
    pass


class CsrfError(AuthenticationError):
    pass


class AccountSwitchError(AuthenticationError):
    pass


# ============ TRANSPORT (network / stream) ============

class TransportError(DxtradeError):
    """Network or stream level failure."""
    pass


class RateLimitError(TransportError):
    """HTTP 429 detected on REST or on the stream.

    Never retried: retrying into a rate limit extends the block.
    """

    def __init__(self, message: str = "Rate limited (HTTP 429)"):
        super().__init__(ErrorCode.RATE_LIMITED, message)


class HandshakeError(TransportError):
    pass


class HandshakeTimeoutError(HandshakeError):
    pass


class StreamError(TransportError):
    pass


class StreamTimeoutError(StreamError):
    pass


class RequestTimeoutError(TransportError):
    """A domain-level wait on the stream exceeded its budget."""
    pass


class StreamRequiresConnectError(DxtradeError):
    """Streaming operation invoked without persistent-mode setup."""

    def __init__(self, message: str = "Streaming requires a persistent connection. Call connect() first."):
        super().__init__(ErrorCode.STREAM_REQUIRES_CONNECT, message)


# ============ ORDERS ============

class OrderError(DxtradeError):
    pass


class OrderRejectedError(OrderError):
    """Broker rejected the order; message carries the broker reason key."""
    pass


class OrderTimeoutError(OrderError):
    pass


# ============ POSITIONS ============

class PositionError(DxtradeError):
    pass


class PositionCloseError(PositionError):
    pass


class PositionCloseTimeoutError(PositionError):
    pass


class PositionNotFoundError(PositionError):
    pass


_CODE_CLASSES: Dict[str, Type[DxtradeError]] = {
    ErrorCode.LOGIN_FAILED: LoginError,
    ErrorCode.LOGIN_ERROR: LoginError,
    ErrorCode.CSRF_NOT_FOUND: CsrfError,
    ErrorCode.CSRF_ERROR: CsrfError,
    ErrorCode.ACCOUNT_SWITCH_ERROR: AccountSwitchError,
    ErrorCode.WS_HANDSHAKE_ERROR: HandshakeError,
    ErrorCode.WS_HANDSHAKE_TIMEOUT: HandshakeTimeoutError,
    ErrorCode.WS_CONNECT_ERROR: StreamError,
    ErrorCode.WS_MANAGER_ERROR: StreamError,
    ErrorCode.WS_MANAGER_TIMEOUT: StreamTimeoutError,
    ErrorCode.WS_CLOSED: StreamError,
    ErrorCode.ORDER_ERROR: OrderError,
    ErrorCode.ORDER_REJECTED: OrderRejectedError,
    ErrorCode.ORDER_TIMEOUT: OrderTimeoutError,
    ErrorCode.CANCEL_ORDER_ERROR: OrderError,
    ErrorCode.POSITION_CLOSE_ERROR: PositionCloseError,
    ErrorCode.POSITION_CLOSE_TIMEOUT: PositionCloseTimeoutError,
    ErrorCode.POSITION_NOT_FOUND: PositionNotFoundError,
}


def error_for(code: str, message: str) -> DxtradeError:
    """Build the most specific exception for an error code."""
    if code == ErrorCode.RATE_LIMITED:
        return RateLimitError(message)
    if code == ErrorCode.NO_SESSION:
        return NoSessionError(message)
    if code == ErrorCode.STREAM_REQUIRES_CONNECT:
        return StreamRequiresConnectError(message)

    cls = _CODE_CLASSES.get(code)
    if cls is None:
        cls = RequestTimeoutError if code.endswith("_TIMEOUT") else DxtradeError
    return cls(code, message)
