"""
Asyncio client for DXtrade trading-platform gateways.

ARCHITECTURE:
    DxtradeClient (facade, one per account session)
        │
        └── ClientContext (cookies, CSRF, correlation id, transports)
                │
                ├── handshake: login → CSRF → stream handshake → [switch] → [connect]
                │
                ├── StreamManager (one multiplexed stream: cache, subscribe, wait_for)
                │
                ├── OrderListener (dual-shape order confirmation)
                │
                └── services: positions, orders, account, symbols,
                              instruments, ohlc, assessments
"""

from dxtrade.client import DxtradeClient
from dxtrade.config.config import ClientConfig, TimeoutConfig, load_config
from dxtrade.constants import BROKER
from dxtrade.data.stream_manager import StreamManager
from dxtrade.domain.models import (
    AssessmentsParams,
    CloseConfirmation,
    MessageType,
    OHLCParams,
    OrderStatus,
    OrderType,
    OrderUpdate,
    PositionEffect,
    ProtectionParams,
    Side,
    SubmitOrderParams,
    TimeInForce,
)
from dxtrade.exceptions import (
    DxtradeError,
    ErrorCode,
    NoSessionError,
    OrderRejectedError,
    RateLimitError,
    StreamRequiresConnectError,
)
from dxtrade.session.context import ClientCallbacks

__all__ = [
    "BROKER",
    "AssessmentsParams",
    "ClientCallbacks",
    "ClientConfig",
    "CloseConfirmation",
    "DxtradeClient",
    "DxtradeError",
    "ErrorCode",
    "MessageType",
    "NoSessionError",
    "OHLCParams",
    "OrderRejectedError",
    "OrderStatus",
    "OrderType",
    "OrderUpdate",
    "PositionEffect",
    "ProtectionParams",
    "RateLimitError",
    "Side",
    "StreamManager",
    "StreamRequiresConnectError",
    "SubmitOrderParams",
    "TimeInForce",
    "TimeoutConfig",
    "load_config",
]
