"""
Domain models for the DXtrade client.

Enums mirror the broker's wire vocabulary; values are sent and received
verbatim. Broker payloads (positions, orders, instruments, bars) stay plain
dicts with the broker's camelCase keys; only the shapes the client itself
produces or correlates on are modelled here.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class _WireEnum(str, Enum):
    def __str__(self) -> str:
        return self.value


class OrderType(_WireEnum):
    """Order type."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"


class Side(_WireEnum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"


class PositionEffect(_WireEnum):
    """Whether an order opens or closes a position."""
    OPENING = "OPENING"
    CLOSING = "CLOSING"


class TimeInForce(_WireEnum):
    GTC = "GTC"
    DAY = "DAY"
    GTD = "GTD"


class OrderStatus(_WireEnum):
    """Terminal and intermediate order statuses seen on the stream."""
    PLACED = "PLACED"
    WORKING = "WORKING"
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class MessageType(_WireEnum):
    """Envelope types carried on the duplex stream."""
    POSITIONS = "POSITIONS"
    POSITION_METRICS = "POSITION_METRICS"
    ORDERS = "ORDERS"
    ACCOUNT_METRICS = "ACCOUNT_METRICS"
    INSTRUMENTS = "INSTRUMENTS"
    LIMITS = "LIMITS"
    MESSAGE = "MESSAGE"  # trade log / notifications
    CHART_FEED_SUBTOPIC = "chartFeedSubtopic"


class ChartSubtopic(_WireEnum):
    BIG_CHART_COMPONENT = "BigChartComponentPresenter-4"
    OHLC_STREAM = "OHLCStreamPresenter-0"


class MessageCategory(_WireEnum):
    TRADE_LOG = "TRADE_LOG"
    NOTIFICATION = "NOTIFICATION"


class CloseConfirmation(_WireEnum):
    """How position close confirmation is awaited."""
    STREAM = "stream"
    POLL = "poll"


@dataclass(frozen=True)
class Envelope:
    """
    Decoded unit of the duplex stream.

    ``type`` is always a MessageType; frames with any other type never
    become envelopes.
    """
    type: MessageType
    account_id: Optional[str]
    body: Any


@dataclass
class OrderUpdate:
    """Normalized order confirmation (from either confirmation shape)."""
    order_id: Any
    status: str
    symbol: Optional[str] = None
    filled_quantity: Any = None
    filled_price: Any = None
    position_code: Optional[str] = None
    status_description: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_trade_log(cls, params: Dict[str, Any]) -> "OrderUpdate":
        return cls(
            order_id=params.get("orderKey"),
            status=params.get("orderStatus"),
            symbol=params.get("symbol"),
            filled_quantity=params.get("filledQuantity"),
            filled_price=params.get("filledPrice"),
            position_code=params.get("positionCode"),
            raw=dict(params),
        )

    @classmethod
    def from_order(cls, body: Dict[str, Any]) -> "OrderUpdate":
        legs = body.get("legs") or []
        first_leg = legs[0] if legs and isinstance(legs[0], dict) else {}
        return cls(
            order_id=body.get("orderId"),
            status=body.get("status"),
            symbol=body.get("symbol") or body.get("instrument") or first_leg.get("instrument"),
            filled_quantity=body.get("filledQuantity", first_leg.get("filledQuantity")),
            filled_price=body.get("filledPrice", first_leg.get("averagePrice")),
            position_code=body.get("positionCode") or first_leg.get("positionCode"),
            status_description=body.get("statusDescription"),
            raw=dict(body),
        )


@dataclass
class ProtectionParams:
    """Stop loss / take profit attached to an order, by price or offset."""
    price: Optional[float] = None
    offset: Optional[float] = None


@dataclass
class SubmitOrderParams:
    symbol: str
    side: Side
    quantity: float
    order_type: OrderType
    order_code: Optional[str] = None
    price: Optional[float] = None
    instrument_id: Optional[int] = None
    position_effect: PositionEffect = PositionEffect.OPENING
    position_code: Optional[str] = None
    tif: TimeInForce = TimeInForce.GTC
    expire_date: Optional[str] = None
    stop_loss: Optional[ProtectionParams] = None
    take_profit: Optional[ProtectionParams] = None
    metadata: Optional[Dict[str, str]] = None


@dataclass
class OHLCParams:
    symbol: str
    resolution: int = 60  # seconds per bar
    range: int = 432_000  # lookback window in seconds
    max_bars: int = 3500
    price_field: str = "bid"


@dataclass
class AssessmentsParams:
    start: int  # Unix ms
    end: int  # Unix ms
    instrument: str
    subtype: Optional[str] = None


# Metric fields joined onto positions; absent metrics default to zero.
POSITION_METRIC_FIELDS: List[str] = [
    "margin",
    "plOpen",
    "plClosed",
    "totalCommissions",
    "totalFinancing",
    "plRate",
    "averagePrice",
    "marketValue",
]
