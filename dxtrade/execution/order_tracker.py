"""
Order lifecycle tracking.

A submitted order is confirmed asynchronously on the stream, in one of two
shapes that may both arrive for the same outcome:

- MESSAGE: a list of log entries; the last TRADE_LOG / ORDER entry that is
  not a history replay carries ``parametersTO.orderStatus``
- ORDERS: the first element carries ``orderId`` and ``status``

Both feed one future. FILLED resolves, REJECTED fails, anything else is
still pending. The first matching outcome wins; later ones are ignored.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional

from dxtrade.data.stream_manager import StreamManager
from dxtrade.domain.models import MessageCategory, MessageType, OrderStatus, OrderUpdate
from dxtrade.exceptions import DxtradeError, ErrorCode, OrderRejectedError, OrderTimeoutError
from dxtrade.monitoring.logger import get_logger

logger = get_logger(__name__)


def latest_order_entry(entries: Any) -> Optional[dict]:
    """Last live (non-history) ORDER entry of a trade-log batch."""
    if not isinstance(entries, list):
        return None
    for entry in reversed(entries):
        if (
            isinstance(entry, dict)
            and entry.get("messageCategory") == MessageCategory.TRADE_LOG
            and entry.get("messageType") == "ORDER"
            and not entry.get("historyMessage")
        ):
            return entry
    return None


class OrderListener:
    """Single-assignment settlement of one order outcome."""

    def __init__(self, position_code: Optional[str] = None):
        self.position_code = position_code
        self.manager: Optional[StreamManager] = None
        self._future: Optional[asyncio.Future] = None
        self._disposers: List[Callable[[], None]] = []

    def attach(self, manager: StreamManager) -> None:
        self.manager = manager
        self._future = asyncio.get_running_loop().create_future()
        self._disposers = [
            manager.subscribe(MessageType.MESSAGE, self.on_trade_log),
            manager.subscribe(MessageType.ORDERS, self.on_orders),
            manager.on_error(self._fail),
        ]

    def detach(self) -> None:
        disposers, self._disposers = self._disposers, []
        for dispose in disposers:
            dispose()

    @property
    def settled(self) -> bool:
        return self._future is not None and self._future.done()

    # ── Confirmation shapes ─────────────────────────────────────────────────

    def on_trade_log(self, body: Any) -> None:
        entry = latest_order_entry(body)
        if entry is None:
            return
        params = entry.get("parametersTO") or {}
        if not self._matches(params.get("positionCode")):
            return

        status = params.get("orderStatus")
        if status == OrderStatus.REJECTED:
            reason = (params.get("rejectReason") or {}).get("key") or "Unknown reason"
            self._reject(reason)
        elif status == OrderStatus.FILLED:
            self._resolve(OrderUpdate.from_trade_log(params))

    def on_orders(self, body: Any) -> None:
        if not isinstance(body, list) or not body or not isinstance(body[0], dict):
            return
        first = body[0]
        if not first.get("orderId"):
            return
        update = OrderUpdate.from_order(first)
        if not self._matches(update.position_code):
            return

        if update.status == OrderStatus.REJECTED:
            self._reject(update.status_description or "Unknown reason")
        elif update.status == OrderStatus.FILLED:
            self._resolve(update)

    def _matches(self, code: Optional[str]) -> bool:
        return self.position_code is None or code == self.position_code

    # ── Settlement ──────────────────────────────────────────────────────────

    def _resolve(self, update: OrderUpdate) -> None:
        if self.settled:
            logger.debug("Duplicate order confirmation ignored", order_id=update.order_id)
            return
        self._future.set_result(update)

    def _reject(self, reason: str) -> None:
        if self.settled:
            return
        self._future.set_exception(OrderRejectedError(ErrorCode.ORDER_REJECTED, f"Order rejected: {reason}"))

    def _fail(self, error: DxtradeError) -> None:
        if self.settled:
            return
        self._future.set_exception(error)

    async def wait(self, timeout: float) -> OrderUpdate:
        """Wait for the outcome; listeners are removed either way."""
        if self._future is None:
            raise RuntimeError("OrderListener.wait() called before attach()")
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            raise OrderTimeoutError(ErrorCode.ORDER_TIMEOUT, "Order update timed out") from None
        finally:
            self.detach()


@asynccontextmanager
async def order_listener(ctx, position_code: Optional[str] = None) -> AsyncIterator[OrderListener]:
    """
    Attach an OrderListener before anything is sent.

    Persistent mode registers on the shared manager; ephemeral mode opens a
    dedicated stream that is ready before the block runs.
    """
    listener = OrderListener(position_code=position_code)
    async with ctx.stream() as manager:
        listener.attach(manager)
        try:
            yield listener
        finally:
            listener.detach()
