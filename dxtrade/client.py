"""
DxtradeClient: the public entry point.

Owns one ClientContext and exposes the domain services grouped by area:

    async with DxtradeClient(load_config()) as client:     # connect()
        positions = await client.positions.get()
        await client.orders.submit(SubmitOrderParams(...))

Use ``await client.auth()`` instead of connect() for ephemeral mode (a fresh
stream per call, no streaming subscriptions).
"""
from typing import Any, Callable, Dict, List, Optional, Union

from dxtrade.config.config import ClientConfig
from dxtrade.data.stream_manager import StreamManager
from dxtrade.data.transport import RestTransport, StreamOpener
from dxtrade.domain.models import AssessmentsParams, CloseConfirmation, OHLCParams, OrderUpdate, SubmitOrderParams
from dxtrade.execution import position_tracker
from dxtrade.services import account, assessments, instruments, ohlc, orders, positions, symbols
from dxtrade.session import handshake
from dxtrade.session.context import ClientCallbacks, ClientContext


class _Domain:
    def __init__(self, ctx: ClientContext):
        self._ctx = ctx


class PositionsDomain(_Domain):
    async def get(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Open positions with metrics merged in."""
        return await positions.get_positions(self._ctx, timeout)

    async def metrics(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        return await positions.get_position_metrics(self._ctx, timeout)

    def stream(self, callback: Callable[[List[Dict[str, Any]]], None]) -> Callable[[], None]:
        return positions.stream_positions(self._ctx, callback)

    async def close(self, order: Dict[str, Any]) -> Any:
        return await positions.close_position(self._ctx, order)

    async def close_by_code(
        self,
        code: str,
        wait_for_close: Optional[Union[CloseConfirmation, str]] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Dict[str, Any]:
        return await position_tracker.close_position_by_code(
            self._ctx, code, wait_for_close=wait_for_close, timeout=timeout, poll_interval=poll_interval
        )

    async def close_all(self) -> List[str]:
        return await position_tracker.close_all_positions(self._ctx)


class OrdersDomain(_Domain):
    async def submit(self, params: SubmitOrderParams, timeout: Optional[float] = None) -> OrderUpdate:
        return await orders.submit_order(self._ctx, params, timeout)

    async def get(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        return await orders.get_orders(self._ctx, timeout)

    async def cancel(self, order_chain_id: Any) -> None:
        await orders.cancel_order(self._ctx, order_chain_id)

    async def cancel_all(self) -> List[Any]:
        return await orders.cancel_all_orders(self._ctx)


class AccountDomain(_Domain):
    async def metrics(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await account.get_account_metrics(self._ctx, timeout)

    async def trade_history(self, start: int, end: int) -> List[Dict[str, Any]]:
        return await account.get_trade_history(self._ctx, start, end)

    async def trade_journal(self, start: int, end: int) -> Any:
        return await account.get_trade_journal(self._ctx, start, end)


class SymbolsDomain(_Domain):
    async def search(self, text: str) -> List[Dict[str, Any]]:
        return await symbols.get_symbol_suggestions(self._ctx, text)

    async def info(self, symbol: str) -> Dict[str, Any]:
        return await symbols.get_symbol_info(self._ctx, symbol)

    async def limits(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        return await symbols.get_symbol_limits(self._ctx, timeout)


class InstrumentsDomain(_Domain):
    async def get(self, timeout: Optional[float] = None, **filters: Any) -> List[Dict[str, Any]]:
        return await instruments.get_instruments(self._ctx, timeout, **filters)


class OHLCDomain(_Domain):
    async def get(self, params: OHLCParams, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        return await ohlc.get_ohlc(self._ctx, params, timeout)

    async def stream(
        self,
        params: OHLCParams,
        callback: Callable[[List[Dict[str, Any]]], None],
        timeout: Optional[float] = None,
    ) -> Callable[[], None]:
        return await ohlc.stream_ohlc(self._ctx, params, callback, timeout)


class AssessmentsDomain(_Domain):
    async def get(self, params: AssessmentsParams) -> Any:
        return await assessments.get_assessments(self._ctx, params)


class DxtradeClient:
    """Client for one broker account session."""

    def __init__(
        self,
        config: ClientConfig,
        callbacks: Optional[ClientCallbacks] = None,
        transport: Optional[RestTransport] = None,
        stream_opener: Optional[StreamOpener] = None,
    ):
        self._ctx = ClientContext(config, callbacks, transport=transport, stream_opener=stream_opener)
        self.positions = PositionsDomain(self._ctx)
        self.orders = OrdersDomain(self._ctx)
        self.account = AccountDomain(self._ctx)
        self.symbols = SymbolsDomain(self._ctx)
        self.instruments = InstrumentsDomain(self._ctx)
        self.ohlc = OHLCDomain(self._ctx)
        self.assessments = AssessmentsDomain(self._ctx)

    @property
    def context(self) -> ClientContext:
        return self._ctx

    @property
    def stream_manager(self) -> Optional[StreamManager]:
        return self._ctx.stream_manager

    @property
    def account_id(self) -> Optional[str]:
        return self._ctx.account_id

    # ── Session ─────────────────────────────────────────────────────────────

    async def login(self) -> None:
        await handshake.login(self._ctx)

    async def fetch_csrf(self) -> None:
        await handshake.fetch_csrf(self._ctx)

    async def switch_account(self, account_id: str) -> None:
        await handshake.switch_account(self._ctx, account_id)

    async def auth(self) -> None:
        """Ephemeral mode: session only, each call opens its own stream."""
        await handshake.auth(self._ctx)

    async def connect(self) -> None:
        """Persistent mode: session plus one shared multiplexed stream."""
        await handshake.connect(self._ctx)

    async def disconnect(self) -> None:
        await handshake.disconnect(self._ctx)

    async def close(self) -> None:
        """Disconnect and release the HTTP session."""
        await self.disconnect()
        await self._ctx.transport.close()

    async def __aenter__(self) -> "DxtradeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
