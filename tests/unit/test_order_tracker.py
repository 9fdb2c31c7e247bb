"""
Order confirmation arrives in two shapes (trade-log MESSAGE and ORDERS);
the listener must settle exactly once on whichever comes first.
"""
import pytest

from dxtrade.data.stream_manager import StreamManager
from dxtrade.domain.models import Envelope, MessageType
from dxtrade.exceptions import ErrorCode, OrderRejectedError, OrderTimeoutError, StreamError
from dxtrade.execution.order_tracker import OrderListener, latest_order_entry, order_listener


def _trade_log(status, order_key=101, position_code="P1", history=False, reject_key=None):
    params = {
        "orderKey": order_key,
        "orderStatus": status,
        "symbol": "EURUSD",
        "filledQuantity": 1000,
        "filledPrice": 1.0845,
        "positionCode": position_code,
    }
    if reject_key:
        params["rejectReason"] = {"key": reject_key}
    return [
        {"messageCategory": "NOTIFICATION", "messageType": "INFO"},
        {
            "messageCategory": "TRADE_LOG",
            "messageType": "ORDER",
            "historyMessage": history,
            "parametersTO": params,
        },
    ]


def _orders(status, order_id=202, position_code="P1", description=None):
    return [
        {
            "orderId": order_id,
            "status": status,
            "statusDescription": description,
            "legs": [{"instrument": "EURUSD", "positionCode": position_code, "averagePrice": 1.0846}],
        }
    ]


def _push(manager, msg_type, body):
    manager.dispatch(Envelope(type=msg_type, account_id="ACC-1", body=body))


def _attached(position_code=None):
    manager = StreamManager()
    listener = OrderListener(position_code=position_code)
    listener.attach(manager)
    return manager, listener


def test_latest_order_entry_skips_history_and_other_categories():
    entries = _trade_log("FILLED", order_key=1) + _trade_log("WORKING", order_key=2, history=True)

    entry = latest_order_entry(entries)

    assert entry["parametersTO"]["orderKey"] == 1
    assert latest_order_entry({"not": "a list"}) is None
    assert latest_order_entry([{"messageCategory": "NOTIFICATION"}]) is None


class TestSettlement:
    @pytest.mark.asyncio
    async def test_trade_log_fill_resolves(self):
        manager, listener = _attached()

        _push(manager, MessageType.MESSAGE, _trade_log("FILLED"))
        update = await listener.wait(1.0)

        assert update.order_id == 101
        assert update.status == "FILLED"
        assert update.symbol == "EURUSD"
        assert update.filled_price == 1.0845

    @pytest.mark.asyncio
    async def test_orders_fill_resolves(self):
        manager, listener = _attached()

        _push(manager, MessageType.ORDERS, _orders("FILLED"))
        update = await listener.wait(1.0)

        assert update.order_id == 202
        assert update.symbol == "EURUSD"
        assert update.position_code == "P1"

    @pytest.mark.asyncio
    async def test_settles_exactly_once_when_both_shapes_arrive(self):
        manager, listener = _attached()

        _push(manager, MessageType.MESSAGE, _trade_log("FILLED", order_key=1))
        _push(manager, MessageType.ORDERS, _orders("FILLED", order_id=2))
        _push(manager, MessageType.ORDERS, _orders("REJECTED", order_id=3, description="late"))
        update = await listener.wait(1.0)

        assert update.order_id == 1

    @pytest.mark.asyncio
    async def test_intermediate_statuses_keep_waiting(self):
        manager, listener = _attached()

        _push(manager, MessageType.ORDERS, _orders("PLACED"))
        _push(manager, MessageType.MESSAGE, _trade_log("WORKING"))
        assert not listener.settled

        _push(manager, MessageType.ORDERS, _orders("FILLED"))
        assert (await listener.wait(1.0)).status == "FILLED"

    @pytest.mark.asyncio
    async def test_history_replay_is_ignored(self):
        manager, listener = _attached()

        _push(manager, MessageType.MESSAGE, _trade_log("FILLED", history=True))

        assert not listener.settled
        listener.detach()


class TestRejection:
    @pytest.mark.asyncio
    async def test_trade_log_rejection_carries_reason_key(self):
        manager, listener = _attached()

        _push(manager, MessageType.MESSAGE, _trade_log("REJECTED", reject_key="INSUFFICIENT_MARGIN"))

        with pytest.raises(OrderRejectedError) as exc_info:
            await listener.wait(1.0)
        assert exc_info.value.code == ErrorCode.ORDER_REJECTED
        assert exc_info.value.message == "Order rejected: INSUFFICIENT_MARGIN"

    @pytest.mark.asyncio
    async def test_trade_log_rejection_without_reason(self):
        manager, listener = _attached()

        _push(manager, MessageType.MESSAGE, _trade_log("REJECTED"))

        with pytest.raises(OrderRejectedError, match="Unknown reason"):
            await listener.wait(1.0)

    @pytest.mark.asyncio
    async def test_orders_rejection_uses_status_description(self):
        manager, listener = _attached()

        _push(manager, MessageType.ORDERS, _orders("REJECTED", description="Market closed"))

        with pytest.raises(OrderRejectedError, match="Market closed"):
            await listener.wait(1.0)


class TestPositionFilter:
    @pytest.mark.asyncio
    async def test_only_matching_position_settles(self):
        manager, listener = _attached(position_code="P1")

        _push(manager, MessageType.ORDERS, _orders("FILLED", order_id=9, position_code="P2"))
        _push(manager, MessageType.MESSAGE, _trade_log("REJECTED", position_code="P2", reject_key="X"))
        assert not listener.settled

        _push(manager, MessageType.MESSAGE, _trade_log("FILLED", order_key=10, position_code="P1"))
        assert (await listener.wait(1.0)).order_id == 10


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_timeout_detaches_listeners(self):
        manager, listener = _attached()

        with pytest.raises(OrderTimeoutError) as exc_info:
            await listener.wait(0.01)

        assert exc_info.value.code == ErrorCode.ORDER_TIMEOUT
        assert manager.listener_count(MessageType.MESSAGE) == 0
        assert manager.listener_count(MessageType.ORDERS) == 0

    @pytest.mark.asyncio
    async def test_settlement_detaches_listeners(self):
        manager, listener = _attached()
        _push(manager, MessageType.ORDERS, _orders("FILLED"))

        await listener.wait(1.0)

        assert manager.listener_count(MessageType.ORDERS) == 0

    @pytest.mark.asyncio
    async def test_stream_failure_fails_the_wait(self, opener, stream_factory):
        connection = stream_factory()
        manager = StreamManager(opener=opener)
        await manager.connect("wss://example.test", {})
        listener = OrderListener()
        listener.attach(manager)

        connection.end()

        with pytest.raises(StreamError) as exc_info:
            await listener.wait(1.0)
        assert exc_info.value.code == ErrorCode.WS_CLOSED

    @pytest.mark.asyncio
    async def test_wait_before_attach_is_a_bug(self):
        with pytest.raises(RuntimeError):
            await OrderListener().wait(0.01)


class TestOrderListenerContext:
    @pytest.mark.asyncio
    async def test_uses_persistent_manager_when_connected(self, ctx, live, opener):
        async with order_listener(ctx) as listener:
            assert listener.manager is ctx.stream_manager
            assert ctx.stream_manager.listener_count(MessageType.ORDERS) == 1

        assert ctx.stream_manager.listener_count(MessageType.ORDERS) == 0
        assert len(opener.opened) == 1

    @pytest.mark.asyncio
    async def test_opens_and_closes_ephemeral_stream(self, ctx, opener):
        async with order_listener(ctx) as listener:
            assert listener.manager.is_connected
            connection = opener.opened[0]
            assert not connection.closed

        assert connection.closed
