"""
Order payloads, submission with stream confirmation, listing and cancellation.
"""
import asyncio

import pytest

from dxtrade.data.transport import HttpError, HttpResponse
from dxtrade.domain.models import (
    MessageType,
    OrderType,
    PositionEffect,
    ProtectionParams,
    Side,
    SubmitOrderParams,
)
from dxtrade.exceptions import (
    ErrorCode,
    OrderError,
    OrderRejectedError,
    OrderTimeoutError,
    RateLimitError,
    StreamError,
)
from dxtrade.services import orders
from dxtrade.session import handshake

BASE_URL = "https://dxtrade.ftmo.com"
SUBMIT_URL = "/api/orders/single"
INFO_URL = "/api/instruments/info"


def _params(**overrides) -> SubmitOrderParams:
    values = dict(symbol="EURUSD", side=Side.BUY, quantity=0.01, order_type=OrderType.MARKET)
    values.update(overrides)
    return SubmitOrderParams(**values)


class TestPayload:
    def test_market_buy(self):
        payload = orders.build_order_payload(_params(order_code="my-order-1"), lot_size=100000)

        assert payload["quantity"] == 1000
        assert payload["orderSide"] == "BUY"
        assert payload["orderType"] == "MARKET"
        assert payload["requestId"] == "my-order-1"
        assert payload["timeInForce"] == "GTC"
        assert payload["directExchange"] is False
        assert payload["legs"] == [{"positionEffect": "OPENING", "ratioQuantity": 1, "symbol": "EURUSD"}]
        assert "limitPrice" not in payload
        assert "stopPrice" not in payload

    def test_sell_quantity_is_negative(self):
        payload = orders.build_order_payload(_params(side=Side.SELL, quantity=0.015), lot_size=100000)

        assert payload["quantity"] == -1500

    def test_generated_request_id(self):
        payload = orders.build_order_payload(_params(), lot_size=1)

        assert payload["requestId"].startswith("gwt-uid-931-")

    @pytest.mark.parametrize("value,expected", [(0.5, 1), (1.5, 2), (2.5, 3), (2.4999, 2)])
    def test_round_half_up(self, value, expected):
        assert orders.round_half_up(value) == expected

    def test_limit_and_stop_prices(self):
        limit = orders.build_order_payload(_params(order_type=OrderType.LIMIT, price=1.08), lot_size=1)
        stop = orders.build_order_payload(_params(order_type=OrderType.STOP, price=1.09), lot_size=1)
        market = orders.build_order_payload(_params(price=1.1), lot_size=1)

        assert limit["limitPrice"] == 1.08
        assert stop["stopPrice"] == 1.09
        assert "limitPrice" not in stop
        assert "limitPrice" not in market

    def test_closing_leg_and_extras(self):
        payload = orders.build_order_payload(
            _params(
                position_effect=PositionEffect.CLOSING,
                position_code="P1",
                instrument_id=3438,
                expire_date="2026-12-31",
                metadata={"strategy": "breakout"},
            ),
            lot_size=100000,
        )

        assert payload["legs"][0] == {
            "instrumentId": 3438,
            "positionCode": "P1",
            "positionEffect": "CLOSING",
            "ratioQuantity": 1,
            "symbol": "EURUSD",
        }
        assert payload["expireDate"] == "2026-12-31"
        assert payload["metadata"] == {"strategy": "breakout"}

    def test_protection_blocks(self):
        payload = orders.build_order_payload(
            _params(
                side=Side.SELL,
                stop_loss=ProtectionParams(price=1.1),
                take_profit=ProtectionParams(offset=50),
            ),
            lot_size=100000,
        )

        assert payload["stopLoss"] == {
            "fixedPrice": 1.1,
            "priceFixed": True,
            "orderChainId": 0,
            "orderId": 0,
            "orderType": "STOP",
            "quantityForProtection": -1000,
            "removed": False,
        }
        assert payload["takeProfit"]["fixedOffset"] == 50
        assert payload["takeProfit"]["priceFixed"] is False
        assert payload["takeProfit"]["orderType"] == "LIMIT"


class TestSubmit:
    @pytest.mark.asyncio
    async def test_waits_for_fill(self, ctx, live, transport, responding, make_frame, callbacks):
        manager = ctx.stream_manager
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"symbol": "EURUSD", "lotSize": 100000}))

        def fill(call):
            manager.handle_frame(make_frame("MESSAGE", [
                {
                    "messageCategory": "TRADE_LOG",
                    "messageType": "ORDER",
                    "historyMessage": False,
                    "parametersTO": {
                        "orderKey": 77,
                        "orderStatus": "FILLED",
                        "symbol": "EURUSD",
                        "filledQuantity": call.json_body["quantity"],
                        "filledPrice": 1.0845,
                    },
                }
            ]))

        transport.add("POST", SUBMIT_URL, responding(HttpResponse(status=200, data={"orderId": 77}), fill))

        update = await orders.submit_order(ctx, _params())

        assert update.order_id == 77
        assert update.filled_quantity == 1000
        submit = transport.calls_to("POST", SUBMIT_URL)[0]
        assert submit.headers["X-CSRF-Token"] == "csrf-token"
        assert submit.json_body["quantity"] == 1000
        callbacks.on_order_placed.assert_called_once_with({"orderId": 77})
        callbacks.on_order_update.assert_called_once_with(update)
        assert manager.listener_count(MessageType.MESSAGE) == 0

    @pytest.mark.asyncio
    async def test_rejection(self, ctx, live, transport, responding, make_frame, callbacks):
        manager = ctx.stream_manager
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"lotSize": 1}))

        def reject(_call):
            manager.handle_frame(make_frame("ORDERS", [
                {"orderId": 78, "status": "REJECTED", "statusDescription": "Not enough margin"},
            ]))

        transport.add("POST", SUBMIT_URL, responding(HttpResponse(status=200), reject))

        with pytest.raises(OrderRejectedError) as exc_info:
            await orders.submit_order(ctx, _params())

        assert exc_info.value.message == "Order rejected: Not enough margin"
        callbacks.on_error.assert_called_once_with(exc_info.value)
        callbacks.on_order_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout(self, ctx, live, transport):
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"lotSize": 1}))
        transport.add("POST", SUBMIT_URL, HttpResponse(status=200))

        with pytest.raises(OrderTimeoutError) as exc_info:
            await orders.submit_order(ctx, _params(), timeout=0.05)

        assert exc_info.value.code == ErrorCode.ORDER_TIMEOUT

    @pytest.mark.asyncio
    async def test_rest_failure(self, ctx, live, transport):
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"lotSize": 1}))
        transport.add("POST", SUBMIT_URL, HttpError("Bad Request", status=400, data={"message": "Invalid quantity"}))

        with pytest.raises(OrderError) as exc_info:
            await orders.submit_order(ctx, _params())

        assert exc_info.value.code == ErrorCode.ORDER_ERROR
        assert exc_info.value.message == "Error submitting order: Invalid quantity"
        assert ctx.stream_manager.listener_count(MessageType.ORDERS) == 0

    @pytest.mark.asyncio
    async def test_ephemeral_listener_is_ready_before_submit(self, ctx, opener, transport, responding, make_frame):
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"lotSize": 1}))

        def fill(_call):
            opener.opened[-1].push(make_frame("ORDERS", [{"orderId": 5, "status": "FILLED"}]))

        transport.add("POST", SUBMIT_URL, responding(HttpResponse(status=200), fill))

        update = await orders.submit_order(ctx, _params())

        assert update.order_id == 5
        assert opener.opened[-1].closed

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_submit(self, ctx, live, transport, callbacks):
        transport.add("GET", INFO_URL, HttpResponse(status=200, data={"lotSize": 1}))
        transport.add("POST", SUBMIT_URL, HttpResponse(status=200))

        pending = asyncio.ensure_future(orders.submit_order(ctx, _params(), timeout=5.0))
        for _ in range(100):
            if transport.calls_to("POST", SUBMIT_URL):
                break
            await asyncio.sleep(0)
        await handshake.disconnect(ctx)

        with pytest.raises(StreamError) as exc_info:
            await asyncio.wait_for(pending, 1.0)

        assert exc_info.value.code == ErrorCode.WS_CLOSED
        callbacks.on_error.assert_called_once_with(exc_info.value)


class TestOrdersAndCancel:
    @pytest.mark.asyncio
    async def test_get_orders(self, ctx, stream_factory, make_frame):
        stream_factory(make_frame("ORDERS", [{"orderId": 1}]))

        assert await orders.get_orders(ctx) == [{"orderId": 1}]

    @pytest.mark.asyncio
    async def test_cancel_order_url_and_method(self, ctx, transport):
        transport.add("DELETE", "/api/orders/cancel", HttpResponse(status=200))

        await orders.cancel_order(ctx, 123)

        call = transport.calls[0]
        assert call.method == "DELETE"
        assert call.url == f"{BASE_URL}/api/orders/cancel?accountId=ACC-1&orderChainId=123"
        assert call.headers["X-CSRF-Token"] == "csrf-token"

    @pytest.mark.asyncio
    async def test_cancel_falls_back_to_configured_account(self, ctx, transport):
        ctx.session.account_id = None
        ctx.config.account_id = "ACC-CFG"
        transport.add("DELETE", "/api/orders/cancel", HttpResponse(status=200))

        await orders.cancel_order(ctx, 9)

        assert "accountId=ACC-CFG" in transport.calls[0].url

    @pytest.mark.asyncio
    async def test_cancel_without_account(self, ctx, transport):
        ctx.session.account_id = None

        with pytest.raises(OrderError) as exc_info:
            await orders.cancel_order(ctx, 123)

        assert exc_info.value.code == ErrorCode.CANCEL_ORDER_ERROR
        assert exc_info.value.message == "accountId is required to cancel an order"
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_cancel_failure(self, ctx, transport):
        transport.add("DELETE", "/api/orders/cancel", HttpError("Not Found", status=404))

        with pytest.raises(OrderError, match="Cancel order error"):
            await orders.cancel_order(ctx, 123)

    @pytest.mark.asyncio
    async def test_cancel_rate_limit_is_reported(self, ctx, transport, callbacks):
        transport.add("DELETE", "/api/orders/cancel", HttpError("Too Many Requests", status=429))

        with pytest.raises(RateLimitError) as exc_info:
            await orders.cancel_order(ctx, 123)

        callbacks.on_error.assert_called_once_with(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancel_all_skips_final_orders(self, ctx, live, transport):
        ctx.stream_manager.handle_frame(
            '{"accountId": "ACC-1", "type": "ORDERS", "body": ['
            '{"orderId": 1, "finalStatus": false}, {"orderId": 2, "finalStatus": true}, {"orderId": 3}]}'
        )
        transport.add("DELETE", "/api/orders/cancel", HttpResponse(status=200))

        cancelled = await orders.cancel_all_orders(ctx)

        assert cancelled == [1, 3]
        assert [c.url.rsplit("=", 1)[1] for c in transport.calls] == ["1", "3"]
