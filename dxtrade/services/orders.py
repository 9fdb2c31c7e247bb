"""
Order submission, listing and cancellation.

submit_order() attaches an OrderListener BEFORE the REST submit so the
confirmation cannot be missed, then waits for FILLED / REJECTED.
"""
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from dxtrade.constants import REQUEST_ID_PREFIX, endpoints
from dxtrade.data.stream_requests import request_envelope
from dxtrade.data.transport import describe_error
from dxtrade.domain.models import (
    MessageType,
    OrderType,
    OrderUpdate,
    ProtectionParams,
    Side,
    SubmitOrderParams,
)
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.execution.order_tracker import order_listener
from dxtrade.monitoring.logger import get_logger
from dxtrade.services.symbols import get_symbol_info
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request

logger = get_logger(__name__)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _protection(params: ProtectionParams, order_type: OrderType, quantity: int) -> Dict[str, Any]:
    block: Dict[str, Any] = {}
    if params.offset is not None:
        block["fixedOffset"] = params.offset
    if params.price is not None:
        block["fixedPrice"] = params.price
    block.update({
        "priceFixed": params.price is not None,
        "orderChainId": 0,
        "orderId": 0,
        "orderType": order_type.value,
        "quantityForProtection": quantity,
        "removed": False,
    })
    return block


def build_order_payload(params: SubmitOrderParams, lot_size: float) -> Dict[str, Any]:
    """
    Broker order body.

    Quantity is in lots; the broker wants signed units (negative for SELL).
    """
    order_type = OrderType(params.order_type)
    units = round_half_up(params.quantity * lot_size)
    quantity = units if Side(params.side) is Side.BUY else -units

    leg: Dict[str, Any] = {}
    if params.instrument_id is not None:
        leg["instrumentId"] = params.instrument_id
    if params.position_code is not None:
        leg["positionCode"] = params.position_code
    leg.update({
        "positionEffect": str(params.position_effect),
        "ratioQuantity": 1,
        "symbol": params.symbol,
    })

    payload: Dict[str, Any] = {
        "directExchange": False,
        "legs": [leg],
        "orderSide": str(params.side),
        "orderType": order_type.value,
        "quantity": quantity,
        "requestId": params.order_code or f"{REQUEST_ID_PREFIX}{uuid.uuid4()}",
        "timeInForce": str(params.tif),
    }
    if params.expire_date is not None:
        payload["expireDate"] = params.expire_date
    if params.metadata is not None:
        payload["metadata"] = params.metadata

    if params.price is not None and order_type is not OrderType.MARKET:
        price_param = "stopPrice" if order_type is OrderType.STOP else "limitPrice"
        payload[price_param] = params.price

    if params.stop_loss:
        payload["stopLoss"] = _protection(params.stop_loss, OrderType.STOP, quantity)
    if params.take_profit:
        payload["takeProfit"] = _protection(params.take_profit, OrderType.LIMIT, quantity)

    return payload


async def submit_order(
    ctx: ClientContext,
    params: SubmitOrderParams,
    timeout: Optional[float] = None,
) -> OrderUpdate:
    """Submit an order and wait for its fill (or rejection) on the stream."""
    ctx.ensure_session()
    timeout = timeout if timeout is not None else ctx.config.timeouts.order

    info = await get_symbol_info(ctx, params.symbol)
    payload = build_order_payload(params, float(info.get("lotSize", 1)))

    try:
        async with order_listener(ctx) as listener:
            response = await retry_request(
                ctx.transport,
                "POST",
                endpoints.submit_order(ctx.base_url),
                headers=ctx.auth_headers(),
                json_body=payload,
                retries=ctx.retries,
            )
            logger.info(
                "Order placed",
                symbol=params.symbol,
                side=str(params.side),
                quantity=payload["quantity"],
                request_id=payload["requestId"],
            )
            ctx.emit("on_order_placed", response.data)

            update = await listener.wait(timeout)
    except DxtradeError as e:
        ctx.report(e)
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.ORDER_ERROR, f"Error submitting order: {describe_error(e)}")

    logger.info("Order filled", order_id=update.order_id, symbol=update.symbol, price=update.filled_price)
    ctx.emit("on_order_update", update)
    return update


async def get_orders(ctx: ClientContext, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    body = await request_envelope(
        ctx,
        MessageType.ORDERS,
        timeout=timeout,
        timeout_code=ErrorCode.ORDERS_TIMEOUT,
        timeout_message="Orders request timed out",
        error_code=ErrorCode.ORDERS_ERROR,
        error_label="Orders",
    )
    return list(body or [])


async def cancel_order(ctx: ClientContext, order_chain_id: Any) -> None:
    ctx.ensure_session()

    account_id = ctx.account_id
    if not account_id:
        ctx.throw_error(ErrorCode.CANCEL_ORDER_ERROR, "accountId is required to cancel an order")

    try:
        await retry_request(
            ctx.transport,
            "DELETE",
            endpoints.cancel_order(ctx.base_url, account_id, order_chain_id),
            headers=ctx.auth_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.CANCEL_ORDER_ERROR, f"Cancel order error: {describe_error(e)}")

    logger.info("Order cancelled", order_chain_id=order_chain_id, account_id=account_id)


async def cancel_all_orders(ctx: ClientContext) -> List[Any]:
    """Cancel every non-final order, sequentially. Returns the cancelled order ids."""
    orders = await get_orders(ctx)
    cancelled = []
    for order in orders:
        if order.get("finalStatus"):
            continue
        await cancel_order(ctx, order["orderId"])
        cancelled.append(order["orderId"])
    return cancelled
