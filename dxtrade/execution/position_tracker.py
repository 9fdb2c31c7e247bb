"""
Position close confirmation.

close_position_by_code() confirms that a close actually happened:

- "stream": wait for a FILLED close order for the position code (listener
  attached before the close request is sent)
- "poll": re-fetch positions until the code disappears
- unset: fire and forget
"""
import asyncio
from typing import Any, Dict, List, Optional, Union

from dxtrade.data.transport import describe_error
from dxtrade.domain.models import CloseConfirmation, MessageType
from dxtrade.domain.positions import build_close_order, find_position, merge_positions, position_code
from dxtrade.exceptions import DxtradeError, ErrorCode, OrderRejectedError, OrderTimeoutError, StreamError
from dxtrade.execution.order_tracker import order_listener
from dxtrade.monitoring.logger import get_logger
from dxtrade.services.positions import close_position, get_positions, get_raw_positions
from dxtrade.session.context import ClientContext

logger = get_logger(__name__)


async def close_position_by_code(
    ctx: ClientContext,
    code: str,
    wait_for_close: Optional[Union[CloseConfirmation, str]] = None,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Close one position by its position code.

    Returns the last known snapshot of the position: pre-close when
    ``wait_for_close`` is unset, otherwise the latest one seen before the
    close was confirmed.
    """
    ctx.ensure_session()
    mode = CloseConfirmation(wait_for_close) if wait_for_close is not None else None
    timeout = timeout if timeout is not None else ctx.config.timeouts.close
    poll_interval = poll_interval if poll_interval is not None else ctx.config.timeouts.poll_interval

    target = find_position(await get_positions(ctx), code)
    if target is None:
        ctx.throw_error(ErrorCode.POSITION_NOT_FOUND, f"Position {code} not found")

    order = build_close_order(target)
    logger.info("Closing position", position_code=code, quantity=order["quantity"], confirm=str(mode))

    if mode is CloseConfirmation.STREAM:
        return await _close_and_listen(ctx, code, target, order, timeout)

    await close_position(ctx, order)
    if mode is CloseConfirmation.POLL:
        return await _poll_until_closed(ctx, code, target, timeout, poll_interval)
    return target


async def _close_and_listen(
    ctx: ClientContext,
    code: str,
    target: Dict[str, Any],
    order: Dict[str, Any],
    timeout: float,
) -> Dict[str, Any]:
    snapshot = target

    def refresh(metrics: Any) -> None:
        nonlocal snapshot
        if isinstance(metrics, list) and any(m.get("uid") == target.get("uid") for m in metrics if isinstance(m, dict)):
            snapshot = merge_positions([target], metrics)[0]

    try:
        async with order_listener(ctx, position_code=code) as listener:
            dispose = listener.manager.subscribe(MessageType.POSITION_METRICS, refresh)
            try:
                await close_position(ctx, order)
                await listener.wait(timeout)
            finally:
                dispose()
    except OrderRejectedError as e:
        ctx.throw_error(ErrorCode.POSITION_CLOSE_ERROR, f"Position close rejected: {e.message}")
    except OrderTimeoutError:
        ctx.throw_error(ErrorCode.POSITION_CLOSE_TIMEOUT, f"Position {code} close confirmation timed out")
    except StreamError as e:
        ctx.throw_error(ErrorCode.POSITION_CLOSE_ERROR, f"Position close error: {e.message}")
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.POSITION_CLOSE_ERROR, f"Position close error: {describe_error(e)}")

    logger.info("Position close confirmed", position_code=code)
    return snapshot


async def _poll_until_closed(
    ctx: ClientContext,
    code: str,
    target: Dict[str, Any],
    timeout: float,
    poll_interval: float,
) -> Dict[str, Any]:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    snapshot = target

    while True:
        await asyncio.sleep(poll_interval)
        current = find_position(await get_positions(ctx), code)
        if current is None:
            logger.info("Position close confirmed", position_code=code)
            return snapshot
        snapshot = current
        if loop.time() >= deadline:
            ctx.throw_error(ErrorCode.POSITION_CLOSE_TIMEOUT, f"Position {code} still open after {timeout}s")


async def close_all_positions(ctx: ClientContext) -> List[str]:
    """
    Market-close every open position, one request at a time.

    No confirmation is awaited. Returns the position codes that were sent a
    close order.
    """
    positions = await get_raw_positions(ctx)
    closed = []
    for position in positions:
        await close_position(ctx, build_close_order(position))
        closed.append(position_code(position))
    logger.info("Closed all positions", count=len(closed))
    return closed
