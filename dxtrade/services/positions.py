"""
Position reads and the raw close request.

Positions and their metrics (P&L, margin) arrive as two independently timed
envelope types; reads only resolve once both have been seen and return the
left-joined rows.
"""
from typing import Any, Callable, Dict, List, Optional

from dxtrade.constants import endpoints
from dxtrade.data.stream_requests import request_envelope, request_envelopes
from dxtrade.data.transport import describe_error
from dxtrade.domain.models import MessageType
from dxtrade.domain.positions import merge_positions
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.monitoring.logger import get_logger
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request

logger = get_logger(__name__)

PositionsCallback = Callable[[List[Dict[str, Any]]], None]


async def get_raw_positions(ctx: ClientContext, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    """Positions as pushed, without metrics."""
    body = await request_envelope(
        ctx,
        MessageType.POSITIONS,
        timeout=timeout,
        timeout_code=ErrorCode.ACCOUNT_POSITIONS_TIMEOUT,
        timeout_message="Account positions timed out",
        error_code=ErrorCode.ACCOUNT_POSITIONS_ERROR,
        error_label="Account positions",
    )
    return list(body or [])


async def get_positions(ctx: ClientContext, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    """Open positions with metrics joined on (absent metrics default to 0)."""
    positions, metrics = await request_envelopes(
        ctx,
        [MessageType.POSITIONS, MessageType.POSITION_METRICS],
        timeout=timeout,
        timeout_code=ErrorCode.ACCOUNT_POSITIONS_TIMEOUT,
        timeout_message="Account positions timed out",
        error_code=ErrorCode.ACCOUNT_POSITIONS_ERROR,
        error_label="Account positions",
    )
    return merge_positions(positions or [], metrics or [])


async def get_position_metrics(ctx: ClientContext, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    body = await request_envelope(
        ctx,
        MessageType.POSITION_METRICS,
        timeout=timeout,
        timeout_code=ErrorCode.POSITION_METRICS_TIMEOUT,
        timeout_message="Position metrics timed out",
        error_code=ErrorCode.POSITION_METRICS_ERROR,
        error_label="Position metrics",
    )
    return list(body or [])


def stream_positions(ctx: ClientContext, callback: PositionsCallback) -> Callable[[], None]:
    """
    Emit merged positions whenever positions or their metrics update.

    Emits immediately when both are already cached. Requires connect().
    Returns an unsubscribe callable.
    """
    ctx.ensure_session()
    manager = ctx.stream_manager
    if manager is None:
        ctx.throw_error(
            ErrorCode.STREAM_REQUIRES_CONNECT,
            "Streaming positions requires a persistent connection. Call connect() first.",
        )

    def emit(_body: Any = None) -> None:
        positions = manager.get_cached(MessageType.POSITIONS)
        metrics = manager.get_cached(MessageType.POSITION_METRICS)
        if positions is None or metrics is None:
            return
        callback(merge_positions(positions, metrics))

    disposers = [
        manager.subscribe(MessageType.POSITIONS, emit),
        manager.subscribe(MessageType.POSITION_METRICS, emit),
    ]
    try:
        emit()
    except Exception:
        logger.exception("Positions callback failed")

    def unsubscribe() -> None:
        for dispose in disposers:
            dispose()

    return unsubscribe


async def close_position(ctx: ClientContext, order: Dict[str, Any]) -> Any:
    """Send a close order as built by build_close_order(); no confirmation."""
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "POST",
            endpoints.close_position(ctx.base_url),
            headers=ctx.auth_headers(),
            json_body=order,
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.POSITION_CLOSE_ERROR, f"Position close error: {describe_error(e)}")

    legs = order.get("legs") or [{}]
    logger.info("Close order sent", position_code=legs[0].get("positionCode"), quantity=order.get("quantity"))
    return response.data
