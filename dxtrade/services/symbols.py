"""
Symbol lookup: suggestions and instrument info over REST, trading limits
from the stream.
"""
import time
from typing import Any, Dict, List, Optional

from dxtrade.constants import endpoints
from dxtrade.data.quiescence import QuiescentCollector
from dxtrade.data.stream_requests import stream_errors
from dxtrade.data.transport import describe_error
from dxtrade.domain.models import MessageType
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.monitoring.logger import get_logger
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request

logger = get_logger(__name__)


def _timezone_offset_minutes() -> int:
    offset = time.altzone if time.localtime().tm_isdst > 0 else time.timezone
    return abs(offset) // 60


async def get_symbol_suggestions(ctx: ClientContext, text: str) -> List[Dict[str, Any]]:
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "GET",
            endpoints.suggest(ctx.base_url, text),
            headers=ctx.base_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.SUGGEST_ERROR, f"Error getting symbol suggestions: {describe_error(e)}")

    data = response.data if isinstance(response.data, dict) else {}
    suggests = data.get("suggests")
    if not suggests:
        ctx.throw_error(ErrorCode.NO_SUGGESTIONS, "No symbol suggestions found")
    return suggests


async def get_symbol_info(ctx: ClientContext, symbol: str) -> Dict[str, Any]:
    """Instrument details for a symbol (``lotSize`` is used to size orders)."""
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "GET",
            endpoints.instrument_info(ctx.base_url, symbol, _timezone_offset_minutes()),
            headers=ctx.base_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.SYMBOL_INFO_ERROR, f"Error getting symbol info: {describe_error(e)}")

    if not response.data:
        ctx.throw_error(ErrorCode.NO_SYMBOL_INFO, "No symbol info returned")
    return response.data


async def get_symbol_limits(ctx: ClientContext, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    """
    Collect LIMITS batches until the stream goes quiet.

    Empty batches neither count as data nor reset the window.
    """
    ctx.ensure_session()
    timeout = timeout if timeout is not None else ctx.config.timeouts.stream
    collector = QuiescentCollector(ctx.config.timeouts.limits_settle)

    def on_limits(batch: Any) -> None:
        if isinstance(batch, list) and batch:
            collector.add(batch)

    with stream_errors(
        ctx,
        timeout_code=ErrorCode.LIMITS_TIMEOUT,
        timeout_message="Symbol limits request timed out",
        error_code=ErrorCode.LIMITS_ERROR,
        error_label="Symbol limits",
    ):
        async with ctx.ephemeral_stream() as manager:
            manager.on_error(collector.fail)
            manager.subscribe(MessageType.LIMITS, on_limits)
            limits = await collector.wait(timeout)

    logger.debug("Symbol limits collected", count=len(limits))
    return limits
