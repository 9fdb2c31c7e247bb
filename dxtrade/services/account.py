"""
Account-level reads: live metrics from the stream, trade history and trade
journal over REST.
"""
from typing import Any, Dict, List, Optional

from dxtrade.constants import endpoints
from dxtrade.data.stream_requests import request_envelope
from dxtrade.data.transport import describe_error
from dxtrade.domain.models import MessageType
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request


async def get_account_metrics(ctx: ClientContext, timeout: Optional[float] = None) -> Dict[str, Any]:
    """Equity, balance, margin and open P&L (``ACCOUNT_METRICS.allMetrics``)."""
    body = await request_envelope(
        ctx,
        MessageType.ACCOUNT_METRICS,
        timeout=timeout,
        timeout_code=ErrorCode.ACCOUNT_METRICS_TIMEOUT,
        timeout_message="Account metrics timed out",
        error_code=ErrorCode.ACCOUNT_METRICS_ERROR,
        error_label="Account metrics",
    )
    if isinstance(body, dict):
        return body.get("allMetrics") or {}
    return {}


async def get_trade_history(ctx: ClientContext, start: int, end: int) -> List[Dict[str, Any]]:
    """
    Fetch trade history for a date range.

    Args:
        start: Start timestamp (Unix ms)
        end: End timestamp (Unix ms)
    """
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "POST",
            endpoints.trade_history(ctx.base_url, start, end),
            headers=ctx.auth_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.TRADE_HISTORY_ERROR, f"Trade history error: {describe_error(e)}")

    if response.status != 200:
        ctx.throw_error(ErrorCode.TRADE_HISTORY_ERROR, f"Trade history failed: {response.status}")

    ctx.absorb_cookies(response)
    return response.data


async def get_trade_journal(ctx: ClientContext, start: int, end: int) -> Any:
    """Fetch trade journal entries for a date range (Unix ms bounds)."""
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "GET",
            endpoints.trade_journal(ctx.base_url, start, end),
            headers=ctx.base_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.TRADE_JOURNAL_ERROR, f"Trade journal error: {describe_error(e)}")

    if response.status != 200:
        ctx.throw_error(ErrorCode.TRADE_JOURNAL_ERROR, f"Trade journal failed: {response.status}")

    ctx.absorb_cookies(response)
    return response.data
