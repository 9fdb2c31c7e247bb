"""
OHLC bars.

get_ohlc() runs on its own stream: it lets the initial burst of account
pushes settle, asks for the chart over REST, then collects bars until the
broker flags ``snapshotEnd`` or the bar feed goes quiet.

stream_ohlc() needs the persistent stream: it delivers the snapshot once,
then every live bar update.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

from dxtrade.constants import endpoints
from dxtrade.data.quiescence import QuiescentCollector
from dxtrade.data.stream_requests import stream_errors
from dxtrade.domain.models import ChartSubtopic, Envelope, MessageType, OHLCParams
from dxtrade.exceptions import ErrorCode
from dxtrade.monitoring.logger import get_logger
from dxtrade.session.context import ClientContext
from dxtrade.utils.retry import retry_request

logger = get_logger(__name__)

BarsCallback = Callable[[List[Dict[str, Any]]], None]


def _chart_batch(body: Any, subtopic: ChartSubtopic) -> Optional[Dict[str, Any]]:
    if isinstance(body, dict) and body.get("subtopic") == subtopic:
        return body
    return None


async def request_chart(ctx: ClientContext, params: OHLCParams, subtopic: ChartSubtopic) -> None:
    """Subscribe the symbol and request its chart; bars then arrive on the stream."""
    headers = ctx.auth_headers()
    await retry_request(
        ctx.transport,
        "PUT",
        endpoints.subscribe_instruments(ctx.base_url),
        headers=headers,
        json_body={"instruments": [params.symbol]},
        retries=ctx.retries,
    )
    await retry_request(
        ctx.transport,
        "PUT",
        endpoints.charts(ctx.base_url),
        headers=headers,
        json_body={
            "chartIds": [],
            "requests": [
                {
                    "aggregationPeriodSeconds": params.resolution,
                    "extendedSession": True,
                    "forexPriceField": params.price_field,
                    "id": 0,
                    "maxBarsCount": params.max_bars,
                    "range": params.range,
                    "studySubscription": [],
                    "subtopic": subtopic.value,
                    "symbol": params.symbol,
                }
            ],
        },
        retries=ctx.retries,
    )


async def get_ohlc(ctx: ClientContext, params: OHLCParams, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    ctx.ensure_session()
    timeout = timeout if timeout is not None else ctx.config.timeouts.stream
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    init_burst = QuiescentCollector(ctx.config.timeouts.ohlc_init_settle)
    bars = QuiescentCollector(ctx.config.timeouts.ohlc_bar_settle)
    chart_requested = False

    def on_envelope(_envelope: Envelope) -> None:
        if not chart_requested:
            init_burst.add()

    def on_chart(body: Any) -> None:
        batch = _chart_batch(body, ChartSubtopic.BIG_CHART_COMPONENT)
        if not chart_requested or batch is None:
            return
        data = batch.get("data")
        bars.add(data if isinstance(data, list) else [], snapshot_end=bool(batch.get("snapshotEnd")))

    def on_error(error) -> None:
        init_burst.fail(error)
        bars.fail(error)

    with stream_errors(
        ctx,
        timeout_code=ErrorCode.OHLC_TIMEOUT,
        timeout_message="OHLC data timed out",
        error_code=ErrorCode.OHLC_ERROR,
        error_label="OHLC",
    ):
        async with ctx.ephemeral_stream() as manager:
            manager.on_error(on_error)
            manager.on_envelope(on_envelope)
            manager.subscribe(MessageType.CHART_FEED_SUBTOPIC, on_chart)

            await init_burst.wait(timeout)
            chart_requested = True
            await request_chart(ctx, params, ChartSubtopic.BIG_CHART_COMPONENT)
            result = await bars.wait(max(0.0, deadline - loop.time()))

    logger.debug("OHLC bars collected", symbol=params.symbol, count=len(result))
    return result


async def stream_ohlc(
    ctx: ClientContext,
    params: OHLCParams,
    callback: BarsCallback,
    timeout: Optional[float] = None,
) -> Callable[[], None]:
    """
    Deliver the bar snapshot once, then each live update. Requires connect().

    Resolves after the snapshot has been delivered and returns an
    unsubscribe callable.
    """
    ctx.ensure_session()
    manager = ctx.stream_manager
    if manager is None:
        ctx.throw_error(
            ErrorCode.STREAM_REQUIRES_CONNECT,
            "Streaming OHLC requires a persistent connection. Call connect() first.",
        )
    timeout = timeout if timeout is not None else ctx.config.timeouts.stream

    snapshot: List[Dict[str, Any]] = []
    snapshot_done: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_chart(body: Any) -> None:
        batch = _chart_batch(body, ChartSubtopic.OHLC_STREAM)
        if batch is None:
            return
        data = batch.get("data")
        data = data if isinstance(data, list) else []

        if not snapshot_done.done():
            snapshot.extend(data)
            if batch.get("snapshotEnd"):
                snapshot_done.set_result(None)
                callback(list(snapshot))
            return

        if data:
            callback(data)

    def on_error(error) -> None:
        if not snapshot_done.done():
            snapshot_done.set_exception(error)

    dispose_chart = manager.subscribe(MessageType.CHART_FEED_SUBTOPIC, on_chart)
    dispose_error = manager.on_error(on_error)

    def unsubscribe() -> None:
        dispose_chart()
        dispose_error()

    try:
        with stream_errors(
            ctx,
            timeout_code=ErrorCode.OHLC_TIMEOUT,
            timeout_message="OHLC snapshot timed out",
            error_code=ErrorCode.OHLC_ERROR,
            error_label="OHLC stream",
        ):
            await request_chart(ctx, params, ChartSubtopic.OHLC_STREAM)
            await asyncio.wait_for(snapshot_done, timeout)
    except BaseException:
        unsubscribe()
        raise

    logger.debug("OHLC stream started", symbol=params.symbol, snapshot=len(snapshot))
    return unsubscribe
