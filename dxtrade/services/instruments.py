from typing import Any, Dict, List, Optional

from dxtrade.data.quiescence import QuiescentCollector
from dxtrade.data.stream_requests import stream_errors
from dxtrade.domain.models import MessageType
from dxtrade.exceptions import ErrorCode
from dxtrade.monitoring.logger import get_logger
from dxtrade.session.context import ClientContext

logger = get_logger(__name__)


def filter_instruments(instruments: List[Dict[str, Any]], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Keep instruments whose fields equal every given filter value."""
    if not filters:
        return list(instruments)
    return [
        instrument for instrument in instruments
        if all(instrument.get(key) == value for key, value in filters.items())
    ]


async def get_instruments(
    ctx: ClientContext,
    timeout: Optional[float] = None,
    **filters: Any,
) -> List[Dict[str, Any]]:
    """
    All tradable instruments, optionally filtered by exact field values.

    Example:
        await get_instruments(ctx, type="FOREX", symbol="EURUSD")
    """
    ctx.ensure_session()
    timeout = timeout if timeout is not None else ctx.config.timeouts.stream
    collector = QuiescentCollector(ctx.config.timeouts.instruments_settle)

    def on_instruments(batch: Any) -> None:
        collector.add(batch if isinstance(batch, list) else [])

    with stream_errors(
        ctx,
        timeout_code=ErrorCode.INSTRUMENTS_TIMEOUT,
        timeout_message="Instruments request timed out",
        error_code=ErrorCode.INSTRUMENTS_ERROR,
        error_label="Instruments",
    ):
        async with ctx.ephemeral_stream() as manager:
            manager.on_error(collector.fail)
            manager.subscribe(MessageType.INSTRUMENTS, on_instruments)
            instruments = await collector.wait(timeout)

    logger.debug("Instruments collected", count=len(instruments), filters=filters or None)
    return filter_instruments(instruments, filters)
