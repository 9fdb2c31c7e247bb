"""
Request-style reads synthesized from stream pushes.

The gateway has no request/response channel for account state; a "get" is
the cached or next push of the right envelope type. In persistent mode the
shared StreamManager answers; otherwise a fresh single-purpose stream is
opened for the call and closed afterwards.
"""
import asyncio
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

from dxtrade.data.transport import describe_error
from dxtrade.exceptions import (
    DxtradeError,
    RateLimitError,
    StreamError,
    StreamTimeoutError,
)


@contextmanager
def stream_errors(
    ctx,
    *,
    timeout_code: str,
    timeout_message: str,
    error_code: str,
    error_label: str,
) -> Iterator[None]:
    """
    Convert stream-level failures at a domain-call boundary.

    Timeouts raise ``timeout_code``; stream failures raise ``error_code`` with
    "<error_label> error: <reason>". RateLimitError and other distinguished
    errors pass through unchanged.
    """
    try:
        yield
    except (asyncio.TimeoutError, StreamTimeoutError):
        ctx.throw_error(timeout_code, timeout_message)
    except RateLimitError as e:
        ctx.report(e)
        raise
    except StreamError as e:
        ctx.throw_error(error_code, f"{error_label} error: {e.message}")
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(error_code, f"{error_label} error: {describe_error(e)}")


async def wait_all(manager, msg_types: Sequence, timeout: float) -> List[Any]:
    """Wait for several envelope types on one manager; leftovers are cancelled on failure."""
    tasks = [asyncio.ensure_future(manager.wait_for(t, timeout)) for t in msg_types]
    try:
        return list(await asyncio.gather(*tasks))
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


async def request_envelopes(
    ctx,
    msg_types: Sequence,
    *,
    timeout: Optional[float] = None,
    timeout_code: str,
    timeout_message: str,
    error_code: str,
    error_label: str,
) -> List[Any]:
    """Bodies of the cached or next envelope of each type, in order."""
    ctx.ensure_session()
    wait = timeout if timeout is not None else ctx.config.timeouts.stream

    with stream_errors(
        ctx,
        timeout_code=timeout_code,
        timeout_message=timeout_message,
        error_code=error_code,
        error_label=error_label,
    ):
        async with ctx.stream() as manager:
            return await wait_all(manager, msg_types, wait)


async def request_envelope(ctx, msg_type, **kwargs) -> Any:
    """Body of the cached or next envelope of ``msg_type``."""
    bodies = await request_envelopes(ctx, [msg_type], **kwargs)
    return bodies[0]
