"""
Session handshake.

Strictly sequential:

    preflight (best effort) → login → CSRF → stream handshake
        → [account switch → stream handshake] → [persistent stream]

Any failure aborts the sequence and leaves no usable session behind.
"""
import asyncio
import re
from typing import NoReturn, Optional

from dxtrade.constants import CSRF_PATTERN, endpoints
from dxtrade.data.framing import extract_correlation_id, parse_frame
from dxtrade.data.transport import HttpError, describe_error, is_stream_rate_limit
from dxtrade.domain.models import Envelope
from dxtrade.exceptions import DxtradeError, ErrorCode, RateLimitError
from dxtrade.monitoring.logger import get_logger
from dxtrade.session.context import ClientContext
from dxtrade.utils.headers import base_headers, cookie_only_headers
from dxtrade.utils.retry import retry_request

logger = get_logger(__name__)

_csrf_re = re.compile(CSRF_PATTERN)


async def preflight(ctx: ClientContext) -> None:
    """GET the site root to collect anti-bot cookies. Failures are ignored."""
    try:
        response = await ctx.transport.request("GET", ctx.base_url, headers=base_headers())
        ctx.absorb_cookies(response)
    except Exception as e:
        logger.debug("Preflight failed, continuing", error=describe_error(e))


async def login(ctx: ClientContext) -> None:
    try:
        response = await retry_request(
            ctx.transport,
            "POST",
            endpoints.login(ctx.base_url),
            headers={"Content-Type": "application/json", "Cookie": ctx.cookie_header},
            json_body={
                "username": ctx.config.username,
                "password": ctx.config.password,
                "domain": ctx.config.broker,
            },
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except HttpError as e:
        if e.status is not None:
            ctx.throw_error(ErrorCode.LOGIN_FAILED, f"Login failed: {e.status}")
        ctx.throw_error(ErrorCode.LOGIN_ERROR, f"Login error: {describe_error(e)}")
    except Exception as e:
        ctx.throw_error(ErrorCode.LOGIN_ERROR, f"Login error: {describe_error(e)}")

    if response.status != 200:
        ctx.throw_error(ErrorCode.LOGIN_FAILED, f"Login failed: {response.status}")

    ctx.absorb_cookies(response)
    logger.info("Logged in", broker=ctx.config.broker, username=ctx.config.username)
    ctx.emit("on_login")


async def fetch_csrf(ctx: ClientContext) -> None:
    try:
        response = await retry_request(
            ctx.transport,
            "GET",
            ctx.base_url,
            headers={**cookie_only_headers(ctx.cookie_header), "Referer": ctx.base_url},
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.CSRF_ERROR, f"CSRF fetch error: {describe_error(e)}")

    ctx.absorb_cookies(response)
    match = _csrf_re.search(response.data) if isinstance(response.data, str) else None
    if not match:
        ctx.throw_error(ErrorCode.CSRF_NOT_FOUND, "CSRF token not found")
    ctx.session.csrf = match.group(1)


async def switch_account(ctx: ClientContext, account_id: str) -> None:
    ctx.ensure_session()

    try:
        response = await retry_request(
            ctx.transport,
            "POST",
            endpoints.switch_account(ctx.base_url, account_id),
            headers=ctx.auth_headers(),
            retries=ctx.retries,
        )
    except RateLimitError as e:
        ctx.report(e)
        raise
    except DxtradeError:
        raise
    except Exception as e:
        ctx.throw_error(ErrorCode.ACCOUNT_SWITCH_ERROR, f"Error switching account: {describe_error(e)}")

    ctx.absorb_cookies(response)
    ctx.session.account_id = account_id
    logger.info("Switched account", account_id=account_id)
    ctx.emit("on_account_switch", account_id)


async def _await_live_envelope(ctx: ClientContext, connection) -> str:
    """Read frames until the first envelope carrying an account id."""
    correlation_captured = False

    async for raw in connection:
        if not correlation_captured:
            correlation_id = extract_correlation_id(raw)
            if correlation_id:
                ctx.session.correlation_id = correlation_id
                correlation_captured = True

        msg = parse_frame(raw)
        ctx.debug.log(msg)
        if isinstance(msg, Envelope) and msg.account_id is not None:
            return msg.account_id

    ctx.throw_error(ErrorCode.WS_HANDSHAKE_ERROR, "WebSocket handshake error: stream closed before session was live")


def _raise_stream_failure(ctx: ClientContext, error: Exception) -> NoReturn:
    if is_stream_rate_limit(error):
        ctx.throw_error(ErrorCode.RATE_LIMITED, f"Rate limited during handshake: {error}")
    ctx.throw_error(ErrorCode.WS_HANDSHAKE_ERROR, f"WebSocket handshake error: {describe_error(error)}")


async def wait_for_handshake(ctx: ClientContext, timeout: Optional[float] = None) -> str:
    """
    Open a stream and wait until the session is live.

    Captures the correlation id from the earliest frame and records the
    account id of the first envelope carrying one. Returns that account id.
    """
    timeout = timeout if timeout is not None else ctx.config.timeouts.handshake

    try:
        connection = await ctx.stream_opener(ctx.websocket_url(), ctx.stream_headers())
    except DxtradeError:
        raise
    except Exception as e:
        _raise_stream_failure(ctx, e)

    try:
        account_id = await asyncio.wait_for(_await_live_envelope(ctx, connection), timeout)
    except asyncio.TimeoutError:
        ctx.throw_error(ErrorCode.WS_HANDSHAKE_TIMEOUT, "Handshake timed out")
    except DxtradeError:
        raise
    except Exception as e:
        _raise_stream_failure(ctx, e)
    finally:
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Error closing handshake stream", error=str(e))

    ctx.session.account_id = account_id
    logger.debug(
        "Stream handshake complete",
        account_id=account_id,
        correlation_id=ctx.session.correlation_id,
    )
    return account_id


async def auth(ctx: ClientContext) -> None:
    """Establish a session without a persistent stream (ephemeral mode)."""
    try:
        await preflight(ctx)
        await login(ctx)
        await fetch_csrf(ctx)
        await wait_for_handshake(ctx)

        target = ctx.config.account_id
        if target and target != ctx.session.account_id:
            await switch_account(ctx, target)
            await wait_for_handshake(ctx)
    except BaseException:
        ctx.session.clear()
        raise

    logger.info("Session established", account_id=ctx.session.account_id)


async def connect(ctx: ClientContext) -> None:
    """Establish a session and hand one more stream to the multiplexer (persistent mode)."""
    if ctx.stream_manager is not None and ctx.stream_manager.is_connected:
        return

    await auth(ctx)

    manager = ctx.new_stream_manager()
    try:
        await manager.connect(ctx.websocket_url(), ctx.stream_headers())
    except DxtradeError as e:
        ctx.session.clear()
        ctx.report(e)
        raise
    except Exception as e:
        ctx.session.clear()
        ctx.throw_error(ErrorCode.WS_CONNECT_ERROR, f"WebSocket connect error: {describe_error(e)}")

    def report_stream_error(error: DxtradeError) -> None:
        # a local disconnect detaches the manager first and is not reported
        if ctx.stream_manager is manager:
            ctx.report(error)

    manager.on_error(report_stream_error)
    ctx.stream_manager = manager
    logger.info("Persistent stream connected", account_id=ctx.session.account_id)


async def disconnect(ctx: ClientContext) -> None:
    """Close the persistent stream and tear down the session."""
    manager, ctx.stream_manager = ctx.stream_manager, None
    if manager is not None:
        await manager.close()
    ctx.session.clear()
    logger.info("Disconnected")
