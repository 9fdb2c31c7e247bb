"""
System-wide constants for the DXtrade client.

Centralizes broker URLs, endpoint builders, timeouts and other magic numbers.
"""
from typing import Dict, Optional
from urllib.parse import quote

# Brokers
BROKER = {
    "LARKFUNDING": "https://trade.gooeytrade.com",
    "EIGHTCAP": "https://trader.dx-eightcap.com",
    "FTMO": "https://dxtrade.ftmo.com",
}

# Timeouts and Retries
DEFAULT_STREAM_TIMEOUT = 30.0  # seconds
DEFAULT_HTTP_TIMEOUT = 30.0  # seconds
MAX_RETRY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 1.0  # linear: attempt * unit
DEFAULT_POLL_INTERVAL = 1.0  # seconds

# Quiescence windows (seconds without a new batch before a collection is complete)
INSTRUMENTS_SETTLE_SECONDS = 0.5
LIMITS_SETTLE_SECONDS = 0.2
OHLC_INIT_SETTLE_SECONDS = 1.0
OHLC_BAR_SETTLE_SECONDS = 2.0

# OHLC defaults
OHLC_DEFAULT_RESOLUTION = 60  # seconds per bar
OHLC_DEFAULT_RANGE = 432_000  # 5 days
OHLC_DEFAULT_MAX_BARS = 3500

# Stream protocol
CORRELATION_ID_LENGTH = 36
CSRF_PATTERN = r'name="csrf" content="([^"]+)"'
REQUEST_ID_PREFIX = "gwt-uid-931-"


def resolve_broker_url(broker: str, custom_urls: Optional[Dict[str, str]] = None) -> str:
    """
    Resolve the base URL for a broker.

    Custom URLs win, then the known broker table, then the
    ``https://dxtrade.<broker>.com`` convention.
    """
    if custom_urls and broker in custom_urls:
        return custom_urls[broker]

    known = BROKER.get(broker.upper())
    if known:
        return known

    if broker.startswith(("http://", "https://")):
        return broker.rstrip("/")

    return f"https://dxtrade.{broker.lower()}.com"


def _websocket_query(correlation_id: Optional[str]) -> str:
    return (
        f"?X-Atmosphere-tracking-id={correlation_id or 0}"
        "&X-Atmosphere-Framework=2.3.2-javascript"
        "&X-Atmosphere-Transport=websocket&X-Atmosphere-TrackMessageSize=true"
        "&Content-Type=text/x-gwt-rpc;%20charset=UTF-8&X-atmo-protocol=true"
        "&sessionState=dx-new&guest-mode=false"
    )


class endpoints:
    """URL builders for REST and stream endpoints."""

    @staticmethod
    def login(base: str) -> str:
        return f"{base}/api/auth/login"

    @staticmethod
    def switch_account(base: str, account_id: str) -> str:
        return f"{base}/api/accounts/switch?accountId={quote(str(account_id))}"

    @staticmethod
    def suggest(base: str, text: str) -> str:
        return f"{base}/api/suggest?text={quote(text)}"

    @staticmethod
    def instrument_info(base: str, symbol: str, tz_offset: int) -> str:
        return (
            f"{base}/api/instruments/info?symbol={quote(symbol)}"
            f"&timezoneOffset={tz_offset}&withExDividends=true"
        )

    @staticmethod
    def submit_order(base: str) -> str:
        return f"{base}/api/orders/single"

    @staticmethod
    def cancel_order(base: str, account_id: str, order_chain_id) -> str:
        return f"{base}/api/orders/cancel?accountId={quote(str(account_id))}&orderChainId={order_chain_id}"

    @staticmethod
    def close_position(base: str) -> str:
        return f"{base}/api/positions/close"

    @staticmethod
    def assessments(base: str) -> str:
        return f"{base}/api/assessments"

    @staticmethod
    def trade_history(base: str, start: int, end: int) -> str:
        return f"{base}/api/history?from={start}&to={end}"

    @staticmethod
    def trade_journal(base: str, start: int, end: int) -> str:
        return f"{base}/api/tradejournal?from={start}&to={end}"

    @staticmethod
    def subscribe_instruments(base: str) -> str:
        return f"{base}/api/instruments/subscribeInstrumentSymbols"

    @staticmethod
    def charts(base: str) -> str:
        return f"{base}/api/charts"

    @staticmethod
    def websocket(base: str, correlation_id: Optional[str] = None) -> str:
        host = base.split("//", 1)[-1].rstrip("/")
        return f"wss://{host}/client/connector" + _websocket_query(correlation_id)
