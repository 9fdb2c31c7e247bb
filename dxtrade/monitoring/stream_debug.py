"""
Debug logging of raw stream traffic.

The debug option is either disabled, enabled for every frame, or restricted
to a set of envelope types (parsed from a comma-separated string such as
"POSITIONS,ORDERS").
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from dxtrade.monitoring.logger import get_logger

logger = get_logger("dxtrade.stream")

_TRUTHY = {"1", "true", "yes", "all", "*"}
_FALSY = {"", "0", "false", "no", "off"}


@dataclass(frozen=True)
class DebugFilter:
    """Which stream frames get debug-logged."""
    enabled: bool = False
    topics: Optional[FrozenSet[str]] = None  # None means every topic

    @classmethod
    def parse(cls, value: Union[bool, str, None]) -> "DebugFilter":
        if value is None or value is False:
            return cls()
        if value is True:
            return cls(enabled=True)

        text = str(value).strip()
        if text.lower() in _FALSY:
            return cls()
        if text.lower() in _TRUTHY:
            return cls(enabled=True)

        topics = frozenset(t.strip() for t in text.split(",") if t.strip())
        return cls(enabled=True, topics=topics)

    @property
    def logs_everything(self) -> bool:
        return self.enabled and self.topics is None

    def should_log(self, msg) -> bool:
        """Raw strings (heartbeats, preambles) are only logged when everything is."""
        if not self.enabled:
            return False
        if self.topics is None:
            return True
        msg_type = getattr(msg, "type", None)
        return msg_type is not None and str(msg_type) in self.topics

    def log(self, msg) -> None:
        if not self.should_log(msg):
            return
        if isinstance(msg, str):
            logger.debug("stream_frame", raw=msg[:500])
        else:
            logger.debug(
                "stream_envelope",
                type=str(msg.type),
                account_id=msg.account_id,
                body=msg.body,
            )
