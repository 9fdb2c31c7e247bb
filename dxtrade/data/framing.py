"""
Framing codec for the duplex stream.

Frames are ``<byteLength>|<payload>``. Payloads that decode to a JSON object
whose ``type`` is a MessageType become Envelopes; everything else (heartbeats,
the tracking-id preamble, partial frames, unrecognized types) is returned as
the raw string and is never interpreted as business data.
"""
import json
import re
from typing import Optional, Union

from dxtrade.constants import CORRELATION_ID_LENGTH
from dxtrade.domain.models import Envelope, MessageType

_KNOWN_TYPES = {m.value: m for m in MessageType}

# First frame of a connection: "36|<tracking id>|..."
_CORRELATION_RE = re.compile(r"^\s*\d+\|([A-Za-z0-9-]{%d})(?:\||$)" % CORRELATION_ID_LENGTH)


def _as_text(raw: Union[str, bytes]) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    return raw


def parse_frame(raw: Union[str, bytes]) -> Union[Envelope, str]:
    """Decode a raw frame into an Envelope, or return it unchanged as text."""
    text = _as_text(raw)
    sep = text.find("|")
    payload = text[sep + 1:] if sep >= 0 else text

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        return text

    if not isinstance(data, dict):
        return text

    type_name = data.get("type")
    msg_type = _KNOWN_TYPES.get(type_name) if isinstance(type_name, str) else None
    if msg_type is None:
        return text

    return Envelope(
        type=msg_type,
        account_id=data.get("accountId"),
        body=data.get("body"),
    )


def extract_correlation_id(raw: Union[str, bytes]) -> Optional[str]:
    """Read the stream tracking id from a connection's first frame."""
    match = _CORRELATION_RE.match(_as_text(raw))
    return match.group(1) if match else None


def encode_frame(envelope: Envelope) -> str:
    """Serialize an Envelope in the wire framing (used by tests and tooling)."""
    payload = json.dumps({
        "accountId": envelope.account_id,
        "type": str(envelope.type),
        "body": envelope.body,
    })
    return f"{len(payload.encode('utf-8'))}|{payload}"
