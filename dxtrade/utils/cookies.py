"""
Cookie jar helpers.

Only name/value pairs are tracked; attributes (Path, Expires, ...) are
dropped. The broker endpoint is trusted and reached over TLS.
"""
from typing import Dict, Iterable


def parse_cookies(set_cookie_headers: Iterable[str]) -> Dict[str, str]:
    """Parse Set-Cookie header values into a name -> value map (later wins)."""
    cookies: Dict[str, str] = {}

    for header in set_cookie_headers or []:
        name_value = header.split(";", 1)[0]
        if "=" not in name_value:
            continue
        name, value = name_value.split("=", 1)
        name = name.strip()
        if not name:
            continue
        cookies[name] = value.strip()

    return cookies


def merge_cookies(existing: Dict[str, str], incoming: Dict[str, str]) -> Dict[str, str]:
    """Merge two cookie maps; incoming values win per key."""
    return {**existing, **incoming}


def serialize_cookies(cookies: Dict[str, str]) -> str:
    """Render a Cookie request header value: ``k=v; k2=v2``."""
    return "; ".join(f"{key}={value}" for key, value in cookies.items())
