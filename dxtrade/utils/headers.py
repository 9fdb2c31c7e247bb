"""Request header builders for REST and stream calls."""
from typing import Dict


def base_headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json; charset=UTF-8",
        "Accept-Language": "en-US,en;q=0.9",
    }


def auth_headers(csrf: str, cookie_str: str) -> Dict[str, str]:
    """Headers for CSRF-protected calls (order submit, account switch, ...)."""
    return {
        **base_headers(),
        "X-CSRF-Token": csrf,
        "X-Requested-With": "XMLHttpRequest",
        "Accept": "*/*",
        "Cookie": cookie_str,
    }


def cookie_only_headers(cookie_str: str) -> Dict[str, str]:
    return {"Cookie": cookie_str}
