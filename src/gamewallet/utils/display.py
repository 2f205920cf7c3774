"""Log- and UI-safe renderings."""

from typing import Optional


def display_address(address: Optional[str]) -> str:
    """Shorten an address for logs and UI: 0x1234...5678."""
    if not address:
        return ""
    if len(address) > 10:
        return f"{address[:6]}...{address[-4:]}"
    return address
