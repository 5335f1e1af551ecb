"""Wallet validation utilities."""

from __future__ import annotations

import re

from backend_chaingate.core.exceptions import InvalidWalletError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_wallet(w: str) -> bool:
    """Return True if w is a 0x-prefixed 20-byte hex (EVM) address."""
    return bool(w) and bool(_ADDRESS_RE.match(w.strip()))


def normalize_wallet(w: str) -> str:
    """Strip and lowercase an EVM address; raise InvalidWalletError if malformed."""
    if not w or not w.strip():
        raise InvalidWalletError("wallet must be non-empty")
    w = w.strip()
    if not is_valid_wallet(w):
        raise InvalidWalletError(f"Invalid wallet address: {w[:16]}")
    return w.lower()


def short_wallet(w: str | None) -> str:
    """Truncated address for log fields."""
    if not w:
        return "?"
    return w[:10] + "..."
