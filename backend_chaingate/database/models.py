"""
Domain models for verification store entities.

Identity links, per-contract verification records and aggregate stats.
Used by the repository layer; no ORM coupling so backends stay swappable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class IdentityLink:
    """Identity ↔ wallet link. Immutable once created."""

    identity_id: str
    wallet: str
    """Lowercase 0x address."""
    linked_at: int
    """Unix timestamp (seconds) when the link was created."""


@dataclass(frozen=True)
class VerificationRecord:
    """Proof that a wallet satisfied a contract's on-chain condition."""

    wallet: str
    contract_id: str
    verified: bool
    tx_hash: str | None
    block_number: int | None
    confirmed_at: int | None
    """Unix timestamp (seconds) when the record was written."""


@dataclass(frozen=True)
class PendingWallet:
    """A linked wallet with at least one contract lacking a verified record."""

    wallet: str
    identity_id: str
    pending_contract_ids: tuple[str, ...]


class RecordResult(str, Enum):
    """Outcome of record_verification; ALREADY_VERIFIED means skip side effects."""

    RECORDED = "recorded"
    ALREADY_VERIFIED = "already_verified"


@dataclass
class StoreStats:
    """Aggregate counts, computed by scanning."""

    total_users: int = 0
    verified_users: int = 0
    """Users verified for every configured contract."""
    pending_users: int = 0
    contract_stats: dict[str, int] = field(default_factory=dict)
    """contract_id → number of verified wallets."""
