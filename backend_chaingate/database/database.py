"""
Verification store: identity links and per-contract verification records.

MVP uses SQLite; the backend is swappable via a different VerificationBackend
implementation. All access goes through the abstract interface.

Concurrency: one connection per operation (WAL journal). The verification write
is a single INSERT ... ON CONFLICT DO UPDATE ... WHERE verified = 0 statement,
so concurrent callers get an atomic check-and-set per (wallet, contract_id):
exactly one of them sees RECORDED, the rest see ALREADY_VERIFIED.
"""

from __future__ import annotations

import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.core.exceptions import (
    StoreError,
    StoreWriteError,
    UnknownContractError,
    WalletAlreadyLinkedError,
)
from backend_chaingate.database.models import (
    IdentityLink,
    PendingWallet,
    RecordResult,
    StoreStats,
    VerificationRecord,
)
from backend_chaingate.utils.wallet_utils import normalize_wallet, short_wallet

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite)
# -----------------------------------------------------------------------------

SCHEMA_IDENTITY_LINKS = """
CREATE TABLE IF NOT EXISTS identity_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identity_id TEXT NOT NULL UNIQUE,
    wallet TEXT NOT NULL UNIQUE,
    linked_at INTEGER NOT NULL
);
"""

SCHEMA_VERIFICATIONS = """
CREATE TABLE IF NOT EXISTS verifications (
    wallet TEXT NOT NULL,
    contract_id TEXT NOT NULL,
    verified INTEGER NOT NULL DEFAULT 0,
    tx_hash TEXT,
    block_number INTEGER,
    confirmed_at INTEGER,
    PRIMARY KEY (wallet, contract_id)
);
CREATE INDEX IF NOT EXISTS ix_verifications_contract ON verifications(contract_id, verified);
"""


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class VerificationBackend(ABC):
    """Abstract interface for persistence; every method must be thread-safe."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def get_link(self, identity_id: str) -> IdentityLink | None:
        ...

    @abstractmethod
    def get_link_by_wallet(self, wallet: str) -> IdentityLink | None:
        ...

    @abstractmethod
    def insert_link(self, identity_id: str, wallet: str, linked_at: int) -> tuple[IdentityLink, bool]:
        """
        Create the link. Returns (existing, False) when the identical link exists.
        Raises WalletAlreadyLinkedError when identity or wallet is linked elsewhere.
        """
        ...

    @abstractmethod
    def list_links_with_verified(self) -> list[tuple[IdentityLink, set[str]]]:
        """All links in insertion order, each with its set of verified contract ids."""
        ...

    @abstractmethod
    def get_verifications(self, wallet: str) -> list[VerificationRecord]:
        ...

    @abstractmethod
    def is_verified(self, wallet: str, contract_id: str) -> bool:
        ...

    @abstractmethod
    def mark_verified(
        self,
        wallet: str,
        contract_id: str,
        tx_hash: str,
        block_number: int,
        confirmed_at: int,
    ) -> bool:
        """Atomic check-and-set. True if this call flipped the record to verified."""
        ...

    @abstractmethod
    def backup_to(self, dest: Path) -> None:
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteBackend(VerificationBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
        return conn

    @contextmanager
    def _cursor(self, *, write: bool = False) -> Iterator[sqlite3.Cursor]:
        error_cls = StoreWriteError if write else StoreError
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise error_cls(f"cannot open store {self._path}: {e}") from e
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise error_cls(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> IdentityLink:
        return IdentityLink(
            identity_id=row["identity_id"],
            wallet=row["wallet"],
            linked_at=row["linked_at"],
        )

    def ensure_schema(self) -> None:
        with self._cursor(write=True) as cur:
            for stmt in (SCHEMA_IDENTITY_LINKS, SCHEMA_VERIFICATIONS):
                cur.executescript(stmt)

    def get_link(self, identity_id: str) -> IdentityLink | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT identity_id, wallet, linked_at FROM identity_links WHERE identity_id = ?",
                (identity_id,),
            )
            row = cur.fetchone()
        return self._row_to_link(row) if row else None

    def get_link_by_wallet(self, wallet: str) -> IdentityLink | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT identity_id, wallet, linked_at FROM identity_links WHERE wallet = ?",
                (wallet,),
            )
            row = cur.fetchone()
        return self._row_to_link(row) if row else None

    def insert_link(self, identity_id: str, wallet: str, linked_at: int) -> tuple[IdentityLink, bool]:
        with self._cursor(write=True) as cur:
            cur.execute(
                "SELECT identity_id, wallet, linked_at FROM identity_links WHERE identity_id = ? OR wallet = ?",
                (identity_id, wallet),
            )
            existing = [self._row_to_link(r) for r in cur.fetchall()]
            for link in existing:
                if link.identity_id == identity_id and link.wallet == wallet:
                    return link, False
            if existing:
                raise WalletAlreadyLinkedError(
                    f"identity {identity_id} or wallet {short_wallet(wallet)} is already linked"
                )
            try:
                cur.execute(
                    "INSERT INTO identity_links (identity_id, wallet, linked_at) VALUES (?, ?, ?)",
                    (identity_id, wallet, linked_at),
                )
            except sqlite3.IntegrityError as e:
                # UNIQUE(identity_id) / UNIQUE(wallet) lost a race with another writer
                raise WalletAlreadyLinkedError(str(e)) from e
        return IdentityLink(identity_id=identity_id, wallet=wallet, linked_at=linked_at), True

    def list_links_with_verified(self) -> list[tuple[IdentityLink, set[str]]]:
        with self._cursor() as cur:
            cur.execute("SELECT identity_id, wallet, linked_at FROM identity_links ORDER BY id ASC")
            links = [self._row_to_link(r) for r in cur.fetchall()]
            cur.execute("SELECT wallet, contract_id FROM verifications WHERE verified = 1")
            verified: dict[str, set[str]] = {}
            for row in cur.fetchall():
                verified.setdefault(row["wallet"], set()).add(row["contract_id"])
        return [(link, verified.get(link.wallet, set())) for link in links]

    def get_verifications(self, wallet: str) -> list[VerificationRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT wallet, contract_id, verified, tx_hash, block_number, confirmed_at
                FROM verifications WHERE wallet = ?
                """,
                (wallet,),
            )
            rows = cur.fetchall()
        return [
            VerificationRecord(
                wallet=row["wallet"],
                contract_id=row["contract_id"],
                verified=bool(row["verified"]),
                tx_hash=row["tx_hash"],
                block_number=row["block_number"],
                confirmed_at=row["confirmed_at"],
            )
            for row in rows
        ]

    def is_verified(self, wallet: str, contract_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT verified FROM verifications WHERE wallet = ? AND contract_id = ?",
                (wallet, contract_id),
            )
            row = cur.fetchone()
        return bool(row and row["verified"])

    def mark_verified(
        self,
        wallet: str,
        contract_id: str,
        tx_hash: str,
        block_number: int,
        confirmed_at: int,
    ) -> bool:
        with self._cursor(write=True) as cur:
            cur.execute(
                """
                INSERT INTO verifications (wallet, contract_id, verified, tx_hash, block_number, confirmed_at)
                VALUES (?, ?, 1, ?, ?, ?)
                ON CONFLICT(wallet, contract_id) DO UPDATE SET
                    verified = 1,
                    tx_hash = excluded.tx_hash,
                    block_number = excluded.block_number,
                    confirmed_at = excluded.confirmed_at
                WHERE verifications.verified = 0
                """,
                (wallet, contract_id, tx_hash, block_number, confirmed_at),
            )
            return cur.rowcount == 1

    def backup_to(self, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            src = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"cannot open store {self._path}: {e}") from e
        try:
            dst = sqlite3.connect(str(dest))
            try:
                src.backup(dst)
            finally:
                dst.close()
        except sqlite3.Error as e:
            raise StoreError(f"backup to {dest} failed: {e}") from e
        finally:
            src.close()


# -----------------------------------------------------------------------------
# Store facade: single entrypoint; backend is swappable.
# -----------------------------------------------------------------------------


class VerificationStore:
    """
    Verification store: identity links and per-contract verification records.

    contract_ids is the configured contract list (in configured order); it
    defines which contracts make a wallet pending and which ids are valid.
    """

    def __init__(self, backend: VerificationBackend, contract_ids: Sequence[str]) -> None:
        self._backend = backend
        self._contract_ids = tuple(contract_ids)

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        self._backend.ensure_schema()

    @property
    def contract_ids(self) -> tuple[str, ...]:
        return self._contract_ids

    def _require_contract(self, contract_id: str) -> None:
        if contract_id not in self._contract_ids:
            raise UnknownContractError(contract_id)

    # --- Identity links ---

    def get_link(self, identity_id: str) -> IdentityLink | None:
        """Return the identity's link, or None (not found)."""
        return self._backend.get_link(identity_id)

    def get_link_by_wallet(self, wallet: str) -> IdentityLink | None:
        return self._backend.get_link_by_wallet(normalize_wallet(wallet))

    def link_wallet(self, identity_id: str, wallet: str) -> tuple[IdentityLink, bool]:
        """
        Link identity to wallet. Returns (link, created). Re-linking the same
        pair is a no-op (created=False); any other conflict raises
        WalletAlreadyLinkedError. Invalid addresses raise InvalidWalletError.
        """
        identity_id = (identity_id or "").strip()
        if not identity_id:
            raise ValueError("identity_id must be non-empty")
        wallet = normalize_wallet(wallet)
        link, created = self._backend.insert_link(identity_id, wallet, int(time.time()))
        if created:
            logger.info("store_wallet_linked", identity_id=identity_id, wallet_id=wallet)
        return link, created

    # --- Verification records ---

    def get_all_pending_wallets(self, max_count: int) -> list[PendingWallet]:
        """
        Up to max_count wallets with at least one configured contract not yet
        verified, oldest link first. pending_contract_ids follow configured order.
        """
        if max_count <= 0:
            return []
        pending: list[PendingWallet] = []
        for link, verified in self._backend.list_links_with_verified():
            missing = tuple(c for c in self._contract_ids if c not in verified)
            if not missing:
                continue
            pending.append(
                PendingWallet(
                    wallet=link.wallet,
                    identity_id=link.identity_id,
                    pending_contract_ids=missing,
                )
            )
            if len(pending) >= max_count:
                break
        return pending

    def is_verified(self, wallet: str, contract_id: str) -> bool:
        """Local existence + flag check; never touches the chain."""
        return self._backend.is_verified(wallet.lower(), contract_id)

    def get_verifications(self, wallet: str) -> dict[str, VerificationRecord]:
        return {r.contract_id: r for r in self._backend.get_verifications(wallet.lower())}

    def record_verification(
        self,
        wallet: str,
        contract_id: str,
        tx_hash: str,
        block_number: int,
    ) -> RecordResult:
        """
        Set verified=True for (wallet, contract_id) unless it already is.

        ALREADY_VERIFIED signals a concurrent or earlier verification; callers
        must skip side effects. Raises StoreWriteError if the write did not persist.
        """
        self._require_contract(contract_id)
        wallet = wallet.lower()
        flipped = self._backend.mark_verified(
            wallet, contract_id, tx_hash, block_number, int(time.time())
        )
        if not flipped:
            logger.debug("store_already_verified", wallet_id=wallet, contract_id=contract_id)
            return RecordResult.ALREADY_VERIFIED
        logger.info(
            "store_verification_recorded",
            wallet_id=wallet,
            contract_id=contract_id,
            tx_hash=tx_hash,
            block_number=block_number,
        )
        return RecordResult.RECORDED

    def get_stats(self) -> StoreStats:
        """Scan all links; never cached."""
        stats = StoreStats(contract_stats={c: 0 for c in self._contract_ids})
        for _link, verified in self._backend.list_links_with_verified():
            stats.total_users += 1
            for c in self._contract_ids:
                if c in verified:
                    stats.contract_stats[c] += 1
            if all(c in verified for c in self._contract_ids):
                stats.verified_users += 1
            else:
                stats.pending_users += 1
        return stats

    def backup_to(self, dest: str | Path) -> Path:
        dest = Path(dest)
        self._backend.backup_to(dest)
        logger.info("store_backup_written", path=str(dest))
        return dest


def get_store(path: str | Path | None, contract_ids: Sequence[str]) -> VerificationStore:
    """
    Return a VerificationStore backed by SQLite at path (default "data/chaingate.db").
    Schema is created if missing.
    """
    if path is None:
        path = Path("data/chaingate.db")
    store = VerificationStore(SQLiteBackend(path), contract_ids)
    store.ensure_schema()
    return store
