"""
Verification store — identity links and per-contract verification records.

MVP uses SQLite via VerificationStore and get_store(); backend is swappable.
"""

from backend_chaingate.database.database import (
    SQLiteBackend,
    VerificationBackend,
    VerificationStore,
    get_store,
)
from backend_chaingate.database.models import (
    IdentityLink,
    PendingWallet,
    RecordResult,
    StoreStats,
    VerificationRecord,
)

__all__ = [
    "SQLiteBackend",
    "VerificationBackend",
    "VerificationStore",
    "get_store",
    "IdentityLink",
    "PendingWallet",
    "RecordResult",
    "StoreStats",
    "VerificationRecord",
]
