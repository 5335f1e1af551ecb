"""
Batch selection for the auto-verify worker.

Returns the next batch of pending wallets (oldest link first) and splits it into
consecutive chunks of at most max_concurrent wallets. A chunk is the unit the
worker runs in parallel before pausing for the inter-chunk delay.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, TypeVar

from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import (
    DEFAULT_DELAY_BETWEEN_CHECKS_MS,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MAX_CONCURRENT,
    Settings,
)
from backend_chaingate.database import PendingWallet, VerificationStore

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SchedulerConfig:
    """Batch and chunk limits for one cycle."""

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    delay_between_chunks_sec: float = DEFAULT_DELAY_BETWEEN_CHECKS_MS / 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            max_batch_size=settings.max_batch_size,
            max_concurrent=settings.max_concurrent,
            delay_between_chunks_sec=settings.delay_between_chunks_sec,
        )


def partition_chunks(items: Sequence[T], size: int) -> list[list[T]]:
    """Consecutive chunks of at most size items, order preserved."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def get_next_batch(
    store: VerificationStore,
    config: SchedulerConfig | None = None,
) -> list[list[PendingWallet]]:
    """
    Fetch up to max_batch_size pending wallets and chunk them by max_concurrent.
    Returns an empty list when nothing is pending.
    """
    cfg = config or SchedulerConfig()
    pending = store.get_all_pending_wallets(cfg.max_batch_size)
    if not pending:
        return []
    chunks = partition_chunks(pending, cfg.max_concurrent)
    logger.debug(
        "scheduler_next_batch",
        batch_size=len(pending),
        limit=cfg.max_batch_size,
        chunk_count=len(chunks),
        chunk_size=cfg.max_concurrent,
    )
    return chunks
