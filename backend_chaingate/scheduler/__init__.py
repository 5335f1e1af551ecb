# Auto-verify batch selection: pending wallets, oldest first, chunked by concurrency cap.

from backend_chaingate.scheduler.engine import (
    SchedulerConfig,
    get_next_batch,
    partition_chunks,
)

__all__ = [
    "SchedulerConfig",
    "get_next_batch",
    "partition_chunks",
]
