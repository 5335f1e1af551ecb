"""
Auto-verify worker: periodic batch cycles over pending wallets.

A timer thread fires immediately and then every interval, handing each tick to
a fresh cycle thread so the timer itself never blocks. At most one cycle runs at
a time; a tick arriving while a cycle is running is dropped (logged, not queued).

One cycle: fetch up to max_batch_size pending wallets (oldest link first), split
into chunks of max_concurrent, run each chunk on a bounded thread pool and wait
for every task before pausing delay_between_chunks and starting the next chunk.
Exceptions are isolated per wallet; the running flag is always cleared.

Usage: python -m backend_chaingate.agent_worker.runtime
"""

from __future__ import annotations

import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable

from backend_chaingate.agent_worker.worker import UserVerificationResult, verify_pending_wallet
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import Settings
from backend_chaingate.core.exceptions import StoreError
from backend_chaingate.database import PendingWallet, VerificationStore
from backend_chaingate.matching import MatchingEngine
from backend_chaingate.notifications import RoleNotificationSink
from backend_chaingate.scheduler import SchedulerConfig, get_next_batch

logger = get_logger(__name__)

SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0


@dataclass
class CycleStats:
    """Process-lifetime counters; mutated only by the worker."""

    total_runs: int = 0
    total_checked: int = 0
    total_verified: int = 0
    last_run: float | None = None
    """Unix timestamp when the last executed cycle started."""
    currently_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CycleResult:
    cycle: int
    checked: int = 0
    newly_verified: int = 0
    errors: int = 0
    chunks: int = 0
    duration_sec: float = 0.0


class AutoVerifyWorker:
    """Batch scheduler; store, engine and sink are injected."""

    def __init__(
        self,
        settings: Settings,
        store: VerificationStore,
        engine: MatchingEngine,
        sink: RoleNotificationSink,
        *,
        scheduler_config: SchedulerConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._engine = engine
        self._sink = sink
        self._config = scheduler_config or SchedulerConfig.from_settings(settings)
        self._sleep = sleep
        self._clock = clock
        self._run_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = CycleStats()
        self._stop_event = threading.Event()
        self._timer_thread: threading.Thread | None = None
        self._cycle_threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._last_backup = clock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def stats_snapshot(self) -> CycleStats:
        with self._stats_lock:
            return replace(self._stats)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleResult | None:
        """
        Execute one cycle. Returns None without doing anything when another
        cycle is already running.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.debug("auto_verify_already_running")
            return None
        started = time.monotonic()
        with self._stats_lock:
            self._stats.currently_running = True
            self._stats.total_runs += 1
            self._stats.last_run = self._clock()
            result = CycleResult(cycle=self._stats.total_runs)
        try:
            chunks = get_next_batch(self._store, self._config)
            result.chunks = len(chunks)
            if chunks:
                with ThreadPoolExecutor(
                    max_workers=self._config.max_concurrent,
                    thread_name_prefix="auto-verify",
                ) as pool:
                    for index, chunk in enumerate(chunks):
                        self._run_chunk(pool, chunk, result)
                        if index < len(chunks) - 1 and self._config.delay_between_chunks_sec > 0:
                            self._sleep(self._config.delay_between_chunks_sec)
            result.duration_sec = round(time.monotonic() - started, 3)
            logger.info(
                "auto_verify_cycle_done",
                cycle=result.cycle,
                checked=result.checked,
                newly_verified=result.newly_verified,
                errors=result.errors,
                chunks=result.chunks,
                duration_sec=result.duration_sec,
            )
        except Exception as e:
            logger.exception("auto_verify_cycle_failed", cycle=result.cycle, error=str(e))
        finally:
            with self._stats_lock:
                self._stats.total_checked += result.checked
                self._stats.total_verified += result.newly_verified
                self._stats.currently_running = False
            self._run_lock.release()
        return result

    def _run_chunk(
        self,
        pool: ThreadPoolExecutor,
        chunk: list[PendingWallet],
        result: CycleResult,
    ) -> None:
        """Submit every wallet of the chunk and wait for all of them to settle."""
        futures = {pool.submit(self._verify_user, pending): pending for pending in chunk}
        wait(list(futures))
        for fut, pending in futures.items():
            result.checked += 1
            exc = fut.exception()
            if exc is not None:
                result.errors += 1
                logger.warning(
                    "auto_verify_wallet_failed",
                    wallet_id=pending.wallet,
                    error=str(exc),
                )
                continue
            outcome: UserVerificationResult = fut.result()
            result.errors += outcome.error_count
            if outcome.newly_verified:
                result.newly_verified += 1

    def _verify_user(self, pending: PendingWallet) -> UserVerificationResult:
        return verify_pending_wallet(pending, self._engine, self._store, self._sink, self._settings)

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def trigger(self) -> threading.Thread:
        """Run a cycle on its own thread; a no-op cycle if one is already running."""
        thread = threading.Thread(target=self.run_cycle, name="auto-verify-cycle", daemon=True)
        with self._threads_lock:
            self._cycle_threads = [t for t in self._cycle_threads if t.is_alive()]
            self._cycle_threads.append(thread)
            thread.start()
        return thread

    def start(self) -> None:
        """Start the periodic timer thread (first tick immediately)."""
        if self._timer_thread is not None and self._timer_thread.is_alive():
            return
        self._stop_event.clear()
        self._timer_thread = threading.Thread(target=self._timer_loop, name="auto-verify-timer", daemon=True)
        self._timer_thread.start()
        logger.info(
            "auto_verify_worker_started",
            interval_sec=self._settings.interval_sec,
            max_batch_size=self._config.max_batch_size,
            max_concurrent=self._config.max_concurrent,
        )

    def stop(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT_SEC) -> None:
        """
        Stop ticking and wait for in-flight cycles, so callers may close the
        chain and sink clients afterwards. timeout bounds the whole wait.
        """
        deadline = time.monotonic() + timeout
        self._stop_event.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout=timeout)
            if self._timer_thread.is_alive():
                logger.warning("auto_verify_timer_shutdown_timeout", timeout_sec=timeout)
            self._timer_thread = None
        with self._threads_lock:
            cycles, self._cycle_threads = self._cycle_threads, []
        for thread in cycles:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                logger.warning("auto_verify_cycle_shutdown_timeout", timeout_sec=timeout)
        logger.info("auto_verify_worker_stopped", **self.stats_snapshot().to_dict())

    def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            self.trigger()
            self._maybe_backup()
            self._stop_event.wait(self._settings.interval_sec)

    def _maybe_backup(self) -> None:
        if not self._settings.backup_enabled:
            return
        now = self._clock()
        if now - self._last_backup < self._settings.backup_interval_sec:
            return
        self._last_backup = now
        stamp = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y%m%d-%H%M%S")
        dest = self._settings.db_path.parent / "backups" / f"{self._settings.db_path.stem}-{stamp}.db"
        try:
            self._store.backup_to(dest)
        except StoreError as e:
            logger.error("store_backup_failed", path=str(dest), error=str(e))


def run_loop(worker: AutoVerifyWorker) -> None:
    """Run the worker timer until SIGINT/SIGTERM."""
    shutdown = threading.Event()

    def request_shutdown(*args: Any) -> None:
        shutdown.set()

    try:
        signal.signal(signal.SIGTERM, request_shutdown)
    except (AttributeError, ValueError):
        # Windows or not on the main thread
        pass

    worker.start()
    try:
        while not shutdown.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("runtime_shutdown_signal")
    finally:
        worker.stop()


def main() -> int:
    """CLI entrypoint: load settings from env and run the worker without the API."""
    from backend_chaingate.config import load_settings
    from backend_chaingate.services import build_services

    try:
        services = build_services(load_settings())
    except Exception as e:
        logger.exception("runtime_fatal", error=str(e))
        return 1
    try:
        run_loop(services.worker)
    finally:
        services.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
