import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import CancelledError, Future
from typing import Protocol

from .constants import APP_NAME, PENDING_FLUSH_DELAY
from .events import ErrorEvent, EventBus
from .ledger import ChangeLedger, ChangeRecord, SyncJob
from .summary import condense_message

logger = logging.getLogger(APP_NAME)


class JobSink(Protocol):
    def submit(self, job: SyncJob) -> "Future[str]": ...


class RepeatingTimer(threading.Thread):
    """Calls `function` every `interval` seconds until cancelled.

    Waiting on an `Event` means `cancel()` takes effect immediately, even in
    the middle of a long interval.
    """

    def __init__(self, interval: float, function: Callable[[], object]):
        super().__init__(name=f"{APP_NAME}-timer", daemon=True)
        self.interval = interval
        self.function = function
        self.finished = threading.Event()

    def cancel(self) -> None:
        self.finished.set()

    def run(self) -> None:
        while not self.finished.wait(self.interval):
            try:
                self.function()
            except Exception:
                logger.exception("SCHEDULER: Timer callback failed")


class SyncScheduler:
    """Periodically flushes the ledger into the executor.

    At most one flush is in flight. A trigger that arrives while busy only
    marks a follow-up as pending; when the in-flight flush completes, one
    re-flush is scheduled after `pending_delay` seconds. A failed flush puts
    its records back into the ledger before the scheduler becomes idle.

    Attributes:
        pending_delay (float): Seconds between completion and a pending re-flush.
    """

    def __init__(
        self,
        ledger: ChangeLedger,
        executor: JobSink,
        composer: Callable[[Sequence[ChangeRecord]], str],
        bus: EventBus | None = None,
        pending_delay: float = PENDING_FLUSH_DELAY,
        timer_factory: Callable[[float, Callable[[], object]], RepeatingTimer] = RepeatingTimer,
    ):
        self._ledger = ledger
        self._executor = executor
        self._composer = composer
        self._bus = bus or EventBus()
        self.pending_delay = pending_delay
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timer: RepeatingTimer | None = None
        self._retry_timer: threading.Timer | None = None
        self._interval_minutes: float | None = None
        self._busy = False
        self._pending = False

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def interval_minutes(self) -> float | None:
        return self._interval_minutes

    def start(self, interval_minutes: float) -> None:
        """Arms the repeating flush timer, replacing any existing one.

        Raises:
            ValueError: If the interval is not positive.
        """
        if interval_minutes <= 0:
            raise ValueError(f"Flush interval must be positive, got {interval_minutes}")

        with self._lock:
            self._cancel_timers()
            self._interval_minutes = interval_minutes
            self._timer = self._timer_factory(interval_minutes * 60, self.flush)
            self._timer.start()

        logger.info(f"SCHEDULER: Started with a frequency of {interval_minutes:g} minutes.")

    def stop(self) -> None:
        """Cancels future flushes. An in-flight flush is left to finish."""
        with self._lock:
            was_running = self._timer is not None
            self._cancel_timers()
        if was_running:
            logger.info("SCHEDULER: Stopped.")

    def update_frequency(self, interval_minutes: float) -> None:
        self.stop()
        self.start(interval_minutes)
        logger.info(f"SCHEDULER: Updated frequency to {interval_minutes:g} minutes.")

    def _cancel_timers(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Blocks until no flush is in flight. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._busy, timeout)

    def flush(self) -> "Future[str] | None":
        """Snapshots the ledger and hands the batch to the executor.

        Returns:
            Future[str] | None: The executor's future, or None when there was
            nothing to do or a flush is already in flight.
        """
        with self._lock:
            if self._ledger.size() == 0:
                logger.info("SCHEDULER: No changes detected.")
                return None
            if self._busy:
                self._pending = True
                logger.info("SCHEDULER: Sync already in progress, queuing changes.")
                return None
            self._busy = True
            records = self._ledger.snapshot_and_clear()

        try:
            message = self._composer(records)
            job = SyncJob(records=tuple(records), message=message)
            future = self._executor.submit(job)
        except Exception as e:
            logger.error(f"SCHEDULER: Failed to prepare sync. {e}")
            self._ledger.restore(records)
            self._bus.publish(ErrorEvent(e))
            self._finish()
            return None

        logger.info(f"FLUSH: {len(records)} changes submitted.")
        future.add_done_callback(lambda f: self._on_complete(job, f))
        return future

    def _on_complete(self, job: SyncJob, future: "Future[str]") -> None:
        try:
            error = future.exception()
        except CancelledError as e:
            error = e

        if error is not None:
            # Executor already logged and reported the failure itself.
            self._ledger.restore(job.records)
            logger.warning(
                f"SCHEDULER: Sync failed; {len(job.records)} changes returned to the ledger."
            )
        else:
            logger.info(
                f"SCHEDULER: Committed changes with message "
                f"\"{condense_message(job.message)}\" ({future.result()})."
            )

        self._finish()

    def _finish(self) -> None:
        with self._lock:
            self._busy = False
            if self._pending:
                self._pending = False
                if self._timer is not None:
                    logger.info("SCHEDULER: Processing pending changes...")
                    self._retry_timer = threading.Timer(self.pending_delay, self.flush)
                    self._retry_timer.daemon = True
                    self._retry_timer.start()
            self._idle.notify_all()
