import threading
from collections import deque
from types import TracebackType


class ProcessGate:
    """A bounded-concurrency gate admitting waiters in arrival order.

    Unlike `threading.Semaphore`, a waiter is only admitted once every thread
    that arrived before it has been admitted, so bursts cannot starve an
    earlier caller.

    Attributes:
        limit (int): Maximum number of holders at any instant.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("ProcessGate limit must be at least 1")
        self.limit = limit
        self._cond = threading.Condition()
        self._active = 0
        self._waiters: deque[object] = deque()

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiters)

    def acquire(self) -> None:
        ticket = object()
        with self._cond:
            self._waiters.append(ticket)
            self._cond.wait_for(
                lambda: self._waiters[0] is ticket and self._active < self.limit
            )
            self._waiters.popleft()
            self._active += 1
            # The next ticket may also fit under the limit.
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._active == 0:
                raise RuntimeError("ProcessGate released more times than acquired")
            self._active -= 1
            self._cond.notify_all()

    def __enter__(self) -> "ProcessGate":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
