import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field


@dataclass
class ScheduledRetry:
    submission_id: str
    attempt: int
    delay: float
    cancelled: bool = field(default=False, init=False)

    def cancel(self) -> None:
        self.cancelled = True


class RetryScheduler:
    """
    Deferred retry timers with a cancel token per handle.

    The sleep function is injectable so tests can run retries without waiting.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._sleep = sleep
        self._handles: dict[str, ScheduledRetry] = {}

    def schedule(self, submission_id: str, attempt: int, delay: float) -> ScheduledRetry:
        handle = ScheduledRetry(submission_id=submission_id, attempt=attempt, delay=delay)
        self._handles[submission_id] = handle
        return handle

    def cancel(self, submission_id: str) -> bool:
        handle = self._handles.pop(submission_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    async def wait(self, handle: ScheduledRetry) -> bool:
        """Sleep out the delay; False means the retry was cancelled meanwhile."""
        try:
            if not handle.cancelled:
                await self._sleep(handle.delay)
        finally:
            if self._handles.get(handle.submission_id) is handle:
                del self._handles[handle.submission_id]
        return not handle.cancelled
