"""Timeouts for the steps of a drain pass."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a single deadline shared by a sequence of Kubernetes calls.

    A drain pass uses one timeout for observing the namespace and a fresh one
    for each volume it acts on, so a volume whose job is slow to delete does
    not eat into the time of the volumes after it. Each Kubernetes call asks
    this object how much time is left and uses that as its request timeout.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout.
    """

    def __init__(self, operation: str, timeout: timedelta) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = datetime.now(tz=UTC)

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout and translate `TimeoutError`.

        Raises
        ------
        ControllerTimeoutError
            Raised if the enclosed block did not finish before the deadline.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except (ControllerTimeoutError, TimeoutError) as e:
            raise self._error() from e

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float
            Time remaining in the timeout in seconds.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has expired.
        """
        now = datetime.now(tz=UTC)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise self._error(now)
        return left

    def _error(self, now: datetime | None = None) -> ControllerTimeoutError:
        return ControllerTimeoutError(
            self._operation,
            started_at=self._start,
            failed_at=now or datetime.now(tz=UTC),
        )
