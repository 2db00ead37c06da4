"""Background execution of drain passes."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .constants import REQUEUE_DELAY
from .services.drain import DrainCoordinator

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Run drain passes periodically in the background.

    A pass runs on every interval. When a pass asks to be requeued, because
    it changed a label or found an object still being deleted, the next pass
    runs after a short delay instead. Passes never overlap.

    Parameters
    ----------
    drain_coordinator
        Drain coordinator whose passes to run.
    interval
        Interval between passes.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        drain_coordinator: DrainCoordinator,
        interval: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._coordinator = drain_coordinator
        self._interval = interval
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None

    @property
    def running(self) -> bool:
        """Whether the background tasks are running."""
        return self._scheduler is not None

    async def start(self) -> None:
        """Start the drain loop."""
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        self._logger.info("Starting background tasks")
        await self._scheduler.spawn(self._loop())

    async def stop(self) -> None:
        """Stop the drain loop."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        await self._scheduler.close()
        self._scheduler = None

    async def _loop(self) -> None:
        """Run drain passes forever.

        Errors are logged and reported, and the loop continues after the
        normal delay, which gives whatever caused the problem time to be
        resolved.
        """
        while True:
            start = current_datetime(microseconds=True)
            interval = self._interval
            try:
                result = await self._coordinator.reconcile()
            except Exception as e:
                elapsed = current_datetime(microseconds=True) - start
                msg = "Uncaught exception running drain pass"
                self._logger.exception(msg, delay=elapsed.total_seconds())
                await self._maybe_post_slack_exception(e)
            else:
                if (requeue := result.requeue) and requeue.requeue:
                    interval = requeue.requeue_after or REQUEUE_DELAY
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() < 1 and interval == self._interval:
                msg = "Drain pass is running continuously"
                self._logger.warning(msg)
            await asyncio.sleep(max(delay.total_seconds(), 0))

    async def _maybe_post_slack_exception(self, exc: Exception) -> None:
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)
