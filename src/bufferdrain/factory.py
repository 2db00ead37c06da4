"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .services.builder.drain import DrainBuilder
from .services.drain import DrainCoordinator
from .storage.kubernetes.drain import DrainStorage
from .storage.kubernetes.objects import JobStorage, PodStorage
from .storage.kubernetes.pvc import PersistentVolumeClaimStorage
from .storage.kubernetes.reconciler import ObjectReconciler
from .storage.kubernetes.statefulset import StatefulSetReplicaProvider

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    Holds the process-wide singletons: the shared Kubernetes client, the
    drain coordinator, whose lock keeps passes from overlapping, and the
    background task manager.
    """

    config: Config
    """Drain coordinator configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    drain_coordinator: DrainCoordinator
    """Drain coordinator."""

    background: BackgroundTaskManager
    """Background task manager running periodic passes."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the configuration.

        Parameters
        ----------
        config
            Drain coordinator configuration.

        Returns
        -------
        ProcessContext
            Shared context for a drain coordinator process.
        """
        kubernetes_client = ApiClient()
        logger = structlog.get_logger(__name__)

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), config.name, logger
            )

        namespace = config.namespace
        job_storage = JobStorage(kubernetes_client, logger)
        pod_storage = PodStorage(kubernetes_client, logger)
        pvc_storage = PersistentVolumeClaimStorage(kubernetes_client, logger)
        replicas = StatefulSetReplicaProvider(
            config.workload.name, namespace, kubernetes_client, logger
        )
        drain_coordinator = DrainCoordinator(
            config=config,
            drain_builder=DrainBuilder(
                config.workload, config.drain, namespace, logger
            ),
            drain_storage=DrainStorage(
                pvc_storage=pvc_storage,
                pod_storage=pod_storage,
                job_storage=job_storage,
                replicas=replicas,
                logger=logger,
            ),
            job_storage=job_storage,
            pvc_storage=pvc_storage,
            reconciler=ObjectReconciler(
                job_storage=job_storage, pod_storage=pod_storage, logger=logger
            ),
            slack_client=slack_client,
            logger=logger,
        )
        background = BackgroundTaskManager(
            drain_coordinator=drain_coordinator,
            interval=config.reconcile_interval,
            slack_client=slack_client,
            logger=logger,
        )
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            drain_coordinator=drain_coordinator,
            background=background,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.background.start()

    async def stop(self) -> None:
        """Stop the background tasks."""
        await self.background.stop()


class Factory:
    """Build drain coordinator components.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for drain coordinator components.

        Intended for the command-line interface and the test suite.

        Parameters
        ----------
        config
            Drain coordinator configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger
        self._background_services_started = False

    @property
    def drain_coordinator(self) -> DrainCoordinator:
        """Global drain coordinator, from the `ProcessContext`."""
        return self._context.drain_coordinator

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    async def start_background_services(self) -> None:
        """Start the periodic drain passes."""
        await self._context.start()
        self._background_services_started = True
