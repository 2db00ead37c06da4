"""Drive buffer volumes through the drain lifecycle."""

from __future__ import annotations

import asyncio
from collections import Counter

from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..config import Config
from ..exceptions import DrainFailedError, KubernetesError
from ..models.domain.drain import (
    DrainAction,
    DrainPassResult,
    DrainStatus,
    VolumeObservation,
    VolumeResult,
    decide,
)
from ..models.domain.kubernetes import (
    DesiredState,
    PropagationPolicy,
    ReconcileResult,
)
from ..storage.kubernetes.drain import DrainStorage
from ..storage.kubernetes.objects import JobStorage
from ..storage.kubernetes.pvc import PersistentVolumeClaimStorage
from ..storage.kubernetes.reconciler import ObjectReconciler
from ..timeout import Timeout
from .builder.drain import DrainBuilder

__all__ = ["DrainCoordinator"]


class DrainCoordinator:
    """Decide and apply the drain action for every buffer volume.

    Each pass observes the namespace once and then handles the volumes one at
    a time. A failure affecting one volume is recorded in its result and does
    not stop the others.

    Parameters
    ----------
    config
        Coordinator configuration.
    drain_builder
        Builder for drain jobs and placeholder pods.
    drain_storage
        Observation of buffer volumes and drain jobs.
    job_storage
        Storage for drain jobs.
    pvc_storage
        Storage for buffer volume claims.
    reconciler
        Reconciler for placeholder pods and drain jobs.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        drain_builder: DrainBuilder,
        drain_storage: DrainStorage,
        job_storage: JobStorage,
        pvc_storage: PersistentVolumeClaimStorage,
        reconciler: ObjectReconciler,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._builder = drain_builder
        self._storage = drain_storage
        self._job = job_storage
        self._pvc = pvc_storage
        self._reconciler = reconciler
        self._slack = slack_client
        self._logger = logger
        self._lock = asyncio.Lock()

    async def reconcile(self) -> DrainPassResult:
        """Run one drain pass.

        Observing the namespace and acting on each volume get separate
        timeouts, so a volume that is slow to act on cannot starve the others.

        Returns
        -------
        DrainPassResult
            Per-volume outcome of the pass. Errors of individual volumes are
            recorded there rather than raised.

        Raises
        ------
        ControllerTimeoutError
            Raised if observing the namespace did not finish in time. No
            changes have been made in that case.
        KubernetesError
            Raised if observing the namespace failed. No changes have been
            made in that case.
        """
        workload = self._config.workload
        if not self._config.drain.enabled or not workload.buffer_volume:
            self._logger.info("Buffer draining is disabled")
            return DrainPassResult()

        async with self._lock:
            timeout = Timeout("Drain observation", self._config.drain.timeout)
            async with timeout.enforce():
                observation = await self._storage.observe(
                    self._config.namespace,
                    statefulset=workload.name,
                    buffer_volume=workload.buffer_volume.name,
                    worker_labels=workload.worker_labels,
                    drainer_labels=workload.drainer_labels,
                    placeholder_labels=workload.placeholder_labels,
                    timeout=timeout,
                )
            result = DrainPassResult()
            for volume in observation.volumes:
                result.volumes.append(await self._process(volume))

        actions = Counter(r.action.value for r in result.volumes)
        self._logger.info(
            "Drain pass complete",
            replicas=observation.replicas,
            actions=dict(actions),
            errors=sum(1 for r in result.volumes if r.error),
            requeue=result.requeue is not None,
        )
        return result

    async def _process(self, volume: VolumeObservation) -> VolumeResult:
        """Apply the action chosen for one volume.

        Any exception is recorded in the result of the volume, so that a
        problem with one volume never stops the rest of the pass.
        """
        logger = self._logger.bind(volume=volume.name)
        action = decide(volume)
        result = VolumeResult(volume=volume.name, action=action)
        operation = f"Drain of {volume.name}"
        timeout = Timeout(operation, self._config.drain.timeout)
        try:
            async with timeout.enforce():
                result.requeue = await self._apply(volume, action, timeout)
        except DrainFailedError as e:
            logger.error("Draining volume failed", attempts=e.attempts)
            result.error = e
            await self._maybe_post_slack_exception(e)
        except KubernetesError as e:
            if e.is_conflict:
                msg = "Volume changed since it was observed"
                logger.warning(msg, action=action.value, error=str(e))
            else:
                logger.exception(f"Failed to {action.value} volume")
            result.error = e
            await self._maybe_post_slack_exception(e)
        except Exception as e:
            logger.exception(f"Failed to {action.value} volume")
            result.error = e
            await self._maybe_post_slack_exception(e)
        return result

    async def _apply(
        self, volume: VolumeObservation, action: DrainAction, timeout: Timeout
    ) -> ReconcileResult | None:
        """Perform an action, returning any requeue request."""
        logger = self._logger.bind(volume=volume.name)
        match action:
            case DrainAction.RECLAIM:
                logger.info("Removing drained label from volume in use")
                await self._set_status(volume, None, timeout)
                return ReconcileResult()
            case DrainAction.FINISH:
                logger.info("Drain job completed, marking volume as drained")
                await self._set_status(volume, DrainStatus.DRAINED, timeout)
                await self._delete_job(
                    volume, PropagationPolicy.BACKGROUND, timeout
                )
                await self._remove_placeholder(volume, timeout)
                return ReconcileResult()
            case DrainAction.CANCEL:
                logger.info("Volume is in use, cancelling drain job")
                await self._delete_job(
                    volume, PropagationPolicy.FOREGROUND, timeout
                )
                await self._remove_placeholder(volume, timeout)
            case DrainAction.REPORT_FAILURE:
                raise DrainFailedError(
                    volume.name,
                    namespace=self._config.namespace,
                    job=volume.job.metadata.name if volume.job else "",
                    attempts=volume.attempts,
                )
            case DrainAction.WAIT:
                logger.info("Drain job has not completed yet")
            case DrainAction.START:
                logger.info("Starting drain job for volume")
                return await self._start(volume, timeout)
            case DrainAction.CLEANUP:
                logger.info("Removing placeholder left without a drain job")
                await self._remove_placeholder(volume, timeout)
            case DrainAction.NONE:
                logger.debug("Nothing to do for volume")
        return None

    async def _delete_job(
        self,
        volume: VolumeObservation,
        policy: PropagationPolicy,
        timeout: Timeout,
    ) -> None:
        """Delete the drain job of a volume.

        Foreground deletion waits until the job and its pods are gone, so
        that the worker is never started next to a running drain pod.
        """
        if not volume.job:
            return
        wait = policy == PropagationPolicy.FOREGROUND
        await self._job.delete(
            volume.job.metadata.name,
            self._config.namespace,
            timeout,
            wait=wait,
            propagation_policy=policy,
        )

    async def _remove_placeholder(
        self, volume: VolumeObservation, timeout: Timeout
    ) -> None:
        placeholder = self._builder.build_placeholder(volume.name)
        await self._reconciler.reconcile(
            placeholder, DesiredState.ABSENT, timeout
        )

    async def _set_status(
        self,
        volume: VolumeObservation,
        status: DrainStatus | None,
        timeout: Timeout,
    ) -> None:
        await self._pvc.patch_drain_status(
            volume.name,
            self._config.namespace,
            status,
            resource_version=volume.resource_version,
            timeout=timeout,
        )

    async def _start(
        self, volume: VolumeObservation, timeout: Timeout
    ) -> ReconcileResult | None:
        """Reserve the ordinal of a volume and start its drain job.

        Both objects are built before anything is created, so a build error
        leaves nothing behind.
        """
        objects = self._builder.build(volume.name)
        result = await self._reconciler.reconcile(
            objects.placeholder, DesiredState.PRESENT, timeout
        )
        if result:
            return result
        return await self._reconciler.reconcile(
            objects.job, DesiredState.PRESENT, timeout
        )

    async def _maybe_post_slack_exception(self, exc: Exception) -> None:
        """Post an exception to Slack if Slack reporting is configured."""
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)
