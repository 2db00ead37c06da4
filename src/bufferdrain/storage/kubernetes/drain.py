"""Observation of buffer volumes, worker pods, and drain jobs."""

from __future__ import annotations

from kubernetes_asyncio.client import V1PodSpec
from structlog.stdlib import BoundLogger

from ...constants import DRAINABLE_LABEL, DRAINABLE_OPT_OUT
from ...models.domain.drain import (
    DrainObservation,
    DrainStatus,
    VolumeObservation,
)
from ...timeout import Timeout
from .objects import JobStorage, PodStorage
from .pvc import PersistentVolumeClaimStorage
from .statefulset import ReplicaCountProvider

__all__ = ["DrainStorage"]


def _claim_for(spec: V1PodSpec | None, volume_name: str) -> str | None:
    """Return the claim mounted through the named pod volume, if any."""
    if not spec or not spec.volumes:
        return None
    for volume in spec.volumes:
        if volume.name == volume_name and volume.persistent_volume_claim:
            return volume.persistent_volume_claim.claim_name
    return None


def _selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class DrainStorage:
    """Gather everything a drain pass needs to decide, in one place.

    Only reads from Kubernetes. Any failure propagates so that a pass never
    acts on a partial view.

    Parameters
    ----------
    pvc_storage
        Storage for persistent volume claims.
    pod_storage
        Storage for pods.
    job_storage
        Storage for jobs.
    replicas
        Source of the desired replica count.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pvc_storage: PersistentVolumeClaimStorage,
        pod_storage: PodStorage,
        job_storage: JobStorage,
        replicas: ReplicaCountProvider,
        logger: BoundLogger,
    ) -> None:
        self._pvc = pvc_storage
        self._pod = pod_storage
        self._job = job_storage
        self._replicas = replicas
        self._logger = logger

    async def observe(
        self,
        namespace: str,
        *,
        statefulset: str,
        buffer_volume: str,
        worker_labels: dict[str, str],
        drainer_labels: dict[str, str],
        placeholder_labels: dict[str, str],
        timeout: Timeout,
    ) -> DrainObservation:
        """Take a snapshot of the buffer volumes and their drain jobs.

        Parameters
        ----------
        namespace
            Namespace of the workers.
        statefulset
            Name of the worker StatefulSet.
        buffer_volume
            Name of the buffer volume claim template, which is also the name
            of the pod volume referencing the claim.
        worker_labels
            Labels of worker pods and their claims.
        drainer_labels
            Labels of drain jobs.
        placeholder_labels
            Labels of placeholder pods.
        timeout
            Timeout on the whole observation.

        Returns
        -------
        DrainObservation
            Snapshot of the claims eligible for draining.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised if any object could not be listed or read.
        """
        pvcs = await self._pvc.list(
            namespace, timeout, label_selector=_selector(worker_labels)
        )
        pods = await self._pod.list(
            namespace, timeout, label_selector=_selector(worker_labels)
        )
        in_use = set()
        for pod in pods:
            if claim := _claim_for(pod.spec, buffer_volume):
                in_use.add(claim)

        # Claims of desired ordinals stay reserved for scale-up.
        replicas = await self._replicas.get_replica_count(timeout)
        for ordinal in range(replicas):
            in_use.add(f"{buffer_volume}-{statefulset}-{ordinal}")

        jobs = await self._job.list(
            namespace, timeout, label_selector=_selector(drainer_labels)
        )
        jobs_by_claim = {}
        for job in jobs:
            template = job.spec.template if job.spec else None
            spec = template.spec if template else None
            if claim := _claim_for(spec, buffer_volume):
                jobs_by_claim[claim] = job

        # Placeholders carry the pod name of the worker whose ordinal they
        # reserve, so the claim name follows the claim template convention.
        placeholders = await self._pod.list(
            namespace, timeout, label_selector=_selector(placeholder_labels)
        )
        reserved = {f"{buffer_volume}-{p.metadata.name}" for p in placeholders}

        volumes = []
        for pvc in pvcs:
            labels = pvc.metadata.labels or {}
            if labels.get(DRAINABLE_LABEL) == DRAINABLE_OPT_OUT:
                continue
            name = pvc.metadata.name
            status = DrainStatus.from_labels(labels)
            volume = VolumeObservation(
                name=name,
                drained=status == DrainStatus.DRAINED,
                in_use=name in in_use,
                job=jobs_by_claim.get(name),
                resource_version=pvc.metadata.resource_version,
                placeholder=name in reserved,
            )
            volumes.append(volume)
        self._logger.debug(
            "Observed buffer volumes",
            volumes=[v.name for v in volumes],
            in_use=sorted(in_use),
            jobs=sorted(jobs_by_claim),
            placeholders=sorted(reserved),
            replicas=replicas,
        )
        return DrainObservation(volumes=volumes, replicas=replicas)
