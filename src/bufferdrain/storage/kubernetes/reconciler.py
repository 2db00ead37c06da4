"""Idempotent create and delete of individual Kubernetes objects."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Job, V1Pod
from structlog.stdlib import BoundLogger

from ...constants import REQUEUE_DELAY
from ...exceptions import KubernetesError
from ...models.domain.kubernetes import (
    DesiredState,
    KubernetesModel,
    PropagationPolicy,
    ReconcileResult,
)
from ...timeout import Timeout
from .objects import JobStorage, KubernetesObjectStorage, PodStorage

__all__ = ["ObjectReconciler"]


def _is_owned(current: KubernetesModel, desired: KubernetesModel) -> bool:
    """Check that an existing object carries all labels of the desired one."""
    labels = current.metadata.labels or {}
    wanted = desired.metadata.labels or {}
    return all(labels.get(k) == v for k, v in wanted.items())


class ObjectReconciler:
    """Bring single objects to a desired state of existence.

    Objects are identified by kind, namespace, and name. An object that
    already exists is left as is, since the objects managed here are never
    updated in place. An existing object only counts as ours if it carries
    the labels of the desired object. A worker pod that took over the name of
    a placeholder is therefore never removed, and is never mistaken for the
    placeholder when starting a drain.

    Parameters
    ----------
    job_storage
        Storage for jobs.
    pod_storage
        Storage for pods.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        job_storage: JobStorage,
        pod_storage: PodStorage,
        logger: BoundLogger,
    ) -> None:
        self._job = job_storage
        self._pod = pod_storage
        self._logger = logger

    async def reconcile(
        self, obj: KubernetesModel, state: DesiredState, timeout: Timeout
    ) -> ReconcileResult | None:
        """Create or delete an object so that it matches the desired state.

        Parameters
        ----------
        obj
            Desired object. Only its kind, namespace, name, and labels matter
            when it should be absent.
        state
            Whether the object should exist.
        timeout
            Timeout on operation.

        Returns
        -------
        ReconcileResult or None
            A requeue request if the object could not reach the desired state
            yet, otherwise `None`.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        TypeError
            Raised if the object is of a kind this reconciler does not manage.
        """
        storage = self._storage_for(obj)
        name = obj.metadata.name
        namespace = obj.metadata.namespace
        logger = self._logger.bind(
            kind=storage.kind, name=name, namespace=namespace
        )
        match state:
            case DesiredState.ABSENT:
                current = await storage.read(name, namespace, timeout)
                if not current:
                    return None
                if not _is_owned(current, obj):
                    logger.warning("Object is not ours, leaving it alone")
                    return None
                # Pods have no dependents, but jobs must take their pods along.
                policy = None
                if isinstance(obj, V1Job):
                    policy = PropagationPolicy.BACKGROUND
                await storage.delete(
                    name,
                    namespace,
                    timeout,
                    propagation_policy=policy,
                    uid=current.metadata.uid,
                )
                logger.info(f"Deleted {storage.kind}")
                return None
            case DesiredState.PRESENT:
                current = await storage.read(name, namespace, timeout)
                if current and current.metadata.deletion_timestamp:
                    logger.info("Object is still being deleted, requeuing")
                    return ReconcileResult(requeue_after=REQUEUE_DELAY)
                if current and not _is_owned(current, obj):
                    msg = "Name is taken by another object, requeuing"
                    logger.warning(msg)
                    return ReconcileResult(requeue_after=REQUEUE_DELAY)
                if current:
                    logger.debug("Object already exists")
                    return None
                try:
                    await storage.create(namespace, obj, timeout)
                except KubernetesError as e:
                    if e.status != 409:
                        raise
                    logger.info("Object created concurrently, requeuing")
                    return ReconcileResult(requeue_after=REQUEUE_DELAY)
                logger.info(f"Created {storage.kind}")
                return None

    def _storage_for(
        self, obj: KubernetesModel
    ) -> KubernetesObjectStorage[V1Job] | KubernetesObjectStorage[V1Pod]:
        match obj:
            case V1Job():
                return self._job
            case V1Pod():
                return self._pod
            case _:
                raise TypeError(f"Unsupported object {type(obj).__name__}")
