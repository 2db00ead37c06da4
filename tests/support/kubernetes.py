"""Mock for the Kubernetes API.

Extends the Safir mock with the parts of the API that the drain coordinator
needs and Safir does not provide.
"""

from __future__ import annotations

import copy
import os
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client import (
    ApiException,
    V1Container,
    V1JobStatus,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodSpec,
    V1PodTemplateSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1Status,
    V1Volume,
)
from safir.datetime import current_datetime
from safir.testing.kubernetes import MockKubernetesApi

from bufferdrain.config import Config

__all__ = [
    "MockDrainKubernetesApi",
    "make_claim",
    "make_worker",
    "patch_kubernetes",
    "record_calls",
]


class MockDrainKubernetesApi(MockKubernetesApi):
    """Mock Kubernetes API for testing.

    Adds JSON patches of persistent volume claim labels that honor a
    ``resourceVersion`` precondition the way the API server does, reads of
    the worker StatefulSet, and job deletions that stay pending until the
    test releases them.
    """

    def __init__(self) -> None:
        super().__init__()
        self._resource_version = 0
        self._statefulsets: dict[tuple[str, str], V1StatefulSet] = {}
        self._held_deletions: set[tuple[str, str]] = set()
        self._pending_deletions: dict[tuple[str, str], dict[str, Any]] = {}

    def bump_claim_for_test(self, namespace: str, name: str) -> None:
        """Simulate another writer modifying a claim."""
        pvc = self._get_object(namespace, "PersistentVolumeClaim", name)
        self._store_claim(namespace, copy.deepcopy(pvc), replace=True)

    def hold_job_deletion_for_test(self, namespace: str, name: str) -> None:
        """Keep a job around after it is deleted until released.

        While held, a deleted job only gets a deletion timestamp, as if its
        pods were still shutting down.
        """
        self._held_deletions.add((namespace, name))

    async def release_job_deletion_for_test(
        self, namespace: str, name: str
    ) -> None:
        """Finish a held job deletion, if one is pending."""
        key = (namespace, name)
        self._held_deletions.discard(key)
        if key in self._pending_deletions:
            options = self._pending_deletions.pop(key)
            await super().delete_namespaced_job(name, namespace, **options)

    def set_deleting_for_test(
        self, kind: str, namespace: str, name: str
    ) -> None:
        """Mark an object as being deleted but not yet gone."""
        obj = copy.deepcopy(self._get_object(namespace, kind, name))
        obj.metadata.deletion_timestamp = current_datetime()
        self._store_object(namespace, kind, name, obj, replace=True)

    def set_job_status_for_test(
        self,
        namespace: str,
        name: str,
        *,
        succeeded: int | None = None,
        failed: int | None = None,
    ) -> None:
        """Update the status of a job as the job controller would."""
        job = copy.deepcopy(self._get_object(namespace, "Job", name))
        job.status = V1JobStatus(
            completion_time=current_datetime() if succeeded else None,
            failed=failed,
            succeeded=succeeded,
        )
        self._store_object(namespace, "Job", name, job, replace=True)

    def set_replicas_for_test(
        self, namespace: str, name: str, replicas: int | None
    ) -> None:
        """Create or update the StatefulSet of the workers."""
        self._statefulsets[(namespace, name)] = V1StatefulSet(
            metadata=V1ObjectMeta(name=name, namespace=namespace),
            spec=V1StatefulSetSpec(
                replicas=replicas,
                selector=V1LabelSelector(match_labels={}),
                service_name=name,
                template=V1PodTemplateSpec(),
            ),
        )

    # JOB API

    async def delete_namespaced_job(
        self, name: str, namespace: str, **kwargs: Any
    ) -> V1Status:
        key = (namespace, name)
        if key not in self._held_deletions:
            return await super().delete_namespaced_job(
                name, namespace, **kwargs
            )
        self._maybe_error("delete_namespaced_job", name, namespace)
        self.set_deleting_for_test("Job", namespace, name)
        options = {
            k: v for k, v in kwargs.items() if k == "propagation_policy"
        }
        self._pending_deletions[key] = options
        return V1Status(code=202)

    # PERSISTENTVOLUMECLAIM API

    async def create_namespaced_persistent_volume_claim(
        self, namespace: str, body: V1PersistentVolumeClaim
    ) -> None:
        self._maybe_error(
            "create_namespaced_persistent_volume_claim", namespace, body
        )
        if not body.metadata.namespace:
            body.metadata.namespace = namespace
        self._store_claim(namespace, body)

    async def patch_namespaced_persistent_volume_claim(
        self,
        name: str,
        namespace: str,
        body: list[dict[str, Any]],
        *,
        _request_timeout: float | None = None,
    ) -> V1PersistentVolumeClaim:
        """Apply a JSON patch to the labels of a claim.

        Only label changes and a ``/metadata/resourceVersion`` precondition
        are supported.
        """
        self._maybe_error(
            "patch_namespaced_persistent_volume_claim", name, namespace, body
        )
        current = self._get_object(namespace, "PersistentVolumeClaim", name)
        pvc = copy.deepcopy(current)
        labels = dict(pvc.metadata.labels or {})
        for change in body:
            path = change["path"]
            if path == "/metadata/resourceVersion":
                if change["value"] != current.metadata.resource_version:
                    msg = f"Claim {namespace}/{name} was modified"
                    raise ApiException(status=409, reason=msg)
                continue
            if not path.startswith("/metadata/labels/"):
                raise AssertionError(f"Unsupported patch path {path}")
            key = path.removeprefix("/metadata/labels/")
            key = key.replace("~1", "/").replace("~0", "~")
            if change["op"] == "remove":
                if key not in labels:
                    msg = f"Label {key} not present"
                    raise ApiException(status=422, reason=msg)
                del labels[key]
            else:
                labels[key] = change["value"]
        pvc.metadata.labels = labels
        self._store_claim(namespace, pvc, replace=True)
        return pvc

    # STATEFULSET API

    async def read_namespaced_stateful_set(
        self,
        name: str,
        namespace: str,
        *,
        _request_timeout: float | None = None,
    ) -> V1StatefulSet:
        self._maybe_error("read_namespaced_stateful_set", name, namespace)
        statefulset = self._statefulsets.get((namespace, name))
        if not statefulset:
            msg = f"StatefulSet {namespace}/{name} not found"
            raise ApiException(status=404, reason=msg)
        return statefulset

    def _store_claim(
        self,
        namespace: str,
        pvc: V1PersistentVolumeClaim,
        *,
        replace: bool = False,
    ) -> None:
        self._resource_version += 1
        pvc.metadata.resource_version = str(self._resource_version)
        name = pvc.metadata.name
        kind = "PersistentVolumeClaim"
        self._store_object(namespace, kind, name, pvc, replace=replace)


def make_claim(
    config: Config,
    ordinal: int,
    *,
    labels: dict[str, str] | None = None,
) -> V1PersistentVolumeClaim:
    """Construct a buffer volume claim as the StatefulSet controller would.

    Parameters
    ----------
    config
        Test configuration.
    ordinal
        Ordinal of the worker owning the claim.
    labels
        Additional labels of the claim.

    Returns
    -------
    kubernetes_asyncio.client.V1PersistentVolumeClaim
        New claim.
    """
    workload = config.workload
    assert workload.buffer_volume
    name = f"{workload.buffer_volume.name}-{workload.name}-{ordinal}"
    return V1PersistentVolumeClaim(
        metadata=V1ObjectMeta(
            name=name,
            namespace=config.namespace,
            labels={**workload.worker_labels, **(labels or {})},
        ),
    )


def make_worker(config: Config, ordinal: int) -> V1Pod:
    """Construct a worker pod mounting the buffer claim of its ordinal."""
    workload = config.workload
    assert workload.buffer_volume
    buffer = workload.buffer_volume.name
    claim = f"{buffer}-{workload.name}-{ordinal}"
    source = V1PersistentVolumeClaimVolumeSource(claim_name=claim)
    return V1Pod(
        metadata=V1ObjectMeta(
            name=f"{workload.name}-{ordinal}",
            namespace=config.namespace,
            labels=workload.worker_labels,
        ),
        spec=V1PodSpec(
            containers=[V1Container(name="worker", image="worker:latest")],
            volumes=[V1Volume(name=buffer, persistent_volume_claim=source)],
        ),
    )


def record_calls(
    mock: MockDrainKubernetesApi, fail: dict[str, int] | None = None
) -> list[str]:
    """Record the Kubernetes API methods called from now on.

    Parameters
    ----------
    mock
        Mock Kubernetes API.
    fail
        Methods that should fail, mapped to the HTTP status to fail with.
        Each fails only the first time it is called.

    Returns
    -------
    list of str
        List to which the name of every called method will be appended.
    """
    calls: list[str] = []
    failures = dict(fail or {})

    def callback(method: str, *args: Any) -> None:
        calls.append(method)
        if status := failures.pop(method, None):
            raise ApiException(status=status, reason="Injected failure")

    mock.error_callback = callback
    return calls


def patch_kubernetes() -> Iterator[MockDrainKubernetesApi]:
    """Replace the Kubernetes API with a mock class.

    Returns
    -------
    MockDrainKubernetesApi
        The mock Kubernetes API object.
    """
    mock_api = MockDrainKubernetesApi()
    with patch.object(config, "load_incluster_config"):
        patchers = []
        for api in ("AppsV1Api", "BatchV1Api", "CoreV1Api"):
            patcher = patch.object(client, api)
            mock_class = patcher.start()
            mock_class.return_value = mock_api
            patchers.append(patcher)
        mock_api_client = Mock(spec=client.ApiClient)
        mock_api_client.close = AsyncMock()
        with patch.object(client, "ApiClient") as mock_client:
            mock_client.return_value = mock_api_client
            os.environ["KUBERNETES_PORT"] = "tcp://10.0.0.1:443"
            yield mock_api
            del os.environ["KUBERNETES_PORT"]
        for patcher in patchers:
            patcher.stop()
