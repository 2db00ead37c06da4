"""Storage layer for persistent volume claims."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1PersistentVolumeClaim,
)
from structlog.stdlib import BoundLogger

from ...constants import DRAIN_STATUS_LABEL
from ...models.domain.drain import DrainStatus
from ...timeout import Timeout
from .objects import KubernetesObjectStorage

__all__ = ["PersistentVolumeClaimStorage"]


class PersistentVolumeClaimStorage(
    KubernetesObjectStorage[V1PersistentVolumeClaim]
):
    """Storage layer for ``PersistentVolumeClaim`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=self._api.create_namespaced_persistent_volume_claim,
            delete_method=self._api.delete_namespaced_persistent_volume_claim,
            list_method=self._api.list_namespaced_persistent_volume_claim,
            read_method=self._api.read_namespaced_persistent_volume_claim,
            object_type=V1PersistentVolumeClaim,
            kind="PersistentVolumeClaim",
            logger=logger,
        )

    async def patch_drain_status(
        self,
        name: str,
        namespace: str,
        status: DrainStatus | None,
        *,
        resource_version: str | None,
        timeout: Timeout,
    ) -> None:
        """Set or remove the drain status label of a claim.

        The patch carries the resource version observed when the claim was
        listed, so the API server rejects it with a conflict if anything else
        modified the claim in the meantime. A claim that no longer exists is
        silently ignored.

        Parameters
        ----------
        name
            Name of the claim.
        namespace
            Namespace of the claim.
        status
            New drain status, or `None` to remove the label.
        resource_version
            Resource version of the claim when it was observed.
        timeout
            Timeout on operation.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            status 409 if the claim changed since it was observed.
        """
        path = "/metadata/labels/" + DRAIN_STATUS_LABEL.replace("/", "~1")
        patch: list[dict[str, str]] = []
        if resource_version:
            patch.append(
                {
                    "op": "replace",
                    "path": "/metadata/resourceVersion",
                    "value": resource_version,
                }
            )
        if status:
            patch.append({"op": "add", "path": path, "value": status.value})
        else:
            patch.append({"op": "remove", "path": path})
        self._logger.debug(
            "Patching drain status",
            name=name,
            namespace=namespace,
            status=status.value if status else None,
        )
        try:
            await self._api.patch_namespaced_persistent_volume_claim(
                name, namespace, patch, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return
            msg = "Error patching object"
            raise self._error(msg, e, namespace, name) from e
