"""Desired replica count of the worker StatefulSet."""

from typing import Protocol

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = [
    "ReplicaCountProvider",
    "StatefulSetReplicaProvider",
]


class ReplicaCountProvider(Protocol):
    """Source of the desired number of workers.

    Ordinals below the returned count are reserved: their claims are treated
    as in use even if no worker pod exists yet.
    """

    async def get_replica_count(self, timeout: Timeout) -> int:
        """Return the desired replica count."""


class StatefulSetReplicaProvider:
    """Read the desired replica count from the StatefulSet spec.

    Parameters
    ----------
    name
        Name of the StatefulSet.
    namespace
        Namespace of the StatefulSet.
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(
        self,
        name: str,
        namespace: str,
        api_client: ApiClient,
        logger: BoundLogger,
    ) -> None:
        self._name = name
        self._namespace = namespace
        self._api = client.AppsV1Api(api_client)
        self._logger = logger

    async def get_replica_count(self, timeout: Timeout) -> int:
        """Return ``spec.replicas`` of the StatefulSet.

        An unset replica count means one replica, matching the Kubernetes
        default.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised if the StatefulSet could not be read, including if it does
            not exist.
        """
        try:
            statefulset = await self._api.read_namespaced_stateful_set(
                self._name, self._namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind="StatefulSet",
                namespace=self._namespace,
                name=self._name,
            ) from e
        replicas = statefulset.spec.replicas
        return 1 if replicas is None else replicas
