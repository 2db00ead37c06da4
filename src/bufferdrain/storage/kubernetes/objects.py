"""Generic storage for the namespaced objects the coordinator touches.

`KubernetesObjectStorage` wraps the generated API methods of one object kind.
Kind-specific subclasses pick the methods; everything else (logging, request
timeouts, exception conversion, waiting for deletion) lives here.
"""

import math
from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1DeleteOptions,
    V1Job,
    V1Pod,
    V1Preconditions,
)
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import (
    KubernetesModel,
    PropagationPolicy,
    WatchEventType,
)
from ...timeout import Timeout

__all__ = [
    "JobStorage",
    "KubernetesObjectStorage",
    "PodStorage",
]


class KubernetesObjectStorage[T: KubernetesModel]:
    """Create, read, list, and delete objects of one kind.

    Every call passes the time left in the caller's `Timeout` as the request
    timeout, so a slow API server cannot stretch a drain pass beyond its
    deadline.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list this type of object. Must support the watch API.
    read_method
        Method to read this type of object.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._create = create_method
        self._delete = delete_method
        self._list = list_method
        self._read = read_method
        self._type = object_type
        self._kind = kind
        self._logger = logger

    @property
    def kind(self) -> str:
        """Kubernetes kind managed by this storage."""
        return self._kind

    async def create(self, namespace: str, body: T, timeout: Timeout) -> None:
        """Create an object.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            status 409 if an object with that name already exists.
        """
        name = body.metadata.name
        self._logger.debug(
            f"Creating {self._kind}", name=name, namespace=namespace
        )
        try:
            await self._create(
                namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            msg = "Error creating object"
            raise self._error(msg, e, namespace, name) from e

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
        uid: str | None = None,
        wait: bool = False,
    ) -> None:
        """Delete an object. An object that does not exist is not an error.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on the deletion, including any wait for it to finish.
        propagation_policy
            How to handle dependent objects, such as the pods of a job.
        uid
            If given, only delete the object if it still has this UID, so a
            different object that took over the name is left alone.
        wait
            If set, return only once the object is gone. With foreground
            propagation this means its dependents are gone as well.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        options: dict[str, Any] = {"_request_timeout": timeout.left()}
        body = None
        if propagation_policy:
            options["propagation_policy"] = propagation_policy.value
        if uid:
            body = V1DeleteOptions(preconditions=V1Preconditions(uid=uid))
        self._logger.debug(
            f"Deleting {self._kind}",
            name=name,
            namespace=namespace,
            propagation_policy=options.get("propagation_policy"),
        )
        try:
            await self._delete(name, namespace, body=body, **options)
        except ApiException as e:
            if e.status == 404:
                return
            msg = "Error deleting object"
            raise self._error(msg, e, namespace, name) from e
        if wait:
            await self.wait_for_deletion(name, namespace, timeout)

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List objects in a namespace, optionally filtered by labels.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        options: dict[str, Any] = {"_request_timeout": timeout.left()}
        if label_selector:
            options["label_selector"] = label_selector
        try:
            result = await self._list(namespace, **options)
        except ApiException as e:
            raise self._error("Error listing objects", e, namespace) from e
        return result.items

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> T | None:
        """Read an object, returning `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._read(
                name, namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            msg = "Error reading object"
            raise self._error(msg, e, namespace, name) from e

    async def wait_for_deletion(
        self, name: str, namespace: str, timeout: Timeout
    ) -> None:
        """Wait until an object no longer exists.

        The object is read and then watched from the resource version that
        was read. Whenever the watch ends without seeing the deletion, the
        object is read again, so a deletion missed while restarting the
        watch is still noticed.

        Raises
        ------
        ControllerTimeoutError
            Raised if the object still exists when the timeout expires.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        logger = self._logger.bind(
            kind=self._kind, name=name, namespace=namespace
        )
        async with timeout.enforce():
            while obj := await self.read(name, namespace, timeout):
                version = obj.metadata.resource_version
                logger.debug("Waiting for deletion", resource_version=version)
                await self._watch_for_deletion(
                    name, namespace, version, timeout
                )
        logger.debug(f"{self._kind} was deleted")

    async def _watch_for_deletion(
        self,
        name: str,
        namespace: str,
        resource_version: str,
        timeout: Timeout,
    ) -> None:
        """Watch one object until it is deleted or the watch ends.

        An expired resource version ends the watch quietly, since the caller
        reads the object again anyway.
        """
        left = timeout.left()
        watch = Watch(return_type=self._type)
        try:
            stream = watch.stream(
                self._list,
                namespace,
                field_selector=f"metadata.name={name}",
                resource_version=resource_version,
                timeout_seconds=math.ceil(left),
                _request_timeout=left,
            )
            async with stream as events:
                async for event in events:
                    if WatchEventType(event["type"]) == WatchEventType.DELETED:
                        return
        except ApiException as e:
            if e.status == 410:
                return
            msg = "Error watching object"
            raise self._error(msg, e, namespace, name) from e
        finally:
            await watch.close()

    def _error(
        self,
        message: str,
        exc: ApiException,
        namespace: str,
        name: str | None = None,
    ) -> KubernetesError:
        return KubernetesError.from_exception(
            message, exc, kind=self._kind, namespace=namespace, name=name
        )


class JobStorage(KubernetesObjectStorage[V1Job]):
    """Storage for drain jobs."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.BatchV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_job,
            delete_method=api.delete_namespaced_job,
            list_method=api.list_namespaced_job,
            read_method=api.read_namespaced_job,
            object_type=V1Job,
            kind="Job",
            logger=logger,
        )


class PodStorage(KubernetesObjectStorage[V1Pod]):
    """Storage for worker and placeholder pods."""

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_pod,
            delete_method=api.delete_namespaced_pod,
            list_method=api.list_namespaced_pod,
            read_method=api.read_namespaced_pod,
            object_type=V1Pod,
            kind="Pod",
            logger=logger,
        )
