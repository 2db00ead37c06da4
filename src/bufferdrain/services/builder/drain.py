"""Construction of Kubernetes objects for draining buffer volumes."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1Job,
    V1JobSpec,
    V1LocalObjectReference,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Toleration,
    V1VolumeMount,
)
from structlog.stdlib import BoundLogger

from ...config import DrainConfig, WorkloadConfig
from ...constants import (
    BUFFER_METRICS_CONTAINER,
    BUFFER_PATH,
    DRAIN_WATCH_CONTAINER,
    PAUSE_CONTAINER,
    WORKER_CONTAINER,
)
from ...exceptions import DrainBuildError
from ...models.domain.drain import DrainObjects
from .volumes import VolumeBuilder

__all__ = ["DrainBuilder"]


class DrainBuilder:
    """Construct the drain job and placeholder pod for a buffer volume.

    Every method is a pure function of the configuration and the claim name,
    so the same claim always produces the same objects.

    Parameters
    ----------
    workload
        Configuration of the buffering workers.
    drain
        Configuration of draining.
    namespace
        Namespace in which to create the objects.
    logger
        Logger to use.
    """

    def __init__(
        self,
        workload: WorkloadConfig,
        drain: DrainConfig,
        namespace: str,
        logger: BoundLogger,
    ) -> None:
        self._workload = workload
        self._drain = drain
        self._namespace = namespace
        self._logger = logger
        self._volume_builder = VolumeBuilder()

    def build(self, claim: str) -> DrainObjects:
        """Construct both objects needed to drain a claim.

        Parameters
        ----------
        claim
            Name of the persistent volume claim.

        Returns
        -------
        DrainObjects
            Placeholder pod and drain job.

        Raises
        ------
        DrainBuildError
            Raised if the configuration cannot be turned into a drain job for
            this claim.
        """
        objects = DrainObjects(
            placeholder=self.build_placeholder(claim),
            job=self.build_job(claim),
        )
        self._logger.debug(
            "Built drain objects",
            volume=claim,
            job=objects.job.metadata.name,
            placeholder=objects.placeholder.metadata.name,
        )
        return objects

    def build_job(self, claim: str) -> V1Job:
        """Construct the drain job for a claim.

        Raises
        ------
        DrainBuildError
            Raised if the claim name has no ordinal, a worker mount refers to
            an undefined volume, or an extra volume targets a container that
            does not exist.
        """
        ordinal = self._ordinal(claim)
        buffer = self._buffer_volume_name(claim)
        containers = [
            self._build_worker_container(claim, buffer),
            self._build_drain_watch_container(claim, buffer),
        ]
        if self._workload.buffer_metrics.enabled:
            containers.append(self._build_metrics_container(claim, buffer))
        volumes = self._volume_builder.build_volumes(self._workload.volumes)
        volumes.append(self._volume_builder.build_claim_volume(buffer, claim))

        # Extra volumes are added to the pod and mounted by name.
        by_name = {c.name: c for c in containers}
        for extra in self._workload.extra_volumes:
            container = by_name.get(extra.container_name)
            if not container:
                msg = (
                    f"Extra volume {extra.volume.name} targets unknown"
                    f" container {extra.container_name}"
                )
                raise DrainBuildError(msg, volume=claim)
            volumes.extend(self._volume_builder.build_volumes([extra.volume]))
            mount = V1VolumeMount(
                name=extra.volume.name, mount_path=extra.path
            )
            container.volume_mounts.append(mount)

        security_context = None
        if self._workload.security_context:
            security_context = self._workload.security_context.to_kubernetes()
        pull_secrets = [
            V1LocalObjectReference(name=s)
            for s in self._workload.image_pull_secrets
        ]
        affinity = None
        if self._workload.affinity:
            affinity = self._workload.affinity.to_kubernetes()
        spread = [
            c.to_kubernetes()
            for c in self._workload.topology_spread_constraints
        ]
        pod_spec = V1PodSpec(
            affinity=affinity,
            containers=containers,
            image_pull_secrets=pull_secrets or None,
            node_selector=self._node_selector(),
            priority_class_name=self._workload.priority_class_name,
            restart_policy="Never",
            security_context=security_context,
            service_account_name=self._workload.service_account_name,
            tolerations=self._tolerations(),
            topology_spread_constraints=spread or None,
            volumes=volumes,
        )
        template = V1PodTemplateSpec(
            metadata=V1ObjectMeta(
                labels=self._workload.drainer_labels,
                annotations=dict(self._drain.annotations) or None,
            ),
            spec=pod_spec,
        )
        return V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=V1ObjectMeta(
                name=f"{self._workload.name}-{ordinal}-drainer",
                namespace=self._namespace,
                labels=self._workload.drainer_labels,
            ),
            spec=V1JobSpec(
                backoff_limit=self._drain.backoff_limit, template=template
            ),
        )

    def build_placeholder(self, claim: str) -> V1Pod:
        """Construct the placeholder pod reserving the ordinal of a claim.

        The pod has the same name as the worker pod for that ordinal, which
        stops the StatefulSet controller from starting a worker there.

        Raises
        ------
        DrainBuildError
            Raised if the claim name has no ordinal.
        """
        ordinal = self._ordinal(claim)
        container = V1Container(
            name=PAUSE_CONTAINER,
            image=self._drain.pause_image.reference,
            image_pull_policy=self._drain.pause_image.pull_policy.value,
        )
        return V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=V1ObjectMeta(
                name=f"{self._workload.name}-{ordinal}",
                namespace=self._namespace,
                labels=self._workload.placeholder_labels,
            ),
            spec=V1PodSpec(
                containers=[container],
                node_selector=self._node_selector(),
                priority_class_name=self._workload.priority_class_name,
                restart_policy="Never",
                termination_grace_period_seconds=0,
                tolerations=self._tolerations(),
            ),
        )

    def _buffer_volume_name(self, claim: str) -> str:
        if not self._workload.buffer_volume:
            msg = "No buffer volume configured"
            raise DrainBuildError(msg, volume=claim)
        return self._workload.buffer_volume.name

    def _build_drain_watch_container(
        self, claim: str, buffer: str
    ) -> V1Container:
        """Construct the container that exits once the buffer is empty."""
        if not self._drain.image:
            msg = "No drain watch image configured"
            raise DrainBuildError(msg, volume=claim)
        return V1Container(
            name=DRAIN_WATCH_CONTAINER,
            env=[V1EnvVar(name="BUFFER_PATH", value=BUFFER_PATH)],
            image=self._drain.image.reference,
            image_pull_policy=self._drain.image.pull_policy.value,
            volume_mounts=[
                V1VolumeMount(
                    name=buffer, mount_path=BUFFER_PATH, read_only=True
                )
            ],
        )

    def _build_metrics_container(self, claim: str, buffer: str) -> V1Container:
        config = self._workload.buffer_metrics
        image = config.image
        if not image:
            msg = "No buffer metrics image configured"
            raise DrainBuildError(msg, volume=claim)
        return V1Container(
            name=BUFFER_METRICS_CONTAINER,
            image=image.reference,
            image_pull_policy=image.pull_policy.value,
            ports=[
                V1ContainerPort(
                    container_port=config.port,
                    name="buffer-metrics",
                    protocol="TCP",
                )
            ],
            volume_mounts=[
                V1VolumeMount(
                    name=buffer, mount_path=BUFFER_PATH, read_only=True
                )
            ],
        )

    def _build_worker_container(self, claim: str, buffer: str) -> V1Container:
        """Construct the worker container without output log rotation.

        The worker runs as usual and forwards the buffered data, but never
        mounts the rotated output log volume.
        """
        config = self._workload.worker
        defined = {v.name for v in self._workload.volumes}
        mounts = config.mounts(log_rotate=False)
        for mount in mounts:
            if mount.volume_name not in defined:
                msg = f"Worker mounts undefined volume {mount.volume_name}"
                raise DrainBuildError(msg, volume=claim)
        volume_mounts = self._volume_builder.build_mounts(mounts)
        buffer_mount = V1VolumeMount(name=buffer, mount_path=BUFFER_PATH)
        volume_mounts.append(buffer_mount)
        image = config.image
        env = [V1EnvVar(name=k, value=v) for k, v in config.env.items()]
        resources = config.resources
        return V1Container(
            name=WORKER_CONTAINER,
            args=config.args,
            command=config.command,
            env=env or None,
            image=image.reference,
            image_pull_policy=image.pull_policy.value,
            resources=resources.to_kubernetes() if resources else None,
            volume_mounts=volume_mounts,
        )

    def _node_selector(self) -> dict[str, str] | None:
        if not self._workload.node_selector:
            return None
        return self._workload.node_selector.copy()

    def _ordinal(self, claim: str) -> int:
        """Extract the StatefulSet ordinal from a claim name."""
        buffer = self._buffer_volume_name(claim)
        prefix = f"{buffer}-{self._workload.name}-"
        suffix = claim.removeprefix(prefix)
        if suffix == claim or not suffix.isdigit():
            msg = f"Claim name does not match {prefix}<ordinal>"
            raise DrainBuildError(msg, volume=claim)
        return int(suffix)

    def _tolerations(self) -> list[V1Toleration]:
        return [t.to_kubernetes() for t in self._workload.tolerations]
