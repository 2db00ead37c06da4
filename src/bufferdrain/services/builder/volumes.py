"""Construction of Kubernetes objects for volumes and volume mounts."""

from __future__ import annotations

from collections.abc import Iterable

from kubernetes_asyncio.client import (
    V1ConfigMapVolumeSource,
    V1EmptyDirVolumeSource,
    V1HostPathVolumeSource,
    V1NFSVolumeSource,
    V1PersistentVolumeClaimVolumeSource,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeMount,
)

from ...config import (
    ConfigMapVolumeSource,
    EmptyDirVolumeSource,
    HostPathVolumeSource,
    NFSVolumeSource,
    SecretVolumeSource,
    VolumeConfig,
    VolumeMountConfig,
)

__all__ = ["VolumeBuilder"]


class VolumeBuilder:
    """Construct Kubernetes objects for volumes and volume mounts."""

    def build_claim_volume(self, name: str, claim: str) -> V1Volume:
        """Construct a volume backed by an existing persistent volume claim.

        Parameters
        ----------
        name
            Name of the volume inside the pod.
        claim
            Name of the persistent volume claim.

        Returns
        -------
        kubernetes_asyncio.client.V1Volume
            Kubernetes volume.
        """
        source = V1PersistentVolumeClaimVolumeSource(claim_name=claim)
        return V1Volume(name=name, persistent_volume_claim=source)

    def build_mounts(
        self, mounts: Iterable[VolumeMountConfig]
    ) -> list[V1VolumeMount]:
        """Construct volume mounts for configured volumes.

        Parameters
        ----------
        mounts
            Configured mounts.

        Returns
        -------
        list of kubernetes_asyncio.client.V1VolumeMount
            List of mounts.
        """
        return [
            V1VolumeMount(
                name=m.volume_name,
                mount_path=m.container_path,
                sub_path=m.sub_path,
                read_only=m.read_only,
            )
            for m in mounts
        ]

    def build_volumes(self, volumes: Iterable[VolumeConfig]) -> list[V1Volume]:
        """Construct Kubernetes ``V1Volume`` objects for configured volumes.

        Parameters
        ----------
        volumes
            Configured volumes.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Volume
            List of Kubernetes ``V1Volume`` objects.
        """
        results = []
        for spec in volumes:
            match spec.source:
                case ConfigMapVolumeSource() as source:
                    config_map = V1ConfigMapVolumeSource(
                        name=source.config_map_name
                    )
                    volume = V1Volume(name=spec.name, config_map=config_map)
                case EmptyDirVolumeSource() as source:
                    empty_dir = V1EmptyDirVolumeSource(
                        size_limit=source.size_limit
                    )
                    volume = V1Volume(name=spec.name, empty_dir=empty_dir)
                case HostPathVolumeSource() as source:
                    host_path = V1HostPathVolumeSource(path=source.path)
                    volume = V1Volume(name=spec.name, host_path=host_path)
                case NFSVolumeSource() as source:
                    volume = V1Volume(
                        name=spec.name,
                        nfs=V1NFSVolumeSource(
                            path=source.server_path,
                            read_only=source.read_only,
                            server=source.server,
                        ),
                    )
                case SecretVolumeSource() as source:
                    secret = V1SecretVolumeSource(
                        secret_name=source.secret_name
                    )
                    volume = V1Volume(name=spec.name, secret=secret)
            results.append(volume)
        return results
