"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Literal, Self

import yaml
from kubernetes_asyncio.client import (
    V1PodSecurityContext,
    V1ResourceRequirements,
)
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    COMPONENT_LABEL,
    DEFAULT_BUFFER_METRICS_PORT,
    DRAINER_COMPONENT,
    KUBERNETES_NAME_PATTERN,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    PLACEHOLDER_COMPONENT,
    WORKER_COMPONENT,
)
from .models.domain.kubernetes import (
    Affinity,
    PullPolicy,
    Toleration,
    TopologySpreadConstraint,
)

__all__ = [
    "BaseVolumeSource",
    "BufferMetricsConfig",
    "BufferVolumeConfig",
    "Config",
    "ConfigMapVolumeSource",
    "ContainerImage",
    "DrainConfig",
    "EmptyDirVolumeSource",
    "ExtraVolumeConfig",
    "HostPathVolumeSource",
    "LogRotateConfig",
    "NFSVolumeSource",
    "ResourcesConfig",
    "SecretVolumeSource",
    "SecurityContextConfig",
    "VolumeConfig",
    "VolumeMountConfig",
    "WorkerConfig",
    "WorkloadConfig",
]


class ContainerImage(BaseModel):
    """Docker image that may be run as a container.

    The structure of this model follows the normal Helm chart conventions so
    that automated dependency tools can detect that this is a Docker image
    reference.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    repository: Annotated[
        str,
        Field(
            title="Repository",
            description="Docker repository from which to pull the image",
            examples=["ghcr.io/fluent/fluentd"],
        ),
    ]

    pull_policy: Annotated[
        PullPolicy,
        Field(
            title="Pull policy",
            description=(
                "Kubernetes image pull policy. Set to ``Always`` when testing"
                " images that reuse the same tag."
            ),
            examples=[PullPolicy.ALWAYS],
        ),
    ] = PullPolicy.IF_NOT_PRESENT

    tag: Annotated[
        str,
        Field(
            title="Image tag",
            description="Tag of image to use (conventionally the version)",
            examples=["1.17.1"],
        ),
    ]

    @property
    def reference(self) -> str:
        """Docker reference to the image."""
        return f"{self.repository}:{self.tag}"


class BaseVolumeSource(BaseModel):
    """Source of a volume to be mounted in drain pods.

    This is a base class that must be subclassed by the different supported
    ways a volume can be provided.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    type: Annotated[
        str, Field(title="Type of volume to mount", examples=["nfs"])
    ]


class ConfigMapVolumeSource(BaseVolumeSource):
    """Config map whose keys are mounted as files."""

    type: Literal["configMap"]

    config_map_name: Annotated[
        str,
        Field(title="Config map name", pattern=KUBERNETES_NAME_PATTERN),
    ]


class EmptyDirVolumeSource(BaseVolumeSource):
    """Scratch space that lives as long as the pod."""

    type: Literal["emptyDir"]

    size_limit: Annotated[
        str | None,
        Field(title="Size limit", examples=["1Gi"]),
    ] = None


class HostPathVolumeSource(BaseVolumeSource):
    """Path on Kubernetes node to mount in the container."""

    type: Literal["hostPath"]

    path: Annotated[
        str,
        Field(
            title="Host path",
            description="Absolute host path to mount in the container",
            examples=["/var/log"],
            pattern="^/.*",
        ),
    ]


class NFSVolumeSource(BaseVolumeSource):
    """NFS volume to mount in the container."""

    type: Literal["nfs"]

    server: Annotated[
        str,
        Field(
            title="NFS server",
            description="Name or IP address of the NFS server for the volume",
            examples=["10.13.105.122"],
        ),
    ]

    server_path: Annotated[
        str,
        Field(
            title="Export path",
            description="Absolute path of NFS server export of the volume",
            examples=["/share1/logs"],
            pattern="^/.*",
        ),
    ]

    read_only: Annotated[
        bool,
        Field(
            title="Is read-only",
            description=(
                "Whether to mount the NFS volume read-only. If this is true,"
                " any mount of this volume will be read-only even if the mount"
                " is not marked as such."
            ),
        ),
    ] = False


class SecretVolumeSource(BaseVolumeSource):
    """Secret whose keys are mounted as files."""

    type: Literal["secret"]

    secret_name: Annotated[
        str,
        Field(title="Secret name", pattern=KUBERNETES_NAME_PATTERN),
    ]


class VolumeConfig(BaseModel):
    """A volume that may be mounted inside a container."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of volume",
            description=(
                "Used as the Kubernetes volume name and therefore must be a"
                " valid Kubernetes name"
            ),
            pattern=KUBERNETES_NAME_PATTERN,
        ),
    ]

    source: Annotated[
        (
            ConfigMapVolumeSource
            | EmptyDirVolumeSource
            | HostPathVolumeSource
            | NFSVolumeSource
            | SecretVolumeSource
        ),
        Field(title="Source of volume", discriminator="type"),
    ]


class VolumeMountConfig(BaseModel):
    """The mount of a volume inside a container."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    container_path: Annotated[
        str,
        Field(
            title="Path inside container",
            description="Absolute path at which to mount the volume",
            examples=["/fluentd/etc"],
            pattern="^/.*",
        ),
    ]

    sub_path: Annotated[
        str | None,
        Field(
            title="Sub-path of source to mount",
            description="Mount only this sub-path of the volume source",
        ),
    ] = None

    read_only: Annotated[
        bool,
        Field(
            title="Is read-only",
            description="Whether this mount of the volume should be read-only",
            examples=[True],
        ),
    ] = False

    volume_name: Annotated[
        str,
        Field(title="Volume name", description="Name of the volume to mount"),
    ]


class ExtraVolumeConfig(BaseModel):
    """A volume added to the pod and mounted into one named container."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    container_name: Annotated[
        str,
        Field(
            title="Container name",
            description=(
                "Name of the container in the drain pod that mounts the"
                " volume. A name that matches no container is reported when"
                " the drain job is built."
            ),
            examples=["worker"],
        ),
    ]

    path: Annotated[
        str,
        Field(
            title="Path inside container",
            examples=["/fluentd/extra"],
            pattern="^/.*",
        ),
    ]

    volume: Annotated[VolumeConfig, Field(title="Volume to add")]


class ResourcesConfig(BaseModel):
    """Resource requests and limits of a container."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    limits: Annotated[
        dict[str, str] | None,
        Field(title="Resource limits", examples=[{"memory": "1Gi"}]),
    ] = None

    requests: Annotated[
        dict[str, str] | None,
        Field(title="Resource requests", examples=[{"cpu": "100m"}]),
    ] = None

    def to_kubernetes(self) -> V1ResourceRequirements:
        """Convert to the corresponding Kubernetes resource."""
        return V1ResourceRequirements(
            limits=self.limits, requests=self.requests
        )


class LogRotateConfig(BaseModel):
    """Rotation of the worker's own output logs.

    Only the long-running workers rotate their output. Drain jobs never
    mount the rotated output volume.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    volume_name: Annotated[
        str,
        Field(
            title="Output log volume",
            description="Name of the volume holding the rotated output logs",
        ),
    ]

    path: Annotated[
        str,
        Field(
            title="Output log path",
            description="Where the worker writes its output logs",
            pattern="^/.*",
        ),
    ] = "/fluentd/log"


class WorkerConfig(BaseModel):
    """Container running the buffering worker."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    image: Annotated[ContainerImage, Field(title="Worker image")]

    command: Annotated[
        list[str] | None,
        Field(title="Command", description="Override the image entrypoint"),
    ] = None

    args: Annotated[list[str] | None, Field(title="Arguments")] = None

    env: Annotated[
        dict[str, str],
        Field(title="Environment variables", examples=[{"TZ": "UTC"}]),
    ] = {}

    resources: Annotated[
        ResourcesConfig | None, Field(title="Resource requirements")
    ] = None

    volume_mounts: Annotated[
        list[VolumeMountConfig],
        Field(
            title="Volume mounts",
            description=(
                "Mounts of workload volumes. The buffer volume is mounted"
                " separately and should not be listed here."
            ),
        ),
    ] = []

    log_rotate: Annotated[
        LogRotateConfig | None,
        Field(title="Output log rotation", description="Workers only"),
    ] = None

    def mounts(self, *, log_rotate: bool = True) -> list[VolumeMountConfig]:
        """Return the volume mounts of the worker container.

        Parameters
        ----------
        log_rotate
            Whether to include the output log mount used for rotation.

        Returns
        -------
        list of VolumeMountConfig
            Mounts in configuration order, with the output log mount last.
        """
        mounts = list(self.volume_mounts)
        if log_rotate and self.log_rotate:
            mount = VolumeMountConfig(
                container_path=self.log_rotate.path,
                volume_name=self.log_rotate.volume_name,
            )
            mounts.append(mount)
        return mounts


class BufferVolumeConfig(BaseModel):
    """Persistent buffer volume of the workers."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Claim template name",
            description=(
                "Name of the StatefulSet volume claim template. Claims are"
                " named ``{name}-{statefulset}-{ordinal}`` and pods refer to"
                " the claim through a volume with this name."
            ),
            pattern=KUBERNETES_NAME_PATTERN,
        ),
    ]


class BufferMetricsConfig(BaseModel):
    """Sidecar exporting metrics about the buffer volume."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    enabled: Annotated[
        bool, Field(title="Whether to add the metrics sidecar")
    ] = False

    image: Annotated[
        ContainerImage | None, Field(title="Metrics exporter image")
    ] = None

    port: Annotated[
        int, Field(title="Metrics port", ge=1, le=65535)
    ] = DEFAULT_BUFFER_METRICS_PORT

    @model_validator(mode="after")
    def _validate_image(self) -> Self:
        if self.enabled and not self.image:
            raise ValueError("Buffer metrics image required when enabled")
        return self


class SecurityContextConfig(BaseModel):
    """Pod security context of drain pods."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    fs_group: Annotated[int | None, Field(title="Filesystem group")] = None

    run_as_group: Annotated[int | None, Field(title="Group ID")] = None

    run_as_non_root: Annotated[
        bool | None, Field(title="Require non-root user")
    ] = None

    run_as_user: Annotated[int | None, Field(title="User ID")] = None

    def to_kubernetes(self) -> V1PodSecurityContext:
        """Convert to the corresponding Kubernetes resource."""
        return V1PodSecurityContext(
            fs_group=self.fs_group,
            run_as_group=self.run_as_group,
            run_as_non_root=self.run_as_non_root,
            run_as_user=self.run_as_user,
        )


class WorkloadConfig(BaseModel):
    """The StatefulSet of buffering workers whose volumes are drained."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="StatefulSet name",
            description="Also the prefix of worker and placeholder pod names",
            pattern=KUBERNETES_NAME_PATTERN,
        ),
    ]

    labels: Annotated[
        dict[str, str],
        Field(
            title="Common labels",
            description=(
                "Labels shared by worker pods, buffer claims, drain jobs, and"
                " placeholders. Each kind additionally carries"
                " ``app.kubernetes.io/component`` set to ``worker``,"
                " ``drainer``, or ``placeholder``."
            ),
            examples=[{"app.kubernetes.io/name": "fluentd"}],
        ),
    ] = {}

    service_account: Annotated[
        str | None,
        Field(
            title="Service account",
            description="Defaults to the StatefulSet name",
        ),
    ] = None

    image_pull_secrets: Annotated[
        list[str], Field(title="Image pull secrets")
    ] = []

    worker: Annotated[WorkerConfig, Field(title="Worker container")]

    buffer_volume: Annotated[
        BufferVolumeConfig | None,
        Field(
            title="Buffer volume",
            description="If not set, workers have no buffer to drain",
        ),
    ] = None

    volumes: Annotated[
        list[VolumeConfig],
        Field(title="Volumes available to the worker container"),
    ] = []

    extra_volumes: Annotated[
        list[ExtraVolumeConfig], Field(title="Extra volumes")
    ] = []

    node_selector: Annotated[
        dict[str, str] | None, Field(title="Node selector")
    ] = None

    tolerations: Annotated[list[Toleration], Field(title="Tolerations")] = []

    affinity: Annotated[
        Affinity | None,
        Field(
            title="Affinity",
            description=(
                "Scheduling affinity of drain pods, usually the same as that"
                " of the workers"
            ),
        ),
    ] = None

    topology_spread_constraints: Annotated[
        list[TopologySpreadConstraint],
        Field(title="Topology spread constraints of drain pods"),
    ] = []

    priority_class_name: Annotated[
        str | None, Field(title="Priority class")
    ] = None

    security_context: Annotated[
        SecurityContextConfig | None, Field(title="Pod security context")
    ] = None

    buffer_metrics: Annotated[
        BufferMetricsConfig, Field(title="Buffer metrics sidecar")
    ] = BufferMetricsConfig()

    @property
    def service_account_name(self) -> str:
        """Service account used by drain pods."""
        return self.service_account or self.name

    @property
    def worker_labels(self) -> dict[str, str]:
        """Labels selecting worker pods and their buffer claims."""
        return {**self.labels, COMPONENT_LABEL: WORKER_COMPONENT}

    @property
    def drainer_labels(self) -> dict[str, str]:
        """Labels of drain jobs and their pods."""
        return self._managed_labels(DRAINER_COMPONENT)

    @property
    def placeholder_labels(self) -> dict[str, str]:
        """Labels of placeholder pods."""
        return self._managed_labels(PLACEHOLDER_COMPONENT)

    def _managed_labels(self, component: str) -> dict[str, str]:
        return {
            **self.labels,
            MANAGED_BY_LABEL: MANAGED_BY,
            COMPONENT_LABEL: component,
        }


class DrainConfig(BaseModel):
    """Draining of buffer volumes left behind by a scale-down."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    enabled: Annotated[
        bool,
        Field(
            title="Whether draining is enabled",
            description="If false, every pass returns without any changes",
        ),
    ] = False

    image: Annotated[
        ContainerImage | None,
        Field(
            title="Drain watch image",
            description=(
                "Image of the container that watches the buffer and exits"
                " once it is empty. Required if draining is enabled."
            ),
        ),
    ] = None

    pause_image: Annotated[
        ContainerImage,
        Field(title="Placeholder image", description="Runs in placeholders"),
    ] = ContainerImage(repository="registry.k8s.io/pause", tag="3.10")

    annotations: Annotated[
        dict[str, str], Field(title="Annotations of drain pods")
    ] = {}

    backoff_limit: Annotated[
        int | None,
        Field(
            title="Job backoff limit",
            description="Failed attempts before the drain job gives up",
            ge=0,
        ),
    ] = None

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Drain timeout",
            description=(
                "Time allowed for observing the namespace, and separately for"
                " acting on each volume, including waiting for cancelled drain"
                " jobs to be deleted"
            ),
        ),
    ] = timedelta(minutes=1)

    @model_validator(mode="after")
    def _validate_image(self) -> Self:
        if self.enabled and not self.image:
            raise ValueError("Drain watch image required when enabled")
        return self


class Config(BaseSettings):
    """Buffer drain coordinator configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "bufferdrain"

    namespace: Annotated[
        str,
        Field(
            title="Namespace",
            description="Namespace of the workers, their claims, and drains",
            pattern=KUBERNETES_NAME_PATTERN,
        ),
    ]

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    reconcile_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Reconcile interval",
            description="How frequently to run a drain pass",
        ),
    ] = timedelta(minutes=1)

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, drain failures and any uncaught exceptions will be"
                " reported to Slack via this webhook"
            ),
            validation_alias=AliasChoices(
                "BUFFERDRAIN_SLACK_WEBHOOK", "slackWebhook", "slack_webhook"
            ),
        ),
    ] = None

    workload: Annotated[WorkloadConfig, Field(title="Buffering workers")]

    drain: Annotated[DrainConfig, Field(title="Draining")] = DrainConfig()

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f))
