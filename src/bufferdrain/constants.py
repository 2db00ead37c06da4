"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "BUFFER_METRICS_CONTAINER",
    "BUFFER_PATH",
    "COMPONENT_LABEL",
    "CONFIGURATION_PATH",
    "CONFIGURATION_PATH_ENV_VAR",
    "DEFAULT_BUFFER_METRICS_PORT",
    "DRAINABLE_LABEL",
    "DRAINABLE_OPT_OUT",
    "DRAIN_STATUS_LABEL",
    "DRAINER_COMPONENT",
    "DRAIN_WATCH_CONTAINER",
    "KUBERNETES_NAME_PATTERN",
    "MANAGED_BY",
    "MANAGED_BY_LABEL",
    "PAUSE_CONTAINER",
    "PLACEHOLDER_COMPONENT",
    "REQUEUE_DELAY",
    "ROOT_LOGGER",
    "WORKER_COMPONENT",
    "WORKER_CONTAINER",
]

BUFFER_METRICS_CONTAINER = "buffer-metrics"
"""Name of the optional sidecar exporting buffer volume metrics."""

BUFFER_PATH = "/buffers"
"""Path at which the buffer volume is mounted in every container."""

COMPONENT_LABEL = "app.kubernetes.io/component"
"""Label distinguishing workers, drain jobs, and placeholders."""

CONFIGURATION_PATH = Path("/etc/bufferdrain/config.yaml")
"""Default path to the configuration."""

CONFIGURATION_PATH_ENV_VAR = "BUFFERDRAIN_CONFIG_PATH"
"""Environment variable that overrides the configuration path."""

DEFAULT_BUFFER_METRICS_PORT = 9200
"""Default port of the buffer metrics sidecar."""

DRAINABLE_LABEL = "bufferdrain.io/drain"
"""Label on a persistent volume claim controlling whether it is drained."""

DRAINABLE_OPT_OUT = "no"
"""Value of `DRAINABLE_LABEL` that excludes a claim from draining."""

DRAIN_STATUS_LABEL = "bufferdrain.io/drain-status"
"""Label recording that a persistent volume claim has been drained.

Storage tiering policies may also act on this label, so it is both the
persisted drain state and an external signal.
"""

DRAINER_COMPONENT = "drainer"
"""Value of `COMPONENT_LABEL` for drain jobs and their pods."""

DRAIN_WATCH_CONTAINER = "drain-watch"
"""Name of the container that signals drain completion."""

KUBERNETES_NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
"""Pattern matching valid Kubernetes names."""

MANAGED_BY = "bufferdrain"
"""Value of the ``app.kubernetes.io/managed-by`` label on created objects."""

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
"""Label marking objects created by the drain coordinator."""

PAUSE_CONTAINER = "pause"
"""Name of the only container of a placeholder pod."""

PLACEHOLDER_COMPONENT = "placeholder"
"""Value of `COMPONENT_LABEL` for placeholder pods."""

REQUEUE_DELAY = timedelta(seconds=1)
"""How long to wait before re-running a pass that requested a requeue."""

ROOT_LOGGER = "bufferdrain"
"""Name of the root logger."""

WORKER_COMPONENT = "worker"
"""Value of `COMPONENT_LABEL` for buffering worker pods."""

WORKER_CONTAINER = "worker"
"""Name of the buffering worker container in drain jobs."""
