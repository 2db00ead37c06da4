"""Domain models for the buffer volume drain lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Self

from kubernetes_asyncio.client import V1Job, V1Pod

from ...constants import DRAIN_STATUS_LABEL
from ...exceptions import DrainPassError
from .kubernetes import ReconcileResult

__all__ = [
    "DrainAction",
    "DrainObjects",
    "DrainObservation",
    "DrainPassResult",
    "DrainStatus",
    "JobStatus",
    "VolumeObservation",
    "VolumeResult",
    "VolumeState",
    "decide",
]


class DrainStatus(Enum):
    """Persisted drain status of a persistent volume claim.

    Stored as the value of the drain status label. A claim without the label
    has no status.
    """

    DRAINED = "drained"

    @classmethod
    def from_labels(cls, labels: dict[str, str] | None) -> Self | None:
        """Read the drain status from the labels of a claim.

        Parameters
        ----------
        labels
            Labels of the claim, if any.

        Returns
        -------
        DrainStatus or None
            The status, or `None` if the label is absent or has an
            unrecognized value.
        """
        if not labels:
            return None
        try:
            return cls(labels.get(DRAIN_STATUS_LABEL))
        except ValueError:
            return None


class JobStatus(Enum):
    """Progress of a drain job."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def from_job(cls, job: V1Job) -> Self:
        """Determine the status of a Kubernetes job.

        A job has succeeded once it has a completion time and at least one
        successful pod. Failed attempts only count as failure if the job has
        not also succeeded.
        """
        status = job.status
        if not status:
            return cls.RUNNING
        if status.completion_time and (status.succeeded or 0) > 0:
            return cls.SUCCEEDED
        if (status.failed or 0) > 0:
            return cls.FAILED
        return cls.RUNNING


class VolumeState(Enum):
    """Lifecycle state of a buffer volume, computed once per pass."""

    IN_USE = "in-use"
    AVAILABLE = "available"
    DRAINING = "draining"
    DRAINED = "drained"
    FAILED = "failed"


class DrainAction(Enum):
    """Action taken on a buffer volume during a pass."""

    NONE = "none"
    WAIT = "wait"
    RECLAIM = "reclaim"
    FINISH = "finish"
    CANCEL = "cancel"
    REPORT_FAILURE = "report-failure"
    START = "start"
    CLEANUP = "cleanup"


@dataclass
class VolumeObservation:
    """Everything known about one buffer volume at the start of a pass."""

    name: str
    """Name of the persistent volume claim."""

    drained: bool
    """Whether the claim carries the drained label."""

    in_use: bool
    """Whether a worker uses the claim or its ordinal is reserved."""

    job: V1Job | None = None
    """Drain job targeting the claim, if any."""

    resource_version: str | None = None
    """Resource version of the claim when it was listed."""

    placeholder: bool = False
    """Whether a placeholder pod reserves the ordinal of the claim."""

    @property
    def attempts(self) -> int:
        """Number of failed attempts of the drain job."""
        if not self.job or not self.job.status:
            return 0
        return self.job.status.failed or 0

    @property
    def job_status(self) -> JobStatus | None:
        """Status of the drain job, or `None` if there is no job."""
        return JobStatus.from_job(self.job) if self.job else None

    @property
    def state(self) -> VolumeState:
        """Lifecycle state of the volume."""
        match self.job_status:
            case JobStatus.SUCCEEDED:
                return VolumeState.DRAINED
            case JobStatus.FAILED:
                return VolumeState.FAILED
            case JobStatus.RUNNING:
                return VolumeState.DRAINING
        if self.drained:
            return VolumeState.DRAINED
        if self.in_use:
            return VolumeState.IN_USE
        return VolumeState.AVAILABLE


def decide(volume: VolumeObservation) -> DrainAction:
    """Choose the action for a volume.

    Rules are checked in priority order and the first match wins. This
    function has no side effects and depends only on the observation.

    Parameters
    ----------
    volume
        Observation of the volume.

    Returns
    -------
    DrainAction
        Action to take.
    """
    job_status = volume.job_status
    if volume.drained and volume.in_use:
        return DrainAction.RECLAIM
    if job_status == JobStatus.SUCCEEDED:
        return DrainAction.FINISH
    if volume.in_use and volume.job:
        return DrainAction.CANCEL
    if job_status == JobStatus.FAILED:
        return DrainAction.REPORT_FAILURE
    if job_status == JobStatus.RUNNING:
        return DrainAction.WAIT
    if volume.state == VolumeState.AVAILABLE:
        return DrainAction.START

    # A placeholder without a job is left over from an interrupted start or
    # finish and would keep the worker of that ordinal from starting.
    if volume.placeholder:
        return DrainAction.CLEANUP
    return DrainAction.NONE


@dataclass
class DrainObservation:
    """Consistent snapshot of the store taken at the start of a pass."""

    volumes: list[VolumeObservation]
    """Eligible buffer volumes in listing order."""

    replicas: int
    """Desired replica count of the workers."""


@dataclass
class DrainObjects:
    """Objects created to drain one volume."""

    placeholder: V1Pod
    """Pod reserving the ordinal of the volume."""

    job: V1Job
    """Job draining the volume."""


@dataclass
class VolumeResult:
    """Outcome of applying an action to one volume."""

    volume: str
    """Name of the persistent volume claim."""

    action: DrainAction
    """Action that was chosen."""

    requeue: ReconcileResult | None = None
    """Request to run another pass, if any."""

    error: Exception | None = None
    """Error recorded for the volume, if any."""


@dataclass
class DrainPassResult:
    """Folded outcome of one drain pass."""

    volumes: list[VolumeResult] = field(default_factory=list)
    """Per-volume results in processing order."""

    @property
    def error(self) -> DrainPassError | None:
        """Combined error of every failed volume, if any failed."""
        errors = [(r.volume, r.error) for r in self.volumes if r.error]
        return DrainPassError(errors) if errors else None

    @property
    def requeue(self) -> ReconcileResult | None:
        """Combined requeue request of every volume, if any asked."""
        result = None
        for volume in self.volumes:
            if volume.requeue:
                result = volume.requeue.merge(result)
        return result
