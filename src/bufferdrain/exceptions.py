"""Exceptions for the buffer volume drain coordinator."""

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)

__all__ = [
    "ControllerTimeoutError",
    "DrainBuildError",
    "DrainFailedError",
    "DrainPassError",
    "KubernetesError",
]


class ControllerTimeoutError(SlackException):
    """Wraps `TimeoutError` with additional context and Slack support.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.started_at = started_at
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        return SlackMessage(message=str(self), fields=fields)


class DrainBuildError(SlackException):
    """The drain objects for a volume could not be constructed.

    Raised when the workload configuration cannot be resolved into a drain
    job for a given persistent volume claim. Only the action for that volume
    is skipped.

    Parameters
    ----------
    message
        Summary of error.
    volume
        Name of the persistent volume claim being drained.
    """

    def __init__(self, message: str, *, volume: str) -> None:
        super().__init__(f"{message} (volume {volume})")
        self.volume = volume

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        field = SlackTextField(heading="Volume", text=self.volume)
        message.fields.append(field)
        return message


class DrainFailedError(SlackException):
    """The drain job for a volume reported failed attempts.

    This is not a failure of the coordinator but a condition that needs human
    attention. The failed job is left in place, which also prevents another
    drain attempt until someone deletes it.

    Parameters
    ----------
    volume
        Name of the persistent volume claim being drained.
    namespace
        Namespace of the claim.
    job
        Name of the failed drain job.
    attempts
        Number of failed attempts reported by the job.
    """

    def __init__(
        self, volume: str, *, namespace: str, job: str, attempts: int
    ) -> None:
        msg = f"Draining volume {namespace}/{volume} failed"
        super().__init__(f"{msg} after {attempts} attempts")
        self.volume = volume
        self.namespace = namespace
        self.job = job
        self.attempts = attempts

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.fields.append(
            SlackTextField(heading="Attempts", text=str(self.attempts))
        )
        obj = f"Job {self.namespace}/{self.job}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message


class DrainPassError(SlackException):
    """One or more volumes failed during a drain pass.

    Parameters
    ----------
    errors
        Pairs of persistent volume claim name and the error recorded for it.
    """

    def __init__(self, errors: list[tuple[str, Exception]]) -> None:
        volumes = ", ".join(v for v, _ in errors)
        super().__init__(f"Draining failed for volumes: {volumes}")
        self.errors = errors

    @override
    def __str__(self) -> str:
        details = "; ".join(f"{v}: {e!s}" for v, e in self.errors)
        return f"{self.args[0]} ({details})"

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.args[0]
        code = "\n".join(f"{v}: {e!s}" for v, e in self.errors)
        message.blocks.append(SlackCodeBlock(heading="Errors", code=code))
        return message


class KubernetesError(SlackException):
    """A call to the Kubernetes API server failed.

    Parameters
    ----------
    message
        What was being attempted.
    kind
        Kind of object being acted on, if known.
    namespace
        Namespace of the object or objects.
    name
        Name of the object, if the call was about a single object.
    status
        HTTP status returned by the API server, if any.
    body
        Body of the error response, or the reason if there was no body.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Wrap an `~kubernetes_asyncio.client.ApiException`."""
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body or exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @property
    def is_conflict(self) -> bool:
        """Whether the object was changed by another writer."""
        return self.status == 409

    @override
    def __str__(self) -> str:
        summary = self._summary()
        return f"{summary}: {self.body}" if self.body else summary

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if obj := self._object():
            if not self.name and self.namespace:
                obj += f" in namespace {self.namespace}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _object(self) -> str | None:
        """Describe the object acted on, such as ``Job logging/name``."""
        if not self.name:
            return self.kind
        ref = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind} {ref}" if self.kind else ref

    def _summary(self) -> str:
        """Single-line summary used as the Slack message text."""
        details = []
        if obj := self._object():
            details.append(obj)
        if self.status:
            details.append(f"status {self.status}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"
