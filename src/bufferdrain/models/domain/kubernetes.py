"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol, Self

from kubernetes_asyncio.client import (
    V1Affinity,
    V1LabelSelector,
    V1LabelSelectorRequirement,
    V1NodeAffinity,
    V1NodeSelector,
    V1NodeSelectorRequirement,
    V1NodeSelectorTerm,
    V1ObjectMeta,
    V1PodAffinity,
    V1PodAffinityTerm,
    V1PodAntiAffinity,
    V1PreferredSchedulingTerm,
    V1Toleration,
    V1TopologySpreadConstraint,
    V1WeightedPodAffinityTerm,
)
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "Affinity",
    "DesiredState",
    "KubernetesModel",
    "LabelSelector",
    "NodeAffinity",
    "NodeSelector",
    "NodeSelectorTerm",
    "PodAffinity",
    "PodAffinityTerm",
    "PreferredSchedulingTerm",
    "PropagationPolicy",
    "PullPolicy",
    "ReconcileResult",
    "SelectorOperator",
    "SelectorRequirement",
    "TaintEffect",
    "Toleration",
    "TolerationOperator",
    "TopologySpreadConstraint",
    "UnsatisfiableAction",
    "WatchEventType",
    "WeightedPodAffinityTerm",
]


class KubernetesModel(Protocol):
    """Structural type shared by the generated Kubernetes object models.

    Only the attributes the storage layer relies on are listed.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class DesiredState(Enum):
    """Whether an object should exist after reconciliation."""

    PRESENT = "present"
    ABSENT = "absent"


class PropagationPolicy(Enum):
    """Possible values for the ``propagationPolicy`` parameter to delete."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


class PullPolicy(Enum):
    """Pull policy for Docker images in Kubernetes."""

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


@dataclass(frozen=True)
class ReconcileResult:
    """Request to run the reconciliation again.

    Returned by the object reconciler when the desired state could not be
    reached yet but will be reachable later without any other change, such as
    when an object of the same name is still being deleted.
    """

    requeue: bool = True
    """Whether to run another pass soon."""

    requeue_after: timedelta | None = None
    """Minimum delay before the next pass, if any."""

    def merge(self, other: ReconcileResult | None) -> ReconcileResult:
        """Combine two requests, keeping the most urgent one.

        A request without a delay asks for the next pass as soon as possible,
        so it wins over any request with a delay.
        """
        if other is None:
            return self
        delays = [r.requeue_after for r in (self, other) if r.requeue]
        if not delays:
            return ReconcileResult(requeue=False)
        if None in delays:
            return ReconcileResult()
        return ReconcileResult(requeue_after=min(d for d in delays if d))


class TaintEffect(Enum):
    """Possible effects of a pod toleration."""

    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(Enum):
    """Possible operators for a toleration."""

    EQUAL = "Equal"
    EXISTS = "Exists"


class Toleration(BaseModel):
    """A single pod toleration rule copied to drain and placeholder pods."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    effect: TaintEffect | None = Field(
        None,
        title="Taint effect",
        description="Effect of the taint to tolerate, or any effect if unset",
    )

    key: str | None = Field(
        None,
        title="Taint key",
        description=(
            "Key of the taint to tolerate. Leaving it unset with the `Exists`"
            " operator tolerates every taint."
        ),
    )

    operator: TolerationOperator = Field(
        TolerationOperator.EQUAL, title="Match operator"
    )

    toleration_seconds: int | None = Field(
        None,
        title="Duration of toleration",
        description="Seconds a `NoExecute` taint is tolerated before eviction",
    )

    value: str | None = Field(
        None,
        title="Taint value",
        description="Value of the taint. Not allowed with `Exists`.",
    )

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.operator == TolerationOperator.EXISTS:
            if self.value:
                raise ValueError("Toleration value not supported with Exists")
        else:
            if not self.key:
                raise ValueError("Toleration key must be specified")
            if not self.value:
                raise ValueError("Toleration value must be specified")
        return self

    def to_kubernetes(self) -> V1Toleration:
        """Convert to the corresponding Kubernetes resource."""
        return V1Toleration(
            effect=self.effect.value if self.effect else None,
            key=self.key,
            operator=self.operator.value,
            toleration_seconds=self.toleration_seconds,
            value=self.value,
        )


class SelectorOperator(Enum):
    """Match operators of label and node selector requirements.

    ``Gt`` and ``Lt`` are only valid in node selectors.
    """

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"
    GT = "Gt"
    LT = "Lt"


class SelectorRequirement(BaseModel):
    """One match rule of a label or node selector."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    key: str = Field(..., title="Key", description="Label or field to match")

    operator: SelectorOperator = Field(..., title="Operator")

    values: list[str] = Field(
        [],
        title="Values",
        description=(
            "Required for ``In`` and ``NotIn``, a single integer for ``Gt``"
            " and ``Lt``, and empty for ``Exists`` and ``DoesNotExist``"
        ),
    )

    @model_validator(mode="after")
    def _validate(self) -> Self:
        match self.operator:
            case SelectorOperator.IN | SelectorOperator.NOT_IN:
                if not self.values:
                    raise ValueError("In and NotIn require a list of values")
            case SelectorOperator.GT | SelectorOperator.LT:
                if len(self.values) != 1 or not self.values[0].isdigit():
                    raise ValueError("Gt and Lt take a single integer")
            case _:
                if self.values:
                    raise ValueError("Exists or DoesNotExist take no values")
        return self

    def to_label_requirement(self) -> V1LabelSelectorRequirement:
        """Convert to a Kubernetes label selector requirement."""
        return V1LabelSelectorRequirement(
            key=self.key,
            operator=self.operator.value,
            values=self.values or None,
        )

    def to_node_requirement(self) -> V1NodeSelectorRequirement:
        """Convert to a Kubernetes node selector requirement."""
        return V1NodeSelectorRequirement(
            key=self.key,
            operator=self.operator.value,
            values=self.values or None,
        )


class LabelSelector(BaseModel):
    """Selector of pods or namespaces by label. All rules must match."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    match_expressions: list[SelectorRequirement] = Field(
        [], title="Label match rules"
    )

    match_labels: dict[str, str] = Field({}, title="Exact label matches")

    @model_validator(mode="after")
    def _validate(self) -> Self:
        operators = {e.operator for e in self.match_expressions}
        if operators & {SelectorOperator.GT, SelectorOperator.LT}:
            raise ValueError("Gt and Lt are not valid for labels")
        return self

    def to_kubernetes(self) -> V1LabelSelector:
        """Convert to the corresponding Kubernetes resource."""
        expressions = [
            e.to_label_requirement() for e in self.match_expressions
        ]
        return V1LabelSelector(
            match_expressions=expressions or None,
            match_labels=self.match_labels or None,
        )


class NodeSelectorTerm(BaseModel):
    """Rules matching nodes by label or field."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    match_expressions: list[SelectorRequirement] = Field(
        [], title="Node label rules"
    )

    match_fields: list[SelectorRequirement] = Field(
        [], title="Node field rules"
    )

    def to_kubernetes(self) -> V1NodeSelectorTerm:
        """Convert to the corresponding Kubernetes resource."""
        expressions = [
            e.to_node_requirement() for e in self.match_expressions
        ]
        fields = [e.to_node_requirement() for e in self.match_fields]
        return V1NodeSelectorTerm(
            match_expressions=expressions or None,
            match_fields=fields or None,
        )


class NodeSelector(BaseModel):
    """Node selector terms, any of which may match."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    node_selector_terms: list[NodeSelectorTerm] = Field(
        ..., title="Terms", min_length=1
    )

    def to_kubernetes(self) -> V1NodeSelector:
        """Convert to the corresponding Kubernetes resource."""
        terms = [t.to_kubernetes() for t in self.node_selector_terms]
        return V1NodeSelector(node_selector_terms=terms)


class PreferredSchedulingTerm(BaseModel):
    """Node selector term with a scheduling weight."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    preference: NodeSelectorTerm = Field(..., title="Preferred nodes")

    weight: int = Field(..., title="Weight", ge=1, le=100)

    def to_kubernetes(self) -> V1PreferredSchedulingTerm:
        """Convert to the corresponding Kubernetes resource."""
        return V1PreferredSchedulingTerm(
            preference=self.preference.to_kubernetes(), weight=self.weight
        )


class NodeAffinity(BaseModel):
    """Node affinity of drain pods."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    preferred: list[PreferredSchedulingTerm] = Field(
        [],
        title="Preferred nodes",
        alias="preferredDuringSchedulingIgnoredDuringExecution",
    )

    required: NodeSelector | None = Field(
        None,
        title="Required nodes",
        alias="requiredDuringSchedulingIgnoredDuringExecution",
    )

    def to_kubernetes(self) -> V1NodeAffinity:
        """Convert to the corresponding Kubernetes resource."""
        preferred = [t.to_kubernetes() for t in self.preferred]
        required = self.required.to_kubernetes() if self.required else None
        return V1NodeAffinity(
            preferred_during_scheduling_ignored_during_execution=(
                preferred or None
            ),
            required_during_scheduling_ignored_during_execution=required,
        )


class PodAffinityTerm(BaseModel):
    """Pods that must share, or must not share, a topology domain."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    label_selector: LabelSelector | None = Field(
        None, title="Pod label rules"
    )

    namespace_selector: LabelSelector | None = Field(
        None, title="Namespace label rules"
    )

    namespaces: list[str] = Field(
        [],
        title="Namespaces",
        description=(
            "Namespaces to match in addition to those selected by"
            " ``namespaceSelector``. Only the namespace of the pod if both"
            " are empty."
        ),
    )

    topology_key: str = Field(
        ...,
        title="Topology label",
        description="Node label whose value defines a topology domain",
    )

    def to_kubernetes(self) -> V1PodAffinityTerm:
        """Convert to the corresponding Kubernetes resource."""
        label_selector = namespace_selector = None
        if self.label_selector:
            label_selector = self.label_selector.to_kubernetes()
        if self.namespace_selector:
            namespace_selector = self.namespace_selector.to_kubernetes()
        return V1PodAffinityTerm(
            label_selector=label_selector,
            namespace_selector=namespace_selector,
            namespaces=self.namespaces or None,
            topology_key=self.topology_key,
        )


class WeightedPodAffinityTerm(BaseModel):
    """Pod affinity term with a scheduling weight."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    pod_affinity_term: PodAffinityTerm = Field(..., title="Term")

    weight: int = Field(..., title="Weight", ge=1, le=100)

    def to_kubernetes(self) -> V1WeightedPodAffinityTerm:
        """Convert to the corresponding Kubernetes resource."""
        return V1WeightedPodAffinityTerm(
            pod_affinity_term=self.pod_affinity_term.to_kubernetes(),
            weight=self.weight,
        )


class PodAffinity(BaseModel):
    """Pod affinity or anti-affinity of drain pods.

    The two have the same structure and differ only in the Kubernetes model
    they convert to.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    preferred: list[WeightedPodAffinityTerm] = Field(
        [],
        title="Preferred terms",
        alias="preferredDuringSchedulingIgnoredDuringExecution",
    )

    required: list[PodAffinityTerm] = Field(
        [],
        title="Required terms",
        alias="requiredDuringSchedulingIgnoredDuringExecution",
    )

    def to_kubernetes(self) -> V1PodAffinity:
        """Convert to a Kubernetes pod affinity."""
        return V1PodAffinity(**self._terms())

    def to_kubernetes_anti(self) -> V1PodAntiAffinity:
        """Convert to a Kubernetes pod anti-affinity."""
        return V1PodAntiAffinity(**self._terms())

    def _terms(self) -> dict[str, Any]:
        preferred = [t.to_kubernetes() for t in self.preferred]
        required = [t.to_kubernetes() for t in self.required]
        return {
            "preferred_during_scheduling_ignored_during_execution": (
                preferred or None
            ),
            "required_during_scheduling_ignored_during_execution": (
                required or None
            ),
        }


class Affinity(BaseModel):
    """Scheduling affinity of drain pods."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    node_affinity: NodeAffinity | None = Field(
        None, title="Node affinity rules"
    )

    pod_affinity: PodAffinity | None = Field(
        None, title="Pod affinity rules"
    )

    pod_anti_affinity: PodAffinity | None = Field(
        None, title="Pod anti-affinity rules"
    )

    def to_kubernetes(self) -> V1Affinity:
        """Convert to the corresponding Kubernetes resource."""
        node = pod = anti = None
        if self.node_affinity:
            node = self.node_affinity.to_kubernetes()
        if self.pod_affinity:
            pod = self.pod_affinity.to_kubernetes()
        if self.pod_anti_affinity:
            anti = self.pod_anti_affinity.to_kubernetes_anti()
        return V1Affinity(
            node_affinity=node, pod_affinity=pod, pod_anti_affinity=anti
        )


class UnsatisfiableAction(Enum):
    """What to do with a pod that would violate a spread constraint."""

    DO_NOT_SCHEDULE = "DoNotSchedule"
    SCHEDULE_ANYWAY = "ScheduleAnyway"


class TopologySpreadConstraint(BaseModel):
    """Constraint on how drain pods spread across topology domains."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    label_selector: LabelSelector | None = Field(
        None, title="Pods counted against the constraint"
    )

    match_label_keys: list[str] = Field(
        [],
        title="Label keys",
        description="Labels of the incoming pod added to the selector",
    )

    max_skew: int = Field(
        ...,
        title="Maximum skew",
        description="Largest allowed difference in pod count between domains",
        ge=1,
    )

    min_domains: int | None = Field(
        None, title="Minimum number of eligible domains", ge=1
    )

    topology_key: str = Field(
        ...,
        title="Topology label",
        description="Node label whose value defines a topology domain",
    )

    when_unsatisfiable: UnsatisfiableAction = Field(
        UnsatisfiableAction.DO_NOT_SCHEDULE, title="Action if unsatisfiable"
    )

    def to_kubernetes(self) -> V1TopologySpreadConstraint:
        """Convert to the corresponding Kubernetes resource."""
        label_selector = None
        if self.label_selector:
            label_selector = self.label_selector.to_kubernetes()
        return V1TopologySpreadConstraint(
            label_selector=label_selector,
            match_label_keys=self.match_label_keys or None,
            max_skew=self.max_skew,
            min_domains=self.min_domains,
            topology_key=self.topology_key,
            when_unsatisfiable=self.when_unsatisfiable.value,
        )


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"
