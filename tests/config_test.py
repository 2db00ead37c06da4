"""Tests for configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel, Profile

from bufferdrain.config import Config, DrainConfig, EmptyDirVolumeSource
from bufferdrain.models.domain.kubernetes import PullPolicy, TaintEffect

from .support.config import configure


def minimal_config() -> dict[str, Any]:
    return {
        "namespace": "logging",
        "workload": {
            "name": "fluentd",
            "worker": {
                "image": {
                    "repository": "ghcr.io/fluent/fluentd",
                    "tag": "v1.17.1",
                }
            },
        },
    }


def test_standard() -> None:
    config = configure("standard")

    assert config.log_level == LogLevel.DEBUG
    assert config.profile == Profile.development
    assert config.name == "bufferdrain"
    assert config.reconcile_interval == timedelta(seconds=10)
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == (
        "https://slack.example.com/webhook"
    )

    workload = config.workload
    assert workload.service_account_name == "fluentd"
    assert workload.buffer_volume
    assert workload.buffer_volume.name == "buffer"
    assert workload.worker_labels == {
        "app.kubernetes.io/name": "fluentd",
        "app.kubernetes.io/component": "worker",
    }
    assert isinstance(workload.volumes[1].source, EmptyDirVolumeSource)
    assert workload.tolerations[0].effect == TaintEffect.NO_SCHEDULE
    assert workload.worker.image.pull_policy == PullPolicy.IF_NOT_PRESENT
    assert workload.worker.log_rotate
    assert workload.worker.log_rotate.path == "/fluentd/log"
    mounts = workload.worker.mounts()
    assert [m.volume_name for m in mounts] == ["config", "output"]
    mounts = workload.worker.mounts(log_rotate=False)
    assert [m.volume_name for m in mounts] == ["config"]

    assert config.drain.enabled
    assert config.drain.timeout == timedelta(seconds=30)
    assert config.drain.backoff_limit == 2
    assert config.drain.pause_image.reference == "registry.k8s.io/pause:3.10"


def test_defaults() -> None:
    config = Config.model_validate(minimal_config())

    assert config.log_level == LogLevel.INFO
    assert config.profile == Profile.production
    assert config.reconcile_interval == timedelta(minutes=1)
    assert config.slack_webhook is None
    assert not config.drain.enabled
    assert config.drain.timeout == timedelta(minutes=1)
    assert config.workload.buffer_volume is None
    assert not config.workload.buffer_metrics.enabled
    assert config.workload.buffer_metrics.port == 9200


def test_drain_image_required() -> None:
    data = minimal_config()
    data["drain"] = {"enabled": True}
    with pytest.raises(ValidationError):
        Config.model_validate(data)


def test_metrics_image_required() -> None:
    data = minimal_config()
    data["workload"]["bufferMetrics"] = {"enabled": True}
    with pytest.raises(ValidationError):
        Config.model_validate(data)


@pytest.mark.parametrize(
    "toleration",
    [
        {"operator": "Equal", "key": "dedicated"},
        {"operator": "Equal", "value": "logging"},
        {"operator": "Exists", "key": "dedicated", "value": "logging"},
    ],
)
def test_bad_toleration(toleration: dict[str, str]) -> None:
    data = minimal_config()
    data["workload"]["tolerations"] = [toleration]
    with pytest.raises(ValidationError):
        Config.model_validate(data)


def test_bad_names() -> None:
    data = minimal_config()
    data["namespace"] = "Not_Valid"
    with pytest.raises(ValidationError):
        Config.model_validate(data)

    data = minimal_config()
    data["workload"]["bufferVolume"] = {"name": "buffer/volume"}
    with pytest.raises(ValidationError):
        Config.model_validate(data)

    data = minimal_config()
    data["unknownSetting"] = True
    with pytest.raises(ValidationError):
        Config.model_validate(data)


@pytest.mark.parametrize(
    "requirement",
    [
        {"key": "zone", "operator": "In"},
        {"key": "zone", "operator": "Exists", "values": ["a"]},
        {"key": "cpus", "operator": "Gt", "values": ["many"]},
    ],
)
def test_bad_affinity(requirement: dict[str, Any]) -> None:
    data = minimal_config()
    term = {"matchExpressions": [requirement]}
    data["workload"]["affinity"] = {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [term]
            }
        }
    }
    with pytest.raises(ValidationError):
        Config.model_validate(data)


def test_bad_spread_selector() -> None:
    data = minimal_config()
    expression = {"key": "cpus", "operator": "Lt", "values": ["4"]}
    data["workload"]["topologySpreadConstraints"] = [
        {
            "maxSkew": 1,
            "topologyKey": "topology.kubernetes.io/zone",
            "labelSelector": {"matchExpressions": [expression]},
        }
    ]
    with pytest.raises(ValidationError):
        Config.model_validate(data)


def test_timeout_description() -> None:
    description = DrainConfig.model_fields["timeout"].description
    assert description
    assert "separately for acting on each volume" in description
