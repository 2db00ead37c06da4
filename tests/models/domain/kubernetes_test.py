"""Tests for the shared Kubernetes domain models."""

from __future__ import annotations

from datetime import timedelta

from bufferdrain.models.domain.kubernetes import ReconcileResult


def test_merge() -> None:
    soon = ReconcileResult(requeue_after=timedelta(seconds=1))
    later = ReconcileResult(requeue_after=timedelta(seconds=5))
    now = ReconcileResult()
    done = ReconcileResult(requeue=False)

    assert soon.merge(None) == soon
    assert soon.merge(later) == soon
    assert later.merge(soon) == soon
    assert now.merge(soon) == now
    assert soon.merge(now) == now
    assert done.merge(later) == later
    assert done.merge(done) == done
