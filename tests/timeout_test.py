"""Tests for the pass timeout."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from bufferdrain.exceptions import ControllerTimeoutError
from bufferdrain.timeout import Timeout


@pytest.mark.asyncio
async def test_timeout() -> None:
    timeout = Timeout("Drain of buffer-fluentd-1", timedelta(seconds=10))
    assert 9 < timeout.left() <= 10

    async with timeout.enforce():
        await asyncio.sleep(0.01)
    assert timeout.left() < 10


@pytest.mark.asyncio
async def test_enforce() -> None:
    timeout = Timeout("Drain pass", timedelta(seconds=0.1))
    with pytest.raises(ControllerTimeoutError) as excinfo:
        async with timeout.enforce():
            await asyncio.sleep(1)
    assert str(excinfo.value).startswith("Drain pass timed out after")

    with pytest.raises(ControllerTimeoutError):
        timeout.left()
