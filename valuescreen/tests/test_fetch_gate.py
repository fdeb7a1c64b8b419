"""
Acceptance tests: rate-limited fetch gate

Rules:
  - Consecutive acquires are at least min_interval_s apart, concurrent callers included.
  - min_interval_s = 0 never waits.
"""

import asyncio
import time

import pytest

from valuescreen.api_clients.fetch_gate import FetchGate

# asyncio.sleep may wake a hair early on coarse clocks
SLACK_S = 0.02


@pytest.mark.asyncio
async def test_sequential_acquires_are_spaced():
    gate = FetchGate(0.15, name="test")
    started = time.monotonic()
    for _ in range(3):
        await gate.acquire()
    assert time.monotonic() - started >= 0.30 - SLACK_S


@pytest.mark.asyncio
async def test_concurrent_callers_are_serialised():
    gate = FetchGate(0.1, name="test")
    stamps: list[float] = []

    async def caller():
        await gate.acquire()
        stamps.append(time.monotonic())

    await asyncio.gather(*(caller() for _ in range(4)))

    assert len(stamps) == 4
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(gap >= 0.1 - SLACK_S for gap in gaps)


@pytest.mark.asyncio
async def test_first_acquire_does_not_wait():
    gate = FetchGate(5.0, name="test")
    started = time.monotonic()
    await gate.acquire()
    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_zero_interval_never_waits():
    gate = FetchGate(0, name="test")
    started = time.monotonic()
    for _ in range(20):
        await gate.acquire()
    assert time.monotonic() - started < 0.5


def test_negative_interval_clamped():
    assert FetchGate(-3).min_interval_s == 0.0
