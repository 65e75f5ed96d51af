"""Shared fixtures: a fresh scheduler per test, optionally driven by hand."""

import asyncio

import pytest

import bansa


class TickQueue:
    """Manual stand-in for the event loop's call_soon / call_later(0)."""

    def __init__(self):
        self.soon = []
        self.later = []

    def defer(self, callback):
        self.soon.append(callback)

    def defer_gc(self, callback):
        self.later.append(callback)

    def run_soon(self):
        """Drain the flush queue, like letting pending microtasks run."""
        while self.soon:
            self.soon.pop(0)()

    def tick(self):
        """Drain flushes, then one round of GC callbacks, then flushes again."""
        self.run_soon()
        later, self.later = self.later, []
        for callback in later:
            callback()
        self.run_soon()


@pytest.fixture(autouse=True)
def scheduler():
    yield bansa.set_scheduler()
    bansa.set_scheduler()


@pytest.fixture
def ticks():
    queue = TickQueue()
    bansa.set_scheduler(defer=queue.defer, defer_gc=queue.defer_gc)
    return queue


async def _settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _collect(delay=0.01):
    await _settle()
    await asyncio.sleep(delay)
    await _settle()


@pytest.fixture
def settle():
    """Let flushes and completion callbacks on the running loop play out."""
    return _settle


@pytest.fixture
def collect():
    """Wait long enough for the deferred garbage collection to run."""
    return _collect
