"""
Shared fixtures for the local store tests.

Every engine gets its own uniquely named LocMemCache so tests never see each
other's tables. Timers run on :class:`ManualScheduler`, which only fires
callbacks when a test advances its clock.
"""
import inspect
import uuid

import pytest
from django.core.cache import caches
from django.core.cache.backends.locmem import LocMemCache

from persistence.conf import StoreSettings
from persistence.services.engine import StorageEngine
from persistence.services.events import EventBus
from persistence.services.keys import KeyMap
from persistence.services.kvstore import CacheKeyValueStore
from persistence.services.sync import SyncOrchestrator


class ManualTask:
    def __init__(self, due, callback, interval=None):
        self.due = due
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.now = 0.0
        self.tasks = []

    def call_later(self, delay, callback):
        task = ManualTask(self.now + delay, callback)
        self.tasks.append(task)
        return task

    def call_every(self, interval, callback):
        task = ManualTask(self.now + interval, callback, interval)
        self.tasks.append(task)
        return task

    def pending(self):
        return [t for t in self.tasks if not t.cancelled]

    async def advance(self, seconds):
        """Fire every timer due within ``seconds``; returns how many fired."""
        target = self.now + seconds
        fired = 0
        while True:
            due = sorted((t for t in self.pending() if t.due <= target), key=lambda t: t.due)
            if not due:
                break
            task = due[0]
            self.now = task.due
            if task.interval:
                task.due += task.interval
            else:
                task.cancelled = True
            result = task.callback()
            if inspect.isawaitable(result):
                await result
            fired += 1
        self.now = target
        return fired


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def fresh_cache():
    return LocMemCache(f"test-{uuid.uuid4().hex}", {"TIMEOUT": None, "OPTIONS": {"MAX_ENTRIES": 100_000}})


@pytest.fixture
def cache():
    return fresh_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_engine(clock):
    def factory(cache=None, scheduler=None, auto_backup=False, **overrides):
        settings = StoreSettings().with_overrides(**overrides)
        keys = KeyMap(settings.key_prefix)
        store = CacheKeyValueStore(cache or fresh_cache(), namespace=keys.namespace(), quota_bytes=settings.quota_bytes)
        return StorageEngine(store, keys=keys, settings=settings, scheduler=scheduler, clock=clock, auto_backup=auto_backup)
    return factory


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def orchestrator(engine, bus, scheduler):
    orch = SyncOrchestrator(engine, bus, scheduler=scheduler)
    orch.attach()
    yield orch
    orch.close()


@pytest.fixture
def app_store():
    """Reset the project's store and throttle caches around API/command tests."""
    caches["localstore"].clear()
    caches["default"].clear()
    yield
    caches["localstore"].clear()
    caches["default"].clear()
