from datetime import datetime, timedelta, timezone

import pytest

from motherhood_jobs.db import Database
from motherhood_jobs.services.handlers import HandlerContext, HandlerRegistry, build_default_registry
from motherhood_jobs.services.job_store import JobStore
from motherhood_jobs.services.processor import JobProcessor
from motherhood_jobs.services.dispatcher import Dispatcher


class FakeClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db(tmp_path):
    database = Database(sqlite_path=str(tmp_path / "jobs.db"))
    await database.init_schema()
    yield database
    await database.close()


@pytest.fixture
def store(db, clock):
    return JobStore(db, clock=clock)


@pytest.fixture
def context(db, clock):
    return HandlerContext(db=db, clock=clock)


@pytest.fixture
def registry():
    return build_default_registry()


def make_processor(store: JobStore, registry: HandlerRegistry, context: HandlerContext, **overrides) -> JobProcessor:
    options = {"handler_timeout": 5.0, "lease_seconds": 300}
    options.update(overrides)
    return JobProcessor(store, registry, context, **options)


def make_dispatcher(store: JobStore, processor: JobProcessor, **overrides) -> Dispatcher:
    options = {"batch_size": 10, "pacing_seconds": 0, "lease_seconds": 300}
    options.update(overrides)
    return Dispatcher(store, processor, **options)


@pytest.fixture
def processor_factory(store, context):
    def factory(registry: HandlerRegistry, **overrides) -> JobProcessor:
        return make_processor(store, registry, context, **overrides)
    return factory


@pytest.fixture
def dispatcher_factory(store, processor_factory):
    def factory(registry: HandlerRegistry, processor_options=None, **overrides) -> Dispatcher:
        processor = processor_factory(registry, **(processor_options or {}))
        return make_dispatcher(store, processor, **overrides)
    return factory
