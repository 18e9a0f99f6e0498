from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clientflow_automation.common.config import get_settings
from clientflow_automation.delivery.mock import MockChannelAdapter
from clientflow_automation.queue.memory import MemoryQueueBackend
from clientflow_automation.queue.producer import JobProducer
from clientflow_automation.queue.registry import build_registry
from clientflow_automation.storage.models import Base, Organization


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend(clock) -> MemoryQueueBackend:
    return MemoryQueueBackend(clock=clock)


@pytest.fixture()
def registry():
    return build_registry(get_settings())


@pytest.fixture()
def producer(backend, registry) -> JobProducer:
    return JobProducer(backend, registry)


@pytest.fixture()
def adapter() -> MockChannelAdapter:
    return MockChannelAdapter()


@pytest.fixture()
def org(session_factory) -> Organization:
    with session_factory() as s:
        row = Organization(
            id="org_1",
            name="Acme Dental",
            slug="acme",
            timezone="UTC",
            created_at=datetime(2024, 1, 1),
        )
        s.add(row)
        s.commit()
    return row
