from datetime import datetime, timedelta, timezone

import pytest

from cronq.pipeline import PipelineBackend
from cronq.scheduler import SchedulerBackend


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cronq.db")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 6, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def pipeline(db_path, clock):
    backend = PipelineBackend(db_path, clock=clock)
    yield backend
    backend.close()


@pytest.fixture
def scheduler(db_path):
    backend = SchedulerBackend(db_path)
    yield backend
    backend.close()
