from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest

from triage_bot.store.db import TriageDB


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db(clock: FakeClock) -> Iterator[TriageDB]:
    store = TriageDB(":memory:", clock=clock)
    yield store
    store.close()
