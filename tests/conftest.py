from datetime import timedelta

import pytest

from meshsync.sync.entities import parse_timestamp


class ManualClock:
    def __init__(self, start: str = "2031-05-01T08:00:00Z"):
        self.now = parse_timestamp(start)

    def __call__(self):
        return self.now

    def tick(self, seconds: int = 1):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
