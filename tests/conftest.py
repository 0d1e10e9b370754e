import pytest

from fakes import FakeBackend, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000.0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
