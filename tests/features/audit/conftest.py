import pytest

from fakes import FakeClock, FakeStore


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_store():
    return FakeStore()
