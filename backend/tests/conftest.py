import pytest

from tests.fakes import FakeClock, FakeNotifier, FakeTransport, RecordingExtension


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def recorder():
    return RecordingExtension()
