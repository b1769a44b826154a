import pytest

from fakes import FakeTransport, MemoryCursorStore


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def cursor_store() -> MemoryCursorStore:
    return MemoryCursorStore()
