from collections.abc import Iterator

import pytest

from crosspls.core.bus import Bus
from crosspls.core.config import ConfigManager


@pytest.fixture(autouse=True)
def bus_context() -> Iterator[None]:
    token = Bus.provide(Bus())
    try:
        yield
    finally:
        Bus.restore(token)


@pytest.fixture(autouse=True)
def _config_teardown() -> Iterator[None]:
    yield
    ConfigManager.reset()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
