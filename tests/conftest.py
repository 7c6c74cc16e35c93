import pathlib
import sys

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from arc_backend.config import BackendConfig
from arc_backend.datastore import InMemoryDatastore
from arc_backend.main import create_app
from arc_backend.store import store


class StepClock:
    """Deterministic millisecond clock: every call advances by ``step``."""

    def __init__(self, start: int = 1_000, step: int = 1_000) -> None:
        self.value = start - step
        self.step = step

    def __call__(self) -> int:
        self.value += self.step
        return self.value


@pytest.fixture(autouse=True)
def reset_store():
    store.reset()
    yield


@pytest.fixture
def config() -> BackendConfig:
    return BackendConfig()


@pytest.fixture
def datastore() -> InMemoryDatastore:
    return InMemoryDatastore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())
