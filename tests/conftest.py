import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# logging_config creates LOG_DIR at import time
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="shuttle-guard-logs-"))
os.environ.setdefault("ALLOWED_DEVICES", "")

import pytest  # noqa: E402

from shuttle_guard.locks import VehicleLocks  # noqa: E402
from fakes import InMemoryRepository, FakeTraccarClient  # noqa: E402


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def locks() -> VehicleLocks:
    return VehicleLocks()


@pytest.fixture
def traccar() -> FakeTraccarClient:
    return FakeTraccarClient()
