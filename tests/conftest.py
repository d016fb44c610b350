import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from PyQt6.QtCore import QCoreApplication

from fakes import FakeClock


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """Adapters are QObjects, a core application must exist."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def clock():
    return FakeClock()
