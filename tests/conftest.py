import sys
from pathlib import Path

import pytest

# Add the src directory to the path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from db_sync_mysql.coordinator import EventLog  # noqa: E402


@pytest.fixture
def events():
    """EventLog that also records every event it emits"""
    log = EventLog()
    log.received = []
    log.subscribe(log.received.append)
    return log
