import pytest
import sys
from pathlib import Path
from datetime import datetime

# Add root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from memory.ledger_store import LedgerStore
from tools.reward_ledger import RewardLedger

VALID_XRP_ADDRESS = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"


class MockSession:
    def __init__(self):
        self.user_id = "test_user"
        self.session_id = "test_session"


class MockToolContext:
    """Mimics the ADK tool context the coach tools receive"""
    def __init__(self):
        self.session = MockSession()
        self.state = {
            "user:id": "test_user",
            "user:name": "Test Lifter",
        }
        self.memory_service = None


@pytest.fixture
def tool_context():
    return MockToolContext()


@pytest.fixture
def store():
    return LedgerStore()


@pytest.fixture
def ledger(store):
    return RewardLedger(store)


@pytest.fixture
def february_history(store):
    """Jan 1 → Feb 1 history for test_user plus a February goal."""
    store.add_measurement("test_user", date=datetime(2026, 1, 1), weight=200, muscle_mass=60, body_fat=20)
    store.add_measurement("test_user", date=datetime(2026, 2, 1), weight=190, muscle_mass=61, body_fat=19.5)
    return store.add_goal("test_user", "February", weight_loss=10, muscle_gain=2, body_fat_reduction=1)
