"""
VII-FT Coach — JSON Ledger Store
================================
- One JSON document per user (measurements, goals, balance, records)
- Compare-and-swap commits on a per-user `version`
- filepath=None keeps everything in memory (tests, scratch sessions)
"""

import os
import json
import uuid
import threading
import calendar
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime

from dotenv import load_dotenv

from tools.fitness_schemas import Goal, Measurement, UserLedger

# =============================================================================
# CONFIGURATION
# =============================================================================
load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.environ.get("VIIFT_DATA_DIR", os.path.join(BASE_DIR, "data"))
STATE_FILE = os.environ.get("VIIFT_STATE_FILE", os.path.join(DATA_DIR, "ledger_state.json"))

LEDGER_CONFIG = {
    "app_name": "viift_coach",
    "state_file": STATE_FILE,
    "json_indent": 2,
}


# =============================================================================
# ERRORS
# =============================================================================
class LedgerStoreError(Exception):
    """Base class for data-access failures."""


class ConcurrentUpdateConflict(LedgerStoreError):
    """The user's ledger changed since it was read. Retry the whole operation."""

    def __init__(self, user_id: str, expected: int, actual: int):
        self.user_id = user_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Ledger for '{user_id}' was updated concurrently "
            f"(expected version {expected}, found {actual}). Please retry."
        )


class DuplicateGoal(LedgerStoreError):
    """A goal already exists for this user and month."""

    def __init__(self, user_id: str, month: str):
        self.user_id = user_id
        self.month = month
        super().__init__(f"A goal for {month} already exists for this user")


# =============================================================================
# HELPERS
# =============================================================================
_MONTH_NAMES = {name.lower(): idx for idx, name in enumerate(calendar.month_name) if name}


def normalize_month(month: str) -> str:
    """
    Canonical key for the one-goal-per-month rule.

    "February", "february" and "2026-02" all name a month; long names
    collapse to their lowercase form, YYYY-MM stays as-is.
    """
    month = month.strip()
    if month.lower() in _MONTH_NAMES:
        return month.lower()
    return month


def _month_parts(month: str) -> Tuple[Optional[int], Optional[int]]:
    """(year, month number); year is None for a bare month name."""
    key = normalize_month(month)
    if key in _MONTH_NAMES:
        return None, _MONTH_NAMES[key]
    try:
        parsed = datetime.strptime(key, "%Y-%m")
    except ValueError:
        return None, None
    return parsed.year, parsed.month


def months_overlap(first: str, second: str) -> bool:
    """
    True if both goal months can be the current month at the same time.

    A bare name recurs every year, so "February" overlaps "2026-02" and
    "2027-02"; two YYYY-MM values overlap only when equal.
    """
    if normalize_month(first) == normalize_month(second):
        return True
    year_a, num_a = _month_parts(first)
    year_b, num_b = _month_parts(second)
    if num_a is None or num_a != num_b:
        return False
    return year_a is None or year_b is None or year_a == year_b


def generate_record_id(prefix: str) -> str:
    timestamp = int(datetime.now().timestamp())
    unique = uuid.uuid4().hex[:6]
    return f"{prefix}_{timestamp}_{unique}"


# =============================================================================
# LEDGER STORE
# =============================================================================
class LedgerStore:
    """Reads and writes user ledgers, optionally backed by a JSON file."""

    def __init__(self, filepath: Optional[str] = None):
        self.filepath = filepath
        self._lock = threading.Lock()
        self._cache: Dict[str, Dict[str, Any]] = self._load()

    @classmethod
    def default(cls) -> "LedgerStore":
        os.makedirs(os.path.dirname(STATE_FILE) or ".", exist_ok=True)
        print(f"📂 Ledger storage: {STATE_FILE}")
        return cls(STATE_FILE)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.filepath or not os.path.exists(self.filepath):
            return {}
        with open(self.filepath, "r") as f:
            return json.load(f)

    def _save(self):
        if not self.filepath:
            return
        tmp_path = f"{self.filepath}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(self._cache, f, indent=LEDGER_CONFIG["json_indent"], default=str)
        os.replace(tmp_path, self.filepath)

    # -------------------------------------------------------------------------
    # Snapshot / commit
    # -------------------------------------------------------------------------
    def snapshot(self, user_id: str) -> UserLedger:
        """Detached copy of the user's ledger. Mutate it, then commit()."""
        with self._lock:
            raw = self._cache.get(user_id)
        if raw is None:
            return UserLedger(user_id=user_id)
        return UserLedger.model_validate(raw)

    def version_of(self, user_id: str) -> int:
        with self._lock:
            return self._cache.get(user_id, {}).get("version", 0)

    def commit(self, ledger: UserLedger) -> UserLedger:
        """
        Write the ledger back if nobody else committed since it was read.

        Raises:
            ConcurrentUpdateConflict: the stored version moved on.
        """
        with self._lock:
            current = self._cache.get(ledger.user_id, {}).get("version", 0)
            if current != ledger.version:
                raise ConcurrentUpdateConflict(ledger.user_id, ledger.version, current)

            committed = ledger.model_copy(
                update={"version": current + 1, "updated_at": datetime.now()}
            )
            self._cache[ledger.user_id] = committed.model_dump(mode="json")
            self._save()
        return committed

    def user_ids(self) -> List[str]:
        with self._lock:
            return list(self._cache.keys())

    # -------------------------------------------------------------------------
    # Data source: measurements & goals
    # -------------------------------------------------------------------------
    def get_measurements(self, user_id: str) -> List[Measurement]:
        return list(self.snapshot(user_id).measurements)

    def add_measurement(self, user_id: str, **fields) -> Measurement:
        ledger = self.snapshot(user_id)
        fields.setdefault("date", datetime.now())
        measurement = Measurement(id=generate_record_id("ms"), user_id=user_id, **fields)
        ledger.measurements.append(measurement)
        self.commit(ledger)
        return measurement

    def get_goals(self, user_id: str) -> List[Goal]:
        return list(self.snapshot(user_id).goals)

    def add_goal(self, user_id: str, month: str, **targets) -> Goal:
        """
        Declare a monthly goal.

        Raises:
            DuplicateGoal: the user already has a goal for this month.
        """
        ledger = self.snapshot(user_id)
        for existing in ledger.goals:
            if months_overlap(existing.month, month):
                raise DuplicateGoal(user_id, month)

        goal = Goal(id=generate_record_id("goal"), user_id=user_id, month=month.strip(), **targets)
        ledger.goals.append(goal)
        self.commit(ledger)
        return goal

    def find_goal_owner(self, goal_id: str) -> Optional[str]:
        """User id owning the goal, or None."""
        with self._lock:
            items = list(self._cache.items())
        for user_id, raw in items:
            for goal in raw.get("goals", []):
                if goal.get("id") == goal_id:
                    return user_id
        return None


__all__ = [
    "LedgerStore",
    "LedgerStoreError",
    "ConcurrentUpdateConflict",
    "DuplicateGoal",
    "LEDGER_CONFIG",
    "normalize_month",
    "months_overlap",
    "generate_record_id",
]
