# tools/fitness_schemas.py
"""
VII-FT Coach — Shared Data Models
=================================
Pydantic models for measurements, monthly goals, performance records and
the VII-FT reward ledger (balance, completed goals, transactions).

Every record that crosses the store / API / agent boundary is one of these.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# =============================================================================
# ENUMS
# =============================================================================
class GoalMetric(str, Enum):
    """The three sub-goals a monthly goal can target."""
    WEIGHT_LOSS = "weight_loss"
    MUSCLE_GAIN = "muscle_gain"
    BODY_FAT_REDUCTION = "body_fat_reduction"


class GoalStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PerformanceStatus(str, Enum):
    """Progress band for a metric. ERROR means behind target, not a fault."""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class TransactionType(str, Enum):
    EARNED = "earned"
    CLAIMED = "claimed"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TrustLineStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class MeasurementSource(str, Enum):
    MANUAL = "manual"
    LEFU_SCALE = "lefu_scale"


# =============================================================================
# MEASUREMENTS
# =============================================================================
class Measurement(BaseModel):
    """A timestamped body-composition snapshot. Never mutated once logged."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    date: datetime
    source: MeasurementSource = MeasurementSource.MANUAL
    device_name: Optional[str] = None

    # Primary metrics (the ones goals are evaluated against)
    weight: Optional[float] = Field(None, gt=0)
    body_fat: Optional[float] = Field(None, ge=0, le=100)
    muscle_mass: Optional[float] = Field(None, gt=0)

    # Scale composition
    bmi: Optional[float] = None
    bone_mass: Optional[float] = None
    visceral_fat: Optional[float] = None
    total_body_water: Optional[float] = None
    bmr: Optional[float] = None
    metabolic_age: Optional[float] = None
    protein_level: Optional[float] = None
    subcutaneous_fat: Optional[float] = None
    lean_body_mass: Optional[float] = None
    heart_rate: Optional[float] = None

    # Segmental analysis
    left_arm_muscle: Optional[float] = None
    right_arm_muscle: Optional[float] = None
    trunk_muscle: Optional[float] = None
    left_leg_muscle: Optional[float] = None
    right_leg_muscle: Optional[float] = None
    left_arm_fat: Optional[float] = None
    right_arm_fat: Optional[float] = None
    trunk_fat: Optional[float] = None
    left_leg_fat: Optional[float] = None
    right_leg_fat: Optional[float] = None

    # Circumferences
    neck: Optional[float] = None
    shoulders: Optional[float] = None
    chest: Optional[float] = None
    upper_arm_left: Optional[float] = None
    upper_arm_right: Optional[float] = None
    forearm_left: Optional[float] = None
    forearm_right: Optional[float] = None
    waist: Optional[float] = None
    hips: Optional[float] = None
    thigh_left: Optional[float] = None
    thigh_right: Optional[float] = None
    calf_left: Optional[float] = None
    calf_right: Optional[float] = None

    # Skinfolds (mm)
    triceps: Optional[float] = None
    biceps: Optional[float] = None
    subscapular: Optional[float] = None
    suprailiac: Optional[float] = None

    # Performance tests
    squat_max: Optional[float] = None
    bench_max: Optional[float] = None
    deadlift_max: Optional[float] = None
    pushup_count: Optional[int] = None
    plank_time: Optional[float] = None
    vertical_jump: Optional[float] = None


# =============================================================================
# GOALS
# =============================================================================
class Goal(BaseModel):
    """A per-user, per-month declaration of three target deltas."""
    id: str
    user_id: str
    month: str = Field(..., min_length=1)
    weight_loss: float = Field(0.0, ge=0)
    muscle_gain: float = Field(0.0, ge=0)
    body_fat_reduction: float = Field(0.0, ge=0)
    status: GoalStatus = GoalStatus.IN_PROGRESS
    achieved: Dict[GoalMetric, bool] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)

    def target_for(self, metric: GoalMetric) -> float:
        return getattr(self, metric.value)

    def targeted_metrics(self) -> List[GoalMetric]:
        return [m for m in GoalMetric if self.target_for(m)]

    def is_achieved(self, metric: GoalMetric) -> bool:
        return bool(self.achieved.get(metric))


class PerformanceRecord(BaseModel):
    """Derived progress for one metric. Recomputed on every evaluation."""
    metric: str
    value: str
    percent_complete: float = Field(..., ge=0, le=100)
    status: PerformanceStatus
    metric_key: GoalMetric
    actual_delta: float
    target: float


# =============================================================================
# VII-FT LEDGER
# =============================================================================
class VIIFTBalance(BaseModel):
    """Ledger head. total_earned == pending_balance + total_claimed."""
    total_earned: float = 0
    pending_balance: float = 0
    total_claimed: float = 0
    xrp_wallet_address: Optional[str] = None
    trust_line_status: TrustLineStatus = TrustLineStatus.NONE

    @computed_field
    @property
    def trust_line_setup(self) -> bool:
        return self.trust_line_status == TrustLineStatus.ACTIVE

    def is_consistent(self) -> bool:
        return abs(self.total_earned - (self.pending_balance + self.total_claimed)) < 1e-9


class CompletedGoal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    goal_id: str
    metric: GoalMetric
    target_value: float
    achieved_value: float
    reward_amount: float
    completed_at: datetime = Field(default_factory=datetime.now)


class VIIFTTransaction(BaseModel):
    id: int
    type: TransactionType
    amount: float = Field(..., gt=0)
    timestamp: datetime = Field(default_factory=datetime.now)
    status: TransactionStatus
    tx_hash: Optional[str] = None
    wallet_address: Optional[str] = None
    failure_reason: Optional[str] = None
    # Set once settle_claim hands the claim to the transfer gateway
    submitted_at: Optional[datetime] = None


class UserLedger(BaseModel):
    """Everything the store keeps for one user. `version` backs compare-and-swap."""
    user_id: str
    version: int = 0
    balance: VIIFTBalance = Field(default_factory=VIIFTBalance)
    completed_goals: List[CompletedGoal] = Field(default_factory=list)
    transactions: List[VIIFTTransaction] = Field(default_factory=list)
    goals: List[Goal] = Field(default_factory=list)
    measurements: List[Measurement] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.now)

    def find_goal(self, goal_id: str) -> Optional[Goal]:
        for goal in self.goals:
            if goal.id == goal_id:
                return goal
        return None

    def find_transaction(self, transaction_id: int) -> Optional[VIIFTTransaction]:
        for txn in self.transactions:
            if txn.id == transaction_id:
                return txn
        return None


__all__ = [
    "GoalMetric",
    "GoalStatus",
    "PerformanceStatus",
    "TransactionType",
    "TransactionStatus",
    "TrustLineStatus",
    "MeasurementSource",
    "Measurement",
    "Goal",
    "PerformanceRecord",
    "VIIFTBalance",
    "CompletedGoal",
    "VIIFTTransaction",
    "UserLedger",
]
