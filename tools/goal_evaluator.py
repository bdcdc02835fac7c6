# tools/goal_evaluator.py
"""
VII-FT Coach — Goal Performance Evaluator
=========================================
Compares the two most recent body measurements against the current
month's goal and reports percent-completion per metric:

  - Weight Loss         (progress = weight going down)
  - Muscle Gain         (progress = muscle mass going up)
  - Body Fat Reduction  (progress = body fat % going down)

Pure computation: no storage, no clock reads beyond the `today` default.
Missing data degrades to an absent record, never an exception.
"""

import calendar
from datetime import date
from typing import Dict, Any, List, Optional, Sequence

from tools.fitness_schemas import (
    Goal,
    GoalMetric,
    GoalStatus,
    Measurement,
    PerformanceRecord,
    PerformanceStatus,
)


# =============================================================================
# CONSTANTS & POLICY
# =============================================================================

# Percent-complete bands (checked highest first)
STATUS_THRESHOLDS = {
    PerformanceStatus.SUCCESS: 100.0,
    PerformanceStatus.WARNING: 90.0,
}

# How each goal metric maps onto a measurement field
METRIC_RULES: Dict[GoalMetric, Dict[str, Any]] = {
    GoalMetric.WEIGHT_LOSS: {
        "label": "Weight Loss",
        "field": "weight",
        "direction": "decrease",
        "unit": " lbs",
    },
    GoalMetric.MUSCLE_GAIN: {
        "label": "Muscle Gain",
        "field": "muscle_mass",
        "direction": "increase",
        "unit": " lbs",
    },
    GoalMetric.BODY_FAT_REDUCTION: {
        "label": "Body Fat Reduction",
        "field": "body_fat",
        "direction": "decrease",
        "unit": "%",
    },
}

EVALUATOR_CONFIG = {
    "min_measurements": 2,
    "max_percent": 100.0,
    "min_percent": 0.0,
}

KG_PER_LB = 0.453592


# =============================================================================
# HELPERS
# =============================================================================
def convert_weight(value: float, from_unit: str, to_unit: str) -> float:
    """
    Convert a weight between pounds and kilograms.

    Args:
        value: The weight to convert
        from_unit: "lbs" or "kg"
        to_unit: "lbs" or "kg"
    """
    units = {"lbs", "kg"}
    if from_unit not in units or to_unit not in units:
        raise ValueError(f"Unknown weight unit: use one of {sorted(units)}")
    if from_unit == to_unit:
        return value
    if from_unit == "lbs":
        return value * KG_PER_LB
    return value / KG_PER_LB


def month_matches(goal_month: str, today: date) -> bool:
    """True if a goal's month ("February" or "2026-02") is today's month."""
    month = goal_month.strip()
    if month.lower() == calendar.month_name[today.month].lower():
        return True
    return month == today.strftime("%Y-%m")


def find_current_goal(goals: Sequence[Goal], today: date) -> Optional[Goal]:
    for goal in goals:
        if goal.status == GoalStatus.CANCELLED:
            continue
        if month_matches(goal.month, today):
            return goal
    return None


def classify_progress(percent_complete: float) -> PerformanceStatus:
    if percent_complete >= STATUS_THRESHOLDS[PerformanceStatus.SUCCESS]:
        return PerformanceStatus.SUCCESS
    if percent_complete >= STATUS_THRESHOLDS[PerformanceStatus.WARNING]:
        return PerformanceStatus.WARNING
    return PerformanceStatus.ERROR


def _format_target(target: float) -> str:
    # 10.0 -> "10", 2.5 -> "2.5"
    return f"{target:g}"


def evaluate_metric(
    metric: GoalMetric,
    target: float,
    previous: Measurement,
    latest: Measurement,
) -> Optional[PerformanceRecord]:
    """
    Progress record for one metric, or None when it can't be computed.

    Args:
        metric: Which sub-goal to evaluate
        target: Goal magnitude (e.g. 10 for "lose 10 lbs")
        previous: Second-most-recent measurement
        latest: Most recent measurement
    """
    rule = METRIC_RULES[metric]
    previous_value = getattr(previous, rule["field"])
    latest_value = getattr(latest, rule["field"])

    if not target or not previous_value or not latest_value:
        return None

    if rule["direction"] == "decrease":
        actual_delta = previous_value - latest_value
    else:
        actual_delta = latest_value - previous_value

    raw_percent = (actual_delta / target) * 100
    percent_complete = min(
        EVALUATOR_CONFIG["max_percent"],
        max(EVALUATOR_CONFIG["min_percent"], raw_percent),
    )

    return PerformanceRecord(
        metric=rule["label"],
        value=f"{actual_delta:.1f} / {_format_target(target)}{rule['unit']}",
        percent_complete=percent_complete,
        status=classify_progress(percent_complete),
        metric_key=metric,
        actual_delta=round(actual_delta, 4),
        target=target,
    )


# =============================================================================
# EVALUATOR
# =============================================================================
def evaluate_performance(
    measurements: Sequence[Measurement],
    goals: Sequence[Goal],
    today: Optional[date] = None,
) -> List[PerformanceRecord]:
    """
    Per-metric progress for the current month's goal.

    Returns an empty list when there is nothing to report: no measurements,
    no goals, fewer than two measurements, or no goal for this month.

    Example:
        >>> records = evaluate_performance(history, goals, today=date(2026, 2, 3))
        >>> records[0].value  # "5.0 / 10 lbs"
    """
    if not measurements or not goals:
        return []

    ordered = sorted(measurements, key=lambda m: m.date)
    if len(ordered) < EVALUATOR_CONFIG["min_measurements"]:
        return []

    latest = ordered[-1]
    previous = ordered[-2]

    current_goal = find_current_goal(goals, today or date.today())
    if current_goal is None:
        return []

    records = []
    for metric in METRIC_RULES:
        record = evaluate_metric(metric, current_goal.target_for(metric), previous, latest)
        if record is not None:
            records.append(record)
    return records


def summarize_performance(records: Sequence[PerformanceRecord]) -> Dict[str, Any]:
    """Tool-friendly dict view of evaluation output."""
    if not records:
        return {
            "status": "no_data",
            "message": "Log at least two measurements and set a goal for this month to see progress.",
            "performance": [],
        }

    avg = sum(r.percent_complete for r in records) / len(records)
    return {
        "status": "success",
        "performance": [r.model_dump(mode="json") for r in records],
        "average_percent_complete": round(avg, 1),
        "on_track": [r.metric for r in records if r.status != PerformanceStatus.ERROR],
        "behind": [r.metric for r in records if r.status == PerformanceStatus.ERROR],
    }


# =============================================================================
# EXPORTS
# =============================================================================
__all__ = [
    "evaluate_performance",
    "evaluate_metric",
    "summarize_performance",
    "classify_progress",
    "find_current_goal",
    "month_matches",
    "convert_weight",
    "STATUS_THRESHOLDS",
    "METRIC_RULES",
    "EVALUATOR_CONFIG",
]
