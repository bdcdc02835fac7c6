"""
VII-FT Coach — Goal Tracker
===========================
The evaluation pass that joins the evaluator and the reward ledger:
evaluate the current month's goal, credit every sub-goal that reached
100%, and report what happened.

Safe to run repeatedly (cron, after each measurement): an already
rewarded sub-goal is skipped, never credited twice.
"""

from datetime import date
from typing import Dict, Any, List, Optional

from memory.ledger_store import LedgerStore
from tools.fitness_schemas import GoalStatus, PerformanceStatus
from tools.goal_evaluator import evaluate_performance, find_current_goal
from tools.reward_ledger import (
    DuplicateAccrual,
    GoalNotActive,
    RewardLedger,
    RewardLedgerError,
    with_conflict_retry,
)

# =============================================================================
# CONFIGURATION
# =============================================================================
TRACKER_CONFIG = {
    "reward_status": PerformanceStatus.SUCCESS,
    "conflict_retries": 3,
}


# =============================================================================
# EVALUATION PASS
# =============================================================================
def run_goal_evaluation(
    user_id: str,
    store: LedgerStore,
    ledger: RewardLedger,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Evaluate a user's current goal and accrue rewards for achieved sub-goals.

    Returns:
        Dictionary with:
        - status: "success" or "no_data"
        - goal_id / goal_status: the goal that was evaluated
        - performance: evaluator records
        - rewards: newly credited CompletedGoal records
        - skipped: sub-goals at 100% that were already rewarded
    """
    today = today or date.today()
    measurements = store.get_measurements(user_id)
    goals = store.get_goals(user_id)

    records = evaluate_performance(measurements, goals, today=today)
    goal = find_current_goal(goals, today)

    if not records or goal is None:
        return {
            "status": "no_data",
            "message": "Not enough data to evaluate this month's goal yet.",
            "performance": [],
            "rewards": [],
            "skipped": [],
        }

    rewards: List[Dict[str, Any]] = []
    skipped: List[str] = []

    for record in records:
        if record.status != TRACKER_CONFIG["reward_status"]:
            continue
        if goal.is_achieved(record.metric_key):
            skipped.append(record.metric_key.value)
            continue

        try:
            completed = with_conflict_retry(
                lambda: ledger.accrue_reward(
                    goal.id,
                    record.metric_key.value,
                    achieved_value=record.actual_delta,
                    target_value=record.target,
                ),
                attempts=TRACKER_CONFIG["conflict_retries"],
            )
            rewards.append(completed.model_dump(mode="json"))
        except (DuplicateAccrual, GoalNotActive):
            skipped.append(record.metric_key.value)

    refreshed = next((g for g in store.get_goals(user_id) if g.id == goal.id), goal)

    if rewards:
        total = sum(r["reward_amount"] for r in rewards)
        print(f"🏆 Goal pass for {user_id}: {len(rewards)} sub-goal(s) achieved, +{total:g} VII-FT")

    return {
        "status": "success",
        "goal_id": refreshed.id,
        "goal_status": refreshed.status.value,
        "performance": [r.model_dump(mode="json") for r in records],
        "rewards": rewards,
        "skipped": skipped,
    }


def run_all_goal_evaluations(
    store: LedgerStore,
    ledger: RewardLedger,
    today: Optional[date] = None,
) -> Dict[str, Dict[str, Any]]:
    """Scheduled-job entry point: one evaluation pass per known user."""
    results = {}
    for user_id in store.user_ids():
        try:
            results[user_id] = run_goal_evaluation(user_id, store, ledger, today=today)
        except RewardLedgerError as e:
            print(f"⚠️ Goal pass failed for {user_id}: {e}")
            results[user_id] = {"status": "error", "error_message": str(e)}
    return results


def cancel_goal(user_id: str, goal_id: str, store: LedgerStore) -> Dict[str, Any]:
    """Mark an in-progress goal as cancelled. Completed goals stay completed."""
    ledger = store.snapshot(user_id)
    goal = ledger.find_goal(goal_id)
    if goal is None:
        return {"status": "error", "error_message": f"Goal {goal_id} not found"}
    if goal.status != GoalStatus.IN_PROGRESS:
        return {"status": "error", "error_message": f"Goal is already {goal.status.value}"}

    goal.status = GoalStatus.CANCELLED
    store.commit(ledger)
    return {"status": "success", "goal": goal.model_dump(mode="json")}


__all__ = [
    "run_goal_evaluation",
    "run_all_goal_evaluations",
    "cancel_goal",
    "TRACKER_CONFIG",
]
