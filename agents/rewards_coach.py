"""
VII-FT Coach — Rewards Coach Agent (ADK Conversational Agent)
=============================================================
A coaching agent that can read the user's goal progress and VII-FT
balance, and start a reward claim, through ADK FunctionTools.

The ledger and store are injected, so the tools never reach for globals.
"""

import os
from typing import Dict, Any, Callable, List, Optional

from dotenv import load_dotenv
from google.adk.agents import LlmAgent
from google.adk.models.google_llm import Gemini
from google.adk.tools import FunctionTool
from google.genai import types

from memory.ledger_store import LedgerStore
from tools.fitness_schemas import TransactionStatus
from tools.goal_evaluator import STATUS_THRESHOLDS, evaluate_performance, summarize_performance
from tools.reward_ledger import (
    REWARD_TABLE,
    TOKEN_CODE,
    RewardLedger,
    RewardLedgerError,
)

load_dotenv()

# =============================================================================
# CONFIGURATION
# =============================================================================
COACH_CONFIG = {
    "name": "VIIFTRewardsCoach",
    "model": os.environ.get("VIIFT_COACH_MODEL", "gemini-2.5-flash-lite"),
    "recent_achievements": 5,
}


def get_retry_config() -> types.HttpRetryOptions:
    """Get standard retry configuration."""
    return types.HttpRetryOptions(
        attempts=5,
        exp_base=7,
        initial_delay=1,
        http_status_codes=[429, 500, 503, 504],
    )


def _resolve_user_id(tool_context: Any) -> str:
    state = getattr(tool_context, "state", None)
    if state is not None:
        user_id = state.get("user:id")
        if user_id:
            return user_id
    user_id = getattr(tool_context, "user_id", None)
    if user_id:
        return user_id
    return getattr(getattr(tool_context, "session", None), "user_id", "default")


# =============================================================================
# COACH TOOLS
# =============================================================================
def build_reward_tools(ledger: RewardLedger, store: LedgerStore) -> List[Callable]:
    """Tool functions bound to one ledger/store pair."""

    def get_goal_progress(tool_context: Any) -> Dict[str, Any]:
        """
        Get the user's progress toward this month's fitness goal.

        Compares the two most recent body measurements with the goal for
        weight loss, muscle gain and body fat reduction.
        """
        user_id = _resolve_user_id(tool_context)
        records = evaluate_performance(store.get_measurements(user_id), store.get_goals(user_id))
        return summarize_performance(records)

    def get_reward_balance(tool_context: Any) -> Dict[str, Any]:
        """
        Get the user's VII-FT token balance, wallet status and recent achievements.
        """
        user_id = _resolve_user_id(tool_context)
        balance = ledger.get_balance(user_id)
        achievements = ledger.list_completed_goals(user_id)[: COACH_CONFIG["recent_achievements"]]
        return {
            "status": "success",
            "balance": balance.model_dump(mode="json"),
            "wallet_state": ledger.wallet_state(user_id).value,
            "recent_achievements": [a.model_dump(mode="json") for a in achievements],
        }

    def claim_rewards(tool_context: Any) -> Dict[str, Any]:
        """
        Claim all pending VII-FT tokens to the user's connected XRP wallet.

        Only call this when the user explicitly asks to claim.
        """
        user_id = _resolve_user_id(tool_context)
        try:
            txn = ledger.claim(user_id)
            txn = ledger.settle_claim(user_id, txn.id)
        except RewardLedgerError as e:
            return {"status": "error", "error_message": str(e)}

        if txn.status == TransactionStatus.FAILED:
            return {
                "status": "error",
                "error_message": f"Transfer failed, {txn.amount:g} {TOKEN_CODE} returned to your balance",
                "transaction": txn.model_dump(mode="json"),
            }
        return {"status": "success", "transaction": txn.model_dump(mode="json")}

    def get_reward_rules() -> Dict[str, Any]:
        """Explain how many VII-FT tokens each goal type earns and the progress bands."""
        return {
            "status": "success",
            "token": TOKEN_CODE,
            "rewards": {metric.value: amount for metric, amount in REWARD_TABLE.items()},
            "progress_bands": {status.value: pct for status, pct in STATUS_THRESHOLDS.items()},
        }

    return [get_goal_progress, get_reward_balance, claim_rewards, get_reward_rules]


# =============================================================================
# AGENT FACTORY
# =============================================================================
def create_rewards_coach_agent(
    ledger: RewardLedger,
    store: LedgerStore,
    retry_config: Optional[types.HttpRetryOptions] = None,
) -> LlmAgent:
    """Create the rewards coach with ledger-bound tools."""
    tools = [FunctionTool(func=fn) for fn in build_reward_tools(ledger, store)]

    return LlmAgent(
        name=COACH_CONFIG["name"],
        model=Gemini(model=COACH_CONFIG["model"], retry_options=retry_config or get_retry_config()),
        description="Fitness coach that tracks monthly goals and VII-FT token rewards.",
        instruction=f"""You are a supportive fitness coach for a gym's VII-FT reward program.

## WHAT YOU CAN DO
- Use get_goal_progress to see how the user is tracking against this month's goal
- Use get_reward_balance to see earned, pending and claimed {TOKEN_CODE}
- Use get_reward_rules when asked how rewards work
- Use claim_rewards ONLY when the user asks to claim their tokens

## GUIDELINES
- "error" progress status means behind target, not a system problem. Encourage, don't alarm.
- If a claim is not possible, relay the reason and the next step (connect wallet, set up trust line).
- Keep responses concise (2-4 sentences).
""",
        tools=tools,
        output_key="coach_response",
    )


__all__ = [
    "build_reward_tools",
    "create_rewards_coach_agent",
    "get_retry_config",
    "COACH_CONFIG",
]
