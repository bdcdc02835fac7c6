"""
VII-FT Coach — FastAPI Backend
"""

import sys
from pathlib import Path
from datetime import datetime
from typing import Optional, Dict, Literal

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from dotenv import load_dotenv
load_dotenv()

from agents.goal_tracker import cancel_goal, run_goal_evaluation
from memory.ledger_store import ConcurrentUpdateConflict, DuplicateGoal, LedgerStore
from tools.fitness_schemas import MeasurementSource
from tools.goal_evaluator import convert_weight, evaluate_performance, summarize_performance
from tools.reward_ledger import (
    ClaimNotEligible,
    DuplicateAccrual,
    GoalNotActive,
    GoalNotFound,
    InvalidWalletAddress,
    LedgerInvariantViolation,
    RewardLedger,
    RewardLedgerError,
    TransactionAlreadySettled,
    TrustLineError,
    UnknownMetric,
    UnknownTransaction,
)

API_VERSION = "1.0.0"


# =============================================================================
# PYDANTIC MODELS
# =============================================================================
class MeasurementRequest(BaseModel):
    """Weight-type fields are read in `unit` and stored in pounds."""
    date: Optional[datetime] = None
    unit: Literal["lbs", "kg"] = "lbs"
    weight: Optional[float] = Field(None, gt=0)
    body_fat: Optional[float] = Field(None, ge=0, le=100)
    muscle_mass: Optional[float] = Field(None, gt=0)
    bmi: Optional[float] = None
    bone_mass: Optional[float] = None
    visceral_fat: Optional[float] = None
    waist: Optional[float] = None
    hips: Optional[float] = None
    source: MeasurementSource = MeasurementSource.MANUAL
    device_name: Optional[str] = None


class GoalRequest(BaseModel):
    month: str = Field(..., min_length=1)
    weight_loss: float = Field(0.0, ge=0)
    muscle_gain: float = Field(0.0, ge=0)
    body_fat_reduction: float = Field(0.0, ge=0)


class WalletConnectRequest(BaseModel):
    address: str


class ClaimConfirmRequest(BaseModel):
    tx_hash: str = Field(..., min_length=1)


class FailureRequest(BaseModel):
    reason: str = ""


class HealthResponse(BaseModel):
    status: str
    system: str
    version: str
    storage: str
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


WEIGHT_FIELDS = ("weight", "muscle_mass", "bone_mass")

# Error type → HTTP status
ERROR_STATUS: Dict[type, int] = {
    GoalNotFound: 404,
    UnknownTransaction: 404,
    UnknownMetric: 400,
    InvalidWalletAddress: 400,
    DuplicateAccrual: 409,
    GoalNotActive: 409,
    ClaimNotEligible: 409,
    TrustLineError: 409,
    TransactionAlreadySettled: 409,
    LedgerInvariantViolation: 500,
}


def to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, ConcurrentUpdateConflict):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=ERROR_STATUS.get(type(error), 400), detail=str(error))


# =============================================================================
# APP SETUP
# =============================================================================
def create_app(store: Optional[LedgerStore] = None, ledger: Optional[RewardLedger] = None) -> FastAPI:
    store = store or LedgerStore.default()
    ledger = ledger or RewardLedger(store)

    app = FastAPI(
        title="VII-FT Coach API",
        version=API_VERSION,
        description="Goal tracking and VII-FT reward ledger backend"
    )
    app.state.store = store
    app.state.ledger = ledger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


def _store(request: Request) -> LedgerStore:
    return request.app.state.store


def _ledger(request: Request) -> RewardLedger:
    return request.app.state.ledger


# =============================================================================
# ENDPOINTS
# =============================================================================
def register_routes(app: FastAPI):

    # -------------------------------------------------------------------------
    # Health & Root
    # -------------------------------------------------------------------------
    @app.get("/")
    async def root():
        """Root endpoint for health checking."""
        return {
            "status": "online",
            "system": "VII-FT Coach",
            "version": API_VERSION,
            "docs": "/docs",
        }

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def api_health(request: Request):
        """Detailed health check endpoint."""
        return HealthResponse(
            status="online",
            system="VII-FT Coach",
            version=API_VERSION,
            storage=_store(request).filepath or "memory",
        )

    # -------------------------------------------------------------------------
    # Measurements
    # -------------------------------------------------------------------------
    @app.get("/api/v1/measurements")
    async def list_measurements(request: Request, user_id: str = Query("default")):
        measurements = sorted(_store(request).get_measurements(user_id), key=lambda m: m.date, reverse=True)
        return [m.model_dump(mode="json") for m in measurements]

    @app.post("/api/v1/measurements", status_code=201)
    async def add_measurement(body: MeasurementRequest, request: Request, user_id: str = Query("default")):
        fields = body.model_dump(exclude_none=True, exclude={"unit"})
        if body.unit == "kg":
            for name in WEIGHT_FIELDS:
                if name in fields:
                    fields[name] = round(convert_weight(fields[name], "kg", "lbs"), 2)
        try:
            measurement = _store(request).add_measurement(user_id, **fields)
        except ConcurrentUpdateConflict as e:
            raise to_http_error(e)
        return measurement.model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Goals & Performance
    # -------------------------------------------------------------------------
    @app.get("/api/v1/goals")
    async def list_goals(request: Request, user_id: str = Query("default")):
        return [g.model_dump(mode="json") for g in _store(request).get_goals(user_id)]

    @app.post("/api/v1/goals", status_code=201)
    async def add_goal(body: GoalRequest, request: Request, user_id: str = Query("default")):
        if not (body.weight_loss or body.muscle_gain or body.body_fat_reduction):
            raise HTTPException(status_code=400, detail="Set at least one goal target")
        try:
            goal = _store(request).add_goal(user_id, **body.model_dump())
        except DuplicateGoal as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ConcurrentUpdateConflict as e:
            raise to_http_error(e)
        return goal.model_dump(mode="json")

    @app.post("/api/v1/goals/{goal_id}/cancel")
    async def cancel_goal_endpoint(goal_id: str, request: Request, user_id: str = Query("default")):
        try:
            result = cancel_goal(user_id, goal_id, _store(request))
        except ConcurrentUpdateConflict as e:
            raise to_http_error(e)
        if result["status"] != "success":
            raise HTTPException(status_code=409, detail=result["error_message"])
        return result["goal"]

    @app.get("/api/v1/performance")
    async def get_performance(request: Request, user_id: str = Query("default")):
        """Per-metric progress toward this month's goal."""
        store = _store(request)
        records = evaluate_performance(store.get_measurements(user_id), store.get_goals(user_id))
        return summarize_performance(records)

    @app.post("/api/v1/goals/evaluate")
    async def evaluate_goals(request: Request, user_id: str = Query("default")):
        """Run the goal pass: accrue rewards for every sub-goal at 100%."""
        try:
            return run_goal_evaluation(user_id, _store(request), _ledger(request))
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    # -------------------------------------------------------------------------
    # VII-FT Ledger
    # -------------------------------------------------------------------------
    @app.get("/api/v1/viift/balance")
    async def get_balance(request: Request, user_id: str = Query("default")):
        ledger = _ledger(request)
        payload = ledger.get_balance(user_id).model_dump(mode="json")
        payload["wallet_state"] = ledger.wallet_state(user_id).value
        return payload

    @app.get("/api/v1/viift/completed-goals")
    async def get_completed_goals(request: Request, user_id: str = Query("default")):
        return [g.model_dump(mode="json") for g in _ledger(request).list_completed_goals(user_id)]

    @app.get("/api/v1/viift/transactions")
    async def get_transactions(request: Request, user_id: str = Query("default")):
        return [t.model_dump(mode="json") for t in _ledger(request).list_transactions(user_id)]

    @app.post("/api/v1/viift/wallet/connect")
    async def connect_wallet(body: WalletConnectRequest, request: Request, user_id: str = Query("default")):
        try:
            balance = _ledger(request).connect_wallet(user_id, body.address)
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)
        return balance.model_dump(mode="json")

    @app.post("/api/v1/viift/wallet/trustline")
    async def request_trust_line(request: Request, user_id: str = Query("default")):
        try:
            return _ledger(request).request_trust_line(user_id).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/wallet/trustline/confirm")
    async def confirm_trust_line(request: Request, user_id: str = Query("default")):
        try:
            return _ledger(request).confirm_trust_line(user_id).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/wallet/trustline/fail")
    async def fail_trust_line(body: FailureRequest, request: Request, user_id: str = Query("default")):
        try:
            return _ledger(request).fail_trust_line(user_id, body.reason).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/claim", status_code=202)
    async def claim(request: Request, user_id: str = Query("default")):
        """Open a claim. The transfer is settled by confirm/fail or settle."""
        try:
            return _ledger(request).claim(user_id).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/claim/{transaction_id}/confirm")
    async def confirm_claim(
        transaction_id: int,
        body: ClaimConfirmRequest,
        request: Request,
        user_id: str = Query("default"),
    ):
        try:
            return _ledger(request).confirm_claim(user_id, transaction_id, body.tx_hash).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/claim/{transaction_id}/fail")
    async def fail_claim(
        transaction_id: int,
        body: FailureRequest,
        request: Request,
        user_id: str = Query("default"),
    ):
        try:
            return _ledger(request).fail_claim(user_id, transaction_id, body.reason).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)

    @app.post("/api/v1/viift/claim/{transaction_id}/settle")
    async def settle_claim(transaction_id: int, request: Request, user_id: str = Query("default")):
        """Push an open claim through the transfer gateway."""
        try:
            return _ledger(request).settle_claim(user_id, transaction_id).model_dump(mode="json")
        except (RewardLedgerError, ConcurrentUpdateConflict) as e:
            raise to_http_error(e)


# =============================================================================
# MAIN
# =============================================================================
if __name__ == "__main__":
    print("\n" + "=" * 50)
    print(f"🚀 VII-FT COACH API v{API_VERSION}")
    print("=" * 50)
    print("🔗 API Docs: http://localhost:8000/docs")
    print("=" * 50 + "\n")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
