# tools/reward_ledger.py
"""
VII-FT Coach — Reward Ledger
============================
Per-user VII-FT token ledger:

  accrue_reward  → pending_balance / total_earned go up, "earned" txn appended
  claim          → pending moves to total_claimed, "claimed" txn is PENDING
  confirm_claim  → txn COMPLETED with tx_hash
  fail_claim     → txn FAILED, amount rolled back into pending_balance

Wallet / claim lifecycle:

  disconnected → wallet_connected → trust_line_pending → trust_line_active
      → claimable → claim_in_flight → claimed | claim_failed (rolled back)

Every mutation of one user's ledger runs under that user's lock and is
committed with a version compare-and-swap, so accrual and claim rollback
can never lose each other's updates.
"""

import re
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from memory.ledger_store import ConcurrentUpdateConflict, LedgerStore
from tools.fitness_schemas import (
    CompletedGoal,
    GoalMetric,
    GoalStatus,
    TransactionStatus,
    TransactionType,
    TrustLineStatus,
    UserLedger,
    VIIFTBalance,
    VIIFTTransaction,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Flat tokens per completed sub-goal (not proportional to magnitude)
REWARD_TABLE: Dict[GoalMetric, float] = {
    GoalMetric.WEIGHT_LOSS: 10,
    GoalMetric.MUSCLE_GAIN: 15,
    GoalMetric.BODY_FAT_REDUCTION: 12,
}

TOKEN_CODE = "VII-FT"

# Classic XRP Ledger address: "r" + base58 (ripple alphabet), 25-35 chars total
XRP_ADDRESS_PATTERN = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{24,34}$")


class WalletState(Enum):
    DISCONNECTED = "disconnected"
    WALLET_CONNECTED = "wallet_connected"
    TRUST_LINE_PENDING = "trust_line_pending"
    TRUST_LINE_ACTIVE = "trust_line_active"
    CLAIMABLE = "claimable"
    CLAIM_IN_FLIGHT = "claim_in_flight"


# =============================================================================
# ERRORS
# =============================================================================
class RewardLedgerError(Exception):
    """Base class for ledger rule violations. Message is user-facing."""


class GoalNotFound(RewardLedgerError):
    pass


class GoalNotActive(RewardLedgerError):
    pass


class UnknownMetric(RewardLedgerError):
    pass


class DuplicateAccrual(RewardLedgerError):
    """The sub-goal was already rewarded."""


class ClaimNotEligible(RewardLedgerError):
    """Wallet, trust line, balance or in-flight claim blocks a new claim."""


class InvalidWalletAddress(RewardLedgerError):
    pass


class TrustLineError(RewardLedgerError):
    pass


class UnknownTransaction(RewardLedgerError):
    pass


class TransactionAlreadySettled(RewardLedgerError):
    pass


class TransferFailed(RewardLedgerError):
    """Raised by a transfer gateway when the token transfer did not go through."""


class LedgerInvariantViolation(RewardLedgerError):
    """A mutation would leave total_earned != pending_balance + total_claimed."""


# =============================================================================
# TOKEN TRANSFER GATEWAY
# =============================================================================
class TokenTransferGateway(Protocol):
    def transfer(self, wallet_address: str, amount: float, token_code: str) -> str:
        """Send tokens; return the transaction hash or raise TransferFailed."""
        ...


class SimulatedTransferGateway:
    """Stand-in for the XRP ledger: succeeds unless told to fail."""

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[Dict[str, object]] = []

    def transfer(self, wallet_address: str, amount: float, token_code: str) -> str:
        if self.fail_with:
            raise TransferFailed(self.fail_with)
        tx_hash = uuid.uuid4().hex.upper()
        self.sent.append({"to": wallet_address, "amount": amount, "token": token_code, "tx_hash": tx_hash})
        return tx_hash


# =============================================================================
# LEDGER
# =============================================================================
class RewardLedger:
    """Accrual, wallet and claim operations over a LedgerStore."""

    def __init__(
        self,
        store: LedgerStore,
        reward_table: Optional[Dict[GoalMetric, float]] = None,
        gateway: Optional[TokenTransferGateway] = None,
    ):
        self.store = store
        self.reward_table = dict(reward_table or REWARD_TABLE)
        self.gateway = gateway or SimulatedTransferGateway()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------
    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            if user_id not in self._locks:
                self._locks[user_id] = threading.Lock()
            return self._locks[user_id]

    @contextmanager
    def _mutation(self, user_id: str):
        """
        Yield a snapshot; commit it if the block exits cleanly.

        An exception inside the block discards the snapshot, so a rejected
        operation never touches the stored ledger.

        Raises:
            LedgerInvariantViolation: the block left the balance inconsistent.
        """
        with self._user_lock(user_id):
            ledger = self.store.snapshot(user_id)
            yield ledger
            balance = ledger.balance
            if not balance.is_consistent():
                raise LedgerInvariantViolation(
                    f"Ledger balance for {user_id} drifted: earned {balance.total_earned:g} != "
                    f"pending {balance.pending_balance:g} + claimed {balance.total_claimed:g}"
                )
            self.store.commit(ledger)

    # -------------------------------------------------------------------------
    # Accrual
    # -------------------------------------------------------------------------
    def accrue_reward(
        self,
        goal_id: str,
        metric: str,
        achieved_value: float,
        target_value: float,
    ) -> CompletedGoal:
        """
        Credit the reward for one achieved sub-goal.

        Raises:
            GoalNotFound, GoalNotActive, UnknownMetric, DuplicateAccrual
        """
        try:
            metric_key = GoalMetric(metric)
        except ValueError:
            raise UnknownMetric(f"Unknown goal metric: {metric}") from None

        user_id = self.store.find_goal_owner(goal_id)
        if user_id is None:
            raise GoalNotFound(f"Goal {goal_id} does not exist")

        with self._mutation(user_id) as ledger:
            goal = ledger.find_goal(goal_id)
            if goal is None:
                raise GoalNotFound(f"Goal {goal_id} does not exist")
            if goal.status == GoalStatus.CANCELLED:
                raise GoalNotActive(f"Goal for {goal.month} was cancelled")
            if goal.is_achieved(metric_key):
                raise DuplicateAccrual(
                    f"{metric_key.value.replace('_', ' ').title()} for {goal.month} was already rewarded"
                )

            reward = self.reward_table[metric_key]
            now = datetime.now()

            completed = CompletedGoal(
                id=len(ledger.completed_goals) + 1,
                goal_id=goal_id,
                metric=metric_key,
                target_value=target_value,
                achieved_value=achieved_value,
                reward_amount=reward,
                completed_at=now,
            )
            ledger.completed_goals.append(completed)
            ledger.transactions.append(VIIFTTransaction(
                id=len(ledger.transactions) + 1,
                type=TransactionType.EARNED,
                amount=reward,
                timestamp=now,
                status=TransactionStatus.COMPLETED,
            ))

            ledger.balance.pending_balance += reward
            ledger.balance.total_earned += reward

            goal.achieved[metric_key] = True
            if all(goal.is_achieved(m) for m in goal.targeted_metrics()):
                goal.status = GoalStatus.COMPLETED

        print(f"🪙 +{reward:g} {TOKEN_CODE} for {user_id} ({metric_key.value})")
        return completed

    # -------------------------------------------------------------------------
    # Wallet & trust line
    # -------------------------------------------------------------------------
    def connect_wallet(self, user_id: str, address: str) -> VIIFTBalance:
        """Attach an XRP wallet. The trust line must be set up again afterwards."""
        address = (address or "").strip()
        if not XRP_ADDRESS_PATTERN.match(address):
            raise InvalidWalletAddress("Please enter a valid XRP wallet address (starts with 'r')")

        with self._mutation(user_id) as ledger:
            if self._claim_in_flight(ledger):
                raise ClaimNotEligible("Cannot change wallet while a claim is being processed")
            if ledger.balance.xrp_wallet_address != address:
                ledger.balance.xrp_wallet_address = address
                ledger.balance.trust_line_status = TrustLineStatus.NONE
            balance = ledger.balance

        print(f"👛 Wallet connected for {user_id}: {address[:8]}...{address[-8:]}")
        return balance

    def request_trust_line(self, user_id: str) -> VIIFTBalance:
        with self._mutation(user_id) as ledger:
            balance = ledger.balance
            if not balance.xrp_wallet_address:
                raise TrustLineError("Connect an XRP wallet before setting up the trust line")
            if balance.trust_line_status == TrustLineStatus.ACTIVE:
                raise TrustLineError("Trust line is already active")
            if balance.trust_line_status == TrustLineStatus.PENDING:
                raise TrustLineError("Trust line setup is already pending")
            balance.trust_line_status = TrustLineStatus.PENDING
        return balance

    def confirm_trust_line(self, user_id: str) -> VIIFTBalance:
        return self._settle_trust_line(user_id, TrustLineStatus.ACTIVE)

    def fail_trust_line(self, user_id: str, reason: str = "") -> VIIFTBalance:
        balance = self._settle_trust_line(user_id, TrustLineStatus.FAILED)
        print(f"⚠️ Trust line failed for {user_id}: {reason or 'no reason given'}")
        return balance

    def _settle_trust_line(self, user_id: str, outcome: TrustLineStatus) -> VIIFTBalance:
        with self._mutation(user_id) as ledger:
            if ledger.balance.trust_line_status != TrustLineStatus.PENDING:
                raise TrustLineError("No trust line setup is pending")
            ledger.balance.trust_line_status = outcome
        return ledger.balance

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------
    @staticmethod
    def _claim_in_flight(ledger: UserLedger) -> bool:
        return any(
            t.type == TransactionType.CLAIMED and t.status == TransactionStatus.PENDING
            for t in ledger.transactions
        )

    def claim(self, user_id: str) -> VIIFTTransaction:
        """
        Move the whole pending balance to claimed and open a pending transfer.

        Raises:
            ClaimNotEligible: no wallet, trust line not active, nothing to
                claim, or a claim is already in flight.
        """
        with self._mutation(user_id) as ledger:
            balance = ledger.balance
            if not balance.xrp_wallet_address:
                raise ClaimNotEligible("Connect your XRP wallet to claim rewards")
            if not balance.trust_line_setup:
                raise ClaimNotEligible(f"Set up the {TOKEN_CODE} trust line before claiming")
            if balance.pending_balance <= 0:
                raise ClaimNotEligible("No rewards available to claim")
            if self._claim_in_flight(ledger):
                raise ClaimNotEligible("A claim is already being processed")

            amount = balance.pending_balance
            balance.total_claimed += amount
            balance.pending_balance = 0

            txn = VIIFTTransaction(
                id=len(ledger.transactions) + 1,
                type=TransactionType.CLAIMED,
                amount=amount,
                status=TransactionStatus.PENDING,
                wallet_address=balance.xrp_wallet_address,
            )
            ledger.transactions.append(txn)

        print(f"📤 Claim #{txn.id} opened for {user_id}: {amount:g} {TOKEN_CODE}")
        return txn

    def _pending_claim(
        self,
        ledger: UserLedger,
        transaction_id: int,
        submitted: bool = False,
    ) -> VIIFTTransaction:
        """
        The in-flight claim with this id.

        A claim already handed to the gateway can only be settled by the
        settle_claim call that submitted it (`submitted=True`).
        """
        txn = ledger.find_transaction(transaction_id)
        if txn is None or txn.type != TransactionType.CLAIMED:
            raise UnknownTransaction(f"Claim #{transaction_id} not found")
        if txn.status != TransactionStatus.PENDING:
            raise TransactionAlreadySettled(f"Claim #{transaction_id} is already {txn.status.value}")
        if txn.submitted_at is not None and not submitted:
            raise TransactionAlreadySettled(f"Claim #{transaction_id} was already submitted for transfer")
        return txn

    def confirm_claim(self, user_id: str, transaction_id: int, tx_hash: str) -> VIIFTTransaction:
        """Record a transfer made outside settle_claim."""
        return self._record_outcome(user_id, transaction_id, tx_hash=tx_hash)

    def fail_claim(self, user_id: str, transaction_id: int, reason: str = "") -> VIIFTTransaction:
        """Compensating rollback: the claimed amount goes back to pending."""
        return self._record_outcome(user_id, transaction_id, failure=reason or "Transfer failed")

    def _record_outcome(
        self,
        user_id: str,
        transaction_id: int,
        tx_hash: Optional[str] = None,
        failure: Optional[str] = None,
        submitted: bool = False,
    ) -> VIIFTTransaction:
        with self._mutation(user_id) as ledger:
            txn = self._pending_claim(ledger, transaction_id, submitted=submitted)
            if failure is None:
                txn.status = TransactionStatus.COMPLETED
                txn.tx_hash = tx_hash
            else:
                txn.status = TransactionStatus.FAILED
                txn.failure_reason = failure
                ledger.balance.total_claimed -= txn.amount
                ledger.balance.pending_balance += txn.amount

        if failure is None:
            print(f"✅ Claim #{transaction_id} confirmed for {user_id} ({tx_hash[:12]}...)")
        else:
            print(f"❌ Claim #{transaction_id} failed for {user_id}, {txn.amount:g} {TOKEN_CODE} returned to pending")
        return txn

    def settle_claim(self, user_id: str, transaction_id: int) -> VIIFTTransaction:
        """
        Run an in-flight claim through the transfer gateway and record the outcome.

        The claim is marked submitted under the user lock before the gateway
        is called. From then on confirm_claim, fail_claim and further
        settle_claim calls refuse it. A gateway error other than
        TransferFailed leaves the claim submitted and in flight: the
        transfer may have gone through, so nothing is rolled back.
        """
        with self._mutation(user_id) as ledger:
            txn = self._pending_claim(ledger, transaction_id)
            txn.submitted_at = datetime.now()

        print(f"🚀 Claim #{transaction_id} submitted for {user_id}: {txn.amount:g} {TOKEN_CODE}")
        try:
            tx_hash = self.gateway.transfer(txn.wallet_address, txn.amount, TOKEN_CODE)
        except TransferFailed as e:
            return with_conflict_retry(lambda: self._record_outcome(
                user_id, transaction_id, failure=str(e) or "Transfer failed", submitted=True
            ))
        return with_conflict_retry(lambda: self._record_outcome(
            user_id, transaction_id, tx_hash=tx_hash, submitted=True
        ))

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------
    def get_balance(self, user_id: str) -> VIIFTBalance:
        return self.store.snapshot(user_id).balance

    def list_transactions(self, user_id: str) -> List[VIIFTTransaction]:
        return sorted(self.store.snapshot(user_id).transactions, key=lambda t: t.id, reverse=True)

    def list_completed_goals(self, user_id: str) -> List[CompletedGoal]:
        return sorted(self.store.snapshot(user_id).completed_goals, key=lambda g: g.id, reverse=True)

    def wallet_state(self, user_id: str) -> WalletState:
        ledger = self.store.snapshot(user_id)
        balance = ledger.balance
        if not balance.xrp_wallet_address:
            return WalletState.DISCONNECTED
        if self._claim_in_flight(ledger):
            return WalletState.CLAIM_IN_FLIGHT
        if balance.trust_line_status == TrustLineStatus.PENDING:
            return WalletState.TRUST_LINE_PENDING
        if not balance.trust_line_setup:
            return WalletState.WALLET_CONNECTED
        if balance.pending_balance > 0:
            return WalletState.CLAIMABLE
        return WalletState.TRUST_LINE_ACTIVE


def with_conflict_retry(operation: Callable, attempts: int = 3):
    """Re-run an operation that lost a compare-and-swap race."""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrentUpdateConflict:
            if attempt == attempts:
                raise
            print(f"⚠️ Ledger conflict, retrying ({attempt}/{attempts})")


# =============================================================================
# EXPORTS
# =============================================================================
__all__ = [
    "RewardLedger",
    "WalletState",
    "TokenTransferGateway",
    "SimulatedTransferGateway",
    "with_conflict_retry",
    "REWARD_TABLE",
    "TOKEN_CODE",
    "RewardLedgerError",
    "GoalNotFound",
    "GoalNotActive",
    "UnknownMetric",
    "DuplicateAccrual",
    "ClaimNotEligible",
    "InvalidWalletAddress",
    "TrustLineError",
    "UnknownTransaction",
    "TransactionAlreadySettled",
    "TransferFailed",
    "LedgerInvariantViolation",
]
