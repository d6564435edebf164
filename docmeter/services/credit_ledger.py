"""
Credit ledger: balances, free credits, usage counters and the transaction log.

All balance mutations are single-key conditional writes on the account
record, so the balance never goes negative even with many workers billing
the same account at once. Deductions, purchases and refunds are each guarded
by a claim record keyed by the external identifier (job_id, purchase
reference, refund adjustment id) so replays have no effect.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from docmeter.config import settings
from docmeter.errors import (
    AccountNotFoundError,
    InsufficientCreditsError,
    InvalidParameterError,
    LedgerConflictError,
    StoreUnavailableError,
)
from docmeter.models.account import PlanType
from docmeter.models.ledger import ClaimStatus, TransactionStatus, TransactionType
from docmeter.repositories.idempotency_store import (
    ACCOUNTS,
    CREDIT_GRANTS,
    CREDIT_TRANSACTIONS,
    DEDUCTION_CLAIMS,
    REFUND_LOGS,
    Condition,
    IdempotencyStore,
)
from docmeter.services.money import to_money
from docmeter.services.plan_service import PlanService
from docmeter.utils.ids import new_sortable_id, utcnow
from docmeter.utils.logging import log_credit_deduction
from docmeter.utils.metrics import credit_deductions_total
from docmeter.utils.pagination import finish_page, page_window

logger = logging.getLogger(__name__)

# Attempts for optimistic grant and refund updates before giving up
MAX_CAS_ATTEMPTS = 5

ZERO = Decimal("0")


@dataclass
class DeductionResult:
    """
    Outcome of a deduction.

    outcome is one of free_tier, free_credit, balance or duplicate.
    """

    job_id: str
    outcome: str
    amount: Decimal
    transaction_id: Optional[str] = None
    used_free_credits: bool = False

    @property
    def duplicate(self) -> bool:
        return self.outcome == "duplicate"


@dataclass
class PurchaseResult:
    reference_id: str
    amount: Decimal
    duplicate: bool
    transaction_id: Optional[str] = None
    balance: Optional[Decimal] = None


@dataclass
class RefundResult:
    adjustment_id: str
    reference_id: str
    credits_revoked: Decimal
    duplicate: bool
    transaction_id: Optional[str] = None


@dataclass
class _Claim:
    acquired: bool
    record: Optional[Dict[str, Any]]


class CreditLedger:
    """Atomic credit operations with idempotency per external identifier."""

    def __init__(
        self,
        store: IdempotencyStore,
        plans: PlanService,
        clock: Callable[[], datetime] = utcnow,
        claim_ttl_seconds: Optional[int] = None,
    ):
        self.store = store
        self.plans = plans
        self.clock = clock
        self.claim_ttl = timedelta(
            seconds=claim_ttl_seconds if claim_ttl_seconds is not None else settings.deduction_claim_ttl_seconds
        )

    # Claims

    async def _acquire(
        self,
        collection: str,
        key: str,
        record: Dict[str, Any],
        completed_lookup: Dict[str, Any],
    ) -> _Claim:
        """
        Take the idempotency claim for one ledger operation.

        A completed claim means the operation already happened. A pending
        claim younger than the TTL belongs to another worker. Failed claims
        and stale pending claims are taken over, after checking the
        transaction log in case the previous holder wrote its transaction
        but died before completing the claim.

        Returns:
            _Claim(acquired=True) when the caller must perform the operation,
            _Claim(acquired=False, record=completed claim) when it is a replay

        Raises:
            LedgerConflictError: If another worker holds a fresh claim
        """
        now = self.clock()
        fresh = {**record, "status": ClaimStatus.PENDING.value, "claimed_at": now}
        if await self.store.put(collection, fresh, if_absent=True):
            return _Claim(acquired=True, record=fresh)

        existing = await self.store.get(collection, key)
        if existing is None:
            # Deleted between put and get; try once more from scratch
            if await self.store.put(collection, fresh, if_absent=True):
                return _Claim(acquired=True, record=fresh)
            raise LedgerConflictError(key)

        if existing["status"] == ClaimStatus.COMPLETED.value:
            return _Claim(acquired=False, record=existing)

        if existing["status"] == ClaimStatus.PENDING.value and now - existing["claimed_at"] < self.claim_ttl:
            raise LedgerConflictError(key)

        prior = await self.store.query(
            CREDIT_TRANSACTIONS,
            where={**completed_lookup, "status": TransactionStatus.COMPLETED.value},
            limit=1,
        )
        if prior:
            done = await self._complete_claim(collection, key, existing, prior[0]["transaction_id"])
            return _Claim(acquired=False, record=done)

        taken = await self.store.compare_and_swap(
            collection,
            key,
            expected={"status": existing["status"], "claimed_at": existing["claimed_at"]},
            new={"status": ClaimStatus.PENDING.value, "claimed_at": now},
        )
        if not taken:
            raise LedgerConflictError(key)
        logger.info(f"Took over {existing['status']} claim {collection}/{key}")
        return _Claim(acquired=True, record={**existing, "status": ClaimStatus.PENDING.value, "claimed_at": now})

    async def _complete_claim(
        self,
        collection: str,
        key: str,
        claim: Dict[str, Any],
        transaction_id: Optional[str],
        **extra: Any,
    ) -> Dict[str, Any]:
        changes = {"status": ClaimStatus.COMPLETED.value, "transaction_id": transaction_id, **extra}
        updated = await self.store.conditional_update(collection, key, changes=changes)
        return updated or {**claim, **changes}

    async def _release_claim(self, collection: str, key: str):
        """Mark a claim failed so a redelivery may retry. Errors here are logged only."""
        try:
            await self.store.conditional_update(
                collection,
                key,
                changes={"status": ClaimStatus.FAILED.value},
                conditions=[Condition("status", "eq", ClaimStatus.PENDING.value)],
            )
        except StoreUnavailableError as e:
            logger.error(f"Could not release claim {collection}/{key}: {e}")

    async def _write_transaction(
        self,
        owner_id: str,
        amount: Decimal,
        transaction_type: TransactionType,
        status: TransactionStatus,
        job_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        used_free_credits: bool = False,
        error_message: Optional[str] = None,
        payment_provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = self.clock()
        record = {
            "transaction_id": new_sortable_id(),
            "owner_id": owner_id,
            "amount": amount,
            "job_id": job_id,
            "reference_id": reference_id,
            "transaction_type": transaction_type.value,
            "status": status.value,
            "used_free_credits": used_free_credits,
            "payment_provider": payment_provider,
            "error_message": error_message,
            "created_at": now,
            "processed_at": now,
        }
        await self.store.put(CREDIT_TRANSACTIONS, record)
        return record

    # Deductions

    async def deduct(self, owner_id: str, job_id: str, amount: Any) -> DeductionResult:
        """
        Charge an account for one job, at most once per job_id.

        Order of preference:
        1. amount <= 0 (free tier): usage counter and a zero-amount transaction
        2. one free credit, logged as a zero-amount transaction
        3. credits_balance, only if it covers the full amount

        Args:
            owner_id: Account to charge
            job_id: Job being billed, the idempotency key
            amount: Price of the job

        Returns:
            DeductionResult; outcome "duplicate" for replays

        Raises:
            AccountNotFoundError: If the account does not exist
            InsufficientCreditsError: If neither free credits nor balance cover the job
            LedgerConflictError: If another worker is billing the same job right now
            StoreUnavailableError: If the store fails mid-operation
        """
        amount = to_money(amount)
        claim = await self._acquire(
            DEDUCTION_CLAIMS,
            job_id,
            {"job_id": job_id, "owner_id": owner_id, "transaction_id": None},
            completed_lookup={"job_id": job_id, "transaction_type": TransactionType.DEDUCTION.value},
        )
        if not claim.acquired:
            credit_deductions_total.labels(outcome="duplicate").inc()
            log_credit_deduction(
                logger, job_id=job_id, owner_id=owner_id, amount=amount,
                outcome="duplicate", transaction_id=claim.record.get("transaction_id"),
            )
            return DeductionResult(
                job_id=job_id,
                outcome="duplicate",
                amount=ZERO,
                transaction_id=claim.record.get("transaction_id"),
            )

        try:
            result = await self._deduct_claimed(owner_id, job_id, amount)
        except (AccountNotFoundError, InsufficientCreditsError, StoreUnavailableError):
            await self._release_claim(DEDUCTION_CLAIMS, job_id)
            raise

        await self._complete_claim(DEDUCTION_CLAIMS, job_id, claim.record, result.transaction_id)
        credit_deductions_total.labels(outcome=result.outcome).inc()
        log_credit_deduction(
            logger, job_id=job_id, owner_id=owner_id, amount=amount,
            outcome=result.outcome, transaction_id=result.transaction_id,
        )
        return result

    async def _deduct_claimed(self, owner_id: str, job_id: str, amount: Decimal) -> DeductionResult:
        account = await self.store.get(ACCOUNTS, owner_id)
        if account is None:
            await self._write_transaction(
                owner_id, -amount, TransactionType.DEDUCTION, TransactionStatus.FAILED,
                job_id=job_id, error_message="Account not found",
            )
            raise AccountNotFoundError(owner_id)

        if amount <= ZERO:
            await self.store.conditional_update(ACCOUNTS, owner_id, increments={"total_count": 1})
            transaction = await self._write_transaction(
                owner_id, ZERO, TransactionType.DEDUCTION, TransactionStatus.COMPLETED, job_id=job_id,
            )
            return DeductionResult(
                job_id=job_id,
                outcome="free_tier",
                amount=ZERO,
                transaction_id=transaction["transaction_id"],
            )

        if (account.get("free_credits_remaining") or 0) > 0:
            updated = await self.store.conditional_update(
                ACCOUNTS,
                owner_id,
                changes={"updated_at": self.clock()},
                increments={"free_credits_remaining": -1, "total_count": 1},
                conditions=[Condition("free_credits_remaining", "gt", 0)],
            )
            if updated is not None:
                transaction = await self._write_transaction(
                    owner_id, ZERO, TransactionType.DEDUCTION, TransactionStatus.COMPLETED,
                    job_id=job_id, used_free_credits=True,
                )
                return DeductionResult(
                    job_id=job_id,
                    outcome="free_credit",
                    amount=ZERO,
                    transaction_id=transaction["transaction_id"],
                    used_free_credits=True,
                )
            # Free credits ran out concurrently, fall through to the balance

        updated = await self.store.conditional_update(
            ACCOUNTS,
            owner_id,
            changes={"updated_at": self.clock()},
            increments={"credits_balance": -amount, "total_count": 1},
            conditions=[Condition("credits_balance", "ge", amount)],
        )
        if updated is None:
            current = await self.store.get(ACCOUNTS, owner_id)
            available = to_money(current["credits_balance"]) if current else ZERO
            await self._write_transaction(
                owner_id, -amount, TransactionType.DEDUCTION, TransactionStatus.FAILED,
                job_id=job_id, error_message="Insufficient credits",
            )
            credit_deductions_total.labels(outcome="insufficient").inc()
            log_credit_deduction(logger, job_id=job_id, owner_id=owner_id, amount=amount, outcome="insufficient")
            raise InsufficientCreditsError(required=amount, available=available)

        transaction = await self._write_transaction(
            owner_id, -amount, TransactionType.DEDUCTION, TransactionStatus.COMPLETED, job_id=job_id,
        )
        await self._attribute_to_grants(owner_id, amount)
        return DeductionResult(
            job_id=job_id,
            outcome="balance",
            amount=amount,
            transaction_id=transaction["transaction_id"],
        )

    async def _attribute_to_grants(self, owner_id: str, amount: Decimal):
        """
        Record balance consumption against purchase grants, oldest first.

        Best effort: grant bookkeeping only bounds future refunds, the
        balance itself was already debited atomically.
        """
        remaining = amount
        try:
            for _ in range(MAX_CAS_ATTEMPTS):
                if remaining <= ZERO:
                    return
                grants = await self.store.query(
                    CREDIT_GRANTS,
                    where={"owner_id": owner_id, "status": ClaimStatus.COMPLETED.value},
                    order_by="created_at",
                )
                progressed = False
                for grant in grants:
                    unused = self._unused(grant)
                    if unused <= ZERO:
                        continue
                    take = min(unused, remaining)
                    swapped = await self.store.compare_and_swap(
                        CREDIT_GRANTS,
                        grant["reference_id"],
                        expected={
                            "credits_used": grant["credits_used"],
                            "credits_revoked": grant["credits_revoked"],
                        },
                        new={
                            "credits_used": to_money(grant["credits_used"]) + take,
                            "updated_at": self.clock(),
                        },
                    )
                    if not swapped:
                        break
                    progressed = True
                    remaining -= take
                    if remaining <= ZERO:
                        return
                if not progressed and all(self._unused(g) <= ZERO for g in grants):
                    # Usage beyond purchased credits (e.g. manual top-ups)
                    return
            logger.warning(f"Could not attribute {remaining} credits to grants for account {owner_id}")
        except StoreUnavailableError as e:
            logger.warning(f"Grant attribution skipped for account {owner_id}: {e}")

    @staticmethod
    def _unused(grant: Dict[str, Any]) -> Decimal:
        return (
            to_money(grant["credits_granted"])
            - to_money(grant["credits_used"])
            - to_money(grant["credits_revoked"])
        )

    # Purchases and refunds

    async def purchase(
        self,
        owner_id: str,
        amount: Any,
        reference_id: str,
        payment_provider: str = "stripe",
    ) -> PurchaseResult:
        """
        Add purchased credits, at most once per external reference.

        Args:
            owner_id: Account receiving the credits
            amount: Credits purchased (must be positive)
            reference_id: Payment provider reference, the idempotency key
            payment_provider: Provider name for the audit trail

        Returns:
            PurchaseResult; duplicate=True for replays

        Raises:
            InvalidParameterError: If amount is not positive
            AccountNotFoundError: If the account does not exist
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise InvalidParameterError("Purchase amount must be positive", parameter="amount")
        if await self.store.get(ACCOUNTS, owner_id) is None:
            raise AccountNotFoundError(owner_id)

        now = self.clock()
        claim = await self._acquire(
            CREDIT_GRANTS,
            reference_id,
            {
                "reference_id": reference_id,
                "owner_id": owner_id,
                "credits_granted": amount,
                "credits_used": ZERO,
                "credits_revoked": ZERO,
                "transaction_id": None,
                "payment_provider": payment_provider,
                "created_at": now,
                "updated_at": now,
            },
            completed_lookup={"reference_id": reference_id, "transaction_type": TransactionType.PURCHASE.value},
        )
        if not claim.acquired:
            logger.info(f"Purchase {reference_id} already processed")
            return PurchaseResult(
                reference_id=reference_id,
                amount=to_money(claim.record["credits_granted"]),
                duplicate=True,
                transaction_id=claim.record.get("transaction_id"),
            )

        try:
            account = await self.store.conditional_update(
                ACCOUNTS,
                owner_id,
                changes={"updated_at": now},
                increments={"credits_balance": amount},
            )
            if account is None:
                raise AccountNotFoundError(owner_id)
            transaction = await self._write_transaction(
                owner_id, amount, TransactionType.PURCHASE, TransactionStatus.COMPLETED,
                reference_id=reference_id, payment_provider=payment_provider,
            )
        except (AccountNotFoundError, StoreUnavailableError):
            await self._release_claim(CREDIT_GRANTS, reference_id)
            raise

        await self._complete_claim(CREDIT_GRANTS, reference_id, claim.record, transaction["transaction_id"])
        await self._upgrade_free_plan(account)
        logger.info(f"Credited {amount} credits to account {owner_id} (reference: {reference_id})")
        return PurchaseResult(
            reference_id=reference_id,
            amount=amount,
            duplicate=False,
            transaction_id=transaction["transaction_id"],
            balance=to_money(account["credits_balance"]),
        )

    async def _upgrade_free_plan(self, account: Dict[str, Any]):
        """Move a free account to the paid plan after its first purchase."""
        plan = await self.plans.get_plan(account.get("plan_id"))
        if plan.get("type") != PlanType.FREE.value:
            return
        swapped = await self.store.compare_and_swap(
            ACCOUNTS,
            account["account_id"],
            expected={"plan_id": account.get("plan_id")},
            new={"plan_id": settings.paid_plan_id},
        )
        if swapped:
            logger.info(f"Account {account['account_id']} upgraded to plan {settings.paid_plan_id}")

    async def refund(
        self,
        owner_id: str,
        reference_id: str,
        adjustment_id: str,
        requested: Optional[Any] = None,
    ) -> RefundResult:
        """
        Revoke the unused credits of one purchase.

        Revokes min(unused, requested, current balance), where
        unused = granted - used - revoked. Applied at most once per
        adjustment_id.

        Args:
            owner_id: Account that made the purchase
            reference_id: Purchase reference
            adjustment_id: Refund identifier, the idempotency key
            requested: Credits the provider asked to revoke (None for all unused)

        Returns:
            RefundResult; duplicate=True for replays

        Raises:
            InvalidParameterError: If the purchase is unknown or belongs to another account
        """
        claim = await self._acquire(
            REFUND_LOGS,
            adjustment_id,
            {
                "adjustment_id": adjustment_id,
                "reference_id": reference_id,
                "owner_id": owner_id,
                "credits_revoked": None,
                "transaction_id": None,
                "processed_at": None,
            },
            completed_lookup={"reference_id": adjustment_id, "transaction_type": TransactionType.REFUND.value},
        )
        if not claim.acquired:
            logger.info(f"Refund {adjustment_id} already processed")
            return RefundResult(
                adjustment_id=adjustment_id,
                reference_id=reference_id,
                credits_revoked=to_money(claim.record.get("credits_revoked") or 0),
                duplicate=True,
                transaction_id=claim.record.get("transaction_id"),
            )

        try:
            revoked = await self._revoke(owner_id, reference_id, requested)
            transaction = None
            if revoked > ZERO:
                transaction = await self._write_transaction(
                    owner_id, -revoked, TransactionType.REFUND, TransactionStatus.COMPLETED,
                    reference_id=adjustment_id,
                )
        except (InvalidParameterError, StoreUnavailableError):
            await self._release_claim(REFUND_LOGS, adjustment_id)
            raise

        transaction_id = transaction["transaction_id"] if transaction else None
        await self._complete_claim(
            REFUND_LOGS, adjustment_id, claim.record, transaction_id,
            credits_revoked=revoked, processed_at=self.clock(),
        )
        logger.info(f"Refund {adjustment_id}: revoked {revoked} credits from account {owner_id}")
        return RefundResult(
            adjustment_id=adjustment_id,
            reference_id=reference_id,
            credits_revoked=revoked,
            duplicate=False,
            transaction_id=transaction_id,
        )

    async def _revoke(self, owner_id: str, reference_id: str, requested: Optional[Any]) -> Decimal:
        for _ in range(MAX_CAS_ATTEMPTS):
            grant = await self.store.get(CREDIT_GRANTS, reference_id)
            if grant is None or grant["owner_id"] != owner_id or grant["status"] != ClaimStatus.COMPLETED.value:
                raise InvalidParameterError(f"Unknown purchase reference: {reference_id}", parameter="reference_id")
            account = await self.store.get(ACCOUNTS, owner_id)
            balance = to_money(account["credits_balance"]) if account else ZERO

            revoke = self._unused(grant)
            if requested is not None:
                revoke = min(revoke, to_money(requested))
            revoke = min(revoke, balance)
            if revoke <= ZERO:
                return ZERO

            debited = await self.store.conditional_update(
                ACCOUNTS,
                owner_id,
                changes={"updated_at": self.clock()},
                increments={"credits_balance": -revoke},
                conditions=[Condition("credits_balance", "ge", revoke)],
            )
            if debited is None:
                continue  # Balance moved, recompute

            marked = await self.store.compare_and_swap(
                CREDIT_GRANTS,
                reference_id,
                expected={"credits_used": grant["credits_used"], "credits_revoked": grant["credits_revoked"]},
                new={"credits_revoked": to_money(grant["credits_revoked"]) + revoke, "updated_at": self.clock()},
            )
            if marked:
                return revoke
            # Grant changed underneath us: give the credits back and retry
            await self.store.conditional_update(ACCOUNTS, owner_id, increments={"credits_balance": revoke})
        raise StoreUnavailableError("refund", f"too much contention on purchase {reference_id}")

    # Read models

    async def get_balance(self, owner_id: str) -> Dict[str, Any]:
        """
        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = await self.store.get(ACCOUNTS, owner_id)
        if account is None:
            raise AccountNotFoundError(owner_id)
        return {
            "account_id": owner_id,
            "plan_id": account.get("plan_id"),
            "credits_balance": to_money(account.get("credits_balance") or 0),
            "free_credits_remaining": account.get("free_credits_remaining") or 0,
            "total_count": account.get("total_count") or 0,
            "quota_exceeded": bool(account.get("quota_exceeded")),
        }

    async def list_transactions(
        self,
        owner_id: str,
        limit: Optional[int] = None,
        next_token: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Transactions newest first, as (page, next_token)."""
        offset, limit = page_window(limit, next_token)
        rows = await self.store.query(
            CREDIT_TRANSACTIONS,
            where={"owner_id": owner_id},
            order_by="transaction_id",
            descending=True,
            limit=limit + 1,
            offset=offset,
        )
        return finish_page(rows, offset, limit)
