"""
Abstract keyed store with single-key conditional writes.

Every coordination point in the system (dedup transition, credit deduction,
rate-limit counters, webhook stats) is expressed as one conditional write on
one key. Implementations:
- SQLAlchemyStore: PostgreSQL via SQLAlchemy async, one transaction per call
- InMemoryStore: process-local dicts for development and tests
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Optional, Sequence

# Collections
JOBS = "jobs"
ACCOUNTS = "accounts"
PLANS = "plans"
CREDIT_TRANSACTIONS = "credit_transactions"
DEDUCTION_CLAIMS = "deduction_claims"
CREDIT_GRANTS = "credit_grants"
REFUND_LOGS = "refund_logs"
RATE_LIMIT_WINDOWS = "rate_limit_windows"
WEBHOOKS = "webhooks"
WEBHOOK_DELIVERIES = "webhook_deliveries"

# Primary key field per collection
KEY_FIELDS = {
    JOBS: "job_id",
    ACCOUNTS: "account_id",
    PLANS: "plan_id",
    CREDIT_TRANSACTIONS: "transaction_id",
    DEDUCTION_CLAIMS: "job_id",
    CREDIT_GRANTS: "reference_id",
    REFUND_LOGS: "adjustment_id",
    RATE_LIMIT_WINDOWS: "window_key",
    WEBHOOKS: "webhook_id",
    WEBHOOK_DELIVERIES: "delivery_id",
}

CONDITION_OPS = ("eq", "ne", "gt", "ge", "lt", "le", "in")


@dataclass(frozen=True)
class Condition:
    """Predicate on one field of the stored record, evaluated atomically with the write."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in CONDITION_OPS:
            raise ValueError(f"Unsupported condition operator: {self.op}")


def key_field(collection: str) -> str:
    try:
        return KEY_FIELDS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}")


@dataclass
class Patch:
    """
    Typed partial update.

    Fields left as None are not written. Subclasses declare the fields an
    entity allows callers to change.
    """

    def as_changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


class IdempotencyStore(ABC):
    """
    Storage-agnostic interface for keyed records with conditional updates.

    Records are plain dicts keyed by the collection's primary key field.
    All methods raise StoreUnavailableError when the backing store fails.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one record.

        Returns:
            A copy of the record, or None if missing
        """
        pass

    @abstractmethod
    async def put(self, collection: str, record: Dict[str, Any], if_absent: bool = False) -> bool:
        """
        Insert or replace a record.

        Args:
            collection: Collection name
            record: Full record including its key field
            if_absent: Only insert when no record with that key exists

        Returns:
            False if if_absent was set and the key already existed, else True

        Raises:
            ValueError: If the backend rejects the record itself (constraint violation)
            StoreUnavailableError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def conditional_update(
        self,
        collection: str,
        key: str,
        changes: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, Any]] = None,
        conditions: Sequence[Condition] = (),
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically apply changes and increments when every condition holds.

        Args:
            collection: Collection name
            key: Record key
            changes: Field values to set
            increments: Field deltas to add (negative to subtract)
            conditions: Predicates on the stored record

        Returns:
            The updated record, or None if the record is missing or a
            condition failed (nothing is written in that case)
        """
        pass

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        expected: Dict[str, Any],
        new: Dict[str, Any],
    ) -> bool:
        """
        Apply `new` only if every field in `expected` equals the stored value.

        Returns:
            True if the swap was applied
        """
        conditions = [Condition(name, "eq", value) for name, value in expected.items()]
        updated = await self.conditional_update(collection, key, changes=new, conditions=conditions)
        return updated is not None

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        List records whose fields equal every value in `where`.

        Returns:
            Matching records, ordered and sliced as requested
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """
        Remove a record.

        Returns:
            True if a record was removed
        """
        pass


def matches(record: Dict[str, Any], conditions: Iterable[Condition]) -> bool:
    """Evaluate conditions against a record in Python."""
    for condition in conditions:
        current = record.get(condition.field)
        expected = condition.value
        if condition.op == "eq":
            ok = current == expected
        elif condition.op == "ne":
            ok = current != expected
        elif condition.op == "in":
            ok = current in expected
        elif current is None or expected is None:
            ok = False
        elif condition.op == "gt":
            ok = current > expected
        elif condition.op == "ge":
            ok = current >= expected
        elif condition.op == "lt":
            ok = current < expected
        else:
            ok = current <= expected
        if not ok:
            return False
    return True
