"""
SQLAlchemy-backed IdempotencyStore.

Each call opens its own session and commits one statement, so every
conditional write is a single-row atomic UPDATE ... WHERE ... RETURNING.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from docmeter.errors import StoreUnavailableError
from docmeter.models import (
    Base,
    Job,
    Account,
    Plan,
    CreditTransaction,
    DeductionClaim,
    CreditGrant,
    RefundLog,
    RateLimitWindow,
    Webhook,
    WebhookDelivery,
)
from docmeter.repositories.idempotency_store import (
    JOBS,
    ACCOUNTS,
    PLANS,
    CREDIT_TRANSACTIONS,
    DEDUCTION_CLAIMS,
    CREDIT_GRANTS,
    REFUND_LOGS,
    RATE_LIMIT_WINDOWS,
    WEBHOOKS,
    WEBHOOK_DELIVERIES,
    Condition,
    IdempotencyStore,
    key_field,
)

logger = logging.getLogger(__name__)

MODELS: Dict[str, Type[Base]] = {
    JOBS: Job,
    ACCOUNTS: Account,
    PLANS: Plan,
    CREDIT_TRANSACTIONS: CreditTransaction,
    DEDUCTION_CLAIMS: DeductionClaim,
    CREDIT_GRANTS: CreditGrant,
    REFUND_LOGS: RefundLog,
    RATE_LIMIT_WINDOWS: RateLimitWindow,
    WEBHOOKS: Webhook,
    WEBHOOK_DELIVERIES: WebhookDelivery,
}


def _clause(column, condition: Condition):
    if condition.op == "eq":
        return column.is_(None) if condition.value is None else column == condition.value
    if condition.op == "ne":
        return column.is_not(None) if condition.value is None else column != condition.value
    if condition.op == "in":
        return column.in_(list(condition.value))
    if condition.op == "gt":
        return column > condition.value
    if condition.op == "ge":
        return column >= condition.value
    if condition.op == "lt":
        return column < condition.value
    return column <= condition.value


class SQLAlchemyStore(IdempotencyStore):
    """IdempotencyStore over the SQLAlchemy models in docmeter.models."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _model(collection: str) -> Type[Base]:
        try:
            return MODELS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}")

    @staticmethod
    def _row_to_record(model: Type[Base], row) -> Dict[str, Any]:
        mapping = row._mapping
        return {column.key: mapping[column.key] for column in model.__table__.columns}

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        model = self._model(collection)
        pk = getattr(model, key_field(collection))
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(model).where(pk == key))
                instance = result.scalar_one_or_none()
                return instance.to_record() if instance is not None else None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"get {collection}", str(e))

    async def put(self, collection: str, record: Dict[str, Any], if_absent: bool = False) -> bool:
        model = self._model(collection)
        try:
            async with self._session_factory() as session:
                if if_absent:
                    session.add(model(**record))
                else:
                    await session.merge(model(**record))
                await session.commit()
                return True
        except IntegrityError as e:
            key = record.get(key_field(collection))
            if if_absent and key is not None and await self.get(collection, key) is not None:
                return False
            # CHECK, NOT NULL or foreign key violation: the record itself is invalid
            raise ValueError(f"Invalid {collection} record: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"put {collection}", str(e))

    async def conditional_update(
        self,
        collection: str,
        key: str,
        changes: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, Any]] = None,
        conditions: Sequence[Condition] = (),
    ) -> Optional[Dict[str, Any]]:
        model = self._model(collection)
        pk = getattr(model, key_field(collection))

        values: Dict[str, Any] = dict(changes or {})
        for name, delta in (increments or {}).items():
            values[name] = getattr(model, name) + delta
        if not values:
            raise ValueError("conditional_update needs changes or increments")

        where = [pk == key] + [_clause(getattr(model, c.field), c) for c in conditions]
        statement = (
            update(model)
            .where(and_(*where))
            .values(**values)
            .returning(*model.__table__.columns)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                row = result.first()
                await session.commit()
        except IntegrityError as e:
            # A CHECK constraint rejected the write, same outcome as a failed condition
            logger.warning(f"Conditional update on {collection}/{key} rejected by constraint: {e.orig}")
            return None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"update {collection}", str(e))
        return self._row_to_record(model, row) if row is not None else None

    async def query(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        model = self._model(collection)
        statement = select(model)
        for name, value in (where or {}).items():
            column = getattr(model, name)
            statement = statement.where(column.is_(None) if value is None else column == value)
        if order_by:
            column = getattr(model, order_by)
            pk = getattr(model, key_field(collection))
            if descending:
                statement = statement.order_by(column.desc(), pk.desc())
            else:
                statement = statement.order_by(column.asc(), pk.asc())
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [instance.to_record() for instance in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"query {collection}", str(e))

    async def delete(self, collection: str, key: str) -> bool:
        model = self._model(collection)
        pk = getattr(model, key_field(collection))
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(model).where(pk == key))
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"delete {collection}", str(e))
