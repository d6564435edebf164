"""
In-memory IdempotencyStore.

Each operation completes without awaiting once it starts touching data, so
on a single event loop every call is atomic with respect to other coroutines.
Used for local development (STORE_BACKEND=memory) and tests.
"""
import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence

from docmeter.repositories.idempotency_store import (
    Condition,
    IdempotencyStore,
    key_field,
    matches,
)


class InMemoryStore(IdempotencyStore):
    """Process-local store backed by nested dicts."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _table(self, collection: str) -> Dict[str, Dict[str, Any]]:
        key_field(collection)
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        record = self._table(collection).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, collection: str, record: Dict[str, Any], if_absent: bool = False) -> bool:
        await asyncio.sleep(0)
        table = self._table(collection)
        key = record[key_field(collection)]
        if if_absent and key in table:
            return False
        table[key] = copy.deepcopy(record)
        return True

    async def conditional_update(
        self,
        collection: str,
        key: str,
        changes: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, Any]] = None,
        conditions: Sequence[Condition] = (),
    ) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        record = self._table(collection).get(key)
        if record is None or not matches(record, conditions):
            return None
        for name, value in (changes or {}).items():
            record[name] = copy.deepcopy(value)
        for name, delta in (increments or {}).items():
            record[name] = (record.get(name) or 0) + delta
        return copy.deepcopy(record)

    async def query(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            record for record in self._table(collection).values()
            if all(record.get(name) == value for name, value in (where or {}).items())
        ]
        if order_by:
            pk = key_field(collection)
            # None sorts first ascending, last descending; ties broken by key
            rows.sort(
                key=lambda r: (
                    r.get(order_by) is not None,
                    r.get(order_by) if r.get(order_by) is not None else 0,
                    r[pk],
                ),
                reverse=descending,
            )
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def delete(self, collection: str, key: str) -> bool:
        await asyncio.sleep(0)
        return self._table(collection).pop(key, None) is not None

    def clear(self):
        """Drop every collection."""
        self._collections.clear()
