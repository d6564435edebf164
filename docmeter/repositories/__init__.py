"""
Storage layer: keyed records with single-key conditional writes.
"""
from docmeter.repositories.idempotency_store import Condition, IdempotencyStore, Patch
from docmeter.repositories.memory_store import InMemoryStore
from docmeter.repositories.sql_store import SQLAlchemyStore

__all__ = [
    "Condition",
    "IdempotencyStore",
    "Patch",
    "InMemoryStore",
    "SQLAlchemyStore",
]
