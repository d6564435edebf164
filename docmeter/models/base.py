"""
Declarative base shared by all models.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    def to_record(self) -> dict:
        """Plain dict of column values, the record shape used by the store layer."""
        return {column.key: getattr(self, column.key) for column in self.__mapper__.column_attrs}
