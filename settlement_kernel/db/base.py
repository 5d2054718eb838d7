"""
Module: settlement_kernel.db.base
Responsibility: Declarative base classes for the Obligation Store ORM models.
    Provides the UUID surrogate key convention, the type annotation map, and
    the TrackedBase mixin for row-level audit metadata.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/ or any outer package.

Invariants enforced:
    - UUID surrogate keys: every row gets a uuid4 primary key.  Business
      identity (network id + ledger id) is a separate UNIQUE constraint on
      the models that need it.
    - Integer amounts: amounts are fixed-point integers in the smallest
      currency unit, stored through TokenAmount (NUMERIC(78, 0) on
      PostgreSQL, wide enough for any uint256).  NEVER use float.
    - Other ints (counters, ids) map to BigInteger.
    - Timestamps are DateTime(timezone=True).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36) so the same schema runs on PostgreSQL and
    the in-memory SQLite used by the test suite.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class TokenAmount(TypeDecorator):
    """
    Smallest-unit integer amount of arbitrary size.

    NUMERIC(78, 0) on PostgreSQL.  SQLite has no exact type wider than
    64 bits, so there the digits are stored as text.  Python always sees int.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(int(value))
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is not None:
            return int(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all settlement models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger (counters, ledger ids); amount columns
          declare TokenAmount explicitly.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with row timestamps and actor tracking.

    ``created_by_id`` is the identity that created the row (the indexer
    synchronizer for obligations, the automation identity for settlement
    attempts).  ``updated_by_id`` is the last identity that mutated it.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
