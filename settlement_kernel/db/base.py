"""
Declarative base and column types shared by every settlement table.

Column conventions:
    - Primary keys are uuid4 values stored as 36-char strings so the same
      schema runs on PostgreSQL and SQLite.
    - Money, commission and volume columns are Numeric(38, 9); floats never
      reach the database.
    - Timestamps are timezone-aware.
    - Wallet addresses are stored lowercase whatever case the chain or the
      client used, so equality filters never miss on checksum casing.

Nothing in this module imports from models/, services/ or outer packages.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

ADDRESS_LENGTH = 42

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Address(TypeDecorator):
    """An EVM address, lowercased on the way in."""

    impl = String(ADDRESS_LENGTH)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value).lower()


class Base(DeclarativeBase):
    """
    Declarative base for all settlement models.

    Every subclass gets a uuid4 ``id`` primary key, and plain annotations
    resolve through ``type_annotation_map`` (Decimal -> Numeric(38, 9),
    datetime -> timezone-aware DateTime, UUID -> UUIDString).
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    """Adds server-stamped ``created_at`` and ``updated_at`` columns."""

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
