"""
Declarative base shared by all models.
"""
import enum
import uuid

from sqlalchemy import Enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def generate_uuid():
    """Generate a UUID string."""
    return str(uuid.uuid4())


def enum_type(enum_cls: type[enum.Enum], length: int = 50) -> Enum:
    """
    String-backed enum column storing member values (not names).
    Kept as VARCHAR so new members need no type migration.
    """
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
