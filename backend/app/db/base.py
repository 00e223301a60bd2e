import enum

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by every ledger and coupon model."""


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (``"DEBIT"``) instead of member names for non-native enum columns."""
    return [member.value for member in enum_cls]
