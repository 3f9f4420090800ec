"""Column types and constraint helpers shared by the plan models."""

from enum import Enum

from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntId = BigInteger().with_variant(Integer(), "sqlite")
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def status_check_sql(column: str, enum_cls: type[Enum], nullable: bool = False) -> str:
    """Build a CHECK expression restricting ``column`` to the enum's values."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    clause = f"{column} IN ({values})"
    if nullable:
        return f"{column} IS NULL OR {clause}"
    return clause
