"""SQLAlchemy Core mirror of the inventory tables this service reads.

The CRUD service owns the real schema; these definitions exist so tests and
local development can stand up an equivalent database.
"""
from sqlalchemy import (
    Column, DateTime, Float, Integer, MetaData, String, Table, Text, UniqueConstraint,
)
from sqlalchemy.engine import Engine

from expirekit.types.enums import ItemStatus

metadata = MetaData()

items = Table(
    "items", metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("category", String(100), nullable=False),
    Column("expiry_date", DateTime, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("status", String(20), nullable=False, default=ItemStatus.ACTIVE.value),
)

consumption_patterns = Table(
    "consumption_patterns", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("item_name", String(255), nullable=False),
    Column("category", String(100), nullable=False),
    Column("average_consumption_days", Float, nullable=True),
    Column("consumption_count", Integer, nullable=False, default=0),
    Column("last_consumed", DateTime, nullable=True),
    Column("last_updated", DateTime, nullable=True),
    UniqueConstraint("user_id", "item_name", name="uq_pattern_user_item"),
)

item_events = Table(
    "item_events", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("item_id", String(64), nullable=False, index=True),
    Column("event_type", String(20), nullable=False),
    Column("event_date", DateTime, nullable=False),
    Column("item_name", String(255), nullable=True),
    Column("category", String(100), nullable=True),
    Column("notes", Text, nullable=True),
)


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)
