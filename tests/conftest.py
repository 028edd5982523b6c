import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta

import pandas as pd
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from expirekit.core.config import Settings
from expirekit.db.tables import consumption_patterns, create_schema, item_events, items

# Wednesday, so weekday-dependent features are not weekend
NOW = datetime(2024, 6, 12, 12, 0, 0)


def days_ago(n):
    return NOW - timedelta(days=n)


def in_days(n):
    return NOW + timedelta(days=n)


PATTERN_ROWS = [
    {"user_id": "u1", "item_name": "Milk", "category": "Dairy",
     "average_consumption_days": 10.0, "consumption_count": 6, "last_consumed": days_ago(5)},
    {"user_id": "u1", "item_name": "Yogurt", "category": "Dairy",
     "average_consumption_days": 7.0, "consumption_count": 3, "last_consumed": days_ago(15)},
    {"user_id": "u1", "item_name": "Cheese", "category": "Dairy",
     "average_consumption_days": 20.0, "consumption_count": 2, "last_consumed": days_ago(30)},
    {"user_id": "u1", "item_name": "Bread", "category": "Bakery",
     "average_consumption_days": 5.0, "consumption_count": 4, "last_consumed": days_ago(8)},
]

ITEM_ROWS = [
    {"id": "m1", "user_id": "u1", "name": "Milk", "category": "Dairy",
     "expiry_date": in_days(3), "created_at": days_ago(2), "status": "active"},
    {"id": "x1", "user_id": "u1", "name": "Caviar", "category": "Deli",
     "expiry_date": in_days(10), "created_at": days_ago(1), "status": "active"},
]


def _event(item_id, event_type, when, name, category):
    return {"user_id": "u1", "item_id": item_id, "event_type": event_type,
            "event_date": when, "item_name": name, "category": category}


EVENT_ROWS = [
    # completed lifecycles: Milk 10d consumed, Yogurt 10d expired, Cheese 30d expired, Bread 4d consumed
    _event("m-old", "add", days_ago(30), "Milk", "Dairy"),
    _event("m-old", "consume", days_ago(20), "Milk", "Dairy"),
    _event("y-old", "add", days_ago(25), "Yogurt", "Dairy"),
    _event("y-old", "expire", days_ago(15), "Yogurt", "Dairy"),
    _event("c-old", "add", days_ago(40), "Cheese", "Dairy"),
    _event("c-old", "expire", days_ago(10), "Cheese", "Dairy"),
    _event("b-old", "add", days_ago(12), "Bread", "Bakery"),
    _event("b-old", "consume", days_ago(8), "Bread", "Bakery"),
    # still on the shelf
    _event("m1", "add", days_ago(2), "Milk", "Dairy"),
    _event("x1", "add", days_ago(1), "Caviar", "Deli"),
]


def make_engine():
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def empty_engine():
    engine = make_engine()
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def engine(empty_engine):
    with empty_engine.begin() as conn:
        conn.execute(consumption_patterns.insert(), PATTERN_ROWS)
        conn.execute(items.insert(), ITEM_ROWS)
        conn.execute(item_events.insert(), EVENT_ROWS)
    return empty_engine


@pytest.fixture
def broken_engine():
    """An engine whose database has no inventory tables."""
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(DATABASE_URL="sqlite://", MODEL_DIR=str(tmp_path), RANDOM_SEED=42)


@pytest.fixture
def now():
    return pd.Timestamp(NOW)


@pytest.fixture
def patterns_df():
    return pd.DataFrame(PATTERN_ROWS)


@pytest.fixture
def events_df():
    df = pd.DataFrame(EVENT_ROWS)
    df["event_date"] = pd.to_datetime(df["event_date"])
    return df


@pytest.fixture
def items_df():
    df = pd.DataFrame(ITEM_ROWS)
    for col in ("expiry_date", "created_at"):
        df[col] = pd.to_datetime(df[col])
    return df
