"""
Integration tests for the inventory store reads and lifecycle reshaping

Runs against an in-memory SQLite copy of the inventory schema.
"""

import pandas as pd
import pytest

from expirekit.core.errors import StoreUnavailableError
from expirekit.db.queries import (
    fetch_active_items,
    fetch_consumption_patterns,
    fetch_item,
    fetch_item_events,
    fetch_items_for_user,
    normalize_events_df,
    normalize_patterns_df,
)
from expirekit.db.tables import items as items_table
from expirekit.features.lifecycles import (
    build_lifecycles,
    monthly_counts,
    waste_metrics,
    weekly_pattern,
)


# ============================================================================
# Read contracts
# ============================================================================

class TestQueries:

    def test_active_items_ordered_by_expiry(self, engine):
        items = fetch_active_items(engine, "u1")
        assert items["id"].tolist() == ["m1", "x1"]
        assert items["expiry_date"].iloc[0] == pd.Timestamp("2024-06-15 12:00")

    def test_consumed_items_are_not_active(self, engine):
        with engine.begin() as conn:
            conn.execute(items_table.insert(), [{
                "id": "e1", "user_id": "u1", "name": "Eggs", "category": "Dairy",
                "expiry_date": pd.Timestamp("2024-06-13 12:00"), "created_at": pd.Timestamp("2024-06-01 12:00"),
                "status": "consumed",
            }])
        assert fetch_active_items(engine, "u1")["id"].tolist() == ["m1", "x1"]
        assert "e1" in fetch_items_for_user(engine, "u1")["id"].tolist()

    def test_single_item(self, engine):
        assert fetch_item(engine, "x1")["name"].tolist() == ["Caviar"]
        assert fetch_item(engine, "ghost").empty

    def test_items_for_category(self, engine):
        assert fetch_items_for_user(engine, "u1", "Deli")["id"].tolist() == ["x1"]

    def test_patterns_by_count(self, engine):
        patterns = fetch_consumption_patterns(engine, "u1")
        assert patterns["item_name"].tolist() == ["Milk", "Bread", "Yogurt", "Cheese"]
        assert patterns["consumption_count"].dtype.kind == "i"

    def test_events_window(self, engine):
        since = pd.Timestamp("2024-06-02")
        events = fetch_item_events(engine, user_id="u1", event_type="consume", since=since)
        assert events["item_id"].tolist() == ["b-old"]

    def test_events_newest_first(self, engine):
        events = fetch_item_events(engine, user_id="u1")
        assert len(events) == 10
        assert events["event_date"].is_monotonic_decreasing

    def test_unknown_user(self, engine):
        assert fetch_active_items(engine, "nobody").empty
        assert fetch_consumption_patterns(engine, "nobody").empty

    def test_missing_tables_raise_store_unavailable(self, broken_engine):
        with pytest.raises(StoreUnavailableError):
            fetch_consumption_patterns(broken_engine)


class TestNormalization:

    def test_event_types_lowercased_and_bad_dates_dropped(self):
        raw = pd.DataFrame({
            "id": [1, 2], "user_id": ["u1", "u1"], "item_id": ["a", "a"],
            "event_type": [" CONSUME ", "add"], "event_date": ["2024-06-01T10:00:00Z", "not a date"],
            "item_name": [None, None], "category": [None, None],
        })
        events = normalize_events_df(raw)
        assert events["event_type"].tolist() == ["consume"]
        assert events["event_date"].iloc[0] == pd.Timestamp("2024-06-01 10:00")

    def test_pattern_numbers_cleaned(self):
        raw = pd.DataFrame({
            "user_id": ["u1", "u1"], "item_name": ["A", "B"], "category": ["X", "X"],
            "average_consumption_days": [float("inf"), 0.0],
            "consumption_count": [None, -2], "last_consumed": [None, None],
        })
        patterns = normalize_patterns_df(raw)
        assert pd.isna(patterns["average_consumption_days"].iloc[0])
        assert patterns["average_consumption_days"].iloc[1] == 0.0
        assert patterns["consumption_count"].tolist() == [0, 0]


# ============================================================================
# Lifecycles and descriptive statistics
# ============================================================================

class TestLifecycles:

    def test_completed_lifecycles(self, patterns_df, events_df):
        lifecycles = build_lifecycles(patterns_df, events_df).set_index("item_id")
        assert sorted(lifecycles.index) == ["b-old", "c-old", "m-old", "y-old"]
        assert lifecycles.loc["c-old", "actual_lifespan_days"] == 30
        assert lifecycles.loc["c-old", "outcome"] == "expire"
        assert lifecycles.loc["m-old", "consumption_count"] == 6
        assert lifecycles.loc["b-old", "category"] == "Bakery"

    def test_terminal_before_add_ignored(self, now):
        events = pd.DataFrame({
            "user_id": ["u1", "u1"], "item_id": ["a", "a"], "event_type": ["consume", "add"],
            "event_date": [now - pd.Timedelta(days=3), now - pd.Timedelta(days=1)],
            "item_name": ["Milk", "Milk"], "category": ["Dairy", "Dairy"],
        })
        assert build_lifecycles(None, events).empty

    def test_category_falls_back_to_pattern(self, patterns_df, now):
        events = pd.DataFrame({
            "user_id": ["u1", "u1"], "item_id": ["a", "a"], "event_type": ["add", "discard"],
            "event_date": [now - pd.Timedelta(days=3), now],
            "item_name": ["milk", "milk"], "category": [None, None],
        })
        lifecycle = build_lifecycles(patterns_df, events).iloc[0]
        assert lifecycle["category"] == "Dairy"
        assert lifecycle["actual_lifespan_days"] == 3
        assert lifecycle["outcome"] == "discard"

    def test_waste_metrics(self, events_df):
        metrics = waste_metrics(events_df)
        assert metrics["total_items"] == 6
        assert metrics["consumed_items"] == 2
        assert metrics["expired_items"] == 2
        assert metrics["waste_rate"] == pytest.approx(2 / 6)
        assert metrics["avg_days_to_expiration"] == pytest.approx(20.0)

    def test_weekly_pattern_sums_to_one(self, events_df):
        shares = weekly_pattern(events_df)
        assert len(shares) == 7
        assert sum(shares) == pytest.approx(1.0)

    def test_weekly_pattern_empty(self):
        assert weekly_pattern(None) == [0.0] * 7

    def test_monthly_counts(self, events_df):
        consumes = events_df[events_df["event_type"] == "consume"]
        assert monthly_counts(consumes) == [{"month": "2024-05", "count": 1}, {"month": "2024-06", "count": 1}]
