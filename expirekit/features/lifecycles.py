import logging
from typing import Dict, List

import numpy as np
import pandas as pd

from expirekit.types.enums import EventType, TERMINAL_EVENTS

logger = logging.getLogger(__name__)

TERMINAL_TYPES = {e.value for e in TERMINAL_EVENTS}

LIFECYCLE_COLUMNS = [
    "item_id", "user_id", "item_name", "category",
    "consumption_count", "average_consumption_days",
    "actual_lifespan_days", "outcome",
]

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _text(value):
    return value if isinstance(value, str) and value else None


def build_lifecycles(patterns_df: pd.DataFrame, events_df: pd.DataFrame) -> pd.DataFrame:
    """
    One labeled row per item whose history holds an ``add`` followed by a
    terminal event (consume/expire/discard):
      - lifespan = floored days between the add and the first later terminal
      - item name/category come from the event snapshots (any event of the item,
        then the terminal one), falling back to the owning pattern's category
      - count/avg come from the user's pattern matched case-insensitively by name
    """
    if events_df is None or events_df.empty:
        return pd.DataFrame(columns=LIFECYCLE_COLUMNS)

    events = events_df.sort_values("event_date", kind="stable")

    pattern_key = {}
    if patterns_df is not None and not patterns_df.empty:
        for p in patterns_df.to_dict("records"):
            if p.get("item_name"):
                pattern_key.setdefault((p["user_id"], p["item_name"].lower()), p)

    rows = []
    for item_id, grp in events.groupby("item_id", sort=False):
        adds = grp[grp["event_type"] == EventType.ADD.value]
        if adds.empty:
            continue
        add = adds.iloc[0]
        after = grp[(grp["event_type"].isin(TERMINAL_TYPES)) & (grp["event_date"] > add["event_date"])]
        if after.empty:
            continue
        terminal = after.iloc[0]

        lifespan = (terminal["event_date"] - add["event_date"]).days
        user_id = grp["user_id"].iloc[-1]

        with_both = grp.dropna(subset=["item_name", "category"])
        if not with_both.empty:
            item_name, category = with_both.iloc[-1]["item_name"], with_both.iloc[-1]["category"]
        else:
            item_name, category = terminal.get("item_name"), terminal.get("category")
        item_name, category = _text(item_name), _text(category)

        pattern = pattern_key.get((user_id, item_name.lower())) if item_name else None

        if not category:
            category = pattern["category"] if pattern is not None else "Unknown"

        rows.append({
            "item_id": item_id,
            "user_id": user_id,
            "item_name": item_name or f"Item {item_id}",
            "category": category,
            "consumption_count": int(pattern["consumption_count"]) if pattern is not None else 0,
            "average_consumption_days": pattern["average_consumption_days"] if pattern is not None else None,
            "actual_lifespan_days": int(lifespan),
            "outcome": terminal["event_type"],
        })

    out = pd.DataFrame(rows, columns=LIFECYCLE_COLUMNS)
    logger.info(f"Built {len(out)} completed lifecycles from {events['item_id'].nunique()} items")
    return out


def attach_item_categories(events_df: pd.DataFrame, items_df: pd.DataFrame) -> pd.DataFrame:
    """Fill each event's category snapshot from the item row when missing."""
    out = events_df.copy()
    if out.empty:
        out["category"] = pd.Series(dtype=object)
        return out
    if items_df is not None and not items_df.empty:
        item_cat = items_df.set_index("id")["category"].to_dict()
        fill = out["item_id"].map(item_cat)
        out["category"] = out["category"].where(out["category"].notna(), fill)
    out["category"] = out["category"].fillna("Unknown")
    return out


def category_waste_risk(events_df: pd.DataFrame, items_df: pd.DataFrame) -> Dict[str, Dict]:
    """expired / (expired + consumed) per category, plus the active item count."""
    events = attach_item_categories(events_df, items_df)
    stats: Dict[str, Dict] = {}
    counts = (events[events["event_type"].isin([EventType.CONSUME.value, EventType.EXPIRE.value])]
              .groupby(["category", "event_type"]).size())
    categories = set(events["category"].dropna())
    if items_df is not None and not items_df.empty:
        categories |= set(items_df["category"].dropna())

    for cat in sorted(categories):
        consumed = int(counts.get((cat, EventType.CONSUME.value), 0))
        expired = int(counts.get((cat, EventType.EXPIRE.value), 0))
        total = consumed + expired
        item_count = 0
        if items_df is not None and not items_df.empty:
            item_count = int((items_df["category"] == cat).sum())
        stats[cat] = {
            "item_count": item_count,
            "consume_count": consumed,
            "expire_count": expired,
            "waste_risk": expired / total if total > 0 else 0.0,
        }
    return stats


def waste_metrics(events_df: pd.DataFrame) -> Dict:
    if events_df is None or events_df.empty:
        return {
            "total_items": 0, "consumed_items": 0, "expired_items": 0,
            "discarded_items": 0, "waste_rate": 0.0, "avg_days_to_expiration": 0.0,
        }
    counts = events_df["event_type"].value_counts()
    added = int(counts.get(EventType.ADD.value, 0))
    expired = int(counts.get(EventType.EXPIRE.value, 0))
    discarded = int(counts.get(EventType.DISCARD.value, 0))

    # last add / last expire per item, as recorded
    adds = events_df[events_df["event_type"] == EventType.ADD.value].groupby("item_id")["event_date"].max()
    expires = events_df[events_df["event_type"] == EventType.EXPIRE.value].groupby("item_id")["event_date"].max()
    paired = pd.concat([adds.rename("added"), expires.rename("expired")], axis=1, join="inner")
    days = pd.Series(dtype=float)
    if not paired.empty:
        days = (paired["expired"] - paired["added"]).dt.days
        days = days[days >= 0]

    return {
        "total_items": added,
        "consumed_items": int(counts.get(EventType.CONSUME.value, 0)),
        "expired_items": expired,
        "discarded_items": discarded,
        "waste_rate": (expired + discarded) / added if added > 0 else 0.0,
        "avg_days_to_expiration": float(days.mean()) if not days.empty else 0.0,
    }


def weekly_pattern(events_df: pd.DataFrame) -> List[float]:
    """Share of consume events per weekday, Monday first."""
    counts = np.zeros(7, dtype=float)
    if events_df is not None and not events_df.empty:
        consumed = events_df[events_df["event_type"] == EventType.CONSUME.value]
        for dow, n in consumed["event_date"].dt.dayofweek.value_counts().items():
            counts[int(dow)] = n
    total = counts.sum()
    return (counts / total).tolist() if total > 0 else counts.tolist()


def monthly_counts(events_df: pd.DataFrame) -> List[Dict]:
    if events_df is None or events_df.empty:
        return []
    months = events_df["event_date"].dt.strftime("%Y-%m")
    return [{"month": m, "count": int(n)} for m, n in months.value_counts().sort_index().items()]
