import logging

import numpy as np
import pandas as pd
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from expirekit.core.errors import StoreUnavailableError
from expirekit.types.enums import ItemStatus

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ["id", "user_id", "name", "category", "expiry_date", "created_at", "status"]
PATTERN_COLUMNS = [
    "user_id", "item_name", "category",
    "average_consumption_days", "consumption_count", "last_consumed",
]
EVENT_COLUMNS = ["id", "user_id", "item_id", "event_type", "event_date", "item_name", "category"]

ITEM_SELECT = """
SELECT i.id, i.user_id, i.name, i.category, i.expiry_date, i.created_at, i.status
FROM items i
"""

ACTIVE_ITEMS_SQL = ITEM_SELECT + """
WHERE i.user_id = :user_id AND i.status = :status
ORDER BY CASE WHEN i.expiry_date IS NULL THEN 1 ELSE 0 END, i.expiry_date
"""

ITEM_BY_ID_SQL = ITEM_SELECT + "WHERE i.id = :item_id"

PATTERN_SQL = """
SELECT cp.user_id, cp.item_name, cp.category,
       cp.average_consumption_days, cp.consumption_count, cp.last_consumed
FROM consumption_patterns cp
"""

EVENT_SQL = """
SELECT e.id, e.user_id, e.item_id, e.event_type, e.event_date,
       e.item_name, e.category
FROM item_events e
"""


def _read(engine: Engine, sql: str, params: dict = None, since: bool = False) -> pd.DataFrame:
    stmt = text(sql)
    if since:
        stmt = stmt.bindparams(bindparam("since", type_=DateTime()))
    try:
        with engine.connect() as conn:
            return pd.read_sql(stmt, conn, params=params or {})
    except SQLAlchemyError as exc:
        logger.error(f"Inventory store query failed: {exc.__class__.__name__}")
        raise StoreUnavailableError("Inventory database is unavailable") from exc


# ---------- normalization ----------

def to_naive_utc(ts_series: pd.Series) -> pd.Series:
    return pd.to_datetime(ts_series, errors="coerce", utc=True, format="mixed").dt.tz_localize(None)


def _strip_ids(out: pd.DataFrame, cols) -> None:
    for col in cols:
        if col in out.columns:
            out[col] = out[col].map(lambda v: str(v).strip() if v is not None and not pd.isna(v) else None)


def normalize_items_df(df: pd.DataFrame) -> pd.DataFrame:
    if df is None or df.empty:
        return pd.DataFrame(columns=ITEM_COLUMNS)
    out = df.copy()
    _strip_ids(out, ("id", "user_id", "name", "category", "status"))
    for col in ("expiry_date", "created_at"):
        out[col] = to_naive_utc(out[col])
    return out


def normalize_patterns_df(df: pd.DataFrame) -> pd.DataFrame:
    if df is None or df.empty:
        return pd.DataFrame(columns=PATTERN_COLUMNS)
    out = df.copy()
    _strip_ids(out, ("user_id", "item_name", "category"))
    out["average_consumption_days"] = pd.to_numeric(out["average_consumption_days"], errors="coerce")
    out.loc[~np.isfinite(out["average_consumption_days"].astype(float)), "average_consumption_days"] = np.nan
    out["consumption_count"] = (
        pd.to_numeric(out["consumption_count"], errors="coerce").fillna(0).clip(lower=0).astype(int)
    )
    out["last_consumed"] = to_naive_utc(out["last_consumed"])
    return out


def normalize_events_df(df: pd.DataFrame) -> pd.DataFrame:
    if df is None or df.empty:
        return pd.DataFrame(columns=EVENT_COLUMNS)
    out = df.copy()
    _strip_ids(out, ("user_id", "item_id", "item_name", "category"))
    out["event_type"] = out["event_type"].astype(str).str.strip().str.lower()
    out["event_date"] = to_naive_utc(out["event_date"])
    return out.dropna(subset=["event_date"]).reset_index(drop=True)


# ---------- read contracts ----------

def fetch_active_items(engine: Engine, user_id: str) -> pd.DataFrame:
    return normalize_items_df(
        _read(engine, ACTIVE_ITEMS_SQL, {"user_id": user_id, "status": ItemStatus.ACTIVE.value})
    )


def fetch_item(engine: Engine, item_id: str) -> pd.DataFrame:
    return normalize_items_df(_read(engine, ITEM_BY_ID_SQL, {"item_id": item_id}))


def fetch_items_for_user(engine: Engine, user_id: str, category: str = None) -> pd.DataFrame:
    sql = ITEM_SELECT + "WHERE i.user_id = :user_id"
    params = {"user_id": user_id}
    if category is not None:
        sql += " AND i.category = :category"
        params["category"] = category
    return normalize_items_df(_read(engine, sql + " ORDER BY i.name", params))


def fetch_consumption_patterns(engine: Engine, user_id: str = None) -> pd.DataFrame:
    sql = PATTERN_SQL
    params = {}
    if user_id is not None:
        sql += "WHERE cp.user_id = :user_id"
        params["user_id"] = user_id
    return normalize_patterns_df(_read(engine, sql + " ORDER BY cp.consumption_count DESC", params))


def fetch_item_events(engine: Engine, user_id: str = None, event_type: str = None,
                      since=None) -> pd.DataFrame:
    clauses = []
    params = {}
    if user_id is not None:
        clauses.append("e.user_id = :user_id")
        params["user_id"] = user_id
    if event_type is not None:
        clauses.append("e.event_type = :event_type")
        params["event_type"] = event_type
    if since is not None:
        clauses.append("e.event_date >= :since")
        params["since"] = pd.Timestamp(since).to_pydatetime()
    sql = EVENT_SQL
    if clauses:
        sql += "WHERE " + " AND ".join(clauses)
    sql += " ORDER BY e.event_date DESC"
    return normalize_events_df(_read(engine, sql, params, since=since is not None))
