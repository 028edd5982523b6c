"""Feature extraction shared by the KNN and the random-forest predictors.

Every vector has the same 11 slots in the order of ``FEATURE_NAMES``; a slot
that cannot be computed (missing pattern field, missing expiry, NaN from the
store) falls back to the value at the same index of ``FEATURE_DEFAULTS``.
"""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import astuple, dataclass
from typing import Dict, Iterable, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

FEATURE_NAMES = (
    "average_consumption_days",
    "consumption_count",
    "days_since_last_consumed",
    "category_encoded",
    "day_of_week",
    "month",
    "is_weekend",
    "days_until_expiry",
    "item_age_days",
    "user_total_items",
    "user_avg_consumption_frequency",
)

FEATURE_DEFAULTS = (30.0, 1.0, 999.0, 0.0, 1.0, 6.0, 0.0, 365.0, 0.0, 1.0, 30.0)

N_FEATURES = len(FEATURE_NAMES)

DEFAULT_AVG_DAYS = 30.0
NEVER_CONSUMED_DAYS = 999.0
NO_EXPIRY_DAYS = 365.0


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def finite_or(value, default):
    """``float(value)`` when it is a finite number, otherwise ``default``."""
    if value is None:
        return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(num):
        return default
    return num


def _get(record, key):
    if record is None:
        return None
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def _timestamp(value) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def to_iso(value) -> Optional[str]:
    ts = _timestamp(value)
    return ts.isoformat() if ts is not None else None


def days_between(later, earlier) -> Optional[int]:
    """Whole days from ``earlier`` to ``later``, floored; None if either is unknown."""
    a, b = _timestamp(later), _timestamp(earlier)
    if a is None or b is None:
        return None
    return (a - b).days


class CategoryEncoder:
    """Bidirectional category <-> integer registry.

    ``fit`` assigns indices in sorted order so a retrain over the same data
    always yields the same mapping; strings seen later get the next free index
    and keep it.
    """

    def __init__(self, mapping: Optional[Dict[str, int]] = None):
        self._lock = threading.Lock()
        self._index: Dict[str, int] = {}
        self._reverse: Dict[int, str] = {}
        for category, idx in sorted((mapping or {}).items(), key=lambda kv: kv[1]):
            self._index[category] = int(idx)
            self._reverse[int(idx)] = category

    def fit(self, categories: Iterable[str]) -> "CategoryEncoder":
        with self._lock:
            self._index.clear()
            self._reverse.clear()
            for category in sorted({str(c) for c in categories if c is not None}):
                self._register(category)
        return self

    def _register(self, category: str) -> int:
        idx = len(self._index)
        self._index[category] = idx
        self._reverse[idx] = category
        return idx

    def encode(self, category) -> int:
        key = "" if category is None else str(category)
        with self._lock:
            if key not in self._index:
                return self._register(key)
            return self._index[key]

    def decode(self, index: int) -> Optional[str]:
        return self._reverse.get(int(index))

    def to_dict(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __getstate__(self):
        return {"mapping": self.to_dict()}

    def __setstate__(self, state):
        self.__init__(state["mapping"])


@dataclass(frozen=True)
class ConsumptionFeatures:
    average_consumption_days: float
    consumption_count: float
    days_since_last_consumed: float
    category_encoded: float
    day_of_week: float
    month: float
    is_weekend: float
    days_until_expiry: float
    item_age_days: float
    user_total_items: float
    user_avg_consumption_frequency: float

    def to_list(self) -> List[float]:
        return list(astuple(self))

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.to_list()))


def clean_feature_vector(values) -> List[float]:
    """Replace missing or non-finite slots with their documented default.

    Vectors of the wrong length are returned unchanged (as floats where
    possible) so the caller can reject them.
    """
    values = list(values)
    if len(values) != N_FEATURES:
        return [finite_or(v, math.nan) for v in values]
    cleaned = []
    for idx, value in enumerate(values):
        fixed = finite_or(value, None)
        if fixed is None:
            if value is not None:
                logger.debug(f"Feature {FEATURE_NAMES[idx]}={value!r} replaced by default")
            fixed = FEATURE_DEFAULTS[idx]
        cleaned.append(fixed)
    return cleaned


def user_stats_from_patterns(patterns: pd.DataFrame) -> Dict[str, float]:
    """Pattern count and mean cycle length for one user's pattern rows."""
    if patterns is None or patterns.empty:
        return {"total_items": FEATURE_DEFAULTS[9], "avg_frequency": FEATURE_DEFAULTS[10]}
    avg = pd.to_numeric(patterns["average_consumption_days"], errors="coerce").mean()
    return {
        "total_items": float(len(patterns)),
        "avg_frequency": finite_or(avg, FEATURE_DEFAULTS[10]),
    }


def extract_features(pattern, as_of, item=None, user_stats=None,
                     encoder: Optional[CategoryEncoder] = None) -> ConsumptionFeatures:
    as_of = _timestamp(as_of)
    if as_of is None:
        as_of = utc_now()

    last_consumed = days_between(as_of, _get(pattern, "last_consumed"))
    until_expiry = days_between(_get(item, "expiry_date"), as_of)
    age = days_between(as_of, _get(item, "created_at"))

    category = _get(pattern, "category")
    if category is None:
        category = _get(item, "category")
    category_code = encoder.encode(category) if encoder is not None else FEATURE_DEFAULTS[3]

    weekday = as_of.dayofweek
    values = [
        _get(pattern, "average_consumption_days"),
        _get(pattern, "consumption_count"),
        last_consumed if last_consumed is not None else NEVER_CONSUMED_DAYS,
        category_code,
        weekday,
        as_of.month,
        1 if weekday >= 5 else 0,
        max(0, until_expiry) if until_expiry is not None else NO_EXPIRY_DAYS,
        age,
        _get(user_stats, "total_items"),
        _get(user_stats, "avg_frequency"),
    ]
    return ConsumptionFeatures(*clean_feature_vector(values))


def build_item_profile(item, pattern, as_of=None) -> Dict:
    """Query record for the KNN predictor."""
    until_expiry = days_between(_get(item, "expiry_date"), as_of if as_of is not None else utc_now())
    avg = _get(pattern, "average_consumption_days") if pattern is not None else None
    return {
        "item_id": _get(item, "id"),
        "item_name": _get(item, "name"),
        "category": _get(item, "category"),
        "consumption_count": int(finite_or(_get(pattern, "consumption_count"), 0)) if pattern is not None else 0,
        "average_consumption_days": finite_or(avg, None),
        "days_until_expiry": max(0, until_expiry) if until_expiry is not None else None,
    }
