import logging
from typing import Dict, List

import numpy as np
import pandas as pd

from expirekit.features.extractor import round_half_up, utc_now
from expirekit.types.enums import EventType

logger = logging.getLogger(__name__)

HISTORY_DAYS = 14
MA_WINDOW = 7
HORIZON_DAYS = 7
TREND_CONFIDENCE = 0.6


def _date_strings(start: pd.Timestamp, n: int) -> List[str]:
    return [(start + pd.Timedelta(days=i)).strftime("%Y-%m-%d") for i in range(n)]


def daily_history(events: pd.DataFrame, today: pd.Timestamp, days: int = HISTORY_DAYS) -> pd.Series:
    """Consume counts per calendar day for the ``days`` days ending today."""
    index = pd.date_range(end=today.normalize(), periods=days, freq="D")
    if events is None or events.empty:
        return pd.Series(0, index=index, dtype=int)
    consumed = events[events["event_type"] == EventType.CONSUME.value]
    counts = consumed["event_date"].dt.normalize().value_counts()
    return counts.reindex(index, fill_value=0).astype(int)


def moving_averages(values, window: int = MA_WINDOW) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    return np.array([values[i:i + window].mean() for i in range(len(values) - window + 1)])


def extrapolate(ma: np.ndarray, horizon: int = HORIZON_DAYS) -> List[int]:
    trend = (ma[-1] - ma[0]) / (len(ma) - 1) if len(ma) >= 2 else 0.0
    return [max(0, round_half_up(ma[-1] + trend * i)) for i in range(1, horizon + 1)]


def forecast_consumption_trend(events: pd.DataFrame, today=None) -> Dict:
    today = pd.Timestamp(today) if today is not None else utc_now()
    tomorrow = today.normalize() + pd.Timedelta(days=1)
    try:
        history = daily_history(events, today)
        ma = moving_averages(history.values)
        return {
            "timestamp": today.isoformat(),
            "historical": {
                "dates": [d.strftime("%Y-%m-%d") for d in history.index],
                "values": [int(v) for v in history.values],
            },
            "prediction": {
                "dates": _date_strings(tomorrow, HORIZON_DAYS),
                "values": extrapolate(ma),
            },
            "moving_averages": [float(v) for v in ma],
            "confidence": TREND_CONFIDENCE,
        }
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.error(f"Error predicting consumption trend: {exc}")
        return failed_forecast(today)


def failed_forecast(today) -> Dict:
    """Zero-filled forecast flagged with ``error``."""
    today = pd.Timestamp(today)
    return {
        "timestamp": today.isoformat(),
        "historical": {"dates": [], "values": []},
        "prediction": {
            "dates": _date_strings(today.normalize() + pd.Timedelta(days=1), HORIZON_DAYS),
            "values": [0] * HORIZON_DAYS,
        },
        "confidence": 0.0,
        "error": "Error generating prediction",
    }
