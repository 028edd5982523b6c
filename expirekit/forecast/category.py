import logging
from typing import Dict, List, Optional

import pandas as pd

from expirekit.features.extractor import DEFAULT_AVG_DAYS, finite_or

logger = logging.getLogger(__name__)

TOP_ITEMS_PER_CATEGORY = 3
MAX_CONFIDENCE = 0.9
COUNT_FOR_FULL_CONFIDENCE = 10.0


def frequency_confidence(consumption_count) -> float:
    """Capped linear function of how often the item was consumed.

    Not a calibrated probability: ten consumptions already hit the cap.
    """
    return min(finite_or(consumption_count, 0.0) / COUNT_FOR_FULL_CONFIDENCE, MAX_CONFIDENCE)


class ConsumptionForecaster:
    """Ranks each user's items per category by how often they get consumed."""

    def __init__(self):
        self.user_patterns: Dict[str, Dict[str, List[Dict]]] = {}

    def fit(self, patterns: pd.DataFrame) -> "ConsumptionForecaster":
        grouped: Dict[str, Dict[str, List[Dict]]] = {}
        if patterns is not None and not patterns.empty:
            for p in patterns.to_dict("records"):
                grouped.setdefault(p["user_id"], {}).setdefault(p["category"], []).append(p)
        for categories in grouped.values():
            for category, rows in categories.items():
                categories[category] = sorted(rows, key=lambda r: -int(r["consumption_count"]))
        self.user_patterns = grouped
        logger.info(f"Trained consumption forecaster for {len(grouped)} users")
        return self

    @staticmethod
    def _predict_row(pattern: Dict) -> Dict:
        return {
            "item_name": pattern["item_name"],
            "category": pattern["category"],
            "days_until_next": finite_or(pattern.get("average_consumption_days"), DEFAULT_AVG_DAYS),
            "confidence": frequency_confidence(pattern.get("consumption_count")),
        }

    def categories(self, user_id: str) -> List[str]:
        return sorted(self.user_patterns.get(user_id, {}))

    def predict_next_consumption(self, user_id: str, category: Optional[str] = None) -> Dict:
        categories = self.user_patterns.get(user_id)
        if not categories:
            return {"predictions": [], "confidence": 0.0}

        if category:
            rows = categories.get(category) or []
            predictions = [self._predict_row(p) for p in rows[:TOP_ITEMS_PER_CATEGORY]]
        else:
            predictions = [self._predict_row(rows[0]) for rows in categories.values() if rows]
            predictions.sort(key=lambda p: p["confidence"], reverse=True)

        confidence = sum(p["confidence"] for p in predictions) / len(predictions) if predictions else 0.0
        return {"predictions": predictions, "confidence": confidence}
