import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from expirekit.features.extractor import finite_or, round_half_up
from expirekit.types.enums import Outcome

logger = logging.getLogger(__name__)

CATEGORY_MISMATCH_PENALTY = 5.0
COUNT_SCALE = 10.0
AVG_DAYS_SCALE = 3.0
MISSING_AVG_DAYS = 30.0

DEFAULT_OUTCOME = Outcome.CONSUME.value
DEFAULT_DAYS = 30


@dataclass(frozen=True)
class KNNPrediction:
    outcome: str
    confidence: float
    days: int

    def to_dict(self) -> Dict:
        return {"outcome": self.outcome, "confidence": self.confidence, "days": self.days}


class KNNExpirationPredictor:
    """k-nearest-neighbour vote over completed item lifecycles.

    Neighbours are searched within the query's category first, and across the
    whole training set only when that category has never been seen.
    """

    def __init__(self, k: int = 3):
        if k < 1:
            raise ValueError("k must be >= 1")
        self.k = int(k)
        self.training_data: List[Dict] = []

    def fit(self, rows: Sequence[Dict]) -> "KNNExpirationPredictor":
        self.training_data = list(rows)
        logger.info(f"KNN trained with {len(self.training_data)} examples (k={self.k})")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.training_data

    @staticmethod
    def distance(a: Dict, b: Dict) -> float:
        penalty = 0.0 if a.get("category") == b.get("category") else CATEGORY_MISMATCH_PENALTY
        count_diff = (finite_or(a.get("consumption_count"), 0.0) - finite_or(b.get("consumption_count"), 0.0)) / COUNT_SCALE
        avg_diff = (
            finite_or(a.get("average_consumption_days"), MISSING_AVG_DAYS)
            - finite_or(b.get("average_consumption_days"), MISSING_AVG_DAYS)
        ) / AVG_DAYS_SCALE
        return math.sqrt(penalty + count_diff ** 2 + avg_diff ** 2)

    def neighbors(self, query: Dict) -> List[Dict]:
        candidates = [row for row in self.training_data if row.get("category") == query.get("category")]
        if not candidates:
            candidates = self.training_data
        distances = np.array([self.distance(row, query) for row in candidates], dtype=float)
        order = np.argsort(distances, kind="stable")[: self.k]
        return [candidates[i] for i in order]

    def predict(self, query: Dict) -> KNNPrediction:
        if self.is_empty:
            return KNNPrediction(DEFAULT_OUTCOME, 0.0, DEFAULT_DAYS)

        nearest = self.neighbors(query)

        votes: Dict[str, int] = {}
        for row in nearest:
            votes[row["outcome"]] = votes.get(row["outcome"], 0) + 1
        # first label to reach the top count wins ties (dicts keep insertion order)
        outcome, top = DEFAULT_OUTCOME, 0
        for label, count in votes.items():
            if count > top:
                outcome, top = label, count

        days = np.mean([finite_or(row.get("actual_lifespan_days"), 0.0) for row in nearest])
        return KNNPrediction(outcome, top / self.k, max(0, round_half_up(float(days))))
