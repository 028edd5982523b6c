"""Random-forest consumption predictor trained on synthetic lifecycles.

Consumed items are deleted from the inventory, so there is no per-item history
to fit on. Each consumption pattern is expanded instead into a grid of
"days since last consumed" x "days until expiry" scenarios whose target is
the remainder of the pattern's usual cycle, with noise scaled by how often the
item has been consumed.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from expirekit.core.errors import InsufficientDataError
from expirekit.features.extractor import (
    DEFAULT_AVG_DAYS,
    N_FEATURES,
    CategoryEncoder,
    ConsumptionFeatures,
    clean_feature_vector,
    extract_features,
    finite_or,
    round_half_up,
    to_iso,
    user_stats_from_patterns,
    utc_now,
)
from expirekit.model.estimator import (
    build_baseline,
    build_classifier,
    build_regressor,
    predict_proba_positive,
)

logger = logging.getLogger(__name__)

MIN_TRAINING_EXAMPLES = 10
SOON_DAYS = 7
MAX_SYNTHETIC_DAYS = 180
MIN_TARGET_DAYS, MAX_TARGET_DAYS = 1, 365

EXPIRY_HORIZONS = (30, 90, 180, 365)

# (cycle fraction, month, day_of_week, is_weekend); Monday = 0
SCENARIOS = (
    (0.0, 1, 0, 0),
    (0.5, 3, 2, 0),
    (1.0, 6, 5, 1),
    (1.5, 9, 6, 1),
)

FREQUENT_ITEM_COUNT = 5

PLACEHOLDER_CONFIDENCE = 0.8
NO_HISTORY_CONFIDENCE = 0.1


@dataclass
class TrainingExample:
    features: List[float]
    days_target: float
    classification_target: int


@dataclass(frozen=True)
class EnsembleSnapshot:
    regressor: object
    classifier: object
    encoder: CategoryEncoder
    trained_at: str
    n_examples: int
    class_balance: Dict[int, int] = field(default_factory=dict)


def _days_since_last(avg_days: float, fraction: float) -> float:
    if fraction == 1.0:
        return avg_days
    return float(math.floor(avg_days * fraction))


class RandomForestConsumptionPredictor:
    def __init__(self, n_estimators: int = 50, max_features: float = 0.8,
                 random_state: int = 42, rng: Optional[np.random.Generator] = None):
        self.n_estimators = n_estimators
        self.max_features = max_features
        self.random_state = random_state
        self.rng = rng if rng is not None else np.random.default_rng(random_state)
        self.snapshot: Optional[EnsembleSnapshot] = None

    @classmethod
    def from_snapshot(cls, snapshot: EnsembleSnapshot) -> "RandomForestConsumptionPredictor":
        predictor = cls()
        predictor.snapshot = snapshot
        return predictor

    @property
    def is_trained(self) -> bool:
        return self.snapshot is not None

    # ---------- synthetic data ----------

    def generate_training_examples(self, patterns: pd.DataFrame, encoder: CategoryEncoder,
                                   rng: Optional[np.random.Generator] = None) -> List[TrainingExample]:
        rng = rng if rng is not None else self.rng
        if patterns is None or patterns.empty:
            logger.info("No consumption patterns found")
            return []

        stats = {
            user_id: user_stats_from_patterns(group)
            for user_id, group in patterns.groupby("user_id", sort=False)
        }

        examples: List[TrainingExample] = []
        used = patterns[patterns["consumption_count"] > 0]
        for pattern in used.to_dict("records"):
            avg_days = finite_or(pattern.get("average_consumption_days"), DEFAULT_AVG_DAYS)
            count = int(pattern["consumption_count"])
            user = stats[pattern["user_id"]]
            category_code = encoder.encode(pattern.get("category"))

            for fraction, month, dow, weekend in SCENARIOS:
                since_last = _days_since_last(avg_days, fraction)
                for until_expiry in EXPIRY_HORIZONS:
                    features = ConsumptionFeatures(
                        average_consumption_days=avg_days,
                        consumption_count=float(count),
                        days_since_last_consumed=since_last,
                        category_encoded=float(category_code),
                        day_of_week=float(dow),
                        month=float(month),
                        is_weekend=float(weekend),
                        days_until_expiry=float(until_expiry),
                        item_age_days=max(0.0, since_last),
                        user_total_items=user["total_items"],
                        user_avg_consumption_frequency=user["avg_frequency"],
                    )

                    target = max(1.0, avg_days - since_last)
                    if count > FREQUENT_ITEM_COUNT:
                        target += int(rng.integers(-1, 2))
                    else:
                        target += int(rng.integers(-5, 6))
                    target = max(1.0, min(target, float(MAX_SYNTHETIC_DAYS)))

                    examples.append(TrainingExample(
                        features=features.to_list(),
                        days_target=target,
                        classification_target=1 if target <= SOON_DAYS else 0,
                    ))

        logger.info(f"Generated {len(examples)} synthetic training examples from {len(used)} patterns")
        return examples

    @staticmethod
    def validate_training_examples(examples: List[TrainingExample]) -> List[TrainingExample]:
        cleaned: List[TrainingExample] = []
        for ex in examples:
            features = clean_feature_vector(ex.features)
            if len(features) != N_FEATURES or not all(math.isfinite(f) for f in features):
                continue
            days = finite_or(ex.days_target, None)
            if days is None:
                continue
            days = max(float(MIN_TARGET_DAYS), min(days, float(MAX_TARGET_DAYS)))
            label = ex.classification_target
            if label not in (0, 1) or isinstance(label, bool):
                label = 1 if days <= SOON_DAYS else 0
            cleaned.append(TrainingExample(features, days, int(label)))

        dropped = len(examples) - len(cleaned)
        if dropped:
            logger.warning(f"Discarded {dropped}/{len(examples)} training examples with unusable values")
        logger.info(f"Cleaned data: {len(cleaned)}/{len(examples)} examples passed validation")
        return cleaned

    # ---------- training ----------

    def fit(self, examples: List[TrainingExample], encoder: CategoryEncoder = None) -> EnsembleSnapshot:
        clean = self.validate_training_examples(examples)
        if len(clean) < MIN_TRAINING_EXAMPLES:
            raise InsufficientDataError(len(clean), MIN_TRAINING_EXAMPLES)

        X = np.array([ex.features for ex in clean], dtype=float)
        y_days = np.array([ex.days_target for ex in clean], dtype=float)
        y_soon = np.array([ex.classification_target for ex in clean], dtype=int)

        classes, counts = np.unique(y_soon, return_counts=True)
        class_balance = {int(c): int(n) for c, n in zip(classes, counts)}
        logger.info(
            f"Training with {len(clean)} clean examples; "
            f"days target range {y_days.min():.0f}-{y_days.max():.0f}; balance {class_balance}"
        )

        regressor = build_regressor(self.n_estimators, self.max_features, self.random_state)
        regressor.fit(X, y_days)

        if len(classes) < 2:
            classifier = build_baseline(constant=int(classes[0]))
        else:
            classifier = build_classifier(self.n_estimators, self.max_features, self.random_state)
        classifier.fit(X, y_soon)

        snapshot = EnsembleSnapshot(
            regressor=regressor,
            classifier=classifier,
            encoder=encoder if encoder is not None else CategoryEncoder(),
            trained_at=datetime.now(timezone.utc).isoformat(),
            n_examples=len(clean),
            class_balance=class_balance,
        )
        self.snapshot = snapshot
        logger.info("Random forest consumption models trained")
        return snapshot

    def train(self, patterns: pd.DataFrame) -> EnsembleSnapshot:
        encoder = CategoryEncoder()
        if patterns is not None and not patterns.empty:
            encoder.fit(patterns["category"].dropna())
        examples = self.generate_training_examples(patterns, encoder)
        return self.fit(examples, encoder)

    # ---------- inference ----------

    def predict_vectors(self, vectors: List[List[float]]):
        if self.snapshot is None:
            raise RuntimeError("Random forest models are not trained")
        X = np.array([clean_feature_vector(v) for v in vectors], dtype=float)
        days = self.snapshot.regressor.predict(X)
        soon = self.snapshot.classifier.predict(X)
        proba = predict_proba_positive(self.snapshot.classifier, X)
        return days, soon, proba

    def predict_for_active_inventory(self, items: pd.DataFrame, patterns: pd.DataFrame,
                                     as_of=None) -> List[Dict]:
        if self.snapshot is None:
            raise RuntimeError("Random forest models are not trained")
        if items is None or items.empty:
            return []
        as_of = as_of if as_of is not None else utc_now()

        by_name = {}
        if patterns is not None and not patterns.empty:
            for p in patterns.to_dict("records"):
                by_name.setdefault(str(p["item_name"]).lower(), p)
        user_stats = user_stats_from_patterns(patterns)

        results: List[Dict] = []
        pending = []
        for item in items.to_dict("records"):
            pattern = by_name.get(str(item["name"]).lower())
            base = {
                "item_id": item["id"],
                "item_name": item["name"],
                "category": item["category"],
                "expiry_date": to_iso(item.get("expiry_date")),
            }
            if pattern is None:
                results.append({
                    **base,
                    "days_until_consumption": None,
                    "will_consume_within_7_days": False,
                    "confidence": NO_HISTORY_CONFIDENCE,
                    "probability_within_7_days": None,
                    "reason": "No historical consumption data",
                })
                continue
            features = extract_features(pattern, as_of, item, user_stats, self.snapshot.encoder)
            pending.append((len(results), features))
            results.append(base)

        if pending:
            days, soon, proba = self.predict_vectors([f.to_list() for _, f in pending])
            for (idx, features), d, s, p in zip(pending, days, soon, proba):
                results[idx].update({
                    "days_until_consumption": round_half_up(float(d)),
                    "will_consume_within_7_days": bool(int(s) == 1),
                    "confidence": PLACEHOLDER_CONFIDENCE,
                    "probability_within_7_days": float(p),
                    "features": features.to_dict(),
                })
        return results
