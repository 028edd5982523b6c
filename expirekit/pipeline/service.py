import logging
import threading
from typing import Dict, Optional

import numpy as np
import pandas as pd
from sqlalchemy.engine import Engine

from expirekit.core.config import Settings
from expirekit.core.errors import InsufficientDataError, StoreUnavailableError
from expirekit.db.queries import (
    fetch_active_items,
    fetch_consumption_patterns,
    fetch_item,
    fetch_item_events,
    fetch_items_for_user,
)
from expirekit.features.extractor import utc_now
from expirekit.features.lifecycles import (
    WEEKDAYS,
    attach_item_categories,
    monthly_counts,
    waste_metrics,
    weekly_pattern,
)
from expirekit.forecast.trend import failed_forecast, forecast_consumption_trend
from expirekit.model.ensemble import EnsembleSnapshot, RandomForestConsumptionPredictor
from expirekit.model.io import load_snapshot, model_path, save_snapshot
from expirekit.pipeline.infer import (
    USAGE_HISTORY_EVENTS,
    analyze_items,
    compare_predictions,
    expiration_buckets,
    group_outcomes,
    item_outcome,
    pattern_index,
    predictive_insights,
    restock_forecast,
    unknown_item_outcome,
)
from expirekit.pipeline.train import KNNSnapshot, run_ensemble_training, run_training
from expirekit.types.enums import EventType

logger = logging.getLogger(__name__)


def _timestamp_or_now(value) -> pd.Timestamp:
    return pd.Timestamp(value) if value is not None else utc_now()


class MLService:
    """Owns the trained model snapshots and answers prediction requests.

    Built once at startup and shared by the request handlers. Trainers are
    serialized by a lock and publish a new immutable snapshot when they
    finish; readers always use whatever snapshot was current when they
    started. A request that finds no snapshot trains synchronously, and
    concurrent first requests wait on the same lock instead of training twice.
    """

    def __init__(self, engine: Engine, settings: Settings, rng: Optional[np.random.Generator] = None):
        self.engine = engine
        self.settings = settings
        self._rng = rng
        self._train_lock = threading.Lock()
        self._ensemble_lock = threading.Lock()
        self._knn: Optional[KNNSnapshot] = None
        self._ensemble: Optional[EnsembleSnapshot] = None

    # ---------- state ----------

    @property
    def is_trained(self) -> bool:
        return self._knn is not None

    @property
    def last_training_time(self) -> Optional[str]:
        return self._knn.trained_at if self._knn is not None else None

    @property
    def ensemble_trained(self) -> bool:
        return self._ensemble is not None

    def _model_path(self) -> str:
        return model_path(self.settings.MODEL_DIR, self.settings.MODEL_NAME)

    def load_persisted_ensemble(self, path: Optional[str] = None) -> bool:
        snapshot = load_snapshot(path or self._model_path())
        if snapshot is None:
            return False
        self._ensemble = snapshot
        return True

    # ---------- training ----------

    def train(self) -> Dict:
        with self._train_lock:
            snapshot, report = run_training(self.engine, k=self.settings.KNN_NEIGHBORS)
            self._knn = snapshot
        logger.info(f"ML models trained successfully ({report['trained_on_rows']} lifecycles)")
        return report

    def _fit_ensemble(self):
        rng = self._rng if self._rng is not None else np.random.default_rng(self.settings.RANDOM_SEED)
        return run_ensemble_training(
            self.engine,
            n_estimators=self.settings.RF_N_ESTIMATORS,
            max_features=self.settings.RF_MAX_FEATURES,
            seed=self.settings.RANDOM_SEED,
            rng=rng,
        )

    def train_ensemble(self) -> Dict:
        with self._ensemble_lock:
            snapshot, report = self._fit_ensemble()
            self._ensemble = snapshot
            if self.settings.PERSIST_MODELS:
                report["model_path"] = save_snapshot(snapshot, self._model_path())
        return report

    def _knn_snapshot(self) -> KNNSnapshot:
        snapshot = self._knn
        if snapshot is not None:
            return snapshot
        with self._train_lock:
            if self._knn is None:
                logger.info("Models not trained yet; training on demand")
                self._knn = run_training(self.engine, k=self.settings.KNN_NEIGHBORS)[0]
            return self._knn

    def _ensemble_snapshot(self) -> EnsembleSnapshot:
        snapshot = self._ensemble
        if snapshot is not None:
            return snapshot
        with self._ensemble_lock:
            if self._ensemble is None:
                logger.info("Random forest not trained yet; training on demand")
                self._ensemble = self._fit_ensemble()[0]
            return self._ensemble

    # ---------- predictions ----------

    def analyze_inventory(self, user_id: str, as_of=None) -> Dict:
        snapshot = self._knn_snapshot()
        as_of = _timestamp_or_now(as_of)
        items = fetch_active_items(self.engine, user_id)
        if items.empty:
            return analyze_items(items, None, None, snapshot.knn, as_of=as_of)
        patterns = fetch_consumption_patterns(self.engine, user_id)
        events = fetch_item_events(self.engine, user_id=user_id)
        all_items = fetch_items_for_user(self.engine, user_id)
        return analyze_items(items, patterns, events, snapshot.knn, all_items=all_items, as_of=as_of)

    def predict_item_outcome(self, user_id: str, item_id: str, as_of=None) -> Dict:
        snapshot = self._knn_snapshot()
        as_of = _timestamp_or_now(as_of)
        items = fetch_item(self.engine, item_id)
        if items.empty:
            logger.info(f"Item {item_id} not found; returning default outcome")
            return unknown_item_outcome(item_id, as_of)
        item = items.to_dict("records")[0]

        patterns = fetch_consumption_patterns(self.engine, user_id)
        pattern = pattern_index(patterns).get(str(item["name"]).lower())

        consumes = fetch_item_events(self.engine, user_id=user_id, event_type=EventType.CONSUME.value)
        consumes = attach_item_categories(consumes, fetch_items_for_user(self.engine, user_id))
        category_consumes = consumes[consumes["category"] == item["category"]].head(USAGE_HISTORY_EVENTS)
        return item_outcome(item, pattern, snapshot.knn, category_consumes, as_of)

    def predict_consumption_trend(self, user_id: str, today=None) -> Dict:
        self._knn_snapshot()
        today = _timestamp_or_now(today)
        since = today.normalize() - pd.Timedelta(days=self.settings.TREND_WINDOW_DAYS)
        try:
            events = fetch_item_events(
                self.engine, user_id=user_id, event_type=EventType.CONSUME.value, since=since
            )
        except StoreUnavailableError as exc:
            logger.error(f"Error predicting consumption trend: {exc}")
            return failed_forecast(today)
        return forecast_consumption_trend(events, today)

    def predict_consumption_by_category(self, user_id: str, category: Optional[str] = None) -> Dict:
        forecaster = self._knn_snapshot().forecaster
        if category:
            return forecaster.predict_next_consumption(user_id, category)
        return {
            "timestamp": utc_now().isoformat(),
            "overall": forecaster.predict_next_consumption(user_id),
            "by_category": {
                cat: forecaster.predict_next_consumption(user_id, cat)
                for cat in forecaster.categories(user_id)
            },
        }

    def get_ensemble_predictions(self, user_id: str, as_of=None) -> Dict:
        snapshot = self._ensemble_snapshot()
        predictor = RandomForestConsumptionPredictor.from_snapshot(snapshot)
        items = fetch_active_items(self.engine, user_id)
        patterns = fetch_consumption_patterns(self.engine, user_id)
        predictions = predictor.predict_for_active_inventory(items, patterns, as_of)
        return {
            "timestamp": utc_now().isoformat(),
            "trained_at": snapshot.trained_at,
            "predictions": predictions,
        }

    def compare_models(self, user_id: str, as_of=None) -> Dict:
        as_of = _timestamp_or_now(as_of)
        knn_report = self.analyze_inventory(user_id, as_of=as_of)
        try:
            forest_items = self.get_ensemble_predictions(user_id, as_of=as_of)["predictions"]
        except InsufficientDataError as exc:
            logger.warning(f"Random forest unavailable for comparison: {exc}")
            report = compare_predictions(knn_report["items"], [])
            report.update({"ensemble_available": False, "message": str(exc)})
            return report
        report = compare_predictions(knn_report["items"], forest_items)
        report["ensemble_available"] = True
        return report

    # ---------- descriptive analytics ----------

    def get_category_time_series(self, user_id: str, category: str) -> Dict:
        items = fetch_items_for_user(self.engine, user_id, category)
        timestamp = utc_now().isoformat()
        if items.empty:
            return {
                "timestamp": timestamp,
                "category": category,
                "time_series": [],
                "summary": {"total_items": 0, "total_events": 0, "avg_monthly_consumption": 0.0},
            }
        consumes = fetch_item_events(self.engine, user_id=user_id, event_type=EventType.CONSUME.value)
        consumes = attach_item_categories(consumes, items)
        consumes = consumes[consumes["category"] == category]
        series = monthly_counts(consumes)
        return {
            "timestamp": timestamp,
            "category": category,
            "time_series": series,
            "summary": {
                "total_items": int(len(items)),
                "total_events": int(len(consumes)),
                "avg_monthly_consumption": (
                    sum(s["count"] for s in series) / len(series) if series else 0.0
                ),
            },
        }

    def get_weekly_pattern(self, user_id: str) -> Dict:
        consumes = fetch_item_events(self.engine, user_id=user_id, event_type=EventType.CONSUME.value)
        shares = weekly_pattern(consumes)
        most = max(range(7), key=lambda i: (shares[i], -i))
        least = min(range(7), key=lambda i: (shares[i], i))
        return {
            "timestamp": utc_now().isoformat(),
            "pattern": [{"day": day, "value": value} for day, value in zip(WEEKDAYS, shares)],
            "most_active_day": WEEKDAYS[most],
            "least_active_day": WEEKDAYS[least],
        }

    def _item_outcomes(self, user_id: str, items: pd.DataFrame, events: pd.DataFrame, as_of):
        """Per-item outcomes for ``items``; ids of items that failed come back separately."""
        knn = self._knn_snapshot().knn
        patterns = pattern_index(fetch_consumption_patterns(self.engine, user_id))
        all_items = fetch_items_for_user(self.engine, user_id)
        consumes = attach_item_categories(events[events["event_type"] == EventType.CONSUME.value], all_items)

        outcomes, failed = [], []
        for item in items.to_dict("records"):
            try:
                in_category = consumes[consumes["category"] == item["category"]].head(USAGE_HISTORY_EVENTS)
                pattern = patterns.get(str(item["name"]).lower())
                outcomes.append(item_outcome(item, pattern, knn, in_category, as_of))
            except (KeyError, TypeError, ValueError) as exc:
                logger.error(f"Error predicting outcome for item {item.get('id')}: {exc}")
                failed.append(item.get("id"))
        return outcomes, failed

    def get_comprehensive_analysis(self, user_id: str, as_of=None) -> Dict:
        self._knn_snapshot()
        as_of = _timestamp_or_now(as_of)
        items = fetch_active_items(self.engine, user_id)
        events = fetch_item_events(self.engine, user_id=user_id)
        outcomes, _ = self._item_outcomes(user_id, items, events, as_of)

        grouped = group_outcomes(outcomes)
        return {
            "timestamp": as_of.isoformat(),
            "consumption_trend": self.predict_consumption_trend(user_id, today=as_of),
            "category_predictions": self.predict_consumption_by_category(user_id),
            "item_outcomes": grouped["item_outcomes"],
            "waste_metrics": waste_metrics(events),
            "analytics": {
                "active_items": int(len(items)),
                "waste_risk": grouped["waste_risk"],
                "waste_risk_level": grouped["waste_risk_level"],
            },
        }

    def get_predictive_insights(self, user_id: str, as_of=None) -> Dict:
        """Outcome for every active item plus a count of likely expirations."""
        self._knn_snapshot()
        as_of = _timestamp_or_now(as_of)
        items = fetch_active_items(self.engine, user_id)
        if items.empty:
            return predictive_insights([], 0, [], as_of)
        events = fetch_item_events(self.engine, user_id=user_id, event_type=EventType.CONSUME.value)
        outcomes, failed = self._item_outcomes(user_id, items, events, as_of)
        return predictive_insights(outcomes, int(len(items)), failed, as_of)

    # ---------- restocking and expirations ----------

    def predict_restocking(self, user_id: str, as_of=None) -> Dict:
        as_of = _timestamp_or_now(as_of)
        items = fetch_active_items(self.engine, user_id)
        patterns = fetch_consumption_patterns(self.engine, user_id) if not items.empty else None
        return restock_forecast(items, patterns, as_of)

    def get_predicted_expirations(self, user_id: str, as_of=None) -> Dict:
        as_of = _timestamp_or_now(as_of)
        return expiration_buckets(fetch_active_items(self.engine, user_id), as_of)
