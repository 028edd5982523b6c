"""
Integration tests for MLService against an in-memory inventory store
"""

import threading

import numpy as np
import pytest

from expirekit.core.errors import InsufficientDataError, StoreUnavailableError
from expirekit.db.tables import metadata
from expirekit.pipeline import service as service_module
from expirekit.pipeline.service import MLService


@pytest.fixture
def service(engine, test_settings):
    return MLService(engine, test_settings, rng=np.random.default_rng(42))


# ============================================================================
# Training
# ============================================================================

class TestTraining:

    def test_explicit_training_report(self, service):
        report = service.train()
        assert report["status"] == "ok"
        assert report["trained_on_rows"] == 4
        assert report["patterns"] == 4
        assert report["events"] == 10
        assert service.is_trained
        assert service.last_training_time == report["timestamp"]

    def test_empty_store_trains_to_defaults(self, empty_engine, test_settings):
        service = MLService(empty_engine, test_settings)
        report = service.train()
        assert report["status"] == "ok-empty"
        assert service.predict_item_outcome("u1", "ghost")["estimated_days"] == 30

    def test_first_request_trains_lazily(self, service, now):
        assert not service.is_trained
        service.analyze_inventory("u1", as_of=now)
        assert service.is_trained

    def test_concurrent_first_requests_train_once(self, service, monkeypatch):
        calls = []
        real_training = service_module.run_training

        def counting(*args, **kwargs):
            calls.append(1)
            return real_training(*args, **kwargs)

        monkeypatch.setattr(service_module, "run_training", counting)
        threads = [threading.Thread(target=service.predict_consumption_by_category, args=("u1",)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(calls) == 1

    def test_ensemble_training_report(self, service):
        report = service.train_ensemble()
        assert report["trained_on_rows"] == 64
        assert report["categories"] == {"Bakery": 0, "Dairy": 1}
        assert service.ensemble_trained
        assert "model_path" not in report

    def test_ensemble_persisted_and_reloaded(self, engine, test_settings):
        test_settings.PERSIST_MODELS = True
        first = MLService(engine, test_settings)
        report = first.train_ensemble()
        assert report["model_path"].endswith("consumption_forest.joblib")

        second = MLService(engine, test_settings)
        assert second.load_persisted_ensemble(report["model_path"])
        assert second.ensemble_trained

    def test_ensemble_saved_while_holding_the_lock(self, engine, test_settings, monkeypatch):
        test_settings.PERSIST_MODELS = True
        service = MLService(engine, test_settings)
        held = []

        def recording_save(snapshot, path):
            held.append(service._ensemble_lock.locked())
            return str(path)

        monkeypatch.setattr(service_module, "save_snapshot", recording_save)
        service.train_ensemble()
        assert held == [True]

    def test_ensemble_with_too_little_data(self, empty_engine, test_settings):
        service = MLService(empty_engine, test_settings)
        with pytest.raises(InsufficientDataError):
            service.train_ensemble()
        assert not service.ensemble_trained


# ============================================================================
# Predictions
# ============================================================================

class TestPredictions:

    def test_dairy_item_uses_dairy_neighbours(self, service, now):
        report = service.analyze_inventory("u1", as_of=now)
        milk = report["items"][0]
        assert milk["id"] == "m1"
        assert milk["days_until_expiry"] == 3
        assert milk["prediction"]["outcome"] == "expire"
        assert milk["prediction"]["days"] == 17
        neighbours = service._knn_snapshot().knn.neighbors(
            {"category": "Dairy", "consumption_count": 6, "average_consumption_days": 10.0}
        )
        assert {n["category"] for n in neighbours} == {"Dairy"}
        assert report["summary"]["expiring_soon"] == 1

    def test_predict_item_outcome(self, service, now):
        result = service.predict_item_outcome("u1", "m1", as_of=now)
        assert result["item_name"] == "Milk"
        assert result["prediction"] == "expire"
        assert result["usage_stats"]["consumption_count"] == 1

    def test_unknown_item_is_not_an_error(self, service, now):
        result = service.predict_item_outcome("u1", "ghost", as_of=now)
        assert result["reason"] == "Item not found"
        assert result["confidence"] == 0.0

    def test_trend(self, service, now):
        result = service.predict_consumption_trend("u1", today=now)
        assert result["confidence"] == 0.6
        assert sum(result["historical"]["values"]) == 1
        assert len(result["prediction"]["values"]) == 7

    def test_trend_degrades_when_store_fails(self, service, engine, now):
        service.train()
        metadata.drop_all(engine)
        result = service.predict_consumption_trend("u1", today=now)
        assert result["confidence"] == 0.0
        assert result["error"] == "Error generating prediction"

    def test_store_failure_propagates_from_analysis(self, broken_engine, test_settings):
        service = MLService(broken_engine, test_settings)
        with pytest.raises(StoreUnavailableError):
            service.analyze_inventory("u1")

    def test_category_predictions(self, service):
        result = service.predict_consumption_by_category("u1")
        assert list(result["by_category"]) == ["Bakery", "Dairy"]
        assert result["overall"]["predictions"][0]["item_name"] == "Milk"
        only_dairy = service.predict_consumption_by_category("u1", "Dairy")
        assert len(only_dairy["predictions"]) == 3

    def test_ensemble_predictions_train_on_demand(self, service, now):
        result = service.get_ensemble_predictions("u1", as_of=now)
        by_id = {p["item_id"]: p for p in result["predictions"]}
        assert by_id["m1"]["confidence"] == 0.8
        assert by_id["x1"]["days_until_consumption"] is None
        assert result["trained_at"]

    def test_compare_models(self, service, now):
        report = service.compare_models("u1", as_of=now)
        assert report["ensemble_available"] is True
        assert report["summary"]["total_items"] == 2
        assert report["summary"]["compared_items"] == 1

    def test_compare_without_forest(self, empty_engine, test_settings):
        service = MLService(empty_engine, test_settings)
        report = service.compare_models("u1")
        assert report["ensemble_available"] is False
        assert "training examples" in report["message"]


# ============================================================================
# Descriptive analytics
# ============================================================================

class TestAnalytics:

    def test_category_time_series(self, service):
        result = service.get_category_time_series("u1", "Dairy")
        assert result["time_series"] == [{"month": "2024-05", "count": 1}]
        assert result["summary"]["total_items"] == 1

    def test_category_time_series_unknown_category(self, service):
        result = service.get_category_time_series("u1", "Frozen")
        assert result["time_series"] == []
        assert result["summary"]["total_events"] == 0

    def test_weekly_pattern(self, service):
        result = service.get_weekly_pattern("u1")
        assert [p["day"] for p in result["pattern"]][0] == "Monday"
        # consumes fell on a Thursday and a Tuesday
        assert result["most_active_day"] == "Tuesday"

    def test_comprehensive_analysis(self, service, now):
        result = service.get_comprehensive_analysis("u1", as_of=now)
        assert result["analytics"]["active_items"] == 2
        assert len(result["item_outcomes"]["likely_expire"]) == 2
        assert result["analytics"]["waste_risk_level"] == "high"
        assert result["waste_metrics"]["total_items"] == 6
        assert result["consumption_trend"]["confidence"] == 0.6


# ============================================================================
# Restocking, expirations and insights
# ============================================================================

class TestRestockAndExpirations:

    def test_restock_from_seeded_patterns(self, service, now):
        result = service.predict_restocking("u1", as_of=now)
        milk, caviar = result["predictions"]
        assert milk["item_id"] == "m1"
        assert milk["days_until_depletion"] == 10.0
        assert milk["confidence"] == pytest.approx(0.6)
        assert milk["needs_restocking"] is True
        assert caviar["item_id"] == "x1"
        assert caviar["days_until_depletion"] is None
        assert [p["item_id"] for p in result["needs_restocking"]] == ["m1"]

    def test_restock_empty_inventory(self, empty_engine, test_settings):
        result = MLService(empty_engine, test_settings).predict_restocking("u1")
        assert result["message"] == "No active items found in inventory"

    def test_expiration_buckets(self, service, now):
        result = service.get_predicted_expirations("u1", as_of=now)
        assert [e["id"] for e in result["expirations"]["this_week"]] == ["m1"]
        assert [e["id"] for e in result["expirations"]["this_month"]] == ["x1"]
        assert result["summary"] == {"expired": 0, "this_week": 1, "this_month": 1, "later": 0}

    def test_predictive_insights(self, service, now):
        result = service.get_predictive_insights("u1", as_of=now)
        assert {p["item_id"] for p in result["predictions"]} == {"m1", "x1"}
        # both lean towards expiring, but not confidently enough to count as at risk
        assert result["summary"] == {
            "total_items": 2,
            "predicted_items": 2,
            "at_risk_items": 0,
            "failed_item_ids": [],
        }

    def test_predictive_insights_empty_inventory(self, empty_engine, test_settings):
        result = MLService(empty_engine, test_settings).get_predictive_insights("u1")
        assert result["predictions"] == []
        assert result["summary"]["total_items"] == 0
