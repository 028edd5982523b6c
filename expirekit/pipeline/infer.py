"""Composition of model outputs into per-item and per-inventory results.

Functions here are pure: the service fetches the frames and hands over the
trained models, so everything can be exercised without a database.
"""
import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from expirekit.features.extractor import (
    DEFAULT_AVG_DAYS,
    build_item_profile,
    days_between,
    finite_or,
    round_half_up,
    to_iso,
    utc_now,
)
from expirekit.features.lifecycles import category_waste_risk
from expirekit.model.knn import KNNExpirationPredictor
from expirekit.types.enums import Outcome, RiskLevel

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 7
UNCERTAIN_CONFIDENCE = 0.6
USAGE_HISTORY_EVENTS = 10
EXPIRING_THIS_MONTH_DAYS = 30
RESTOCK_WITHIN_DAYS = 14
MIN_RESTOCK_HISTORY = 2
AT_RISK_CONFIDENCE = 0.6


# ---------- risk scoring ----------

def risk_score(outcome: str, confidence: float, category_risk: float) -> float:
    if outcome == Outcome.EXPIRE.value:
        return 0.7 * confidence + 0.3 * category_risk
    return 0.3 * category_risk - 0.1 * confidence


def item_risk_level(score: float) -> str:
    if score > 0.7:
        return RiskLevel.HIGH.value
    if score > 0.4:
        return RiskLevel.MEDIUM.value
    return RiskLevel.LOW.value


def aggregate_risk_level(score: float) -> str:
    if score > 0.6:
        return RiskLevel.HIGH.value
    if score > 0.3:
        return RiskLevel.MEDIUM.value
    return RiskLevel.LOW.value


def pattern_index(patterns: pd.DataFrame) -> Dict[str, Dict]:
    """Case-insensitive item name -> pattern record (first match wins)."""
    index: Dict[str, Dict] = {}
    if patterns is None or patterns.empty:
        return index
    for p in patterns.to_dict("records"):
        if p.get("item_name"):
            index.setdefault(str(p["item_name"]).lower(), p)
    return index


def _consumption_stats(pattern: Optional[Dict]) -> Dict:
    if pattern is None:
        return {"avg_consumption_days": None, "consumption_count": 0, "last_consumed": None}
    return {
        "avg_consumption_days": finite_or(pattern.get("average_consumption_days"), None),
        "consumption_count": int(pattern.get("consumption_count") or 0),
        "last_consumed": to_iso(pattern.get("last_consumed")),
    }


# ---------- inventory analysis ----------

def analyze_items(items: pd.DataFrame, patterns: pd.DataFrame, events: pd.DataFrame,
                  knn: KNNExpirationPredictor, all_items: pd.DataFrame = None,
                  as_of=None) -> Dict:
    as_of = as_of if as_of is not None else utc_now()
    if items is None or items.empty:
        return {
            "timestamp": as_of.isoformat(),
            "items": [],
            "summary": {
                "total_items": 0, "expiring_soon": 0, "high_risk_items": 0,
                "waste_risk": 0.0, "waste_risk_level": RiskLevel.LOW.value,
                "failed_items": 0, "failed_item_ids": [],
            },
            "categories": [],
        }

    patterns_by_name = pattern_index(patterns)
    stats = category_waste_risk(events, all_items if all_items is not None else items)

    analyses: List[Dict] = []
    failed: List[str] = []
    for item in items.to_dict("records"):
        try:
            pattern = patterns_by_name.get(str(item["name"]).lower())
            profile = build_item_profile(item, pattern, as_of)
            prediction = knn.predict(profile)
            category_risk = stats.get(item["category"], {}).get("waste_risk", 0.0)
            score = risk_score(prediction.outcome, prediction.confidence, category_risk)
            analyses.append({
                "id": item["id"],
                "name": item["name"],
                "category": item["category"],
                "expiry_date": to_iso(item.get("expiry_date")),
                "days_until_expiry": profile["days_until_expiry"],
                "status": item.get("status"),
                "prediction": prediction.to_dict(),
                "consumption_stats": _consumption_stats(pattern),
                "category_waste_risk": category_risk,
                "risk_score": score,
                "risk_level": item_risk_level(score),
            })
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(f"Error analyzing item {item.get('id')}: {exc}")
            failed.append(item.get("id"))

    analyses.sort(key=lambda a: a["risk_score"], reverse=True)

    expiring_soon = sum(
        1 for a in analyses
        if a["days_until_expiry"] is not None and a["days_until_expiry"] <= EXPIRING_SOON_DAYS
    )
    overall = float(np.mean([a["risk_score"] for a in analyses])) if analyses else 0.0

    return {
        "timestamp": as_of.isoformat(),
        "items": analyses,
        "summary": {
            "total_items": len(analyses),
            "expiring_soon": expiring_soon,
            "high_risk_items": sum(1 for a in analyses if a["risk_level"] == RiskLevel.HIGH.value),
            "waste_risk": overall,
            "waste_risk_level": aggregate_risk_level(overall),
            "failed_items": len(failed),
            "failed_item_ids": failed,
        },
        "categories": [
            {
                "category": cat,
                "item_count": s["item_count"],
                "waste_risk": s["waste_risk"],
                "risk_level": aggregate_risk_level(s["waste_risk"]),
            }
            for cat, s in stats.items()
        ],
    }


# ---------- single item ----------

def usage_stats(consume_events: pd.DataFrame) -> Dict:
    """Cadence of recent consumption in the item's category."""
    if consume_events is None or consume_events.empty:
        return {
            "consumption_count": 0,
            "last_consumed": None,
            "typical_purchase_frequency": None,
            "next_predicted_purchase": None,
        }
    dates = consume_events["event_date"].sort_values(ascending=False).head(USAGE_HISTORY_EVENTS).tolist()
    gaps = [days_between(a, b) for a, b in zip(dates, dates[1:])]
    gaps = [g for g in gaps if g is not None and g > 0]
    typical = round_half_up(sum(gaps) / len(gaps)) if gaps else None
    last = dates[0]
    return {
        "consumption_count": len(dates),
        "last_consumed": to_iso(last),
        "typical_purchase_frequency": typical,
        "next_predicted_purchase": to_iso(last + pd.Timedelta(days=typical)) if typical else None,
    }


def unknown_item_outcome(item_id: str, as_of) -> Dict:
    return {
        "item_id": item_id,
        "item_name": None,
        "category": None,
        "current_status": None,
        "expiry_date": None,
        "days_until_expiry": None,
        "prediction": Outcome.CONSUME.value,
        "confidence": 0.0,
        "estimated_days": 30,
        "estimated_date": to_iso(as_of + pd.Timedelta(days=30)),
        "usage_stats": usage_stats(None),
        "reason": "Item not found",
        "timestamp": as_of.isoformat(),
    }


def item_outcome(item: Dict, pattern: Optional[Dict], knn: KNNExpirationPredictor,
                 category_consumes: pd.DataFrame, as_of=None) -> Dict:
    as_of = as_of if as_of is not None else utc_now()
    profile = build_item_profile(item, pattern, as_of)
    prediction = knn.predict(profile)
    return {
        "item_id": item["id"],
        "item_name": item["name"],
        "category": item["category"],
        "current_status": item.get("status"),
        "expiry_date": to_iso(item.get("expiry_date")),
        "days_until_expiry": profile["days_until_expiry"],
        "prediction": prediction.outcome,
        "confidence": prediction.confidence,
        "estimated_days": prediction.days,
        "estimated_date": to_iso(as_of + pd.Timedelta(days=prediction.days)),
        "usage_stats": usage_stats(category_consumes),
        "timestamp": as_of.isoformat(),
    }


# ---------- model comparison ----------

def compare_predictions(knn_items: List[Dict], forest_items: List[Dict]) -> Dict:
    """Agreement between the KNN and the forest on 'consumed within a week'."""
    forest_by_id = {f["item_id"]: f for f in forest_items}
    rows: List[Dict] = []
    agreements = 0
    day_diffs: List[float] = []

    for k in knn_items:
        forest = forest_by_id.get(k["id"])
        knn_pred = k["prediction"]
        knn_soon = knn_pred["outcome"] == Outcome.CONSUME.value and knn_pred["days"] <= EXPIRING_SOON_DAYS
        row = {
            "item_id": k["id"],
            "item_name": k["name"],
            "category": k["category"],
            "knn": {**knn_pred, "consume_within_7_days": knn_soon},
            "random_forest": None,
            "agree": None,
            "day_difference": None,
        }
        if forest is not None and forest.get("days_until_consumption") is not None:
            forest_soon = bool(forest["will_consume_within_7_days"])
            row["random_forest"] = {
                "days_until_consumption": forest["days_until_consumption"],
                "will_consume_within_7_days": forest_soon,
                "confidence": forest["confidence"],
                "probability_within_7_days": forest.get("probability_within_7_days"),
            }
            row["agree"] = knn_soon == forest_soon
            row["day_difference"] = abs(knn_pred["days"] - forest["days_until_consumption"])
            agreements += int(row["agree"])
            day_diffs.append(row["day_difference"])
        rows.append(row)

    compared = len(day_diffs)
    return {
        "items": rows,
        "summary": {
            "total_items": len(rows),
            "compared_items": compared,
            "agreements": agreements,
            "agreement_rate": agreements / compared if compared else 0.0,
            "mean_abs_day_difference": float(np.mean(day_diffs)) if day_diffs else None,
        },
    }


# ---------- comprehensive ----------

def group_outcomes(outcomes: List[Dict]) -> Dict:
    likely_consume = [o for o in outcomes if o["prediction"] == Outcome.CONSUME.value]
    likely_expire = [o for o in outcomes if o["prediction"] == Outcome.EXPIRE.value]
    uncertain = [o for o in outcomes if o["confidence"] < UNCERTAIN_CONFIDENCE]
    decided = len(likely_consume) + len(likely_expire)
    risk = len(likely_expire) / decided if decided else 0.0
    if risk < 0.2:
        level = RiskLevel.LOW.value
    elif risk < 0.5:
        level = RiskLevel.MEDIUM.value
    else:
        level = RiskLevel.HIGH.value
    return {
        "item_outcomes": {
            "likely_consume": likely_consume,
            "likely_expire": likely_expire,
            "uncertain": uncertain,
        },
        "waste_risk": risk,
        "waste_risk_level": level,
    }


# ---------- restocking and expirations ----------

def restock_forecast(items: pd.DataFrame, patterns: pd.DataFrame, as_of=None) -> Dict:
    """When each active item runs out, from its pattern's usual cycle.

    Items with fewer than two recorded consumptions get no estimate.
    Confidence is the capped consumption count, like the category forecaster.
    """
    as_of = as_of if as_of is not None else utc_now()
    result = {"timestamp": as_of.isoformat(), "predictions": [], "needs_restocking": []}
    if items is None or items.empty:
        result["message"] = "No active items found in inventory"
        return result
    patterns_by_name = pattern_index(patterns)
    if not patterns_by_name:
        result["message"] = "No consumption patterns found. Start using items to generate predictions."
        return result

    predictions: List[Dict] = []
    for item in items.to_dict("records"):
        pattern = patterns_by_name.get(str(item["name"]).lower())
        row = {
            "item_id": item["id"],
            "item_name": item["name"],
            "category": item["category"],
            "days_until_depletion": None,
            "confidence": 0.0,
            "needs_restocking": False,
            "predicted_depletion_date": None,
        }
        count = int(pattern.get("consumption_count") or 0) if pattern is not None else 0
        if count >= MIN_RESTOCK_HISTORY:
            days = finite_or(pattern.get("average_consumption_days"), DEFAULT_AVG_DAYS)
            row.update({
                "days_until_depletion": days,
                "confidence": min(count / 10.0, 1.0),
                "needs_restocking": days < RESTOCK_WITHIN_DAYS,
                "predicted_depletion_date": to_iso(as_of + pd.Timedelta(days=days)),
            })
        predictions.append(row)

    # unknown depletion sorts last
    predictions.sort(key=lambda p: (p["days_until_depletion"] is None, p["days_until_depletion"] or 0.0))
    result["predictions"] = predictions
    result["needs_restocking"] = [p for p in predictions if p["needs_restocking"]]
    return result


def expiration_buckets(items: pd.DataFrame, as_of=None) -> Dict:
    """Active items with an expiry date, split into expired / this week / this month / later."""
    as_of = as_of if as_of is not None else utc_now()
    buckets = {"expired": [], "this_week": [], "this_month": [], "later": []}
    dated = items[items["expiry_date"].notna()] if items is not None and not items.empty else None

    if dated is not None:
        week = as_of + pd.Timedelta(days=EXPIRING_SOON_DAYS)
        month = as_of + pd.Timedelta(days=EXPIRING_THIS_MONTH_DAYS)
        for item in dated.sort_values("expiry_date", kind="stable").to_dict("records"):
            expiry = item["expiry_date"]
            entry = {
                "id": item["id"],
                "name": item["name"],
                "category": item["category"],
                "expiry_date": to_iso(expiry),
                "days_until_expiry": days_between(expiry, as_of),
            }
            if expiry < as_of:
                buckets["expired"].append(entry)
            elif expiry <= week:
                buckets["this_week"].append(entry)
            elif expiry <= month:
                buckets["this_month"].append(entry)
            else:
                buckets["later"].append(entry)

    result = {
        "timestamp": as_of.isoformat(),
        "expirations": buckets,
        "summary": {name: len(rows) for name, rows in buckets.items()},
    }
    if dated is None or dated.empty:
        result["message"] = "No items with expiration dates found"
    return result


def predictive_insights(outcomes: List[Dict], total_items: int, failed: List[str], as_of) -> Dict:
    at_risk = [
        o for o in outcomes
        if o["prediction"] == Outcome.EXPIRE.value and o["confidence"] > AT_RISK_CONFIDENCE
    ]
    return {
        "timestamp": as_of.isoformat(),
        "predictions": outcomes,
        "summary": {
            "total_items": total_items,
            "predicted_items": len(outcomes),
            "at_risk_items": len(at_risk),
            "failed_item_ids": failed,
        },
    }
