from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request

from expirekit.pipeline.service import MLService
from expirekit.types.schemas import (
    CategoryPredictionResult,
    CategoryPredictionsResponse,
    CategoryTimeSeriesResponse,
    ComparisonResponse,
    ComprehensiveAnalysisResponse,
    EnsemblePredictionsResponse,
    ExpirationsResponse,
    InsufficientDataResponse,
    InventoryAnalysisResponse,
    ItemOutcomeResponse,
    PredictiveInsightsResponse,
    RestockResponse,
    TrainResponse,
    TrendForecastResponse,
    WeeklyPatternResponse,
)

router = APIRouter()


def get_ml_service(request: Request) -> MLService:
    return request.app.state.ml_service


@router.get("/healthz")
def health(service: MLService = Depends(get_ml_service)):
    return {
        "status": "ok",
        "models_trained": service.is_trained,
        "last_training_time": service.last_training_time,
        "ensemble_trained": service.ensemble_trained,
    }

@router.post("/train", response_model=TrainResponse, summary="Retrain the KNN and category forecaster")
def train_models(service: MLService = Depends(get_ml_service)):
    return service.train()

@router.post(
    "/random-forest/train",
    response_model=TrainResponse,
    responses={422: {"model": InsufficientDataResponse}},
    summary="Retrain the random-forest consumption models",
)
def train_random_forest(service: MLService = Depends(get_ml_service)):
    return service.train_ensemble()

@router.get("/predict/item", response_model=ItemOutcomeResponse, summary="Predict consume/expire/discard for one item")
def predict_item_outcome(user_id: str = Query(...), item_id: str = Query(...),
                         service: MLService = Depends(get_ml_service)):
    return service.predict_item_outcome(user_id, item_id)

@router.get(
    "/predict/consumption",
    response_model=Union[CategoryPredictionsResponse, CategoryPredictionResult],
    summary="Next likely consumptions, overall and per category",
)
def predict_consumption_by_category(user_id: str = Query(...), category: Optional[str] = None,
                                    service: MLService = Depends(get_ml_service)):
    return service.predict_consumption_by_category(user_id, category)

@router.get("/trends/forecast", response_model=TrendForecastResponse, summary="7-day consumption forecast")
def get_consumption_forecast(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.predict_consumption_trend(user_id)

@router.get("/trends/category", response_model=CategoryTimeSeriesResponse)
def get_category_time_series(user_id: str = Query(...), category: str = Query(...),
                             service: MLService = Depends(get_ml_service)):
    return service.get_category_time_series(user_id, category)

@router.get("/patterns/weekly", response_model=WeeklyPatternResponse)
def get_weekly_patterns(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.get_weekly_pattern(user_id)

@router.get("/inventory/analyze", response_model=InventoryAnalysisResponse, summary="Waste risk for every active item")
def analyze_inventory(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.analyze_inventory(user_id)

@router.get(
    "/random-forest/predictions",
    response_model=EnsemblePredictionsResponse,
    responses={422: {"model": InsufficientDataResponse}},
)
def get_random_forest_predictions(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.get_ensemble_predictions(user_id)

@router.get("/models/compare", response_model=ComparisonResponse, summary="KNN vs random forest agreement")
def compare_models(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.compare_models(user_id)

@router.get("/analysis/comprehensive", response_model=ComprehensiveAnalysisResponse)
def get_comprehensive_analysis(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.get_comprehensive_analysis(user_id)

@router.get("/analysis/insights", response_model=PredictiveInsightsResponse, summary="Outcome per item with at-risk count")
def get_predictive_insights(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.get_predictive_insights(user_id)

@router.get("/predict/restock", response_model=RestockResponse, summary="When active items are likely to run out")
def predict_restocking(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.predict_restocking(user_id)

@router.get("/inventory/expirations", response_model=ExpirationsResponse)
def get_predicted_expirations(user_id: str = Query(...), service: MLService = Depends(get_ml_service)):
    return service.get_predicted_expirations(user_id)
