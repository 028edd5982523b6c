from pydantic import BaseModel
from typing import Dict, List, Optional

# ---------- training ----------

class TrainResponse(BaseModel):
    status: str
    message: str
    trained_on_rows: int
    patterns: int
    events: Optional[int] = None
    class_distribution: Optional[Dict[int, int]] = None
    categories: Optional[Dict[str, int]] = None
    model_path: Optional[str] = None
    timestamp: str

class InsufficientDataResponse(BaseModel):
    detail: str
    available: int
    required: int

# ---------- KNN / inventory ----------

class OutcomePrediction(BaseModel):
    outcome: str
    confidence: float
    days: int

class ConsumptionStats(BaseModel):
    avg_consumption_days: Optional[float] = None
    consumption_count: int = 0
    last_consumed: Optional[str] = None

class ItemAnalysis(BaseModel):
    id: str
    name: str
    category: str
    expiry_date: Optional[str] = None
    days_until_expiry: Optional[int] = None
    status: Optional[str] = None
    prediction: OutcomePrediction
    consumption_stats: ConsumptionStats
    category_waste_risk: float
    risk_score: float
    risk_level: str

class InventorySummary(BaseModel):
    total_items: int
    expiring_soon: int
    high_risk_items: int
    waste_risk: float
    waste_risk_level: str
    failed_items: int
    failed_item_ids: List[str] = []

class CategoryRisk(BaseModel):
    category: str
    item_count: int
    waste_risk: float
    risk_level: str

class InventoryAnalysisResponse(BaseModel):
    timestamp: str
    items: List[ItemAnalysis]
    summary: InventorySummary
    categories: List[CategoryRisk]

class UsageStats(BaseModel):
    consumption_count: int
    last_consumed: Optional[str] = None
    typical_purchase_frequency: Optional[int] = None
    next_predicted_purchase: Optional[str] = None

class ItemOutcomeResponse(BaseModel):
    item_id: str
    item_name: Optional[str] = None
    category: Optional[str] = None
    current_status: Optional[str] = None
    expiry_date: Optional[str] = None
    days_until_expiry: Optional[int] = None
    prediction: str
    confidence: float
    estimated_days: int
    estimated_date: Optional[str] = None
    usage_stats: UsageStats
    reason: Optional[str] = None
    timestamp: str

# ---------- forecasts ----------

class Series(BaseModel):
    dates: List[str]
    values: List[int]

class TrendForecastResponse(BaseModel):
    timestamp: str
    historical: Series
    prediction: Series
    moving_averages: Optional[List[float]] = None
    confidence: float
    error: Optional[str] = None

class CategoryPrediction(BaseModel):
    item_name: str
    category: str
    days_until_next: float
    confidence: float

class CategoryPredictionResult(BaseModel):
    predictions: List[CategoryPrediction]
    confidence: float

class CategoryPredictionsResponse(BaseModel):
    timestamp: str
    overall: CategoryPredictionResult
    by_category: Dict[str, CategoryPredictionResult]

class MonthlyCount(BaseModel):
    month: str
    count: int

class CategoryTimeSeriesResponse(BaseModel):
    timestamp: str
    category: str
    time_series: List[MonthlyCount]
    summary: Dict[str, float]

class WeekdayShare(BaseModel):
    day: str
    value: float

class WeeklyPatternResponse(BaseModel):
    timestamp: str
    pattern: List[WeekdayShare]
    most_active_day: str
    least_active_day: str

# ---------- random forest ----------

class EnsemblePrediction(BaseModel):
    item_id: str
    item_name: str
    category: str
    expiry_date: Optional[str] = None
    days_until_consumption: Optional[int] = None
    will_consume_within_7_days: bool
    confidence: float
    probability_within_7_days: Optional[float] = None
    reason: Optional[str] = None
    features: Optional[Dict[str, float]] = None

class EnsemblePredictionsResponse(BaseModel):
    timestamp: str
    trained_at: str
    predictions: List[EnsemblePrediction]

class ForestView(BaseModel):
    days_until_consumption: int
    will_consume_within_7_days: bool
    confidence: float
    probability_within_7_days: Optional[float] = None

class KNNView(OutcomePrediction):
    consume_within_7_days: bool

class ComparisonItem(BaseModel):
    item_id: str
    item_name: str
    category: str
    knn: KNNView
    random_forest: Optional[ForestView] = None
    agree: Optional[bool] = None
    day_difference: Optional[int] = None

class ComparisonSummary(BaseModel):
    total_items: int
    compared_items: int
    agreements: int
    agreement_rate: float
    mean_abs_day_difference: Optional[float] = None

class ComparisonResponse(BaseModel):
    items: List[ComparisonItem]
    summary: ComparisonSummary
    ensemble_available: bool
    message: Optional[str] = None

# ---------- comprehensive ----------

class ItemOutcomeGroups(BaseModel):
    likely_consume: List[ItemOutcomeResponse]
    likely_expire: List[ItemOutcomeResponse]
    uncertain: List[ItemOutcomeResponse]

class WasteMetrics(BaseModel):
    total_items: int
    consumed_items: int
    expired_items: int
    discarded_items: int
    waste_rate: float
    avg_days_to_expiration: float

class ComprehensiveAnalytics(BaseModel):
    active_items: int
    waste_risk: float
    waste_risk_level: str

class ComprehensiveAnalysisResponse(BaseModel):
    timestamp: str
    consumption_trend: TrendForecastResponse
    category_predictions: CategoryPredictionsResponse
    item_outcomes: ItemOutcomeGroups
    waste_metrics: WasteMetrics
    analytics: ComprehensiveAnalytics

class InsightsSummary(BaseModel):
    total_items: int
    predicted_items: int
    at_risk_items: int
    failed_item_ids: List[str] = []

class PredictiveInsightsResponse(BaseModel):
    timestamp: str
    predictions: List[ItemOutcomeResponse]
    summary: InsightsSummary

# ---------- restocking / expirations ----------

class RestockPrediction(BaseModel):
    item_id: str
    item_name: str
    category: str
    days_until_depletion: Optional[float] = None
    confidence: float
    needs_restocking: bool
    predicted_depletion_date: Optional[str] = None

class RestockResponse(BaseModel):
    timestamp: str
    predictions: List[RestockPrediction]
    needs_restocking: List[RestockPrediction]
    message: Optional[str] = None

class ExpiringItem(BaseModel):
    id: str
    name: str
    category: str
    expiry_date: str
    days_until_expiry: int

class ExpirationBuckets(BaseModel):
    expired: List[ExpiringItem]
    this_week: List[ExpiringItem]
    this_month: List[ExpiringItem]
    later: List[ExpiringItem]

class ExpirationSummary(BaseModel):
    expired: int
    this_week: int
    this_month: int
    later: int

class ExpirationsResponse(BaseModel):
    timestamp: str
    expirations: ExpirationBuckets
    summary: ExpirationSummary
    message: Optional[str] = None
