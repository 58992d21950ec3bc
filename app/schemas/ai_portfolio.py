from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.anomaly import AnomalyRecord
from app.schemas.forecast import ForecastResult
from app.schemas.insights import Insight, InsightPriority
from app.schemas.optimization import OptimizationResult


class BulkForecastRequest(BaseModel):
    product_ids: list[int] = Field(..., min_length=1, max_length=50)
    days: int = Field(30, ge=1, le=365)


class BulkOptimizeRequest(BaseModel):
    product_ids: list[int] = Field(..., min_length=1, max_length=50)


class ForecastGenerateRequest(BaseModel):
    days: int = Field(30, ge=1, le=365)


class RetrainRequest(BaseModel):
    category_id: int | None = None


class BulkFailure(BaseModel):
    product_id: int
    error: str


class BulkForecastItem(BaseModel):
    product_id: int
    forecast: ForecastResult


class BulkForecastSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkForecastResult(BaseModel):
    successful: list[BulkForecastItem]
    failed: list[BulkFailure]
    summary: BulkForecastSummary


class BulkOptimizeItem(BaseModel):
    product_id: int
    optimization: OptimizationResult


class BulkOptimizeSummary(BaseModel):
    total: int
    successful: int
    failed: int
    total_potential_savings: float


class BulkOptimizeResult(BaseModel):
    successful: list[BulkOptimizeItem]
    failed: list[BulkFailure]
    summary: BulkOptimizeSummary


class ApplyOptimizationResult(BaseModel):
    data: OptimizationResult
    reference_number: str
    message: str


class ProductRef(BaseModel):
    id: int
    name: str
    category: str


class OptimizationRecommendation(BaseModel):
    product: ProductRef
    optimization: OptimizationResult
    percentage_difference: float
    priority: InsightPriority


class OptimizationRecommendations(BaseModel):
    data: list[OptimizationRecommendation]
    total_recommendations: int
    total_potential_savings: float


class ProductAnomalies(BaseModel):
    product: ProductRef
    anomalies: list[AnomalyRecord]


class AnomalyOverview(BaseModel):
    data: list[ProductAnomalies]
    total_products: int
    products_with_anomalies: int
    total_anomalies: int


class DashboardInsight(BaseModel):
    product_id: int
    product_name: str
    category: str
    type: Literal["HIGH_RISK", "OPTIMIZATION_OPPORTUNITY"]
    priority: InsightPriority
    insights: list[Insight] = []
    optimization: OptimizationResult | None = None


class DashboardInsights(BaseModel):
    data: list[DashboardInsight]
    total_insights: int
    high_risk_products: int
    optimization_opportunities: int


class RetrainResult(BaseModel):
    retrained: int
    total: int
    skipped: list[int] = []
    failed: list[str] = []
    message: str


class ModelStatusRow(BaseModel):
    category_id: int
    category_name: str
    product_count: int
    recent_forecasts: int
    status: Literal["ACTIVE", "INACTIVE"]
    training_status: str
    load_outcome: str | None = None
    last_trained_at: datetime | None = None
    training_runs: int = 0
