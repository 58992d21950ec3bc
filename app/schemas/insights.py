from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from app.schemas.anomaly import AnomalyRecord
from app.schemas.forecast import ForecastResult
from app.schemas.optimization import OptimizationResult


class InsightType(str, Enum):
    WARNING = "WARNING"
    OPTIMIZATION = "OPTIMIZATION"
    CRITICAL = "CRITICAL"
    INFO = "INFO"


class InsightPriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


PRIORITY_RANK: dict[InsightPriority, int] = {
    InsightPriority.CRITICAL: 3,
    InsightPriority.HIGH: 2,
    InsightPriority.MEDIUM: 1,
    InsightPriority.LOW: 0,
}


class Insight(BaseModel):
    type: InsightType
    title: str
    description: str
    priority: InsightPriority
    savings: float | None = None


class InsightsReport(BaseModel):
    product_id: int
    insights: list[Insight]
    forecast: ForecastResult
    optimization: OptimizationResult
    anomalies: list[AnomalyRecord]
