from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.schemas.anomaly import AnomalyRecord
from app.schemas.forecast import ForecastResult
from app.schemas.insights import (
    PRIORITY_RANK,
    Insight,
    InsightPriority,
    InsightsReport,
    InsightType,
)
from app.schemas.optimization import OptimizationResult, RiskLevel
from app.services.anomaly_detector import AnomalyDetector
from app.services.forecast_orchestrator import ForecastOrchestrator
from app.services.stock_optimizer import OPTIMIZATION_HORIZON_DAYS, StockOptimizer


LOW_ACCURACY_THRESHOLD = 0.7
EXCESS_STOCK_RATIO = 1.5
RECENT_ANOMALY_DAYS = 7
REPORTED_ANOMALIES = 5


def build_insights(
    forecast: ForecastResult,
    optimization: OptimizationResult,
    anomalies: list[AnomalyRecord],
    today: date,
) -> list[Insight]:
    """Apply the insight rules and return matches, highest priority first."""

    insights: list[Insight] = []

    if forecast.accuracy < LOW_ACCURACY_THRESHOLD:
        insights.append(
            Insight(
                type=InsightType.WARNING,
                title="Low Forecast Accuracy",
                description=(
                    f"Forecast accuracy is {round(forecast.accuracy * 100)}%. "
                    "Consider reviewing historical data quality."
                ),
                priority=InsightPriority.MEDIUM,
            )
        )

    if optimization.current_stock > optimization.optimal_stock * EXCESS_STOCK_RATIO:
        if optimization.optimal_stock > 0:
            excess_pct = round(
                (optimization.current_stock - optimization.optimal_stock)
                / optimization.optimal_stock
                * 100
            )
            description = f"Current stock is {excess_pct}% above optimal level."
        else:
            description = (
                f"Current stock of {optimization.current_stock} units has no forecast demand."
            )
        insights.append(
            Insight(
                type=InsightType.OPTIMIZATION,
                title="Excess Inventory",
                description=description,
                priority=InsightPriority.HIGH,
                savings=optimization.expected_savings,
            )
        )

    if optimization.risk_level == RiskLevel.HIGH:
        insights.append(
            Insight(
                type=InsightType.CRITICAL,
                title="High Stockout Risk",
                description=(
                    "Current stock levels pose a high risk of stockout. "
                    "Consider immediate reordering."
                ),
                priority=InsightPriority.CRITICAL,
            )
        )

    cutoff = today - timedelta(days=RECENT_ANOMALY_DAYS)
    recent = [a for a in anomalies if a.date > cutoff]
    if recent:
        insights.append(
            Insight(
                type=InsightType.INFO,
                title="Recent Demand Anomalies",
                description=f"{len(recent)} unusual demand patterns detected in the last week.",
                priority=InsightPriority.LOW,
            )
        )

    # sorted() is stable, so rule order is kept within a priority
    return sorted(insights, key=lambda i: PRIORITY_RANK[i.priority], reverse=True)


class InsightsSynthesizer:
    """Combines forecast, stock optimization and anomalies into ranked insights.

    The three analyses run one after another on the caller's session; the
    optimizer reuses the cached 30-day forecast computed first.
    """

    def __init__(
        self,
        orchestrator: ForecastOrchestrator,
        optimizer: StockOptimizer,
        detector: AnomalyDetector,
    ) -> None:
        self._orchestrator = orchestrator
        self._optimizer = optimizer
        self._detector = detector

    def generate(
        self,
        db: Session,
        product_id: int,
        today: Optional[date] = None,
    ) -> InsightsReport:
        today = today or date.today()

        forecast = self._orchestrator.forecast(db, product_id, OPTIMIZATION_HORIZON_DAYS, today=today)
        optimization = self._optimizer.optimize(db, product_id, today=today, forecast=forecast)
        anomalies = self._detector.detect(db, product_id, today=today).anomalies

        return InsightsReport(
            product_id=product_id,
            insights=build_insights(forecast, optimization, anomalies, today),
            forecast=forecast,
            optimization=optimization,
            anomalies=anomalies[-REPORTED_ANOMALIES:],
        )
