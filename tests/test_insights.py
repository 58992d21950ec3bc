from __future__ import annotations

from datetime import timedelta

import pytest

from app.schemas.anomaly import AnomalyRecord, AnomalySeverity
from app.schemas.forecast import ForecastResult, ModelType
from app.schemas.insights import InsightPriority, InsightType
from app.schemas.optimization import OptimizationResult, RiskLevel
from app.services.anomaly_detector import AnomalyDetector
from app.services.forecast_orchestrator import ForecastOrchestrator
from app.services.insights import InsightsSynthesizer, build_insights
from app.services.model_registry import FileModelStore, ModelRegistry
from app.services.neural_forecast import NeuralForecaster
from app.services.stock_optimizer import StockOptimizer, compute_stock_levels
from tests.test_utils import (
    TODAY,
    add_daily_demand,
    create_category,
    create_recent_product,
)


class _CountingOrchestrator(ForecastOrchestrator):
    calls = 0

    def forecast(self, *args, **kwargs):
        self.calls += 1
        return super().forecast(*args, **kwargs)


def _forecast(accuracy: float) -> ForecastResult:
    return ForecastResult(
        product_id=1,
        predictions=[],
        accuracy=accuracy,
        model_type=ModelType.STATISTICAL,
    )


def _optimization(current: int, optimal: int, risk: RiskLevel, savings: float = 0.0) -> OptimizationResult:
    return OptimizationResult(
        product_id=1,
        current_stock=current,
        optimal_stock=optimal,
        reorder_point=0,
        expected_savings=savings,
        risk_level=risk,
    )


def _anomaly(days_ago: int) -> AnomalyRecord:
    return AnomalyRecord(
        date=TODAY - timedelta(days=days_ago),
        actual_demand=40,
        expected_demand=5,
        anomaly_score=3.5,
        severity=AnomalySeverity.HIGH,
    )


def test_all_rules_fire_in_priority_order():
    insights = build_insights(
        _forecast(0.5),
        _optimization(1000, 100, RiskLevel.HIGH, savings=739.73),
        [_anomaly(2), _anomaly(30)],
        TODAY,
    )

    assert [i.priority for i in insights] == [
        InsightPriority.CRITICAL,
        InsightPriority.HIGH,
        InsightPriority.MEDIUM,
        InsightPriority.LOW,
    ]
    assert [i.type for i in insights] == [
        InsightType.CRITICAL,
        InsightType.OPTIMIZATION,
        InsightType.WARNING,
        InsightType.INFO,
    ]
    excess = insights[1]
    assert excess.title == "Excess Inventory"
    assert excess.savings == pytest.approx(739.73)
    assert "900% above optimal" in excess.description
    assert insights[2].description.startswith("Forecast accuracy is 50%")
    assert insights[3].description.startswith("1 unusual demand patterns")


def test_no_rules_fire_for_healthy_product():
    insights = build_insights(
        _forecast(0.9),
        _optimization(100, 100, RiskLevel.LOW),
        [_anomaly(10)],
        TODAY,
    )

    assert insights == []


def test_excess_inventory_with_zero_optimal_stock():
    insights = build_insights(_forecast(0.9), _optimization(5, 0, RiskLevel.LOW), [], TODAY)

    assert [i.title for i in insights] == ["Excess Inventory"]


@pytest.mark.usefixtures("db_session")
class TestInsightsSynthesizer:
    def test_generate_combines_all_analyses(self, db_session, ai_engine):
        category = create_category(db_session, "insights-db")
        product = create_recent_product(db_session, "INS-1", category, days_old=28, current_stock=5000)
        add_daily_demand(db_session, product, [5] * 27 + [50])

        report = ai_engine.insights.generate(db_session, product.id, today=TODAY)

        assert report.product_id == product.id
        assert len(report.forecast.predictions) == 30
        assert report.optimization.current_stock == 5000
        assert len(report.anomalies) <= 5
        titles = [i.title for i in report.insights]
        assert "Excess Inventory" in titles
        assert "Recent Demand Anomalies" in titles

    def test_generate_forecasts_once_without_cache(self, db_session, settings):
        category = create_category(db_session, "insights-nocache")
        product = create_recent_product(db_session, "INS-2", category, days_old=20, current_stock=300)
        add_daily_demand(db_session, product, [3 + (i % 4) for i in range(20)])

        orchestrator = _CountingOrchestrator(
            settings,
            ModelRegistry(FileModelStore(settings.models_dir), settings),
            NeuralForecaster(settings),
            cache=None,
        )
        optimizer = StockOptimizer(settings, orchestrator)
        synthesizer = InsightsSynthesizer(orchestrator, optimizer, AnomalyDetector(settings))

        report = synthesizer.generate(db_session, product.id, today=TODAY)

        assert orchestrator.calls == 1
        expected = compute_stock_levels(
            product_id=product.id,
            current_stock=300,
            unit_price=product.unit_price,
            predicted_demands=[p.predicted_demand for p in report.forecast.predictions],
            settings=settings,
        )
        assert report.optimization == expected
