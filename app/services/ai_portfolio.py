from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.models.models import Category, Forecast, Product, StockMovement
from app.schemas.ai_portfolio import (
    AnomalyOverview,
    ApplyOptimizationResult,
    BulkFailure,
    BulkForecastItem,
    BulkForecastResult,
    BulkForecastSummary,
    BulkOptimizeItem,
    BulkOptimizeResult,
    BulkOptimizeSummary,
    DashboardInsight,
    DashboardInsights,
    ModelStatusRow,
    OptimizationRecommendation,
    OptimizationRecommendations,
    ProductAnomalies,
    ProductRef,
    RetrainResult,
)
from app.schemas.anomaly import SEVERITY_RANK, AnomalySeverity
from app.schemas.forecast import ModelType
from app.schemas.insights import PRIORITY_RANK, InsightPriority
from app.schemas.optimization import OptimizationResult, RiskLevel
from app.services.ai_engine import InventoryAIEngine
from app.services.demand_series import get_product_or_raise
from app.services.forecast_store import save_forecast


logger = logging.getLogger(__name__)


ADJUSTMENT_MOVEMENT_TYPE = "ADJUSTMENT"
RETRAIN_HORIZON_DAYS = 7
DASHBOARD_PRODUCTS_PER_GROUP = 5
DASHBOARD_INSIGHTS_PER_PRODUCT = 2
ANOMALY_SCAN_LIMIT = 50


def list_category_ids(db: Session) -> list[int]:
    return [row[0] for row in db.query(Category.id).order_by(Category.id.asc()).all()]


def _product_ref(product: Product) -> ProductRef:
    category_name = product.category.name if product.category is not None else ""
    return ProductRef(id=product.id, name=product.name, category=category_name)


def stock_difference_pct(current_stock: int, optimal_stock: int) -> float:
    """Relative gap between current and optimal stock, in percent of current stock."""

    difference = abs(optimal_stock - current_stock)
    if current_stock <= 0:
        return 100.0 if difference > 0 else 0.0
    return difference / current_stock * 100


def recommendation_priority(optimization: OptimizationResult, difference_pct: float) -> InsightPriority:
    if optimization.risk_level == RiskLevel.HIGH:
        return InsightPriority.CRITICAL
    if optimization.expected_savings > 500 or difference_pct > 50:
        return InsightPriority.HIGH
    if optimization.expected_savings > 200 or difference_pct > 25:
        return InsightPriority.MEDIUM
    return InsightPriority.LOW


def bulk_forecast(
    engine: InventoryAIEngine,
    db: Session,
    product_ids: list[int],
    horizon_days: int = 30,
    today: Optional[date] = None,
) -> BulkForecastResult:
    """Forecast and save each product independently; failures are collected."""

    successful: list[BulkForecastItem] = []
    failed: list[BulkFailure] = []

    for product_id in product_ids:
        try:
            forecast = engine.forecaster.forecast(db, product_id, horizon_days, today=today)
            save_forecast(db, forecast)
            successful.append(BulkForecastItem(product_id=product_id, forecast=forecast))
        except Exception as exc:
            logger.warning("Bulk forecast failed for product %s: %s", product_id, exc)
            failed.append(BulkFailure(product_id=product_id, error=str(exc)))

    db.commit()

    return BulkForecastResult(
        successful=successful,
        failed=failed,
        summary=BulkForecastSummary(
            total=len(product_ids),
            successful=len(successful),
            failed=len(failed),
        ),
    )


def bulk_optimize(
    engine: InventoryAIEngine,
    db: Session,
    product_ids: list[int],
    today: Optional[date] = None,
) -> BulkOptimizeResult:
    successful: list[BulkOptimizeItem] = []
    failed: list[BulkFailure] = []

    for product_id in product_ids:
        try:
            optimization = engine.optimizer.optimize(db, product_id, today=today)
            successful.append(BulkOptimizeItem(product_id=product_id, optimization=optimization))
        except Exception as exc:
            logger.warning("Bulk optimization failed for product %s: %s", product_id, exc)
            failed.append(BulkFailure(product_id=product_id, error=str(exc)))

    total_savings = sum(item.optimization.expected_savings for item in successful)
    return BulkOptimizeResult(
        successful=successful,
        failed=failed,
        summary=BulkOptimizeSummary(
            total=len(product_ids),
            successful=len(successful),
            failed=len(failed),
            total_potential_savings=round(total_savings, 2),
        ),
    )


def apply_optimization(
    engine: InventoryAIEngine,
    db: Session,
    product_id: int,
    today: Optional[date] = None,
) -> ApplyOptimizationResult:
    """Store the recommended reorder point and optimal stock on the product.

    A zero-quantity ADJUSTMENT movement records the change in the audit trail.
    """

    product = get_product_or_raise(db, product_id)
    optimization = engine.optimizer.optimize(db, product_id, today=today)

    product.reorder_point = optimization.reorder_point
    product.optimal_stock = optimization.optimal_stock

    reference_number = f"AI-OPT-{int(time.time() * 1000)}"
    db.add(
        StockMovement(
            product_id=product.id,
            movement_type=ADJUSTMENT_MOVEMENT_TYPE,
            quantity=0,
            reference_number=reference_number,
            notes=(
                f"AI optimization applied: Reorder point set to {optimization.reorder_point}, "
                f"Optimal stock set to {optimization.optimal_stock}"
            ),
        )
    )
    db.commit()
    db.refresh(product)

    logger.info(
        "Applied optimization to product %s: reorder point %s, optimal stock %s",
        product_id,
        optimization.reorder_point,
        optimization.optimal_stock,
    )
    return ApplyOptimizationResult(
        data=optimization,
        reference_number=reference_number,
        message="Optimization applied successfully",
    )


def optimization_recommendations(
    engine: InventoryAIEngine,
    db: Session,
    limit: int = 10,
    risk_level: Optional[RiskLevel] = None,
    category_id: Optional[int] = None,
    today: Optional[date] = None,
) -> OptimizationRecommendations:
    query = db.query(Product).options(joinedload(Product.category))
    if risk_level is not None:
        query = query.filter(Product.risk_level == risk_level.value)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    products = query.order_by(Product.id.asc()).limit(limit).all()

    recommendations: list[OptimizationRecommendation] = []
    for product in products:
        try:
            optimization = engine.optimizer.optimize(db, product.id, today=today)
        except Exception as exc:
            logger.warning("Optimization failed for product %s: %s", product.id, exc)
            continue

        difference_pct = stock_difference_pct(product.current_stock, optimization.optimal_stock)
        if difference_pct > 15 or optimization.expected_savings > 50:
            recommendations.append(
                OptimizationRecommendation(
                    product=_product_ref(product),
                    optimization=optimization,
                    percentage_difference=round(difference_pct, 2),
                    priority=recommendation_priority(optimization, difference_pct),
                )
            )

    recommendations.sort(
        key=lambda r: (PRIORITY_RANK[r.priority], r.optimization.expected_savings),
        reverse=True,
    )

    return OptimizationRecommendations(
        data=recommendations,
        total_recommendations=len(recommendations),
        total_potential_savings=round(
            sum(r.optimization.expected_savings for r in recommendations), 2
        ),
    )


def anomaly_overview(
    engine: InventoryAIEngine,
    db: Session,
    limit: int = 20,
    severity: Optional[AnomalySeverity] = None,
    days: int = 30,
    today: Optional[date] = None,
) -> AnomalyOverview:
    """Recent anomalies across HIGH/MEDIUM velocity products, most severe first."""

    today = today or date.today()
    cutoff = today - timedelta(days=days)

    products = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.velocity.in_(["HIGH", "MEDIUM"]))
        .order_by(Product.id.asc())
        .limit(ANOMALY_SCAN_LIMIT)
        .all()
    )

    results: list[ProductAnomalies] = []
    for product in products:
        try:
            report = engine.anomalies.detect(db, product.id, today=today)
        except Exception as exc:
            logger.warning("Anomaly detection failed for product %s: %s", product.id, exc)
            continue

        anomalies = [
            a
            for a in report.anomalies
            if a.date > cutoff and (severity is None or a.severity == severity)
        ]
        if anomalies:
            results.append(ProductAnomalies(product=_product_ref(product), anomalies=anomalies))

    # Rank by the most recent anomaly of each product
    results.sort(
        key=lambda p: (SEVERITY_RANK[p.anomalies[-1].severity], p.anomalies[-1].date),
        reverse=True,
    )

    return AnomalyOverview(
        data=results[:limit],
        total_products=len(products),
        products_with_anomalies=len(results),
        total_anomalies=sum(len(p.anomalies) for p in results),
    )


def dashboard_insights(
    engine: InventoryAIEngine,
    db: Session,
    limit: int = 10,
    today: Optional[date] = None,
) -> DashboardInsights:
    high_risk_products = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.risk_level == RiskLevel.HIGH.value)
        .order_by(Product.id.asc())
        .limit(DASHBOARD_PRODUCTS_PER_GROUP)
        .all()
    )
    high_velocity_products = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.velocity == "HIGH")
        .order_by(Product.id.asc())
        .limit(DASHBOARD_PRODUCTS_PER_GROUP)
        .all()
    )

    entries: list[DashboardInsight] = []

    for product in high_risk_products:
        try:
            report = engine.insights.generate(db, product.id, today=today)
        except Exception as exc:
            logger.warning("Insights failed for product %s: %s", product.id, exc)
            continue
        entries.append(
            DashboardInsight(
                product_id=product.id,
                product_name=product.name,
                category=_product_ref(product).category,
                type="HIGH_RISK",
                priority=InsightPriority.HIGH,
                insights=report.insights[:DASHBOARD_INSIGHTS_PER_PRODUCT],
            )
        )

    for product in high_velocity_products:
        try:
            optimization = engine.optimizer.optimize(db, product.id, today=today)
        except Exception as exc:
            logger.warning("Optimization failed for product %s: %s", product.id, exc)
            continue
        if optimization.expected_savings > 100:
            entries.append(
                DashboardInsight(
                    product_id=product.id,
                    product_name=product.name,
                    category=_product_ref(product).category,
                    type="OPTIMIZATION_OPPORTUNITY",
                    priority=(
                        InsightPriority.CRITICAL
                        if optimization.risk_level == RiskLevel.HIGH
                        else InsightPriority.MEDIUM
                    ),
                    optimization=optimization,
                )
            )

    entries.sort(key=lambda e: PRIORITY_RANK[e.priority], reverse=True)

    return DashboardInsights(
        data=entries[:limit],
        total_insights=len(entries),
        high_risk_products=len(high_risk_products),
        optimization_opportunities=sum(
            1 for e in entries if e.type == "OPTIMIZATION_OPPORTUNITY"
        ),
    )


def retrain_models(
    engine: InventoryAIEngine,
    db: Session,
    category_id: Optional[int] = None,
    today: Optional[date] = None,
) -> RetrainResult:
    """Retrain each category's model on one of its products and persist it.

    Categories without products, or whose sample product lacks the history
    for the neural model, are reported as skipped.
    """

    category_ids = [category_id] if category_id is not None else list_category_ids(db)

    retrained = 0
    skipped: list[int] = []
    failed: list[str] = []

    for cid in category_ids:
        sample = (
            db.query(Product.id)
            .filter(Product.category_id == cid)
            .order_by(Product.id.asc())
            .first()
        )
        if sample is None:
            skipped.append(cid)
            continue

        product_id = sample[0]
        try:
            engine.forecaster.invalidate(product_id)
            forecast = engine.forecaster.forecast(db, product_id, RETRAIN_HORIZON_DAYS, today=today)
            if forecast.model_type != ModelType.NEURAL_NETWORK or not engine.registry.persist(cid):
                skipped.append(cid)
                continue
            retrained += 1
            logger.info("Model retrained for category %s", cid)
        except Exception as exc:
            logger.warning("Retraining failed for category %s: %s", cid, exc)
            failed.append(f"{cid}: {exc}")

    total = len(category_ids)
    return RetrainResult(
        retrained=retrained,
        total=total,
        skipped=skipped,
        failed=failed,
        message=f"{retrained}/{total} models retrained successfully",
    )


def model_status(
    engine: InventoryAIEngine,
    db: Session,
    now: Optional[datetime] = None,
) -> list[ModelStatusRow]:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=7)

    registry_rows = {row["category_id"]: row for row in engine.registry.status()}

    rows: list[ModelStatusRow] = []
    for category in db.query(Category).order_by(Category.id.asc()).all():
        product_count = (
            db.query(func.count(Product.id)).filter(Product.category_id == category.id).scalar()
        )
        recent_forecasts = (
            db.query(func.count(Forecast.id))
            .join(Product, Product.id == Forecast.product_id)
            .filter(Product.category_id == category.id, Forecast.created_at >= since)
            .scalar()
        )

        registry_row = registry_rows.get(category.id, {})
        rows.append(
            ModelStatusRow(
                category_id=category.id,
                category_name=category.name,
                product_count=product_count or 0,
                recent_forecasts=recent_forecasts or 0,
                status="ACTIVE" if recent_forecasts else "INACTIVE",
                training_status=registry_row.get("training_status", "UNTRAINED"),
                load_outcome=registry_row.get("load_outcome"),
                last_trained_at=registry_row.get("last_trained_at"),
                training_runs=registry_row.get("training_runs", 0),
            )
        )
    return rows
