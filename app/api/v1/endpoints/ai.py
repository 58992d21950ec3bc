from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.errors import ProductNotFoundError
from app.schemas.ai_portfolio import (
    AnomalyOverview,
    ApplyOptimizationResult,
    BulkForecastRequest,
    BulkForecastResult,
    BulkOptimizeRequest,
    BulkOptimizeResult,
    DashboardInsights,
    ForecastGenerateRequest,
    ModelStatusRow,
    OptimizationRecommendations,
    RetrainRequest,
    RetrainResult,
)
from app.schemas.anomaly import AnomalyReport, AnomalySeverity
from app.schemas.forecast import ForecastAccuracy, ForecastResponse
from app.schemas.insights import InsightsReport
from app.schemas.optimization import OptimizationResult, RiskLevel
from app.services import ai_portfolio
from app.services.ai_engine import InventoryAIEngine, get_engine
from app.services.forecast_store import compute_forecast_accuracy, save_forecast


router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")


def _forecast_response(
    engine: InventoryAIEngine, db: Session, product_id: int, days: int
) -> ForecastResponse:
    try:
        forecast = engine.forecaster.forecast(db, product_id, days)
    except ProductNotFoundError:
        raise _not_found()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return ForecastResponse(
        data=forecast,
        generated_at=datetime.now(timezone.utc).isoformat(),
        forecast_days=days,
    )


@router.get("/forecast/{product_id}", response_model=ForecastResponse)
def get_forecast(
    product_id: int,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> ForecastResponse:
    return _forecast_response(engine, db, product_id, days)


@router.post("/forecast/bulk", response_model=BulkForecastResult)
def bulk_forecast(
    payload: BulkForecastRequest,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> BulkForecastResult:
    return ai_portfolio.bulk_forecast(engine, db, payload.product_ids, payload.days)


@router.post("/forecast/{product_id}/generate", response_model=ForecastResponse)
def generate_forecast(
    product_id: int,
    payload: ForecastGenerateRequest | None = None,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> ForecastResponse:
    """Compute a forecast and persist its predictions."""

    days = payload.days if payload is not None else 30
    response = _forecast_response(engine, db, product_id, days)
    save_forecast(db, response.data)
    db.commit()
    return response


@router.get("/forecast/{product_id}/accuracy", response_model=ForecastAccuracy)
def get_forecast_accuracy(
    product_id: int,
    db: Session = Depends(get_db),
) -> ForecastAccuracy:
    try:
        return compute_forecast_accuracy(db, product_id)
    except ProductNotFoundError:
        raise _not_found()


@router.delete("/forecast/{product_id}/cache")
def clear_forecast_cache(
    product_id: int,
    engine: InventoryAIEngine = Depends(get_engine),
) -> dict:
    removed = engine.forecaster.invalidate(product_id)
    return {"product_id": product_id, "removed": removed}


@router.get("/optimize/recommendations", response_model=OptimizationRecommendations)
def get_optimization_recommendations(
    limit: int = Query(10, ge=1, le=100),
    risk_level: RiskLevel | None = Query(None),
    category_id: int | None = Query(None),
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> OptimizationRecommendations:
    return ai_portfolio.optimization_recommendations(
        engine, db, limit=limit, risk_level=risk_level, category_id=category_id
    )


@router.post("/optimize/bulk", response_model=BulkOptimizeResult)
def bulk_optimize(
    payload: BulkOptimizeRequest,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> BulkOptimizeResult:
    return ai_portfolio.bulk_optimize(engine, db, payload.product_ids)


@router.get("/optimize/{product_id}", response_model=OptimizationResult)
def get_optimization(
    product_id: int,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> OptimizationResult:
    try:
        return engine.optimizer.optimize(db, product_id)
    except ProductNotFoundError:
        raise _not_found()


@router.post("/optimize/{product_id}/apply", response_model=ApplyOptimizationResult)
def apply_optimization(
    product_id: int,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> ApplyOptimizationResult:
    try:
        return ai_portfolio.apply_optimization(engine, db, product_id)
    except ProductNotFoundError:
        raise _not_found()


@router.get("/anomalies", response_model=AnomalyOverview)
def get_all_anomalies(
    limit: int = Query(20, ge=1, le=100),
    severity: AnomalySeverity | None = Query(None),
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> AnomalyOverview:
    return ai_portfolio.anomaly_overview(engine, db, limit=limit, severity=severity, days=days)


@router.get("/anomalies/{product_id}", response_model=AnomalyReport)
def get_anomalies(
    product_id: int,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> AnomalyReport:
    try:
        return engine.anomalies.detect(db, product_id)
    except ProductNotFoundError:
        raise _not_found()


@router.get("/insights", response_model=DashboardInsights)
def get_dashboard_insights(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> DashboardInsights:
    return ai_portfolio.dashboard_insights(engine, db, limit=limit)


@router.get("/insights/{product_id}", response_model=InsightsReport)
def get_insights(
    product_id: int,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> InsightsReport:
    try:
        return engine.insights.generate(db, product_id)
    except ProductNotFoundError:
        raise _not_found()


@router.post("/models/retrain", response_model=RetrainResult)
def retrain_models(
    payload: RetrainRequest | None = None,
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> RetrainResult:
    category_id = payload.category_id if payload is not None else None
    return ai_portfolio.retrain_models(engine, db, category_id=category_id)


@router.get("/models/status", response_model=list[ModelStatusRow])
def get_model_status(
    db: Session = Depends(get_db),
    engine: InventoryAIEngine = Depends(get_engine),
) -> list[ModelStatusRow]:
    return ai_portfolio.model_status(engine, db)
