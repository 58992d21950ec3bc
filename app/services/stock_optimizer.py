from __future__ import annotations

import math
from datetime import date
from typing import Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import EngineSettings
from app.schemas.forecast import ForecastResult
from app.schemas.optimization import OptimizationResult, RiskLevel
from app.services.demand_series import get_product_or_raise
from app.services.forecast_orchestrator import ForecastOrchestrator


OPTIMIZATION_HORIZON_DAYS = 30
HIGH_RISK_THRESHOLD = 0.2
MEDIUM_RISK_THRESHOLD = 0.1


def holding_cost_per_unit(unit_price: Optional[float], settings: EngineSettings) -> float:
    """Annual holding cost of one unit."""

    if unit_price is None or float(unit_price) <= 0:
        return settings.default_holding_cost
    return float(unit_price) * settings.holding_cost_rate


def stockout_risk(
    current_stock: int,
    average_demand: float,
    variability: float,
    risk_horizon_days: float,
) -> float:
    if average_demand <= 0:
        return 0.0
    days_of_stock = current_stock / average_demand
    risk = (risk_horizon_days - days_of_stock) * (variability / average_demand) / risk_horizon_days
    return min(1.0, max(0.0, risk))


def classify_risk(risk: float) -> RiskLevel:
    if risk > HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if risk > MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def compute_stock_levels(
    product_id: int,
    current_stock: int,
    unit_price: Optional[float],
    predicted_demands: Sequence[float],
    settings: EngineSettings,
) -> OptimizationResult:
    """EOQ + safety stock policy for a daily demand forecast.

    Pure function of its arguments.
    """

    demands = np.asarray(predicted_demands, dtype=float)
    average_demand = float(demands.mean()) if demands.size else 0.0
    variability = float(demands.std()) if demands.size else 0.0

    annual_demand = average_demand * 365
    holding_cost = holding_cost_per_unit(unit_price, settings)

    eoq = math.sqrt(2 * annual_demand * settings.ordering_cost / holding_cost)
    safety_stock = settings.service_level_z * math.sqrt(settings.lead_time_days) * variability
    reorder_point = average_demand * settings.lead_time_days + safety_stock
    optimal_stock = eoq + safety_stock

    excess_units = current_stock - optimal_stock
    expected_savings = max(0.0, excess_units * holding_cost / 365 * 30)

    risk = stockout_risk(current_stock, average_demand, variability, settings.risk_horizon_days)
    risk_level = classify_risk(risk)

    explanation = (
        f"Average daily demand {average_demand:.1f} over the next {len(demands)} days; "
        f"EOQ {eoq:.0f} units plus safety stock {safety_stock:.0f} units "
        f"for a {settings.lead_time_days:g}-day lead time."
    )
    if expected_savings > 0:
        explanation += (
            f" Current stock exceeds the optimum by {excess_units:.0f} units, "
            f"tying up about {expected_savings:.2f} in monthly holding cost."
        )

    return OptimizationResult(
        product_id=product_id,
        current_stock=current_stock,
        optimal_stock=max(0, round(optimal_stock)),
        reorder_point=max(0, round(reorder_point)),
        expected_savings=round(expected_savings, 2),
        risk_level=risk_level,
        eoq=round(eoq, 2),
        safety_stock=round(safety_stock, 2),
        stockout_risk=round(risk, 4),
        explanation=explanation,
    )


class StockOptimizer:
    def __init__(self, settings: EngineSettings, orchestrator: ForecastOrchestrator) -> None:
        self._settings = settings
        self._orchestrator = orchestrator

    def optimize(
        self,
        db: Session,
        product_id: int,
        today: Optional[date] = None,
        forecast: Optional[ForecastResult] = None,
    ) -> OptimizationResult:
        """Optimize stock levels from a 30-day forecast.

        A forecast already computed for the product can be passed in to be reused.
        """

        product = get_product_or_raise(db, product_id)
        if forecast is None:
            forecast = self._orchestrator.forecast(
                db, product_id, OPTIMIZATION_HORIZON_DAYS, today=today
            )
        return compute_stock_levels(
            product_id=product_id,
            current_stock=product.current_stock,
            unit_price=product.unit_price,
            predicted_demands=[p.predicted_demand for p in forecast.predictions],
            settings=self._settings,
        )
