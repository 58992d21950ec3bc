from __future__ import annotations

from datetime import date, timedelta
from typing import Sequence

import numpy as np

from app.schemas.demand import DemandObservation
from app.schemas.forecast import ForecastPoint, ForecastResult, ModelType


CONFIDENCE_FLOOR = 0.3
INTERVAL_Z = 1.96  # 95% interval
RECENT_WINDOW_DAYS = 7


def linear_trend(demands: Sequence[float]) -> float:
    """OLS slope of demand against day index; 0 for fewer than two points."""

    if len(demands) < 2:
        return 0.0
    x = np.arange(len(demands), dtype=float)
    y = np.asarray(demands, dtype=float)
    x_centered = x - x.mean()
    return float((x_centered * (y - y.mean())).sum() / (x_centered**2).sum())


def seasonal_factor(day_of_week: int, series: Sequence[DemandObservation], overall_mean: float) -> float:
    """Weekday mean relative to the overall mean, 1 when undefined."""

    if overall_mean == 0:
        return 1.0
    same_day = [obs.quantity for obs in series if obs.day_of_week == day_of_week]
    if not same_day:
        return 1.0
    return float(np.mean(same_day)) / overall_mean


def statistical_confidence(mean: float, std: float) -> float:
    if mean <= 0:
        return CONFIDENCE_FLOOR
    confidence = max(CONFIDENCE_FLOOR, 1.0 - std / mean)
    return round(min(1.0, confidence), 2)


def statistical_forecast(
    product_id: int,
    series: Sequence[DemandObservation],
    horizon_days: int,
    start_date: date,
) -> ForecastResult:
    """Trend-adjusted moving average with weekday seasonality.

    `start_date` is the date of the first predicted day. Pure function: it
    reads nothing but its arguments and is safe to call concurrently.
    """

    demands = np.asarray([obs.quantity for obs in series], dtype=float)

    if demands.size:
        mean = float(demands.mean())
        std = float(demands.std())
        recent_average = float(demands[-min(RECENT_WINDOW_DAYS, demands.size):].mean())
    else:
        mean = std = recent_average = 0.0

    trend = linear_trend(demands)
    confidence = statistical_confidence(mean, std)
    margin = INTERVAL_Z * std

    predictions: list[ForecastPoint] = []
    for i in range(horizon_days):
        day = start_date + timedelta(days=i)
        factor = seasonal_factor(day.weekday(), series, mean)

        predicted = max(0, round((recent_average + trend * (i + 1)) * factor))

        predictions.append(
            ForecastPoint(
                date=day,
                predicted_demand=predicted,
                confidence=confidence,
                upper_bound=round(predicted + margin),
                lower_bound=max(0, round(predicted - margin)),
            )
        )

    return ForecastResult(
        product_id=product_id,
        predictions=predictions,
        accuracy=confidence,
        model_type=ModelType.STATISTICAL,
    )
