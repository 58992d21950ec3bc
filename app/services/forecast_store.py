from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.models.models import Forecast
from app.schemas.forecast import ForecastAccuracy, ForecastResult
from app.services.demand_series import (
    aggregate_daily_quantities,
    get_product_or_raise,
    list_outbound_movements,
)


def save_forecast(db: Session, forecast: ForecastResult) -> int:
    """Upsert one Forecast row per predicted day; returns the number of rows written."""

    dates = [p.date for p in forecast.predictions]
    existing = {
        row.forecast_date: row
        for row in db.query(Forecast)
        .filter(
            Forecast.product_id == forecast.product_id,
            Forecast.forecast_date.in_(dates),
        )
        .all()
    }

    model_version = forecast.model_type.value
    for point in forecast.predictions:
        row = existing.get(point.date)
        if row is None:
            row = Forecast(product_id=forecast.product_id, forecast_date=point.date)
            db.add(row)
        row.predicted_demand = float(point.predicted_demand)
        row.confidence_score = float(point.confidence)
        row.model_version = model_version

    db.flush()
    return len(forecast.predictions)


def compute_forecast_accuracy(
    db: Session,
    product_id: int,
    today: Optional[date] = None,
    window_days: int = 30,
) -> ForecastAccuracy:
    """Compare saved forecasts of the last `window_days` days with actual demand."""

    today = today or date.today()
    get_product_or_raise(db, product_id)
    start = today - timedelta(days=window_days)

    forecasts = (
        db.query(Forecast)
        .filter(
            Forecast.product_id == product_id,
            Forecast.forecast_date >= start,
            Forecast.forecast_date <= today,
        )
        .order_by(Forecast.forecast_date.asc())
        .all()
    )
    actuals = aggregate_daily_quantities(list_outbound_movements(db, product_id, start))

    # Only days with recorded outbound movements are comparable
    errors: list[float] = []
    for row in forecasts:
        if row.forecast_date not in actuals:
            continue
        actual = actuals[row.forecast_date]
        errors.append(abs(row.predicted_demand - actual) / actual if actual > 0 else 0.0)

    mape = sum(errors) / len(errors) if errors else 0.0
    return ForecastAccuracy(
        product_id=product_id,
        accuracy=round(max(0.0, 1.0 - mape), 2),
        mape=round(mape, 2),
        valid_comparisons=len(errors),
        total_forecasts=len(forecasts),
    )
