from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.errors import ProductNotFoundError
from app.models.models import Product, StockMovement
from app.schemas.demand import DemandObservation


OUTBOUND_MOVEMENT_TYPE = "OUT"


def get_product_or_raise(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def window_start_for_product(
    product: Product,
    window_days: int,
    today: date,
    first_movement_day: date | None = None,
) -> date:
    """First day of a `window_days` window ending today.

    The window never starts before the product's history does. History
    begins at the earlier of the creation date and the first outbound
    movement.
    """

    start = today - timedelta(days=window_days - 1)
    history_start = first_movement_day
    created_at = product.created_at
    if created_at is not None:
        created_day = created_at.date() if isinstance(created_at, datetime) else created_at
        if history_start is None or created_day < history_start:
            history_start = created_day
    if history_start is not None and history_start > start:
        start = min(history_start, today)
    return start


def build_series_from_quantities(
    daily_quantities: dict[date, int],
    start: date,
    end: date,
) -> list[DemandObservation]:
    """Emit one observation per day in [start, end], zero-filling missing days."""

    series: list[DemandObservation] = []
    day = start
    while day <= end:
        series.append(DemandObservation.for_day(day, int(daily_quantities.get(day, 0))))
        day += timedelta(days=1)
    return series


def aggregate_daily_quantities(movements: Iterable[tuple[datetime, int]]) -> dict[date, int]:
    """Sum absolute quantities per calendar day."""

    totals: dict[date, int] = defaultdict(int)
    for created_at, quantity in movements:
        day = created_at.date() if isinstance(created_at, datetime) else created_at
        totals[day] += abs(int(quantity))
    return dict(totals)


def list_outbound_movements(
    db: Session,
    product_id: int,
    since: date,
) -> list[tuple[datetime, int]]:
    rows = (
        db.query(StockMovement.created_at, StockMovement.quantity)
        .filter(
            StockMovement.product_id == product_id,
            StockMovement.movement_type == OUTBOUND_MOVEMENT_TYPE,
            StockMovement.created_at >= datetime.combine(since, time.min),
        )
        .order_by(StockMovement.created_at.asc())
        .all()
    )
    return [(row[0], row[1]) for row in rows]


def build_demand_series(
    db: Session,
    product_id: int,
    window_days: int,
    today: date | None = None,
) -> list[DemandObservation]:
    """Build the gap-free daily demand series of a product.

    The window covers the last `window_days` days up to and including
    `today`, clamped to where the product's history begins. Movements dated
    after `today` are ignored.
    """

    today = today or date.today()
    product = get_product_or_raise(db, product_id)

    window_start = today - timedelta(days=window_days - 1)
    movements = [
        (created_at, quantity)
        for created_at, quantity in list_outbound_movements(db, product_id, window_start)
        if created_at.date() <= today
    ]
    first_movement_day = movements[0][0].date() if movements else None
    start = window_start_for_product(product, window_days, today, first_movement_day)

    return build_series_from_quantities(aggregate_daily_quantities(movements), start, today)
