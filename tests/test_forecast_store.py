from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.errors import ProductNotFoundError
from app.models.models import Forecast
from app.schemas.forecast import ForecastPoint, ForecastResult, ModelType
from app.services.forecast_store import compute_forecast_accuracy, save_forecast
from tests.test_utils import TODAY, add_movement, create_category, create_product


def _forecast(product_id: int, start, values, model_type=ModelType.STATISTICAL) -> ForecastResult:
    return ForecastResult(
        product_id=product_id,
        predictions=[
            ForecastPoint(
                date=start + timedelta(days=i),
                predicted_demand=value,
                confidence=0.8,
                upper_bound=value + 2,
                lower_bound=max(0, value - 2),
            )
            for i, value in enumerate(values)
        ],
        accuracy=0.8,
        model_type=model_type,
    )


@pytest.mark.usefixtures("db_session")
class TestForecastStore:
    def test_save_forecast_upserts_by_date(self, db_session):
        category = create_category(db_session, "store-upsert")
        product = create_product(db_session, "STO-1", category)
        start = TODAY + timedelta(days=1)

        save_forecast(db_session, _forecast(product.id, start, [4, 5, 6]))
        save_forecast(db_session, _forecast(product.id, start, [7, 8, 9], ModelType.NEURAL_NETWORK))

        rows = (
            db_session.query(Forecast)
            .filter(Forecast.product_id == product.id)
            .order_by(Forecast.forecast_date.asc())
            .all()
        )
        assert [r.predicted_demand for r in rows] == [7, 8, 9]
        assert {r.model_version for r in rows} == {"NEURAL_NETWORK"}

    def test_accuracy_compares_days_with_actual_demand(self, db_session):
        category = create_category(db_session, "store-accuracy")
        product = create_product(db_session, "STO-2", category)
        first_day = TODAY - timedelta(days=5)

        save_forecast(db_session, _forecast(product.id, first_day, [10, 10]))
        add_movement(db_session, product, first_day, 8)

        accuracy = compute_forecast_accuracy(db_session, product.id, today=TODAY)

        assert accuracy.total_forecasts == 2
        assert accuracy.valid_comparisons == 1
        assert accuracy.mape == pytest.approx(0.25)
        assert accuracy.accuracy == pytest.approx(0.75)

    def test_accuracy_without_forecasts(self, db_session):
        category = create_category(db_session, "store-empty")
        product = create_product(db_session, "STO-3", category)

        accuracy = compute_forecast_accuracy(db_session, product.id, today=TODAY)

        assert accuracy.total_forecasts == 0
        assert accuracy.accuracy == 1.0

    def test_accuracy_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            compute_forecast_accuracy(db_session, 31337, today=TODAY)
