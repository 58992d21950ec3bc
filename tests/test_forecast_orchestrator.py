from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.config import EngineSettings
from app.core.errors import ProductNotFoundError, TrainingFailedError
from app.schemas.forecast import ModelType
from app.services.cache import CacheService
from app.services.forecast_orchestrator import ForecastOrchestrator, forecast_cache_key
from app.services.model_registry import FileModelStore, ModelRegistry
from app.services.neural_forecast import NeuralForecaster
from tests.test_utils import (
    TODAY,
    add_daily_demand,
    create_category,
    create_product,
    create_recent_product,
)


class _FailingNeural:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    def forecast(self, *args, **kwargs):
        self.calls += 1
        raise self.exc


def _orchestrator(settings, neural=None, cache=None) -> ForecastOrchestrator:
    registry = ModelRegistry(FileModelStore(settings.models_dir), settings)
    return ForecastOrchestrator(settings, registry, neural or NeuralForecaster(settings), cache)


@pytest.mark.usefixtures("db_session")
class TestForecastOrchestrator:
    def test_short_history_uses_statistical_model(self, db_session, settings):
        category = create_category(db_session, "orch-short")
        product = create_recent_product(db_session, "ORC-1", category, days_old=29)
        add_daily_demand(db_session, product, [4] * 29)

        result = _orchestrator(settings).forecast(db_session, product.id, 30, today=TODAY)

        assert result.model_type == ModelType.STATISTICAL
        assert len(result.predictions) == 30
        assert result.predictions[0].date == TODAY + timedelta(days=1)
        assert all(p.predicted_demand == 4 for p in result.predictions)

    def test_thirty_observations_use_neural_model(self, db_session, settings):
        category = create_category(db_session, "orch-neural")
        product = create_recent_product(db_session, "ORC-2", category, days_old=30)
        add_daily_demand(db_session, product, [3 + (i % 5) for i in range(30)])

        result = _orchestrator(settings).forecast(db_session, product.id, 10, today=TODAY)

        assert result.model_type == ModelType.NEURAL_NETWORK
        assert len(result.predictions) == 10

    def test_insufficient_windows_fall_back_to_statistical(self, db_session):
        settings = EngineSettings(epochs=1, min_history_days=15)
        category = create_category(db_session, "orch-windows")
        product = create_recent_product(db_session, "ORC-3", category, days_old=15)
        add_daily_demand(db_session, product, [2] * 15)

        result = _orchestrator(settings).forecast(db_session, product.id, 7, today=TODAY)

        assert result.model_type == ModelType.STATISTICAL

    @pytest.mark.parametrize("exc", [TrainingFailedError("nan loss"), RuntimeError("boom")])
    def test_neural_failures_fall_back_to_statistical(self, db_session, settings, exc):
        category = create_category(db_session, "orch-fail")
        product = create_product(db_session, "ORC-4", category)
        add_daily_demand(db_session, product, [6] * 60)
        neural = _FailingNeural(exc)

        result = _orchestrator(settings, neural=neural).forecast(db_session, product.id, 7, today=TODAY)

        assert neural.calls == 1
        assert result.model_type == ModelType.STATISTICAL
        assert len(result.predictions) == 7

    @pytest.mark.parametrize("horizon", [0, 366])
    def test_horizon_out_of_range(self, db_session, settings, horizon):
        with pytest.raises(ValueError):
            _orchestrator(settings).forecast(db_session, 1, horizon, today=TODAY)

    def test_unknown_product(self, db_session, settings):
        with pytest.raises(ProductNotFoundError):
            _orchestrator(settings).forecast(db_session, 424242, 30, today=TODAY)

    def test_cache_hit_and_invalidation(self, db_session, settings):
        category = create_category(db_session, "orch-cache")
        product = create_recent_product(db_session, "ORC-5", category, days_old=20)
        add_daily_demand(db_session, product, [5] * 20)
        cache = CacheService()
        orchestrator = _orchestrator(settings, cache=cache)

        first = orchestrator.forecast(db_session, product.id, 14, today=TODAY)
        assert cache.get(forecast_cache_key(product.id, 14)) is not None

        # New demand is not visible while the cached result is live
        add_daily_demand(db_session, product, [50] * 20)
        cached = orchestrator.forecast(db_session, product.id, 14, today=TODAY)
        assert cached == first

        assert orchestrator.invalidate(product.id) == 1
        refreshed = orchestrator.forecast(db_session, product.id, 14, today=TODAY)
        assert refreshed.predictions[0].predicted_demand > first.predictions[0].predicted_demand

    def test_cached_forecast_of_deleted_product_is_not_served(self, db_session, settings):
        category = create_category(db_session, "orch-deleted")
        product = create_recent_product(db_session, "ORC-7", category, days_old=10)
        product_id = product.id
        cache = CacheService()
        orchestrator = _orchestrator(settings, cache=cache)

        orchestrator.forecast(db_session, product_id, 7, today=TODAY)
        assert cache.get(forecast_cache_key(product_id, 7)) is not None

        db_session.delete(product)
        db_session.flush()

        with pytest.raises(ProductNotFoundError):
            orchestrator.forecast(db_session, product_id, 7, today=TODAY)

    def test_works_without_cache(self, db_session, settings):
        category = create_category(db_session, "orch-nocache")
        product = create_recent_product(db_session, "ORC-6", category, days_old=12)
        add_daily_demand(db_session, product, [1] * 12)
        orchestrator = _orchestrator(settings, cache=None)

        result = orchestrator.forecast(db_session, product.id, 5, today=TODAY)

        assert len(result.predictions) == 5
        assert orchestrator.invalidate(product.id) == 0
