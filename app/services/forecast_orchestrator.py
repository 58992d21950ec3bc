from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import EngineSettings
from app.core.errors import NeuralForecastError
from app.schemas.forecast import ForecastResult
from app.services.cache import CacheService
from app.services.demand_series import build_demand_series, get_product_or_raise
from app.services.model_registry import ModelRegistry
from app.services.neural_forecast import NeuralForecaster
from app.services.statistical_forecast import statistical_forecast


logger = logging.getLogger(__name__)


def forecast_cache_key(product_id: int, horizon_days: int) -> str:
    return f"forecast:{product_id}:{horizon_days}"


class ForecastOrchestrator:
    """Chooses between the statistical and neural forecasters and caches results."""

    def __init__(
        self,
        settings: EngineSettings,
        registry: ModelRegistry,
        neural: NeuralForecaster,
        cache: Optional[CacheService] = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._neural = neural
        self._cache = cache

    def _cached(self, key: str) -> Optional[ForecastResult]:
        if self._cache is None:
            return None
        raw = self._cache.get(key)
        if raw is None:
            return None
        try:
            return ForecastResult.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key)
            self._cache.delete(key)
            return None

    def forecast(
        self,
        db: Session,
        product_id: int,
        horizon_days: int = 30,
        today: Optional[date] = None,
    ) -> ForecastResult:
        """Forecast daily demand of a product for the next `horizon_days` days.

        Raises ValueError for an out-of-range horizon and
        ProductNotFoundError for an unknown product.
        """

        if not 1 <= horizon_days <= self._settings.max_horizon_days:
            raise ValueError(
                f"horizon_days must be between 1 and {self._settings.max_horizon_days}"
            )

        product = get_product_or_raise(db, product_id)

        key = forecast_cache_key(product_id, horizon_days)
        cached = self._cached(key)
        if cached is not None:
            return cached

        today = today or date.today()
        series = build_demand_series(db, product_id, self._settings.history_window_days, today)
        start_date = today + timedelta(days=1)

        if len(series) < self._settings.min_history_days:
            result = statistical_forecast(product_id, series, horizon_days, start_date)
        else:
            handle = self._registry.get(product.category_id)
            try:
                result = self._neural.forecast(product_id, handle, series, horizon_days, start_date)
            except NeuralForecastError as exc:
                logger.warning(
                    "Neural forecast unavailable for product %s, using statistical model: %s",
                    product_id,
                    exc,
                )
                result = statistical_forecast(product_id, series, horizon_days, start_date)
            except Exception:
                logger.exception(
                    "Neural forecast failed for product %s, using statistical model", product_id
                )
                result = statistical_forecast(product_id, series, horizon_days, start_date)

        if self._cache is not None:
            self._cache.set(key, result.model_dump_json(), ttl=self._settings.cache_ttl_seconds)

        return result

    def invalidate(self, product_id: int) -> int:
        if self._cache is None:
            return 0
        return self._cache.invalidate(f"forecast:{product_id}:*")
