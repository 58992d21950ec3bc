from __future__ import annotations

import logging
import threading
from typing import Optional

from app.core.config import EngineSettings, load_settings
from app.services.anomaly_detector import AnomalyDetector
from app.services.cache import CacheService
from app.services.forecast_orchestrator import ForecastOrchestrator
from app.services.insights import InsightsSynthesizer
from app.services.model_registry import FileModelStore, ModelRegistry, ModelStore
from app.services.neural_forecast import NeuralForecaster
from app.services.stock_optimizer import StockOptimizer


logger = logging.getLogger(__name__)


class InventoryAIEngine:
    """Wires the forecasting, optimization, anomaly and insight components together."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        cache: Optional[CacheService] = None,
        store: Optional[ModelStore] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.cache = cache if cache is not None else CacheService(
            url=self.settings.redis_url,
            default_ttl=self.settings.cache_ttl_seconds,
        )
        self.registry = ModelRegistry(store or FileModelStore(self.settings.models_dir), self.settings)
        self.neural = NeuralForecaster(self.settings)
        self.forecaster = ForecastOrchestrator(self.settings, self.registry, self.neural, self.cache)
        self.optimizer = StockOptimizer(self.settings, self.forecaster)
        self.anomalies = AnomalyDetector(self.settings)
        self.insights = InsightsSynthesizer(self.forecaster, self.optimizer, self.anomalies)

    def shutdown(self) -> None:
        disposed = self.registry.dispose_all()
        self.cache.disconnect()
        logger.info("AI engine shut down (%s models released)", disposed)


_engine: Optional[InventoryAIEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> InventoryAIEngine:
    """Process-wide engine; also used as a FastAPI dependency."""

    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = InventoryAIEngine()
        return _engine


def shutdown_engine() -> None:
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.shutdown()
