from __future__ import annotations

import logging
import math
import time
from collections import deque
from datetime import date, timedelta
from typing import Sequence

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader, TensorDataset

from app.core.config import EngineSettings
from app.core.errors import (
    InsufficientTrainingDataError,
    TrainingFailedError,
    TrainingTimeoutError,
)
from app.schemas.demand import DemandObservation
from app.schemas.forecast import ForecastPoint, ForecastResult, ModelType
from app.services.model_registry import LAG_DAYS, CategoryModelHandle, DemandForecastNetwork


logger = logging.getLogger(__name__)


WINDOW_SIZE = 10
CONFIDENCE_FLOOR = 0.3
CONFIDENCE_CEILING = 0.95
DEVIATION_WEIGHT = 0.1
MARGIN_RATIO = 0.2


def date_features(day: date) -> list[float]:
    return [float(day.weekday()), float(day.day), float(day.month)]


class LagWindow:
    """Fixed-length buffer of the most recent daily demands (oldest first)."""

    def __init__(self, values: Sequence[float], size: int = LAG_DAYS) -> None:
        if len(values) < size:
            raise ValueError(f"LagWindow needs {size} values, got {len(values)}")
        self._buffer: deque[float] = deque((float(v) for v in values[-size:]), maxlen=size)

    def push(self, value: float) -> float:
        """Append the newest value and return the evicted oldest one."""
        evicted = self._buffer[0]
        self._buffer.append(float(value))
        return evicted

    def values(self) -> list[float]:
        return list(self._buffer)

    def features_for(self, day: date) -> list[float]:
        return self.values() + date_features(day)


def build_training_set(series: Sequence[DemandObservation]) -> tuple[np.ndarray, np.ndarray]:
    """Sliding windows: 7 lagged demands plus calendar features of the target day."""

    inputs: list[list[float]] = []
    outputs: list[float] = []
    for i in range(WINDOW_SIZE, len(series)):
        lags = [float(series[i - j].quantity) for j in range(LAG_DAYS, 0, -1)]
        inputs.append(lags + date_features(series[i].date))
        outputs.append(float(series[i].quantity))

    return (
        np.asarray(inputs, dtype=np.float32).reshape(-1, WINDOW_SIZE),
        np.asarray(outputs, dtype=np.float32),
    )


def prediction_confidence(prediction: float, mean: float, std: float) -> float:
    normalized_deviation = 0.0 if std == 0 else abs(prediction - mean) / std
    confidence = 1.0 - min(1.0, normalized_deviation) * DEVIATION_WEIGHT
    return round(max(CONFIDENCE_FLOOR, min(CONFIDENCE_CEILING, confidence)), 2)


def mape_accuracy(predicted: np.ndarray, actual: np.ndarray) -> float:
    """1 - MAPE over rows with non-zero actuals, floored at 0."""

    if actual.size == 0:
        return 0.5
    mask = actual != 0
    if not mask.any():
        mape = 1.0
    else:
        mape = float(np.mean(np.abs((actual[mask] - predicted[mask]) / actual[mask])))
    return max(0.0, 1.0 - mape)


class NeuralForecaster:
    """Trains a category's shared network on one product's history and rolls it forward."""

    def __init__(self, settings: EngineSettings) -> None:
        self._settings = settings

    def count_training_windows(self, series: Sequence[DemandObservation]) -> int:
        return max(0, len(series) - WINDOW_SIZE)

    def _train(
        self,
        handle: CategoryModelHandle,
        network: DemandForecastNetwork,
        inputs: np.ndarray,
        outputs: np.ndarray,
        deadline: float,
    ) -> None:
        settings = self._settings
        x = torch.from_numpy(inputs)
        y = torch.from_numpy(outputs).unsqueeze(1)

        # Keras-style split: the most recent rows are held out for validation
        n_val = int(len(x) * settings.validation_split)
        n_train = len(x) - n_val
        if n_train <= 0:
            n_train, n_val = len(x), 0

        train_loader = DataLoader(
            TensorDataset(x[:n_train], y[:n_train]),
            batch_size=settings.batch_size,
            shuffle=True,
        )
        x_val, y_val = x[n_train:], y[n_train:]

        criterion = nn.MSELoss()
        optimizer = handle.optimizer
        if optimizer is None:
            raise TrainingFailedError(f"Model for category {handle.category_id} was disposed")

        for epoch in range(settings.epochs):
            network.train()
            epoch_loss = 0.0
            for xb, yb in train_loader:
                if time.monotonic() > deadline:
                    raise TrainingTimeoutError(handle.category_id, settings.training_timeout_seconds)
                optimizer.zero_grad()
                loss = criterion(network(xb), yb)
                if not torch.isfinite(loss):
                    raise TrainingFailedError(
                        f"Non-finite training loss for category {handle.category_id}"
                    )
                loss.backward()
                optimizer.step()
                epoch_loss += loss.item()

            if n_val and (epoch + 1) % 10 == 0:
                network.eval()
                with torch.no_grad():
                    val_loss = criterion(network(x_val), y_val).item()
                logger.debug(
                    "Category %s epoch %s/%s - loss %.4f val_loss %.4f",
                    handle.category_id,
                    epoch + 1,
                    settings.epochs,
                    epoch_loss / max(1, len(train_loader)),
                    val_loss,
                )

        handle.mark_trained()

    def forecast(
        self,
        product_id: int,
        handle: CategoryModelHandle,
        series: Sequence[DemandObservation],
        horizon_days: int,
        start_date: date,
    ) -> ForecastResult:
        """Train the category model on `series`, then predict `horizon_days` days.

        Raises InsufficientTrainingDataError, TrainingTimeoutError or
        TrainingFailedError; callers fall back to the statistical model.
        """

        settings = self._settings
        inputs, outputs = build_training_set(series)
        if len(inputs) < settings.min_training_windows:
            raise InsufficientTrainingDataError(len(inputs), settings.min_training_windows)

        demands = np.asarray([obs.quantity for obs in series], dtype=float)
        mean = float(demands.mean())
        std = float(demands.std())

        started = time.monotonic()
        deadline = started + settings.training_timeout_seconds
        if not handle.lock.acquire(timeout=settings.training_timeout_seconds):
            raise TrainingTimeoutError(handle.category_id, settings.training_timeout_seconds)

        try:
            network = handle.network
            if network is None:
                raise TrainingFailedError(f"Model for category {handle.category_id} was disposed")

            self._train(handle, network, inputs, outputs, deadline)

            network.eval()
            window = LagWindow([obs.quantity for obs in series])
            predictions: list[ForecastPoint] = []
            with torch.no_grad():
                for i in range(horizon_days):
                    day = start_date + timedelta(days=i)
                    features = torch.tensor([window.features_for(day)], dtype=torch.float32)
                    raw = float(network(features).item())
                    if not math.isfinite(raw):
                        raise TrainingFailedError(
                            f"Non-finite prediction for category {handle.category_id}"
                        )
                    predicted = max(0, round(raw))
                    margin = predicted * MARGIN_RATIO

                    predictions.append(
                        ForecastPoint(
                            date=day,
                            predicted_demand=predicted,
                            confidence=prediction_confidence(predicted, mean, std),
                            upper_bound=round(predicted + margin),
                            lower_bound=max(0, round(predicted - margin)),
                        )
                    )
                    window.push(predicted)

                fitted = network(torch.from_numpy(inputs)).squeeze(1).numpy()
        finally:
            handle.lock.release()

        accuracy = mape_accuracy(fitted, outputs)
        logger.info(
            "Neural forecast for product %s (category %s): %s windows, accuracy %.2f, %.2fs",
            product_id,
            handle.category_id,
            len(inputs),
            accuracy,
            time.monotonic() - started,
        )

        return ForecastResult(
            product_id=product_id,
            predictions=predictions,
            accuracy=accuracy,
            model_type=ModelType.NEURAL_NETWORK,
        )
