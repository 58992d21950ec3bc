from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import torch
from torch import nn

from app.core.config import EngineSettings
from app.core.errors import ModelNotFoundError


logger = logging.getLogger(__name__)


FEATURE_WIDTH = 10  # 7 lagged demands + weekday + day of month + month
LAG_DAYS = 7


class DemandForecastNetwork(nn.Module):
    """Feed-forward regressor: two ReLU hidden layers with dropout, linear output."""

    def __init__(self, hidden_units: tuple[int, int] = (64, 32), dropout_rate: float = 0.2):
        super().__init__()
        first, second = hidden_units
        self.net = nn.Sequential(
            nn.Linear(FEATURE_WIDTH, first),
            nn.ReLU(),
            nn.Dropout(dropout_rate),
            nn.Linear(first, second),
            nn.ReLU(),
            nn.Dropout(dropout_rate),
            nn.Linear(second, 1),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)


class TrainingStatus(str, Enum):
    UNTRAINED = "UNTRAINED"
    TRAINED = "TRAINED"
    DISPOSED = "DISPOSED"


class LoadOutcome(str, Enum):
    LOADED = "LOADED"
    CREATED = "CREATED"
    LOAD_FAILED = "LOAD_FAILED"


@dataclass
class CategoryModelHandle:
    """Trainable state of one category's forecasting model.

    `lock` serializes training and inference on this handle; callers must
    hold it while touching `network` or `optimizer`.
    """

    category_id: int
    network: Optional[DemandForecastNetwork]
    optimizer: Optional[torch.optim.Optimizer]
    status: TrainingStatus = TrainingStatus.UNTRAINED
    load_outcome: LoadOutcome = LoadOutcome.CREATED
    last_trained_at: Optional[datetime] = None
    training_runs: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_disposed(self) -> bool:
        return self.status == TrainingStatus.DISPOSED

    def mark_trained(self) -> None:
        self.status = TrainingStatus.TRAINED
        self.last_trained_at = datetime.now(timezone.utc)
        self.training_runs += 1


@dataclass
class ModelLoadResult:
    handle: CategoryModelHandle
    outcome: LoadOutcome
    error: Optional[str] = None


class ModelStore(Protocol):
    def load(self, category_id: int) -> dict[str, Any]: ...

    def save(self, category_id: int, checkpoint: dict[str, Any]) -> None: ...


class FileModelStore:
    """Keeps one torch checkpoint file per category under `models_dir`."""

    def __init__(self, models_dir: Path) -> None:
        self._models_dir = Path(models_dir)

    def path_for(self, category_id: int) -> Path:
        return self._models_dir / f"demand_forecast_{category_id}.pt"

    def load(self, category_id: int) -> dict[str, Any]:
        path = self.path_for(category_id)
        if not path.exists():
            raise ModelNotFoundError(category_id)
        return torch.load(path, map_location="cpu", weights_only=False)

    def save(self, category_id: int, checkpoint: dict[str, Any]) -> None:
        self._models_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(category_id)
        # Write to a sibling temp file and swap it in so readers never see a partial file
        fd, tmp_name = tempfile.mkstemp(dir=self._models_dir, suffix=".tmp")
        os.close(fd)
        try:
            torch.save(checkpoint, tmp_name)
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)


class ModelRegistry:
    """Owns exactly one live CategoryModelHandle per category."""

    def __init__(self, store: ModelStore, settings: EngineSettings) -> None:
        self._store = store
        self._settings = settings
        self._handles: dict[int, CategoryModelHandle] = {}
        self._lock = threading.Lock()

    def _new_network(self) -> tuple[DemandForecastNetwork, torch.optim.Optimizer]:
        network = DemandForecastNetwork(
            hidden_units=tuple(self._settings.hidden_units),
            dropout_rate=self._settings.dropout_rate,
        )
        optimizer = torch.optim.Adam(network.parameters(), lr=self._settings.learning_rate)
        return network, optimizer

    def _fresh_handle(self, category_id: int, outcome: LoadOutcome) -> CategoryModelHandle:
        network, optimizer = self._new_network()
        return CategoryModelHandle(
            category_id=category_id,
            network=network,
            optimizer=optimizer,
            load_outcome=outcome,
        )

    def get(self, category_id: int) -> CategoryModelHandle:
        """Return the live handle for a category.

        The first request for a category restores its persisted snapshot, or
        creates an untrained network when the store has none.
        """

        with self._lock:
            handle = self._handles.get(category_id)
            if handle is None or handle.is_disposed:
                result = self._restore(category_id)
                handle = result.handle
                self._handles[category_id] = handle
                logger.info("Model for category %s: %s", category_id, result.outcome.value)
            return handle

    def _restore(self, category_id: int) -> ModelLoadResult:
        """Build a handle from the store without registering it. Never raises."""

        try:
            checkpoint = self._store.load(category_id)
            network, optimizer = self._new_network()
            network.load_state_dict(checkpoint["model_state_dict"])
            if "optimizer_state_dict" in checkpoint:
                optimizer.load_state_dict(checkpoint["optimizer_state_dict"])
            handle = CategoryModelHandle(
                category_id=category_id,
                network=network,
                optimizer=optimizer,
                status=TrainingStatus.TRAINED,
                load_outcome=LoadOutcome.LOADED,
                training_runs=int(checkpoint.get("training_runs", 0)),
            )
            result = ModelLoadResult(handle=handle, outcome=LoadOutcome.LOADED)
        except ModelNotFoundError:
            result = ModelLoadResult(
                handle=self._fresh_handle(category_id, LoadOutcome.CREATED),
                outcome=LoadOutcome.CREATED,
            )
        except Exception as exc:  # corrupt file, architecture mismatch, I/O error
            logger.warning("Failed to load model for category %s: %s", category_id, exc)
            result = ModelLoadResult(
                handle=self._fresh_handle(category_id, LoadOutcome.LOAD_FAILED),
                outcome=LoadOutcome.LOAD_FAILED,
                error=str(exc),
            )
        return result

    def load(self, category_id: int) -> ModelLoadResult:
        """Restore the persisted model of a category, or fall back to a fresh one.

        Never raises: store errors are reported through the LOAD_FAILED outcome.
        """

        result = self._restore(category_id)
        with self._lock:
            previous = self._handles.get(category_id)
            self._handles[category_id] = result.handle
        if previous is not None and previous is not result.handle:
            self._release(previous)

        logger.info("Model for category %s: %s", category_id, result.outcome.value)
        return result

    def prime(self, category_ids: Iterable[int]) -> dict[int, LoadOutcome]:
        return {category_id: self.load(category_id).outcome for category_id in category_ids}

    def persist(self, category_id: int) -> bool:
        """Snapshot the category's current weights, replacing any earlier snapshot."""

        with self._lock:
            handle = self._handles.get(category_id)
        if handle is None or handle.is_disposed:
            return False

        with handle.lock:
            if handle.network is None or handle.optimizer is None:
                return False
            checkpoint = {
                "model_state_dict": handle.network.state_dict(),
                "optimizer_state_dict": handle.optimizer.state_dict(),
                "hidden_units": tuple(self._settings.hidden_units),
                "training_runs": handle.training_runs,
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }
            self._store.save(category_id, checkpoint)

        logger.info("Model saved for category %s", category_id)
        return True

    @staticmethod
    def _release(handle: CategoryModelHandle) -> None:
        with handle.lock:
            handle.network = None
            handle.optimizer = None
            handle.status = TrainingStatus.DISPOSED

    def dispose(self, category_id: int) -> bool:
        with self._lock:
            handle = self._handles.pop(category_id, None)
        if handle is None:
            return False
        self._release(handle)
        logger.info("Model disposed for category %s", category_id)
        return True

    def dispose_all(self) -> int:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            self._release(handle)
        if handles:
            logger.info("Disposed %s category models", len(handles))
        return len(handles)

    def category_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._handles)

    def status(self) -> list[dict[str, Any]]:
        with self._lock:
            handles = sorted(self._handles.values(), key=lambda h: h.category_id)
        return [
            {
                "category_id": h.category_id,
                "training_status": h.status.value,
                "load_outcome": h.load_outcome.value,
                "last_trained_at": h.last_trained_at,
                "training_runs": h.training_runs,
            }
            for h in handles
        ]
