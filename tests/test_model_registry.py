from __future__ import annotations

import pytest
import torch

from app.core.config import EngineSettings
from app.core.errors import ModelNotFoundError
from app.services.model_registry import (
    FileModelStore,
    LoadOutcome,
    ModelRegistry,
    TrainingStatus,
)


@pytest.fixture
def store(tmp_path) -> FileModelStore:
    return FileModelStore(tmp_path / "models")


@pytest.fixture
def registry(store) -> ModelRegistry:
    return ModelRegistry(store, EngineSettings())


def test_get_returns_one_handle_per_category(registry):
    first = registry.get(1)
    again = registry.get(1)
    other = registry.get(2)

    assert first is again
    assert first is not other
    assert first.status == TrainingStatus.UNTRAINED
    assert registry.category_ids() == [1, 2]


def test_network_shape_matches_feature_layout(registry):
    handle = registry.get(1)
    output = handle.network(torch.zeros(4, 10))

    assert output.shape == (4, 1)


def test_load_without_snapshot_creates_fresh_model(registry):
    result = registry.load(7)

    assert result.outcome == LoadOutcome.CREATED
    assert result.handle.status == TrainingStatus.UNTRAINED
    assert registry.get(7) is result.handle


def test_persist_and_load_round_trip(store):
    settings = EngineSettings()
    writer = ModelRegistry(store, settings)
    handle = writer.get(3)
    handle.mark_trained()

    assert writer.persist(3) is True
    assert store.path_for(3).exists()
    # Overwriting an existing snapshot is fine
    assert writer.persist(3) is True

    reader = ModelRegistry(store, settings)
    result = reader.load(3)

    assert result.outcome == LoadOutcome.LOADED
    assert result.handle.status == TrainingStatus.TRAINED
    assert result.handle.training_runs == 1
    saved = handle.network.state_dict()
    for name, tensor in result.handle.network.state_dict().items():
        assert torch.equal(tensor, saved[name])


def test_corrupt_snapshot_is_reported_not_raised(store, registry):
    path = store.path_for(5)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"not a torch checkpoint")

    result = registry.load(5)

    assert result.outcome == LoadOutcome.LOAD_FAILED
    assert result.error
    assert result.handle.network is not None


def test_store_load_missing_raises(store):
    with pytest.raises(ModelNotFoundError):
        store.load(42)


def test_persist_without_live_handle(registry):
    assert registry.persist(99) is False


def test_dispose_releases_state_and_get_recreates(registry):
    handle = registry.get(1)

    assert registry.dispose(1) is True
    assert handle.is_disposed
    assert handle.network is None
    assert handle.optimizer is None

    replacement = registry.get(1)
    assert replacement is not handle
    assert not replacement.is_disposed
    assert registry.dispose(12345) is False


def test_load_replaces_and_disposes_previous_handle(registry):
    previous = registry.get(4)
    result = registry.load(4)

    assert result.handle is not previous
    assert previous.is_disposed


def test_dispose_all_and_status(registry):
    registry.get(1)
    registry.load(2)

    rows = registry.status()
    assert [row["category_id"] for row in rows] == [1, 2]
    assert rows[1]["load_outcome"] == "CREATED"

    assert registry.dispose_all() == 2
    assert registry.status() == []


def test_get_restores_persisted_snapshot_on_first_use(store):
    settings = EngineSettings()
    writer = ModelRegistry(store, settings)
    writer.get(6).mark_trained()
    assert writer.persist(6) is True

    restarted = ModelRegistry(store, settings)
    handle = restarted.get(6)

    assert handle.status == TrainingStatus.TRAINED
    assert handle.load_outcome == LoadOutcome.LOADED
    assert restarted.get(6) is handle


def test_get_reports_corrupt_snapshot_as_load_failure(store, registry):
    path = store.path_for(8)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"garbage")

    handle = registry.get(8)

    assert handle.load_outcome == LoadOutcome.LOAD_FAILED
    assert handle.status == TrainingStatus.UNTRAINED
