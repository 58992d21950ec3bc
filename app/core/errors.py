from __future__ import annotations


class ProductNotFoundError(LookupError):
    """Raised when a request references a product id that does not exist."""

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class ModelNotFoundError(LookupError):
    """Raised by a model store when no snapshot exists for a category."""

    def __init__(self, category_id: int) -> None:
        super().__init__(f"No persisted model for category {category_id}")
        self.category_id = category_id


class NeuralForecastError(RuntimeError):
    """Base class for failures on the neural path.

    The forecast orchestrator catches these and falls back to the
    statistical forecaster.
    """


class InsufficientTrainingDataError(NeuralForecastError):
    def __init__(self, windows: int, required: int) -> None:
        super().__init__(f"{windows} training windows available, {required} required")
        self.windows = windows
        self.required = required


class TrainingTimeoutError(NeuralForecastError):
    def __init__(self, category_id: int, timeout_seconds: float) -> None:
        super().__init__(
            f"Training for category {category_id} exceeded {timeout_seconds:.1f}s"
        )
        self.category_id = category_id
        self.timeout_seconds = timeout_seconds


class TrainingFailedError(NeuralForecastError):
    """Numerical failure during training (non-finite loss, disposed model)."""
