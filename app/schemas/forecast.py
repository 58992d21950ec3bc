from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


class ModelType(str, Enum):
    STATISTICAL = "STATISTICAL"
    NEURAL_NETWORK = "NEURAL_NETWORK"


class ForecastPoint(BaseModel):
    date: date
    predicted_demand: float = Field(ge=0)
    confidence: float = Field(ge=0, le=1)
    upper_bound: float = Field(ge=0)
    lower_bound: float = Field(ge=0)


class ForecastResult(BaseModel):
    product_id: int
    predictions: list[ForecastPoint]
    accuracy: float = Field(ge=0, le=1)
    model_type: ModelType


class ForecastResponse(BaseModel):
    data: ForecastResult
    generated_at: str
    forecast_days: int


class ForecastAccuracy(BaseModel):
    product_id: int
    accuracy: float
    mape: float
    valid_comparisons: int
    total_forecasts: int
