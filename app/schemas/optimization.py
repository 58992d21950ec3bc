from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class OptimizationResult(BaseModel):
    product_id: int
    current_stock: int
    optimal_stock: int = Field(ge=0)
    reorder_point: int = Field(ge=0)
    expected_savings: float = Field(ge=0)
    risk_level: RiskLevel

    eoq: float = Field(0.0, ge=0)
    safety_stock: float = Field(0.0, ge=0)
    stockout_risk: float = Field(0.0, ge=0, le=1)
    explanation: str | None = None
