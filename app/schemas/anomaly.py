from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


class AnomalySeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


SEVERITY_RANK: dict[AnomalySeverity, int] = {
    AnomalySeverity.HIGH: 3,
    AnomalySeverity.MEDIUM: 2,
    AnomalySeverity.LOW: 1,
}


class AnomalyRecord(BaseModel):
    date: date
    actual_demand: int
    expected_demand: int
    anomaly_score: float = Field(ge=0)
    severity: AnomalySeverity


class AnomalyReport(BaseModel):
    product_id: int
    anomalies: list[AnomalyRecord]
