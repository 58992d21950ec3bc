from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import EngineSettings
from app.schemas.anomaly import AnomalyRecord, AnomalyReport, AnomalySeverity
from app.schemas.demand import DemandObservation
from app.services.demand_series import build_demand_series


logger = logging.getLogger(__name__)


BASELINE_DAYS = 7


def classify_severity(z_score: float, settings: EngineSettings) -> AnomalySeverity:
    if z_score > settings.anomaly_z_high:
        return AnomalySeverity.HIGH
    if z_score > settings.anomaly_z_medium:
        return AnomalySeverity.MEDIUM
    return AnomalySeverity.LOW


def detect_anomalies(
    series: Sequence[DemandObservation],
    settings: EngineSettings,
) -> list[AnomalyRecord]:
    """Flag days deviating from the trailing 7-day mean by more than the z threshold.

    The deviation is scaled by the standard deviation of the whole series.
    Short series yield no anomalies.
    """

    if len(series) < settings.anomaly_min_observations:
        return []

    demands = np.asarray([obs.quantity for obs in series], dtype=float)
    std = float(demands.std())

    anomalies: list[AnomalyRecord] = []
    for i in range(BASELINE_DAYS, len(series)):
        recent = float(demands[i - BASELINE_DAYS:i].mean())
        z_score = 0.0 if std == 0 else abs(demands[i] - recent) / std
        if z_score <= settings.anomaly_z_threshold:
            continue
        anomalies.append(
            AnomalyRecord(
                date=series[i].date,
                actual_demand=int(demands[i]),
                expected_demand=round(recent),
                anomaly_score=round(z_score, 2),
                severity=classify_severity(z_score, settings),
            )
        )
    return anomalies


class AnomalyDetector:
    def __init__(self, settings: EngineSettings) -> None:
        self._settings = settings

    def detect(
        self,
        db: Session,
        product_id: int,
        today: Optional[date] = None,
    ) -> AnomalyReport:
        series = build_demand_series(db, product_id, self._settings.anomaly_window_days, today)
        anomalies = detect_anomalies(series, self._settings)
        if anomalies:
            logger.info("Detected %s demand anomalies for product %s", len(anomalies), product_id)
        return AnomalyReport(product_id=product_id, anomalies=anomalies)
