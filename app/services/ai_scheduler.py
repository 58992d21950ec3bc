from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from app.core.db import SessionLocal
from app.models.models import Alert, Forecast, Product
from app.schemas.anomaly import AnomalySeverity
from app.schemas.forecast import ForecastResult
from app.schemas.optimization import RiskLevel
from app.services.ai_engine import InventoryAIEngine
from app.services.ai_portfolio import list_category_ids, retrain_models, stock_difference_pct
from app.services.broadcaster import EventBroadcaster
from app.services.forecast_store import save_forecast


logger = logging.getLogger(__name__)


FORECAST_BATCH_SIZE = 10
MAX_OPTIMIZATION_ALERTS = 5
MAX_ANOMALY_ALERTS = 3
FORECAST_RETENTION_DAYS = 90
DISMISSED_ALERT_RETENTION_DAYS = 30


def scheduler_enabled() -> bool:
    raw = os.getenv("AI_SCHEDULER_ENABLED", "true").lower()
    return raw in ("1", "true", "yes", "on")


class AIScheduler:
    """Background scheduler for periodic forecasting, optimization and anomaly jobs.

    Controlled from FastAPI startup/shutdown events. Every job opens its own
    session and logs, rather than raises, its failures.
    """

    def __init__(
        self,
        engine: InventoryAIEngine,
        broadcaster: Optional[EventBroadcaster] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self._engine = engine
        self._broadcaster = broadcaster or EventBroadcaster()
        self._session_factory = session_factory
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Prime category models and start the cron jobs (idempotent)."""

        if not scheduler_enabled():
            logger.warning(
                "AIScheduler disabled via AI_SCHEDULER_ENABLED=%s",
                os.getenv("AI_SCHEDULER_ENABLED"),
            )
            return

        if self.running:
            logger.warning("AIScheduler already running, skipping start")
            return

        self.prime_models()

        scheduler = BackgroundScheduler(timezone="UTC")
        jobs = [
            ("ai_daily_forecasts", self.run_daily_forecasts, CronTrigger(hour=2, minute=0)),
            ("ai_optimization_checks", self.run_optimization_checks, CronTrigger(minute=0)),
            ("ai_anomaly_detection", self.run_anomaly_detection, CronTrigger(hour="*/4", minute=0)),
            (
                "ai_model_retraining",
                self.run_model_retraining,
                CronTrigger(day_of_week="sun", hour=3, minute=0),
            ),
            ("ai_cleanup", self.run_cleanup, CronTrigger(hour="*/6", minute=0)),
        ]
        for job_id, func, trigger in jobs:
            scheduler.add_job(
                func,
                trigger=trigger,
                id=job_id,
                replace_existing=True,
                max_instances=1,
            )

        scheduler.start()
        self._scheduler = scheduler
        logger.warning("AIScheduler started with %s jobs", len(jobs))

    def shutdown(self) -> None:
        if self._scheduler is not None:
            try:
                self._scheduler.shutdown(wait=False)
                logger.warning("AIScheduler stopped")
            finally:
                self._scheduler = None

    def prime_models(self) -> None:
        db = self._session_factory()
        try:
            outcomes = self._engine.registry.prime(list_category_ids(db))
            logger.info("Primed %s category models", len(outcomes))
        except Exception:
            logger.exception("Error while priming category models")
        finally:
            db.close()

    def run_daily_forecasts(self, today: Optional[date] = None) -> int:
        logger.warning("Daily forecast job started")
        db = self._session_factory()
        processed = 0
        try:
            products = db.query(Product).order_by(Product.id.asc()).all()
            for start in range(0, len(products), FORECAST_BATCH_SIZE):
                for product in products[start:start + FORECAST_BATCH_SIZE]:
                    try:
                        forecast = self._engine.forecaster.forecast(db, product.id, 30, today=today)
                        save_forecast(db, forecast)
                        self._check_forecast_alerts(db, product, forecast)
                        db.commit()
                        processed += 1
                    except Exception:
                        db.rollback()
                        logger.exception("Error forecasting for product %s", product.id)

            logger.warning("Daily forecasts completed: %s/%s products", processed, len(products))
            self._broadcaster.publish(
                "forecasts-updated",
                {
                    "processed_count": processed,
                    "total_products": len(products),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception:
            logger.exception("Error while running daily forecast job")
        finally:
            db.close()
        return processed

    @staticmethod
    def _check_forecast_alerts(db: Session, product: Product, forecast: ForecastResult) -> None:
        if not forecast.predictions:
            return
        average = sum(p.predicted_demand for p in forecast.predictions) / len(forecast.predictions)

        if average > product.current_stock * 2:
            db.add(
                Alert(
                    product_id=product.id,
                    alert_type="WARNING",
                    title="High Demand Forecast",
                    description=(
                        f"Forecasted demand ({round(average)}/day) significantly exceeds "
                        "current stock levels. Consider increasing inventory."
                    ),
                )
            )

        if forecast.accuracy < 0.6:
            db.add(
                Alert(
                    product_id=product.id,
                    alert_type="INFO",
                    title="Low Forecast Accuracy",
                    description=(
                        f"Forecast accuracy is {round(forecast.accuracy * 100)}%. "
                        "Historical data may need review."
                    ),
                )
            )

    def run_optimization_checks(self, today: Optional[date] = None) -> int:
        logger.warning("Optimization check job started")
        db = self._session_factory()
        recommendations: list[dict] = []
        try:
            products = (
                db.query(Product)
                .filter((Product.velocity == "HIGH") | (Product.risk_level == RiskLevel.HIGH.value))
                .order_by(Product.id.asc())
                .all()
            )
            for product in products:
                try:
                    optimization = self._engine.optimizer.optimize(db, product.id, today=today)
                except Exception:
                    logger.exception("Error optimizing product %s", product.id)
                    continue

                difference_pct = stock_difference_pct(product.current_stock, optimization.optimal_stock)
                if difference_pct > 20 or optimization.expected_savings > 100:
                    recommendations.append(
                        {
                            "product_id": product.id,
                            "product_name": product.name,
                            "optimization": optimization.model_dump(mode="json"),
                            "priority": "CRITICAL"
                            if optimization.risk_level == RiskLevel.HIGH
                            else "MEDIUM",
                        }
                    )

            if recommendations:
                for rec in recommendations[:MAX_OPTIMIZATION_ALERTS]:
                    optimization = rec["optimization"]
                    db.add(
                        Alert(
                            product_id=rec["product_id"],
                            alert_type="CRITICAL" if rec["priority"] == "CRITICAL" else "WARNING",
                            title="Stock Optimization Opportunity",
                            description=(
                                f"AI suggests adjusting stock from {optimization['current_stock']} "
                                f"to {optimization['optimal_stock']} units. "
                                f"Potential savings: ${optimization['expected_savings']}"
                            ),
                        )
                    )
                db.commit()
                self._broadcaster.publish(
                    "optimization-recommendations",
                    {
                        "recommendations": recommendations[:MAX_OPTIMIZATION_ALERTS],
                        "total_count": len(recommendations),
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    },
                )

            logger.warning(
                "Optimization checks completed: %s products analyzed, %s recommendations",
                len(products),
                len(recommendations),
            )
        except Exception:
            db.rollback()
            logger.exception("Error while running optimization check job")
        finally:
            db.close()
        return len(recommendations)

    def run_anomaly_detection(self, today: Optional[date] = None) -> int:
        logger.warning("Anomaly detection job started")
        today = today or date.today()
        cutoff = today - timedelta(days=3)
        db = self._session_factory()
        critical: list[dict] = []
        try:
            products = (
                db.query(Product)
                .filter(Product.velocity.in_(["HIGH", "MEDIUM"]))
                .order_by(Product.id.asc())
                .all()
            )
            total_anomalies = 0
            for product in products:
                try:
                    report = self._engine.anomalies.detect(db, product.id, today=today)
                except Exception:
                    logger.exception("Error detecting anomalies for product %s", product.id)
                    continue

                total_anomalies += len(report.anomalies)
                recent_high = [
                    a
                    for a in report.anomalies
                    if a.date > cutoff and a.severity == AnomalySeverity.HIGH
                ]
                if recent_high:
                    critical.append(
                        {
                            "product_id": product.id,
                            "product_name": product.name,
                            "anomalies": recent_high,
                        }
                    )

            if critical:
                for entry in critical[:MAX_ANOMALY_ALERTS]:
                    latest = entry["anomalies"][-1]
                    db.add(
                        Alert(
                            product_id=entry["product_id"],
                            alert_type="WARNING",
                            title="Demand Anomaly Detected",
                            description=(
                                f"Unusual demand pattern detected: {latest.actual_demand} vs "
                                f"expected {latest.expected_demand} ({latest.date.isoformat()})"
                            ),
                        )
                    )
                db.commit()
                self._broadcaster.publish(
                    "anomalies-detected",
                    {
                        "critical_anomalies": [
                            {
                                "product_id": entry["product_id"],
                                "product_name": entry["product_name"],
                                "anomalies": [a.model_dump(mode="json") for a in entry["anomalies"]],
                            }
                            for entry in critical[:MAX_ANOMALY_ALERTS]
                        ],
                        "total_anomalies": total_anomalies,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    },
                )

            logger.warning(
                "Anomaly detection completed: %s anomalies found, %s critical",
                total_anomalies,
                len(critical),
            )
        except Exception:
            db.rollback()
            logger.exception("Error while running anomaly detection job")
        finally:
            db.close()
        return len(critical)

    def run_model_retraining(self, today: Optional[date] = None) -> None:
        logger.warning("Model retraining job started")
        db = self._session_factory()
        try:
            result = retrain_models(self._engine, db, today=today)
            logger.warning("Model retraining completed: %s", result.message)
            self._broadcaster.publish(
                "models-retrained",
                {
                    "retrained_count": result.retrained,
                    "total_categories": result.total,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception:
            logger.exception("Error while running model retraining job")
        finally:
            db.close()

    def run_cleanup(self, now: Optional[datetime] = None) -> tuple[int, int]:
        now = now or datetime.now(timezone.utc)
        db = self._session_factory()
        deleted_forecasts = deleted_alerts = 0
        try:
            deleted_forecasts = (
                db.query(Forecast)
                .filter(Forecast.created_at < now - timedelta(days=FORECAST_RETENTION_DAYS))
                .delete(synchronize_session=False)
            )
            deleted_alerts = (
                db.query(Alert)
                .filter(
                    Alert.created_at < now - timedelta(days=DISMISSED_ALERT_RETENTION_DAYS),
                    Alert.is_dismissed.is_(True),
                )
                .delete(synchronize_session=False)
            )
            db.commit()
            logger.warning(
                "Cleanup completed: %s old forecasts, %s old alerts removed",
                deleted_forecasts,
                deleted_alerts,
            )
        except Exception:
            db.rollback()
            logger.exception("Error while running cleanup job")
        finally:
            db.close()
        return deleted_forecasts, deleted_alerts
