from fastapi import FastAPI

from app.api.v1.router import api_router
from app.core.logging_config import setup_logging
from app.services.ai_engine import get_engine, shutdown_engine
from app.services.ai_scheduler import AIScheduler, scheduler_enabled
from app.services.broadcaster import EventBroadcaster


setup_logging()

app = FastAPI(title="Inventory AI Engine")
app.include_router(api_router, prefix="/api/v1")
app.state.broadcaster = EventBroadcaster()


@app.on_event("startup")
def _startup_event() -> None:
    if not scheduler_enabled():
        return
    scheduler = AIScheduler(get_engine(), app.state.broadcaster)
    scheduler.start()
    app.state.ai_scheduler = scheduler


@app.on_event("shutdown")
def _shutdown_event() -> None:
    scheduler = getattr(app.state, "ai_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()
    shutdown_engine()


@app.get("/")
def root():
    return {"status": "ok", "message": "Inventory AI backend running"}
