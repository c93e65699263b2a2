"""Planner API - reminder scheduling service.

Run with: uvicorn planner_api.main:app --port 8100
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import API_HOST, API_PORT, PLANNER_DB, REMINDER_POLL_SECONDS, REMINDER_WEBHOOK_URL
from domains.reminders import (
    ReminderDispatcher,
    ReminderEvents,
    ReminderStore,
    ServerJobRegistry,
    TaskLookup,
    WebhookNotificationSink,
    reload_reminders_on_startup,
    start_reminder_polling,
)
from logger import logger
from planner_api.reminder_routes import router as reminder_router


def build_dispatcher(
    scheduler: AsyncIOScheduler,
    db_path: str = PLANNER_DB,
    webhook_url: Optional[str] = REMINDER_WEBHOOK_URL,
) -> ReminderDispatcher:
    """Wire one dispatcher per process around a shared APScheduler."""
    store = ReminderStore(db_path)
    return ReminderDispatcher(
        store=store,
        tasks=TaskLookup(store),
        registry=ServerJobRegistry(scheduler),
        events=ReminderEvents(),
        notifier=WebhookNotificationSink(webhook_url, scheduler),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    dispatcher = build_dispatcher(scheduler, PLANNER_DB, REMINDER_WEBHOOK_URL)
    app.state.scheduler = scheduler
    app.state.dispatcher = dispatcher

    scheduler.start()
    reminder_count = await reload_reminders_on_startup(dispatcher)
    if reminder_count > 0:
        logger.info(f"Reloaded {reminder_count} pending reminders")
    start_reminder_polling(scheduler, dispatcher, REMINDER_POLL_SECONDS)
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")

    yield

    scheduler.shutdown(wait=False)
    dispatcher.store.close()
    logger.info("Planner API stopped")


app = FastAPI(
    title="Planner API",
    description="Reminder scheduling and triggering for the planner",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(reminder_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies as 400 with the first problem, like the domain errors."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", []) if part != "body")
        detail = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        detail = "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


# ============================================================
# Health Check
# ============================================================

@app.get("/")
async def root():
    """Service banner."""
    return {
        "status": "ok",
        "service": "Planner API",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health")
async def health(request: Request):
    """Health check with reminder trigger counters."""
    dispatcher: ReminderDispatcher = request.app.state.dispatcher
    return {"status": "ok", "reminders": dispatcher.stats()}


def run():
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run()
