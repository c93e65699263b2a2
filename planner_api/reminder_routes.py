"""
Reminder API Routes

CRUD, snooze and trigger endpoints plus a per-user event websocket.
Authentication happens upstream; the caller's user id arrives in the
X-User-Id header.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from config import DEFAULT_SNOOZE_MINUTES
from domains.reminders import NotFound, PersistenceFailure, ReminderDispatcher, ValidationError
from logger import logger

router = APIRouter(prefix="/reminders", tags=["Reminders"])


def get_dispatcher(request: Request) -> ReminderDispatcher:
    """Dispatcher created in the app lifespan."""
    return request.app.state.dispatcher


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity forwarded by the auth layer."""
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id


# ============================================================
# Pydantic Models
# ============================================================

class ReminderCreate(BaseModel):
    """Create a new reminder."""
    title: str
    message: Optional[str] = ""
    scheduled_at: datetime
    type: str = "PUSH"
    recurring: bool = False
    recurring_pattern: Optional[str] = None
    task_id: Optional[str] = None


class ReminderUpdate(BaseModel):
    """Update an existing reminder. Only the fields sent are changed."""
    title: Optional[str] = None
    message: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    type: Optional[str] = None
    recurring: Optional[bool] = None
    recurring_pattern: Optional[str] = None
    task_id: Optional[str] = None


class SnoozeRequest(BaseModel):
    """Snooze a reminder."""
    minutes: Optional[float] = Field(default=None, description="Defaults to 15")


def _raise_http(e: Exception, action: str):
    if isinstance(e, ValidationError):
        raise HTTPException(400, str(e))
    if isinstance(e, NotFound):
        raise HTTPException(404, "Reminder not found")
    logger.error(f"{action} error: {e}")
    if isinstance(e, PersistenceFailure):
        raise HTTPException(500, f"Failed to {action.lower()}")
    raise HTTPException(500, f"Failed to {action.lower()}: {e}")


# ============================================================
# Endpoints
# ============================================================

@router.get("")
async def list_reminders(
    triggered: Optional[bool] = Query(default=None),
    type: Optional[str] = Query(default=None, description="PUSH, EMAIL or SMS"),
    upcoming: bool = Query(default=False, description="Only future, non-triggered reminders"),
    task_id: Optional[str] = Query(default=None),
    sort_by: str = Query(default="scheduled_at"),
    sort_order: str = Query(default="asc"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Get the caller's reminders with filtering and pagination."""
    try:
        result = await dispatcher.list_reminders(
            user_id,
            triggered=triggered,
            reminder_type=type,
            upcoming=upcoming,
            task_id=task_id,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except Exception as e:
        _raise_http(e, "Fetch reminders")

    return {
        "reminders": [r.to_dict() for r in result["reminders"]],
        "pagination": result["pagination"],
    }


@router.get("/{reminder_id}")
async def get_reminder(
    reminder_id: str,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Get a specific reminder."""
    try:
        reminder = await dispatcher.get(user_id, reminder_id)
    except Exception as e:
        _raise_http(e, "Fetch reminder")
    return {"reminder": reminder.to_dict()}


@router.post("", status_code=201)
async def create_reminder(
    body: ReminderCreate,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Create a reminder. Past instants fire immediately."""
    try:
        reminder = await dispatcher.create(user_id, body.model_dump())
    except Exception as e:
        _raise_http(e, "Create reminder")
    return {"message": "Reminder created successfully", "reminder": reminder.to_dict()}


@router.put("/{reminder_id}")
async def update_reminder(
    reminder_id: str,
    body: ReminderUpdate,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Update a reminder; a new scheduled_at reschedules it."""
    try:
        reminder = await dispatcher.update(user_id, reminder_id, body.model_dump(exclude_unset=True))
    except Exception as e:
        _raise_http(e, "Update reminder")
    if reminder is None:
        raise HTTPException(404, "Reminder not found")
    return {"message": "Reminder updated successfully", "reminder": reminder.to_dict()}


@router.delete("/{reminder_id}")
async def delete_reminder(
    reminder_id: str,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Delete a reminder and cancel its timer."""
    try:
        await dispatcher.delete(user_id, reminder_id)
    except Exception as e:
        _raise_http(e, "Delete reminder")
    return {"message": "Reminder deleted successfully"}


@router.post("/{reminder_id}/snooze")
async def snooze_reminder(
    reminder_id: str,
    body: Optional[SnoozeRequest] = None,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Snooze a reminder for `minutes` (default 15)."""
    minutes = body.minutes if body else None
    try:
        reminder = await dispatcher.snooze(user_id, reminder_id, minutes)
    except Exception as e:
        _raise_http(e, "Snooze reminder")
    if reminder is None:
        raise HTTPException(404, "Reminder not found")

    snoozed_for = minutes if minutes is not None else DEFAULT_SNOOZE_MINUTES
    return {"message": f"Reminder snoozed for {snoozed_for:g} minutes", "reminder": reminder.to_dict()}


@router.post("/{reminder_id}/trigger")
async def mark_reminder_triggered(
    reminder_id: str,
    user_id: str = Depends(get_user_id),
    dispatcher: ReminderDispatcher = Depends(get_dispatcher),
):
    """Mark a reminder as triggered (delivery confirmed by the client)."""
    try:
        reminder = await dispatcher.mark_triggered(user_id, reminder_id)
    except Exception as e:
        _raise_http(e, "Mark reminder triggered")
    if reminder is None:
        raise HTTPException(404, "Reminder not found")
    return {"message": "Reminder marked as triggered", "reminder": reminder.to_dict()}


@router.websocket("/ws")
async def reminder_events(websocket: WebSocket):
    """Stream the caller's reminder events as {"event": ..., "data": ...} messages."""
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return

    dispatcher: ReminderDispatcher = websocket.app.state.dispatcher
    await websocket.accept()

    async def forward(event: str, payload: dict):
        await websocket.send_json({"event": event, "data": payload})

    unsubscribe = dispatcher.events.subscribe(user_id, forward)
    logger.info(f"Reminder event stream opened for user {user_id}")
    try:
        while True:
            # Client messages are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        logger.info(f"Reminder event stream closed for user {user_id}")
