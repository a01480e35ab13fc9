"""FastAPI REST API server for the reminder engine.

This module provides HTTP endpoints for managing recurring reminders,
scoped deletion and description-based matching. When the scheduler is
enabled it runs inside the API process, together with the dispatcher.

IMPORTANT: Pydantic automatically converts ISO datetime strings to datetime objects.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import background_worker
import crud
import database
import reminder_service
import schemas
from config import settings
from dispatcher import run_dispatcher
from errors import ConcurrentModification, NotFound, ValidationError
from events import EventChannel
from logger_config import setup_logger
from matcher import match_reminders

logger = setup_logger(__name__, 'api.log')

# DeletionResult.reason -> HTTP status for failed deletions
DELETION_FAILURE_STATUS = {
    "not_found": 404,
    "already_occurred": 409,
    "conflict": 409,
    "no_occurrence": 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the scheduler and dispatcher with the API when enabled."""
    tasks = []
    stop = asyncio.Event()
    if settings.SCHEDULER_ENABLED:
        channel = app.state.channel
        tasks.append(asyncio.create_task(run_dispatcher(channel, stop=stop)))
        tasks.append(asyncio.create_task(background_worker.worker_loop(channel)))
        logger.info("Scheduler and dispatcher started")
    yield
    stop.set()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


# Create FastAPI application
app = FastAPI(
    title="Recurring Reminder Engine API",
    description="Recurring reminders with scoped deletion and description-based matching",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)
app.state.channel = EventChannel()

# Allow your frontend origin
origins = [
    "http://localhost:1800",
    "http://localhost:3000",
]

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ConcurrentModification)
async def conflict_handler(request: Request, exc: ConcurrentModification):
    return JSONResponse(status_code=409, content={"detail": f"{exc}. Please retry."})


def current_time() -> datetime:
    """Reference instant for a request (overridable in tests)."""
    return datetime.now(timezone.utc)


def get_channel(request: Request) -> EventChannel:
    return request.app.state.channel


@app.get("/")
def root():
    """Root endpoint - service information"""
    return {
        "service": "Recurring Reminder Engine API",
        "version": "1.0.0",
        "status": "healthy",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "reminders": "/reminders"
        }
    }


@app.get("/health")
def health_check():
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "reminder_engine",
        "database": settings.DATABASE_URL.split("://")[0],
        "scheduler_enabled": settings.SCHEDULER_ENABLED
    }


@app.post("/reminders", response_model=schemas.ReminderResponse, status_code=201)
def create_reminder(
    reminder: schemas.ReminderCreateRequest,
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Create a new reminder.

    Request body example:
    ```json
    {
        "owner_id": "user-42",
        "channel_id": "chat-42",
        "title": "Take medicine",
        "type": "daily",
        "scheduledAt": "2026-10-19T09:00:00+05:30",
        "recurrencePattern": {"timeOfDay": "09:00", "timezone": "Asia/Kolkata"}
    }
    ```
    """
    return reminder_service.create_reminder(db, reminder.owner_id, reminder.channel_id, reminder, now)


@app.get("/reminders", response_model=List[schemas.ReminderResponse])
def list_reminders(
    owner_id: str = Query(..., description="Owning user id"),
    active_only: bool = Query(True, description="Only active reminders"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of results"),
    db: Session = Depends(database.get_db)
):
    """List an owner's reminders, soonest next execution first."""
    return crud.get_reminders_by_owner(db, owner_id, active_only, limit)


@app.get("/reminders/search", response_model=List[schemas.ReminderResponse])
def search_reminders(
    owner_id: str = Query(..., description="Owning user id"),
    query: str = Query(..., min_length=1, description="Search query"),
    db: Session = Depends(database.get_db)
):
    """Search an owner's reminders by title or description."""
    return crud.search_reminders(db, owner_id, query)


@app.get("/reminders/upcoming", response_model=List[schemas.ReminderResponse])
def upcoming_reminders(
    hours: int = Query(24, ge=1, le=24 * 31, description="Look-ahead window in hours"),
    owner_id: Optional[str] = Query(None, description="Restrict to one owner"),
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Active reminders firing within the next `hours` hours."""
    return crud.get_upcoming_reminders(db, now, hours, owner_id)


@app.get("/channels/{channel_id}/reminders", response_model=List[schemas.ReminderResponse])
def channel_reminders(
    channel_id: str,
    active_only: bool = Query(True, description="Only active reminders"),
    db: Session = Depends(database.get_db)
):
    """List the reminders delivered to a channel."""
    return crud.get_reminders_by_channel(db, channel_id, active_only)


@app.get("/reminders/{reminder_id}", response_model=schemas.ReminderResponse)
def get_reminder(reminder_id: str, db: Session = Depends(database.get_db)):
    """Get a specific reminder by ID."""
    reminder = crud.get_reminder(db, reminder_id)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@app.put("/reminders/{reminder_id}", response_model=schemas.ReminderResponse)
def update_reminder(
    reminder_id: str,
    updates: schemas.ReminderUpdate,
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Update an existing reminder.

    Request body example:
    ```json
    {
        "title": "Take vitamins",
        "scheduledAt": "2026-10-20T08:00:00+05:30"
    }
    ```

    Only provided fields will be updated. A new scheduledAt moves the next
    execution; the original scheduled instant is kept.
    """
    return reminder_service.update_reminder(db, reminder_id, updates, now)


@app.post("/reminders/{reminder_id}/pause", response_model=schemas.ReminderResponse)
def pause_reminder(reminder_id: str, db: Session = Depends(database.get_db)):
    return reminder_service.pause_reminder(db, reminder_id)


@app.post("/reminders/{reminder_id}/resume", response_model=schemas.ReminderResponse)
def resume_reminder(
    reminder_id: str,
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    return reminder_service.resume_reminder(db, reminder_id, now)


@app.delete("/reminders/{reminder_id}", response_model=schemas.DeletionResult)
def delete_reminder(
    reminder_id: str,
    scope: Optional[schemas.DeletionScope] = Body(None),
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Delete a reminder, one occurrence of it, or its tail.

    Request body (optional, defaults to the whole series):
    ```json
    {"type": "single", "target": "2026-10-21T09:00:00+05:30"}
    ```

    Deleting an occurrence that already happened is rejected with 409.
    """
    result = reminder_service.delete_reminder(db, reminder_id, scope, now)
    if not result.success and result.reason:
        raise HTTPException(status_code=DELETION_FAILURE_STATUS[result.reason], detail=result.message)
    return result


@app.post("/reminders/match", response_model=List[schemas.MatchResponse])
def match_for_deletion(
    request: schemas.SmartDeleteRequest,
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Rank an owner's active reminders against a deletion description."""
    candidates = crud.get_reminders_by_owner(db, request.owner_id, active_only=True)
    return [reminder_service.to_match_response(m) for m in match_reminders(candidates, request.criteria, now)]


@app.post("/reminders/smart-delete", response_model=schemas.SmartDeleteResponse)
def smart_delete(
    request: schemas.SmartDeleteRequest,
    db: Session = Depends(database.get_db),
    now: datetime = Depends(current_time)
):
    """Delete the reminder a description points at, or list the candidates."""
    return reminder_service.smart_delete(db, request.owner_id, request.criteria, now)


@app.post("/scheduler/trigger")
async def trigger_scheduler(
    channel: EventChannel = Depends(get_channel),
    now: datetime = Depends(current_time)
):
    """Run one scheduler tick immediately."""
    fired = await background_worker.trigger_due_reminders(channel, now)
    return {"fired": fired, "pending_notifications": channel.pending()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
