import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from status_relay import message_store, timeline_store
from status_relay.config import settings
from status_relay.storage import init_db, check_db_health, get_db
from status_relay.listeners import ListenerHub
from status_relay.logging_utils import setup_logging, RequestLoggingMiddleware, log_ingest_data
from status_relay.utils import verify_hmac_signature
from status_relay.metrics import record_event_outcome, get_metrics, get_metrics_content_type
from status_relay.schemas import (
    ErrorResponse,
    EventsAcceptedResponse,
    HealthResponse,
    MessageTimelineResponse,
    TimelineEntryResponse,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - Startup: create tables, start both stream listeners
    - Shutdown: stop listeners, letting in-flight events finish
    """
    init_db()
    hub = ListenerHub()
    hub.start()
    app.state.listeners = hub
    yield
    await hub.stop()


app = FastAPI(
    title="Status Relay",
    description="Reconciles transport delivery events into per-recipient timelines",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if WEBHOOK_SECRET is set and the
    database is reachable with both tables present; otherwise 503.
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WEBHOOK_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Transport Event Ingress
# =============================================================================

async def _ingest(request: Request, instance_id: str, stream: str, x_signature: str | None) -> EventsAcceptedResponse:
    """
    Verify, decode and queue a batch of raw transport events.

    Envelope validation happens in the listener, so a malformed entry is
    skipped there without failing the rest of the batch.
    """
    raw_body = await request.body()

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error(f"Invalid or missing X-Signature for {stream} events of {instance_id}")
        record_event_outcome(stream, "invalid_signature")
        log_ingest_data(request, instance_id, stream, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        log_ingest_data(request, instance_id, stream, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON: {str(e)}"
        )

    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        log_ingest_data(request, instance_id, stream, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Body must be an event object or an array of events"
        )

    listener = request.app.state.listeners.listener_for(stream)
    # A batch is queued whole or not at all; nothing awaits between check and submit
    if not listener.has_room(len(payload)):
        logger.error(f"{stream} queue full, {len(payload)} events rejected for {instance_id}")
        record_event_outcome(stream, "queue_full")
        log_ingest_data(request, instance_id, stream, result="queue_full")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="event queue full"
        )

    queued = 0
    for raw in payload:
        listener.submit(instance_id, raw)
        queued += 1
        record_event_outcome(stream, "accepted")

    logger.info(f"Queued {queued} {stream} events for {instance_id}")
    log_ingest_data(request, instance_id, stream, queued=queued, result="accepted")
    return EventsAcceptedResponse(queued=queued)


@app.post(
    "/instances/{instance_id}/events/status",
    response_model=EventsAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Body is not JSON or not an event list"},
        503: {"model": ErrorResponse, "description": "Event queue full"},
    }
)
async def status_events(
    instance_id: str,
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
) -> EventsAcceptedResponse:
    """
    Queue status-update events: `{"key": {"id": ...}, "update": {"status": <code>}}`.
    """
    return await _ingest(request, instance_id, "status", x_signature)


@app.post(
    "/instances/{instance_id}/events/receipts",
    response_model=EventsAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Body is not JSON or not an event list"},
        503: {"model": ErrorResponse, "description": "Event queue full"},
    }
)
async def receipt_events(
    instance_id: str,
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
) -> EventsAcceptedResponse:
    """
    Queue receipt events: `{"key": {"id": ...}, "receipt": {"type": "read"|"delivered"}}`.
    """
    return await _ingest(request, instance_id, "receipts", x_signature)


# =============================================================================
# Timeline Route
# =============================================================================

@app.get(
    "/instances/{instance_id}/messages/{external_id}/timeline",
    response_model=MessageTimelineResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown send"}},
)
async def message_timeline(
    instance_id: str,
    external_id: str,
    db: Session = Depends(get_db)
) -> MessageTimelineResponse:
    """
    Latest status and per-recipient milestones of one send, joined on
    (instance_id, external_id). Read-only.
    """
    message = message_store.find_by_external_id(db, instance_id, external_id)
    entries = timeline_store.list_for_external_id(db, instance_id, external_id)

    if message is None and not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="message not found"
        )

    return MessageTimelineResponse(
        instance_id=instance_id,
        external_id=external_id,
        message_id=message.id if message else None,
        status=message.status if message else None,
        created_at=message.created_at if message else None,
        timeline=[TimelineEntryResponse.model_validate(entry) for entry in entries],
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
