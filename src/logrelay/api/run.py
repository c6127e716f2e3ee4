"""
Run trigger endpoints.

GET / and POST / both start one relay run.
"""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, HTTPException, Request, status

from ..core.relay_service import RelayService
from ..models.responses import ErrorResponse, RunResponse

logger = structlog.get_logger(__name__)

router = APIRouter()

RUN_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing settings"},
    500: {"model": ErrorResponse, "description": "Run failed or checkpoint store error"},
}


def get_relay_service(request: Request) -> RelayService:
    """Relay service from app state."""
    relay_service = getattr(request.app.state, 'relay_service', None)
    if relay_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay service not available"
        )
    return relay_service


async def _run(request: Request) -> RunResponse:
    relay_service = get_relay_service(request)

    logger.info("Run requested", method=request.method)
    result = await relay_service.trigger_run()

    return RunResponse(
        start_cursor=result.start_cursor,
        cursor=result.cursor,
        records_fetched=result.records_fetched,
        events_delivered=result.events_delivered,
        duration_seconds=round(result.duration_seconds, 3),
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/",
    response_model=RunResponse,
    responses=RUN_RESPONSES,
    summary="Run the log relay",
)
async def run_get(request: Request) -> RunResponse:
    """Start one run (fetch-current-state style trigger)."""
    return await _run(request)


@router.post(
    "/",
    response_model=RunResponse,
    responses=RUN_RESPONSES,
    summary="Run the log relay",
    description="""
    Start one relay run.

    **Run steps:**
    1. Load the checkpoint
    2. Fetch every log page after the cursor
    3. Keep sapi/fapi events, optionally only for allow-listed endpoints
    4. Obtain the webhook bearer token (if configured)
    5. POST each event to the webhook
    6. Commit the new cursor, or restore the previous one on failure
    """,
)
async def run_post(request: Request) -> RunResponse:
    """Start one run (trigger style)."""
    return await _run(request)
