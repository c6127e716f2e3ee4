"""
API response models.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RunResponse(BaseModel):
    """
    Response from the run endpoint.

    200 OK once the run committed its checkpoint.
    """

    status: str = Field(default="ok", description="Run status")
    start_cursor: Optional[str] = Field(default=None, description="Cursor the run resumed from")
    cursor: Optional[str] = Field(default=None, description="Cursor committed by the run")
    records_fetched: int = Field(description="Log records read from the source")
    events_delivered: int = Field(description="Events POSTed to the webhook")
    duration_seconds: float = Field(description="Wall-clock run duration")
    timestamp: datetime = Field(description="Completion timestamp")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
