"""
Log record, delivery payload and checkpoint models.

- LogRecord mirrors one entry of the management API log feed (`_id` on the wire)
- DeliveryPayload is the projection POSTed to the webhook
- Checkpoint is the single persisted resume record
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogDetails(BaseModel):
    """Request/response details attached to API log events."""

    request: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Request made to the API (method, path, body, ...)"
    )
    response: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Response returned by the API"
    )

    model_config = ConfigDict(extra="allow", frozen=True)

    @field_validator("request", "response", mode="before")
    def drop_non_object(cls, v: Any) -> Optional[Dict[str, Any]]:
        """Non-API events may carry any JSON here; only objects are kept."""
        return v if isinstance(v, dict) else None

    @property
    def request_path(self) -> Optional[str]:
        if not self.request:
            return None
        path = self.request.get("path")
        return path if isinstance(path, str) else None


class LogRecord(BaseModel):
    """
    Raw log event as returned by the source.

    Immutable once fetched. The id of the last record in a page is the
    cursor for the next page.
    """

    id: str = Field(alias="_id", description="Log record identifier, used as the resume cursor")
    date: Optional[str] = Field(default=None, description="Event timestamp as sent by the source")
    type: Optional[str] = Field(default=None, description="Event type code, e.g. sapi, fapi")
    details: LogDetails = Field(default_factory=LogDetails)

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    @field_validator("date", "type", mode="before")
    def drop_non_string(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("details", mode="before")
    def default_details(cls, v: Any) -> Any:
        # Only the id is required; anything else unusable reads as empty details
        return v if isinstance(v, (dict, LogDetails)) else {}


class DeliveryPayload(BaseModel):
    """Body POSTed to the webhook for one filtered record."""

    date: Optional[str] = Field(default=None, description="Event timestamp")
    request: Optional[Dict[str, Any]] = Field(default=None, description="API request details")
    response: Optional[Dict[str, Any]] = Field(default=None, description="API response details")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_record(cls, record: LogRecord) -> "DeliveryPayload":
        return cls(
            date=record.date,
            request=record.details.request,
            response=record.details.response,
        )


class Checkpoint(BaseModel):
    """Last processed position in the log source plus run summary."""

    cursor: Optional[str] = Field(default=None, description="Id of the last processed record, None for start")
    last_run_event_count: int = Field(default=0, ge=0, description="Events delivered by the run that wrote this")
