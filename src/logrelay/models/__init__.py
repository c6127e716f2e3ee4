"""
Pydantic data models package.

Contains all data validation models for:
- Log records read from the source
- Webhook delivery payloads
- The persisted checkpoint
- API responses
"""

from .log_record import Checkpoint, DeliveryPayload, LogDetails, LogRecord
from .responses import ErrorResponse, RunResponse

__all__ = [
    # Pipeline models
    "Checkpoint",
    "DeliveryPayload",
    "LogDetails",
    "LogRecord",

    # API models
    "ErrorResponse",
    "RunResponse",
]
