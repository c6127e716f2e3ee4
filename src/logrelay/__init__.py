"""
LogRelay - Management API audit logs → webhook

A FastAPI service that incrementally pulls audit-log events from a
cursor-paginated management API, keeps the API events worth forwarding,
and POSTs each one to a webhook, resuming from a persisted checkpoint.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
