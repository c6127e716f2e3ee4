"""
Event filtering and projection.

Narrows raw log records to the API event types worth forwarding, optionally
restricts them to an endpoint allow-list, and projects each survivor to the
payload POSTed to the webhook. Pure functions, no I/O.
"""

from typing import AbstractSet, Iterable, List, Sequence

from ..models.log_record import DeliveryPayload, LogRecord

# sapi: successful management API operation, fapi: failed one
DEFAULT_LOG_TYPES = frozenset({"sapi", "fapi"})

API_PREFIX = "/api/v2/"


def parse_endpoint_allow_list(raw: str) -> List[str]:
    """
    Parse a comma-separated endpoint allow-list.

    "users, clients" -> ["users", "clients"]; "" -> []
    """
    if not raw:
        return []
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def path_matches(path: str, endpoint_allow_list: Sequence[str]) -> bool:
    """True if path is /api/v2/{entry} or below it for some entry."""
    for entry in endpoint_allow_list:
        endpoint = f"{API_PREFIX}{entry}"
        if path == endpoint or path.startswith(endpoint + "/"):
            return True
    return False


def record_matches(
    record: LogRecord,
    type_allow_list: AbstractSet[str],
    endpoint_allow_list: Sequence[str],
) -> bool:
    if record.type not in type_allow_list:
        return False

    if not endpoint_allow_list:
        return True

    path = record.details.request_path
    return path is not None and path_matches(path, endpoint_allow_list)


def filter_records(
    records: Iterable[LogRecord],
    type_allow_list: AbstractSet[str] = DEFAULT_LOG_TYPES,
    endpoint_allow_list: Sequence[str] = (),
) -> List[DeliveryPayload]:
    """
    Filter records and project them to delivery payloads.

    Args:
        records: Records in fetch order
        type_allow_list: Log types to keep
        endpoint_allow_list: Endpoint names under /api/v2/; empty keeps every path

    Returns:
        Payloads in input order
    """
    return [
        DeliveryPayload.from_record(record)
        for record in records
        if record_matches(record, type_allow_list, endpoint_allow_list)
    ]
