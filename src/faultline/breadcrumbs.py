import datetime
from typing import Any, Mapping

from typing_extensions import TypedDict

MAX_BREADCRUMBS = 20


class Breadcrumb(TypedDict):
    message: str
    type: str
    metadata: dict[str, Any]
    timestamp: datetime.datetime


def build_breadcrumb(
    message: Any, type: str = "default", metadata: Mapping[str, Any] | None = None
) -> Breadcrumb:
    return Breadcrumb(
        message=str(message),
        type=str(type),
        metadata=dict(metadata or {}),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )


def normalize_breadcrumb(crumb: Mapping[str, Any]) -> Breadcrumb:
    """
    Accepts breadcrumb-like mappings from host integrations (`data` instead of `metadata`, naive
    or string timestamps) and returns the canonical shape.
    """
    metadata = crumb.get("metadata", crumb.get("data")) or {}
    if not isinstance(metadata, Mapping):
        metadata = {"value": metadata}

    timestamp = crumb.get("timestamp")
    if isinstance(timestamp, str):
        try:
            timestamp = datetime.datetime.fromisoformat(timestamp)
        except ValueError:
            timestamp = None
    if isinstance(timestamp, datetime.datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
        else:
            timestamp = timestamp.astimezone(datetime.timezone.utc)
    else:
        timestamp = datetime.datetime.now(datetime.timezone.utc)

    return Breadcrumb(
        message=str(crumb.get("message") or ""),
        type=str(crumb.get("type") or "default"),
        metadata=dict(metadata),
        timestamp=timestamp,
    )


def breadcrumbs_for_sentry(crumbs: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for crumb in crumbs:
        c = normalize_breadcrumb(crumb)
        result.append(
            {
                "timestamp": c["timestamp"].isoformat(),
                "message": c["message"],
                "type": c["type"],
                "data": c["metadata"],
            }
        )
    return result
