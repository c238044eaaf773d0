"""Pydantic models for sms-store.

Two shapes live here:

- `SmsEvent`: the JSON payload produced to Kafka by the SMS sender.
  Field names match the wire format (camelCase).
- `SmsRecord`: what we store in MongoDB and return over HTTP (snake_case).

`SmsEvent.to_record()` is the only way one becomes the other. It never fails:
a malformed `createdAt` must not block storing an otherwise valid message,
so the current UTC time is used instead.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_serializer

logger = structlog.get_logger(__name__)

# Accepted `createdAt` layouts, tried in order. The sender emits a local
# date-time with no offset ("2025-12-25T10:30:00"), sometimes with fractional
# seconds; the last two accept RFC 3339 with "Z" or a numeric offset.
TIMESTAMP_LAYOUTS: tuple[str, ...] = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
)

# strptime's %f takes at most 6 digits; Java can emit up to 9 (nanoseconds).
FRACTION_OVERFLOW_RE = re.compile(r"(\.\d{6})\d+")


def parse_created_at(value: str) -> datetime | None:
    """Parse a sender timestamp and label it UTC.

    The first layout that matches wins. The wall-clock fields are kept as
    written and tagged UTC; an explicit offset is not applied.

    Fractions finer than microseconds are truncated.

    Returns None when no layout matches.
    """
    if isinstance(value, str):
        value = FRACTION_OVERFLOW_RE.sub(r"\1", value)

    for layout in TIMESTAMP_LAYOUTS:
        try:
            parsed = datetime.strptime(value, layout)
        except (TypeError, ValueError):
            continue
        return parsed.replace(tzinfo=timezone.utc)
    return None


class SmsEvent(BaseModel):
    """Kafka event schema for an SMS send attempt.

    Fields:
        eventId: Producer-side identifier of the event.
        userId: Owner of the message (phone-number-shaped). Required.
        phoneNumber: Destination number.
        message: Message body.
        status: Free-form delivery status, e.g. "DELIVERED" or "FAILED".
        createdAt: Loosely formatted timestamp string, see TIMESTAMP_LAYOUTS.

    Only `userId` is mandatory; a record without an owner could never be
    queried.
    """

    model_config = ConfigDict(extra="ignore")

    eventId: str = ""
    userId: str = Field(min_length=1)
    phoneNumber: str = ""
    message: str = ""
    status: str = ""
    createdAt: str = ""

    def to_record(self) -> SmsRecord:
        """Convert this event into the record we persist."""
        created_at = parse_created_at(self.createdAt)
        if created_at is None:
            created_at = datetime.now(timezone.utc)
            logger.warning(
                "Unparseable createdAt, using current time",
                event_id=self.eventId,
                created_at=self.createdAt,
            )

        return SmsRecord(
            user_id=self.userId,
            phone_number=self.phoneNumber,
            message=self.message,
            status=self.status,
            created_at=created_at,
        )


class SmsRecord(BaseModel):
    """A stored SMS record.

    `id` is the string form of the MongoDB ObjectId. It is None until the
    record has been inserted.
    """

    id: str | None = None
    user_id: str = Field(min_length=1)
    phone_number: str = ""
    message: str = ""
    status: str = ""
    created_at: datetime

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        # RFC 3339 with a "Z" suffix, e.g. 2025-12-25T10:30:00Z
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_document(self) -> dict[str, Any]:
        """Return the MongoDB document for this record (without `_id`)."""
        return {
            "user_id": self.user_id,
            "phone_number": self.phone_number,
            "message": self.message,
            "status": self.status,
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> SmsRecord:
        """Build a record from a MongoDB document.

        pymongo returns naive datetimes (already UTC) unless the client was
        created with tz_aware=True, so naive values are labeled UTC here.
        """
        created_at = doc["created_at"]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            user_id=doc["user_id"],
            phone_number=doc.get("phone_number", ""),
            message=doc.get("message", ""),
            status=doc.get("status", ""),
            created_at=created_at,
        )
