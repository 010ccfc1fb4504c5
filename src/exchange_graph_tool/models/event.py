"""Calendar event data model, decoded from Graph event resources."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.date_utils import ensure_utc, format_graph_datetime, parse_graph_datetime

# Separator between the correlation prefix and the per-event suffix
TAG_SEPARATOR = "_"

# Fields requested when listing events
EVENT_SELECT_FIELDS = ("id", "iCalUId", "transactionId", "subject", "start", "end")


def make_transaction_id(prefix: str, suffix: str) -> str:
    """Build the correlation tag stamped on one created event."""
    return f"{prefix}{TAG_SEPARATOR}{suffix}"


def matches_correlation_prefix(tag: Optional[str], prefix: Optional[str]) -> bool:
    """
    Check a correlation tag against a prefix.

    Tags are written as ``prefix_suffix``, so "abc" matches "abc_1" but not
    "abcd_1" or "xabc_1". An empty or missing prefix matches everything,
    including untagged events.
    """
    if not prefix:
        return True
    if tag is None:
        return False
    if tag == prefix:
        return True
    boundary = prefix if prefix.endswith(TAG_SEPARATOR) else prefix + TAG_SEPARATOR
    return tag.startswith(boundary)


class DateTimeTimeZone(BaseModel):
    """Graph dateTimeTimeZone resource."""

    date_time: str = Field(alias="dateTime")
    time_zone: str = Field(default="UTC", alias="timeZone")

    model_config = ConfigDict(populate_by_name=True)


class CalendarEvent(BaseModel):
    """One calendar item in a mailbox."""

    # Identifiers
    id: Optional[str] = None  # Assigned by Exchange
    ical_uid: Optional[str] = Field(default=None, alias="iCalUId")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")

    subject: str = ""

    # Always UTC
    start: datetime
    end: datetime
    timezone: str = "UTC"

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_graph_times(cls, data: Any) -> Any:
        """Accept Graph's {"dateTime", "timeZone"} objects for start and end."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("start", "end"):
            value = data.get(key)
            if isinstance(value, dict):
                dttz = DateTimeTimeZone.model_validate(value)
                data[key] = parse_graph_datetime(dttz.date_time, dttz.time_zone)
        if data.get("subject") is None:
            data["subject"] = ""
        return data

    @field_validator("start", "end")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def has_correlation_prefix(self, prefix: Optional[str]) -> bool:
        return matches_correlation_prefix(self.transaction_id, prefix)

    @property
    def can_delete(self) -> bool:
        return bool(self.id and self.ical_uid)

    def to_graph_payload(self) -> dict[str, Any]:
        """Body of a create-event request."""
        data: dict[str, Any] = {
            "subject": self.subject,
            "start": {
                "dateTime": format_graph_datetime(self.start),
                "timeZone": "UTC",
            },
            "end": {
                "dateTime": format_graph_datetime(self.end),
                "timeZone": "UTC",
            },
        }
        if self.transaction_id:
            data["transactionId"] = self.transaction_id
        return data
