"""JSON batching request and response types.

See https://learn.microsoft.com/en-us/graph/json-batching
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class BatchRequestStep:
    """One request inside a $batch envelope.

    ``id`` correlates the step with its response and must be unique within
    the batch. ``url`` is relative to the API version root, e.g.
    ``/users/a@contoso.com/events``.
    """

    id: str
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[dict[str, Any]] = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "method": self.method, "url": self.url}
        headers = dict(self.headers)
        if self.body is not None:
            headers.setdefault("Content-Type", "application/json")
            data["body"] = self.body
        if headers:
            data["headers"] = headers
        return data


@dataclass(frozen=True)
class BatchItemResponse:
    """Outcome of one step in a batch response."""

    id: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def error_message(self) -> str:
        """Graph error text, if the body carries an OData error."""
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict):
                code = error.get("code", "")
                message = error.get("message", "")
                return f"{code}: {message}" if code else message
        return ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "BatchItemResponse":
        return cls(
            id=str(data["id"]),
            status=int(data["status"]),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
        )


class BatchResponse:
    """Responses of one $batch call, keyed by step id."""

    def __init__(self, responses: list[BatchItemResponse]):
        self._responses = {r.id: r for r in responses}

    def __len__(self) -> int:
        return len(self._responses)

    def __iter__(self):
        return iter(self._responses.values())

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._responses

    def get(self, step_id: str) -> Optional[BatchItemResponse]:
        return self._responses.get(step_id)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "BatchResponse":
        """Parse a $batch response body; raises KeyError/TypeError/ValueError if malformed."""
        return cls([BatchItemResponse.from_json(item) for item in data["responses"]])
