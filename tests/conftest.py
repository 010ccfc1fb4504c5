"""Pytest fixtures and a fake Graph batch client for Exchange Graph Tool tests."""

from datetime import datetime
from typing import Any, Callable, Optional

import pytest
import pytz

from exchange_graph_tool.auth.base import AuthProvider
from exchange_graph_tool.graph.batch import BatchItemResponse, BatchRequestStep, BatchResponse
from exchange_graph_tool.graph.client import GraphBatchClient

FIXED_NOW = datetime(2024, 3, 1, 9, 0, tzinfo=pytz.utc)


class StaticTokenProvider(AuthProvider):
    def __init__(self, token: str = "test-token"):
        self.token = token
        self.calls = 0

    def get_access_token(self) -> str:
        self.calls += 1
        return self.token


class FakeGraphClient(GraphBatchClient):
    """Real request builders, scripted batch execution.

    ``responder`` maps each submitted step to a BatchItemResponse, or to None
    to leave it out of the batch response.
    """

    def __init__(
        self,
        responder: Optional[Callable[[BatchRequestStep], Optional[BatchItemResponse]]] = None,
    ):
        super().__init__(StaticTokenProvider(), session=object())
        self.responder = responder or (lambda step: BatchItemResponse(step.id, 201))
        self.batches: list[list[BatchRequestStep]] = []

    @property
    def steps(self) -> list[BatchRequestStep]:
        return [step for batch in self.batches for step in batch]

    def execute_batch(self, steps):
        self.batches.append(list(steps))
        responses = [self.responder(step) for step in steps]
        return BatchResponse([r for r in responses if r is not None])


class FixedRandom:
    """randint stub returning a fixed value (clipped to the requested range)."""

    def __init__(self, value: int):
        self.value = value
        self.calls: list[tuple[int, int]] = []

    def randint(self, a: int, b: int) -> int:
        self.calls.append((a, b))
        return max(a, min(self.value, b))


def graph_event(
    event_id: str,
    transaction_id: Optional[str],
    start: str = "2024-03-01T10:00:00.0000000",
    end: str = "2024-03-01T10:15:00.0000000",
    subject: str = "Event",
    ical_uid: Optional[str] = None,
) -> dict[str, Any]:
    """An event resource as Graph returns it with Prefer: outlook.timezone="UTC"."""
    return {
        "id": event_id,
        "iCalUId": ical_uid if ical_uid is not None else f"uid-{event_id}",
        "transactionId": transaction_id,
        "subject": subject,
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
    }


def mailbox_of(step: BatchRequestStep) -> str:
    # /users/a@x/events?...
    return step.url.split("/")[2]


@pytest.fixture
def fake_client():
    return FakeGraphClient()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
