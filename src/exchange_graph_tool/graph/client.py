"""Microsoft Graph client issuing JSON batch requests with requests."""

import logging
from typing import Optional, Protocol, Sequence
from urllib.parse import quote, urlencode

import requests

from ..auth.base import AuthProvider
from ..config import MAX_BATCH_SIZE
from ..models.event import CalendarEvent
from ..utils.exceptions import BatchRequestError
from .batch import BatchRequestStep, BatchResponse

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"

# Return event times in UTC regardless of the mailbox time zone
PREFER_UTC = 'outlook.timezone="UTC"'


class CalendarBatchClient(Protocol):
    """What the batch orchestrator needs from a remote calendar API."""

    def build_create_event(
        self, step_id: str, mailbox: str, event: CalendarEvent
    ) -> BatchRequestStep:
        ...

    def build_list_events(
        self, step_id: str, mailbox: str, top: int, select: Sequence[str] = ()
    ) -> BatchRequestStep:
        ...

    def build_delete_event(
        self, step_id: str, mailbox: str, event_id: str
    ) -> BatchRequestStep:
        ...

    def execute_batch(self, steps: Sequence[BatchRequestStep]) -> BatchResponse:
        ...


def _user_path(mailbox: str) -> str:
    return f"/users/{quote(mailbox, safe='@')}"


class GraphBatchClient:
    """Build per-mailbox event requests and send them through /$batch."""

    def __init__(
        self,
        auth_provider: AuthProvider,
        base_url: str = GRAPH_BASE,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize the batch client.

        Args:
            auth_provider: Source of bearer tokens
            base_url: Graph API version root
            session: HTTP session to reuse (a new one is created if omitted)
            timeout: Seconds to wait for each batch round trip
        """
        self.auth_provider = auth_provider
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        token = self.auth_provider.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def build_create_event(
        self, step_id: str, mailbox: str, event: CalendarEvent
    ) -> BatchRequestStep:
        return BatchRequestStep(
            id=step_id,
            method="POST",
            url=f"{_user_path(mailbox)}/events",
            headers={"Prefer": PREFER_UTC},
            body=event.to_graph_payload(),
        )

    def build_list_events(
        self, step_id: str, mailbox: str, top: int, select: Sequence[str] = ()
    ) -> BatchRequestStep:
        params = {"$top": str(top), "$orderby": "start/dateTime"}
        if select:
            params["$select"] = ",".join(select)
        query = urlencode(params, safe="$/,")
        return BatchRequestStep(
            id=step_id,
            method="GET",
            url=f"{_user_path(mailbox)}/events?{query}",
            headers={"Prefer": PREFER_UTC},
        )

    def build_delete_event(
        self, step_id: str, mailbox: str, event_id: str
    ) -> BatchRequestStep:
        return BatchRequestStep(
            id=step_id,
            method="DELETE",
            url=f"{_user_path(mailbox)}/events/{quote(event_id, safe='')}",
        )

    def execute_batch(self, steps: Sequence[BatchRequestStep]) -> BatchResponse:
        """
        Send one $batch request.

        Args:
            steps: Between 1 and 20 steps with unique ids

        Returns:
            Per-step responses

        Raises:
            ValueError: If the batch is empty, too large or has duplicate ids
            BatchRequestError: If the batch itself could not be executed
        """
        if not steps:
            raise ValueError("A batch needs at least one request")
        if len(steps) > MAX_BATCH_SIZE:
            raise ValueError(
                f"A batch holds at most {MAX_BATCH_SIZE} requests, got {len(steps)}"
            )
        ids = [step.id for step in steps]
        if len(set(ids)) != len(ids):
            raise ValueError("Batch request ids must be unique")

        payload = {"requests": [step.to_json() for step in steps]}
        url = f"{self.base_url}/$batch"

        try:
            resp = self.session.post(
                url, headers=self._headers(), json=payload, timeout=self.timeout
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise BatchRequestError(f"Batch request failed: {e}") from e
        except ValueError as e:
            raise BatchRequestError(f"Batch response is not valid JSON: {e}") from e

        try:
            result = BatchResponse.from_json(data)
        except (KeyError, TypeError, ValueError) as e:
            raise BatchRequestError(f"Malformed batch response: {e}") from e

        logger.debug(f"Batch of {len(steps)} requests returned {len(result)} responses")
        return result
