"""Batched create, find and delete of calendar events across many mailboxes."""

import itertools
import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..config import MAX_BATCH_SIZE
from ..graph.batch import BatchItemResponse, BatchRequestStep
from ..graph.client import CalendarBatchClient
from ..models.event import EVENT_SELECT_FIELDS, CalendarEvent, make_transaction_id
from ..utils.date_utils import utc_now
from ..utils.exceptions import ConfigurationError, EventDecodeError, OperationCancelledError
from .chunking import chunked, chunked_by_key

logger = logging.getLogger(__name__)

# Exchange runs at most 4 concurrent requests per mailbox within one batch
MAX_CONCURRENT_PER_MAILBOX = 4

SAMPLE_RUNS = 10
RUN_INTERVAL = timedelta(hours=2)
SLOT_INTERVAL = timedelta(minutes=30)
EVENT_DURATION = timedelta(minutes=15)

# Large enough that a test mailbox's events come back in one page
FIND_PAGE_SIZE = 99999


@dataclass
class BatchSummary:
    """Counts for one batched operation."""

    requests: int = 0
    batches: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)


@dataclass(frozen=True)
class _PendingRequest:
    mailbox: str
    step: BatchRequestStep
    label: str


class BatchCalendar:
    """Calendar operations over many mailboxes using Graph JSON batching.

    Batches are submitted one after another, never concurrently. Failures of
    individual requests inside a batch are logged and counted; a failure of a
    batch as a whole (BatchRequestError) aborts the operation.
    """

    def __init__(
        self,
        client: CalendarBatchClient,
        batch_size: int = MAX_BATCH_SIZE,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        new_id: Optional[Callable[[], str]] = None,
        cancel_event: Optional[threading.Event] = None,
        spread_mailboxes: bool = False,
    ):
        """
        Args:
            client: Remote calendar API client
            batch_size: Requests per batch, clamped to 20
            rng: Random source deciding how many sample events each mailbox gets
            clock: Returns the current UTC time
            new_id: Returns a unique string for correlation tags
            cancel_event: When set, no further batch is submitted
            spread_mailboxes: Fill batches round-robin so that no batch holds
                more than 4 requests for one mailbox

        Raises:
            ConfigurationError: If batch_size is less than 1
        """
        if batch_size < 1:
            raise ConfigurationError(f"Batch size must be at least 1, got {batch_size}")
        if batch_size > MAX_BATCH_SIZE:
            logger.warning(
                f"Batch size {batch_size} exceeds the Graph limit, using {MAX_BATCH_SIZE}"
            )
            batch_size = MAX_BATCH_SIZE

        self.client = client
        self._batch_size = batch_size
        self.rng = rng or random.Random()
        self.clock = clock or utc_now
        self.new_id = new_id or (lambda: str(uuid.uuid4()))
        self.cancel_event = cancel_event
        self.spread_mailboxes = spread_mailboxes

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_sample_events(
        self,
        mailboxes: Iterable[str],
        max_events_per_mailbox: int,
        correlation_prefix: str,
    ) -> BatchSummary:
        """
        Create a random number of sample events in each mailbox.

        Ten runs are made, two hours apart starting now. In each run every
        mailbox gets between 0 and ``max_events_per_mailbox`` (at most 4)
        events in consecutive 30 minute slots, each tagged
        ``correlation_prefix_<uuid>``.

        Returns:
            Summary over all runs
        """
        summary = BatchSummary()
        mailboxes = list(mailboxes)
        if not mailboxes:
            return summary

        cap = max(0, min(max_events_per_mailbox, MAX_CONCURRENT_PER_MAILBOX))
        if cap != max_events_per_mailbox:
            logger.info(f"Max events per mailbox per run limited to {cap}")

        event_num = 1
        start = self.clock()

        for _ in range(SAMPLE_RUNS):
            logger.info(f"Create events in {len(mailboxes)} mailboxes starting from {start}")
            event_num = self._create_run(
                mailboxes, start, cap, correlation_prefix, event_num, summary
            )
            start += RUN_INTERVAL

        logger.info(
            f"Create complete: {summary.succeeded} created, {summary.failed} failed "
            f"in {summary.batches} batches"
        )
        return summary

    def _create_run(
        self,
        mailboxes: Sequence[str],
        start: datetime,
        cap: int,
        correlation_prefix: str,
        event_num: int,
        summary: BatchSummary,
    ) -> int:
        step_ids = itertools.count(1)
        pending = []

        for mailbox in mailboxes:
            slot = start
            for _ in range(self.rng.randint(0, cap)):
                event = CalendarEvent(
                    subject=f"Event {event_num}",
                    start=slot,
                    end=slot + EVENT_DURATION,
                    transaction_id=make_transaction_id(correlation_prefix, self.new_id()),
                )
                step = self.client.build_create_event(str(next(step_ids)), mailbox, event)
                pending.append(_PendingRequest(mailbox, step, event.transaction_id))

                slot += SLOT_INTERVAL
                event_num += 1

        self._submit_writes(pending, summary)
        return event_num

    # ------------------------------------------------------------------
    # Find
    # ------------------------------------------------------------------

    def find_events(
        self,
        mailboxes: Iterable[str],
        correlation_prefix: Optional[str] = None,
    ) -> dict[str, list[CalendarEvent]]:
        """
        List the events of each mailbox, optionally only those of one transaction.

        Args:
            mailboxes: Mailbox addresses
            correlation_prefix: Keep only events tagged ``prefix_...``; empty
                or None keeps every event

        Returns:
            Events per mailbox ordered by start time. Mailboxes that failed
            or have no matching events are left out.
        """
        # dict.fromkeys drops repeated mailboxes, keeping first-seen order
        unique = list(dict.fromkeys(mailboxes))
        if not unique:
            return {}

        step_ids = itertools.count(1)
        pending = [
            _PendingRequest(
                mailbox,
                self.client.build_list_events(
                    str(next(step_ids)), mailbox, FIND_PAGE_SIZE, EVENT_SELECT_FIELDS
                ),
                mailbox,
            )
            for mailbox in unique
        ]

        events: dict[str, list[CalendarEvent]] = {}
        summary = BatchSummary()

        for request, response in self._run_batches(pending, summary):
            mailbox = request.mailbox
            if response is None or not response.ok:
                summary.record_failure(
                    self._log_failure(f"Error with mailbox: {mailbox}", request, response)
                )
                continue

            try:
                mailbox_events = self._decode_events(response.body)
            except EventDecodeError as e:
                message = f"Error with mailbox: {mailbox}: {e}"
                logger.error(message)
                summary.record_failure(message)
                continue

            summary.succeeded += 1
            matching = [e for e in mailbox_events if e.has_correlation_prefix(correlation_prefix)]
            if matching:
                events[mailbox] = sorted(matching, key=lambda e: e.start)

        return events

    @staticmethod
    def _decode_events(body) -> list[CalendarEvent]:
        if not isinstance(body, dict) or not isinstance(body.get("value"), list):
            raise EventDecodeError("response has no event collection")
        try:
            return [CalendarEvent.model_validate(item) for item in body["value"]]
        except ValidationError as e:
            raise EventDecodeError(f"invalid event in response: {e}") from e

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_events(self, events_by_mailbox: Mapping[str, Sequence[CalendarEvent]]) -> BatchSummary:
        """
        Delete events, typically the result of find_events.

        Events without an id or iCalUId are skipped. Unless
        spread_mailboxes is set, a batch may carry more than 4 deletes for the
        same mailbox and Exchange can throttle some of them (status 429);
        those are logged as failures.
        """
        summary = BatchSummary()
        step_ids = itertools.count(1)
        pending = []

        for mailbox, events in events_by_mailbox.items():
            for event in events:
                if not event.can_delete:
                    logger.debug(f"Skipping event without id or iCalUId in {mailbox}: {event.subject}")
                    continue
                step = self.client.build_delete_event(str(next(step_ids)), mailbox, event.id)
                pending.append(_PendingRequest(mailbox, step, f"{mailbox} {event.ical_uid}"))

        if not pending:
            return summary

        self._submit_writes(pending, summary)
        logger.info(f"Delete complete: {summary.succeeded} deleted, {summary.failed} failed")
        return summary

    # ------------------------------------------------------------------
    # Batch submission
    # ------------------------------------------------------------------

    def _chunk(self, pending: Sequence[_PendingRequest]) -> Iterator[list[_PendingRequest]]:
        if self.spread_mailboxes:
            return chunked_by_key(
                pending,
                self.batch_size,
                key=lambda r: r.mailbox.lower(),
                per_key_limit=MAX_CONCURRENT_PER_MAILBOX,
            )
        return chunked(pending, self.batch_size)

    def _run_batches(
        self, pending: Sequence[_PendingRequest], summary: BatchSummary
    ) -> Iterator[tuple[_PendingRequest, Optional[BatchItemResponse]]]:
        """Submit pending requests batch by batch, yielding each request's response.

        A request missing from its batch response is yielded with None.
        """
        batches = list(self._chunk(pending))
        logger.info(f"Sending {len(pending)} requests in {len(batches)} batches")

        for batch_num, batch in enumerate(batches, start=1):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise OperationCancelledError(
                    f"Cancelled before batch {batch_num} of {len(batches)}"
                )

            logger.info(f"Batch - {batch_num}")
            response = self.client.execute_batch([r.step for r in batch])
            summary.batches += 1
            summary.requests += len(batch)

            for request in batch:
                yield request, response.get(request.step.id)

    def _submit_writes(self, pending: Sequence[_PendingRequest], summary: BatchSummary) -> None:
        if not pending:
            logger.info("No requests to send")
            return

        for request, response in self._run_batches(pending, summary):
            if response is not None and response.ok:
                summary.succeeded += 1
            else:
                summary.record_failure(self._log_failure("Request failed", request, response))

    @staticmethod
    def _log_failure(
        prefix: str, request: _PendingRequest, response: Optional[BatchItemResponse]
    ) -> str:
        step = request.step
        if response is None:
            detail = "no response in batch"
        else:
            detail = str(response.status)
            if response.error_message:
                detail += f" - {response.error_message}"
        message = f"{prefix}: {step.method} {step.url} [{step.id}: {request.label}] - {detail}"
        logger.error(message)
        return message
