"""Tests for the batched calendar operations."""

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta

import pytest
import pytz

from exchange_graph_tool.graph.batch import BatchItemResponse
from exchange_graph_tool.models.event import CalendarEvent
from exchange_graph_tool.orchestrator.calendar import BatchCalendar
from exchange_graph_tool.utils.exceptions import (
    BatchRequestError,
    ConfigurationError,
    OperationCancelledError,
)

from conftest import FIXED_NOW, FakeGraphClient, FixedRandom, graph_event, mailbox_of


def make_calendar(client, value=1, **kwargs):
    kwargs.setdefault("rng", FixedRandom(value))
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return BatchCalendar(client, **kwargs)


def listing(events_by_mailbox, failures=None):
    """Responder answering list requests from a mailbox -> events dict."""
    failures = failures or {}

    def respond(step):
        mailbox = mailbox_of(step)
        if mailbox in failures:
            return BatchItemResponse(
                step.id,
                failures[mailbox],
                body={"error": {"code": "ErrorInvalidUser", "message": "not found"}},
            )
        return BatchItemResponse(step.id, 200, body={"value": events_by_mailbox.get(mailbox, [])})

    return respond


def event(event_id, ical_uid="uid", subject="Event"):
    start = FIXED_NOW
    return CalendarEvent(
        id=event_id, ical_uid=ical_uid, subject=subject, start=start, end=start + timedelta(minutes=15)
    )


# ============================================================================
# Batch size
# ============================================================================


def test_batch_size_is_clamped_to_graph_limit(fake_client):
    assert BatchCalendar(fake_client, batch_size=50).batch_size == 20


def test_batch_size_default(fake_client):
    assert BatchCalendar(fake_client).batch_size == 20


@pytest.mark.parametrize("size", [0, -3])
def test_batch_size_must_be_positive(fake_client, size):
    with pytest.raises(ConfigurationError):
        BatchCalendar(fake_client, batch_size=size)


# ============================================================================
# create_sample_events
# ============================================================================


def test_create_scenario_one_event_per_run():
    client = FakeGraphClient()
    calendar = make_calendar(client, value=1)

    summary = calendar.create_sample_events(["a@x"], 1, "t1")

    steps = client.steps
    assert len(steps) == 10
    assert summary.requests == 10
    assert summary.succeeded == 10

    tags = [s.body["transactionId"] for s in steps]
    assert len(set(tags)) == 10
    assert all(t.startswith("t1_") and len(t) > len("t1_") for t in tags)

    assert [s.body["subject"] for s in steps] == [f"Event {n}" for n in range(1, 11)]

    starts = [datetime.strptime(s.body["start"]["dateTime"], "%Y-%m-%dT%H:%M:%S") for s in steps]
    assert starts[0] == FIXED_NOW.replace(tzinfo=None)
    assert all(b - a == timedelta(hours=2) for a, b in zip(starts, starts[1:]))
    assert all(s.body["start"]["timeZone"] == "UTC" for s in steps)


def test_create_with_zero_max_events_submits_nothing():
    client = FakeGraphClient()
    rng = FixedRandom(5)
    calendar = make_calendar(client, rng=rng)

    summary = calendar.create_sample_events(["a@x", "b@x"], 0, "t1")

    assert client.batches == []
    assert summary.requests == 0
    assert len(rng.calls) == 20
    assert set(rng.calls) == {(0, 0)}


def test_create_clamps_max_events_to_four():
    client = FakeGraphClient()
    rng = FixedRandom(10)
    calendar = make_calendar(client, rng=rng)

    calendar.create_sample_events(["a@x"], 10, "t1")

    assert set(rng.calls) == {(0, 4)}
    assert len(client.steps) == 40


def test_create_slots_are_thirty_minutes_apart_within_run():
    client = FakeGraphClient()
    calendar = make_calendar(client, value=3)

    calendar.create_sample_events(["a@x"], 3, "t1")

    first_run = client.steps[:3]
    starts = [s.body["start"]["dateTime"] for s in first_run]
    assert starts == ["2024-03-01T09:00:00", "2024-03-01T09:30:00", "2024-03-01T10:00:00"]
    assert first_run[0].body["end"]["dateTime"] == "2024-03-01T09:15:00"


def test_create_batches_are_bounded_and_ids_unique():
    client = FakeGraphClient()
    calendar = make_calendar(client, value=2, batch_size=3)

    calendar.create_sample_events([f"u{i}@x" for i in range(5)], 2, "t1")

    # 10 requests per run in batches of 3, 3, 3, 1
    assert len(client.batches) == 40
    assert max(len(b) for b in client.batches) == 3
    for batch in client.batches:
        ids = [s.id for s in batch]
        assert len(ids) == len(set(ids))


def test_create_empty_mailboxes_is_noop():
    client = FakeGraphClient()
    rng = FixedRandom(1)
    calendar = make_calendar(client, rng=rng)

    summary = calendar.create_sample_events([], 4, "t1")

    assert client.batches == []
    assert rng.calls == []
    assert summary.requests == 0


def test_create_item_failures_are_logged_and_do_not_abort(caplog):
    def respond(step):
        status = 429 if step.body["subject"] == "Event 2" else 201
        return BatchItemResponse(step.id, status)

    client = FakeGraphClient(respond)
    calendar = make_calendar(client, value=1)

    with caplog.at_level(logging.ERROR):
        summary = calendar.create_sample_events(["a@x"], 1, "t1")

    assert len(client.steps) == 10
    assert summary.succeeded == 9
    assert summary.failed == 1
    assert "429" in caplog.text
    assert "/users/a@x/events" in caplog.text


def test_create_missing_item_response_counts_as_failure():
    client = FakeGraphClient(lambda step: None)
    calendar = make_calendar(client, value=1)

    summary = calendar.create_sample_events(["a@x"], 1, "t1")

    assert summary.failed == 10
    assert "no response in batch" in summary.errors[0]


def test_create_transport_failure_aborts():
    client = FakeGraphClient()

    def boom(steps):
        client.batches.append(list(steps))
        raise BatchRequestError("connection reset")

    client.execute_batch = boom
    calendar = make_calendar(client, value=1)

    with pytest.raises(BatchRequestError):
        calendar.create_sample_events(["a@x"], 1, "t1")
    assert len(client.batches) == 1


def test_create_spread_mailboxes_limits_requests_per_mailbox():
    client = FakeGraphClient()
    calendar = make_calendar(client, value=4, spread_mailboxes=True)

    calendar.create_sample_events([f"u{i}@x" for i in range(10)], 4, "t1")

    for batch in client.batches:
        counts = Counter(mailbox_of(s) for s in batch)
        assert max(counts.values()) <= 4


# ============================================================================
# find_events
# ============================================================================


def test_find_scenario_partial_failure(caplog):
    client = FakeGraphClient(
        listing(
            {
                "a@x": [
                    graph_event("1", "t1_1", start="2024-03-01T10:00:00.0000000"),
                    graph_event("2", "t1_2", start="2024-03-01T10:30:00.0000000"),
                    graph_event("3", "other", start="2024-03-01T11:00:00.0000000"),
                ]
            },
            failures={"b@x": 404},
        )
    )
    calendar = make_calendar(client)

    with caplog.at_level(logging.ERROR):
        result = calendar.find_events(["a@x", "b@x"], "t1")

    assert list(result) == ["a@x"]
    assert [e.transaction_id for e in result["a@x"]] == ["t1_1", "t1_2"]
    assert "b@x" in caplog.text
    assert "404" in caplog.text


def test_find_prefix_semantics():
    client = FakeGraphClient(
        listing(
            {
                "a@x": [
                    graph_event("1", "abc_xyz123"),
                    graph_event("2", "abcd_xyz123"),
                    graph_event("3", "xabc_xyz123"),
                    graph_event("4", None),
                ]
            }
        )
    )
    result = make_calendar(client).find_events(["a@x"], "abc")

    assert [e.id for e in result["a@x"]] == ["1"]


@pytest.mark.parametrize("prefix", [None, ""])
def test_find_without_prefix_returns_everything(prefix):
    client = FakeGraphClient(
        listing({"a@x": [graph_event("1", "abc_1"), graph_event("2", None), graph_event("3", "zz")]})
    )
    result = make_calendar(client).find_events(["a@x"], prefix)

    assert [e.id for e in result["a@x"]] == ["1", "2", "3"]


def test_find_omits_mailboxes_without_matches():
    client = FakeGraphClient(listing({"a@x": [graph_event("1", "other_1")], "b@x": []}))
    result = make_calendar(client).find_events(["a@x", "b@x"], "t1")

    assert result == {}


def test_find_orders_events_by_start():
    client = FakeGraphClient(
        listing(
            {
                "a@x": [
                    graph_event("late", "t1_a", start="2024-03-02T08:00:00"),
                    graph_event("early", "t1_b", start="2024-03-01T08:00:00"),
                ]
            }
        )
    )
    result = make_calendar(client).find_events(["a@x"], "t1")

    assert [e.id for e in result["a@x"]] == ["early", "late"]
    assert result["a@x"][0].start == datetime(2024, 3, 1, 8, 0, tzinfo=pytz.utc)


def test_find_empty_mailbox_list_makes_no_calls(fake_client):
    assert make_calendar(fake_client).find_events([], "t1") == {}
    assert fake_client.batches == []


def test_find_chunks_mailboxes_by_batch_size():
    client = FakeGraphClient(listing({}))
    calendar = make_calendar(client, batch_size=2)

    calendar.find_events(["a@x", "b@x", "c@x", "d@x", "e@x"])

    assert [len(b) for b in client.batches] == [2, 2, 1]
    assert all(s.method == "GET" and "$top=99999" in s.url for s in client.steps)
    assert all(s.headers["Prefer"] == 'outlook.timezone="UTC"' for s in client.steps)


def test_find_uses_generated_step_ids_and_deduplicates_mailboxes():
    client = FakeGraphClient(listing({"a@x": [graph_event("1", "t1_1")]}))
    result = make_calendar(client).find_events(["a@x", "a@x"], "t1")

    assert len(client.steps) == 1
    assert client.steps[0].id != "a@x"
    assert len(result["a@x"]) == 1


def test_find_decode_failure_excludes_mailbox(caplog):
    bad = graph_event("1", "t1_1")
    del bad["start"]

    def respond(step):
        mailbox = mailbox_of(step)
        if mailbox == "a@x":
            return BatchItemResponse(step.id, 200, body={"value": [bad]})
        if mailbox == "b@x":
            return BatchItemResponse(step.id, 200, body="not json")
        return BatchItemResponse(step.id, 200, body={"value": [graph_event("2", "t1_2")]})

    client = FakeGraphClient(respond)
    with caplog.at_level(logging.ERROR):
        result = make_calendar(client).find_events(["a@x", "b@x", "c@x"], "t1")

    assert list(result) == ["c@x"]
    assert "a@x" in caplog.text
    assert "b@x" in caplog.text


def test_find_missing_response_excludes_mailbox():
    def respond(step):
        if mailbox_of(step) == "a@x":
            return None
        return BatchItemResponse(step.id, 200, body={"value": [graph_event("1", "t1_1")]})

    result = make_calendar(FakeGraphClient(respond)).find_events(["a@x", "b@x"], "t1")

    assert list(result) == ["b@x"]


# ============================================================================
# delete_events
# ============================================================================


def test_delete_builds_one_request_per_event():
    client = FakeGraphClient(lambda step: BatchItemResponse(step.id, 204))
    calendar = make_calendar(client)

    summary = calendar.delete_events(
        {"a@x": [event("e1", "u1"), event("e2", "u2")], "b@x": [event("e3", "u3")]}
    )

    assert [(s.method, s.url) for s in client.steps] == [
        ("DELETE", "/users/a@x/events/e1"),
        ("DELETE", "/users/a@x/events/e2"),
        ("DELETE", "/users/b@x/events/e3"),
    ]
    assert summary.succeeded == 3
    assert summary.failed == 0


def test_delete_skips_events_without_identifiers():
    client = FakeGraphClient(lambda step: BatchItemResponse(step.id, 204))
    calendar = make_calendar(client)

    summary = calendar.delete_events(
        {"a@x": [event("e1", None), event(None, "u2"), event("e3", "u3")]}
    )

    assert [s.url for s in client.steps] == ["/users/a@x/events/e3"]
    assert summary.failed == 0
    assert summary.errors == []


def test_delete_nothing_deletable_makes_no_calls(fake_client):
    summary = make_calendar(fake_client).delete_events({"a@x": [event("e1", None)]})

    assert fake_client.batches == []
    assert summary.requests == 0


def test_delete_empty_mapping(fake_client):
    make_calendar(fake_client).delete_events({})
    assert fake_client.batches == []


def test_delete_same_ical_uid_in_many_mailboxes_gets_unique_step_ids():
    client = FakeGraphClient(lambda step: BatchItemResponse(step.id, 204))
    events = {f"u{i}@x": [event(f"e{i}", "shared-uid")] for i in range(5)}

    summary = make_calendar(client).delete_events(events)

    ids = [s.id for s in client.steps]
    assert len(ids) == len(set(ids)) == 5
    assert summary.succeeded == 5


def test_delete_failures_are_logged_and_loop_continues(caplog):
    def respond(step):
        status = 429 if step.url.endswith("/e2") else 204
        return BatchItemResponse(step.id, status)

    client = FakeGraphClient(respond)
    calendar = make_calendar(client, batch_size=2)

    with caplog.at_level(logging.ERROR):
        summary = calendar.delete_events(
            {"a@x": [event("e1", "u1"), event("e2", "u2"), event("e3", "u3")]}
        )

    assert len(client.batches) == 2
    assert summary.succeeded == 2
    assert summary.failed == 1
    assert "u2" in caplog.text


def test_delete_default_batches_may_exceed_per_mailbox_limit():
    client = FakeGraphClient(lambda step: BatchItemResponse(step.id, 204))
    events = {"a@x": [event(f"e{i}", f"u{i}") for i in range(6)]}

    make_calendar(client).delete_events(events)

    assert [len(b) for b in client.batches] == [6]


def test_delete_spread_mailboxes_caps_per_mailbox():
    client = FakeGraphClient(lambda step: BatchItemResponse(step.id, 204))
    events = {
        "a@x": [event(f"a{i}", f"ua{i}") for i in range(6)],
        "b@x": [event(f"b{i}", f"ub{i}") for i in range(2)],
    }

    make_calendar(client, spread_mailboxes=True).delete_events(events)

    assert [len(b) for b in client.batches] == [6, 2]
    for batch in client.batches:
        assert max(Counter(mailbox_of(s) for s in batch).values()) <= 4


# ============================================================================
# Cancellation
# ============================================================================


def test_cancel_stops_before_next_batch():
    cancel = threading.Event()
    client = FakeGraphClient()
    original = client.execute_batch

    def execute_and_cancel(steps):
        result = original(steps)
        cancel.set()
        return result

    client.execute_batch = execute_and_cancel
    calendar = make_calendar(client, value=1, batch_size=1, cancel_event=cancel)

    with pytest.raises(OperationCancelledError):
        calendar.create_sample_events(["a@x", "b@x"], 1, "t1")

    assert len(client.batches) == 1


def test_cancel_before_start_sends_nothing():
    cancel = threading.Event()
    cancel.set()
    client = FakeGraphClient(listing({}))

    with pytest.raises(OperationCancelledError):
        make_calendar(client, cancel_event=cancel).find_events(["a@x"])
    assert client.batches == []
