import threading

import pytest

from conftest import event_dates, make_event
from roadworks.core.db import SessionLocal
from roadworks.core.errors import (
    DecisionRequired,
    InvalidInput,
    InvalidTransition,
    NotFound,
    StaleState,
    Unauthorized,
)
from roadworks.models.construction_event import EventStatus, PostEndDecision
from roadworks.models.workflow_event import WorkflowEvent
from roadworks.services.event_store import EventStore
from roadworks.services.lifecycle import LifecycleEngine
from roadworks.services.notification_bus import WORKFLOW_CHANNEL


def _to_pending_review(lifecycle, event, actor):
    lifecycle.transition_event(event.id, "active", actor)
    return lifecycle.transition_event(event.id, "pending_review", actor)


def test_create_event_starts_planned(lifecycle, actors):
    event = make_event(lifecycle, actors["operator"], ward="Ward 3")
    assert event.status == EventStatus.PLANNED
    assert event.post_end_decision == PostEndDecision.PENDING
    assert event.id.startswith("CE-")
    assert event.archived_at is None


def test_create_event_rejects_reversed_dates(lifecycle, actors):
    start, end = event_dates()
    with pytest.raises(InvalidInput):
        lifecycle.create_event(
            actors["operator"], name="Bad", restriction_type="full_closure", start_date=end, end_date=start
        )


def test_create_event_rejects_unknown_road_assets(lifecycle, actors):
    with pytest.raises(InvalidInput) as exc:
        make_event(lifecycle, actors["operator"], road_asset_ids=["RA-missing"])
    assert "RA-missing" in exc.value.message


def test_reviewer_cannot_create_events(lifecycle, actors):
    with pytest.raises(Unauthorized):
        make_event(lifecycle, actors["reviewer"])


def test_close_scenario(lifecycle, actors, bus):
    operator, authority = actors["operator"], actors["authority"]
    workflow = bus.subscribe("audit", WORKFLOW_CHANNEL)
    event = make_event(lifecycle, operator)

    assert lifecycle.transition_event(event.id, "active", operator).status == EventStatus.ACTIVE
    reviewed = lifecycle.transition_event(event.id, "pending_review", operator)
    assert reviewed.status == EventStatus.PENDING_REVIEW
    assert reviewed.post_end_decision == PostEndDecision.PENDING

    with pytest.raises(DecisionRequired):
        lifecycle.transition_event(event.id, "closed", authority)
    assert lifecycle.store.get_event(event.id).status == EventStatus.PENDING_REVIEW

    decided = lifecycle.record_decision(event.id, "no-change", authority, notes="Road restored as before")
    assert decided.post_end_decision == PostEndDecision.NO_CHANGE
    assert decided.decided_by == authority.user_id

    closed = lifecycle.transition_event(event.id, "closed", authority)
    assert closed.status == EventStatus.CLOSED

    published = workflow.drain()
    types = [p["type"] for p in published]
    assert types == ["EventStatusChanged", "EventStatusChanged", "EventDecisionRecorded", "EventStatusChanged"]
    assert published[-1]["from_status"] == "pending_review"
    assert published[-1]["to_status"] == "closed"


def test_rejected_transition_is_not_published(lifecycle, actors, bus):
    workflow = bus.subscribe("audit", WORKFLOW_CHANNEL)
    event = make_event(lifecycle, actors["operator"])
    with pytest.raises(InvalidTransition):
        lifecycle.transition_event(event.id, "closed", actors["admin"])
    assert workflow.drain() == []


def test_operator_cannot_close(lifecycle, actors):
    event = make_event(lifecycle, actors["operator"])
    _to_pending_review(lifecycle, event, actors["operator"])
    lifecycle.record_decision(event.id, "permanent-change", actors["authority"])
    with pytest.raises(Unauthorized):
        lifecycle.transition_event(event.id, "closed", actors["operator"])


def test_cancel_only_from_planned(lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    lifecycle.transition_event(event.id, "active", operator)
    with pytest.raises(InvalidTransition):
        lifecycle.transition_event(event.id, "cancelled", operator)

    other = make_event(lifecycle, operator, name="Abandoned")
    assert lifecycle.transition_event(other.id, "cancelled", operator).status == EventStatus.CANCELLED


def test_unknown_status_value_is_invalid_input(lifecycle, actors):
    event = make_event(lifecycle, actors["operator"])
    with pytest.raises(InvalidInput):
        lifecycle.transition_event(event.id, "finished", actors["operator"])


def test_unknown_event_is_not_found(lifecycle, actors):
    with pytest.raises(NotFound):
        lifecycle.transition_event("CE-nope", "active", actors["operator"])


def test_decision_only_once_and_only_in_review(lifecycle, actors):
    operator, authority = actors["operator"], actors["authority"]
    event = make_event(lifecycle, operator)

    with pytest.raises(InvalidTransition):
        lifecycle.record_decision(event.id, "no-change", authority)

    _to_pending_review(lifecycle, event, operator)
    with pytest.raises(Unauthorized):
        lifecycle.record_decision(event.id, "no-change", operator)
    with pytest.raises(InvalidInput):
        lifecycle.record_decision(event.id, "pending", authority)

    lifecycle.record_decision(event.id, "no-change", authority)
    with pytest.raises(InvalidTransition):
        lifecycle.record_decision(event.id, "permanent-change", authority)


def test_archive_round_trip_keeps_archived_at_in_step(lifecycle, actors):
    operator, authority = actors["operator"], actors["authority"]
    event = make_event(lifecycle, operator)
    _to_pending_review(lifecycle, event, operator)
    lifecycle.record_decision(event.id, "no-change", authority)
    lifecycle.transition_event(event.id, "closed", authority)

    archived = lifecycle.archive_event(event.id, operator)
    assert archived.status == EventStatus.ARCHIVED
    assert archived.archived_at is not None

    restored = lifecycle.unarchive_event(event.id, operator)
    assert restored.status == EventStatus.CLOSED
    assert restored.archived_at is None

    with pytest.raises(InvalidTransition):
        lifecycle.unarchive_event(event.id, operator)


def test_archive_requires_closed(lifecycle, actors):
    event = make_event(lifecycle, actors["operator"])
    with pytest.raises(InvalidTransition):
        lifecycle.archive_event(event.id, actors["operator"])


def test_pinned_expected_mismatch_is_stale(lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    lifecycle.transition_event(event.id, "active", operator, expected="planned")

    with pytest.raises(StaleState) as exc:
        lifecycle.transition_event(event.id, "active", operator, expected="planned")
    assert exc.value.actual == "active"


def test_lost_race_retried_once_without_pin(db, bus, actors):
    operator = actors["operator"]
    engine = LifecycleEngine(EventStore(db), bus)
    event = make_event(engine, operator)

    class LosesOnce(EventStore):
        lost = False

        def _swap_event_status(self, event_id, expected, new, **fields):
            if not self.lost:
                self.lost = True
                return False
            return super()._swap_event_status(event_id, expected, new, **fields)

    racing = LifecycleEngine(LosesOnce(db), bus)
    result = racing.transition_event(event.id, "active", operator)
    assert result.status == EventStatus.ACTIVE


def test_lost_race_surfaces_stale_when_retries_exhausted(db, bus, actors):
    operator = actors["operator"]
    event = make_event(LifecycleEngine(EventStore(db), bus), operator)

    class AlwaysLosing(EventStore):
        def _swap_event_status(self, event_id, expected, new, **fields):
            return False

    engine = LifecycleEngine(AlwaysLosing(db), bus, stale_retries=1)
    with pytest.raises(StaleState):
        engine.transition_event(event.id, "active", operator)
    assert EventStore(db).event_state(event.id)[0] == EventStatus.PLANNED


def test_concurrent_transitions_exactly_one_wins(lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        with SessionLocal() as session:
            engine = LifecycleEngine(EventStore(session))
            barrier.wait()
            try:
                engine.transition_event(event.id, "active", operator, expected="planned")
                result = "ok"
            except StaleState:
                result = "stale"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["ok", "stale"]
    audit = (
        lifecycle.store.db.query(WorkflowEvent)
        .filter(WorkflowEvent.event_id == event.id, WorkflowEvent.event_type == "EventStatusChanged")
        .count()
    )
    assert audit == 1


def test_overtaken_retry_reports_stale_not_invalid(db, bus, actors):
    operator = actors["operator"]
    event = make_event(LifecycleEngine(EventStore(db), bus), operator)

    class Overtaken(EventStore):
        overtaken = False

        def _swap_event_status(self, event_id, expected, new, **fields):
            if not self.overtaken:
                self.overtaken = True
                with SessionLocal() as other:
                    LifecycleEngine(EventStore(other)).transition_event(event_id, "active", operator)
            return super()._swap_event_status(event_id, expected, new, **fields)

    engine = LifecycleEngine(Overtaken(db), bus)
    with pytest.raises(StaleState) as exc:
        engine.transition_event(event.id, "active", operator)
    assert exc.value.code == "StaleState"
    assert exc.value.extra["expected"] == "planned"
    assert exc.value.actual == "active"


def test_concurrent_unpinned_transitions_loser_sees_stale(lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    class ReadsTogether(EventStore):
        waited = False

        def event_state(self, event_id):
            state = super().event_state(event_id)
            if not self.waited:
                self.waited = True
                barrier.wait(timeout=10)
            return state

    def attempt():
        with SessionLocal() as session:
            engine = LifecycleEngine(ReadsTogether(session))
            try:
                engine.transition_event(event.id, "active", operator)
                result = "ok"
            except StaleState:
                result = "StaleState"
            except InvalidTransition:
                result = "InvalidTransition"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["StaleState", "ok"]


def test_every_transition_writes_audit_row(lifecycle, actors, db):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    lifecycle.transition_event(event.id, "active", operator)
    rows = db.query(WorkflowEvent).filter(WorkflowEvent.event_id == event.id).all()
    kinds = sorted(r.event_type for r in rows)
    assert kinds == ["EventCreated", "EventStatusChanged"]


def test_update_event_only_while_open(lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    updated = lifecycle.update_event(event.id, operator, name="Main St resurfacing, phase 2", ward="Ward 7")
    assert updated.name == "Main St resurfacing, phase 2"
    assert updated.ward == "Ward 7"
    assert updated.status == EventStatus.PLANNED

    with pytest.raises(InvalidInput):
        lifecycle.update_event(event.id, operator, status="closed")
    with pytest.raises(InvalidInput):
        lifecycle.update_event(event.id, operator, name="  ")

    _to_pending_review(lifecycle, event, operator)
    with pytest.raises(InvalidTransition):
        lifecycle.update_event(event.id, operator, name="Too late")


def test_duplicate_closed_event(lifecycle, actors):
    operator, authority = actors["operator"], actors["authority"]
    event = make_event(lifecycle, operator, ward="Ward 2", requires_evidence_sign_off=True)
    lifecycle.create_work_order(event.id, operator, title="Inspect barriers", type="inspection")

    with pytest.raises(InvalidTransition):
        lifecycle.duplicate_event(event.id, operator)

    _to_pending_review(lifecycle, event, operator)
    lifecycle.record_decision(event.id, "permanent-change", authority)
    lifecycle.transition_event(event.id, "closed", authority)

    copy = lifecycle.duplicate_event(event.id, operator)
    assert copy.id != event.id
    assert copy.status == EventStatus.PLANNED
    assert copy.post_end_decision == PostEndDecision.PENDING
    assert copy.name == "Main St resurfacing (copy)"
    assert copy.ward == "Ward 2"
    assert copy.requires_evidence_sign_off is True
    assert copy.duplicated_from_id == event.id

    from roadworks.models.work_order import WorkOrder

    assert lifecycle.store.db.query(WorkOrder).filter(WorkOrder.event_id == copy.id).count() == 0
