from conftest import make_event
from roadworks.services import assets, read_model


def _close(lifecycle, actors, event):
    lifecycle.transition_event(event.id, "active", actors["operator"])
    lifecycle.transition_event(event.id, "pending_review", actors["operator"])
    lifecycle.record_decision(event.id, "no-change", actors["authority"])
    lifecycle.transition_event(event.id, "closed", actors["authority"])


def test_list_hides_archived_by_default(db, lifecycle, actors):
    operator = actors["operator"]
    planned = make_event(lifecycle, operator, name="Planned work")
    active = make_event(lifecycle, operator, name="Active work")
    lifecycle.transition_event(active.id, "active", operator)
    archived = make_event(lifecycle, operator, name="Old work")
    _close(lifecycle, actors, archived)
    lifecycle.archive_event(archived.id, operator)

    listing = read_model.list_events(db)
    assert [e["id"] for e in listing["data"]] == [active.id, planned.id]
    assert listing["meta"]["total"] == 2
    assert listing["meta"]["archivedCount"] == 1

    everything = read_model.list_events(db, include_archived=True)
    assert everything["meta"]["total"] == 3

    counts = read_model.status_counts(db)
    assert counts["planned"] == 1 and counts["active"] == 1 and counts["archivedCount"] == 1


def test_event_detail_flags_pending_decision(db, lifecycle, actors):
    operator = actors["operator"]
    asset, _ = assets.create_asset(db, lifecycle.bus, name="Route 1", ward="Ward 4")
    event = make_event(lifecycle, operator, road_asset_ids=[asset.id], ref_asset_id=asset.id, ref_asset_type="road")
    wo = lifecycle.create_work_order(event.id, operator, title="Survey", type="inspection")
    lifecycle.submit_evidence(wo.id, operator, type="photo", file_ref="uploads/a.jpg")
    lifecycle.transition_event(event.id, "active", operator)
    lifecycle.transition_event(event.id, "pending_review", operator)

    detail = read_model.event_detail(db, event.id)
    assert detail["decisionRequired"] is True
    assert detail["roadAssets"][0]["name"] == "Route 1"
    assert detail["refAsset"]["id"] == asset.id
    assert detail["workOrderCounts"]["draft"] == 1
    assert detail["pendingEvidenceCount"] == 1

    lifecycle.record_decision(event.id, "permanent-change", actors["authority"])
    assert read_model.event_detail(db, event.id)["decisionRequired"] is False


def test_work_order_detail_sign_off(db, lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator, requires_evidence_sign_off=True)
    wo = lifecycle.create_work_order(event.id, operator, title="Patch", type="repair")
    ev = lifecycle.submit_evidence(wo.id, operator, type="photo", file_ref="uploads/b.jpg")

    detail = read_model.work_order_detail(db, wo.id)
    assert detail["signOffSatisfied"] is False
    assert [e["id"] for e in detail["evidence"]] == [ev.id]

    lifecycle.decide_evidence(ev.id, "approved", actors["reviewer"])
    lifecycle.decide_evidence(ev.id, "accepted_by_authority", actors["authority"])
    assert read_model.work_order_detail(db, wo.id)["signOffSatisfied"] is True


def test_history_covers_children(db, lifecycle, actors):
    operator = actors["operator"]
    event = make_event(lifecycle, operator)
    wo = lifecycle.create_work_order(event.id, operator, title="Patch", type="repair")
    lifecycle.transition_work_order(wo.id, "assigned", operator)

    history = read_model.event_history(db, event.id)
    kinds = {h["eventType"] for h in history}
    assert kinds == {"EventCreated", "WorkOrderCreated", "WorkOrderStatusChanged"}
