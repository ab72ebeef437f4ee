import asyncio

from conftest import login
from roadworks.routers.recent_edits import format_sse, stream_subscription

EVENT = {
    "name": "Bridge deck repair",
    "restrictionType": "full_closure",
    "startDate": "2026-04-01T07:00:00Z",
    "endDate": "2026-04-03T19:00:00Z",
    "ward": "Ward 5",
    "requiresEvidenceSignOff": True,
}


def _create_event(client, headers):
    resp = client.post("/events", json=EVENT, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _transition(client, path, to, headers, **extra):
    return client.post(f"{path}/transition", json={"to": to, **extra}, headers=headers)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_login_rejects_bad_password(client):
    resp = client.post("/auth/login", json={"username": "operator", "password": "nope"})
    assert resp.status_code == 401


def test_requires_token(client):
    assert client.get("/events").status_code == 401


def test_event_close_flow_over_http(client):
    op = login(client, "operator")
    auth = login(client, "authority")
    event = _create_event(client, op)
    path = f"/events/{event['id']}"
    assert event["status"] == "planned"

    assert _transition(client, path, "active", op).json()["status"] == "active"
    reviewed = _transition(client, path, "pending_review", op).json()
    assert reviewed["decisionRequired"] is True

    blocked = _transition(client, path, "closed", auth)
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "DecisionRequired"
    assert blocked.json()["decisionRequired"] is True

    decided = client.post(f"{path}/decision", json={"postEndDecision": "no-change", "notes": "ok"}, headers=auth)
    assert decided.status_code == 200
    assert decided.json()["postEndDecision"] == "no-change"

    closed = _transition(client, path, "closed", auth)
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"

    archived = client.post(f"{path}/archive", headers=op)
    assert archived.json()["archivedAt"] is not None
    listing = client.get("/events", headers=op).json()
    assert listing["meta"]["archivedCount"] == 1
    assert listing["data"] == []

    history = client.get(f"{path}/history", headers=op).json()
    assert len(history) >= 5


def test_transition_error_codes(client):
    op = login(client, "operator")
    reviewer = login(client, "reviewer")
    event = _create_event(client, op)
    path = f"/events/{event['id']}"

    invalid = _transition(client, path, "closed", op)
    assert invalid.status_code == 409
    assert invalid.json()["code"] == "InvalidTransition"

    forbidden = _transition(client, path, "active", reviewer)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "Unauthorized"

    _transition(client, path, "active", op)
    stale = _transition(client, path, "active", op, expected="planned")
    assert stale.status_code == 409
    assert stale.json()["code"] == "StaleState"

    missing = _transition(client, "/events/CE-missing", "active", op)
    assert missing.status_code == 404


def test_work_order_sign_off_over_http(client, tmp_path):
    op = login(client, "operator")
    reviewer = login(client, "reviewer")
    auth = login(client, "authority")
    event = _create_event(client, op)

    wo = client.post(
        "/workorders", json={"eventId": event["id"], "title": "Deck patch", "type": "repair"}, headers=op
    ).json()
    wo_path = f"/workorders/{wo['id']}"
    assert client.post(f"{wo_path}/assign", json={"assignedDept": "Bridges"}, headers=op).json()["status"] == "assigned"
    _transition(client, wo_path, "in_progress", op)

    blocked = _transition(client, wo_path, "completed", op)
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "EvidenceSignOffRequired"

    upload = client.post(
        f"{wo_path}/evidence",
        files={"file": ("after.jpg", b"\xff\xd8\xff fake jpeg", "image/jpeg")},
        data={"type": "photo", "title": "After repair"},
        headers=op,
    )
    assert upload.status_code == 201, upload.text
    evidence = upload.json()
    assert evidence["reviewStatus"] == "pending"

    ev_path = f"/evidence/{evidence['id']}"
    early = client.post(f"{ev_path}/decision", json={"decision": "accepted_by_authority"}, headers=auth)
    assert early.status_code == 409

    assert client.post(f"{ev_path}/decision", json={"decision": "approved"}, headers=reviewer).status_code == 200

    spoofed = client.post(
        f"{ev_path}/decision", json={"decision": "accepted_by_authority", "userRole": "authority"}, headers=reviewer
    )
    assert spoofed.status_code == 403

    not_authority = client.post(f"{ev_path}/decision", json={"decision": "accepted_by_authority"}, headers=reviewer)
    assert not_authority.status_code == 403
    assert not_authority.json()["code"] == "Unauthorized"

    accepted = client.post(
        f"{ev_path}/decision", json={"decision": "accepted_by_authority", "userRole": "authority"}, headers=auth
    )
    assert accepted.status_code == 200
    assert accepted.json()["decisionBy"] == "AUTHORITY"

    done = _transition(client, wo_path, "completed", op)
    assert done.status_code == 200
    assert done.json()["signOffSatisfied"] is True

    download = client.get(f"{ev_path}/download", headers=op)
    assert download.status_code == 200
    assert download.content == b"\xff\xd8\xff fake jpeg"


def test_upload_rejects_wrong_type(client):
    op = login(client, "operator")
    event = _create_event(client, op)
    wo = client.post("/workorders", json={"eventId": event["id"], "title": "Survey"}, headers=op).json()
    resp = client.post(
        f"/workorders/{wo['id']}/evidence",
        files={"file": ("notes.exe", b"MZ", "application/x-msdownload")},
        data={"type": "photo"},
        headers=op,
    )
    assert resp.status_code == 400


def test_recent_edits_list_and_status(client):
    op = login(client, "operator")
    created = client.post("/assets", json={"name": "Route 2", "ward": "Ward 1", "bbox": [1, 2, 3, 4]}, headers=op)
    assert created.status_code == 201
    asset_id = created.json()["asset"]["id"]

    unchanged = client.patch(f"/assets/{asset_id}", json={"name": "Route 2"}, headers=op)
    assert unchanged.json()["edit"] is None
    client.patch(f"/assets/{asset_id}", json={"roadType": "local"}, headers=op)
    deleted = client.delete(f"/assets/{asset_id}", headers=op).json()["edit"]

    page = client.get("/recent-edits", params={"limit": 2}, headers=op).json()
    assert [e["editType"] for e in page["data"]] == ["delete", "update"]
    assert page["meta"]["hasMore"] is True
    assert page["data"][0]["id"] == deleted["id"]

    first_id = client.get("/recent-edits", params={"limit": 3}, headers=op).json()["data"][-1]["id"]
    replay = client.get("/recent-edits", params={"since": first_id}, headers=op).json()
    assert [e["editType"] for e in replay["data"]] == ["update", "delete"]

    bad = client.get("/recent-edits", params={"since": "yesterday"}, headers=op)
    assert bad.status_code == 400
    assert bad.json()["code"] == "InvalidInput"

    status = client.get("/recent-edits/status", headers=op).json()
    assert status["connectedClients"] == 0


def test_reviewer_cannot_edit_assets(client):
    reviewer = login(client, "reviewer")
    assert client.post("/assets", json={"name": "Route 3"}, headers=reviewer).status_code == 403


def test_format_sse():
    frame = format_sse({"id": "REL-1"}, event="recent_edit", event_id="REL-1")
    assert frame == 'id: REL-1\nevent: recent_edit\ndata: {"id": "REL-1"}\n\n'


class _Request:
    """Stands in for a Starlette request; disconnects after ``polls`` checks."""

    def __init__(self, polls):
        self.polls = polls

    async def is_disconnected(self):
        self.polls -= 1
        return self.polls < 0


def test_stream_emits_edits_and_releases_slot(db, bus):
    from roadworks.services import assets

    assets.create_asset(db, bus, asset_id="A1", name="Route 9")
    cursor = bus.list_recent(db, limit=1)[0][0].id
    edit = assets.delete_asset(db, bus, "A1")
    sub = bus.subscribe("viewer", since=cursor, db=db)

    async def collect():
        frames = []
        async for frame in stream_subscription(_Request(polls=2), bus, sub, "recent_edit", heartbeat=0.01):
            frames.append(frame)
        return frames

    frames = asyncio.run(collect())
    assert frames[0].startswith("retry:")
    assert "event: connected" in frames[1]
    assert frames[2].startswith(f"id: {edit.id}\nevent: recent_edit")
    assert frames[3] == ": heartbeat\n\n"
    assert bus.subscriber_count() == 0


def test_work_order_partners_over_http(client):
    op = login(client, "operator")
    event = _create_event(client, op)
    wo = client.post("/workorders", json={"eventId": event["id"], "title": "Deck patch"}, headers=op).json()
    path = f"/workorders/{wo['id']}/partners"

    added = client.post(path, json={"partnerId": "P-17", "partnerName": "Kanto Paving"}, headers=op)
    assert added.status_code == 201, added.text
    assert added.json()["role"] == "contractor"

    again = client.post(path, json={"partnerId": "P-17", "partnerName": "Kanto Paving"}, headers=op)
    assert again.status_code == 400
    assert again.json()["code"] == "InvalidInput"

    detail = client.get(f"/workorders/{wo['id']}", headers=op).json()
    assert [p["partnerId"] for p in detail["partners"]] == ["P-17"]

    assert client.delete(f"{path}/P-17", headers=op).status_code == 204
    assert client.delete(f"{path}/P-17", headers=op).status_code == 404
