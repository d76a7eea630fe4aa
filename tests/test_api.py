"""End-to-end tests of the HTTP routes."""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import HOST

from pitchnight import config
from pitchnight.main import SESSION_SIGNER, app


def _client(user_id=None) -> TestClient:
    client = TestClient(app)
    if user_id:
        client.cookies.set(config.SESSION_COOKIE_NAME, SESSION_SIGNER.dumps({"user_id": user_id}))
    return client


@pytest.fixture
def host(db):
    return _client(HOST)


@pytest.fixture
def live_event(host):
    """Event with two categories and two submitted groups, via the API."""
    resp = host.post("/events", json={"name": "Demo Day", "categories": [{"name": "Idea"}, {"name": "Pitch"}]})
    assert resp.status_code == 200
    event_id = resp.json()["event_id"]
    group_ids = []
    for leader, name in (("alice", "Rocket"), ("bob", "Comet")):
        member = _client(leader)
        group = member.post(f"/events/{event_id}/groups", json={"name": name}).json()["group"]
        assert member.post(f"/events/{event_id}/groups/{group['id']}/submit").json()["group"]["status"] == "submitted"
        group_ids.append(group["id"])
    live = host.get(f"/events/{event_id}/live").json()
    category_ids = [c["id"] for c in live["categories"]]
    return event_id, group_ids, category_ids


def test_login_sets_cookie(db, monkeypatch):
    monkeypatch.setattr(config, "LOGIN_KEY", "secret")
    client = TestClient(app)
    assert client.get("/login", params={"user_id": "u1", "key": "wrong"}, follow_redirects=False).status_code == 403
    resp = client.get("/login", params={"user_id": "u1", "key": "secret"}, follow_redirects=False)
    assert resp.status_code == 303
    assert config.SESSION_COOKIE_NAME in resp.cookies


def test_create_event_requires_login(db):
    resp = _client().post("/events", json={"name": "X", "categories": [{"name": "A"}]})
    assert resp.status_code == 401


def test_create_event_requires_category(host):
    assert host.post("/events", json={"name": "X", "categories": []}).status_code == 422


def test_join_by_code(host, live_event):
    event_id, _, _ = live_event
    code = host.get(f"/events/{event_id}/live").json()["event"]["join_code"]
    assert _client().get(f"/join/{code.lower()}").json()["event_id"] == event_id
    assert _client().get("/join/NOPE1234").status_code == 404


def test_host_view_activates_event(host, live_event):
    event_id, _, _ = live_event
    data = _client("alice").get(f"/events/{event_id}/live").json()
    assert data["event"]["status"] == "live"
    assert data["is_host"] is False
    assert host.get(f"/events/{event_id}/live").json()["is_host"] is True


def test_anonymous_voting_flow(host, live_event):
    event_id, (rocket, comet), (idea, pitch) = live_event
    guest = _client()
    code = guest.post(f"/events/{event_id}/sessions", json={"display_name": "Guest"}).json()["session_code"]

    resp = guest.post(
        f"/events/{event_id}/votes",
        params={"session": code},
        json={"group_id": rocket, "ratings": [{"category_id": idea, "stars": 5}, {"category_id": pitch, "stars": 3}]},
    )
    assert resp.json()["ok"] is True
    _client("carol").post(
        f"/events/{event_id}/votes",
        json={"group_id": rocket, "ratings": [{"category_id": idea, "stars": 4}, {"category_id": pitch, "stars": 4}]},
    )

    board = host.get(f"/events/{event_id}/leaderboard").json()
    top = board["full_leaderboard"][0]
    assert top["group_id"] == rocket
    assert top["total_score"] == 16
    assert top["average_score"] == 8
    assert [c["average_stars"] for c in top["category_scores"]] == [4.5, 3.5]
    assert [e["group_id"] for e in board["podium"]["first"]] == [rocket]
    assert [e["group_id"] for e in board["podium"]["second"]] == [comet]

    mine = guest.get(f"/events/{event_id}/live", params={"session": code}).json()["my_votes"]
    assert mine == {str(rocket): {str(idea): 5, str(pitch): 3}}


def test_vote_errors(live_event):
    event_id, (rocket, _), (idea, _) = live_event
    body = {"group_id": rocket, "ratings": [{"category_id": idea, "stars": 4}]}
    resp = _client().post(f"/events/{event_id}/votes", json=body)
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "Not authenticated"}
    assert _client().post(f"/events/{event_id}/votes", params={"session": "bogus"}, json=body).status_code == 400
    bad = {"group_id": rocket, "ratings": [{"category_id": idea, "stars": 6}]}
    assert _client("carol").post(f"/events/{event_id}/votes", json=bad).status_code == 422
    missing = {"group_id": 999, "ratings": [{"category_id": idea, "stars": 4}]}
    assert _client("carol").post(f"/events/{event_id}/votes", json=missing).status_code == 404


def test_autosave_and_progress(host, live_event):
    event_id, (rocket, _), (idea, pitch) = live_event
    host.post(f"/events/{event_id}/current-presentation", json={"group_id": rocket})
    carol = _client("carol")
    carol.post(f"/events/{event_id}/votes/autosave", json={"group_id": rocket, "category_id": idea, "stars": 2})
    assert host.get(f"/events/{event_id}/progress").json()["votes"] == 0
    carol.post(f"/events/{event_id}/votes/autosave", json={"group_id": rocket, "category_id": pitch, "stars": 3})
    progress = host.get(f"/events/{event_id}/progress").json()
    assert progress["votes"] == 1
    assert progress["potential_voters"] == 2


def test_timer_routes(host, live_event):
    event_id, _, _ = live_event
    assert host.post(f"/events/{event_id}/timer/pause").status_code == 409
    started = host.post(f"/events/{event_id}/timer/start", json={"minutes": 10}).json()["timer"]
    assert started["state"] == "running"
    assert started["duration"] == 600
    paused = host.post(f"/events/{event_id}/timer/pause").json()["timer"]
    assert paused["state"] == "paused"
    assert 595 <= paused["remaining"] <= 600
    assert host.post(f"/events/{event_id}/timer/resume").json()["timer"]["state"] == "running"
    assert host.post(f"/events/{event_id}/timer/stop").json()["timer"]["state"] == "stopped"
    assert _client("alice").post(f"/events/{event_id}/timer/start", json={"minutes": 1}).status_code == 403
    assert _client().get(f"/events/{event_id}/timer").json()["state"] == "stopped"


def test_winner_reveal_routes(host, live_event):
    event_id, _, _ = live_event
    shown = host.post(f"/events/{event_id}/winners/show").json()["event"]
    assert shown["status"] == "completed"
    assert host.post(f"/events/{event_id}/winners/reveal", json={"step": 2}).json()["winners_reveal_step"] == 2
    assert host.post(f"/events/{event_id}/winners/back").json()["event"]["status"] == "active"
    assert _client().post(f"/events/{event_id}/confetti").json()["confetti_count"] == 1
    assert _client().post(f"/events/{event_id}/confetti").json()["confetti_count"] == 2


def test_reset_votes_route(host, live_event):
    event_id, (rocket, _), (idea, pitch) = live_event
    _client("carol").post(
        f"/events/{event_id}/votes",
        json={"group_id": rocket, "ratings": [{"category_id": idea, "stars": 4}, {"category_id": pitch, "stars": 4}]},
    )
    assert _client("carol").post(f"/events/{event_id}/votes/reset").status_code == 403
    assert host.post(f"/events/{event_id}/votes/reset").json() == {"ok": True, "deleted": 1}
    assert host.get(f"/events/{event_id}/leaderboard").json()["full_leaderboard"][0]["total_score"] == 0


def test_reorder_and_csv_export(host, live_event):
    event_id, (rocket, comet), _ = live_event
    assert host.post(f"/events/{event_id}/presentation-order", json={"order": [comet, comet]}).status_code == 422
    assert host.post(f"/events/{event_id}/presentation-order", json={"order": [comet, rocket]}).json()["ok"]
    resp = host.get(f"/events/{event_id}/leaderboard.csv")
    assert resp.status_code == 200
    lines = resp.text.strip().splitlines()
    assert lines[0] == "rank,group,total,average,votes,Idea,Pitch"
    assert lines[1].startswith("1,Comet,0,")
    assert _client("alice").get(f"/events/{event_id}/leaderboard.csv").status_code == 403


def test_remove_voting_session_route(host, live_event):
    event_id, _, _ = live_event
    code = _client().post(f"/events/{event_id}/sessions", json={"display_name": "Guest"}).json()["session_code"]
    session_id = host.get(f"/events/{event_id}/live").json()["participants"]["sessions"][0]["id"]
    assert host.delete(f"/events/{event_id}/sessions/{session_id}").json() == {"ok": True}
    assert _client().get(f"/events/{event_id}/live", params={"session": code}).status_code == 400


def test_vote_with_display_name_opens_session(live_event):
    event_id, (rocket, _), (idea, pitch) = live_event
    guest = _client()
    body = {"group_id": rocket, "ratings": [{"category_id": idea, "stars": 2}, {"category_id": pitch, "stars": 4}]}
    code = guest.post(f"/events/{event_id}/votes", params={"name": "Walk-in"}, json=body).json()["session_code"]
    assert len(code) == 10
    saved = guest.post(
        f"/events/{event_id}/votes/autosave",
        params={"session": code},
        json={"group_id": rocket, "category_id": idea, "stars": 5},
    ).json()
    assert saved["session_code"] == code
    mine = guest.get(f"/events/{event_id}/live", params={"session": code}).json()["my_votes"]
    assert mine == {str(rocket): {str(idea): 5, str(pitch): 4}}


def test_remove_participant_route(host, live_event):
    event_id, (rocket, comet), _ = live_event
    assert host.get(f"/events/{event_id}/progress").json()["potential_voters"] == 2
    assert _client("bob").delete(f"/events/{event_id}/participants/alice").status_code == 403
    resp = host.delete(f"/events/{event_id}/participants/alice")
    assert resp.json() == {"ok": True, "deleted_groups": [rocket]}
    assert host.get(f"/events/{event_id}/progress").json()["potential_voters"] == 1
    groups = host.get(f"/events/{event_id}/live").json()["groups"]
    assert [g["id"] for g in groups] == [comet]
    assert host.delete(f"/events/{event_id}/participants/alice").status_code == 404
