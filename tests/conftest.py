"""Shared test helpers."""

from datetime import datetime

import pytest

from pitchnight import storage
from pitchnight.identity import VoterIdentity
from pitchnight.storage import Category, Group, Vote

HOST = "host-1"
T0 = datetime(2026, 3, 14, 19, 0, 0)


@pytest.fixture
def db(tmp_path, monkeypatch):
    """A fresh sqlite database for each test."""
    monkeypatch.setattr(storage, "DB_PATH", tmp_path / "test.db")
    storage.init_db()
    return tmp_path / "test.db"


@pytest.fixture
def event(db):
    """Event with categories Idea, Delivery and two submitted groups A, B."""
    ev = storage.create_event("Pitch Night", HOST, [{"name": "Idea"}, {"name": "Delivery"}])
    for name, leader in (("A", "alice"), ("B", "bob")):
        group = storage.add_group(ev.id, name, leader_id=leader)
        storage.submit_presentation(ev.id, group.id, leader)
    return storage.get_event(ev.id)


def event_setup(event_id: int):
    """(categories, groups) of an event, in display order."""
    return storage.list_categories(event_id), storage.list_groups(event_id)


def user(user_id: str) -> VoterIdentity:
    return VoterIdentity(user_id=user_id)


def make_categories(*names: str) -> list[Category]:
    return [Category(id=i + 1, event_id=1, name=n, description=None, order=i) for i, n in enumerate(names)]


def make_groups(*names: str) -> list[Group]:
    return [Group(id=i + 1, event_id=1, name=n, status="submitted", presentation_order=i) for i, n in enumerate(names)]


def make_votes(table: dict[str, list[dict[str, int]]], groups: list[Group], categories: list[Category]) -> list[Vote]:
    """Build votes from a compact table.

    Args:
        table: {group_name: [{category_name: stars}, ...]}, one dict per vote

    Returns:
        Vote objects keyed by ids, one distinct voter per vote.
    """
    by_group = {g.name: g.id for g in groups}
    by_category = {c.name: c.id for c in categories}
    votes = []
    for group_name, ballots in table.items():
        for ballot in ballots:
            votes.append(Vote(
                id=len(votes) + 1,
                event_id=1,
                group_id=by_group[group_name],
                user_id=f"voter-{len(votes) + 1}",
                voting_session_id=None,
                ratings={by_category[c]: s for c, s in ballot.items()},
            ))
    return votes


def entry_names(leaderboard) -> list[str]:
    return [e.group.name for e in leaderboard.entries]
