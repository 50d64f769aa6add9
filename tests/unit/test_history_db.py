"""Tests for nanostudio.core.history_db — the SQLite history repository."""

from __future__ import annotations

import pytest

from nanostudio.core.errors import ConflictError
from nanostudio.core.history_db import HistoryDB, HistoryEntry

USER_ID = 1
OTHER_USER_ID = 2


def _entry(uuid: str, project_uuid: str = "proj-1", user_id: int = USER_ID, **kwargs) -> HistoryEntry:
    values = dict(
        uuid=uuid,
        user_id=user_id,
        project_uuid=project_uuid,
        model="flux-dev",
        prompt="a lighthouse at dusk",
        width=1024,
        height=768,
        image_name=f"{uuid}.png",
    )
    values.update(kwargs)
    return HistoryEntry(**values)


class TestInsertAndGet:
    def test_insert_assigns_id(self, history_db: HistoryDB):
        entry = history_db.insert(_entry("a"))
        assert entry.id is not None

    def test_round_trip_optional_fields(self, history_db: HistoryDB):
        history_db.insert(
            _entry("a", seed=42, scale=7.5, provider="api2", kontext_max_mode=True, resolution="1024x768")
        )
        stored = history_db.get("a", USER_ID)
        assert stored.seed == 42
        assert stored.scale == 7.5
        assert stored.provider == "api2"
        assert stored.kontext_max_mode is True
        assert stored.favorite is False

    def test_duplicate_uuid_conflicts(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        with pytest.raises(ConflictError):
            history_db.insert(_entry("a"))

    def test_get_scoped_to_owner(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        assert history_db.get("a", OTHER_USER_ID) is None

    def test_get_many_skips_unknown(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        history_db.insert(_entry("b"))
        found = history_db.get_many(["a", "b", "zzz"], USER_ID)
        assert sorted(e.uuid for e in found) == ["a", "b"]

    def test_find_by_image_name(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        assert history_db.find_by_image_name("a.png", USER_ID).uuid == "a"
        assert history_db.find_by_image_name("a.png", OTHER_USER_ID) is None


class TestListing:
    def test_newest_first(self, history_db: HistoryDB):
        history_db.insert(_entry("old", create_date=1000))
        history_db.insert(_entry("new", create_date=2000))
        assert [e.uuid for e in history_db.list_entries("proj-1", USER_ID)] == ["new", "old"]

    def test_ties_broken_by_insertion_order(self, history_db: HistoryDB):
        history_db.insert(_entry("first", create_date=1000))
        history_db.insert(_entry("second", create_date=1000))
        assert [e.uuid for e in history_db.list_entries("proj-1", USER_ID)] == ["second", "first"]

    def test_scoped_to_project_and_owner(self, history_db: HistoryDB):
        history_db.insert(_entry("mine"))
        history_db.insert(_entry("other-project", project_uuid="proj-2"))
        history_db.insert(_entry("other-user", user_id=OTHER_USER_ID))
        assert [e.uuid for e in history_db.list_entries("proj-1", USER_ID)] == ["mine"]

    def test_favorites_only_and_count(self, history_db: HistoryDB):
        history_db.insert(_entry("a", favorite=True))
        history_db.insert(_entry("b"))
        assert [e.uuid for e in history_db.list_entries("proj-1", USER_ID, favorites_only=True)] == ["a"]
        assert history_db.count("proj-1", USER_ID) == 2
        assert history_db.count("proj-1", USER_ID, favorites_only=True) == 1

    def test_limit_and_offset(self, history_db: HistoryDB):
        for i in range(5):
            history_db.insert(_entry(f"e{i}", create_date=1000 + i))
        page = history_db.list_entries("proj-1", USER_ID, limit=2, offset=2)
        assert [e.uuid for e in page] == ["e2", "e1"]


class TestMutations:
    def test_set_favorite(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        assert history_db.set_favorite("a", USER_ID, True) is True
        assert history_db.get("a", USER_ID).favorite is True

    def test_set_favorite_other_owner(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        assert history_db.set_favorite("a", OTHER_USER_ID, True) is False

    def test_update_location(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        history_db.update_location("a", USER_ID, "proj-2", "a-1.png")
        moved = history_db.get("a", USER_ID)
        assert (moved.project_uuid, moved.image_name) == ("proj-2", "a-1.png")

    def test_delete_and_delete_for_project(self, history_db: HistoryDB):
        history_db.insert(_entry("a"))
        history_db.insert(_entry("b"))
        history_db.insert(_entry("c"))
        assert history_db.delete("a", USER_ID) is True
        assert history_db.delete("a", USER_ID) is False
        assert history_db.delete_for_project("proj-1", USER_ID) == 2

    def test_latest_per_project(self, history_db: HistoryDB):
        history_db.insert(_entry("a", create_date=1000))
        history_db.insert(_entry("b", create_date=3000))
        history_db.insert(_entry("c", project_uuid="proj-2", create_date=2000))
        latest = history_db.latest_per_project(USER_ID, ["proj-1", "proj-2", "proj-3"])
        assert {k: v.uuid for k, v in latest.items()} == {"proj-1": "b", "proj-2": "c"}


class TestSerialisation:
    def test_create_date_is_iso_utc(self):
        entry = _entry("a", create_date=1_700_000_000_000)
        assert entry.to_dict()["create_date"] == "2023-11-14T22:13:20.000Z"
