"""Tests for nanostudio.core.snippets — saved prompt snippets.

Tests cover:
- Search normalisation (blank queries, wildcard stripping).
- Creation rules: trimming, blank titles, required text.
- Newest-first listing, search over title and text, owner scoping.
- Deletion of own and foreign snippets.
"""

from __future__ import annotations

import pytest

from nanostudio.core.errors import InvalidRequestError, NotFoundError
from nanostudio.core.snippets import Snippet, SnippetsDB, SnippetService, normalize_search

USER_ID = 1
OTHER_USER_ID = 2


class TestNormalizeSearch:
    @pytest.mark.parametrize("query", [None, "", "   ", "%_%"])
    def test_no_filter(self, query):
        assert normalize_search(query) is None

    def test_wraps_and_strips_wildcards(self):
        assert normalize_search("  50%_off ") == "%50off%"


class TestCreate:
    def test_trims_text_and_title(self, snippet_service: SnippetService):
        snippet = snippet_service.create(USER_ID, "  soft light  ", "  Lighting ")
        assert (snippet.snippet, snippet.title) == ("soft light", "Lighting")
        assert snippet.id is not None

    @pytest.mark.parametrize("title", [None, "", "   "])
    def test_blank_title_stored_as_null(self, snippet_service: SnippetService, snippets_db: SnippetsDB, title):
        snippet = snippet_service.create(USER_ID, "fog", title)
        assert snippets_db.get(snippet.uuid, USER_ID).title is None

    @pytest.mark.parametrize("text", [None, "", " \n "])
    def test_text_required(self, snippet_service: SnippetService, text):
        with pytest.raises(InvalidRequestError, match="Snippet content is required"):
            snippet_service.create(USER_ID, text, "Title")


class TestListSnippets:
    def test_newest_first(self, snippets_db: SnippetsDB, snippet_service: SnippetService):
        snippets_db.insert(Snippet(uuid="old", user_id=USER_ID, snippet="a", created_at=1_000))
        snippets_db.insert(Snippet(uuid="new", user_id=USER_ID, snippet="b", created_at=2_000))
        snippets_db.insert(Snippet(uuid="tie", user_id=USER_ID, snippet="c", created_at=2_000))
        assert [s.uuid for s in snippet_service.list_snippets(USER_ID)] == ["tie", "new", "old"]

    def test_search_matches_title_or_text(self, snippet_service: SnippetService):
        by_text = snippet_service.create(USER_ID, "Misty forest at dawn")
        by_title = snippet_service.create(USER_ID, "tall pines", "Forest")
        snippet_service.create(USER_ID, "city lights", "Urban")

        found = snippet_service.list_snippets(USER_ID, "forest")
        assert {s.uuid for s in found} == {by_text.uuid, by_title.uuid}

    def test_wildcards_are_stripped(self, snippet_service: SnippetService):
        snippet_service.create(USER_ID, "abc")
        assert snippet_service.list_snippets(USER_ID, "a%c") == []

    def test_owner_scoped(self, snippet_service: SnippetService):
        snippet_service.create(USER_ID, "mine")
        assert snippet_service.list_snippets(OTHER_USER_ID) == []

    def test_to_dict_has_iso_timestamp(self):
        snippet = Snippet(uuid="s", user_id=USER_ID, snippet="x", created_at=0)
        assert snippet.to_dict()["created_at"] == "1970-01-01T00:00:00.000Z"


class TestDelete:
    def test_removes_own_snippet(self, snippet_service: SnippetService, snippets_db: SnippetsDB):
        snippet = snippet_service.create(USER_ID, "gone soon")
        snippet_service.delete(USER_ID, snippet.uuid)
        assert snippets_db.get(snippet.uuid, USER_ID) is None

    def test_foreign_snippet(self, snippet_service: SnippetService, snippets_db: SnippetsDB):
        snippet = snippet_service.create(USER_ID, "keep")
        with pytest.raises(NotFoundError, match="Snippet not found"):
            snippet_service.delete(OTHER_USER_ID, snippet.uuid)
        assert snippets_db.get(snippet.uuid, USER_ID) is not None

    def test_unknown_snippet(self, snippet_service: SnippetService):
        with pytest.raises(NotFoundError):
            snippet_service.delete(USER_ID, "missing")
