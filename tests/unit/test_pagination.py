"""Tests for nanostudio.core.pagination — page clamping and query flags."""

from __future__ import annotations

import pytest

from nanostudio.core.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PageRequest,
    parse_flag,
    resolve_page,
)


class TestResolvePage:
    """Test resolve_page clamping rules."""

    def test_defaults(self):
        assert resolve_page() == PageRequest(page=1, page_size=DEFAULT_PAGE_SIZE)

    @pytest.mark.parametrize("page", [0, -3, "0", "-1"])
    def test_page_floored_to_one(self, page):
        assert resolve_page(page, 10).page == 1

    def test_page_size_clamped_to_maximum(self):
        assert resolve_page(1, 1000).page_size == MAX_PAGE_SIZE

    def test_zero_page_size_uses_default(self):
        assert resolve_page(1, 0).page_size == DEFAULT_PAGE_SIZE

    def test_negative_page_size_clamped_to_one(self):
        assert resolve_page(1, -5).page_size == 1

    def test_query_strings_parsed(self):
        assert resolve_page("3", "20") == PageRequest(page=3, page_size=20)

    @pytest.mark.parametrize("value", ["abc", "", "inf", None, True])
    def test_unparseable_values_fall_back(self, value):
        assert resolve_page(value, value) == PageRequest(page=1, page_size=DEFAULT_PAGE_SIZE)

    def test_offset(self):
        """Page 2 of size 10 starts after the first ten rows."""
        assert resolve_page(2, 10).offset == 10


class TestParseFlag:
    """Only 'true' and '1' switch a flag on."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", " true ", True])
    def test_truthy(self, value):
        assert parse_flag(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "yes", "", None, False])
    def test_falsy(self, value):
        assert parse_flag(value) is False
