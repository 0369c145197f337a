"""Tests for retail_agent.filters."""

from __future__ import annotations

import pytest

from conftest import RESULTS_URL
from retail_agent.filters import (
    FILTER_ORDER,
    FilterApplicationCoordinator,
    label_matches,
    ordered_filter_groups,
)
from retail_agent.models import Intent, Session


@pytest.fixture
def session(browser) -> Session:
    browser.urls[7] = RESULTS_URL
    return Session(id="s1", intent=Intent(query="samsung phone"), target_tab=7, platform="amazon")


def coordinator(page_agent, browser, **kwargs) -> FilterApplicationCoordinator:
    kwargs.setdefault("verify_timeout", 0.05)
    kwargs.setdefault("poll_interval", 0)
    return FilterApplicationCoordinator(page_agent, browser, **kwargs)


class TestOrderedFilterGroups:
    def test_fixed_order_with_price_grouped(self) -> None:
        filters = {
            "color": "blue",
            "storage": "128gb",
            "battery": 5000,
            "ram": 6,
            "brand": "samsung",
            "rating": 4,
            "price_max": 19500,
            "price_min": 10000,
        }
        groups = ordered_filter_groups(filters)
        assert [name for name, _ in groups] == list(FILTER_ORDER)
        assert groups[0] == ("price", {"price_min": 10000, "price_max": 19500})

    def test_unordered_keys_are_not_grouped(self) -> None:
        assert ordered_filter_groups({"category": "mobiles", "condition": "new"}) == []


class TestFilterApplicationCoordinator:
    @pytest.mark.asyncio
    async def test_applies_in_order_and_verifies_by_active_filters(self, page_agent, browser, session) -> None:
        coord = coordinator(page_agent, browser)
        ok = await coord.apply_filters(session, {"ram": 6, "price_max": 19500, "rating": 4, "category": "mobiles"})
        assert ok is True
        assert page_agent.filter_requests == [{"price_max": 19500}, {"rating": 4}, {"ram": 6}]
        report = coord.last_report
        assert report.applied == ["price", "rating", "ram"]
        assert report.failed == []
        assert report.skipped == ["category"]
        assert report.before_count == report.after_count == 25

    @pytest.mark.asyncio
    async def test_url_change_verifies(self, page_agent, browser, session) -> None:
        page_agent.filter_signal = "url"
        coord = coordinator(page_agent, browser)
        assert await coord.apply_filters(session, {"brand": "samsung"}) is True
        assert coord.last_report.applied == ["brand"]

    @pytest.mark.asyncio
    async def test_loading_seen_then_cleared_verifies(self, page_agent, browser, session) -> None:
        page_agent.filter_signal = "loading"
        coord = coordinator(page_agent, browser, verify_timeout=1.0)
        assert await coord.apply_filters(session, {"rating": 4}) is True
        assert page_agent.calls.count("apply_filters") == 1

    @pytest.mark.asyncio
    async def test_unverified_filter_retried_then_failed(self, page_agent, browser, session) -> None:
        page_agent.filter_signal = "none"
        coord = coordinator(page_agent, browser, max_attempts=3)
        assert await coord.apply_filters(session, {"rating": 4}) is False
        assert page_agent.calls.count("apply_filters") == 3
        assert coord.last_report.failed == ["rating"]

    @pytest.mark.asyncio
    async def test_inapplicable_filter_is_not_verified(self, page_agent, browser, session) -> None:
        page_agent.filter_accepted = False
        coord = coordinator(page_agent, browser, max_attempts=2)
        assert await coord.apply_filters(session, {"brand": "samsung", "ram": 6}) is False
        assert page_agent.calls.count("apply_filters") == 4
        assert "get_filter_state" in page_agent.calls
        assert coord.last_report.failed == ["brand", "ram"]

    @pytest.mark.asyncio
    async def test_partial_success_counts(self, page_agent, browser, session) -> None:
        original = page_agent.apply_filters

        async def refuse_ram(tab_id, filters):
            if "ram" in filters:
                page_agent.calls.append("apply_filters")
                return False
            return await original(tab_id, filters)

        page_agent.apply_filters = refuse_ram
        coord = coordinator(page_agent, browser, max_attempts=1)
        assert await coord.apply_filters(session, {"brand": "samsung", "ram": 6}) is True
        assert coord.last_report.applied == ["brand"]
        assert coord.last_report.failed == ["ram"]

    @pytest.mark.asyncio
    async def test_nothing_to_apply(self, page_agent, browser, session) -> None:
        coord = coordinator(page_agent, browser)
        assert await coord.apply_filters(session, {"category": "mobiles"}) is False
        assert page_agent.calls == []
        assert coord.last_report.skipped == ["category"]

    @pytest.mark.asyncio
    async def test_label_from_earlier_filter_does_not_verify(self, page_agent, browser, session) -> None:
        page_agent.active_filters = ["Under ₹14,999"]
        page_agent.filter_signal = "none"
        coord = coordinator(page_agent, browser, max_attempts=2)
        assert await coord.apply_filters(session, {"rating": 4}) is False
        assert coord.last_report.applied == []
        assert coord.last_report.failed == ["rating"]


class TestLabelMatches:
    @pytest.mark.parametrize(
        "name, group, label",
        [
            ("price", {"price_max": 19500}, "Under ₹19,500"),
            ("price", {"price_min": 10000, "price_max": 20000}, "₹10,000 - ₹20,000"),
            ("rating", {"rating": 4}, "4★ & Up"),
            ("rating", {"rating": 4}, "4 Stars & Up"),
            ("ram", {"ram": 6}, "6 GB"),
            ("storage", {"storage": "128gb"}, "128GB"),
            ("battery", {"battery": 5000}, "5000 mAh & Above"),
            ("brand", {"brand": "samsung"}, "Samsung"),
            ("color", {"color": "blue"}, "Colour: Blue"),
        ],
    )
    def test_matching_labels(self, name, group, label) -> None:
        assert label_matches(name, group, label) is True

    @pytest.mark.parametrize(
        "name, group, label",
        [
            ("rating", {"rating": 4}, "Under ₹14,999"),
            ("rating", {"rating": 4}, "4 GB"),
            ("price", {"price_max": 19500}, "4★ & Up"),
            ("ram", {"ram": 6}, "6000 mAh & Above"),
            ("ram", {"ram": 6}, "16 GB"),
            ("battery", {"battery": 5000}, "Under ₹5,000"),
            ("brand", {"brand": "mi"}, "Samsung Galaxy Mini"),
            ("color", {"color": "red"}, "Redmi"),
        ],
    )
    def test_labels_of_other_filters(self, name, group, label) -> None:
        assert label_matches(name, group, label) is False
