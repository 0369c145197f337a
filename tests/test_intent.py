"""Tests for retail_agent.intent.parse_intent_simple."""

from __future__ import annotations

import pytest

from retail_agent.errors import IntentError
from retail_agent.intent import parse_intent_simple


class TestParseIntentSimple:
    def test_price_brand_and_platform(self) -> None:
        intent = parse_intent_simple("buy samsung phone under 20k on amazon")
        assert intent.query == "samsung phone"
        assert intent.platform_hint == "amazon"
        assert intent.filters == {"price_max": 20000, "brand": "samsung"}
        assert intent.ranking_strategy == "relevant"

    def test_specs_do_not_leak_into_price(self) -> None:
        intent = parse_intent_simple(
            "samsung phone with rating above 4, 6gb ram and greater than 5000 mah battery under 19500"
        )
        assert intent.query == "samsung phone"
        assert intent.platform_hint is None
        assert intent.filters == {
            "price_max": 19500,
            "brand": "samsung",
            "ram": "6gb",
            "battery": 5000,
            "rating": 4,
        }

    def test_storage_and_cheapest(self) -> None:
        intent = parse_intent_simple("cheapest 128gb storage phone from flipkart")
        assert intent.query == "phone"
        assert intent.platform_hint == "flipkart"
        assert intent.filters == {"storage": "128gb"}
        assert intent.ranking_strategy == "cheapest"

    def test_price_floor_and_best_rated(self) -> None:
        intent = parse_intent_simple("best rated headphones above 2000")
        assert intent.query == "headphones"
        assert intent.filters == {"price_min": 2000}
        assert intent.ranking_strategy == "best_rated"

    def test_star_rating(self) -> None:
        intent = parse_intent_simple("4.5 stars bluetooth speaker")
        assert intent.query == "bluetooth speaker"
        assert intent.filters == {"rating": 4.5}

    def test_thousand_and_currency(self) -> None:
        intent = parse_intent_simple("running shoes below rs. 3 thousand")
        assert intent.query == "running shoes"
        assert intent.filters == {"price_max": 3000}

    def test_nothing_but_filler_falls_back_to_text(self) -> None:
        assert parse_intent_simple("buy").query == "buy"

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_rejected(self, text) -> None:
        with pytest.raises(IntentError):
            parse_intent_simple(text)
