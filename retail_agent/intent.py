"""Deterministic request parser, used when the LLM is unavailable."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from .errors import IntentError
from .matcher import infer_brand
from .models import Intent, normalize_filters
from .platforms import PLATFORMS

logger = logging.getLogger("retail_agent.intent")

_CURRENCY = r"(?:rs\.?|₹|rupees?|inr|\$|usd)?"
_AMOUNT = r"(\d+(?:,\d+)*(?:\.\d+)?)\s*(k|thousand)?"

_FILLER = re.compile(
    r"\b(?:from|on|buy|purchase|get|find|search for|show me|i want|i need|order|me|a|an)\b",
    re.I,
)


def _amount(number: str, suffix: Optional[str]) -> float:
    value = float(number.replace(",", ""))
    return value * 1000 if suffix else value


def parse_intent_simple(text: str) -> Intent:
    """Regex-based Intent extraction.

    Recognises the platform, price bounds ("under 20k", "above 5000"),
    minimum rating, storage, RAM, battery, a known brand and the ranking
    words "cheapest" / "best rated".
    """
    if not isinstance(text, str) or not text.strip():
        raise IntentError("Empty request. Tell me what you want to buy.")
    lowered = text.lower()

    platform = next((name for name in PLATFORMS if name in lowered), None)

    filters: Dict[str, Any] = {}
    # Matched phrases are blanked out of `work` so later patterns cannot reuse them.
    work = lowered

    def take(pattern: str) -> Optional[re.Match]:
        nonlocal work
        match = re.search(pattern, work)
        if match:
            start, end = match.span()
            work = work[:start] + " " * (end - start) + work[end:]
        return match

    match = take(r"(?:rating|rated|stars?)\s*(?:of\s*)?(?:above|over|more than|at least|minimum|greater than)?\s*(\d(?:\.\d)?)(?!\d)")
    if not match:
        match = take(r"(\d(?:\.\d)?)\s*(?:\+\s*)?(?:stars?|★)")
    if match:
        filters["rating"] = float(match.group(1))

    match = take(r"(\d+)\s*(gb|tb)\s*(?:storage|rom|space|ssd)")
    if match:
        filters["storage"] = f"{match.group(1)}{match.group(2)}"

    match = take(r"(?:(?:greater than|more than|at least|minimum)\s*)?(\d+)\s*(?:gb|gigabytes?)\s*(?:ram|memory)")
    if match:
        filters["ram"] = f"{match.group(1)}gb"

    match = take(r"(?:(?:greater than|more than|at least|minimum)\s*)?(\d{3,5})\s*(?:mah|battery)")
    if match:
        filters["battery"] = int(match.group(1))

    match = take(rf"(?:under|below|less than|max(?:imum)?|upto|up to|within)\s*{_CURRENCY}\s*{_AMOUNT}")
    if match:
        filters["price_max"] = _amount(match.group(1), match.group(2))

    match = take(rf"(?:above|over|more than|min(?:imum)?|greater than|at least)\s*{_CURRENCY}\s*{_AMOUNT}(?![\d.,])")
    if match:
        filters["price_min"] = _amount(match.group(1), match.group(2))

    brand = infer_brand(lowered)
    if brand:
        filters["brand"] = brand

    strategy = "relevant"
    if re.search(r"\b(?:cheapest|lowest price|budget)\b", lowered):
        strategy = "cheapest"
    elif re.search(r"\b(?:best rated|top rated|highest rated)\b", lowered):
        strategy = "best_rated"

    # Product text: the request minus the filter phrases, platform and filler.
    product = work
    product = re.sub(r"\b(?:" + "|".join(PLATFORMS) + r")\b", " ", product, flags=re.I)
    product = re.sub(r"\b(?:with|and|cheapest|best rated|top rated|rating|price|battery|ram)\b", " ", product, flags=re.I)
    product = _FILLER.sub(" ", product)
    product = re.sub(r"[,;]+", " ", product)
    product = re.sub(r"\s+", " ", product).strip()

    intent = Intent(
        query=product or text.strip(),
        platform_hint=platform,
        filters=normalize_filters(filters),
        ranking_strategy=strategy,
    )
    logger.info("Simple parser: query=%r platform=%s filters=%s", intent.query, platform, intent.filters)
    return intent
