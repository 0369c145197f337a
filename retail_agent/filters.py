"""Remote filter application with per-filter verification."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .channel import AbstractBrowser, AbstractPageAgent, call_with_timeout
from .config import (
    FILTER_POLL_INTERVAL,
    MAX_FILTER_ATTEMPTS,
    TIMEOUT_FILTER_APPLY,
    TIMEOUT_FILTER_VERIFY,
    TIMEOUT_TAB_QUERY,
)
from .errors import TransientRemoteError
from .models import FilterReport, FilterSet, Session

logger = logging.getLogger("retail_agent.filters")

# Fixed application order. "price" covers price_min and price_max together.
FILTER_ORDER = ("price", "rating", "brand", "ram", "battery", "storage", "color")

UNIT_FILTERS = {"ram": ("gb",), "storage": ("gb", "tb"), "battery": ("mah",)}
RATING_MARKERS = ("★", "☆", "star", "rating")

_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")
_NUMBER_WITH_UNIT = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([a-z]+)")


def ordered_filter_groups(filters: FilterSet) -> List[Tuple[str, Dict[str, Any]]]:
    """Split a filter set into single-filter requests in application order."""
    groups: List[Tuple[str, Dict[str, Any]]] = []
    for name in FILTER_ORDER:
        if name == "price":
            price = {k: filters[k] for k in ("price_min", "price_max") if k in filters}
            if price:
                groups.append((name, price))
        elif name in filters:
            groups.append((name, {name: filters[name]}))
    return groups


def _result_count(state: Dict[str, Any]) -> Optional[int]:
    count = state.get("resultCount")
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        return None
    return int(count)


def _numbers(text: str) -> List[float]:
    return [float(n.replace(",", "")) for n in _NUMBER.findall(text)]


def _amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    numbers = _numbers(str(value))
    return numbers[0] if numbers else None


def label_matches(name: str, group: Dict[str, Any], label: str) -> bool:
    """Whether an active-filter label shows this filter's own value.

    Numbers must match exactly ("Under ₹14,999" is not rating 4), unit
    filters need their unit next to the number and text filters match whole
    words only.
    """
    label = label.lower()
    if name == "price":
        wanted = {_amount(v) for v in group.values()} - {None}
        return bool(wanted.intersection(_numbers(label)))
    if name == "rating":
        wanted = _amount(group.get("rating"))
        return (
            wanted is not None
            and wanted in _numbers(label)
            and any(marker in label for marker in RATING_MARKERS)
        )
    if name in UNIT_FILTERS:
        wanted = _amount(group.get(name))
        return any(
            unit in UNIT_FILTERS[name] and float(number.replace(",", "")) == wanted
            for number, unit in _NUMBER_WITH_UNIT.findall(label)
        )
    value = str(group.get(name) or "").strip().lower()
    if not value:
        return False
    return re.search(rf"(?<![a-z0-9]){re.escape(value)}(?![a-z0-9])", label) is not None


def _filter_is_active(name: str, group: Dict[str, Any], state: Dict[str, Any]) -> bool:
    active = state.get("activeFilters")
    if not isinstance(active, list):
        return False
    return any(label_matches(name, group, str(label)) for label in active)


class FilterApplicationCoordinator:
    """Apply each filter through the page agent and confirm it took effect.

    Verification signals, any of which suffices: the tab URL changed, a
    loading indicator that was seen has disappeared, or the page lists the
    filter among its active filters. Result counts are recorded but never
    decide success.
    """

    def __init__(
        self,
        page_agent: AbstractPageAgent,
        browser: AbstractBrowser,
        max_attempts: int = MAX_FILTER_ATTEMPTS,
        apply_timeout: float = TIMEOUT_FILTER_APPLY,
        verify_timeout: float = TIMEOUT_FILTER_VERIFY,
        poll_interval: float = FILTER_POLL_INTERVAL,
    ) -> None:
        self.page_agent = page_agent
        self.browser = browser
        self.max_attempts = max_attempts
        self.apply_timeout = apply_timeout
        self.verify_timeout = verify_timeout
        self.poll_interval = poll_interval
        self.last_report: Optional[FilterReport] = None

    async def apply_filters(self, session: Session, filters: FilterSet) -> bool:
        """True iff at least one filter was verified."""
        report = FilterReport()
        self.last_report = report
        groups = ordered_filter_groups(filters)
        applied_names = {name for name, _ in groups} | {"price_min", "price_max"}
        report.skipped = [k for k in filters if k not in applied_names]
        if not groups:
            return False

        report.before_count = _result_count(await self._state(session))

        for name, group in groups:
            if await self._apply_one(session, name, group):
                report.applied.append(name)
            else:
                report.failed.append(name)

        report.after_count = _result_count(await self._state(session))
        logger.info(
            "Filters applied=%s failed=%s skipped=%s results %s -> %s",
            report.applied, report.failed, report.skipped, report.before_count, report.after_count,
        )
        return bool(report.applied)

    async def _apply_one(self, session: Session, name: str, group: Dict[str, Any]) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            before_url = await self._url(session)
            try:
                accepted = await call_with_timeout(
                    self.page_agent.apply_filters(session.target_tab, group),
                    self.apply_timeout,
                    "APPLY_FILTERS",
                )
            except TransientRemoteError as e:
                logger.warning("Filter %s attempt %d/%d failed: %s", name, attempt, self.max_attempts, e)
                continue
            if not accepted:
                logger.info("Filter %s not applicable on page (attempt %d)", name, attempt)
                continue
            if await self._verify(session, name, group, before_url):
                logger.info("Filter %s verified on attempt %d", name, attempt)
                return True
            logger.warning("Filter %s not verified (attempt %d/%d)", name, attempt, self.max_attempts)
        return False

    async def _verify(self, session: Session, name: str, group: Dict[str, Any], before_url: str) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.verify_timeout
        saw_loading = False
        while True:
            url = await self._url(session)
            if before_url and url and url != before_url:
                return True
            state = await self._state(session)
            loading = bool(state.get("loading"))
            if loading:
                saw_loading = True
            elif saw_loading:
                return True
            if _filter_is_active(name, group, state):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def _url(self, session: Session) -> str:
        try:
            return await call_with_timeout(
                self.browser.get_url(session.target_tab), TIMEOUT_TAB_QUERY, "GET_TAB_URL"
            )
        except TransientRemoteError:
            return ""

    async def _state(self, session: Session) -> Dict[str, Any]:
        try:
            state = await call_with_timeout(
                self.page_agent.get_filter_state(session.target_tab),
                TIMEOUT_TAB_QUERY,
                "GET_FILTER_STATE",
            )
        except TransientRemoteError as e:
            logger.debug("Filter state unavailable: %s", e)
            return {}
        return state if isinstance(state, dict) else {}
