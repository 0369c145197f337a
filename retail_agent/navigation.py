"""Navigation with verification and escalating retry."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .channel import NAV_TECHNIQUES, AbstractBrowser, call_with_timeout
from .config import MAX_NAV_ATTEMPTS, NAV_SETTLE_DELAY, TIMEOUT_NAVIGATE, TIMEOUT_TAB_QUERY
from .errors import TransientRemoteError
from .models import Session
from .platforms import is_checkout_url
from .utils import urls_match

logger = logging.getLogger("retail_agent.navigation")


class NavigationController:
    """Issue a navigation, then confirm the tab actually got there.

    Attempt n waits settle_delay * n before reading the tab location and uses
    the n-th technique (tab update, script location assignment, reload).
    Landing on a checkout/cart page counts as success even when it is not
    the requested URL.
    """

    def __init__(
        self,
        browser: AbstractBrowser,
        max_attempts: int = MAX_NAV_ATTEMPTS,
        settle_delay: float = NAV_SETTLE_DELAY,
        techniques: Sequence[str] = NAV_TECHNIQUES,
        navigate_timeout: float = TIMEOUT_NAVIGATE,
        query_timeout: float = TIMEOUT_TAB_QUERY,
    ) -> None:
        self.browser = browser
        self.max_attempts = max_attempts
        self.settle_delay = settle_delay
        self.techniques = tuple(techniques) or NAV_TECHNIQUES
        self.navigate_timeout = navigate_timeout
        self.query_timeout = query_timeout

    async def current_url(self, session: Session) -> str:
        return await call_with_timeout(
            self.browser.get_url(session.target_tab), self.query_timeout, "GET_TAB_URL"
        )

    async def navigate_and_verify(self, session: Session, url: str) -> bool:
        """True once the tab is at `url` (or at checkout). TabClosedError propagates."""
        for attempt in range(1, self.max_attempts + 1):
            technique = self.techniques[min(attempt, len(self.techniques)) - 1]
            try:
                await call_with_timeout(
                    self.browser.navigate(session.target_tab, url, technique),
                    self.navigate_timeout,
                    "NAVIGATE",
                )
            except TransientRemoteError as e:
                logger.warning("Navigation via %s failed: %s", technique, e)

            await asyncio.sleep(self.settle_delay * attempt)

            try:
                current = await self.current_url(session)
            except TransientRemoteError as e:
                logger.warning("Could not read tab location: %s", e)
                continue

            if urls_match(current, url):
                logger.info("Navigation verified on attempt %d: %s", attempt, current)
                return True
            if is_checkout_url(current):
                logger.info("Navigation redirected to checkout, accepting: %s", current)
                return True
            logger.warning(
                "Navigation mismatch (attempt %d/%d, %s): at %s, wanted %s",
                attempt, self.max_attempts, technique, current, url,
            )
        return False
