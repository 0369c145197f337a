"""Purchase state machine.

Provides:
- PurchaseOrchestrator: owns the single active Session and walks it through
  IDLE -> SEARCHING -> SELECTING -> PRODUCT_PAGE -> CHECKOUT_FLOW -> COMPLETED
- check_action_policy: guard applied to LLM-recommended page actions
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from .analyzer import MODE_GENERAL, AbstractPageAnalyzer
from .channel import (
    AbstractBrowser,
    AbstractLoginHandler,
    AbstractPageAgent,
    call_with_timeout,
    with_retries,
)
from .config import (
    MAX_BUY_ATTEMPTS,
    MAX_NAV_RETRIES,
    MAX_RESULTS_ATTEMPTS,
    MAX_STATUS_MESSAGES,
    RETRY_BACKOFF,
    STEP_DELAY,
    TIMEOUT_ADD_TO_CART,
    TIMEOUT_BUY_CLICK,
    TIMEOUT_EXECUTE_ACTION,
    TIMEOUT_LOGIN_CHECK,
    TIMEOUT_LOGIN_HANDOFF,
    TIMEOUT_NAVIGATE,
    TIMEOUT_ORDER_DETAILS,
    TIMEOUT_PAGE_CONTENT,
    TIMEOUT_RESULTS,
    TIMEOUT_SEARCH,
    TIMEOUT_SEARCH_AND_FILTER,
)
from .errors import (
    FatalSessionError,
    IntentError,
    PolicyViolationError,
    RetailAgentError,
    TransientRemoteError,
)
from .filters import FilterApplicationCoordinator
from .models import Intent, NotFound, Outcome, PageAnalysis, Session, SessionState
from .navigation import NavigationController
from .platforms import Platform, is_checkout_url, is_order_confirmation_url, resolve_platform
from .selection import SelectionEngine
from .utils import normalize_link, refine_query

logger = logging.getLogger("retail_agent.orchestrator")

Notify = Callable[[str], None]

# Allowed non-terminal transitions. COMPLETED is reachable from anywhere.
TRANSITIONS = {
    SessionState.IDLE: {SessionState.SEARCHING},
    SessionState.SEARCHING: {SessionState.SELECTING},
    SessionState.SELECTING: {SessionState.SELECTING, SessionState.PRODUCT_PAGE},
    SessionState.PRODUCT_PAGE: {SessionState.CHECKOUT_FLOW},
    SessionState.CHECKOUT_FLOW: set(),
    SessionState.COMPLETED: set(),
}

SORT_BY_STRATEGY = {"cheapest": "price_asc", "best_rated": "rating_desc"}

SENSITIVE_ACTION_PATTERNS = (
    "place order",
    "place your order",
    "placeorder",
    "placeyourorder",
    "submit order",
    "submitorder",
    "pay now",
    "paynow",
    "make payment",
    "confirm payment",
    "complete purchase",
)


def check_action_policy(analysis: PageAnalysis) -> None:
    """Reject LLM actions that would place an order or submit payment."""
    text = " ".join(filter(None, (analysis.selector, analysis.value, analysis.reason))).lower()
    for pattern in SENSITIVE_ACTION_PATTERNS:
        if pattern in text:
            raise PolicyViolationError(
                f"Refusing to {analysis.action} '{analysis.selector}': looks like order placement ({pattern})"
            )


class PurchaseOrchestrator:
    """Drive one purchase session against a page agent and a browser.

    Every state handler returns True to keep advancing synchronously or
    False to wait for the next "page loaded" event. Remote calls are awaited
    one at a time, each with its own timeout.
    """

    def __init__(
        self,
        page_agent: AbstractPageAgent,
        browser: AbstractBrowser,
        analyzer: Optional[AbstractPageAnalyzer] = None,
        login_handler: Optional[AbstractLoginHandler] = None,
        notify: Optional[Notify] = None,
        navigator: Optional[NavigationController] = None,
        coordinator: Optional[FilterApplicationCoordinator] = None,
        selector: Optional[SelectionEngine] = None,
        max_nav_retries: int = MAX_NAV_RETRIES,
        max_results_attempts: int = MAX_RESULTS_ATTEMPTS,
        max_buy_attempts: int = MAX_BUY_ATTEMPTS,
        retry_backoff: float = RETRY_BACKOFF,
        step_delay: float = STEP_DELAY,
        search_timeout: float = TIMEOUT_SEARCH_AND_FILTER,
    ) -> None:
        self.page_agent = page_agent
        self.browser = browser
        self.analyzer = analyzer
        self.login_handler = login_handler
        self.notify = notify
        self.navigator = navigator or NavigationController(browser)
        self.coordinator = coordinator or FilterApplicationCoordinator(page_agent, browser)
        self.selector = selector or SelectionEngine(analyzer)
        self.max_nav_retries = max_nav_retries
        self.max_results_attempts = max_results_attempts
        self.max_buy_attempts = max_buy_attempts
        self.retry_backoff = retry_backoff
        self.step_delay = step_delay
        self.search_timeout = search_timeout

        self._session: Optional[Session] = None
        self._driving: Optional[str] = None  # id of the session a step loop is running for
        self._rerun = False

    @property
    def session(self) -> Optional[Session]:
        return self._session

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit(self, intent: Intent) -> Session:
        """Start a new session for `intent`, replacing any previous one."""
        if not isinstance(intent, Intent) or not isinstance(intent.query, str) or not intent.query.strip():
            raise IntentError("The request has no product to search for.")

        self.reset()
        platform = resolve_platform(intent.platform_hint)
        session = Session(id=uuid.uuid4().hex[:12], intent=intent, platform=platform.name)
        session.history.append(session.status)
        self._session = session
        logger.info("Session %s: %r on %s filters=%s", session.id, intent.query, platform.name, intent.filters)
        self._notify(session, f"Looking for '{intent.query}' on {platform.name}...")

        try:
            session.target_tab = await call_with_timeout(
                self.browser.open_tab(platform.home_url), TIMEOUT_NAVIGATE, "OPEN_TAB"
            )
        except Exception as e:
            logger.warning("Opening %s failed: %s", platform.home_url, e)
            self._finish(
                session,
                Outcome.FAILED,
                f"Could not open {platform.name} ({e}). Check that the browser extension is connected and try again.",
            )
            return session

        self._transition(session, SessionState.SEARCHING)
        await self._drive(session)
        return session

    async def on_page_loaded(self, tab_id: Any, url: Optional[str] = None) -> None:
        """Re-run the current state after the bound tab finished loading."""
        session = self._session
        if session is None or session.is_terminal:
            return
        if session.target_tab is None or str(tab_id) != str(session.target_tab):
            logger.debug("Ignoring page_loaded for tab %s (session tab %s)", tab_id, session.target_tab)
            return
        logger.info("Page loaded in tab %s: %s (state %s)", tab_id, url, session.status.value)
        await self._drive(session)

    def reset(self) -> None:
        """Drop the current session. In-flight calls finish against a stale session."""
        session = self._session
        if session is not None and not session.is_terminal:
            session.status = SessionState.COMPLETED
            session.outcome = Outcome.CANCELLED
            session.final_message = "Cancelled."
            logger.info("Session %s cancelled", session.id)
        self._session = None
        self._driving = None
        self._rerun = False

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    async def _drive(self, session: Session) -> None:
        if self._driving == session.id:
            # A step is already in flight for this session; run once more after it.
            self._rerun = True
            return
        self._driving = session.id
        self._rerun = False
        try:
            while True:
                await self._step(session)
                if session is not self._session or session.is_terminal or not self._rerun:
                    break
                self._rerun = False
        finally:
            if self._driving == session.id:
                self._driving = None

    async def _step(self, session: Session) -> None:
        handlers = {
            SessionState.SEARCHING: self._handle_searching,
            SessionState.SELECTING: self._handle_selecting,
            SessionState.PRODUCT_PAGE: self._handle_product_page,
            SessionState.CHECKOUT_FLOW: self._handle_checkout,
        }
        try:
            while session is self._session and not session.is_terminal:
                handler = handlers.get(session.status)
                if handler is None:
                    return
                if not await handler(session):
                    return
        except FatalSessionError as e:
            logger.error("Session %s fatal: %s", session.id, e)
            self._finish(
                session,
                Outcome.FAILED,
                f"{e}. The purchase was stopped; open {session.platform or 'the store'} "
                "and send your request again.",
            )
        except RetailAgentError as e:
            logger.exception("Session %s failed in %s", session.id, session.status.value)
            self._finish(session, Outcome.FAILED, f"Something went wrong: {e}. Please finish manually.")
        except Exception as e:
            logger.exception("Session %s crashed in %s", session.id, session.status.value)
            self._finish(
                session,
                Outcome.FAILED,
                f"Unexpected error ({type(e).__name__}: {e}). Please finish manually.",
            )

    def _transition(self, session: Session, state: SessionState) -> None:
        if state not in TRANSITIONS[session.status]:
            raise RetailAgentError(f"Illegal transition {session.status.value} -> {state.value}")
        if state is SessionState.PRODUCT_PAGE and session.selected_product is None:
            raise RetailAgentError("Cannot open a product page without a selected product")
        logger.info("Session %s: %s -> %s", session.id, session.status.value, state.value)
        session.status = state
        session.history.append(state)

    def _finish(self, session: Session, outcome: Outcome, message: str) -> None:
        if session is not self._session or session.is_terminal:
            return
        session.status = SessionState.COMPLETED
        session.history.append(SessionState.COMPLETED)
        session.outcome = outcome
        session.final_message = message
        logger.info("Session %s completed (%s): %s", session.id, outcome.value, message)
        self._notify(session, message)

    def _notify(self, session: Session, message: str) -> None:
        session.messages.append(message)
        del session.messages[:-MAX_STATUS_MESSAGES]
        if self.notify is not None:
            self.notify(message)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _handle_searching(self, session: Session) -> bool:
        platform = resolve_platform(session.platform)
        if platform.is_results_url(await self._current_url(session)):
            self._transition(session, SessionState.SELECTING)
            return True
        if session.search_attempted:
            logger.info("Search already submitted; waiting for the results page")
            return False

        session.search_attempted = True
        query = refine_query(session.intent)
        self._notify(session, f"Searching for '{query}'...")
        if await self._search(session, query):
            # The page agent drives the results surface itself; advance once it settles.
            await asyncio.sleep(self.step_delay)
            if session is not self._session:
                return False
            self._transition(session, SessionState.SELECTING)
            return True

        searched = await self._scripted_search(session, platform, query)
        if session is not self._session:
            return False
        if not searched:
            self._finish(
                session,
                Outcome.FAILED,
                f"Could not run a search on {platform.name}. Please search for '{query}' manually.",
            )
            return False
        # A scripted submit reloads the page; advance on the next page_loaded
        # unless the load already finished.
        if platform.is_results_url(await self._current_url(session)):
            self._transition(session, SessionState.SELECTING)
            return True
        logger.info("Scripted search submitted; waiting for the results page")
        return False

    async def _handle_selecting(self, session: Session) -> bool:
        intent = session.intent
        if intent.filters and not session.filters_applied:
            session.filters_applied = True
            self._notify(session, "Applying filters...")
            if await self.coordinator.apply_filters(session, intent.filters):
                report = self.coordinator.last_report
                self._notify(session, f"Applied filters: {', '.join(report.applied)}")
            else:
                logger.warning("No filter could be verified; selecting from unfiltered results")
            self._transition(session, SessionState.SELECTING)
            return True

        try:
            raw_items = await with_retries(
                lambda: call_with_timeout(
                    self.page_agent.get_search_results(session.target_tab, intent.filters),
                    TIMEOUT_RESULTS,
                    "GET_SEARCH_RESULTS",
                ),
                self.max_results_attempts,
                self.retry_backoff,
                "GET_SEARCH_RESULTS",
            )
        except TransientRemoteError as e:
            logger.warning("Search results unavailable: %s", e)
            raw_items = []
        if session is not self._session:
            return False

        platform = resolve_platform(session.platform)
        result = await self.selector.select_product(
            raw_items,
            intent,
            page_text=lambda: self._page_text(session),
            origin=platform.origin,
            context={"state": session.status.value, "platform": platform.name},
        )
        if session is not self._session:
            return False
        if isinstance(result, NotFound):
            self._finish(session, Outcome.NOT_FOUND, result.message)
            return False

        session.selected_product = result
        session.nav_retry_count = 0
        price = f" at {result.price}" if result.price else ""
        self._notify(session, f"Selected: {result.title}{price}")
        self._transition(session, SessionState.PRODUCT_PAGE)
        try:
            await call_with_timeout(
                self.browser.navigate(session.target_tab, result.link, "update"), TIMEOUT_NAVIGATE, "NAVIGATE"
            )
        except TransientRemoteError as e:
            logger.warning("Navigation to product failed, will verify: %s", e)
        return True

    async def _handle_product_page(self, session: Session) -> bool:
        product = session.selected_product
        if product is None:
            self._finish(session, Outcome.FAILED, "No product was selected. Please send your request again.")
            return False
        if session.buy_attempted:
            return False
        platform = resolve_platform(session.platform)

        url = await self._current_url(session)
        if not url or platform.is_results_url(url):
            while True:
                if session.nav_retry_count >= self.max_nav_retries:
                    self._finish(
                        session,
                        Outcome.MANUAL_ACTION,
                        f"Could not open the product page for {product.title}. "
                        f"Please open it manually and buy it there: {product.link}",
                    )
                    return False
                session.nav_retry_count += 1
                logger.info("Opening product page (%d/%d)", session.nav_retry_count, self.max_nav_retries)
                if await self.navigator.navigate_and_verify(session, product.link):
                    break
                if session is not self._session:
                    return False
        elif not platform.is_product_url(url):
            logger.debug("Page %s does not look like a product page, continuing", url)

        if await self._login_required(session, platform):
            if not await self._hand_off_login(session, platform):
                self._finish(
                    session,
                    Outcome.LOGIN_REQUIRED,
                    f"Please log in to {platform.name} in the open tab, then send your request again.",
                )
                return False
            if session is not self._session:
                return False

        session.buy_attempted = True
        self._notify(session, f"Clicking Buy Now for {product.title}...")
        if await self._click_buy(session, self.max_buy_attempts):
            self._transition(session, SessionState.CHECKOUT_FLOW)
            await asyncio.sleep(self.step_delay)
            return True
        if session is not self._session:
            return False

        if await self._llm_action(session, platform):
            url = await self._current_url(session)
            if is_checkout_url(url) or is_order_confirmation_url(url):
                self._transition(session, SessionState.CHECKOUT_FLOW)
                return True
        if session is not self._session:
            return False

        self._notify(session, "Buy Now did not work; trying Add to Cart...")
        try:
            added = await call_with_timeout(
                self.page_agent.add_to_cart(session.target_tab), TIMEOUT_ADD_TO_CART, "ADD_TO_CART"
            )
        except TransientRemoteError as e:
            logger.warning("Add to cart failed: %s", e)
            added = False
        if added:
            self._finish(
                session,
                Outcome.ADDED_TO_CART,
                f"Added {product.title} to cart. Please complete checkout manually.",
            )
        else:
            self._finish(
                session,
                Outcome.MANUAL_ACTION,
                f"Could not buy or add {product.title} to cart automatically. "
                f"Please complete the purchase manually: {product.link}",
            )
        return False

    async def _handle_checkout(self, session: Session) -> bool:
        url = await self._current_url(session)
        title = session.selected_product.title if session.selected_product else "your item"
        if is_order_confirmation_url(url):
            try:
                details = await call_with_timeout(
                    self.page_agent.get_order_details(session.target_tab), TIMEOUT_ORDER_DETAILS, "GET_ORDER_DETAILS"
                )
            except TransientRemoteError as e:
                logger.warning("Order details unavailable: %s", e)
                details = {}
            message = f"Order placed for {title}."
            if details.get("orderId"):
                message += f" Order ID: {details['orderId']}."
            if details.get("deliveryDate"):
                message += f" Expected delivery: {details['deliveryDate']}."
            self._finish(session, Outcome.ORDER_PLACED, message)
            return False
        if is_checkout_url(url):
            self._finish(
                session,
                Outcome.CHECKOUT_READY,
                f"Reached checkout for {title}. Review the order and complete payment yourself.",
            )
            return False
        logger.info("Waiting for checkout page (at %s)", url or "unknown")
        return False

    # ------------------------------------------------------------------
    # Remote calls
    # ------------------------------------------------------------------

    async def _current_url(self, session: Session) -> str:
        try:
            return await self.navigator.current_url(session)
        except TransientRemoteError as e:
            logger.warning("Could not read tab location: %s", e)
            return ""

    async def _page_text(self, session: Session) -> str:
        return await call_with_timeout(
            self.page_agent.extract_page_content(session.target_tab), TIMEOUT_PAGE_CONTENT, "EXTRACT_PAGE_CONTENT"
        )

    async def _search(self, session: Session, query: str) -> bool:
        intent = session.intent
        try:
            return bool(
                await call_with_timeout(
                    self.page_agent.search(
                        session.target_tab, query, intent.filters, SORT_BY_STRATEGY.get(intent.ranking_strategy)
                    ),
                    self.search_timeout,
                    "SEARCH",
                )
            )
        except TransientRemoteError as e:
            logger.warning("Page agent search failed, trying scripted search: %s", e)
            return False

    async def _scripted_search(self, session: Session, platform: Platform, query: str) -> bool:
        try:
            return bool(
                await call_with_timeout(
                    self.browser.scripted_search(session.target_tab, platform.name, query),
                    TIMEOUT_SEARCH,
                    "SCRIPTED_SEARCH",
                )
            )
        except TransientRemoteError as e:
            logger.error("Scripted search failed: %s", e)
            return False

    async def _login_required(self, session: Session, platform: Platform) -> bool:
        try:
            return bool(
                await call_with_timeout(
                    self.page_agent.detect_login_screen(session.target_tab, platform.name),
                    TIMEOUT_LOGIN_CHECK,
                    "DETECT_LOGIN_SCREEN",
                )
            )
        except TransientRemoteError as e:
            logger.warning("Login detection failed, assuming logged in: %s", e)
            return False

    async def _hand_off_login(self, session: Session, platform: Platform) -> bool:
        if self.login_handler is None:
            return False
        self._notify(session, f"Login required on {platform.name}, handing off...")
        try:
            return bool(
                await call_with_timeout(
                    self.login_handler.handle_login(platform.name, session.target_tab),
                    TIMEOUT_LOGIN_HANDOFF,
                    "LOGIN",
                )
            )
        except TransientRemoteError as e:
            logger.warning("Login handoff failed: %s", e)
            return False

    async def _click_buy(self, session: Session, attempts: int) -> bool:
        for attempt in range(1, attempts + 1):
            try:
                if await call_with_timeout(
                    self.page_agent.click_buy_now(session.target_tab), TIMEOUT_BUY_CLICK, "CLICK_BUY_NOW"
                ):
                    return True
                logger.warning("Buy Now not clicked (attempt %d/%d)", attempt, attempts)
            except TransientRemoteError as e:
                logger.warning("Buy Now failed (attempt %d/%d): %s", attempt, attempts, e)
            if session is not self._session:
                return False
            if attempt < attempts:
                await asyncio.sleep(self.retry_backoff * attempt)
        return False

    async def _llm_action(self, session: Session, platform: Platform) -> bool:
        """Ask the analyzer for one next step and execute it. True if it ran."""
        if self.analyzer is None:
            return False
        try:
            text = await self._page_text(session)
        except TransientRemoteError as e:
            logger.warning("Page text unavailable for LLM escalation: %s", e)
            return False
        context: Dict[str, Any] = {
            "intent": session.intent.query,
            "state": session.status.value,
            "platform": platform.name,
        }
        analysis = await self.analyzer.analyze(text, context, MODE_GENERAL)
        if session is not self._session:
            return False
        logger.info("LLM suggested %s: %s", analysis.action, analysis.reason or analysis.message)

        if analysis.action in ("click", "input"):
            try:
                check_action_policy(analysis)
            except PolicyViolationError as e:
                logger.warning("%s", e)
                self._notify(session, "Skipped an action that would place the order without your confirmation.")
                return False
            step = {"type": analysis.action, "selector": analysis.selector, "value": analysis.value}
            try:
                return bool(
                    await call_with_timeout(
                        self.page_agent.execute_action(session.target_tab, step),
                        TIMEOUT_EXECUTE_ACTION,
                        "EXECUTE_ACTION",
                    )
                )
            except TransientRemoteError as e:
                logger.warning("LLM action failed: %s", e)
                return False
        if analysis.action == "select_product":
            link = normalize_link(analysis.url or "", platform.origin)
            if link and await self.navigator.navigate_and_verify(session, link):
                return await self._click_buy(session, 1)
            return False
        return analysis.action == "completed"
