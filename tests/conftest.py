"""Shared fakes and fixtures for retail agent unit tests."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from retail_agent.channel import AbstractBrowser, AbstractLoginHandler, AbstractPageAgent
from retail_agent.analyzer import AbstractPageAnalyzer
from retail_agent.errors import TabClosedError, TransientRemoteError
from retail_agent.filters import FilterApplicationCoordinator
from retail_agent.models import Intent, PageAnalysis
from retail_agent.navigation import NavigationController
from retail_agent.orchestrator import PurchaseOrchestrator

HOME_URL = "https://www.amazon.in/"
RESULTS_URL = "https://www.amazon.in/s?k=samsung+phone"
CHECKOUT_URL = "https://www.amazon.in/gp/buy/spc/handlers/display.html"
CONFIRMATION_URL = "https://www.amazon.in/gp/buy/thankyou/handlers/display.html"
M14_LINK = "https://www.amazon.in/Samsung-Galaxy-M14/dp/B0M14SAMSG"


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

def listing(title: str, price: str, rating: str, link: str, **extra: Any) -> Dict[str, Any]:
    return {"title": title, "price": price, "rating": rating, "link": link, "image": "img.jpg", **extra}


def decoy_listings() -> List[Dict[str, Any]]:
    """Phones that each violate at least one of rating>=4, price<=19500,
    battery>=5000, ram>=6 with a concrete value."""
    items = [
        listing("iPhone 15 (128GB) Black", "₹69,900", "4.6 out of 5 stars", "/Apple-iPhone-15/dp/B0IPHONE15"),
        listing("Motorola g54 5G 8GB RAM 6000mAh", "₹21,999", "4.3", "/Motorola-g54/dp/B0MOTOG54"),
        listing("Nokia G42 5G 6GB RAM 5000mAh", "₹12,599", "3.9", "/Nokia-G42/dp/B0NOKIAG42"),
        listing("Redmi 12 5G 4GB RAM 5000mAh", "₹11,999", "4.2", "/Redmi-12/dp/B0REDMI12X"),
        listing("Realme Narzo N55 6GB RAM 4500mAh", "₹10,999", "4.1", "/Realme-Narzo/dp/B0NARZON55"),
    ]
    for i in range(19):
        items.append(
            listing(
                f"Generic Phone X{i} 4GB RAM 4000mAh",
                f"₹8,{i:03d}",
                "4.5",
                f"/Generic-Phone-X{i}/dp/B0GENERIC{i:02d}",
            )
        )
    return items


def phone_listings() -> List[Dict[str, Any]]:
    """25 listings; only the Galaxy M14 passes all four phone filters."""
    items = decoy_listings()
    items.insert(
        11,
        listing("Samsung Galaxy M14 6GB RAM 5000mAh", "₹18,499", "4.3★", "/Samsung-Galaxy-M14/dp/B0M14SAMSG"),
    )
    return items


def relaxed_listings() -> List[Dict[str, Any]]:
    """No listing passes every phone filter; one is a Samsung."""
    items = decoy_listings()
    items.append(
        listing("Samsung Galaxy A05 4GB RAM 5000mAh", "₹9,999", "4.0", "/Samsung-Galaxy-A05/dp/B0A05SAMSG")
    )
    return items


PHONE_FILTERS = {"rating": 4, "price_max": 19500, "battery": 5000, "ram": 6}


def filter_labels(filters: Dict[str, Any]) -> List[str]:
    """Active-filter chips the way a results page shows them."""
    labels = []
    for key, value in filters.items():
        if key == "price_max":
            labels.append(f"Under ₹{value:,}")
        elif key == "price_min":
            labels.append(f"Over ₹{value:,}")
        elif key == "rating":
            labels.append(f"{value}★ & Up")
        elif key in ("ram", "storage"):
            labels.append(f"{str(value).lower().replace('gb', '').strip()} GB")
        elif key == "battery":
            labels.append(f"{value} mAh & Above")
        else:
            labels.append(str(value).title())
    return labels


@pytest.fixture
def phone_intent() -> Intent:
    return Intent(query="samsung phone", platform_hint="amazon", filters=dict(PHONE_FILTERS))


# ---------------------------------------------------------------------------
# Fakes: browser, page agent, analyzer, login handler
# ---------------------------------------------------------------------------

class FakeBrowser(AbstractBrowser):
    """In-memory tabs. Navigation lands only for techniques in `working_techniques`."""

    def __init__(self) -> None:
        self.urls: Dict[Any, str] = {}
        self.opened: List[str] = []
        self.navigations: List[tuple] = []
        self.scripted: List[str] = []
        self.working_techniques = {"update", "script", "reload"}
        self.redirect_to: Optional[str] = None
        self.scripted_ok = True
        self.scripted_lands = True
        self.closed = False
        self.next_tab = 7

    async def open_tab(self, url: str) -> Any:
        tab_id = self.next_tab
        self.opened.append(url)
        self.urls[tab_id] = url
        return tab_id

    async def navigate(self, tab_id: Any, url: str, technique: str = "update") -> None:
        if self.closed:
            raise TabClosedError(tab_id)
        self.navigations.append((url, technique))
        if self.redirect_to:
            self.urls[tab_id] = self.redirect_to
        elif technique in self.working_techniques:
            self.urls[tab_id] = url

    async def get_url(self, tab_id: Any) -> str:
        if self.closed:
            raise TabClosedError(tab_id)
        return self.urls.get(tab_id, "")

    async def scripted_search(self, tab_id: Any, platform: str, query: str) -> bool:
        self.scripted.append(query)
        if self.scripted_ok and self.scripted_lands:
            self.urls[tab_id] = RESULTS_URL
        return self.scripted_ok


class FakePageAgent(AbstractPageAgent):
    """Scriptable page agent that records every call by name.

    `filter_signal` selects how applied filters show up: "active" (listed in
    activeFilters), "url" (tab URL changes), "loading" (a loading indicator
    appears then clears) or "none".
    """

    def __init__(self, browser: FakeBrowser) -> None:
        self.browser = browser
        self.calls: List[str] = []
        self.queries: List[str] = []
        self.filter_requests: List[Dict[str, Any]] = []
        self.actions: List[Dict[str, Any]] = []
        self.items: List[Dict[str, Any]] = phone_listings()
        self.search_result: Any = True  # bool, or an exception to raise
        self.results_failures = 0
        self.filter_signal = "active"
        self.filter_accepted = True
        self.active_filters: List[str] = []
        self._loading_polls = 0
        self.buy_results: List[Any] = [True]
        self.buy_lands_on: Optional[str] = CHECKOUT_URL
        self.cart_result = True
        self.login_screen = False
        self.action_result = True
        self.action_lands_on: Optional[str] = None
        self.page_text = "Samsung Galaxy M14 ... Add to Cart ... Buy Now"
        self.order_details = {"orderId": "408-1234567", "deliveryDate": "Tomorrow"}
        self.hooks: Dict[str, Callable[[], Any]] = {}

    async def _record(self, name: str) -> None:
        self.calls.append(name)
        hook = self.hooks.get(name)
        if hook is not None:
            await hook()

    async def search(self, tab_id: Any, query: str, filters: Dict[str, Any], sort: Optional[str]) -> bool:
        await self._record("search")
        self.queries.append(query)
        if isinstance(self.search_result, Exception):
            raise self.search_result
        if self.search_result:
            self.browser.urls[tab_id] = RESULTS_URL
        return self.search_result

    async def apply_filters(self, tab_id: Any, filters: Dict[str, Any]) -> bool:
        await self._record("apply_filters")
        self.filter_requests.append(dict(filters))
        if not self.filter_accepted:
            return False
        if self.filter_signal == "active":
            self.active_filters.extend(filter_labels(filters))
        elif self.filter_signal == "url":
            self.browser.urls[tab_id] = self.browser.urls.get(tab_id, RESULTS_URL) + f"&f{len(self.filter_requests)}=1"
        elif self.filter_signal == "loading":
            self._loading_polls = 2
        return True

    async def get_filter_state(self, tab_id: Any) -> Dict[str, Any]:
        await self._record("get_filter_state")
        loading = self._loading_polls > 0
        if loading:
            self._loading_polls -= 1
        return {
            "url": self.browser.urls.get(tab_id, ""),
            "loading": loading,
            "activeFilters": list(self.active_filters),
            "resultCount": len(self.items),
        }

    async def get_search_results(self, tab_id: Any, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        await self._record("get_search_results")
        if self.results_failures > 0:
            self.results_failures -= 1
            raise TransientRemoteError("results not ready", "GET_SEARCH_RESULTS")
        return list(self.items)

    async def click_buy_now(self, tab_id: Any) -> bool:
        await self._record("click_buy_now")
        result = self.buy_results.pop(0) if len(self.buy_results) > 1 else self.buy_results[0]
        if isinstance(result, Exception):
            raise result
        if result and self.buy_lands_on:
            self.browser.urls[tab_id] = self.buy_lands_on
        return result

    async def add_to_cart(self, tab_id: Any) -> bool:
        await self._record("add_to_cart")
        return self.cart_result

    async def detect_login_screen(self, tab_id: Any, platform: str) -> bool:
        await self._record("detect_login_screen")
        return self.login_screen

    async def extract_page_content(self, tab_id: Any) -> str:
        await self._record("extract_page_content")
        return self.page_text

    async def get_order_details(self, tab_id: Any) -> Dict[str, Any]:
        await self._record("get_order_details")
        return dict(self.order_details)

    async def execute_action(self, tab_id: Any, action: Dict[str, Any]) -> bool:
        await self._record("execute_action")
        self.actions.append(dict(action))
        if self.action_result and self.action_lands_on:
            self.browser.urls[tab_id] = self.action_lands_on
        return self.action_result


class FakeAnalyzer(AbstractPageAnalyzer):
    def __init__(self, analysis: Optional[PageAnalysis] = None) -> None:
        self.analysis = analysis or PageAnalysis(action="error", message="nothing useful on page")
        self.calls: List[tuple] = []

    async def analyze(self, page_text: str, context: Dict[str, Any], mode: str = "general") -> PageAnalysis:
        self.calls.append((page_text, dict(context), mode))
        return self.analysis


class FakeLoginHandler(AbstractLoginHandler):
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: List[tuple] = []

    async def handle_login(self, platform: str, tab_id: Any) -> bool:
        self.calls.append((platform, tab_id))
        return self.result


# ---------------------------------------------------------------------------
# Fake OpenAI client
# ---------------------------------------------------------------------------

def chat_response(content: Optional[str] = None, tool_args: Optional[Dict[str, Any]] = None,
                  tool_name: str = "start_purchase") -> SimpleNamespace:
    tool_calls = None
    if tool_args is not None:
        tool_calls = [
            SimpleNamespace(
                id="call_1",
                type="function",
                function=SimpleNamespace(name=tool_name, arguments=json.dumps(tool_args)),
            )
        ]
    message = SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    """Mimics AsyncOpenAI().chat.completions.create with scripted replies."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        if not self.responses:
            raise RuntimeError("no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def browser() -> FakeBrowser:
    browser = FakeBrowser()
    return browser


@pytest.fixture
def page_agent(browser: FakeBrowser) -> FakePageAgent:
    return FakePageAgent(browser)


@pytest.fixture
def make_orchestrator(page_agent: FakePageAgent, browser: FakeBrowser) -> Callable[..., PurchaseOrchestrator]:
    """Orchestrator over the fakes with every delay set to zero."""

    def make(**kwargs: Any) -> PurchaseOrchestrator:
        kwargs.setdefault("navigator", NavigationController(browser, settle_delay=0))
        kwargs.setdefault(
            "coordinator",
            FilterApplicationCoordinator(page_agent, browser, verify_timeout=0.05, poll_interval=0),
        )
        kwargs.setdefault("retry_backoff", 0)
        kwargs.setdefault("step_delay", 0)
        return PurchaseOrchestrator(page_agent, browser, **kwargs)

    return make
