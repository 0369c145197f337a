from __future__ import annotations

"""Page Agent and Browser capabilities.

Provides:
- call_with_timeout / with_retries: the send, await, race-against-timer primitive
- AbstractPageAgent / AbstractBrowser: interfaces the state machine drives
- ChannelPageAgent / ChannelBrowser: implementations over a request/response
  MessageChannel (see bridge.WebSocketBridge)"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from .config import (
    RETRY_BACKOFF,
    TIMEOUT_ADD_TO_CART,
    TIMEOUT_BUY_CLICK,
    TIMEOUT_EXECUTE_ACTION,
    TIMEOUT_FILTER_APPLY,
    TIMEOUT_FILTER_VERIFY,
    TIMEOUT_LOGIN_CHECK,
    TIMEOUT_NAVIGATE,
    TIMEOUT_ORDER_DETAILS,
    TIMEOUT_PAGE_CONTENT,
    TIMEOUT_RESULTS,
    TIMEOUT_SEARCH,
    TIMEOUT_TAB_QUERY,
)
from .errors import ChannelTimeoutError, NotReadyError, TabClosedError, TransientRemoteError

logger = logging.getLogger("retail_agent.channel")

T = TypeVar("T")


class PageAction(str, Enum):
    """Actions understood by the browser-side agent."""
    SEARCH = "SEARCH"
    APPLY_FILTERS = "APPLY_FILTERS"
    GET_FILTER_STATE = "GET_FILTER_STATE"
    GET_SEARCH_RESULTS = "GET_SEARCH_RESULTS"
    CLICK_BUY_NOW = "CLICK_BUY_NOW"
    ADD_TO_CART = "ADD_TO_CART"
    DETECT_LOGIN_SCREEN = "DETECT_LOGIN_SCREEN"
    EXTRACT_PAGE_CONTENT = "EXTRACT_PAGE_CONTENT"
    GET_ORDER_DETAILS = "GET_ORDER_DETAILS"
    EXECUTE_ACTION = "EXECUTE_ACTION"
    # Tab-level actions
    OPEN_TAB = "OPEN_TAB"
    NAVIGATE = "NAVIGATE"
    GET_TAB_URL = "GET_TAB_URL"
    SCRIPTED_SEARCH = "SCRIPTED_SEARCH"


# Navigation techniques in escalation order.
NAV_TECHNIQUES: Tuple[str, ...] = ("update", "script", "reload")


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, action: str) -> T:
    """Await with a deadline; a missed deadline raises ChannelTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise ChannelTimeoutError(action, timeout) from e


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    attempts: int,
    backoff: float = RETRY_BACKOFF,
    action: str = "call",
) -> T:
    """Call fn up to `attempts` times, retrying only transient remote errors.

    Sleeps backoff * attempt between tries and re-raises the last error.
    """
    last_error: Optional[TransientRemoteError] = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return await fn()
        except TransientRemoteError as e:
            last_error = e
            logger.warning("%s failed (attempt %d/%d): %s", action, attempt, attempts, e)
            if attempt < attempts:
                await asyncio.sleep(backoff * attempt)
    assert last_error is not None
    raise last_error


class MessageChannel:
    """Request/response transport to the browser side."""

    async def request(self, message: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        #Send one message and return its response payload
        raise NotImplementedError


class AbstractPageAgent:
    """Interface for per-site page agents. One implementation per transport."""

    async def search(self, tab_id: Any, query: str, filters: Dict[str, Any], sort: Optional[str]) -> bool:
        raise NotImplementedError

    async def apply_filters(self, tab_id: Any, filters: Dict[str, Any]) -> bool:
        raise NotImplementedError

    async def get_filter_state(self, tab_id: Any) -> Dict[str, Any]:
        #{url, loading, activeFilters, resultCount}
        raise NotImplementedError

    async def get_search_results(self, tab_id: Any, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def click_buy_now(self, tab_id: Any) -> bool:
        raise NotImplementedError

    async def add_to_cart(self, tab_id: Any) -> bool:
        raise NotImplementedError

    async def detect_login_screen(self, tab_id: Any, platform: str) -> bool:
        raise NotImplementedError

    async def extract_page_content(self, tab_id: Any) -> str:
        raise NotImplementedError

    async def get_order_details(self, tab_id: Any) -> Dict[str, Any]:
        raise NotImplementedError

    async def execute_action(self, tab_id: Any, action: Dict[str, Any]) -> bool:
        raise NotImplementedError


class AbstractBrowser:
    """Interface for tab control."""

    async def open_tab(self, url: str) -> Any:
        raise NotImplementedError

    async def navigate(self, tab_id: Any, url: str, technique: str = "update") -> None:
        raise NotImplementedError

    async def get_url(self, tab_id: Any) -> str:
        raise NotImplementedError

    async def scripted_search(self, tab_id: Any, platform: str, query: str) -> bool:
        #Raw search-box interaction using known site patterns
        raise NotImplementedError


class AbstractLoginHandler:
    """External login capability (OTP entry, saved credentials, ...)."""

    async def handle_login(self, platform: str, tab_id: Any) -> bool:
        raise NotImplementedError


class _ChannelClient:
    def __init__(self, channel: MessageChannel) -> None:
        self._channel = channel

    async def _request(self, action: PageAction, tab_id: Any, timeout: float, **payload: Any) -> Dict[str, Any]:
        message = {"action": action.value, "tabId": tab_id, **payload}
        response = await self._channel.request(message, timeout)
        if not isinstance(response, dict):
            raise NotReadyError(f"{action.value} returned no response", action.value)
        error = response.get("error")
        if error == "tab_closed":
            raise TabClosedError(tab_id)
        if error == "not_ready":
            raise NotReadyError(f"{action.value}: page agent not ready", action.value)
        return response


class ChannelPageAgent(_ChannelClient, AbstractPageAgent):
    """Page agent reached over a MessageChannel. Each action has its own timeout."""

    async def search(self, tab_id: Any, query: str, filters: Dict[str, Any], sort: Optional[str]) -> bool:
        response = await self._request(
            PageAction.SEARCH, tab_id, TIMEOUT_SEARCH, query=query, filters=filters, sort=sort
        )
        return bool(response.get("success"))

    async def apply_filters(self, tab_id: Any, filters: Dict[str, Any]) -> bool:
        response = await self._request(PageAction.APPLY_FILTERS, tab_id, TIMEOUT_FILTER_APPLY, filters=filters)
        return bool(response.get("success"))

    async def get_filter_state(self, tab_id: Any) -> Dict[str, Any]:
        return await self._request(PageAction.GET_FILTER_STATE, tab_id, TIMEOUT_FILTER_VERIFY)

    async def get_search_results(self, tab_id: Any, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self._request(PageAction.GET_SEARCH_RESULTS, tab_id, TIMEOUT_RESULTS, filters=filters)
        items = response.get("items")
        return items if isinstance(items, list) else []

    async def click_buy_now(self, tab_id: Any) -> bool:
        response = await self._request(PageAction.CLICK_BUY_NOW, tab_id, TIMEOUT_BUY_CLICK)
        return bool(response.get("success"))

    async def add_to_cart(self, tab_id: Any) -> bool:
        response = await self._request(PageAction.ADD_TO_CART, tab_id, TIMEOUT_ADD_TO_CART)
        return bool(response.get("success"))

    async def detect_login_screen(self, tab_id: Any, platform: str) -> bool:
        response = await self._request(
            PageAction.DETECT_LOGIN_SCREEN, tab_id, TIMEOUT_LOGIN_CHECK, platform=platform
        )
        return bool(response.get("loginScreenDetected"))

    async def extract_page_content(self, tab_id: Any) -> str:
        response = await self._request(PageAction.EXTRACT_PAGE_CONTENT, tab_id, TIMEOUT_PAGE_CONTENT)
        content = response.get("content")
        return content if isinstance(content, str) else ""

    async def get_order_details(self, tab_id: Any) -> Dict[str, Any]:
        return await self._request(PageAction.GET_ORDER_DETAILS, tab_id, TIMEOUT_ORDER_DETAILS)

    async def execute_action(self, tab_id: Any, action: Dict[str, Any]) -> bool:
        response = await self._request(PageAction.EXECUTE_ACTION, tab_id, TIMEOUT_EXECUTE_ACTION, step=action)
        return bool(response.get("success"))


class ChannelBrowser(_ChannelClient, AbstractBrowser):
    """Tab control reached over a MessageChannel."""

    async def open_tab(self, url: str) -> Any:
        response = await self._request(PageAction.OPEN_TAB, None, TIMEOUT_NAVIGATE, url=url)
        tab_id = response.get("tabId")
        if tab_id is None:
            raise NotReadyError("OPEN_TAB returned no tab id", PageAction.OPEN_TAB.value)
        return tab_id

    async def navigate(self, tab_id: Any, url: str, technique: str = "update") -> None:
        await self._request(PageAction.NAVIGATE, tab_id, TIMEOUT_NAVIGATE, url=url, technique=technique)

    async def get_url(self, tab_id: Any) -> str:
        response = await self._request(PageAction.GET_TAB_URL, tab_id, TIMEOUT_TAB_QUERY)
        url = response.get("url")
        return url if isinstance(url, str) else ""

    async def scripted_search(self, tab_id: Any, platform: str, query: str) -> bool:
        response = await self._request(
            PageAction.SCRIPTED_SEARCH, tab_id, TIMEOUT_SEARCH, platform=platform, query=query
        )
        return bool(response.get("success"))
