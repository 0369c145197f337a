"""Tests for retail_agent.channel and retail_agent.bridge."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from fastapi import WebSocketDisconnect

from retail_agent.bridge import WebSocketBridge
from retail_agent.channel import (
    ChannelBrowser,
    ChannelPageAgent,
    MessageChannel,
    call_with_timeout,
    with_retries,
)
from retail_agent.errors import (
    ChannelClosedError,
    ChannelTimeoutError,
    NotReadyError,
    TabClosedError,
    TransientRemoteError,
)


class FakeSocket:
    def __init__(self, fail: bool = False, error: Optional[Exception] = None) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.error = error
        if fail and error is None:
            self.error = RuntimeError('Cannot call "send" once a close message has been sent.')

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(data)


class CannedChannel(MessageChannel):
    """Answers every request with the next canned response."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: List[tuple] = []

    async def request(self, message: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        self.requests.append((message, timeout))
        return self.responses.pop(0)


# ---------------------------------------------------------------------------
# Timeout and retry primitives
# ---------------------------------------------------------------------------

class TestPrimitives:
    @pytest.mark.asyncio
    async def test_call_with_timeout_passes_result(self) -> None:
        async def quick() -> int:
            return 42

        assert await call_with_timeout(quick(), 1, "QUICK") == 42

    @pytest.mark.asyncio
    async def test_call_with_timeout_raises_channel_timeout(self) -> None:
        with pytest.raises(ChannelTimeoutError) as excinfo:
            await call_with_timeout(asyncio.sleep(5), 0.01, "SLOW")
        assert excinfo.value.action == "SLOW"
        assert isinstance(excinfo.value, TransientRemoteError)

    @pytest.mark.asyncio
    async def test_with_retries_recovers(self) -> None:
        attempts = []

        async def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise NotReadyError("not yet")
            return "ok"

        assert await with_retries(flaky, 3, backoff=0) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_with_retries_reraises_last_error(self) -> None:
        async def broken() -> str:
            raise ChannelClosedError("gone")

        with pytest.raises(ChannelClosedError):
            await with_retries(broken, 2, backoff=0)

    @pytest.mark.asyncio
    async def test_with_retries_does_not_retry_fatal_errors(self) -> None:
        attempts = []

        async def closed() -> str:
            attempts.append(1)
            raise TabClosedError(7)

        with pytest.raises(TabClosedError):
            await with_retries(closed, 3, backoff=0)
        assert len(attempts) == 1


# ---------------------------------------------------------------------------
# Channel-backed page agent and browser
# ---------------------------------------------------------------------------

class TestChannelClients:
    @pytest.mark.asyncio
    async def test_search_message_shape(self) -> None:
        channel = CannedChannel({"success": True})
        agent = ChannelPageAgent(channel)
        assert await agent.search(7, "samsung phone", {"ram": 6}, "price_asc") is True
        message, timeout = channel.requests[0]
        assert message == {
            "action": "SEARCH",
            "tabId": 7,
            "query": "samsung phone",
            "filters": {"ram": 6},
            "sort": "price_asc",
        }
        assert timeout > 0

    @pytest.mark.asyncio
    async def test_results_and_content_are_tolerant(self) -> None:
        agent = ChannelPageAgent(CannedChannel({"items": "oops"}, {"content": None}, {"items": [{"title": "x"}]}))
        assert await agent.get_search_results(7, {}) == []
        assert await agent.extract_page_content(7) == ""
        assert await agent.get_search_results(7, {}) == [{"title": "x"}]

    @pytest.mark.asyncio
    async def test_login_and_actions(self) -> None:
        channel = CannedChannel({"loginScreenDetected": True}, {"success": False}, {"success": True})
        agent = ChannelPageAgent(channel)
        assert await agent.detect_login_screen(7, "amazon") is True
        assert await agent.click_buy_now(7) is False
        assert await agent.execute_action(7, {"type": "click", "selector": "#x"}) is True
        assert channel.requests[2][0]["step"] == {"type": "click", "selector": "#x"}

    @pytest.mark.asyncio
    async def test_tab_closed_error(self) -> None:
        agent = ChannelPageAgent(CannedChannel({"error": "tab_closed"}))
        with pytest.raises(TabClosedError):
            await agent.add_to_cart(7)

    @pytest.mark.asyncio
    async def test_not_ready_error(self) -> None:
        agent = ChannelPageAgent(CannedChannel({"error": "not_ready"}))
        with pytest.raises(NotReadyError):
            await agent.get_filter_state(7)

    @pytest.mark.asyncio
    async def test_browser_actions(self) -> None:
        channel = CannedChannel({"tabId": 12}, {}, {"url": "https://www.amazon.in/"}, {"success": True})
        browser = ChannelBrowser(channel)
        assert await browser.open_tab("https://www.amazon.in/") == 12
        await browser.navigate(12, "https://www.amazon.in/dp/X", "script")
        assert await browser.get_url(12) == "https://www.amazon.in/"
        assert await browser.scripted_search(12, "amazon", "phone") is True
        assert channel.requests[1][0] == {
            "action": "NAVIGATE",
            "tabId": 12,
            "url": "https://www.amazon.in/dp/X",
            "technique": "script",
        }

    @pytest.mark.asyncio
    async def test_open_tab_without_id(self) -> None:
        with pytest.raises(NotReadyError):
            await ChannelBrowser(CannedChannel({})).open_tab("https://www.amazon.in/")


# ---------------------------------------------------------------------------
# WebSocketBridge
# ---------------------------------------------------------------------------

class TestWebSocketBridge:
    @pytest.mark.asyncio
    async def test_request_resolved_by_response(self) -> None:
        bridge = WebSocketBridge()
        socket = FakeSocket()
        bridge.attach(socket)
        task = asyncio.create_task(bridge.request({"action": "GET_TAB_URL", "tabId": 7}, 1))
        await asyncio.sleep(0)
        sent = socket.sent[0]
        assert sent["type"] == "request" and sent["action"] == "GET_TAB_URL" and sent["tabId"] == 7
        assert bridge.resolve({"type": "response", "id": sent["id"], "payload": {"url": "https://x.in/"}})
        assert await task == {"url": "https://x.in/"}

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(self) -> None:
        bridge = WebSocketBridge()
        socket = FakeSocket()
        bridge.attach(socket)
        with pytest.raises(ChannelTimeoutError):
            await bridge.request({"action": "SEARCH"}, 0.01)
        # Late responses are dropped.
        assert bridge.resolve({"type": "response", "id": socket.sent[0]["id"], "payload": {}}) is False

    @pytest.mark.asyncio
    async def test_no_socket(self) -> None:
        bridge = WebSocketBridge()
        assert bridge.connected is False
        with pytest.raises(ChannelClosedError):
            await bridge.request({"action": "SEARCH"}, 1)

    @pytest.mark.asyncio
    async def test_detach_fails_pending(self) -> None:
        bridge = WebSocketBridge()
        socket = FakeSocket()
        bridge.attach(socket)
        task = asyncio.create_task(bridge.request({"action": "CLICK_BUY_NOW"}, 5))
        await asyncio.sleep(0)
        bridge.detach(socket)
        with pytest.raises(ChannelClosedError):
            await task
        assert bridge.connected is False

    @pytest.mark.asyncio
    async def test_detach_of_replaced_socket_is_ignored(self) -> None:
        bridge = WebSocketBridge()
        old, new = FakeSocket(), FakeSocket()
        bridge.attach(old)
        bridge.attach(new)
        bridge.detach(old)
        assert bridge.connected is True

    @pytest.mark.asyncio
    async def test_send_on_closed_socket(self) -> None:
        bridge = WebSocketBridge()
        bridge.attach(FakeSocket(fail=True))
        with pytest.raises(ChannelClosedError):
            await bridge.request({"action": "SEARCH"}, 1)

    def test_unknown_response_dropped(self) -> None:
        assert WebSocketBridge().resolve({"type": "response", "id": "nope"}) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [WebSocketDisconnect(code=1006), ConnectionResetError("reset by peer")])
    async def test_dropped_socket_is_a_closed_channel(self, error) -> None:
        bridge = WebSocketBridge()
        bridge.attach(FakeSocket(error=error))
        with pytest.raises(ChannelClosedError) as excinfo:
            await bridge.request({"action": "GET_SEARCH_RESULTS"}, 1)
        assert excinfo.value.action == "GET_SEARCH_RESULTS"
        assert isinstance(excinfo.value, TransientRemoteError)
