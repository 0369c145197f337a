"""WebSocket message channel to the browser-side page agent.

Each request carries an id; the browser answers with a `response` message
carrying the same id. Unanswered requests fail with ChannelTimeoutError, and
requests made while no socket is attached fail with ChannelClosedError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from .channel import MessageChannel, call_with_timeout
from .errors import ChannelClosedError

logger = logging.getLogger("retail_agent.bridge")


class WebSocketBridge(MessageChannel):
    """MessageChannel over a single attached FastAPI WebSocket."""

    def __init__(self) -> None:
        self._socket: Optional[WebSocket] = None
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._socket is not None

    def attach(self, socket: WebSocket) -> None:
        if self._socket is not None:
            logger.info("Replacing existing bridge connection")
            self._fail_pending("bridge connection replaced")
        self._socket = socket

    def detach(self, socket: Optional[WebSocket] = None) -> None:
        if socket is not None and socket is not self._socket:
            return
        self._socket = None
        self._fail_pending("bridge disconnected")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelClosedError(reason))
        self._pending.clear()

    async def request(self, message: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        socket = self._socket
        action = str(message.get("action", "request"))
        if socket is None:
            raise ChannelClosedError("No browser connected to the bridge", action)

        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await socket.send_json({"type": "request", "id": request_id, **message})
            return await call_with_timeout(future, timeout, action)
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            # Starlette raises RuntimeError on a closed socket and WebSocketDisconnect when the send fails
            raise ChannelClosedError(str(e) or type(e).__name__, action) from e
        finally:
            self._pending.pop(request_id, None)

    def resolve(self, message: Dict[str, Any]) -> bool:
        """Complete the pending request a response belongs to.

        Returns False for responses nobody is waiting for (late or unknown);
        those are dropped.
        """
        future = self._pending.get(str(message.get("id")))
        if future is None or future.done():
            logger.debug("Dropping response for unknown request %s", message.get("id"))
            return False
        payload = message.get("payload")
        future.set_result(payload if isinstance(payload, dict) else {})
        return True
