"""FastAPI surface: HTTP query endpoints plus the /bridge WebSocket the
browser extension connects to."""

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .agent import RetailAgent, session_summary
from .analyzer import OpenAIPageAnalyzer
from .bridge import WebSocketBridge
from .channel import ChannelBrowser, ChannelPageAgent
from .config import MAX_STATUS_MESSAGES
from .orchestrator import PurchaseOrchestrator

logger = logging.getLogger("retail_agent.api")


class QueryRequest(BaseModel):
    message: str


def build_agent(bridge: WebSocketBridge, notify=None) -> RetailAgent:
    """Wire an agent whose page agent and browser talk through `bridge`."""
    orchestrator = PurchaseOrchestrator(
        ChannelPageAgent(bridge),
        ChannelBrowser(bridge),
        analyzer=OpenAIPageAnalyzer(),
        notify=notify,
    )
    return RetailAgent(orchestrator)


def create_app(
    agent: Optional[RetailAgent] = None,
    bridge: Optional[WebSocketBridge] = None,
) -> FastAPI:
    """Build the API. The browser extension connects to /bridge; clients post to /query."""
    app = FastAPI(title="Retail Agent")

    # Enable CORS for the extension and local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    updates: Deque[str] = deque(maxlen=MAX_STATUS_MESSAGES)
    bridge = bridge or WebSocketBridge()
    agent = agent or build_agent(bridge)
    orchestrator = agent.orchestrator

    # Status messages reach /status as well as whoever the orchestrator already reports to.
    forward = orchestrator.notify

    def notify(message: str) -> None:
        updates.append(message)
        if forward is not None:
            forward(message)

    orchestrator.notify = notify

    # Event handlers run as tasks so the socket keeps reading responses meanwhile.
    tasks: Set[asyncio.Task] = set()

    app.state.agent = agent
    app.state.bridge = bridge
    app.state.updates = updates

    def spawn(coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        tasks.add(task)

        def done(t: asyncio.Task) -> None:
            tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("%s failed", name, exc_info=t.exception())

        task.add_done_callback(done)

    def status() -> Dict[str, Any]:
        session = orchestrator.session
        payload: Dict[str, Any] = {
            "bridge_connected": bridge.connected,
            "updates": list(updates),
        }
        if session is None:
            payload["session"] = None
        else:
            payload["session"] = {"id": session.id, **session_summary(session)}
        return payload

    @app.post("/query")
    async def query_endpoint(request: QueryRequest):
        if not request.message.strip():
            raise HTTPException(status_code=400, detail="Empty message")
        try:
            reply = await agent.chat(request.message)
        except Exception as e:
            logger.exception("Query failed")
            raise HTTPException(status_code=500, detail=str(e))
        return {"reply": reply, **status()}

    @app.post("/reset")
    async def reset_endpoint():
        orchestrator.reset()
        agent.history.clear()
        updates.clear()
        return {"status": "reset"}

    @app.get("/status")
    async def status_endpoint():
        return status()

    @app.get("/")
    async def root():
        return {"status": "Retail Agent API is running", "docs": "/docs"}

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.websocket("/bridge")
    async def bridge_endpoint(websocket: WebSocket):
        await websocket.accept()
        bridge.attach(websocket)
        logger.info("Browser bridge connected")

        async def answer(text: str) -> None:
            reply = await agent.chat(text)
            await websocket.send_json({"type": "reply", "reply": reply})

        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    continue
                kind = message.get("type")
                if kind == "response":
                    bridge.resolve(message)
                elif kind == "page_loaded":
                    spawn(orchestrator.on_page_loaded(message.get("tabId"), message.get("url")), "page_loaded")
                elif kind == "query_submitted":
                    text = message.get("text")
                    if isinstance(text, str) and text.strip():
                        spawn(answer(text), "query_submitted")
                else:
                    logger.debug("Ignoring bridge message type %r", kind)
        except WebSocketDisconnect:
            logger.info("Browser bridge disconnected")
        finally:
            bridge.detach(websocket)

    return app
