"""Simple CLI entry point for the retail purchase agent.

Runs the bridge server in the background (the browser extension connects to
ws://HOST:PORT/bridge) and reads purchase requests from stdin.
"""

import asyncio
import logging
import os

import uvicorn

from retail_agent import WebSocketBridge
from retail_agent.api import build_agent, create_app
from retail_agent.config import LOG_LEVEL

HOST = os.getenv("RETAIL_AGENT_HOST", "127.0.0.1")
PORT = int(os.getenv("RETAIL_AGENT_PORT", "8000"))


async def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    bridge = WebSocketBridge()
    agent = build_agent(bridge, notify=lambda message: print(f"  ... {message}"))
    orchestrator = agent.orchestrator
    server = uvicorn.Server(
        uvicorn.Config(create_app(agent, bridge), host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
    )
    server_task = asyncio.create_task(server.serve())

    print(f"Retail assistant is ready (bridge on ws://{HOST}:{PORT}/bridge). Type 'exit' or 'quit' to stop.")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\nExiting.")
            break

        if not user_input:
            continue
        if user_input.lower() in {"exit", "quit"}:
            print("Goodbye.")
            break
        if user_input.lower() in {"reset", "clear"}:
            orchestrator.reset()
            agent.history.clear()
            print("Session cleared.\n")
            continue

        reply = await agent.chat(user_input)
        print(f"Agent: {reply}\n")

    server.should_exit = True
    await server_task
    print("Session ended.")


if __name__ == "__main__":
    asyncio.run(main())
