"""Conversational front end for the purchase state machine.

Two-step flow:
1. Analyst LLM turns the request into a start_purchase tool call
2. Presentation LLM reports the session outcome back to the user

When the analyst call fails, the request goes through parse_intent_simple
instead. Entry points: RetailAgent.chat()
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import MAX_TURNS, MODEL_NAME, TIMEOUT_LLM
from .channel import call_with_timeout
from .errors import IntentError
from .intent import parse_intent_simple
from .models import RANKING_STRATEGIES, Intent, Session, normalize_filters
from .orchestrator import PurchaseOrchestrator
from .utils import message_to_dict, to_jsonable

logger = logging.getLogger("retail_agent.agent")

# System prompt used for the first ("analyst") LLM call.
SYSTEM_ANALYST_PROMPT = (
    "You are a shopping assistant that buys products on Indian and US retail sites "
    "(amazon, flipkart, ebay, walmart) by driving the user's browser. "
    "Keep the conversation context in mind. "
    "When the user asks to buy or find a product, call the start_purchase tool:\n"
    "- query: the product itself, short, without price or spec phrases (e.g. 'samsung phone').\n"
    "- platform: the site the user named, if any.\n"
    "- filters: copy every constraint the user gave. Prices are plain numbers in the site currency "
    "('under 20k' is price_max 20000); ram and storage in GB; battery in mAh; rating 0-5.\n"
    "- ranking_strategy: 'cheapest' or 'best_rated' only when the user asks for it, else 'relevant'.\n"
    "- keywords: up to 3 extra search words that would help the site's search box.\n"
    "If the request is not about buying something, or is too vague to search for, "
    "reply briefly without calling the tool."
)

# System prompt used for the second ("presentation") LLM call.
SYSTEM_PRESENTATION_PROMPT = (
    "You are a shopping assistant. You started a purchase in the user's browser and "
    "received the session status as JSON. Tell the user in 1-3 short sentences what "
    "happened: which product was chosen (title and price) and where things stand. "
    "If final_message asks the user to do something, repeat that instruction exactly. "
    "Never claim an order was placed unless outcome is 'order_placed'."
)


tools = [
    {
        "type": "function",
        "function": {
            "name": "start_purchase",
            "description": "Search a retail site in the user's browser, pick the best match and take it to checkout.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Product to search for, e.g. 'samsung phone', 'running shoes'.",
                    },
                    "platform": {
                        "type": "string",
                        "enum": ["amazon", "flipkart", "ebay", "walmart"],
                        "description": "Site to buy from, when the user named one.",
                    },
                    "filters": {
                        "type": "object",
                        "properties": {
                            "price_min": {"type": "number"},
                            "price_max": {"type": "number"},
                            "brand": {"type": "string"},
                            "ram": {"type": "number", "description": "Minimum RAM in GB."},
                            "storage": {"type": "number", "description": "Minimum storage in GB."},
                            "battery": {"type": "number", "description": "Minimum battery in mAh."},
                            "rating": {"type": "number", "description": "Minimum star rating, 0-5."},
                            "category": {"type": "string"},
                            "color": {"type": "string"},
                            "condition": {"type": "string", "description": "e.g. 'new', 'refurbished'."},
                        },
                    },
                    "ranking_strategy": {
                        "type": "string",
                        "enum": list(RANKING_STRATEGIES),
                    },
                    "urgency": {
                        "type": "string",
                        "description": "Optional delivery urgency, e.g. 'today', 'this week'.",
                    },
                    "keywords": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Extra search keywords.",
                    },
                },
                "required": ["query"],
            },
        },
    }
]


def intent_from_args(args: Dict[str, Any]) -> Intent:
    """Build an Intent from start_purchase arguments."""
    query = args.get("query")
    if not isinstance(query, str) or not query.strip():
        raise IntentError("The model did not name a product.")
    strategy = args.get("ranking_strategy")
    keywords = args.get("keywords") or []
    return Intent(
        query=query.strip(),
        platform_hint=args.get("platform") or None,
        filters=normalize_filters(args.get("filters") if isinstance(args.get("filters"), dict) else None),
        ranking_strategy=strategy if strategy in RANKING_STRATEGIES else "relevant",
        urgency=args.get("urgency") or None,
        keywords=tuple(str(k).strip() for k in keywords if isinstance(k, str) and k.strip())[:3],
    )


def session_summary(session: Session) -> Dict[str, Any]:
    product = session.selected_product
    return {
        "status": session.status.value,
        "outcome": session.outcome.value if session.outcome else None,
        "platform": session.platform,
        "query": session.intent.query,
        "filters": to_jsonable(session.intent.filters),
        "product": to_jsonable(product) if product else None,
        "final_message": session.final_message,
        "last_update": session.messages[-1] if session.messages else None,
    }


def describe_session(session: Session) -> str:
    """Plain reply used when the presentation call is unavailable."""
    if session.final_message:
        return session.final_message
    if session.selected_product:
        return f"Working on {session.selected_product.title} ({session.status.value.lower()})."
    return session.messages[-1] if session.messages else f"Working on '{session.intent.query}'."


class RetailAgent:
    """Two-step LLM pattern: analyst (tool calling) -> orchestrator -> presentation."""

    def __init__(
        self,
        orchestrator: PurchaseOrchestrator,
        client: Optional[AsyncOpenAI] = None,
        model: str = MODEL_NAME,
    ) -> None:
        self.history: List[Dict[str, Any]] = []
        self.orchestrator = orchestrator
        self.model = model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def chat(self, user_query: str) -> str:
        """Handle one turn of conversation and return the assistant reply."""
        user_msg: Dict[str, str] = {"role": "user", "content": user_query}
        working_messages: List[Dict[str, Any]] = [*self.history, user_msg]

        try:
            first = await call_with_timeout(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "system", "content": SYSTEM_ANALYST_PROMPT}, *working_messages],
                    tools=tools,
                    tool_choice="auto",
                ),
                TIMEOUT_LLM,
                "LLM_ANALYST",
            )
            first_msg = first.choices[0].message
        except Exception as e:
            logger.warning("Analyst LLM unavailable, using the simple parser: %s", e)
            reply = await self._start_simple(user_query)
            self._remember(user_msg, {"role": "assistant", "content": reply})
            return reply

        call = next(
            (tc for tc in (first_msg.tool_calls or []) if tc.function.name == "start_purchase"),
            None,
        )
        if call is None:
            # Clarifying question or small talk.
            reply = first_msg.content or ""
            if not reply:
                reply = await self._start_simple(user_query)
            self._remember(user_msg, {"role": "assistant", "content": reply})
            return reply

        try:
            args: Dict[str, Any] = json.loads(call.function.arguments)
            intent = intent_from_args(args)
        except (json.JSONDecodeError, TypeError, AttributeError, IntentError) as e:
            logger.warning("Unusable start_purchase arguments (%s), using the simple parser", e)
            reply = await self._start_simple(user_query)
            self._remember(user_msg, {"role": "assistant", "content": reply})
            return reply

        session = await self.orchestrator.submit(intent)
        tool_msg = {
            "role": "tool",
            "tool_call_id": call.id,
            "name": "start_purchase",
            "content": json.dumps(session_summary(session), ensure_ascii=False),
        }

        try:
            second = await call_with_timeout(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PRESENTATION_PROMPT},
                        *working_messages,
                        message_to_dict(first_msg),
                        tool_msg,
                    ],
                ),
                TIMEOUT_LLM,
                "LLM_PRESENTATION",
            )
            reply = second.choices[0].message.content or describe_session(session)
        except Exception as e:
            logger.warning("Presentation LLM failed: %s", e)
            reply = describe_session(session)

        self._remember(user_msg, {"role": "assistant", "content": reply})
        return reply

    async def _start_simple(self, user_query: str) -> str:
        try:
            intent = parse_intent_simple(user_query)
        except IntentError as e:
            return str(e)
        session = await self.orchestrator.submit(intent)
        return describe_session(session)

    def _remember(self, user_msg: Dict[str, Any], reply_msg: Dict[str, Any]) -> None:
        # Persist only the user request and the final natural-language reply.
        self.history.extend([user_msg, reply_msg])
        self.history = self.history[-2 * MAX_TURNS :]
