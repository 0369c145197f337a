"""LLM page analysis.

Sends simplified page text to the model and maps the JSON reply onto a
PageAnalysis. Failures never raise: they come back as an "error" analysis so
callers can fall through to their next fallback.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from .channel import call_with_timeout
from .config import MAX_PAGE_TEXT, MODEL_NAME, TIMEOUT_LLM
from .models import PageAnalysis
from .utils import parse_json_object

logger = logging.getLogger("retail_agent.analyzer")

MODE_GENERAL = "general"
MODE_SEARCH_RESULTS = "search_results"

ACTIONS = ("select_product", "click", "input", "extract_products", "completed", "error")

_BASE_PROMPT = (
    "You are an ecommerce automation agent. You receive a simplified text rendering "
    "of the current browser tab and must decide the next step toward the user's intent.\n"
    "User intent: {intent}\n"
    "Current state: {state}\n"
    "Platform: {platform}\n"
    "Return ONE JSON object and nothing else.\n"
)

_GENERAL_PROMPT = (
    "Choose exactly one action:\n"
    '- {{"action": "click", "selector": "<css selector>", "reason": "..."}}\n'
    '- {{"action": "input", "selector": "<css selector>", "value": "<text>", "reason": "..."}}\n'
    '- {{"action": "select_product", "url": "<absolute product url>", "title": "...", "reason": "..."}}\n'
    '- {{"action": "completed", "message": "..."}}\n'
    '- {{"action": "error", "message": "..."}}\n'
    "Never choose an action that places an order or submits payment."
)

_SEARCH_RESULTS_PROMPT = (
    "Rule-based extraction of the search results failed. Extract every product listing "
    "from the page, most relevant first, as:\n"
    '{{"action": "extract_products", "products": [{{"title": "...", "price": "₹14,999", '
    '"link": "<absolute url>", "rating": 4.2, "reviews": "1,234", "image": "...", '
    '"ram": 6, "storage": 128, "battery": 5000, "brand": "samsung"}}]}}\n'
    "Links must be absolute product-page URLs. Skip sponsored ads, banners and "
    "navigation. Use null for attributes you cannot see. If one product clearly "
    'matches the intent you may instead return {{"action": "select_product", "url": ..., "title": ...}}.'
)


def build_system_prompt(context: Dict[str, Any], mode: str) -> str:
    prompt = _BASE_PROMPT.format(
        intent=context.get("intent", ""),
        state=context.get("state", ""),
        platform=context.get("platform", "unknown"),
    )
    if mode == MODE_SEARCH_RESULTS:
        return prompt + _SEARCH_RESULTS_PROMPT.format()
    return prompt + _GENERAL_PROMPT.format()


def to_analysis(data: Optional[Dict[str, Any]]) -> PageAnalysis:
    """Map a parsed reply onto a PageAnalysis; anything unusable is an error."""
    if not data:
        return PageAnalysis(action="error", message="No JSON object in model reply")
    action = str(data.get("action", "")).lower().strip()
    if action not in ACTIONS:
        return PageAnalysis(action="error", message=f"Unknown action {action!r}")

    products = data.get("products")
    def text(key: str) -> Optional[str]:
        value = data.get(key)
        return str(value) if value not in (None, "") else None

    return PageAnalysis(
        action=action,
        reason=text("reason") or "",
        selector=text("selector"),
        value=text("value"),
        url=text("url"),
        title=text("title"),
        message=text("message"),
        products=[p for p in products if isinstance(p, dict)] if isinstance(products, list) else [],
    )


class AbstractPageAnalyzer:
    """Interface for page analysis backends."""
    async def analyze(self, page_text: str, context: Dict[str, Any], mode: str = MODE_GENERAL) -> PageAnalysis:
        raise NotImplementedError


class OpenAIPageAnalyzer(AbstractPageAnalyzer):
    """Page analysis with OpenAI chat completions in JSON mode."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = MODEL_NAME,
        timeout: float = TIMEOUT_LLM,
        max_chars: int = MAX_PAGE_TEXT,
    ) -> None:
        self._client = client
        self.model = model
        self.timeout = timeout
        self.max_chars = max_chars

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily so importing the package does not require an API key.
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def analyze(self, page_text: str, context: Dict[str, Any], mode: str = MODE_GENERAL) -> PageAnalysis:
        content = (page_text or "")[: self.max_chars]
        user_prompt = (
            f"Simplified page content:\n{content}\n\n"
            f"Based on this content and the intent {json.dumps(str(context.get('intent', '')))}, "
            "what is the next step?"
        )
        logger.info("Sending %d chars to LLM (mode=%s, state=%s)", len(content), mode, context.get("state"))
        try:
            response = await call_with_timeout(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": build_system_prompt(context, mode)},
                        {"role": "user", "content": user_prompt},
                    ],
                    response_format={"type": "json_object"},
                ),
                self.timeout,
                "LLM_ANALYZE",
            )
            reply = response.choices[0].message.content or ""
        except Exception as e:
            logger.error("Page analysis failed (mode=%s): %s", mode, e)
            return PageAnalysis(action="error", message=f"Page analysis failed: {e}")

        analysis = to_analysis(parse_json_object(reply))
        logger.info("LLM page analysis: action=%s products=%d", analysis.action, len(analysis.products))
        return analysis
