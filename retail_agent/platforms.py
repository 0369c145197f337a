"""Known retail sites and the URL patterns the state machine relies on."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from .config import DEFAULT_PLATFORM

logger = logging.getLogger("retail_agent.platforms")

# Checkout flows legitimately redirect, so any of these counts as "at checkout".
CHECKOUT_PATTERNS = (
    "/checkout",
    "/cart",
    "/gp/buy",
    "/gp/cart",
    "/buy/spc",
    "viewcart",
    "/basket",
)

ORDER_CONFIRMATION_PATTERNS = (
    "thank-you",
    "thankyou",
    "order-confirmation",
    "orderconfirmation",
    "order-placed",
)


@dataclass(frozen=True)
class Platform:
    """A retail site."""
    name: str
    domains: Tuple[str, ...]
    home_url: str
    results_patterns: Tuple[str, ...] = ("/search?",)
    product_patterns: Tuple[str, ...] = ()

    @property
    def origin(self) -> str:
        parsed = urlparse(self.home_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def owns(self, url: str) -> bool:
        host = urlparse(url or "").netloc.lower()
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def is_results_url(self, url: str) -> bool:
        return bool(url) and any(p in url for p in self.results_patterns)

    def is_product_url(self, url: str) -> bool:
        return bool(url) and any(p in url for p in self.product_patterns)


PLATFORMS: Dict[str, Platform] = {
    "amazon": Platform(
        name="amazon",
        domains=("amazon.in", "amazon.com", "amazon.co.uk", "amazon.de", "amazon.fr"),
        home_url="https://www.amazon.in/",
        results_patterns=("/s?", "/s/", "/search?"),
        product_patterns=("/dp/", "/gp/product/"),
    ),
    "flipkart": Platform(
        name="flipkart",
        domains=("flipkart.com",),
        home_url="https://www.flipkart.com/",
        results_patterns=("/search?",),
        product_patterns=("/p/",),
    ),
    "ebay": Platform(
        name="ebay",
        domains=("ebay.com", "ebay.in"),
        home_url="https://www.ebay.com/",
        results_patterns=("/sch/",),
        product_patterns=("/itm/",),
    ),
    "walmart": Platform(
        name="walmart",
        domains=("walmart.com",),
        home_url="https://www.walmart.com/",
        results_patterns=("/search?", "/search/"),
        product_patterns=("/ip/",),
    ),
}


def resolve_platform(hint: Optional[str]) -> Platform:
    """Platform named by the hint, else the configured default."""
    name = (hint or "").lower().strip()
    if name in PLATFORMS:
        return PLATFORMS[name]
    if name:
        for platform in PLATFORMS.values():
            if any(name in d for d in platform.domains):
                return platform
        logger.warning("Platform %s not supported, defaulting to %s", name, DEFAULT_PLATFORM)
    return PLATFORMS.get(DEFAULT_PLATFORM, PLATFORMS["amazon"])


def is_checkout_url(url: str) -> bool:
    lowered = (url or "").lower()
    return any(p in lowered for p in CHECKOUT_PATTERNS)


def is_order_confirmation_url(url: str) -> bool:
    lowered = (url or "").lower()
    return any(p in lowered for p in ORDER_CONFIRMATION_PATTERNS)
