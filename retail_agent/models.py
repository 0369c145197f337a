# Data models for purchase sessions.
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

FilterSet = Dict[str, Any]

FILTER_KEYS = (
    "price_min",
    "price_max",
    "brand",
    "ram",
    "storage",
    "battery",
    "rating",
    "category",
    "color",
    "condition",
)

RANKING_STRATEGIES = ("relevant", "cheapest", "best_rated")


def normalize_filters(raw: Optional[Mapping[str, Any]]) -> FilterSet:
    """Keep known filter keys with non-empty values."""
    if not raw:
        return {}
    filters: FilterSet = {}
    for key in FILTER_KEYS:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        filters[key] = value
    return filters


class SessionState(str, Enum):
    """States of the purchase lifecycle."""
    IDLE = "IDLE"
    SEARCHING = "SEARCHING"
    SELECTING = "SELECTING"
    PRODUCT_PAGE = "PRODUCT_PAGE"
    CHECKOUT_FLOW = "CHECKOUT_FLOW"
    COMPLETED = "COMPLETED"


class Outcome(str, Enum):
    """How a session ended."""
    CHECKOUT_READY = "checkout_ready"
    ADDED_TO_CART = "added_to_cart"
    ORDER_PLACED = "order_placed"
    NOT_FOUND = "not_found"
    LOGIN_REQUIRED = "login_required"
    MANUAL_ACTION = "manual_action"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Intent:
    """Parsed purchase request.

    Produced by the intent layer (LLM tool call or the simple parser); the
    orchestrator only checks that `query` is present.
    """

    query: str
    platform_hint: Optional[str] = None
    filters: FilterSet = field(default_factory=dict)
    ranking_strategy: str = "relevant"  # "relevant" | "cheapest" | "best_rated"
    urgency: Optional[str] = None
    keywords: Tuple[str, ...] = ()  # extra search keywords suggested by the LLM


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


@dataclass
class RawItem:
    """One listing as extracted from the page. Never persisted."""
    title: str
    price: str = ""
    rating: str = ""
    link: str = ""
    image: Optional[str] = None
    reviews: Optional[str] = None
    # Structured attributes, when the extractor (or the LLM) provides them
    ram: Optional[float] = None
    storage: Optional[float] = None
    battery: Optional[float] = None
    brand: Optional[str] = None
    sponsored: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "RawItem":
        """Build from an untrusted payload; missing or odd fields become empty."""
        if not isinstance(data, Mapping):
            return cls(title="")
        return cls(
            title=_text(data.get("title")),
            price=_text(data.get("price")),
            rating=_text(data.get("rating")),
            link=_text(data.get("link") or data.get("url")),
            image=_text(data.get("image")) or None,
            reviews=_text(data.get("reviews") or data.get("reviewsText")) or None,
            ram=_number(data.get("ram")),
            storage=_number(data.get("storage")),
            battery=_number(data.get("battery")),
            brand=_text(data.get("brand")) or None,
            sponsored=bool(data.get("sponsored", False)),
        )


@dataclass
class ValidatedItem(RawItem):
    """Listing with a normalized link and a presentation-quality score."""
    quality_score: float = 0.0


@dataclass
class ProductRef:
    """The candidate chosen for purchase."""
    title: str
    link: str
    price: str = ""
    rating: str = ""
    tier: str = "strict"  # "strict" | "relaxed" | "llm" | "llm_unfiltered"

    @classmethod
    def from_item(cls, item: RawItem, tier: str) -> "ProductRef":
        return cls(title=item.title, link=item.link, price=item.price, rating=item.rating, tier=tier)


@dataclass
class NotFound:
    """No acceptable product; carries counts from every selection stage."""
    message: str
    diagnostics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FilterReport:
    """Outcome of one filter-application run."""
    applied: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    before_count: Optional[int] = None
    after_count: Optional[int] = None


@dataclass
class PageAnalysis:
    """Decision returned by the LLM page analyzer."""
    action: str  # select_product, click, input, extract_products, completed, error
    reason: str = ""
    selector: Optional[str] = None
    value: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    products: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Session:
    """One purchase attempt. Owned and mutated only by the orchestrator."""
    id: str
    intent: Intent
    status: SessionState = SessionState.IDLE
    target_tab: Optional[Any] = None
    platform: Optional[str] = None
    filters_applied: bool = False
    search_attempted: bool = False
    nav_retry_count: int = 0
    selected_product: Optional[ProductRef] = None
    buy_attempted: bool = False
    outcome: Optional[Outcome] = None
    final_message: Optional[str] = None
    messages: List[str] = field(default_factory=list)
    history: List[SessionState] = field(default_factory=list)  # states entered, in order

    @property
    def is_terminal(self) -> bool:
        return self.status is SessionState.COMPLETED
