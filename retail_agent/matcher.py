"""Product matching: price/rating parsing, filter checks and ranking.

Everything here is pure and total. Malformed input degrades to "no
information" (price 0, rating 0, filter accepted) instead of raising.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence, TypeVar

logger = logging.getLogger("retail_agent.matcher")

T = TypeVar("T")

BRAND_ALIASES = {
    "samsung": ("samsung", "samsung electronics", "samsung mobile"),
    "apple": ("apple", "iphone", "ipad"),
    "xiaomi": ("xiaomi", "mi", "redmi", "poco"),
    "oneplus": ("oneplus", "one plus", "1+"),
    "realme": ("realme", "real me"),
    "vivo": ("vivo", "iqoo"),
    "oppo": ("oppo", "reno"),
    "motorola": ("motorola", "moto"),
    "nokia": ("nokia", "hmd global"),
    "google": ("google", "pixel"),
    "asus": ("asus", "rog"),
    "sony": ("sony", "xperia"),
    "lg": ("lg", "lg electronics"),
    "lenovo": ("lenovo",),
    "hp": ("hp",),
    "dell": ("dell",),
    "acer": ("acer",),
}

UNAVAILABLE_KEYWORDS = (
    "unavailable",
    "out of stock",
    "currently unavailable",
    "not available",
    "sold out",
    "discontinued",
)

COLORS = (
    "black", "white", "blue", "red", "green", "silver", "gold", "grey", "gray",
    "pink", "purple", "yellow", "orange", "brown", "beige",
)

CONDITIONS = ("new", "used", "refurbished", "renewed", "open box")

# Fuzzy brand tokens shorter than this must match exactly.
FUZZY_MIN_TOKEN = 4
FUZZY_MAX_DISTANCE = 1

_NUMBER = r"(\d+(?:\.\d+)?)"
_RAM_PATTERNS = (
    re.compile(r"(\d+)\s*(?:gb|gigabytes?)\s*(?:of\s*)?(?:ram|memory|unified\s*memory)", re.I),
    re.compile(r"(?:ram|memory)[^\d]{0,10}(\d+)\s*(?:gb|gigabytes?)", re.I),
)
_STORAGE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(gb|gigabytes?|tb|terabytes?)(?!\s*(?:of\s*)?(?:ram|memory|unified))", re.I)
_BATTERY_PATTERNS = (
    re.compile(r"(\d{3,5})\s*mah", re.I),
    re.compile(r"(?:battery)[^\d]{0,10}(\d{3,5})", re.I),
)


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _title(item: Any) -> str:
    title = _field(item, "title", "")
    return title.lower() if isinstance(title, str) else ""


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(_NUMBER, value.replace(",", ""))
        if match:
            return float(match.group(1))
    return None


def parse_price(text: Any) -> float:
    """Parse a price string to a number; 0 means unknown.

    "₹15,999" -> 15999, "15k" -> 15000, "From ₹1,200 - ₹1,500" -> 1200.
    """
    if isinstance(text, bool) or text is None:
        return 0.0
    if isinstance(text, (int, float)):
        return float(text) if text > 0 else 0.0
    if not isinstance(text, str):
        return 0.0
    cleaned = text.lower().replace("from", "")
    cleaned = re.sub(r"[₹$€£¥,\s]|rs\.?|inr", "", cleaned)
    k_match = re.match(r"^(\d+(?:\.\d+)?)(?:k|thousand)", cleaned)
    if k_match:
        return float(k_match.group(1)) * 1000
    range_match = re.search(r"(\d+(?:\.\d+)?)-(\d+(?:\.\d+)?)", cleaned)
    if range_match:
        return float(range_match.group(1))
    match = re.search(_NUMBER, cleaned)
    return float(match.group(1)) if match else 0.0


def parse_rating(text: Any) -> float:
    """Parse "4.3 out of 5 stars" / "4.3★" to 4.3; 0 means unknown."""
    value = _to_float(text)
    if value is None or value < 0 or value > 5:
        return 0.0
    return value


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def fuzzy_token_match(token: str, title: str) -> bool:
    """Token is a substring of the title, or (for tokens longer than 3
    characters) within one edit of some title word."""
    if not token:
        return False
    if token in title:
        return True
    if len(token) < FUZZY_MIN_TOKEN:
        return False
    for word in re.findall(r"[a-z0-9+]+", title):
        if abs(len(word) - len(token)) <= FUZZY_MAX_DISTANCE and edit_distance(word, token) <= FUZZY_MAX_DISTANCE:
            return True
    return False


def _contains_word(haystack: str, needle: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(needle)}(?![a-z0-9])", haystack) is not None


def brand_variations(brand: str) -> List[str]:
    """Expand a brand to its canonical alias group."""
    brand = brand.lower().strip()
    variations = [brand]
    for aliases in BRAND_ALIASES.values():
        if any(alias == brand or _contains_word(brand, alias) or _contains_word(alias, brand) for alias in aliases):
            for alias in aliases:
                if alias not in variations:
                    variations.append(alias)
            break
    return variations


def infer_brand(text: Any) -> Optional[str]:
    """Canonical brand named in free text, if any."""
    if not isinstance(text, str):
        return None
    lowered = text.lower()
    for canonical, aliases in BRAND_ALIASES.items():
        if any(len(alias) > 1 and _contains_word(lowered, alias) for alias in aliases):
            return canonical
    return None


def _matches_brand(title: str, brand: Any) -> bool:
    if not isinstance(brand, str) or not brand.strip():
        return True
    return any(
        all(fuzzy_token_match(token, title) for token in variation.split())
        for variation in brand_variations(brand)
    )


def _required_amount(value: Any) -> Optional[float]:
    amount = _to_float(value)
    if amount is None or amount <= 0:
        return None
    if isinstance(value, str) and re.search(r"\d\s*tb", value.lower()):
        amount *= 1024
    return amount


def _ram_in(item: Any, title: str) -> Optional[float]:
    for pattern in _RAM_PATTERNS:
        match = pattern.search(title)
        if match:
            return float(match.group(1))
    return _to_float(_field(item, "ram"))


def _storage_in(item: Any, title: str) -> List[float]:
    found = []
    for amount, unit in _STORAGE_PATTERN.findall(title):
        value = float(amount)
        if unit.lower().startswith("t"):
            value *= 1024
        found.append(value)
    if not found:
        structured = _to_float(_field(item, "storage"))
        if structured:
            found.append(structured)
    return found


def _battery_in(item: Any, title: str) -> Optional[float]:
    for pattern in _BATTERY_PATTERNS:
        match = pattern.search(title)
        if match:
            return float(match.group(1))
    return _to_float(_field(item, "battery"))


def _matches_choice(title: str, wanted: Any, known: Sequence[str]) -> bool:
    """Lenient check for color/condition: reject only when the title names a
    different known value and not the wanted one."""
    if not isinstance(wanted, str) or not wanted.strip():
        return True
    wanted = wanted.lower().strip()
    if _contains_word(title, wanted):
        return True
    others = [k for k in known if k != wanted and _contains_word(title, k)]
    return not others


def matches_filters(item: Any, filters: Optional[Mapping[str, Any]]) -> bool:
    """True unless a concretely parsed value on the item violates a filter."""
    if not filters:
        return True
    title = _title(item)

    price = parse_price(_field(item, "price"))
    price_min = _to_float(filters.get("price_min"))
    price_max = _to_float(filters.get("price_max"))
    if price > 0 and price_min and price < price_min:
        logger.debug("Filtered out (price %s < %s): %s", price, price_min, title[:60])
        return False
    if price > 0 and price_max and price > price_max:
        logger.debug("Filtered out (price %s > %s): %s", price, price_max, title[:60])
        return False

    min_rating = _to_float(filters.get("rating"))
    if min_rating:
        rating = parse_rating(_field(item, "rating"))
        if rating > 0 and rating < min_rating:
            logger.debug("Filtered out (rating %s < %s): %s", rating, min_rating, title[:60])
            return False

    if not _matches_brand(title, filters.get("brand")):
        logger.debug("Filtered out (brand %r): %s", filters.get("brand"), title[:60])
        return False

    required_ram = _required_amount(filters.get("ram"))
    if required_ram:
        ram = _ram_in(item, title)
        if ram is not None and ram < required_ram:
            logger.debug("Filtered out (ram %s < %s): %s", ram, required_ram, title[:60])
            return False

    required_storage = _required_amount(filters.get("storage"))
    if required_storage:
        storage = _storage_in(item, title)
        if storage and max(storage) < required_storage:
            logger.debug("Filtered out (storage %s < %s): %s", storage, required_storage, title[:60])
            return False

    required_battery = _required_amount(filters.get("battery"))
    if required_battery:
        battery = _battery_in(item, title)
        if battery is not None and battery < required_battery:
            logger.debug("Filtered out (battery %s < %s): %s", battery, required_battery, title[:60])
            return False

    if not _matches_choice(title, filters.get("color"), COLORS):
        return False
    if not _matches_choice(title, filters.get("condition"), CONDITIONS):
        return False
    # category is informational on listing titles; never rejects
    return True


def is_unavailable(item: Any) -> bool:
    title = _title(item)
    return any(keyword in title for keyword in UNAVAILABLE_KEYWORDS)


def is_sponsored(item: Any) -> bool:
    if _field(item, "sponsored") is True:
        return True
    return "sponsored" in _title(item)


def rank_results(items: Iterable[T], ranking_strategy: str = "relevant") -> List[T]:
    """Stable sort by strategy, then rating desc, then price asc.

    Unknown prices (0) sort after known ones.
    """

    def price_key(item: Any) -> tuple:
        price = parse_price(_field(item, "price"))
        return (price <= 0, price)

    def key(item: Any) -> tuple:
        rating = parse_rating(_field(item, "rating"))
        primary: tuple = ()
        if ranking_strategy == "cheapest":
            primary = price_key(item)
        elif ranking_strategy == "best_rated":
            primary = (-rating,)
        return primary + (-rating,) + price_key(item)

    return sorted(items, key=key)
