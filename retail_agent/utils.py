"""Utility functions for the retail agent."""
import json
import re
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from .models import Intent

LEADING_STOPWORDS = {
    "buy", "purchase", "order", "get", "find", "search", "for", "show", "me",
    "i", "want", "need", "to", "a", "an", "the", "please", "some", "looking",
}

_LOWER_BOUND = r"(?:greater than|more than|above|over|at least|minimum|min)"
_UPPER_BOUND = r"(?:less than|below|under|upto|up to|within|maximum|max)"
_UNIT = r"(gb|tb|mah|mp|inch|inches|hz|w)?"


def fold_comparisons(text: str) -> str:
    """Fold "greater than 5000 mah" into "5000mah" and "less than 20,000"
    into "under 20000"."""

    def lower(match: re.Match) -> str:
        return match.group(1).replace(",", "") + (match.group(2) or "")

    def upper(match: re.Match) -> str:
        return "under " + match.group(1).replace(",", "") + (match.group(2) or "")

    text = re.sub(rf"\b{_LOWER_BOUND}\s*(\d[\d,]*)\s*{_UNIT}\b", lower, text, flags=re.I)
    text = re.sub(rf"\b{_UPPER_BOUND}\s*(?:rs\.?|₹|\$)?\s*(\d[\d,]*)\s*{_UNIT}\b", upper, text, flags=re.I)
    return text


def _filter_terms(filters: Dict[str, Any]) -> List[str]:
    """High-priority filter values worth putting in the search box."""
    terms: List[str] = []
    brand = filters.get("brand")
    if isinstance(brand, str) and brand.strip():
        terms.append(brand.strip())
    for key, unit, suffix in (("ram", "gb", " ram"), ("storage", "gb", ""), ("battery", "mah", "")):
        value = filters.get(key)
        if value is None or value == "":
            continue
        text = str(value).lower().replace(" ", "")
        if text.replace(".", "").isdigit():
            text += unit
        terms.append(text + suffix)
    color = filters.get("color")
    if isinstance(color, str) and color.strip():
        terms.append(color.strip())
    return terms


def refine_query(intent: Intent) -> str:
    """Search-box text for an intent.

    Strips leading filler words, folds comparison phrases, appends filter
    values and suggested keywords the query does not already mention, and
    drops repeated words.
    """
    words = fold_comparisons(intent.query).split()
    while words and words[0].lower() in LEADING_STOPWORDS:
        words.pop(0)
    if not words:
        words = intent.query.split()

    present = " ".join(words).lower()
    for term in _filter_terms(intent.filters):
        if term.lower() not in present:
            words.extend(term.split())
            present += " " + term.lower()
    for keyword in intent.keywords:
        words.extend(str(keyword).split())

    seen = set()
    refined: List[str] = []
    for word in words:
        key = word.lower()
        if key in seen:
            continue
        seen.add(key)
        refined.append(word)
    return " ".join(refined)


def normalize_link(link: str, origin: Optional[str] = None) -> Optional[str]:
    """Absolute http(s) link without fragment, or None when implausible."""
    if not isinstance(link, str):
        return None
    link = link.strip()
    if not link or link.startswith(("#", "javascript:", "mailto:", "data:")):
        return None
    if link.startswith("//"):
        link = "https:" + link
    elif link.startswith("/"):
        if not origin:
            return None
        link = urljoin(origin, link)
    parsed = urlparse(link)
    if parsed.scheme not in ("http", "https") or "." not in parsed.netloc:
        return None
    return urlunparse(parsed._replace(fragment=""))


def urls_match(current: str, target: str) -> bool:
    """Same host (ignoring "www.") and one path contains the other."""
    a, b = urlparse(current or ""), urlparse(target or "")
    if not a.netloc or not b.netloc:
        return False
    if a.netloc.lower().removeprefix("www.") != b.netloc.lower().removeprefix("www."):
        return False
    path_a, path_b = a.path.rstrip("/"), b.path.rstrip("/")
    if not path_b:
        return not path_a
    return path_b in path_a or (bool(path_a) and path_a in path_b)


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Extract the first JSON object from an LLM reply (code fences and
    surrounding prose allowed)."""
    if not isinstance(text, str):
        return None
    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass
    start = cleaned.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(cleaned)):
            ch = cleaned[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        data = json.loads(cleaned[start:i + 1])
                    except json.JSONDecodeError:
                        break
                    return data if isinstance(data, dict) else None
        start = cleaned.find("{", start + 1)
    return None


def to_jsonable(value: Any) -> Any:
    """Dataclasses and enums to plain JSON-serializable values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def message_to_dict(msg: Any) -> Dict[str, Any]:
    """Convert OpenAI chat message to a plain dict we can keep in history."""
    payload: Dict[str, Any] = {"role": msg.role, "content": msg.content}
    if getattr(msg, "tool_calls", None):
        payload["tool_calls"] = []
        for tc in msg.tool_calls:
            payload["tool_calls"].append(
                {
                    "id": tc.id,
                    "type": tc.type,
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
            )
    return payload
