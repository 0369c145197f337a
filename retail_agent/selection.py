from __future__ import annotations

"""Product selection over extracted listings.

Provides:
- validate_items / dedupe_by_link: quality gate and presentation scoring
- SelectionEngine: strict → relaxed → LLM-fallback selection"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .analyzer import MODE_SEARCH_RESULTS, AbstractPageAnalyzer
from .errors import TransientRemoteError
from .matcher import infer_brand, is_sponsored, is_unavailable, matches_filters, rank_results
from .models import FilterSet, Intent, NotFound, ProductRef, RawItem, ValidatedItem
from .utils import normalize_link

logger = logging.getLogger("retail_agent.selection")

RELAXED_KEYS = ("brand", "category")

PageTextProvider = Callable[[], Awaitable[str]]
SelectionResult = Union[ProductRef, NotFound]


def quality_score(item: RawItem, absolute: bool) -> float:
    """Presentation-quality heuristic: how complete the listing looks."""
    score = min(len(item.title), 100) / 20.0
    if item.price:
        score += 2.0
    if item.rating:
        score += 1.5
    if item.image:
        score += 1.0
    if item.reviews:
        score += 1.0
    if absolute:
        score += 1.0
    return score


def validate_items(
    raw_items: Iterable[Any], origin: Optional[str] = None, by_score: bool = True
) -> List[ValidatedItem]:
    """Keep items with a title and a plausible link, best-looking first
    unless by_score is False."""
    validated: List[ValidatedItem] = []
    for raw in raw_items:
        item = raw if isinstance(raw, RawItem) else RawItem.from_dict(raw)
        if not item.title:
            continue
        link = normalize_link(item.link, origin)
        if not link:
            continue
        absolute = item.link.startswith(("http://", "https://"))
        fields = dict(item.__dict__)
        fields["link"] = link
        fields.pop("quality_score", None)
        validated.append(ValidatedItem(**fields, quality_score=quality_score(item, absolute)))
    if not by_score:
        return validated
    return sorted(validated, key=lambda v: v.quality_score, reverse=True)


def dedupe_by_link(items: Iterable[ValidatedItem]) -> List[ValidatedItem]:
    seen: set[str] = set()
    unique: List[ValidatedItem] = []
    for item in items:
        if item.link in seen:
            continue
        seen.add(item.link)
        unique.append(item)
    return unique


def first_acceptable(items: Sequence[ValidatedItem], filters: FilterSet) -> Optional[ValidatedItem]:
    """First item that passes the filters and is not unavailable.

    Sponsored listings are only considered after organic ones.
    """
    organic = [i for i in items if not is_sponsored(i)]
    sponsored = [i for i in items if is_sponsored(i)]
    for item in organic + sponsored:
        if matches_filters(item, filters) and not is_unavailable(item):
            return item
    return None


def relaxed_filters(intent: Intent) -> FilterSet:
    """Brand/category only; brand falls back to the one named in the query."""
    relaxed = {k: intent.filters[k] for k in RELAXED_KEYS if k in intent.filters}
    if "brand" not in relaxed:
        brand = infer_brand(intent.query)
        if brand:
            relaxed["brand"] = brand
    return relaxed


class SelectionEngine:
    """Pick one product from extracted listings.

    Tiers, first hit wins: strict (all filters), relaxed (brand/category
    only, when more than one filter is active), LLM re-analysis of the raw
    page (first filter-passing product, else its first product).
    """

    def __init__(self, analyzer: Optional[AbstractPageAnalyzer] = None) -> None:
        self.analyzer = analyzer

    async def select_product(
        self,
        raw_items: Sequence[Any],
        intent: Intent,
        page_text: Optional[PageTextProvider] = None,
        origin: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> SelectionResult:
        filters = intent.filters
        diagnostics: Dict[str, Any] = {
            "raw": len(raw_items),
            "active_filters": sorted(filters),
        }

        valid = validate_items(raw_items, origin)
        unique = dedupe_by_link(valid)
        ranked = rank_results(unique, intent.ranking_strategy)
        diagnostics.update(valid=len(valid), unique=len(unique))

        match = first_acceptable(ranked, filters)
        if match:
            logger.info("Strict match: %s", match.title[:60])
            return ProductRef.from_item(match, "strict")
        diagnostics["strict_checked"] = len(ranked)

        if len(filters) > 1:
            relaxed = relaxed_filters(intent)
            diagnostics["relaxed_filters"] = sorted(relaxed)
            if relaxed:
                match = first_acceptable(ranked, relaxed)
                if match:
                    logger.info("Relaxed match on %s: %s", sorted(relaxed), match.title[:60])
                    return ProductRef.from_item(match, "relaxed")

        result = await self._llm_fallback(intent, page_text, origin, context or {}, diagnostics)
        if result:
            return result

        logger.warning("No product selected: %s", diagnostics)
        return NotFound(message=self._describe(diagnostics), diagnostics=diagnostics)

    async def _llm_fallback(
        self,
        intent: Intent,
        page_text: Optional[PageTextProvider],
        origin: Optional[str],
        context: Dict[str, Any],
        diagnostics: Dict[str, Any],
    ) -> Optional[ProductRef]:
        if self.analyzer is None or page_text is None:
            diagnostics["llm"] = "unavailable"
            return None
        try:
            text = await page_text()
        except TransientRemoteError as e:
            logger.warning("Could not read page text for LLM fallback: %s", e)
            diagnostics["llm"] = "no page text"
            return None

        analysis = await self.analyzer.analyze(text, {"intent": intent.query, **context}, MODE_SEARCH_RESULTS)
        if analysis.action == "extract_products":
            candidates: List[Any] = analysis.products
        elif analysis.action == "select_product" and analysis.url:
            candidates = [{"title": analysis.title or analysis.url, "link": analysis.url}]
        else:
            diagnostics["llm"] = analysis.message or analysis.action
            return None

        valid = dedupe_by_link(validate_items(candidates, origin, by_score=False))
        diagnostics["llm_products"] = len(valid)
        if not valid:
            return None
        ranked = rank_results(valid, intent.ranking_strategy)
        match = first_acceptable(ranked, intent.filters)
        if match:
            logger.info("LLM match: %s", match.title[:60])
            return ProductRef.from_item(match, "llm")
        # Last resort: the model's own top pick, unfiltered.
        logger.warning("No LLM product passed filters, taking the first: %s", valid[0].title[:60])
        return ProductRef.from_item(valid[0], "llm_unfiltered")

    @staticmethod
    def _describe(diagnostics: Dict[str, Any]) -> str:
        if not diagnostics.get("raw"):
            return "No products were found on the results page."
        if not diagnostics.get("valid"):
            return f"Found {diagnostics['raw']} listings but none had a usable title and link."
        filters = ", ".join(diagnostics.get("active_filters") or []) or "none"
        return (
            f"Checked {diagnostics.get('unique', 0)} products but none matched your criteria "
            f"(filters: {filters})."
        )
