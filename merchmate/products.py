# products.py
"""
Product ranking and pagination over the Printify catalog.

Entries are scored against the requested product details with a simple
additive heuristic, sorted once per search (ties keep catalog order) and
handed out a page at a time without repeats until the ranking is exhausted.
"""

import logging
import re
from typing import Awaitable, Callable, List, Optional

from fastapi import APIRouter, Depends, Query

from .errors import CatalogError
from .models import CatalogEntry, ConversationContext, ProductDetails, SearchPage
from .printify import PrintifyClient
from .settings import settings

# --- Configuration & Setup ---
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/products", tags=["Products"])

PAGE_SIZE = settings.SEARCH_PAGE_SIZE
TYPE_MATCH_SCORE = 3
VARIANT_MATCH_SCORE = 2

# Colour words recognised in free-text queries
COLOR_WORDS = [
    "black", "white", "gray", "grey", "red", "orange", "yellow", "green", "blue",
    "navy", "purple", "pink", "brown", "beige", "maroon", "teal",
]

CatalogFetcher = Callable[[], Awaitable[List[CatalogEntry]]]


# ===================================================================
# Scoring
# ===================================================================

def _attribute(attributes: dict, key: str) -> str:
    for name, value in attributes.items():
        if name.lower() == key:
            return value.lower()
    return ""


def score_entry(entry: CatalogEntry, details: ProductDetails) -> int:
    """Additive match score. Deterministic, never negative, not normalised by entry size."""
    score = 0

    if details.type:
        wanted = details.type.lower()
        if any(wanted in (text or "").lower() for text in (entry.title, entry.description)):
            score += TYPE_MATCH_SCORE

    color = details.color.lower() if details.color else None
    material = details.material.lower() if details.material else None
    for variant in entry.variants:
        if color and color in _attribute(variant.attributes, "color"):
            score += VARIANT_MATCH_SCORE
        if material and material in _attribute(variant.attributes, "material"):
            score += VARIANT_MATCH_SCORE

    return score


def rank_entries(entries: List[CatalogEntry], details: ProductDetails) -> List[CatalogEntry]:
    # sorted() is stable, so equal scores keep catalog order
    return sorted(entries, key=lambda entry: score_entry(entry, details), reverse=True)


def details_from_query(query: str) -> ProductDetails:
    """Turns a free-text query like 'black t-shirt' into type='t-shirt', color='black'."""
    text = (query or "").strip()
    color = None
    for word in COLOR_WORDS:
        pattern = rf"\b{word}\b"
        if re.search(pattern, text, re.I):
            color = word
            text = re.sub(pattern, " ", text, flags=re.I)
            break
    product_type = re.sub(r"\s+", " ", text).strip()
    return ProductDetails(type=product_type or None, color=color)


# ===================================================================
# Ranking search
# ===================================================================

class RankingSearch:
    """
    Scores and paginates catalog entries.

    The ranking and the set of shown ids live on the ConversationContext
    passed in, so one instance can serve any number of conversations.
    """

    def __init__(self, fetch_catalog: CatalogFetcher, page_size: int = PAGE_SIZE):
        self.fetch_catalog = fetch_catalog
        self.page_size = page_size

    async def search(self, state: ConversationContext, details: ProductDetails, reset: bool = False) -> SearchPage:
        logger.info(f"Product search (reset={reset}) for type={details.type!r} color={details.color!r}")
        if reset or state.ranked_catalog is None:
            await self._start_new_search(state, details)
        return self.next_page(state)

    async def _start_new_search(self, state: ConversationContext, details: ProductDetails) -> None:
        try:
            entries = await self.fetch_catalog()
        except CatalogError as e:
            logger.error(f"Product Search Failed: {e}")
            raise
        state.ranked_catalog = rank_entries(entries, details)
        state.shown_entry_ids = set()
        state.last_page = []

    def next_page(self, state: ConversationContext) -> SearchPage:
        ranked = state.ranked_catalog or []
        page = [entry for entry in ranked if entry.id not in state.shown_entry_ids][: self.page_size]
        for entry in page:
            state.shown_entry_ids.add(entry.id)

        remaining = sum(1 for entry in ranked if entry.id not in state.shown_entry_ids)
        logger.info(f"Search results prepared: {len(page)} shown, {remaining} remaining")
        return SearchPage(page=page, has_more=remaining > 0, total_remaining=remaining)


# ===================================================================
# API Endpoint
# ===================================================================

def get_ranking_search() -> RankingSearch:
    return RankingSearch(PrintifyClient().get_blueprints)


@router.get("", response_model=SearchPage, response_model_by_alias=True, summary="Rank catalog products for a query")
async def list_products(q: Optional[str] = Query(default=""), search: RankingSearch = Depends(get_ranking_search)):
    """
    Ranks the full Printify catalog against a free-text query and returns the first page.
    Each request is an independent search; conversation state is not touched.
    """
    details = details_from_query(q or "")
    return await search.search(ConversationContext(), details, reset=True)
