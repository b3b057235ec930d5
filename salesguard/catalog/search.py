from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..utils import normalize_text
from .index import CatalogIndex
from .schema import Product, ProductSummary, coerce_optional_int
from .stock import StockResolver

logger = logging.getLogger("salesguard.search")


def _dining(taxonomy: str, category: str, name: str) -> bool:
    return "dining" in taxonomy or "dining" in category or "dining" in name


def _lounge(taxonomy: str, category: str, name: str) -> bool:
    return "lounge" in taxonomy or "lounge" in category or "lounge" in name or "sofa" in name


def _corner(taxonomy: str, category: str, name: str) -> bool:
    return "corner" in taxonomy or "corner" in name


def _lounger(taxonomy: str, category: str, name: str) -> bool:
    return "lounger" in taxonomy or "lounger" in name or "sun" in name


FURNITURE_TYPE_RULES: Dict[str, Callable[[str, str, str], bool]] = {
    "dining": _dining,
    "lounge": _lounge,
    "corner": _corner,
    "lounger": _lounger,
}


@dataclass(frozen=True)
class SearchCriteria:
    furniture_type: Optional[str] = None
    material: Optional[str] = None
    min_seats: Optional[int] = None
    name_query: Optional[str] = None

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> "SearchCriteria":
        """Build criteria from tool-call arguments in camelCase or snake_case."""
        def pick(*keys: str) -> Optional[str]:
            for key in keys:
                value = arguments.get(key)
                if value is not None and str(value).strip():
                    return str(value).strip()
            return None

        seats = coerce_optional_int(pick("seatCount", "seat_count", "minSeats", "min_seats"))
        return cls(
            furniture_type=pick("furnitureType", "furniture_type"),
            material=pick("material"),
            min_seats=seats if seats and seats > 0 else None,
            name_query=pick("productName", "product_name", "nameQuery", "name_query"),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "furnitureType": self.furniture_type,
            "material": self.material,
            "seatCount": self.min_seats,
            "productName": self.name_query,
        }


@dataclass
class SearchResult:
    items: List[ProductSummary] = field(default_factory=list)
    capacity_fallback: bool = False

    @property
    def skus(self) -> List[str]:
        return [item.sku for item in self.items]

    @property
    def max_seats(self) -> Optional[int]:
        seats = [item.seats for item in self.items if item.seats is not None]
        return max(seats) if seats else None


class SearchEngine:
    """Filter the catalog into an in-stock shortlist of product summaries."""

    def __init__(self, index: CatalogIndex, resolver: StockResolver) -> None:
        self._index = index
        self._resolver = resolver

    def search(self, criteria: SearchCriteria, max_results: int = 5) -> SearchResult:
        """Purpose: Run the staged filter pipeline and return in-stock summaries.
        Inputs/Outputs: Input is SearchCriteria and a result cap; output is SearchResult.
        Side Effects / State: Logs stage counts, fallbacks and stock exclusions.
        Dependencies: CatalogIndex for products, StockResolver for the final filter.
        Failure Modes: Empty catalogs and conflicting filters yield an empty result.
        If Removed: The session whitelist has no verified source.
        Testing Notes: minSeats above the catalog maximum should engage the capacity
            fallback and return only the largest in-stock capacity.
        """
        # Stage 1: only products with a SKU and a primary category are searchable.
        candidates = [p for p in self._index.products() if p.sku and p.category]
        logger.debug("search start criteria=%s candidates=%d", criteria.as_dict(), len(candidates))

        # Stage 2: furniture type; unknown tags pass through.
        if criteria.furniture_type:
            rule = FURNITURE_TYPE_RULES.get(normalize_text(criteria.furniture_type))
            if rule is not None:
                candidates = [p for p in candidates if rule(*_type_fields(p))]

        # Stage 3: material.
        if criteria.material:
            wanted = normalize_text(criteria.material)
            candidates = [
                p
                for p in candidates
                if wanted in normalize_text(p.material)
                or wanted in normalize_text(p.category)
                or wanted in normalize_text(p.name)
            ]

        # Stage 4: minimum seats among in-stock products, closest capacity first.
        capacity_fallback = False
        if criteria.min_seats:
            before = candidates
            candidates = [
                p
                for p in before
                if p.seats is not None
                and p.seats >= criteria.min_seats
                and self._resolver.resolve(p.sku).in_stock
            ]
            candidates.sort(key=lambda p: p.seats - criteria.min_seats)
            if not candidates and before:
                candidates = self._largest_capacity(before)
                capacity_fallback = bool(candidates)
                logger.info(
                    "search capacity fallback min_seats=%d largest=%s",
                    criteria.min_seats,
                    candidates[0].seats if candidates else None,
                )

        # Stage 5: free-text name or SKU.
        if criteria.name_query:
            query = normalize_text(criteria.name_query)
            candidates = [
                p for p in candidates if query in normalize_text(p.name) or query in normalize_text(p.sku)
            ]

        # Stage 6: stock always has the final say.
        in_stock: List[Product] = []
        for product in candidates:
            if self._resolver.resolve(product.sku).in_stock:
                in_stock.append(product)
            else:
                logger.info("search excluded out-of-stock sku=%s", product.sku)

        # Stage 7: truncate.
        items = [ProductSummary.from_product(p) for p in in_stock[: max(max_results, 0)]]
        logger.info(
            "search done results=%s fallback=%s",
            ",".join(f"{item.sku}({item.seats})" for item in items) or "-",
            capacity_fallback,
        )
        return SearchResult(items=items, capacity_fallback=capacity_fallback)

    def _largest_capacity(self, pool: List[Product]) -> List[Product]:
        seated = [p for p in pool if p.seats is not None and self._resolver.resolve(p.sku).in_stock]
        if not seated:
            return []
        largest = max(p.seats for p in seated)
        return [p for p in seated if p.seats == largest]


def _type_fields(product: Product) -> tuple:
    return (
        normalize_text(product.taxonomy),
        normalize_text(product.category),
        normalize_text(product.name),
    )
