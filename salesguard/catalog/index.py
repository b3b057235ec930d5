from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..utils import normalize_text
from .schema import Product

logger = logging.getLogger("salesguard.catalog")


@dataclass
class CatalogIndex:
    """In-memory lookup tables built once from validated catalog products."""
    by_sku: Dict[str, Product] = field(default_factory=dict)
    by_category: Dict[str, List[str]] = field(default_factory=dict)
    by_material: Dict[str, List[str]] = field(default_factory=dict)
    by_seats: Dict[int, List[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.by_sku)

    def __contains__(self, sku: object) -> bool:
        return isinstance(sku, str) and sku in self.by_sku

    def get(self, sku: str) -> Optional[Product]:
        return self.by_sku.get(sku)

    def products(self) -> List[Product]:
        """All products in catalog order."""
        return list(self.by_sku.values())

    def skus_for_category(self, category: str) -> List[str]:
        return list(self.by_category.get(normalize_text(category), []))

    def skus_for_material(self, material: str) -> List[str]:
        return list(self.by_material.get(normalize_text(material), []))

    def skus_for_seats(self, seats: int) -> List[str]:
        return list(self.by_seats.get(seats, []))


def build_index(products: Iterable[Product]) -> CatalogIndex:
    """Purpose: Build SKU, category, material and seat-count lookups from products.
    Inputs/Outputs: Input is an iterable of validated Products; output is a CatalogIndex.
    Side Effects / State: Logs duplicate SKUs and the final bucket sizes.
    Dependencies: normalize_text for bucket keys.
    Failure Modes: Duplicate SKUs keep the first record; later ones are dropped with a
        warning. Never raises for well-typed input.
    If Removed: Search and rendering lose O(1) product lookup.
    Testing Notes: Feed two products sharing a SKU and check the first one is kept.
    """
    # Insertion order of by_sku defines catalog order for search results.
    index = CatalogIndex()
    for product in products:
        sku = product.sku
        if sku in index.by_sku:
            logger.warning("catalog duplicate sku=%s kept=first", sku)
            continue
        index.by_sku[sku] = product
        category_key = normalize_text(product.category)
        if category_key:
            index.by_category.setdefault(category_key, []).append(sku)
        material_key = normalize_text(product.material)
        if material_key:
            index.by_material.setdefault(material_key, []).append(sku)
        if product.seats is not None:
            index.by_seats.setdefault(product.seats, []).append(sku)

    logger.info(
        "catalog index built products=%d categories=%d materials=%d seat_buckets=%d",
        len(index.by_sku),
        len(index.by_category),
        len(index.by_material),
        len(index.by_seats),
    )
    return index
