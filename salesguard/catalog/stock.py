from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from .index import CatalogIndex
from .schema import PriceData, StockRecord

logger = logging.getLogger("salesguard.stock")

SOURCE_SNAPSHOT = "snapshot"
SOURCE_CATALOG = "catalog"
SOURCE_LIVE = "live"
SOURCE_DEFAULT = "default"


class StockResolver:
    """Merge the local snapshot, embedded catalog inventory and live lookups per SKU.

    A live reading, when present, is authoritative. Without one the count is the
    maximum over the local sources that hold a record for the SKU. When no source
    has a record the configured default applies, which keeps uncatalogued stock
    levels visible as available rather than sold out.
    """

    def __init__(
        self,
        index: CatalogIndex,
        snapshot: Optional[Mapping[str, int]] = None,
        default_available: int = 100,
    ) -> None:
        self._index = index
        self._snapshot: Dict[str, int] = dict(snapshot or {})
        self._default = max(int(default_available), 0)

    @property
    def snapshot_size(self) -> int:
        return len(self._snapshot)

    def resolve(self, sku: str) -> StockRecord:
        return self.resolve_with_live(sku, None)

    def resolve_with_live(self, sku: str, live: Optional[PriceData]) -> StockRecord:
        """Purpose: Resolve one SKU's available count from every source that has data.
        Inputs/Outputs: Inputs are a SKU and an optional live PriceData; output is a
            StockRecord naming the sources consulted.
        Side Effects / State: None; reads immutable lookups only.
        Dependencies: CatalogIndex for embedded inventory, the snapshot mapping.
        Failure Modes: Unknown SKUs with no records resolve to the default count; a
            live reading without a stock quantity falls back to local sources.
        If Removed: Search and rendering cannot filter sold-out products.
        Testing Notes: snapshot=0 with catalog=7 gives 7; live=0 overrides both;
            no records gives the default.
        """
        # Live data wins outright; local sources fall back to their maximum.
        if live is not None and live.stock_quantity is not None:
            available = max(int(live.stock_quantity), 0)
            if available <= 0:
                logger.debug("stock zero sku=%s sources=live", sku)
            return StockRecord(sku=sku, available=available, sources=(SOURCE_LIVE,))

        readings: List[Tuple[str, int]] = []
        if sku in self._snapshot:
            readings.append((SOURCE_SNAPSHOT, max(self._snapshot[sku], 0)))
        product = self._index.get(sku)
        if product is not None and product.embedded_inventory is not None:
            readings.append((SOURCE_CATALOG, product.embedded_inventory))

        if not readings:
            return StockRecord(sku=sku, available=self._default, sources=(SOURCE_DEFAULT,))
        available = max(count for _, count in readings)
        if available <= 0:
            logger.debug("stock zero sku=%s sources=%s", sku, readings)
        return StockRecord(
            sku=sku,
            available=available,
            sources=tuple(source for source, _ in readings),
        )

    def in_stock(self, sku: str) -> bool:
        return self.resolve(sku).in_stock
