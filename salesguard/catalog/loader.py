from __future__ import annotations

"""Catalog and inventory-snapshot loading for the furniture store.

This module reads the product knowledge file into validated Product records and the
local inventory snapshot into a SKU -> available map. Loading is best-effort: a
malformed entry is logged and skipped so that one bad record never blocks startup.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from .schema import Product, coerce_optional_int

logger = logging.getLogger("salesguard.catalog")

ITEM_KEYS = ["products", "items", "inventory"]


@dataclass
class CatalogMeta:
    """Metadata describing the catalog file version for logging."""
    file_name: str
    updated_at: str
    sha256: str
    loaded: int
    skipped: int


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        """Purpose: Configure the loader with the product knowledge file path.
        Inputs/Outputs: Input is a Path to the catalog JSON; no return value.
        Side Effects / State: Stores the path for later load calls.
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; load() handles read/parse errors.
        If Removed: The catalog index cannot be built at startup.
        Testing Notes: Instantiate with a tmp_path file and call load().
        """
        self._path = path

    def load(self) -> Tuple[List[Product], CatalogMeta]:
        """Purpose: Load and validate catalog entries from the product file.
        Inputs/Outputs: No inputs; returns validated Products and CatalogMeta.
        Side Effects / State: Reads file contents, computes hash/mtime, logs skips.
        Dependencies: Uses json, hashlib and parse_products.
        Failure Modes: A missing or undecodable file yields an empty catalog and an
            error log instead of an exception.
        If Removed: Search and rendering have no verified product data.
        Testing Notes: Include one entry without a SKU and check it is skipped.
        """
        # Read bytes for hashing, then validate every entry independently.
        try:
            raw_bytes = self._path.read_bytes()
            data = json.loads(raw_bytes.decode("utf-8-sig"))
        except (OSError, ValueError) as exc:
            logger.error("catalog load failed path=%s error=%s", self._path, exc)
            return [], CatalogMeta(self._path.name, "", "", loaded=0, skipped=0)

        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        updated_at = datetime.fromtimestamp(self._path.stat().st_mtime).isoformat()
        products, skipped = parse_products(_extract_items(data))
        meta = CatalogMeta(
            file_name=self._path.name,
            updated_at=updated_at,
            sha256=sha256,
            loaded=len(products),
            skipped=skipped,
        )
        logger.info(
            "catalog loaded file=%s products=%d skipped=%d sha256=%s",
            meta.file_name,
            meta.loaded,
            meta.skipped,
            meta.sha256[:12],
        )
        return products, meta


def parse_products(items: List[Any]) -> Tuple[List[Product], int]:
    """Validate raw catalog dicts, returning the good Products and the skip count."""
    products: List[Product] = []
    skipped = 0
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            skipped += 1
            logger.warning("catalog entry skipped index=%d reason=not-an-object", position)
            continue
        try:
            products.append(Product.model_validate(item))
        except ValidationError as exc:
            skipped += 1
            fields = ",".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
            logger.warning("catalog entry skipped index=%d invalid=%s", position, fields)
    return products, skipped


def load_inventory_snapshot(path: Path) -> Dict[str, int]:
    """Purpose: Load the local inventory snapshot as a SKU -> available map.
    Inputs/Outputs: Input is the snapshot path; output maps SKU to a non-negative int.
    Side Effects / State: Reads the file and logs skipped rows.
    Dependencies: Uses json and coerce_optional_int.
    Failure Modes: Missing/invalid file returns an empty map with an error log; rows
        without a SKU are skipped; unparseable counts become 0.
    If Removed: Stock resolution falls back to embedded catalog values only.
    Testing Notes: Accept both a bare list and {"inventory": [...]} payloads.
    """
    # Accept a bare list or a wrapped list and keep only rows with a SKU.
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.error("inventory snapshot load failed path=%s error=%s", path, exc)
        return {}

    snapshot: Dict[str, int] = {}
    for row in _extract_items(data):
        if not isinstance(row, dict):
            continue
        sku = str(row.get("sku") or "").strip()
        if not sku:
            logger.warning("inventory row skipped reason=missing-sku")
            continue
        available = coerce_optional_int(row.get("available"))
        snapshot[sku] = max(available or 0, 0)
    logger.info("inventory snapshot loaded file=%s records=%d", path.name, len(snapshot))
    return snapshot


def _extract_items(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ITEM_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []
