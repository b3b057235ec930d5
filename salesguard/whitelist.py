from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

logger = logging.getLogger("salesguard.whitelist")


@dataclass(frozen=True)
class WhitelistResult:
    approved: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


def validate(selected: Iterable[object], whitelist: Sequence[str]) -> WhitelistResult:
    """Split model-selected SKUs into approved and rejected, keeping model order.

    Membership in the current whitelist is the only test. Repeats are collapsed and
    non-string entries count as rejected.
    """
    allowed = set(whitelist)
    approved: List[str] = []
    rejected: List[str] = []
    for raw in selected:
        sku = raw.strip() if isinstance(raw, str) else raw
        if isinstance(sku, str) and sku in allowed:
            if sku not in approved:
                approved.append(sku)
            continue
        value = str(sku)
        if value not in rejected:
            rejected.append(value)
    return WhitelistResult(approved=approved, rejected=rejected)


class WhitelistValidator:
    """Counting, logging wrapper around validate()."""

    def __init__(self) -> None:
        self.rejected_total = 0

    def check(self, session_id: str, selected: Iterable[object], whitelist: Sequence[str]) -> WhitelistResult:
        result = validate(selected, whitelist)
        if result.rejected:
            self.rejected_total += len(result.rejected)
            for sku in result.rejected:
                logger.warning("whitelist blocked session=%s sku=%r", session_id, sku)
            logger.info("whitelist was session=%s skus=%s", session_id, ",".join(whitelist) or "-")
        return result
