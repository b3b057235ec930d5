"""Keyword rule tables for sentiment, purchase intent and preference extraction.

The tables live in ``data/signal_rules.json`` so they can be tuned and tested
without touching code. Every table is an ordered list of ``{"tag", "keywords"}``
entries; matching is whole-word on normalized text and results keep table order.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Sequence, Tuple

from .utils import normalize_text

logger = logging.getLogger("salesguard.signals")


@dataclass(frozen=True)
class KeywordRule:
    tag: str
    keywords: Tuple[str, ...]
    patterns: Tuple[Pattern[str], ...]

    def matches(self, normalized: str) -> bool:
        return any(pattern.search(normalized) for pattern in self.patterns)


@dataclass(frozen=True)
class SignalRules:
    sentiment: Tuple[KeywordRule, ...] = ()
    purchase_intent: Tuple[KeywordRule, ...] = ()
    smalltalk: Tuple[KeywordRule, ...] = ()
    smalltalk_filler: FrozenSet[str] = frozenset()
    materials: Tuple[KeywordRule, ...] = ()
    furniture_types: Tuple[KeywordRule, ...] = ()
    seat_patterns: Tuple[Pattern[str], ...] = ()


@dataclass(frozen=True)
class Preferences:
    material: Optional[str] = None
    furniture_type: Optional[str] = None
    min_seats: Optional[int] = None

    def is_empty(self) -> bool:
        return self.material is None and self.furniture_type is None and self.min_seats is None


@dataclass(frozen=True)
class TurnSignals:
    """Everything the keyword tables say about one customer message."""
    sentiment: Tuple[str, ...] = ()
    purchase_intent: Tuple[str, ...] = ()
    smalltalk: Tuple[str, ...] = ()
    smalltalk_only: bool = False
    preferences: Preferences = field(default_factory=Preferences)


def _keyword_pattern(keyword: str) -> Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])")


def _build_table(entries: Any, table: str) -> Tuple[KeywordRule, ...]:
    rules: List[KeywordRule] = []
    for entry in entries or []:
        if not isinstance(entry, dict) or not entry.get("tag"):
            logger.warning("signal rule skipped table=%s entry=%r", table, entry)
            continue
        keywords = tuple(
            key for key in (normalize_text(str(k)) for k in entry.get("keywords") or []) if key
        )
        rules.append(
            KeywordRule(
                tag=str(entry["tag"]),
                keywords=keywords,
                patterns=tuple(_keyword_pattern(key) for key in keywords),
            )
        )
    return tuple(rules)


def parse_signal_rules(data: Dict[str, Any]) -> SignalRules:
    """Compile a decoded rules document into SignalRules."""
    return SignalRules(
        sentiment=_build_table(data.get("sentiment"), "sentiment"),
        purchase_intent=_build_table(data.get("purchase_intent"), "purchase_intent"),
        smalltalk=_build_table(data.get("smalltalk"), "smalltalk"),
        smalltalk_filler=frozenset(normalize_text(str(w)) for w in data.get("smalltalk_filler") or []),
        materials=_build_table(data.get("materials"), "materials"),
        furniture_types=_build_table(data.get("furniture_types"), "furniture_types"),
        seat_patterns=tuple(re.compile(p) for p in data.get("seat_patterns") or []),
    )


def load_signal_rules(path: Path) -> SignalRules:
    """Purpose: Load and compile the keyword rule tables from JSON.
    Inputs/Outputs: Input is the rules file path; output is SignalRules.
    Side Effects / State: Reads the file and logs table sizes.
    Dependencies: json, parse_signal_rules.
    Failure Modes: A missing or invalid file raises; the service cannot classify
        messages without its rule tables, so startup fails loudly.
    If Removed: Sentiment, purchase intent and smalltalk routing stop working.
    Testing Notes: Load the bundled file and classify a few known phrases.
    """
    # Compile once at startup; classification is then pure.
    data = json.loads(path.read_text(encoding="utf-8"))
    rules = parse_signal_rules(data)
    logger.info(
        "signal rules loaded file=%s sentiment=%d intent=%d materials=%d types=%d",
        path.name,
        len(rules.sentiment),
        len(rules.purchase_intent),
        len(rules.materials),
        len(rules.furniture_types),
    )
    return rules


def classify(text: str, table: Sequence[KeywordRule]) -> Tuple[str, ...]:
    """Return every tag in the table whose keywords appear in text, in table order."""
    normalized = normalize_text(text)
    if not normalized:
        return ()
    return tuple(rule.tag for rule in table if rule.matches(normalized))


def first_match(text: str, table: Sequence[KeywordRule]) -> Optional[str]:
    tags = classify(text, table)
    return tags[0] if tags else None


def extract_seats(text: str, rules: SignalRules) -> Optional[int]:
    normalized = normalize_text(text)
    for pattern in rules.seat_patterns:
        match = pattern.search(normalized)
        if match:
            seats = int(match.group(1))
            if seats > 0:
                return seats
    return None


def extract_preferences(text: str, rules: SignalRules) -> Preferences:
    return Preferences(
        material=first_match(text, rules.materials),
        furniture_type=first_match(text, rules.furniture_types),
        min_seats=extract_seats(text, rules),
    )


def is_smalltalk_only(text: str, rules: SignalRules) -> bool:
    """True when the message holds nothing but greetings, thanks or farewells."""
    normalized = normalize_text(text)
    if not normalized:
        return False
    remainder = normalized
    matched = False
    for rule in rules.smalltalk:
        for pattern in rule.patterns:
            remainder, count = pattern.subn(" ", remainder)
            matched = matched or count > 0
    if not matched:
        return False
    leftover = [token for token in remainder.split() if token not in rules.smalltalk_filler]
    return not leftover


def read_signals(text: str, rules: SignalRules) -> TurnSignals:
    return TurnSignals(
        sentiment=classify(text, rules.sentiment),
        purchase_intent=classify(text, rules.purchase_intent),
        smalltalk=classify(text, rules.smalltalk),
        smalltalk_only=is_smalltalk_only(text, rules),
        preferences=extract_preferences(text, rules),
    )
