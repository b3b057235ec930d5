from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Dict, Iterable, Optional

from .session_store import CustomerContext

NOTHING_KNOWN = "Nothing established yet - ask qualifying questions."
NO_SEARCH_YET = "No search performed yet"
TOOLS_DISABLED = "TOOLS: none this turn. Reply with the JSON output format only."


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by the app factory.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. A missing file raises at startup.
    If Removed: The sales agent has no system prompt template.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def describe_context(context: CustomerContext) -> str:
    parts = []
    if context.furniture_type:
        parts.append(f"Type: {context.furniture_type}")
    if context.min_seats:
        parts.append(f"Seats: {context.min_seats}+")
    if context.material:
        parts.append(f"Material: {context.material}")
    return ", ".join(parts) or NOTHING_KNOWN


def build_system_prompt(
    template: str,
    store_name: str,
    context: CustomerContext,
    whitelist: Iterable[str],
    commercial_flags: Dict[str, object],
    tools_block: Optional[str] = None,
) -> str:
    """Fill the system prompt template from the current session state."""
    skus = list(whitelist)
    return Template(template).safe_substitute(
        store_name=store_name,
        known_context=describe_context(context),
        commercial_flags=json.dumps(commercial_flags, ensure_ascii=False, sort_keys=True),
        available_skus=", ".join(skus) if skus else NO_SEARCH_YET,
        tools_block=tools_block or TOOLS_DISABLED,
    )
