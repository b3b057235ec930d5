import json
import re
import unicodedata
from typing import Any, Optional

CODE_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*(.*?)\s*```\s*$", re.DOTALL)


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics removed, punctuation replaced by spaces and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by signals, search and loader.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Keyword rule tables and catalog bucket keys stop matching reliably.
    Testing Notes: "Alumínium  Sofa!" should become "aluminium sofa".
    """
    # Normalize to lowercase, fold typographic apostrophes and strip diacritics.
    if not text:
        return ""
    lowered = str(text).lower().replace("\u2019", "'").replace("\u2018", "'")
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s\-'+&]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def normalize_key(text: str) -> str:
    """Collapse normalize_text output into a compact key without spaces."""
    return normalize_text(text).replace(" ", "")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence such as ```json ... ```."""
    if not text:
        return ""
    match = CODE_FENCE_RE.match(text)
    if match:
        return match.group(1)
    return text


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the outermost JSON object block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is the JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by load_json_payload.
    Failure Modes: Returns None if braces are missing or inverted.
    If Removed: Model output wrapped in prose can no longer be recovered.
    Testing Notes: Provide strings with extra text before/after JSON and ensure extraction.
    """
    # Locate the outermost JSON braces to extract a parseable block.
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def load_json_payload(text: str) -> Optional[Any]:
    """Purpose: Parse model output through a layered strict-then-lenient chain.
    Inputs/Outputs: Input is raw model text; output is the decoded JSON value or None.
    Side Effects / State: None; pure function.
    Dependencies: strip_code_fences, extract_json_block and json.loads.
    Failure Modes: Returns None when no layer yields valid JSON. The decoded value may
        be any JSON type; callers check the shape.
    If Removed: Turn parsing becomes brittle and crashes on formatted model output.
    Testing Notes: Plain JSON, fenced JSON and prose-wrapped JSON should all decode.
    """
    # Try the raw text, then the unfenced text, then the first brace block.
    if not text or not text.strip():
        return None
    candidates = [text.strip(), strip_code_fences(text).strip()]
    block = extract_json_block(candidates[-1])
    if block:
        candidates.append(block)
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def safe_json_loads(text: str) -> Optional[dict]:
    """Parse a JSON object from model output, returning None for any other shape."""
    payload = load_json_payload(text)
    if isinstance(payload, dict):
        return payload
    return None


def mask_email(value: object) -> str:
    """Purpose: Mask an email address for safe logging.
    Inputs/Outputs: Input is any value; output keeps the first character and the domain.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: Values without "@" yield a generic mask.
    If Removed: Logs may expose captured customer emails.
    Testing Notes: "jane@example.com" -> "j***@example.com".
    """
    # Keep only enough of the address to correlate log lines.
    if not value:
        return ""
    text = str(value)
    if "@" not in text:
        return "***"
    local, _, domain = text.partition("@")
    return f"{local[:1]}***@{domain}"
