from __future__ import annotations

import logging
from typing import Dict, List, Optional

import google.generativeai as genai
from google.generativeai import types as genai_types

from .config import Settings

logger = logging.getLogger("salesguard.model")

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
]

ROLE_MAP = {"user": "user", "assistant": "model", "model": "model", "tool": "user"}


class GeminiClient:
    """Thin async wrapper around the Gemini SDK returning JSON text turns."""

    def __init__(self, settings: Settings, temperature: float = 0.4, max_output_tokens: int = 2048) -> None:
        """Purpose: Configure the Gemini SDK for structured chat turns.
        Inputs/Outputs: Input is Settings plus generation knobs; no return value.
        Side Effects / State: Configures the SDK global API key.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Model turns cannot execute and the agent only serves fallbacks.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Fail at startup rather than on the first customer message.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._model_name = _normalize_model_name(settings.gemini_model)
        if not self._model_name:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "response_mime_type": "application/json",
        }

    async def generate_turn(self, system_instruction: str, contents: List[Dict[str, str]]) -> str:
        """Purpose: Generate one structured turn from a system prompt and chat history.
        Inputs/Outputs: Inputs are the system prompt and role/content dicts; returns
            the raw response text (expected to be JSON).
        Side Effects / State: One outbound model request.
        Dependencies: genai.GenerativeModel.generate_content_async.
        Failure Modes: SDK errors propagate; the agent maps them to a fallback reply.
            Blocked or empty candidates yield an empty string.
        If Removed: The agent cannot talk to the model.
        Testing Notes: Replace with a scripted fake exposing the same coroutine.
        """
        # A model per call keeps the per-session system instruction isolated.
        model = genai.GenerativeModel(self._model_name, system_instruction=system_instruction)
        response = await model.generate_content_async(
            to_gemini_contents(contents),
            generation_config=self._generation_config,
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        try:
            text: Optional[str] = response.text
        except ValueError:
            logger.warning("gemini response had no text part model=%s", self._model_name)
            return ""
        return (text or "").strip()


def to_gemini_contents(contents: List[Dict[str, str]]) -> List[Dict[str, object]]:
    """Map role/content dicts onto Gemini's role/parts layout."""
    converted: List[Dict[str, object]] = []
    for entry in contents:
        text = entry.get("content") or ""
        if not text:
            continue
        role = ROLE_MAP.get(entry.get("role", "user"), "user")
        converted.append({"role": role, "parts": [{"text": text}]})
    return converted


def _normalize_model_name(name: Optional[str]) -> str:
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
