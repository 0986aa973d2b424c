"""Thin async client for the Gemini ``generateContent`` REST endpoint."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from hidoc.services.ai_config import AIConfig, load_ai_config
from hidoc.utils.exceptions import ConfigurationError, TransientProviderError

logger = logging.getLogger("hidoc.ai")

_ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


def build_payload(system: str, messages: List[Dict[str, Any]], max_output_tokens: Optional[int] = None) -> Dict[str, Any]:
    contents = []
    system_parts = [system] if system else []
    for m in messages:
        role = (m.get("role") or "user").lower()
        text = str(m.get("content") or "")
        if role == "system":
            # Extra system turns are folded into the system instruction.
            system_parts.append(text)
            continue
        contents.append({"role": _ROLE_MAP.get(role, "user"), "parts": [{"text": text}]})
    payload: Dict[str, Any] = {"contents": contents}
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
    if max_output_tokens:
        payload["generationConfig"] = {"maxOutputTokens": max_output_tokens}
    return payload


def _candidate_text(data: Dict[str, Any]) -> str:
    parts = (
        (data.get("candidates") or [{}])[0]
        .get("content", {})
        .get("parts", [])
    )
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict)).strip()


async def generate_chat(
    system: str,
    messages: List[Dict[str, Any]],
    timeout_s: float = 20,
    *,
    config: Optional[AIConfig] = None,
) -> str:
    """Send role-tagged messages to the model and return its text.

    Raises ConfigurationError when no API key is set and
    TransientProviderError for timeouts, HTTP errors and empty candidates.
    """
    cfg = config or load_ai_config()
    if not cfg.api_key:
        raise ConfigurationError("GEMINI_API_KEY is not set")
    url = f"{cfg.api_base}/models/{cfg.model}:generateContent"
    payload = build_payload(system, messages, cfg.max_output_tokens)
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            r = await client.post(
                url,
                params={"key": cfg.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )
            r.raise_for_status()
            data = r.json()
    except httpx.TimeoutException as e:
        logger.warning({"function": "generate_chat", "model": cfg.model, "error": "timeout"})
        raise TransientProviderError(f"model call timed out after {timeout_s}s") from e
    except httpx.HTTPStatusError as e:
        logger.warning({"function": "generate_chat", "model": cfg.model, "status": e.response.status_code})
        raise TransientProviderError(f"provider returned HTTP {e.response.status_code}") from e
    except (httpx.HTTPError, ValueError) as e:
        logger.warning({"function": "generate_chat", "model": cfg.model, "error": str(e)})
        raise TransientProviderError(f"provider request failed: {e}") from e

    text = _candidate_text(data)
    if not text:
        raise TransientProviderError("empty response from model")
    return text
