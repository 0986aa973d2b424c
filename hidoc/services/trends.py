"""Short narrative for a series of readings of one parameter."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from hidoc.services import gemini
from hidoc.services.ai_config import AIConfig, load_ai_config
from hidoc.services.prompts import TREND, PromptStore
from hidoc.services.reference_ranges import assess
from hidoc.services.validation import extract_first_json_block
from hidoc.utils.exceptions import HidocError

logger = logging.getLogger("hidoc.ai")

MAX_POINTS = 20


def _series(points: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    clean = []
    for p in points:
        try:
            clean.append({"timestamp": int(p["timestamp"]), "value": float(p["value"])})
        except (KeyError, TypeError, ValueError):
            continue
    clean.sort(key=lambda p: p["timestamp"])
    return clean[-MAX_POINTS:]


def direction(values: Sequence[float]) -> str:
    if len(values) < 2 or values[-1] == values[0]:
        return "stable"
    return "increasing" if values[-1] > values[0] else "decreasing"


def fallback_prognosis(series: List[Dict[str, Any]], label: str, target: Optional[Dict[str, Any]] = None) -> str:
    if not series:
        return "No historical data available for this parameter."
    if len(series) < 2:
        return "Insufficient data points for trend analysis."
    values = [p["value"] for p in series]
    trend = direction(values)
    text = f"Your {label} values show a {trend} trend over time."
    if trend != "stable" and values[0]:
        change = abs((values[-1] - values[0]) / values[0]) * 100
        text += f" There's been a {change:.1f}% change from your first to most recent reading."
    if target:
        status = assess(values[-1], target.get("target_min"), target.get("target_max"))
        if status == "normal":
            text += " Your latest reading is within the target range."
        elif status in ("low", "high"):
            text += f" Your latest reading is {status}er than the target range."
    return text


async def narrate_trend(
    points: Sequence[Dict[str, Any]],
    param_code: Optional[str] = None,
    target: Optional[Dict[str, Any]] = None,
    *,
    prompts: Optional[PromptStore] = None,
    config: Optional[AIConfig] = None,
) -> Dict[str, Any]:
    """Ask the model for a prognosis, falling back to a computed summary."""
    cfg = config or load_ai_config()
    series = _series(points)
    label = param_code or "health"
    trend = direction([p["value"] for p in series])
    if len(series) < 2 or not cfg.configured:
        return {"prognosis": fallback_prognosis(series, label, target), "source": "fallback", "direction": trend}

    store = prompts or PromptStore()
    payload = {"param_code": param_code, "target": target, "readings": series}
    try:
        raw = await gemini.generate_chat(
            store.get(TREND),
            [{"role": "user", "content": json.dumps(payload)}],
            timeout_s=cfg.timeout_s,
            config=cfg,
        )
        data = extract_first_json_block(raw)
        prognosis = str(data.get("prognosis") or "").strip() if isinstance(data, dict) else ""
        if prognosis:
            return {"prognosis": prognosis, "source": "model", "direction": trend}
        logger.warning({"function": "narrate_trend", "error": "empty prognosis"})
    except HidocError as e:
        logger.warning({"function": "narrate_trend", "error": str(e)})
    return {"prognosis": fallback_prognosis(series, label, target), "source": "fallback", "direction": trend}
