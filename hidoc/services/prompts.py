"""Static instruction templates, loaded once per process and cached."""
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional

from hidoc.utils.exceptions import ConfigurationError

logger = logging.getLogger("hidoc.ai")

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

CLASSIFIER = "classifier"
HEALTH_ENTRY = "health_data_entry"
ACTIVITY_ENTRY = "activity_data_entry"
MEDICATION_ENTRY = "medication_data_entry"
TREND = "health_data_trend"

SCENARIO_FILES: Dict[str, str] = {
    CLASSIFIER: "message_classifier_prompt.txt",
    HEALTH_ENTRY: "health_data_entry_prompt.txt",
    ACTIVITY_ENTRY: "activity_data_entry_prompt.txt",
    MEDICATION_ENTRY: "medication_data_entry_prompt.txt",
    TREND: "health_data_trend_prompt.txt",
}

# Used when the template file is missing so data entry and trends keep working.
_BUILTIN: Dict[str, str] = {
    HEALTH_ENTRY: (
        "You convert one health-tracking message into JSON. Return ONLY compact JSON: "
        '{"parsed": true, "reply": "<confirmation>", "entry": {"type": "vital|param|medication|activity|note", '
        '"category": "HEALTH_PARAMS", "timestamp": <current_timestamp>, '
        '"vital": {"vitalType": "glucose|weight|bloodPressure|temperature|heartRate|steps|hba1c", '
        '"value": <number>, "systolic": <number>, "diastolic": <number>, "unit": "<unit>"}, '
        '"param": {"param_code": "<UPPERCASE_CODE>", "value": <number>, "unit": "<unit>", "notes": "<context>"}, '
        '"note": "<text>"}}. Include only the sub-object matching type.'
    ),
    TREND: (
        "Describe the trend of the given health readings in two sentences: direction, "
        'whether the latest value is in range, one general wellness tip. Return ONLY {"prognosis": "<text>"}.'
    ),
}
_BUILTIN[ACTIVITY_ENTRY] = _BUILTIN[HEALTH_ENTRY]
_BUILTIN[MEDICATION_ENTRY] = _BUILTIN[HEALTH_ENTRY]


class PromptStore:
    """Lazily populated template cache owned by an interpreter instance.

    ``get`` resolves a named scenario; ``get_route`` resolves a template file
    name chosen by the classifier. Both load a file at most once until
    ``invalidate`` is called.
    """

    def __init__(self, directory: Optional[Path] = None):
        env_dir = (os.getenv("PROMPTS_DIR") or "").strip()
        self.directory = Path(directory or env_dir or DEFAULT_PROMPTS_DIR)
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _read(self, filename: str) -> Optional[str]:
        path = self.directory / filename
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning({"function": "prompt_load", "file": filename, "error": str(e)})
            return None

    def _load(self, filename: str) -> Optional[str]:
        with self._lock:
            if filename in self._cache:
                return self._cache[filename]
            text = self._read(filename)
            if text is not None:
                self._cache[filename] = text
                logger.debug({"function": "prompt_load", "file": filename, "chars": len(text)})
            return text

    def get(self, scenario: str) -> str:
        filename = SCENARIO_FILES.get(scenario)
        if filename is None:
            raise KeyError(f"unknown prompt scenario: {scenario}")
        text = self._load(filename)
        if text is not None:
            return text
        if scenario in _BUILTIN:
            logger.warning({"function": "prompt_load", "scenario": scenario, "fallback": "builtin"})
            return _BUILTIN[scenario]
        raise ConfigurationError(f"prompt template not found: {filename}")

    def get_route(self, route: str) -> str:
        """Template named by the classifier; unknown routes use the health entry template."""
        name = os.path.basename(str(route or "")).strip()
        if name in SCENARIO_FILES:
            return self.get(name)
        if name and name.endswith(".txt"):
            text = self._load(name)
            if text is not None:
                return text
        logger.warning({"function": "prompt_route", "route": route, "fallback": HEALTH_ENTRY})
        return self.get(HEALTH_ENTRY)

    def preload(self) -> Dict[str, bool]:
        status = {}
        for scenario, filename in SCENARIO_FILES.items():
            status[scenario] = self._load(filename) is not None
        return status

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.debug({"function": "prompt_invalidate"})

    def cached(self) -> list:
        with self._lock:
            return sorted(self._cache)
