"""Model-service settings, read from the environment at call time."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from hidoc.utils.app import _env_flag, _env_float, _env_optional_int, _env_str

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(frozen=True)
class AIConfig:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    verbose: bool = False
    second_pass: bool = True
    max_output_tokens: Optional[int] = None
    timeout_s: float = 15.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def load_ai_config() -> AIConfig:
    return AIConfig(
        api_key=_env_str("GEMINI_API_KEY"),
        model=_env_str("GEMINI_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
        api_base=(_env_str("GEMINI_API_BASE", DEFAULT_API_BASE) or DEFAULT_API_BASE).rstrip("/"),
        verbose=_env_flag("AI_VERBOSE") or _env_flag("VERBOSE"),
        second_pass=_env_flag("AI_SECOND_PASS", True),
        max_output_tokens=_env_optional_int("AI_CTX"),
        timeout_s=_env_float("AI_TIMEOUT_S", 15.0),
    )
