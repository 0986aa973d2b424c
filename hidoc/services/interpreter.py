"""Free-text health message -> structured Interpretation.

The pipeline is an ordered chain of strategies. Each strategy either returns a
result or ``None`` to hand over to the next one:

    classifier route -> extraction with repair -> second-pass repair
    -> heuristic salvage -> note fallback

The last strategy always produces a note, so ``interpret`` returns something
for every non-empty message once the model is configured. Every result goes
through the normalizer before it is returned.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from hidoc.schemas.interpretation import Interpretation, RawInterpretation, note_entry
from hidoc.services import gemini
from hidoc.services.ai_config import AIConfig, load_ai_config
from hidoc.services.normalizer import normalize_interpretation, to_ms
from hidoc.services.param_matcher import ParamVectorIndex
from hidoc.services.prompts import (
    ACTIVITY_ENTRY,
    CLASSIFIER,
    HEALTH_ENTRY,
    MEDICATION_ENTRY,
    PromptStore,
)
from hidoc.services.salvage import salvage
from hidoc.services.validation import extract_first_json_block, validate_raw
from hidoc.utils.exceptions import HidocError, SchemaValidationError

logger = logging.getLogger("hidoc.ai")

MAX_TRIES = 2
RAW_ECHO_CHARS = 4000
SAMPLE_CHARS = 300

NOT_CONFIGURED_REPLY = "AI not configured (set GEMINI_API_KEY)"
EMPTY_MESSAGE_REPLY = "Please describe the reading, medication or activity you want to record."

REPAIR_SUFFIX = "\nReturn ONLY compact JSON. No markdown, no commentary."

SECOND_PASS_SYSTEM = (
    "You repair health-tracking output into ONE compact JSON object and nothing else.\n"
    'Shape: {"parsed": true, "reply": string, "entry": {"type": "vital"|"param"|"medication"|"activity"|"note", '
    '"category": "HEALTH_PARAMS"|"ACTIVITY"|"FOOD"|"MEDICATION"|"SYMPTOMS"|"OTHER", "timestamp": <epoch ms>, '
    '"vital": {"vitalType": "glucose"|"weight"|"bloodPressure"|"temperature"|"heartRate"|"steps"|"hba1c", '
    '"value": number, "systolic": number, "diastolic": number, "unit": string}, '
    '"param": {"param_code": UPPERCASE_CODE, "value": number, "unit": string, "notes": string}, '
    '"medication": {"name": string, "dose": number, "doseUnit": string, "frequencyPerDay": number, "durationDays": number}, '
    '"activity": {"name": string, "duration_minutes": number, "distance_km": number, "intensity": "Low"|"Moderate"|"High"}, '
    '"note": string}}\n'
    "Include only the sub-object named by type. Return only JSON."
)

ACTIVITY_KEYWORDS = re.compile(
    r"\b(?:walk|run|ran|jog|swim|gym|workout|exercise|yoga|cycl|bike|hike|km|miles?|steps?)"
)
MEDICATION_KEYWORDS = re.compile(
    r"\b(?:took|take|taken|dose|tablet|pill|medicine|medication|insulin|injection|prescribed|units?\b|mg\b(?!/))"
)

LLMCall = Callable[..., Awaitable[str]]
StrategyResult = Optional[Union[RawInterpretation, Interpretation]]


@dataclass
class Attempt:
    stage: str
    raw: str = ""
    error: str = ""


@dataclass
class PipelineRun:
    """State for one message travelling through the chain."""

    message: str
    now: datetime
    config: AIConfig
    attempts: List[Attempt] = field(default_factory=list)
    route: Optional[str] = None

    @property
    def now_ms(self) -> int:
        return to_ms(self.now)

    @property
    def last_error(self) -> Optional[str]:
        return self.attempts[-1].error if self.attempts else None


def fallback_scenario(message: str) -> str:
    """Pick an extraction template from vocabulary when the classifier is unavailable."""
    lower = (message or "").lower()
    if ACTIVITY_KEYWORDS.search(lower):
        return ACTIVITY_ENTRY
    if MEDICATION_KEYWORDS.search(lower):
        return MEDICATION_ENTRY
    return HEALTH_ENTRY


class Interpreter:
    def __init__(
        self,
        prompts: Optional[PromptStore] = None,
        param_index: Optional[ParamVectorIndex] = None,
        config: Optional[AIConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        llm: Optional[LLMCall] = None,
    ):
        self.prompts = prompts or PromptStore()
        self.param_index = param_index
        self._config = config
        self._clock = clock or datetime.now
        self._llm = llm
        self.strategies: List[Tuple[str, Callable[[PipelineRun], Awaitable[StrategyResult]]]] = [
            ("classifier", self.classifier_route),
            ("extraction", self.extract_with_repair),
            ("second_pass", self.second_pass_repair),
            ("salvage", self.heuristic_salvage),
            ("fallback", self.note_fallback),
        ]

    @property
    def config(self) -> AIConfig:
        return self._config or load_ai_config()

    async def _chat(self, run: PipelineRun, system: str, messages: List[Dict[str, Any]]) -> str:
        llm = self._llm or gemini.generate_chat
        raw = await llm(system, messages, timeout_s=run.config.timeout_s, config=run.config)
        if run.config.verbose:
            logger.debug({"function": "interpret", "stage": "model_output", "sample": str(raw)[:SAMPLE_CHARS]})
        return str(raw or "")

    async def _validate(self, run: PipelineRun, raw: str) -> RawInterpretation:
        known = None
        suggest = None
        if self.param_index is not None:
            try:
                # a stale index rebuilds from the database; keep that off the event loop
                known = await asyncio.to_thread(self.param_index.known_codes)
            except Exception as e:
                logger.warning({"function": "interpret", "stage": "param_index", "error": str(e)})
            else:
                index = self.param_index

                def suggest(code: str) -> List[str]:
                    return [m["param_code"] for m in index.match(code.replace("_", " ").lower(), 3)]

        return validate_raw(raw, run.now_ms, known_codes=known, suggest=suggest)

    # ---------------- strategies ----------------
    async def classifier_route(self, run: PipelineRun) -> StrategyResult:
        try:
            system = self.prompts.get(CLASSIFIER)
            raw = await self._chat(run, system, [{"role": "user", "content": run.message}])
            classification = extract_first_json_block(raw)
            if not isinstance(classification, dict) or not isinstance(classification.get("parsed"), bool):
                raise SchemaValidationError("classifier output lacks boolean 'parsed'", raw=raw)
            if classification["parsed"] is False:
                logger.info({"function": "interpret", "stage": "classifier", "outcome": "query"})
                return RawInterpretation(
                    parsed=False,
                    reply=classification.get("reply"),
                    reasoning=classification.get("reasoning"),
                )
            route = classification.get("route_to")
            if not route:
                logger.info({"function": "interpret", "stage": "classifier", "outcome": "no_route"})
                return None
            run.route = str(route)
            template = self.prompts.get_route(run.route)
            original = str(classification.get("original_message") or run.message)
            routed_raw = await self._chat(run, template, [{"role": "user", "content": original}])
            result = await self._validate(run, routed_raw)
            logger.info({"function": "interpret", "stage": "classifier", "outcome": "routed", "route": run.route})
            return result
        except HidocError as e:
            logger.info({"function": "interpret", "stage": "classifier", "outcome": "fallthrough", "error": str(e)})
            return None

    async def extract_with_repair(self, run: PipelineRun) -> StrategyResult:
        system = self.prompts.get(fallback_scenario(run.message))
        messages: List[Dict[str, Any]] = [{"role": "user", "content": run.message}]
        for i in range(MAX_TRIES):
            raw = ""
            try:
                raw = await self._chat(run, system, messages)
                result = await self._validate(run, raw)
                logger.info({"function": "interpret", "stage": "extraction", "attempt": i + 1, "outcome": "valid"})
                return result
            except HidocError as e:
                run.attempts.append(Attempt("extraction", raw, str(e)))
                logger.warning({
                    "function": "interpret",
                    "stage": "extraction",
                    "attempt": i + 1,
                    "error": str(e),
                    "sample": raw[:SAMPLE_CHARS] if run.config.verbose else None,
                })
            if i == 0:
                last = run.attempts[-1]
                system = self.prompts.get(HEALTH_ENTRY) + REPAIR_SUFFIX
                messages = [{"role": "user", "content": run.message}]
                if last.raw:
                    messages.append({"role": "assistant", "content": last.raw[:RAW_ECHO_CHARS]})
                    messages.append({
                        "role": "user",
                        "content": f"The above output failed to parse ({last.error or 'unknown'}). Re-emit ONLY valid JSON.",
                    })
                else:
                    messages.append({
                        "role": "user",
                        "content": f"The previous attempt failed ({last.error or 'unknown'}). Emit ONLY valid JSON.",
                    })
        return None

    async def second_pass_repair(self, run: PipelineRun) -> StrategyResult:
        if not run.config.second_pass:
            return None
        last = run.attempts[-1] if run.attempts else Attempt("none")
        failure = json.dumps({"error": last.error, "raw": last.raw[:200]}, ensure_ascii=False)[:400]
        prompt = (
            f'Original user message: "{run.message[:400]}"\n'
            f"Earlier attempts failed schema: {failure}\n"
            "Re-emit ONLY valid compact JSON for ONE entry strictly matching the schema. "
            "If a numeric health metric (glucose, steps, weight, blood pressure, heart rate, temperature, hba1c) "
            "or a medication phrase appears, set parsed=true and fill the closest matching fields. "
            "Otherwise set type=note with the raw message."
        )
        raw = ""
        try:
            raw = await self._chat(run, SECOND_PASS_SYSTEM, [{"role": "user", "content": prompt}])
            result = await self._validate(run, raw)
            logger.info({"function": "interpret", "stage": "second_pass", "outcome": "valid"})
            return result
        except HidocError as e:
            run.attempts.append(Attempt("second_pass", raw, str(e)))
            logger.warning({"function": "interpret", "stage": "second_pass", "error": str(e)})
            return None

    async def heuristic_salvage(self, run: PipelineRun) -> StrategyResult:
        result = salvage(run.message, run.now_ms)
        if result is not None:
            logger.warning({"function": "interpret", "stage": "salvage", "outcome": "matched"})
        return result

    async def note_fallback(self, run: PipelineRun) -> StrategyResult:
        logger.warning({"function": "interpret", "stage": "fallback", "last_error": run.last_error})
        return Interpretation(
            parsed=True,
            reply="Noted",
            entry=note_entry(run.message, run.now_ms),
            reasoning=run.last_error or "llm-failure",
        )

    # ---------------- entry point ----------------
    async def interpret(self, message: str, user_id: Optional[str] = None) -> Interpretation:
        text = (message or "").strip()
        if not text:
            return Interpretation(parsed=False, reply=EMPTY_MESSAGE_REPLY, reasoning="empty-message")
        cfg = self.config
        if not cfg.configured:
            logger.warning({"function": "interpret", "stage": "config", "error": "GEMINI_API_KEY missing"})
            return Interpretation(parsed=False, reply=NOT_CONFIGURED_REPLY, reasoning="Missing GEMINI_API_KEY")

        run = PipelineRun(message=text, now=self._clock(), config=cfg)
        if cfg.verbose:
            logger.debug({"function": "interpret", "stage": "start", "user_id": user_id, "message": text[:SAMPLE_CHARS]})
        for name, strategy in self.strategies:
            try:
                result = await strategy(run)
                if result is None:
                    continue
                final = normalize_interpretation(text, result, run.now)
            except Exception as e:
                logger.exception("interpret strategy %s failed: %s", name, e)
                run.attempts.append(Attempt(name, "", str(e)))
                continue
            entry = final.entry
            logger.info({
                "function": "interpret",
                "stage": "done",
                "strategy": name,
                "parsed": final.parsed,
                "type": getattr(entry, "type", None),
                "attempts": len(run.attempts),
            })
            return final
        # Unreachable while note_fallback is last in the chain.
        return Interpretation(
            parsed=True,
            reply="Noted",
            entry=note_entry(text, run.now_ms),
            reasoning=run.last_error or "llm-failure",
        )


_default_interpreter: Optional[Interpreter] = None


def get_interpreter() -> Interpreter:
    """Process-wide interpreter backed by the param_targets table."""
    global _default_interpreter
    if _default_interpreter is None:
        from hidoc.db.session import SessionLocal
        from hidoc.services.param_targets import db_loader

        _default_interpreter = Interpreter(
            prompts=PromptStore(),
            param_index=ParamVectorIndex(db_loader(SessionLocal)),
        )
    return _default_interpreter


def set_interpreter(interpreter: Optional[Interpreter]) -> None:
    global _default_interpreter
    _default_interpreter = interpreter


async def interpret_message(message: str, user_id: Optional[str] = None) -> Interpretation:
    return await get_interpreter().interpret(message, user_id=user_id)


def ai_provider_status(config: Optional[AIConfig] = None) -> Dict[str, Any]:
    cfg = config or load_ai_config()
    return {
        "configured": cfg.configured,
        "model": cfg.model if cfg.configured else None,
        "second_pass": cfg.second_pass,
        "verbose": cfg.verbose,
    }
