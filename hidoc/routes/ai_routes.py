from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from hidoc.db.session import get_db
from hidoc.schemas.ai import (
    AIStatus,
    InterpretRequest,
    InterpretResponse,
    InterpretStoreRequest,
    InterpretStoreResponse,
    ReprocessRequest,
    ReprocessResult,
    TrendRequest,
    TrendResponse,
)
from hidoc.schemas.interpretation import Interpretation
from hidoc.services import entry_store
from hidoc.services.interpreter import Interpreter, ai_provider_status, get_interpreter
from hidoc.services.reference_ranges import assess_entry
from hidoc.services.trends import narrate_trend

logger = logging.getLogger("hidoc")

router = APIRouter(prefix="/api/ai", tags=["ai"])

MATCH_LIMIT = 5
ANONYMOUS_USER = "anonymous"


async def _matches(interpreter: Interpreter, message: str) -> List[Dict[str, Any]]:
    if interpreter.param_index is None:
        return []
    return await asyncio.to_thread(interpreter.param_index.match, message, MATCH_LIMIT)


async def _range_status(interpreter: Interpreter, result: Interpretation) -> Optional[str]:
    entry = result.entry
    if interpreter.param_index is None or getattr(entry, "type", None) != "param":
        return None
    target = await asyncio.to_thread(interpreter.param_index.get, entry.param.param_code)
    return assess_entry(entry, target)


@router.post("/interpret", response_model=InterpretResponse, response_model_exclude_none=True)
async def interpret(payload: InterpretRequest, interpreter: Interpreter = Depends(get_interpreter)):
    result = await interpreter.interpret(payload.message)
    body = result.to_dict()
    body["range_status"] = await _range_status(interpreter, result)
    body["matches"] = await _matches(interpreter, payload.message)
    return body


@router.post("/interpret-store", response_model=InterpretStoreResponse, response_model_exclude_none=True)
async def interpret_store(
    payload: InterpretStoreRequest,
    db: Session = Depends(get_db),
    interpreter: Interpreter = Depends(get_interpreter),
):
    user_id = payload.user_id or ANONYMOUS_USER
    msg = entry_store.record_message(db, user_id, payload.message, payload.conversation_id)
    result = await interpreter.interpret(payload.message, user_id=user_id)
    matches = await _matches(interpreter, payload.message)
    row = entry_store.persist_interpretation(db, msg, result)
    body = {
        "interpretation": result.to_dict(),
        "stored": row.as_dict() if row is not None else None,
        "message_id": msg.id,
        "matches": matches,
    }
    if row is None:
        logger.info({"function": "interpret_store", "message_id": msg.id, "stored": False})
        return body
    logger.info({"function": "interpret_store", "message_id": msg.id, "stored_id": row.id, "type": row.type})
    content = InterpretStoreResponse(**body).model_dump(exclude_none=True)
    return JSONResponse(status_code=201, content=content)


@router.post("/reprocess-failed", response_model=List[ReprocessResult], response_model_exclude_none=True)
async def reprocess_failed(
    payload: ReprocessRequest,
    db: Session = Depends(get_db),
    interpreter: Interpreter = Depends(get_interpreter),
):
    return await entry_store.reprocess_failed(db, payload.user_id, interpreter)


@router.get("/status", response_model=AIStatus)
def status():
    return ai_provider_status()


@router.post("/reload-prompts")
def reload_prompts(interpreter: Interpreter = Depends(get_interpreter)):
    interpreter.prompts.invalidate()
    loaded = interpreter.prompts.preload()
    logger.info({"function": "reload_prompts", "loaded": loaded})
    return {"reloaded": True, "loaded": loaded}


@router.post("/trend", response_model=TrendResponse, response_model_exclude_none=True)
async def trend(payload: TrendRequest, interpreter: Interpreter = Depends(get_interpreter)):
    target = None
    if payload.param_code and interpreter.param_index is not None:
        target = await asyncio.to_thread(interpreter.param_index.get, payload.param_code)
    points = [p.model_dump() for p in payload.points]
    return await narrate_trend(points, payload.param_code, target, prompts=interpreter.prompts)
