from __future__ import annotations

import logging
import re
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from hidoc.db.session import get_db
from hidoc.schemas.interpretation import PARAM_CODE_PATTERN
from hidoc.schemas.param_targets import MatchRequest, MatchResponse, ParamTargetIn, ParamTargetOut
from hidoc.services.interpreter import Interpreter, get_interpreter
from hidoc.services.param_targets import list_param_targets, upsert_param_target

logger = logging.getLogger("hidoc")

router = APIRouter(prefix="/api/param-targets", tags=["param-targets"])


@router.get("", response_model=List[ParamTargetOut])
def list_targets(db: Session = Depends(get_db)):
    return list_param_targets(db)


@router.put("/{param_code}", response_model=ParamTargetOut)
def put_target(
    param_code: str,
    payload: ParamTargetIn,
    db: Session = Depends(get_db),
    interpreter: Interpreter = Depends(get_interpreter),
):
    code = param_code.strip().upper()
    if not re.match(PARAM_CODE_PATTERN, code):
        raise HTTPException(status_code=400, detail=f"Invalid param code: {param_code}")
    row = upsert_param_target(db, code, payload.model_dump(exclude_unset=True))
    if interpreter.param_index is not None:
        interpreter.param_index.invalidate()
    return row


@router.post("/match", response_model=MatchResponse)
def match(payload: MatchRequest, interpreter: Interpreter = Depends(get_interpreter)):
    if interpreter.param_index is None:
        return {"message": payload.message, "matches": []}
    return {"message": payload.message, "matches": interpreter.param_index.match(payload.message, payload.top)}
