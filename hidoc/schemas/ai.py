# hidoc/schemas/ai.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from hidoc.schemas.param_targets import ParamMatch


class InterpretRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000, description="Free-form health event text.")


class InterpretStoreRequest(InterpretRequest):
    user_id: Optional[str] = Field(None, max_length=64)
    conversation_id: Optional[str] = Field(None, max_length=64)


class InterpretResponse(BaseModel):
    parsed: bool
    reply: Optional[str] = None
    entry: Optional[Dict[str, Any]] = None
    reasoning: Optional[str] = None
    range_status: Optional[str] = Field(None, description="low / normal / high against the parameter target.")
    matches: List[ParamMatch] = Field(default_factory=list)


class AIStatus(BaseModel):
    configured: bool
    model: Optional[str] = None
    second_pass: bool
    verbose: bool


class TrendPoint(BaseModel):
    timestamp: int = Field(..., gt=0)
    value: float


class TrendRequest(BaseModel):
    param_code: Optional[str] = None
    points: List[TrendPoint] = Field(..., min_length=1, max_length=500)


class TrendResponse(BaseModel):
    prognosis: str
    source: str
    direction: Optional[str] = None


class InterpretStoreResponse(BaseModel):
    interpretation: Dict[str, Any]
    stored: Optional[Dict[str, Any]] = None
    message_id: str
    matches: List[ParamMatch] = Field(default_factory=list)


class ReprocessRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)


class ReprocessResult(BaseModel):
    message_id: str
    status: str
    stored_id: Optional[str] = None
    stored_type: Optional[str] = None
    error: Optional[str] = None
