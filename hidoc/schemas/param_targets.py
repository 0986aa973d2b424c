# hidoc/schemas/param_targets.py
from pydantic import BaseModel, Field
from typing import List, Optional

from hidoc.schemas.interpretation import PARAM_CODE_PATTERN


class ParamTargetIn(BaseModel):
    """Operator upsert payload; the code comes from the URL."""

    target_min: Optional[float] = None
    target_max: Optional[float] = None
    preferred_unit: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    organ_system: Optional[str] = None


class ParamTargetOut(ParamTargetIn):
    param_code: str = Field(..., pattern=PARAM_CODE_PATTERN)


class ParamMatch(BaseModel):
    param_code: str
    score: float = Field(..., ge=0.0, le=1.0, description="Cosine similarity, rounded to 4 places.")
    target_min: Optional[float] = None
    target_max: Optional[float] = None
    preferred_unit: Optional[str] = None
    description: Optional[str] = None


class MatchRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    top: Optional[int] = Field(None, description="Number of matches wanted; clamped to 1..20.")


class MatchResponse(BaseModel):
    message: str
    matches: List[ParamMatch]
