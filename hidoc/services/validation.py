"""Parse model output and check it against the interpretation wire contract."""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Collection, List, Optional

from pydantic import ValidationError

from hidoc.schemas.interpretation import RawInterpretation
from hidoc.utils.exceptions import SchemaValidationError

PLACEHOLDER_RE = re.compile(r"<\s*current_timestamp\s*>", re.IGNORECASE)


def resolve_placeholders(raw: str, now_ms: int) -> str:
    return PLACEHOLDER_RE.sub(str(now_ms), raw or "")


def extract_first_json_block(text: str) -> Any:
    """JSON between the first '{' and the last '}' of the text."""
    start = (text or "").find("{")
    end = (text or "").rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise SchemaValidationError("No JSON block", raw=text)
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise SchemaValidationError(f"Invalid JSON: {e.msg} (line {e.lineno} col {e.colno})", raw=text) from e


def describe_errors(err: ValidationError) -> str:
    parts = []
    for item in err.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


def validate_raw(
    text: str,
    now_ms: int,
    known_codes: Optional[Collection[str]] = None,
    suggest: Optional[Callable[[str], List[str]]] = None,
) -> RawInterpretation:
    """Validate raw model text.

    Raises SchemaValidationError when there is no JSON object, the JSON does not
    fit the contract, or a param entry names a code outside the corpus. In the
    last case the message lists the closest known codes so a repair prompt can
    steer the model towards them.
    """
    data = extract_first_json_block(resolve_placeholders(text, now_ms))
    if not isinstance(data, dict):
        raise SchemaValidationError("Top-level JSON value must be an object", raw=text)
    try:
        result = RawInterpretation.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(describe_errors(e), raw=text) from e

    entry = result.entry
    if known_codes and entry is not None and entry.param is not None and entry.type in (None, "param"):
        code = entry.param.param_code
        if code not in known_codes:
            hint = ""
            if suggest is not None:
                closest = [c for c in suggest(code) if c]
                if closest:
                    hint = f"; closest known codes: {', '.join(closest)}"
            raise SchemaValidationError(f"entry.param.param_code: unknown code {code}{hint}", raw=text)
    return result
