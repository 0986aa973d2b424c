"""Param target corpus: YAML seed, database access and operator upsert."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from hidoc.models.param_target import ParamTarget

logger = logging.getLogger("hidoc")

SEED_PATH = Path(__file__).resolve().parent.parent / "config" / "param_targets.yaml"

_FIELDS = ("target_min", "target_max", "preferred_unit", "description", "notes", "organ_system")


def _seed_path() -> Path:
    env = (os.getenv("PARAM_TARGETS_SEED") or "").strip()
    return Path(env) if env else SEED_PATH


@lru_cache(maxsize=4)
def _read_seed(path: str) -> tuple:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    rows = []
    seen = set()
    for item in data.get("param_targets") or []:
        code = str(item.get("param_code") or "").strip()
        if not code or code in seen:
            continue
        seen.add(code)
        row = {"param_code": code}
        for field in _FIELDS:
            row[field] = item.get(field)
        rows.append(row)
    return tuple(rows)


def load_seed(path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Rows from the YAML seed file, first occurrence of each code wins."""
    return [dict(r) for r in _read_seed(str(path or _seed_path()))]


def seed_param_targets(db: Session, path: Optional[Path] = None) -> int:
    """Insert seed rows whose code is not present yet. Returns the number added."""
    existing = {code for (code,) in db.query(ParamTarget.param_code).all()}
    added = 0
    for row in load_seed(path):
        if row["param_code"] in existing:
            continue
        db.add(ParamTarget(**row))
        added += 1
    if added:
        db.commit()
    logger.info({"function": "seed_param_targets", "added": added, "existing": len(existing)})
    return added


def list_param_targets(db: Session) -> List[Dict[str, Any]]:
    return [t.as_dict() for t in db.query(ParamTarget).order_by(ParamTarget.param_code).all()]


def upsert_param_target(db: Session, param_code: str, values: Dict[str, Any]) -> Dict[str, Any]:
    target = db.get(ParamTarget, param_code)
    if target is None:
        target = ParamTarget(param_code=param_code)
        db.add(target)
    for field in _FIELDS:
        if field in values:
            setattr(target, field, values[field])
    db.commit()
    db.refresh(target)
    logger.info({"function": "upsert_param_target", "param_code": param_code})
    return target.as_dict()


def db_loader(session_factory: Callable[[], Session]) -> Callable[[], List[Dict[str, Any]]]:
    """Corpus loader for ParamVectorIndex backed by the param_targets table."""

    def _load() -> List[Dict[str, Any]]:
        db = session_factory()
        try:
            return list_param_targets(db)
        finally:
            db.close()

    return _load


def seed_loader(path: Optional[Path] = None) -> Callable[[], List[Dict[str, Any]]]:
    return lambda: load_seed(path)
