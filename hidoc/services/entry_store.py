"""Write interpreted entries and the messages they came from."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from hidoc.models.health_data import Activity, HealthData, Medication
from hidoc.models.message import RawMessage
from hidoc.schemas.interpretation import Interpretation
from hidoc.services.persistence import ACTIVITIES, HEALTH_DATA, MEDICATIONS, StorageRow, map_entry
from hidoc.utils.exceptions import PersistenceContractViolation

logger = logging.getLogger("hidoc")

DEFAULT_CONVERSATION = "default-conversation"
REPROCESS_BATCH = 10

_TABLE_MODELS = {
    HEALTH_DATA: HealthData,
    MEDICATIONS: Medication,
    ACTIVITIES: Activity,
}


def store_entry(db: Session, entry: Any, user_id: str, conversation_id: Optional[str] = None) -> StorageRow:
    """Map ``entry`` and insert the row. Raises PersistenceContractViolation before any write."""
    row = map_entry(entry, user_id, conversation_id or DEFAULT_CONVERSATION)
    model = _TABLE_MODELS[row.table]
    db.add(model(**row.columns))
    db.commit()
    logger.info({"function": "store_entry", "table": row.table, "type": row.type, "id": row.id})
    return row


def record_message(db: Session, user_id: str, content: str, conversation_id: Optional[str] = None) -> RawMessage:
    msg = RawMessage(
        user_id=user_id,
        conversation_id=conversation_id or DEFAULT_CONVERSATION,
        role="user",
        content=content,
        created_at=int(time.time() * 1000),
        processed=0,
    )
    db.add(msg)
    db.commit()
    db.refresh(msg)
    return msg


def mark_processed(
    db: Session,
    msg: RawMessage,
    payload: Dict[str, Any],
    stored_id: Optional[str] = None,
) -> None:
    msg.interpretation_json = json.dumps(payload, ensure_ascii=False)
    msg.processed = 1
    if stored_id:
        msg.stored_record_id = stored_id
    db.commit()


def persist_interpretation(db: Session, msg: RawMessage, interpretation: Interpretation) -> Optional[StorageRow]:
    """Store the entry of an interpretation and annotate its message.

    Returns None when there is nothing to store. A contract violation is
    recorded on the message and re-raised.
    """
    if not interpretation.parsed or interpretation.entry is None:
        mark_processed(db, msg, interpretation.to_dict())
        return None
    try:
        row = store_entry(db, interpretation.entry, msg.user_id, msg.conversation_id)
    except PersistenceContractViolation as e:
        db.rollback()
        logger.error({"function": "persist_interpretation", "message_id": msg.id, "error": str(e)})
        mark_processed(db, msg, {"error": str(e), "interpretation": interpretation.to_dict()})
        raise
    mark_processed(db, msg, interpretation.to_dict(), stored_id=row.id)
    return row


def failed_messages(db: Session, user_id: str, limit: int = REPROCESS_BATCH) -> List[RawMessage]:
    """Processed messages that never produced a stored row, newest first."""
    return (
        db.query(RawMessage)
        .filter(
            RawMessage.user_id == user_id,
            RawMessage.processed == 1,
            RawMessage.stored_record_id.is_(None),
        )
        .order_by(RawMessage.created_at.desc())
        .limit(limit)
        .all()
    )


async def reprocess_failed(db: Session, user_id: str, interpreter) -> List[Dict[str, Any]]:
    results = []
    for msg in failed_messages(db, user_id):
        interpretation = await interpreter.interpret(msg.content, user_id=user_id)
        try:
            row = persist_interpretation(db, msg, interpretation)
        except PersistenceContractViolation as e:
            results.append({"message_id": msg.id, "status": "persist_failed", "error": str(e)})
            continue
        if row is None:
            results.append({"message_id": msg.id, "status": "not_parsed"})
        else:
            results.append({"message_id": msg.id, "status": "success", "stored_id": row.id, "stored_type": row.type})
    logger.info({"function": "reprocess_failed", "user_id": user_id, "count": len(results)})
    return results
