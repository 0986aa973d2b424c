# hidoc/models/message.py
import uuid
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hidoc.db.session import Base


class RawMessage(Base):
    """User message captured before interpretation, annotated afterwards."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    interpretation_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stored_record_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
