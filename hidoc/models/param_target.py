# hidoc/models/param_target.py
from typing import Optional

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hidoc.db.session import Base


class ParamTarget(Base):
    """Reference range for one clinical parameter, keyed by its code."""

    __tablename__ = "param_targets"

    param_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    target_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    preferred_unit: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    organ_system: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    def as_dict(self) -> dict:
        return {
            "param_code": self.param_code,
            "target_min": self.target_min,
            "target_max": self.target_max,
            "preferred_unit": self.preferred_unit,
            "description": self.description,
            "notes": self.notes,
            "organ_system": self.organ_system,
        }
