"""
Declarative base and common columns for all ORM models
"""
from uuid import uuid4

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

from ..core.constants import utc_now

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


class BaseModel:
    """Mixin: UUID primary key plus created/updated timestamps"""

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id}>"
