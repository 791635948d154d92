"""
Schemas for admin in-app notifications
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AdminNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    school_id: str
    student_id: Optional[str] = None
    type: str
    title: str
    message: str
    priority: str
    risk_level: Optional[str] = None
    risk_type: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
