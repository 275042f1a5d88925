"""
Inbox entries returned by /v1/notifications.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict, Any
from healthpal.app.models.notification import NotificationType


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    metadata_payload: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
