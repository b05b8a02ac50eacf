"""
Data models for dashboard notifications.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from concierge_relay.models.call_session import utc_now


class NotificationType(str, Enum):
    """Severity tag shown by the dashboard."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A notification pushed to connected dashboard sockets."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    tenant_id: Optional[str] = None
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    link: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class NotificationRequest(BaseModel):
    """Body of ``POST /api/notifications``."""

    user_id: str = Field(..., description="Recipient user id")
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: NotificationType = NotificationType.INFO
    link: Optional[str] = None
    broadcast_to_tenant: bool = False
