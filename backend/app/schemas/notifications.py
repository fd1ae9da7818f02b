from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain import NotificationKind, NotificationPriority


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: Optional[str] = None
    recipient_role: Optional[str] = None
    recipient_user_id: Optional[str] = None
    kind: NotificationKind
    priority: NotificationPriority
    title: str
    entity_type: str
    entity_id: str
    created_at: datetime
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    read: bool = False
    read_at: Optional[datetime] = None


class DispatchResultRead(BaseModel):
    status: str
    delivered: int
    notification_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class DueRulesRequest(BaseModel):
    today: Optional[date] = None
    reminder_days: Optional[int] = Field(None, ge=0, le=365)
    company_id: Optional[str] = None


class DueRulesResult(BaseModel):
    queued: int
    notifications: list[NotificationRead] = Field(default_factory=list)
