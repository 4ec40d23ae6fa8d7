# geoattend/backend/api/schemas/audit.py
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Dict, List, Optional

from .user import UserResponse

_CAMEL = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class AuditLogResponse(BaseModel):
    model_config = _CAMEL

    id: Optional[int] = None
    user_id: str
    action: str
    ip_address: Optional[str] = None
    device_id: Optional[str] = None
    location: Optional[str] = None
    details: Dict[str, Any] = {}
    timestamp: datetime


class Pagination(BaseModel):
    model_config = _CAMEL

    total: int
    limit: int
    offset: int
    has_more: bool


class AuditLogsResponse(BaseModel):
    model_config = _CAMEL

    logs: List[AuditLogResponse]
    pagination: Pagination
    available_actions: List[str]


class UserAuditLogsResponse(BaseModel):
    model_config = _CAMEL

    user: UserResponse
    logs: List[AuditLogResponse]
    pagination: Pagination


class CleanupResponse(BaseModel):
    model_config = _CAMEL

    success: bool
    deleted_count: int
    retention_days: int
    cutoff_date: str
    message: str
