# geoattend/backend/api/schemas/attendance.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import List, Optional

from ...models.db_models import AttendanceStatus

_CAMEL = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class TokenCreateRequest(BaseModel):
    """Request model for issuing a session token. TTL bounds are checked by the service."""
    model_config = _CAMEL

    class_id: str = Field(..., min_length=1)
    expires_in_seconds: Optional[int] = Field(None, description="30-300, default 60.")


class SessionTokenResponse(BaseModel):
    model_config = _CAMEL

    token: str
    expires_at: datetime
    class_id: str


class AttendanceResponse(BaseModel):
    model_config = _CAMEL

    id: str
    user_id: str
    class_id: str
    date: date
    status: AttendanceStatus
    marked_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MarkAttendanceResponse(BaseModel):
    attendance: AttendanceResponse


class AttendanceWithClassResponse(AttendanceResponse):
    class_code: str
    class_name: str


class AttendanceRecordsResponse(BaseModel):
    records: List[AttendanceWithClassResponse]


class StudentSummary(BaseModel):
    model_config = _CAMEL

    id: str
    name: str
    email: str
    enrollment_no: Optional[str] = None


class ClassAttendanceEntry(AttendanceResponse):
    user: StudentSummary


class ClassAttendanceResponse(BaseModel):
    attendance: List[ClassAttendanceEntry]
