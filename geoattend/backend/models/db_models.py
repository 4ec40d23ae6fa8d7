# geoattend/backend/models/db_models.py

from pydantic import BaseModel, Field
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"


class User(BaseModel):
    """
    Represents a user in the system, mapping to the 'users' table.
    """
    id: str = Field(..., description="Primary key")
    email: str
    name: str
    role: Role = Field(..., description="STUDENT, TEACHER or ADMIN")
    enrollment_no: Optional[str] = None


class UserCredentials(User):
    """User row including the bcrypt password hash. Never leaves the service layer."""
    password_hash: Optional[str] = None


class ClassInfo(BaseModel):
    """
    A taught class, mapping to the 'classes' table. `code` is what students type.
    """
    id: str
    code: str
    name: str
    room: Optional[str] = None
    teacher_id: str = Field(..., description="FK to the teacher who owns the class")


class Schedule(BaseModel):
    """Enrollment row: presence means the user may mark attendance in the class."""
    id: str
    user_id: str
    class_id: str


class DeviceBinding(BaseModel):
    """
    One-to-one association between a user and the bcrypt hash of a device fingerprint.
    The raw fingerprint is never stored.
    """
    id: str
    user_id: str
    device_hash: str
    created_at: datetime
    updated_at: datetime


class SessionToken(BaseModel):
    """
    Short-lived, single-use token issued by a teacher for one class.
    """
    id: str
    class_id: str
    token: str
    expires_at: datetime
    used: bool = False
    created_at: Optional[datetime] = None


class Attendance(BaseModel):
    """
    Per-user-per-class-per-day presence record, mapping to the 'attendance' table.
    (user_id, class_id, date) is the natural key.
    """
    id: str
    user_id: str
    class_id: str
    date: date
    status: AttendanceStatus = AttendanceStatus.PRESENT
    marked_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AttendanceWithClass(Attendance):
    """Attendance row joined with the class it belongs to, used by the read paths."""
    class_code: str
    class_name: str


class AuditLog(BaseModel):
    """
    Append-only security event, mapping to the 'audit_logs' table.
    """
    id: Optional[int] = None
    user_id: str = Field(..., description="Subject id, or 'unknown' before identity is confirmed")
    action: str
    ip_address: Optional[str] = None
    device_id: Optional[str] = Field(None, description="User agent truncated to 255 chars")
    location: Optional[str] = Field(None, description="Free text 'lat,lng'")
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class DeviceBindingWithUser(DeviceBinding):
    """Binding joined with its owner, for the admin listing."""
    user: User


class AttendanceWithUser(Attendance):
    """Attendance row joined with the student, for the per-class view."""
    user_name: str
    user_email: str
    enrollment_no: Optional[str] = None
