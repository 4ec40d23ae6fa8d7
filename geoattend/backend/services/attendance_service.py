import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import (
    Attendance, AttendanceStatus, AttendanceWithClass, AttendanceWithUser, Role, User,
)
from ..tools.clock import campus_date, utcnow
from .errors import AuthorizationError, NotFoundError, TokenUsedError
from .token_service import validate_session_token

logger = logging.getLogger(__name__)


class MarkAttendanceRequest(BaseModel):
    """Body of POST /attendance/mark. Coordinates are checked earlier by the geofence stage."""
    model_config = ConfigDict(populate_by_name=True)

    class_code: str = Field(..., alias="classCode", min_length=1)
    status: AttendanceStatus = AttendanceStatus.PRESENT
    token: str = Field(..., min_length=1)
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class AttendanceService:
    """
    Yoklama defteri: token doğrulama, kayıt kontrolü ve tek transaction içinde upsert.
    """
    def __init__(self, db_client: AsyncPostgresClient, clock: Callable[[], datetime] = utcnow,
                 utc_offset_hours: Optional[float] = None):
        self.db_client = db_client
        self._clock = clock
        self.utc_offset_hours = settings.CAMPUS_UTC_OFFSET_HOURS if utc_offset_hours is None else utc_offset_hours

    def today(self):
        return campus_date(self._clock(), self.utc_offset_hours)

    async def commit_mark(self, user: User, request: MarkAttendanceRequest) -> Attendance:
        """
        Validates the session token, checks enrollment, consumes the token and upserts
        the attendance row. The last three happen in one transaction; any error rolls
        everything back, so a token is never burned without a record and vice versa.
        """
        class_info = await self.db_client.get_class_by_code(request.class_code)
        if class_info is None:
            raise NotFoundError("Class not found.", code="CLASS_NOT_FOUND")

        now = self._clock()
        async with self.db_client.transaction() as tx:
            token = await tx.get_session_token_for_update(request.token)
            token = validate_session_token(token, class_info.id, now)

            if not await tx.is_enrolled(user.id, class_info.id):
                raise AuthorizationError("You are not enrolled in this class.", code="NOT_ENROLLED")

            if not await tx.consume_session_token(token.id):
                raise TokenUsedError()

            record = await tx.upsert_attendance(Attendance(
                id=str(uuid4()),
                user_id=user.id,
                class_id=class_info.id,
                date=campus_date(now, self.utc_offset_hours),
                status=request.status,
                marked_by=user.id,
            ))

        logger.info(f"Attendance {record.id} marked {record.status.value} for user '{user.id}' in class '{class_info.code}'.")
        return record

    async def get_today(self, user: User) -> List[AttendanceWithClass]:
        return await self.db_client.get_attendance_for_user(user.id, on_date=self.today())

    async def get_history(self, user: User) -> List[AttendanceWithClass]:
        return await self.db_client.get_attendance_for_user(user.id)

    async def get_class_attendance(self, user: User, class_id: str) -> List[AttendanceWithUser]:
        if user.role not in (Role.TEACHER, Role.ADMIN):
            raise AuthorizationError("You do not have permission to perform this action.", code="ROLE_FORBIDDEN")
        class_info = await self.db_client.get_class_by_id(class_id)
        if class_info is None:
            raise NotFoundError("Class not found.", code="CLASS_NOT_FOUND")
        if user.role == Role.TEACHER and class_info.teacher_id != user.id:
            raise AuthorizationError("You can only view attendance for your own classes.", code="CLASS_NOT_OWNED")
        return await self.db_client.get_attendance_by_class(class_id)
