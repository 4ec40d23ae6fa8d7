import logging
from fastapi import APIRouter, Depends, status, Request
from fastapi.responses import JSONResponse

from ..models.db_models import AttendanceWithUser, Role, User
from ..services.attendance_service import AttendanceService
from ..services.pipeline import Failure, VerificationPipeline
from ..services.token_service import TokenService
from ..tools.request_context import RequestContext
from .auth import get_current_user, get_request_context, require_roles
from .dependencies import get_attendance_service, get_token_service, get_verification_pipeline
from .schemas.attendance import (
    AttendanceRecordsResponse,
    AttendanceResponse,
    AttendanceWithClassResponse,
    ClassAttendanceEntry,
    ClassAttendanceResponse,
    MarkAttendanceResponse,
    SessionTokenResponse,
    TokenCreateRequest,
)
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attendance", tags=["Attendance"])


def _class_entry(record: AttendanceWithUser) -> ClassAttendanceEntry:
    return ClassAttendanceEntry(
        **AttendanceResponse.model_validate(record).model_dump(),
        user={"id": record.user_id, "name": record.user_name, "email": record.user_email,
              "enrollment_no": record.enrollment_no},
    )


@router.post("/mark", status_code=status.HTTP_201_CREATED, response_model=MarkAttendanceResponse,
             summary="Mark attendance through the verification pipeline")
@limiter.limit("10/minute")
async def mark_attendance(request: Request, pipeline: VerificationPipeline = Depends(get_verification_pipeline)):
    """
    Kimlik, cihaz, konum ve token kontrollerinden geçen yoklama işaretleme.
    Gövde ham olarak okunur; şekil doğrulaması zincirin son aşamasında yapılır.
    """
    try:
        body = await request.json()
    except ValueError:
        body = {}
    result = await pipeline.run(RequestContext.from_request(request, body=body))
    if isinstance(result, Failure):
        return JSONResponse(status_code=result.status_code, content=result.to_dict())
    return MarkAttendanceResponse(attendance=AttendanceResponse.model_validate(result.attendance))


@router.post("/token", status_code=status.HTTP_201_CREATED, response_model=SessionTokenResponse,
             summary="Issue a single-use attendance token")
@limiter.limit("30/minute")
async def create_token(
    request: Request,
    token_request: TokenCreateRequest,
    user: User = Depends(require_roles(Role.TEACHER, Role.ADMIN)),
    context: RequestContext = Depends(get_request_context),
    service: TokenService = Depends(get_token_service),
):
    token = await service.issue(user, token_request.class_id, token_request.expires_in_seconds, context)
    return SessionTokenResponse.model_validate(token)


@router.get("/today", response_model=AttendanceRecordsResponse)
async def get_today(user: User = Depends(get_current_user),
                    service: AttendanceService = Depends(get_attendance_service)):
    records = await service.get_today(user)
    return AttendanceRecordsResponse(records=[AttendanceWithClassResponse.model_validate(r) for r in records])


@router.get("/history", response_model=AttendanceRecordsResponse)
async def get_history(user: User = Depends(get_current_user),
                      service: AttendanceService = Depends(get_attendance_service)):
    records = await service.get_history(user)
    return AttendanceRecordsResponse(records=[AttendanceWithClassResponse.model_validate(r) for r in records])


@router.get("/class/{class_id}", response_model=ClassAttendanceResponse)
async def get_class_attendance(
    class_id: str,
    user: User = Depends(require_roles(Role.TEACHER, Role.ADMIN)),
    service: AttendanceService = Depends(get_attendance_service),
):
    records = await service.get_class_attendance(user, class_id)
    return ClassAttendanceResponse(attendance=[_class_entry(r) for r in records])
