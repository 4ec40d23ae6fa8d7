import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from ..models.db_models import Role, User
from ..services.audit_service import AuditService
from ..tools.audit_sink import AuditAction
from ..tools.request_context import RequestContext
from .auth import get_request_context, require_roles
from .dependencies import get_audit_service
from .schemas.audit import AuditLogResponse, AuditLogsResponse, CleanupResponse, UserAuditLogsResponse
from .schemas.user import UserResponse

logger = logging.getLogger(__name__)

# Tüm denetim uçları sadece yöneticiye açık.
router = APIRouter(prefix="/audit", tags=["Audit"])

require_admin = require_roles(Role.ADMIN)


@router.get("/logs", response_model=AuditLogsResponse)
async def get_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    ip_address: Optional[str] = Query(None, alias="ipAddress"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    limit: int = Query(100),
    offset: int = Query(0),
    admin: User = Depends(require_admin),
    service: AuditService = Depends(get_audit_service),
):
    filters = {
        "user_id": user_id,
        "action": action,
        "start_date": start_date,
        "end_date": end_date,
        "ip_address": ip_address,
        "device_id": device_id,
    }
    logs, pagination = await service.get_logs(filters, limit, offset)
    return AuditLogsResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        pagination=pagination,
        available_actions=[a.value for a in AuditAction],
    )


@router.get("/stats")
async def get_audit_stats(admin: User = Depends(require_admin), service: AuditService = Depends(get_audit_service)):
    return await service.get_stats()


@router.get("/user/{user_id}", response_model=UserAuditLogsResponse)
async def get_user_audit_logs(
    user_id: str,
    limit: int = Query(50),
    offset: int = Query(0),
    admin: User = Depends(require_admin),
    service: AuditService = Depends(get_audit_service),
):
    user, logs, pagination = await service.get_user_logs(user_id, limit, offset)
    return UserAuditLogsResponse(
        user=UserResponse.model_validate(user),
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        pagination=pagination,
    )


@router.get("/export")
async def export_audit_logs(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
    service: AuditService = Depends(get_audit_service),
):
    file_name, content = await service.export_csv(admin, context, start_date, end_date)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.delete("/cleanup", response_model=CleanupResponse)
async def cleanup_audit_logs(
    retention_days: Optional[int] = Query(None, alias="retentionDays"),
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
    service: AuditService = Depends(get_audit_service),
):
    return await service.cleanup(admin.id, retention_days, context)
