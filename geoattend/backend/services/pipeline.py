import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models.db_models import Attendance, User
from ..tools import geofence
from ..tools.audit_sink import (
    UNKNOWN_SUBJECT, AuditAction, AuditSink, location_from_body, sanitize_request_body,
)
from ..tools.device_fingerprint import MAX_DEVICE_FIELD_LENGTH, MIN_DEVICE_FIELD_LENGTH
from ..tools.geofence import GeoConfig, InvalidCoordinatesError, Location
from ..tools.request_context import RequestContext
from .attendance_service import AttendanceService, MarkAttendanceRequest
from .auth_service import AuthService
from .device_service import DeviceService
from .errors import ServiceError, TokenError

logger = logging.getLogger(__name__)

BOT_SIGNATURES = ("bot", "crawler", "spider")
LOOPBACK_ADDRESSES = ("127.0.0.1", "::1")


class Failure(BaseModel):
    """Terminal outcome of a stage that rejects the request."""
    model_config = ConfigDict(frozen=True)

    status_code: int
    code: str
    error: str
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: ServiceError) -> "Failure":
        return cls(status_code=error.status_code, code=error.code, error=error.message, extra=error.extra)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "code": self.code, **self.extra}


class PipelineContext(BaseModel):
    """
    Immutable value threaded through the stages. Each stage returns a copy with
    the facts it established (subject, device binding, location, commit result).
    """
    model_config = ConfigDict(frozen=True)

    request: RequestContext
    user: Optional[User] = None
    device_binding_id: Optional[str] = None
    location: Optional[Location] = None
    anomalies: Tuple[str, ...] = ()
    attendance: Optional[Attendance] = None

    def with_(self, **changes) -> "PipelineContext":
        return self.model_copy(update=changes)


StageResult = Union[PipelineContext, Failure]


class Stage:
    name = "stage"

    async def run(self, ctx: PipelineContext) -> StageResult:
        raise NotImplementedError


class AuthenticateStage(Stage):
    name = "authenticate"

    def __init__(self, auth_service: AuthService, audit: AuditSink):
        self.auth_service = auth_service
        self.audit = audit

    async def run(self, ctx: PipelineContext) -> StageResult:
        try:
            user = await self.auth_service.authenticate(ctx.request.credential)
        except ServiceError as e:
            await self.audit.record(UNKNOWN_SUBJECT, AuditAction.UNAUTHORIZED_ACCESS, ctx.request,
                                    details={"reason": e.message, "path": ctx.request.path})
            return Failure.from_error(e)
        return ctx.with_(user=user)


class AuditAttemptStage(Stage):
    name = "audit_attempt"

    def __init__(self, audit: AuditSink):
        self.audit = audit

    async def run(self, ctx: PipelineContext) -> StageResult:
        body = ctx.request.body
        await self.audit.record(ctx.user.id, AuditAction.ATTENDANCE_ATTEMPT, ctx.request, details={
            "method": ctx.request.method,
            "path": ctx.request.path,
            "body": sanitize_request_body(body),
        }, location=location_from_body(body))
        return ctx


def detect_anomalies(user_agent: str, ip_address: str, environment: str) -> List[str]:
    """Lightweight heuristics. Matches are reported, never enforced."""
    anomalies = []
    lowered = (user_agent or "").lower()
    if any(signature in lowered for signature in BOT_SIGNATURES):
        anomalies.append("bot_user_agent")
    if not MIN_DEVICE_FIELD_LENGTH <= len(user_agent or "") <= MAX_DEVICE_FIELD_LENGTH:
        anomalies.append("user_agent_length")
    if ip_address in LOOPBACK_ADDRESSES and environment != "development":
        anomalies.append("loopback_ip")
    return anomalies


class AnomalyStage(Stage):
    """Şüpheli aktiviteyi kaydeder ama isteği asla durdurmaz."""
    name = "anomaly"

    def __init__(self, audit: AuditSink, environment: str):
        self.audit = audit
        self.environment = environment

    async def run(self, ctx: PipelineContext) -> StageResult:
        anomalies = detect_anomalies(ctx.request.user_agent, ctx.request.ip_address, self.environment)
        if anomalies:
            logger.warning(f"[SECURITY] Suspicious activity from user {ctx.user.id}: {anomalies}")
            await self.audit.record(ctx.user.id, AuditAction.SUSPICIOUS_ACTIVITY, ctx.request, details={
                "patterns": anomalies,
                "userAgent": ctx.request.user_agent[:100],
            })
        return ctx.with_(anomalies=tuple(anomalies))


class DeviceBindingStage(Stage):
    name = "device_binding"

    ACTIONS = {
        "DEVICE_INFO_MISSING": AuditAction.DEVICE_MISMATCH,
        "DEVICE_NOT_BOUND": AuditAction.DEVICE_NOT_BOUND,
        "DEVICE_MISMATCH": AuditAction.DEVICE_MISMATCH,
    }

    def __init__(self, device_service: DeviceService, audit: AuditSink):
        self.device_service = device_service
        self.audit = audit

    async def run(self, ctx: PipelineContext) -> StageResult:
        try:
            binding = await self.device_service.verify_request_device(ctx.user, ctx.request)
        except ServiceError as e:
            action = self.ACTIONS.get(e.code, AuditAction.DEVICE_MISMATCH)
            await self.audit.record(ctx.user.id, action, ctx.request, details={
                "reason": e.message,
                "code": e.code,
                "platform": ctx.request.platform,
            })
            return Failure.from_error(e)
        return ctx.with_(device_binding_id=binding.id)


class GeofenceStage(Stage):
    name = "geofence"

    def __init__(self, geo_config: GeoConfig, audit: AuditSink):
        self.geo_config = geo_config
        self.audit = audit

    async def run(self, ctx: PipelineContext) -> StageResult:
        body = ctx.request.body
        latitude, longitude = body.get("latitude"), body.get("longitude")
        if latitude is None or longitude is None:
            await self.audit.record(ctx.user.id, AuditAction.GEO_VIOLATION, ctx.request,
                                    details={"reason": "Missing location coordinates"})
            return Failure(status_code=400, code="LOCATION_REQUIRED",
                           error="Location coordinates are required for attendance")
        try:
            location = geofence.sanitize_location(latitude, longitude)
        except InvalidCoordinatesError as e:
            await self.audit.record(ctx.user.id, AuditAction.GEO_VIOLATION, ctx.request, details={
                "reason": "Invalid location coordinates",
                "providedLatitude": str(latitude)[:50],
                "providedLongitude": str(longitude)[:50],
            })
            return Failure(status_code=400, code="INVALID_COORDINATES", error=str(e))

        distance = geofence.distance_meters(location, self.geo_config.center)
        if distance > self.geo_config.campus_radius:
            log_line = geofence.format_location_for_log(location, self.geo_config)
            await self.audit.record(ctx.user.id, AuditAction.GEO_VIOLATION, ctx.request, details={
                "reason": "Location outside campus boundaries",
                "distanceMeters": round(distance, 2),
                "campusRadius": self.geo_config.campus_radius,
            }, location=log_line)
            return Failure(
                status_code=403, code="OUTSIDE_CAMPUS",
                error="Attendance can only be marked from within campus boundaries",
                extra={"distanceMeters": round(distance, 2)},
            )
        logger.info(f"[GEO] Valid location for user {ctx.user.id}: {geofence.format_location_for_log(location, self.geo_config)}")
        return ctx.with_(location=location)


class AttendanceCommitStage(Stage):
    name = "attendance_commit"

    def __init__(self, attendance_service: AttendanceService, audit: AuditSink):
        self.attendance_service = attendance_service
        self.audit = audit

    async def run(self, ctx: PipelineContext) -> StageResult:
        location = ctx.location.as_text() if ctx.location else location_from_body(ctx.request.body)
        try:
            payload = MarkAttendanceRequest.model_validate(ctx.request.body)
        except ValidationError as e:
            await self.audit.record(ctx.user.id, AuditAction.ATTENDANCE_FAIL, ctx.request,
                                    details={"reason": "Invalid payload", "errors": e.error_count()},
                                    location=location)
            return Failure(status_code=400, code="VALIDATION_ERROR", error="Invalid attendance payload")

        try:
            record = await self.attendance_service.commit_mark(ctx.user, payload)
        except TokenError as e:
            await self.audit.record(ctx.user.id, AuditAction(e.audit_action), ctx.request,
                                    details={"reason": e.message, "code": e.code, "classCode": payload.class_code},
                                    location=location)
            return Failure.from_error(e)
        except ServiceError as e:
            await self.audit.record(ctx.user.id, AuditAction.ATTENDANCE_FAIL, ctx.request,
                                    details={"reason": e.message, "code": e.code, "classCode": payload.class_code},
                                    location=location)
            return Failure.from_error(e)

        await self.audit.record(ctx.user.id, AuditAction.ATTENDANCE_SUCCESS, ctx.request, details={
            "attendanceId": record.id,
            "classId": record.class_id,
            "status": record.status.value,
        }, location=location)
        return ctx.with_(attendance=record)


class VerificationPipeline:
    """
    Yoklama doğrulama zinciri. Aşamalar sırayla çalışır; ilk Failure'da durur.
    Beklenmeyen bir hata 500 INTERNAL_ERROR'a çevrilir ve kaydı tutulur (kullanıcı bilinmiyorsa "unknown" adına).
    """
    def __init__(self, stages: Sequence[Stage], audit: AuditSink):
        self.stages = list(stages)
        self.audit = audit

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    async def run(self, request: RequestContext) -> StageResult:
        ctx = PipelineContext(request=request)
        for stage in self.stages:
            try:
                result = await stage.run(ctx)
            except Exception as e:
                logger.error(f"Unexpected error in pipeline stage '{stage.name}': {e}", exc_info=True)
                subject = ctx.user.id if ctx.user is not None else UNKNOWN_SUBJECT
                await self.audit.record(subject, AuditAction.ATTENDANCE_FAIL, request,
                                        details={"reason": "Internal error", "stage": stage.name})
                return Failure(status_code=500, code="INTERNAL_ERROR", error="An unexpected error occurred.")
            if isinstance(result, Failure):
                logger.info(f"Pipeline stopped at '{stage.name}' with {result.code}.")
                return result
            ctx = result
        return ctx


def build_verification_pipeline(auth_service: AuthService, device_service: DeviceService,
                                attendance_service: AttendanceService, audit: AuditSink,
                                geo_config: Optional[GeoConfig], environment: str) -> VerificationPipeline:
    """geo_config None ise geofence aşaması atlanır (sadece geliştirmede DISABLE_GEO_LOCK ile)."""
    stages: List[Stage] = [
        AuthenticateStage(auth_service, audit),
        AuditAttemptStage(audit),
        AnomalyStage(audit, environment),
        DeviceBindingStage(device_service, audit),
    ]
    if geo_config is not None:
        stages.append(GeofenceStage(geo_config, audit))
    stages.append(AttendanceCommitStage(attendance_service, audit))
    return VerificationPipeline(stages, audit)
