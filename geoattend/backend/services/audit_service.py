import csv
import io
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AuditLog, User
from ..tools.audit_sink import FAILURE_ACTIONS, AuditAction, AuditSink
from ..tools.clock import utcnow
from ..tools.request_context import RequestContext
from .errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 100
MAX_LOG_LIMIT = 1000
STATS_WINDOW_DAYS = 30
EXPORT_WINDOW_DAYS = 30
DEFAULT_RETENTION_DAYS = 90

CSV_HEADER = ["Timestamp", "User Email", "User Name", "Role", "Action", "IP Address", "Device ID", "Location", "Details"]


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Query parameters without an offset are read as UTC."""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def validate_pagination(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit = DEFAULT_LOG_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    if not 1 <= limit <= MAX_LOG_LIMIT:
        raise InvalidInputError(f"limit must be between 1 and {MAX_LOG_LIMIT}.")
    if offset < 0:
        raise InvalidInputError("offset must be zero or greater.")
    return limit, offset


def build_pagination(total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total}


def render_csv(rows: List[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for row in rows:
        timestamp = row.get("timestamp")
        writer.writerow([
            timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
            row.get("user_email") or "",
            row.get("user_name") or "",
            row.get("user_role") or "",
            row.get("action"),
            row.get("ip_address") or "",
            row.get("device_id") or "",
            row.get("location") or "",
            json.dumps(row.get("details") or {}, default=str),
        ])
    return buffer.getvalue()


class AuditService:
    """
    Denetim kayıtlarının yönetici tarafından okunması, dışa aktarılması ve temizlenmesi.
    """
    def __init__(self, db_client: AsyncPostgresClient, audit: AuditSink, clock: Callable[[], datetime] = utcnow):
        self.db_client = db_client
        self.audit = audit
        self._clock = clock

    async def get_logs(self, filters: Dict[str, Any], limit: Optional[int] = None,
                       offset: Optional[int] = None) -> Tuple[List[AuditLog], Dict[str, Any]]:
        limit, offset = validate_pagination(limit, offset)
        filters = {**filters, "start_date": as_utc(filters.get("start_date")), "end_date": as_utc(filters.get("end_date"))}
        start, end = filters["start_date"], filters["end_date"]
        if start and end and start > end:
            raise InvalidInputError("startDate must be before endDate.")
        logs, total = await self.db_client.get_audit_logs(filters, limit, offset)
        return logs, build_pagination(total, limit, offset)

    async def get_stats(self) -> Dict[str, Any]:
        end = self._clock()
        start = end - timedelta(days=STATS_WINDOW_DAYS)
        stats = await self.db_client.get_audit_stats(start, end, [a.value for a in FAILURE_ACTIONS])
        action_counts = stats["action_counts"]
        return {
            "summary": {
                "totalLogs": stats["total_logs"],
                "recentLogs": stats["recent_logs"],
                "uniqueActiveUsers": stats["unique_users"],
                "failedAttempts": stats["failed_attempts"],
                "dateRange": {"start": start.isoformat(), "end": end.isoformat()},
            },
            "actionBreakdown": [{"action": a, "count": c} for a, c in action_counts.items()],
            "topIPAddresses": [{"ipAddress": ip, "count": c} for ip, c in stats["top_ips"]],
            "securityMetrics": {
                "failedAttendanceAttempts": action_counts.get(AuditAction.ATTENDANCE_FAIL.value, 0),
                "deviceMismatches": action_counts.get(AuditAction.DEVICE_MISMATCH.value, 0),
                "geoViolations": action_counts.get(AuditAction.GEO_VIOLATION.value, 0),
                "suspiciousActivities": action_counts.get(AuditAction.SUSPICIOUS_ACTIVITY.value, 0),
                "unauthorizedAccess": action_counts.get(AuditAction.UNAUTHORIZED_ACCESS.value, 0),
            },
        }

    async def get_user_logs(self, user_id: str, limit: Optional[int] = None,
                            offset: Optional[int] = None) -> Tuple[User, List[AuditLog], Dict[str, Any]]:
        limit, offset = validate_pagination(limit, offset)
        user = await self.db_client.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.", code="USER_NOT_FOUND")
        logs, total = await self.db_client.get_audit_logs({"user_id": user_id}, limit, offset)
        return user, logs, build_pagination(total, limit, offset)

    async def export_csv(self, admin: User, context: RequestContext, start_date: Optional[datetime] = None,
                         end_date: Optional[datetime] = None) -> Tuple[str, str]:
        """Returns (file name, CSV text) for the given window, default last 30 days."""
        end = as_utc(end_date) or self._clock()
        start = as_utc(start_date) or end - timedelta(days=EXPORT_WINDOW_DAYS)
        if start > end:
            raise InvalidInputError("startDate must be before endDate.")

        rows = await self.db_client.get_audit_logs_for_export(start, end)
        content = render_csv(rows)
        file_name = f"audit_logs_{start.date().isoformat()}_to_{end.date().isoformat()}.csv"

        await self.audit.record(admin.id, AuditAction.AUDIT_EXPORT, context, details={
            "dateRange": f"{start.isoformat()} to {end.isoformat()}",
            "recordCount": len(rows),
        })
        logger.info(f"[AUDIT] {len(rows)} logs exported by {admin.id}.")
        return file_name, content

    async def cleanup(self, actor_id: str, retention_days: Optional[int] = None,
                      context: Optional[RequestContext] = None) -> Dict[str, Any]:
        retention_days = DEFAULT_RETENTION_DAYS if retention_days is None else retention_days
        if retention_days < 1:
            raise InvalidInputError("retentionDays must be a positive integer.")
        cutoff = self._clock() - timedelta(days=retention_days)

        deleted = await self.db_client.delete_audit_logs_before(cutoff)
        await self.audit.record(actor_id, AuditAction.AUDIT_CLEANUP, context, details={
            "retentionDays": retention_days,
            "deletedCount": deleted,
            "cutoffDate": cutoff.isoformat(),
        })
        logger.info(f"[AUDIT] Deleted {deleted} logs older than {retention_days} days.")
        return {
            "success": True,
            "deletedCount": deleted,
            "retentionDays": retention_days,
            "cutoffDate": cutoff.isoformat(),
            "message": f"Successfully deleted {deleted} audit logs older than {retention_days} days",
        }
