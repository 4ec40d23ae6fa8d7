# geoattend/backend/tools/audit_sink.py

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..models.db_models import AuditLog
from .request_context import RequestContext

logger = logging.getLogger(__name__)

UNKNOWN_SUBJECT = "unknown"
SYSTEM_SUBJECT = "system"
DEVICE_ID_MAX_LENGTH = 255

SENSITIVE_FIELDS = frozenset({
    "password", "token", "deviceFingerprint", "fingerprint",
    "additionalEntropy", "accessToken", "access_token",
})


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    DEVICE_BIND = "DEVICE_BIND"
    DEVICE_BIND_FAIL = "DEVICE_BIND_FAIL"
    DEVICE_UNBIND = "DEVICE_UNBIND"
    DEVICE_NOT_BOUND = "DEVICE_NOT_BOUND"
    DEVICE_MISMATCH = "DEVICE_MISMATCH"
    ATTENDANCE_ATTEMPT = "ATTENDANCE_ATTEMPT"
    ATTENDANCE_SUCCESS = "ATTENDANCE_SUCCESS"
    ATTENDANCE_FAIL = "ATTENDANCE_FAIL"
    GEO_VIOLATION = "GEO_VIOLATION"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_USED = "TOKEN_USED"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    AUDIT_EXPORT = "AUDIT_EXPORT"
    AUDIT_CLEANUP = "AUDIT_CLEANUP"


FAILURE_ACTIONS = (
    AuditAction.ATTENDANCE_FAIL,
    AuditAction.DEVICE_BIND_FAIL,
    AuditAction.DEVICE_NOT_BOUND,
    AuditAction.DEVICE_MISMATCH,
    AuditAction.GEO_VIOLATION,
    AuditAction.TOKEN_INVALID,
    AuditAction.TOKEN_EXPIRED,
    AuditAction.TOKEN_USED,
    AuditAction.UNAUTHORIZED_ACCESS,
    AuditAction.SUSPICIOUS_ACTIVITY,
)


def sanitize_request_body(body: Any) -> Any:
    """Removes secrets (tokens, passwords, fingerprints) recursively before logging."""
    if isinstance(body, dict):
        return {k: sanitize_request_body(v) for k, v in body.items() if k not in SENSITIVE_FIELDS}
    if isinstance(body, list):
        return [sanitize_request_body(item) for item in body]
    return body


def location_from_body(body: Dict[str, Any]) -> Optional[str]:
    latitude, longitude = body.get("latitude"), body.get("longitude")
    if latitude is None or longitude is None:
        return None
    return f"{latitude},{longitude}"


class AuditSink:
    """
    Best-effort, append-only recorder for security decisions.

    `record` never raises. A failed write is reported to the process log and
    `False` is returned; callers that do not care simply ignore the result.
    """

    def __init__(self, db_client):
        self._db_client = db_client

    async def record(
        self,
        user_id: str,
        action: AuditAction,
        context: Optional[RequestContext] = None,
        details: Optional[Dict[str, Any]] = None,
        location: Optional[str] = None,
    ) -> bool:
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        try:
            entry = AuditLog(
                user_id=user_id or UNKNOWN_SUBJECT,
                action=action_value,
                ip_address=context.ip_address if context else None,
                device_id=(context.user_agent or "")[:DEVICE_ID_MAX_LENGTH] if context else None,
                location=location,
                details=details or {},
                timestamp=datetime.now(timezone.utc),
            )
            await self._db_client.add_audit_log(entry)
        except Exception as e:
            logger.error(f"[AUDIT ERROR] Failed to write {action_value} for user {user_id}: {e}", exc_info=True)
            return False

        logger.info(f"[AUDIT] {action_value} by user {user_id} from {entry.ip_address}")
        return True
