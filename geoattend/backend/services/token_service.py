import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import uuid4

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Role, SessionToken, User
from ..tools.audit_sink import AuditAction, AuditSink
from ..tools.clock import utcnow
from ..tools.request_context import RequestContext
from .errors import (
    AuthorizationError, InvalidInputError, NotFoundError, TokenClassMismatchError,
    TokenExpiredError, TokenNotFoundError, TokenUsedError,
)

logger = logging.getLogger(__name__)

MIN_TOKEN_TTL_SECONDS = 30
MAX_TOKEN_TTL_SECONDS = 300
DEFAULT_TOKEN_TTL_SECONDS = 60
TOKEN_BYTES = 32

ISSUER_ROLES = (Role.TEACHER, Role.ADMIN)


def generate_token_value() -> str:
    """64 hex karakter, güvenli rastgele kaynaktan."""
    return secrets.token_hex(TOKEN_BYTES)


def resolve_ttl(expires_in_seconds: Any) -> int:
    if expires_in_seconds is None:
        return DEFAULT_TOKEN_TTL_SECONDS
    if isinstance(expires_in_seconds, bool) or not isinstance(expires_in_seconds, int):
        raise InvalidInputError("expiresInSeconds must be an integer.", code="INVALID_EXPIRY")
    if not MIN_TOKEN_TTL_SECONDS <= expires_in_seconds <= MAX_TOKEN_TTL_SECONDS:
        raise InvalidInputError(
            f"expiresInSeconds must be between {MIN_TOKEN_TTL_SECONDS} and {MAX_TOKEN_TTL_SECONDS}.",
            code="INVALID_EXPIRY",
        )
    return expires_in_seconds


def validate_session_token(token: Optional[SessionToken], class_id: str, now: datetime) -> SessionToken:
    """
    Checks a token read under lock inside the attendance transaction.
    Order: not found, already used, expired, wrong class. Each raises a distinct TokenError.
    """
    if token is None:
        raise TokenNotFoundError()
    if token.used:
        raise TokenUsedError()
    if now > token.expires_at:
        raise TokenExpiredError()
    if token.class_id != class_id:
        raise TokenClassMismatchError()
    return token


class TokenService:
    """
    Öğretmenin bir ders için kısa ömürlü, tek kullanımlık yoklama token'ı üretmesi.
    """
    def __init__(self, db_client: AsyncPostgresClient, audit: AuditSink, clock: Callable[[], datetime] = utcnow):
        self.db_client = db_client
        self.audit = audit
        self._clock = clock

    async def issue(self, issuer: User, class_id: str, expires_in_seconds: Any,
                    context: RequestContext) -> SessionToken:
        if issuer.role not in ISSUER_ROLES:
            raise AuthorizationError("Only teachers can issue attendance tokens.", code="ROLE_FORBIDDEN")
        if not class_id or not isinstance(class_id, str):
            raise InvalidInputError("classId is required.")
        ttl = resolve_ttl(expires_in_seconds)

        class_info = await self.db_client.get_class_by_id(class_id)
        if class_info is None:
            raise NotFoundError("Class not found.", code="CLASS_NOT_FOUND")
        # Admin her ders için token üretebilir; öğretmen sadece kendi dersi için.
        if issuer.role == Role.TEACHER and class_info.teacher_id != issuer.id:
            logger.warning(f"Teacher '{issuer.id}' tried to issue a token for class '{class_id}' they do not teach.")
            await self.audit.record(issuer.id, AuditAction.UNAUTHORIZED_ACCESS, context,
                                    details={"reason": "Class not owned", "classId": class_id})
            raise AuthorizationError("You can only issue tokens for your own classes.", code="CLASS_NOT_OWNED")

        now = self._clock()
        purged = await self.db_client.purge_expired_session_tokens(now, class_id=class_id)
        if purged:
            logger.info(f"Purged {purged} expired tokens for class '{class_id}'.")

        token = await self.db_client.add_session_token(SessionToken(
            id=str(uuid4()),
            class_id=class_id,
            token=generate_token_value(),
            expires_at=now + timedelta(seconds=ttl),
            used=False,
            created_at=now,
        ))
        await self.audit.record(issuer.id, AuditAction.TOKEN_ISSUED, context,
                                details={"classId": class_id, "tokenId": token.id, "expiresInSeconds": ttl})
        logger.info(f"Token issued for class '{class_id}' by '{issuer.id}', valid for {ttl}s.")
        return token
