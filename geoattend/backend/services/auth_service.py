import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple
from uuid import uuid4

import bcrypt
import jwt
from pydantic import BaseModel, ValidationError

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.db_models import Role, User
from ..models.redis_models import UserSessionRedis
from ..tools.audit_sink import UNKNOWN_SUBJECT, AuditAction, AuditSink
from ..tools.clock import utcnow
from ..tools.request_context import RequestContext
from .errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# bcrypt yalnızca ilk 72 byte'a bakar; daha uzun girdiler hata verir.
BCRYPT_MAX_BYTES = 72


class TokenData(BaseModel):
    """Internal representation of the JWT payload."""
    sub: str
    email: Optional[str] = None
    role: Optional[Role] = None


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user: User, expires_delta: timedelta, now: Optional[datetime] = None) -> str:
    """Verilen kullanıcı ve süre ile yeni bir JWT access token oluşturur."""
    expire = (now or utcnow()) + expires_delta
    payload = {"sub": user.id, "email": user.email, "role": user.role.value, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenData:
    """Raises jwt.PyJWTError or ValidationError for anything that is not a live, well-formed token."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return TokenData.model_validate(payload)


class AuthService:
    """
    Giriş, çıkış ve her istekte kimlik doğrulama.

    Geçerli bir JWT tek başına yetmez: Redis'te `users:<id>` oturumu da bulunmalıdır,
    böylece logout token'ı süresi dolmadan geçersiz kılar.
    """
    def __init__(self, redis_client: RedisClient, db_client: AsyncPostgresClient, audit: AuditSink,
                 clock: Callable[[], datetime] = utcnow, session_ttl: Optional[int] = None):
        self.redis_client = redis_client
        self.db_client = db_client
        self.audit = audit
        self._clock = clock
        self.session_ttl = session_ttl or settings.SESSION_TTL_SECONDS

    async def login(self, email: str, password: str, context: RequestContext) -> Tuple[str, User]:
        logger.info(f"Login attempt for '{email}'.")
        credentials = await self.db_client.get_user_credentials(email)
        if credentials is None or not check_password(password, credentials.password_hash):
            logger.warning(f"Invalid credentials for '{email}'.")
            await self.audit.record(UNKNOWN_SUBJECT, AuditAction.UNAUTHORIZED_ACCESS, context,
                                    details={"reason": "Invalid credentials", "email": email})
            raise AuthenticationError("Invalid email or password.", code="INVALID_CREDENTIALS")

        user = User(**credentials.model_dump(include=set(User.model_fields)))
        now = self._clock()
        session = UserSessionRedis(
            user_data=user,
            session_id=uuid4(),
            session_start_time=now,
            session_end_time=now + timedelta(seconds=self.session_ttl),
        )
        await self.redis_client.save_user_session(session, ttl=self.session_ttl)
        access_token = create_access_token(user, timedelta(seconds=self.session_ttl), now=now)

        await self.audit.record(user.id, AuditAction.LOGIN, context, details={"role": user.role.value})
        logger.info(f"User '{user.id}' ({user.role.value}) logged in.")
        return access_token, user

    async def logout(self, user: User, context: RequestContext):
        await self.redis_client.delete_user_session(user.id)
        await self.audit.record(user.id, AuditAction.LOGOUT, context)
        logger.info(f"Session for user '{user.id}' deleted.")

    async def authenticate(self, credential: Optional[str]) -> User:
        """Token'ı çözer, Redis oturumunu kontrol eder ve güncel User nesnesini döndürür."""
        if not credential:
            raise AuthenticationError("Authentication required.")
        try:
            token_data = decode_access_token(credential)
        except (jwt.PyJWTError, ValidationError) as e:
            logger.warning(f"Token validation error: {e}")
            raise AuthenticationError("Invalid or expired token.", code="INVALID_TOKEN")

        session = await self.redis_client.get_user_session(token_data.sub)
        if session is None:
            logger.warning(f"User '{token_data.sub}' has a valid token but no active session.")
            raise AuthenticationError("Session has ended. Please log in again.", code="SESSION_EXPIRED")
        return session.user_data

    async def require_roles(self, user: User, roles, context: RequestContext) -> User:
        """Audits and rejects users whose role is not in `roles`."""
        if user.role in roles:
            return user
        await self.audit.record(user.id, AuditAction.UNAUTHORIZED_ACCESS, context, details={
            "reason": "Insufficient role",
            "role": user.role.value,
            "required": [r.value for r in roles],
            "path": context.path,
        })
        if set(roles) == {Role.ADMIN}:
            raise AuthorizationError("Administrator privileges required.", code="ADMIN_REQUIRED")
        raise AuthorizationError("You do not have permission to perform this action.", code="ROLE_FORBIDDEN")
