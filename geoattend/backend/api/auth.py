import logging
from fastapi import APIRouter, Depends, status, Response, Request

from .schemas.user import LoginRequest, LoginResponse, UserResponse
from ..config.config import settings
from ..models.db_models import Role, User
from ..services.auth_service import AuthService
from ..services.errors import AuthenticationError
from ..tools.audit_sink import UNKNOWN_SUBJECT, AuditAction
from ..tools.request_context import AUTH_COOKIE_NAME, RequestContext
from .dependencies import get_auth_service
from .utilities.limiter import limiter

# Bu modül için özel bir logger oluşturuyoruz.
logger = logging.getLogger(__name__)

# --- Router Kurulumu ---
router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


# --- Korunmuş Rotalar için Bağımlılık ---
async def get_current_user(
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Bearer başlığından ya da cookie'den token'ı alır, doğrular, Redis'te aktif
    bir oturum olup olmadığını kontrol eder ve güncel User nesnesini döndürür.
    """
    try:
        return await auth_service.authenticate(context.credential)
    except AuthenticationError as e:
        await auth_service.audit.record(UNKNOWN_SUBJECT, AuditAction.UNAUTHORIZED_ACCESS, context,
                                        details={"reason": e.message, "path": context.path})
        raise


def require_roles(*roles: Role):
    """Dependency factory: the current user must hold one of `roles`, otherwise 403 (audited)."""
    async def role_checker(
        user: User = Depends(get_current_user),
        context: RequestContext = Depends(get_request_context),
        auth_service: AuthService = Depends(get_auth_service),
    ) -> User:
        return await auth_service.require_roles(user, roles, context)
    return role_checker


# --- API Endpoint'leri ---

@router.post("/login", response_model=LoginResponse)
@limiter.limit("20/minute")
async def login(
    request: Request,
    response: Response,
    login_request: LoginRequest,
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Login endpoint for mobile/web clients. Also sets the http-only auth cookie."""
    access_token, user = await auth_service.login(login_request.email, login_request.password, context)
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=access_token,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=auth_service.session_ttl,
    )
    return LoginResponse(token=access_token, user=UserResponse.model_validate(user))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
async def logout(
    request: Request,
    context: RequestContext = Depends(get_request_context),
    auth_service: AuthService = Depends(get_auth_service),
    current_user: User = Depends(get_current_user),
):
    """User logout, deletes the session from Redis."""
    logger.info(f"User '{current_user.id}' logging out.")
    await auth_service.logout(current_user, context)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(AUTH_COOKIE_NAME)
    return response


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)
