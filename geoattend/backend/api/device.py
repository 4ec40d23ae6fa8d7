import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status, Request

from ..models.db_models import DeviceBinding, Role, User
from ..services.device_service import DeviceService
from ..services.errors import NotFoundError, ServiceError
from ..tools.clock import utcnow
from ..tools.request_context import RequestContext
from .auth import get_current_user, get_request_context, require_roles
from .dependencies import get_device_service
from .schemas.device import (
    BindingResponse,
    CurrentDevice,
    DeviceBindRequest,
    DeviceBindResponse,
    DeviceInfoResponse,
    DeviceListResponse,
    DeviceUnbindResponse,
    DeviceValidateResponse,
)
from .schemas.user import UserResponse
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/device", tags=["Device Binding"])


def _binding_response(binding: DeviceBinding, platform: Optional[str] = None,
                      user: Optional[User] = None) -> BindingResponse:
    return BindingResponse(
        id=binding.id,
        user_id=binding.user_id,
        bound_at=binding.created_at,
        last_updated=binding.updated_at,
        platform=platform,
        user=UserResponse.model_validate(user) if user else None,
    )


def _current_device(context: RequestContext) -> CurrentDevice:
    # UA sadece kısaltılmış haliyle geri döner.
    return CurrentDevice(platform=context.platform, user_agent=context.user_agent[:100])


@router.post("/bind", status_code=status.HTTP_201_CREATED, response_model=DeviceBindResponse)
@limiter.limit("5/minute")
async def bind_device(
    request: Request,
    bind_request: DeviceBindRequest,
    user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: DeviceService = Depends(get_device_service),
):
    binding = await service.bind(user, bind_request.user_agent, bind_request.platform,
                                 bind_request.additional_entropy, context)
    return DeviceBindResponse(
        message="Device successfully bound to your account",
        binding=_binding_response(binding, platform=str(bind_request.platform), user=user),
    )


@router.get("/info", response_model=DeviceInfoResponse)
async def get_device_info(
    user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: DeviceService = Depends(get_device_service),
):
    binding = await service.get_info(user)
    return DeviceInfoResponse(binding=_binding_response(binding, user=user), current_device=_current_device(context))


@router.delete("/unbind", response_model=DeviceUnbindResponse)
async def unbind_device(
    user_id: Optional[str] = Query(None, alias="userId"),
    admin: User = Depends(require_roles(Role.ADMIN)),
    context: RequestContext = Depends(get_request_context),
    service: DeviceService = Depends(get_device_service),
):
    await service.unbind(admin, user_id, context)
    return DeviceUnbindResponse(
        message="Device binding removed successfully",
        user_id=user_id,
        unbound_at=utcnow(),
    )


@router.get("/list", response_model=DeviceListResponse)
async def list_device_bindings(
    admin: User = Depends(require_roles(Role.ADMIN)),
    service: DeviceService = Depends(get_device_service),
):
    bindings = await service.list_bindings()
    return DeviceListResponse(
        bindings=[_binding_response(b, user=b.user) for b in bindings],
        total=len(bindings),
    )


@router.post("/validate", response_model=DeviceValidateResponse)
async def validate_current_device(
    user: User = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
    service: DeviceService = Depends(get_device_service),
):
    """Checks the requesting device against the stored hash without marking anything."""
    try:
        await service.verify_request_device(user, context)
    except ServiceError as e:
        if e.code == "DEVICE_NOT_BOUND":
            raise NotFoundError("No device binding found.", code=e.code, isValid=False)
        return DeviceValidateResponse(is_valid=False, code=e.code, message=e.message,
                                      current_device=_current_device(context))
    return DeviceValidateResponse(is_valid=True, message="This device matches your registered device",
                                  current_device=_current_device(context))
