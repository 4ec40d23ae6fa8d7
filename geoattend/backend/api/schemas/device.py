# geoattend/backend/api/schemas/device.py
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, List, Optional

from .user import UserResponse

_CAMEL = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class DeviceBindRequest(BaseModel):
    """
    Client-declared device attributes. Kept loose on purpose: length and platform
    rules are enforced by the service so failures are audited as DEVICE_BIND_FAIL.
    """
    model_config = _CAMEL

    user_agent: Optional[Any] = None
    platform: Optional[Any] = None
    additional_entropy: Optional[str] = None


class BindingResponse(BaseModel):
    model_config = _CAMEL

    id: str
    user_id: str
    bound_at: datetime
    last_updated: datetime
    platform: Optional[str] = None
    user: Optional[UserResponse] = None


class DeviceBindResponse(BaseModel):
    model_config = _CAMEL

    success: bool = True
    message: str
    binding: BindingResponse


class CurrentDevice(BaseModel):
    model_config = _CAMEL

    platform: str
    user_agent: str


class DeviceInfoResponse(BaseModel):
    model_config = _CAMEL

    binding: BindingResponse
    current_device: CurrentDevice
    status: str = "bound"


class DeviceUnbindResponse(BaseModel):
    model_config = _CAMEL

    success: bool = True
    message: str
    user_id: str
    unbound_at: datetime


class DeviceListResponse(BaseModel):
    model_config = _CAMEL

    bindings: List[BindingResponse]
    total: int


class DeviceValidateResponse(BaseModel):
    model_config = _CAMEL

    is_valid: bool
    code: Optional[str] = None
    message: str
    current_device: CurrentDevice
