# geoattend/backend/api/schemas/user.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional

from ...models.db_models import Role


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    enrollment_no: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
