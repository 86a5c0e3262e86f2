from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional

from schemas.users import UserOut


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class RegisterRequest(BaseModel):
    name: str = Field(min_length=3, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")
    password: str = Field(min_length=6, max_length=128)

    @field_validator("phone", mode="before")
    @classmethod
    def empty_phone(cls, v):
        return _blank_to_none(v)


class StoreRegisterRequest(RegisterRequest):
    store_id: int
    store_role: Literal["store_admin", "store_manager", "store_staff"]


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)  # email or phone
    password: str = Field(min_length=6)
    store_id: Optional[int] = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthOut(BaseModel):
    user: UserOut
    token: TokenPair


class ForgotPasswordRequest(BaseModel):
    identifier: str = Field(min_length=1)


class VerifyOtpRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)


class ResetPasswordRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)
    new_password: str = Field(min_length=6, max_length=128)


class RefreshTokenRequest(BaseModel):
    refresh_token: str
