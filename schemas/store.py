from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional

from schemas.common import parse_json_field


class AddressIn(BaseModel):
    line1: str
    line2: Optional[str] = ""
    city: str
    state: str
    country: str
    postal_code: str


class AddressPatch(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None


class ContactIn(BaseModel):
    email: EmailStr
    phone: str


class ContactPatch(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class StoreSettings(BaseModel):
    currency: str = "USD"
    tax_rate: float = Field(0.0, ge=0, le=1)
    shipping_fee: float = Field(0.0, ge=0)


class StoreSettingsPatch(BaseModel):
    currency: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0, le=1)
    shipping_fee: Optional[float] = Field(None, ge=0)


class StoreCreate(BaseModel):
    name: str = Field(min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    address: Optional[AddressIn] = None
    contact: Optional[ContactIn] = None
    settings: StoreSettings = StoreSettings()

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("address", "contact", "settings", mode="before")
    @classmethod
    def load_nested(cls, v, info):
        return parse_json_field(v, info.field_name)


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    address: Optional[AddressPatch] = None
    contact: Optional[ContactPatch] = None
    settings: Optional[StoreSettingsPatch] = None
    is_active: Optional[bool] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("address", "contact", "settings", mode="before")
    @classmethod
    def load_nested(cls, v, info):
        return parse_json_field(v, info.field_name)


class StoreOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    logo: Optional[str] = None
    logo_thumbnail: Optional[str] = None
    banner: Optional[str] = None
    banner_thumbnail: Optional[str] = None
    address: Optional[dict] = None
    contact: Optional[dict] = None
    settings: dict
    owner_id: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StaffRoleRequest(BaseModel):
    user_id: int
    role: Literal["store_admin", "store_manager", "store_staff"]


class StaffMemberOut(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    store_role: Optional[str] = None
