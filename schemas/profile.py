from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")

    @field_validator("phone", mode="before")
    @classmethod
    def empty_phone(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class AddressCreate(BaseModel):
    name: str = Field(min_length=3, max_length=50)
    line1: str = Field(min_length=3, max_length=100)
    line2: Optional[str] = Field(None, min_length=3, max_length=100)
    city: str = Field(min_length=3, max_length=50)
    state: Optional[str] = Field(None, min_length=2, max_length=50)
    country: str = Field(min_length=2, max_length=50)
    postal_code: str = Field(min_length=3, max_length=20)
