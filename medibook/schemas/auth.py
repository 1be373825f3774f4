from pydantic import EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime

from ..core.security import UserRole
from .common import CamelModel

class UserRegister(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    role: UserRole = UserRole.PATIENT
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    specialization: Optional[str] = Field(None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not any(c.isdigit() for c in v) or not any(c.isalpha() for c in v):
            raise ValueError("Password must contain letters and digits")
        return v

    @field_validator("role")
    @classmethod
    def no_self_service_admins(cls, v: UserRole) -> UserRole:
        if v == UserRole.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered")
        return v

class UserLogin(CamelModel):
    email: EmailStr
    password: str

class UserResponse(CamelModel):
    id: int
    email: str
    role: UserRole
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    specialization: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
