from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from app.schemas.base import CamelModel


class UserRegister(BaseModel):
    """Schema for user registration"""
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    display_name: Optional[str] = Field(None, max_length=255)


class UserLogin(BaseModel):
    """Schema for user login"""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Schema for token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    orders_linked: int = 0


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class AdminCheckResponse(CamelModel):
    is_admin: bool


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class VerificationSentResponse(BaseModel):
    sent: bool = True


class EmailVerifiedResponse(BaseModel):
    verified: bool = True
    orders_linked: int = 0
