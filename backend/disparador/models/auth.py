# disparador/models/auth.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from disparador.models.api_common import ApiId, ObjectIdStr

class TokenPayload(BaseModel):
    """Claims esperados no JWT."""
    sub: str
    email: Optional[str] = None
    role: Optional[str] = None
    company_id: Optional[str] = None

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    recaptcha_token: Optional[str] = None

class AuthCompany(BaseModel):
    id: ApiId
    name: str
    slug: str

class LoginUser(BaseModel):
    id: ApiId
    email: str
    name: Optional[str] = None
    role: str
    company_id: Optional[ObjectIdStr] = None
    menu_permissions: Optional[List[str]] = None
    company: Optional[AuthCompany] = None

class LoginResponse(Token):
    user: LoginUser

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = None
    company_name: str = Field(..., min_length=2)
    plan_id: str
    recaptcha_token: Optional[str] = None

class RegisterCompany(BaseModel):
    id: ApiId
    name: str

class RegisterResponse(BaseModel):
    id: ApiId
    email: str
    company: RegisterCompany

class BootstrapAdminRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = None

class MeUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)

class SubscriptionSummary(BaseModel):
    trial_ends_at: Optional[datetime] = None
    is_trial_expired: bool = False
    has_active_paid_access: bool = False
    current_period_end: Optional[datetime] = None
    billing_day: Optional[int] = None

class MeCompany(AuthCompany):
    is_active: bool

class MeResponse(BaseModel):
    id: ApiId
    email: str
    name: Optional[str] = None
    role: str
    company_id: Optional[ObjectIdStr] = None
    menu_permissions: Optional[List[str]] = None
    company: Optional[MeCompany] = None
    subscription: Optional[SubscriptionSummary] = None

class BootstrapAdminResponse(BaseModel):
    id: ApiId
    email: str
    role: str
