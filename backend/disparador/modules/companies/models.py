# disparador/modules/companies/models.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, ObjectIdStr, PyObjectId

SLUG_PATTERN = r"^[a-z0-9-]+$"
DEFAULT_SESSION_NAME = "Conexão Principal"

# --- Internal/DB Models ---
class CompanyInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    name: str
    slug: str
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    is_active: bool = True
    dispatch_settings: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class CompanyAPI(BaseModel):
    id: ApiId
    name: str
    slug: str
    email: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class CompanyRefAPI(BaseModel):
    id: ApiId
    name: str
    slug: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class CompanyCreateAPI(BaseModel):
    name: str = Field(..., min_length=2)
    slug: str = Field(..., min_length=2, pattern=SLUG_PATTERN)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    plan_id: Optional[str] = None

class CompanyUpdateAPI(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    slug: Optional[str] = Field(None, min_length=2, pattern=SLUG_PATTERN)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    document: Optional[str] = None

class CompanyListItemAPI(CompanyAPI):
    subscription: Optional[Dict[str, Any]] = None
    user_count: int = 0

class CompanyDetailAPI(CompanyAPI):
    subscription: Optional[Dict[str, Any]] = None
    users: List[Dict[str, Any]] = []
    sessions: List[Dict[str, Any]] = []
