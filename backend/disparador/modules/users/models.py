# disparador/modules/users/models.py
from datetime import datetime
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, ObjectIdStr, PyObjectId

# --- Constants ---
USER_ROLES = Literal["superadmin", "admin", "supervisor", "user"]
MANAGEABLE_ROLES = Literal["admin", "supervisor", "user"]

MENU_PERMISSION_LABELS: Dict[str, str] = {
    "dashboard": "Dashboard",
    "whatsapp_connection": "Conexão WhatsApp",
    "whatsapp_groups": "Grupos do WhatsApp",
    "groups": "Grupos",
    "products": "Produtos",
    "templates": "Templates",
    "types": "Tipos de template",
    "campaigns": "Campanhas",
    "settings": "Configurações",
    "invoices": "Faturas",
    "admin_users": "Usuários",
}

def filter_menu_permissions(keys: Optional[List[str]]) -> Optional[List[str]]:
    if keys is None:
        return None
    return [k for k in dict.fromkeys(keys) if k in MENU_PERMISSION_LABELS]

# --- Internal/DB Models ---
class UserInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    email: EmailStr
    name: Optional[str] = None
    hashed_password: str
    role: USER_ROLES = "user"
    company_id: Optional[PyObjectId] = None
    menu_permissions: Optional[List[str]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class UserAPI(BaseModel):
    id: ApiId
    email: EmailStr
    name: Optional[str] = None
    role: USER_ROLES
    company_id: Optional[ObjectIdStr] = None
    menu_permissions: Optional[List[str]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class AdminUserCreateAPI(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = None
    role: MANAGEABLE_ROLES = "user"
    company_id: Optional[str] = None
    menu_permissions: Optional[List[str]] = None

class AdminUserUpdateAPI(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    name: Optional[str] = None
    role: Optional[MANAGEABLE_ROLES] = None
    menu_permissions: Optional[List[str]] = None

class MenuKeyAPI(BaseModel):
    key: str
    label: str
