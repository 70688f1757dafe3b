# disparador/modules/whatsapp/models.py
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, ObjectIdStr, PyObjectId

SESSION_STATUS = Literal["disconnected", "connected", "qr_pending"]
SEND_STATUS = Literal["pending", "sent", "failed"]
GROUP_SOURCE = Literal["whatsapp", "imported", "manual"]

# --- Internal/DB Models ---
class WhatsappSessionInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    company_id: PyObjectId
    name: str
    is_default: bool = False
    status: SESSION_STATUS = "disconnected"
    wa_push_name: Optional[str] = None
    wa_phone: Optional[str] = None
    wa_jid: Optional[str] = None
    wa_avatar_url: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class WhatsappGroupInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    session_id: PyObjectId
    company_id: PyObjectId
    wa_id: str
    name: str
    participant_count: Optional[int] = None
    avatar_url: Optional[str] = None
    source: GROUP_SOURCE = "whatsapp"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class WhatsappAuthStateInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    session_id: str
    key: str
    value: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class MessageSendInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    company_id: PyObjectId
    user_id: Optional[PyObjectId] = None
    session_id: Optional[PyObjectId] = None
    group_id: PyObjectId
    campaign_id: Optional[PyObjectId] = None
    message_text: str
    link_url: Optional[str] = None
    image_path: Optional[str] = None
    status: SEND_STATUS = "pending"
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class LinkClickInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    message_send_id: PyObjectId
    company_id: Optional[PyObjectId] = None
    link_url: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    clicked_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class SessionAPI(BaseModel):
    id: ApiId
    company_id: ObjectIdStr
    name: str
    is_default: bool
    status: str
    wa_push_name: Optional[str] = None
    wa_phone: Optional[str] = None
    wa_jid: Optional[str] = None
    wa_avatar_url: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    created_at: datetime
    group_count: int = 0

    model_config = ConfigDict(from_attributes=True)

class SessionCreateAPI(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)

class SessionRenameAPI(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)

class ConnectionStatusAPI(BaseModel):
    id: ApiId
    name: str
    is_default: bool
    status: str
    wa_push_name: Optional[str] = None
    wa_phone: Optional[str] = None
    wa_jid: Optional[str] = None
    wa_avatar_url: Optional[str] = None
    last_connected_at: Optional[datetime] = None
    has_qr: bool = False
    restoring: bool = False

class QrCodeAPI(BaseModel):
    qr: Optional[str] = None
    already_connected: bool = False
    message: Optional[str] = None

class GroupAPI(BaseModel):
    id: ApiId
    session_id: ObjectIdStr
    wa_id: str
    name: str
    participant_count: Optional[int] = None
    avatar_url: Optional[str] = None
    source: str
    created_at: datetime
    session_name: Optional[str] = None
    session_is_default: Optional[bool] = None

    model_config = ConfigDict(from_attributes=True)

class GroupRefAPI(BaseModel):
    id: ApiId
    name: str

    model_config = ConfigDict(from_attributes=True)

class GroupSyncResultAPI(BaseModel):
    synced: int
    created: int
    updated: int
    skipped_by_limit: int = 0
    sessions: int = 0
    cached: bool = False
    message: Optional[str] = None

class GroupImportResultAPI(BaseModel):
    imported: int
    updated: int
    skipped: int
    skipped_by_limit: int = 0
    errors: List[str] = []

class SendMessageAPI(BaseModel):
    group_id: Optional[str] = None
    group_ids: Optional[List[str]] = None
    message: str = Field(..., min_length=1)
    mention_all: bool = False

    @model_validator(mode="after")
    def _require_target(self):
        if not self.group_id and not self.group_ids:
            raise ValueError("Informe group_id ou group_ids")
        return self

    def targets(self) -> List[str]:
        ids = list(self.group_ids or [])
        if self.group_id:
            ids.insert(0, self.group_id)
        return list(dict.fromkeys(ids))

class SendResultItemAPI(BaseModel):
    group_id: str
    ok: bool
    send_id: Optional[str] = None
    error: Optional[str] = None

class SendResultAPI(BaseModel):
    sent: int
    failed: int
    results: List[SendResultItemAPI]

# --- Gateway (processo externo) ---
class GatewayEventAPI(BaseModel):
    """Evento de conexão publicado pelo gateway do protocolo WhatsApp."""
    session_id: str
    type: Literal["qr", "open", "close"]
    qr: Optional[str] = None
    status_code: Optional[int] = None
    push_name: Optional[str] = None
    phone: Optional[str] = None
    jid: Optional[str] = None
