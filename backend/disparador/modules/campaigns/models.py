# disparador/modules/campaigns/models.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, ObjectIdStr, PyObjectId

CAMPAIGN_STATUS = Literal["draft", "queued", "sending", "sent", "failed", "paused"]
REPEAT_RULE = Literal["none", "daily", "weekly"]

# --- Internal/DB Models ---
class CampaignTarget(BaseModel):
    group_id: PyObjectId

    model_config = ConfigDict(arbitrary_types_allowed=True)

class CampaignInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    user_id: PyObjectId
    company_id: PyObjectId
    session_id: PyObjectId
    title: Optional[str] = None
    message_text: str
    link_url: Optional[str] = None
    image_path: Optional[str] = None
    product_id: Optional[PyObjectId] = None
    template_id: Optional[PyObjectId] = None
    status: CAMPAIGN_STATUS = "draft"
    scheduled_at: Optional[datetime] = None
    repeat_rule: Optional[Literal["daily", "weekly"]] = None
    mention_all: bool = False
    targets: List[CampaignTarget] = []
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class CampaignTargetAPI(BaseModel):
    group_id: ObjectIdStr
    group: Optional[Dict[str, Any]] = None

class CampaignAPI(BaseModel):
    id: ApiId
    user_id: ObjectIdStr
    session_id: ObjectIdStr
    title: Optional[str] = None
    message_text: str
    link_url: Optional[str] = None
    image_path: Optional[str] = None
    product_id: Optional[ObjectIdStr] = None
    template_id: Optional[ObjectIdStr] = None
    status: str
    scheduled_at: Optional[datetime] = None
    repeat_rule: Optional[str] = None
    mention_all: bool = False
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime
    targets: List[CampaignTargetAPI] = []
    product: Optional[Dict[str, Any]] = None

class CampaignCreatedAPI(CampaignAPI):
    job_id: Optional[str] = None

class CampaignsPerDayAPI(BaseModel):
    used_today: int
    limit: int

class CampaignLimitsAPI(BaseModel):
    campaigns_per_day: CampaignsPerDayAPI
    groups_per_campaign: int

class DeletedCountAPI(BaseModel):
    ok: bool = True
    deleted: int

class CampaignCreateForm(BaseModel):
    """Campos do multipart de criação de campanha."""
    session_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=2)
    message_text: str = Field(..., min_length=1)
    product_id: Optional[str] = None
    template_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    repeat_rule: REPEAT_RULE = "none"
    link_url: Optional[HttpUrl] = None
    group_ids: str = Field(..., min_length=1)
    send_now: bool = False
    mention_all: bool = False

    @field_validator("link_url", mode="before")
    @classmethod
    def _empty_link(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return None if not text or text.lower() in ("null", "undefined") else text

    @field_validator("scheduled_at")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def group_refs(self) -> List[str]:
        return [ref.strip() for ref in self.group_ids.split(",") if ref.strip()]
