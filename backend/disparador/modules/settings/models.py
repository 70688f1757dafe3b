# disparador/modules/settings/models.py
from datetime import datetime
from typing import Dict, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from disparador.core.dates import utcnow
from disparador.models.api_common import PyObjectId

DISPATCH_PRESET = Literal["seguro", "equilibrado", "rapido"]
DEFAULT_DISPATCH_PRESET = "seguro"

DISPATCH_PRESETS: Dict[str, Dict[str, int]] = {
    "seguro": {"delay_min_sec": 12, "delay_max_sec": 25, "batch_size": 15, "pause_between_batches_sec": 120, "estimated_per_hour": 120},
    "equilibrado": {"delay_min_sec": 8, "delay_max_sec": 15, "batch_size": 20, "pause_between_batches_sec": 90, "estimated_per_hour": 180},
    "rapido": {"delay_min_sec": 5, "delay_max_sec": 10, "batch_size": 25, "pause_between_batches_sec": 60, "estimated_per_hour": 240},
}

MASKED_VALUE = "••••••••"
DEFAULT_SYSTEM_TITLE = "Painel de disparos WhatsApp"

# --- Internal/DB Models ---
class SystemSettingInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    key: str
    value: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- Dispatch ---
class DispatchSettingsAPI(BaseModel):
    """Configuração resolvida de delay/lote usada pelos disparos."""
    preset: DISPATCH_PRESET
    delay_min_sec: int
    delay_max_sec: int
    batch_size: int
    pause_between_batches_sec: int
    estimated_per_hour: int
    api_terms_accepted_at: Optional[datetime] = None

class DispatchSettingsUpdateAPI(BaseModel):
    preset: Optional[DISPATCH_PRESET] = None
    delay_min_sec: Optional[int] = Field(None, ge=1, le=60)
    delay_max_sec: Optional[int] = Field(None, ge=1, le=120)
    batch_size: Optional[int] = Field(None, ge=1, le=100)
    pause_between_batches_sec: Optional[int] = Field(None, ge=0, le=600)
    accept_api_terms: Optional[bool] = None

# --- System / Branding ---
class SystemSettingsAPI(BaseModel):
    mercadopago_access_token: str = ""
    mercadopago_public_key: str = ""
    system_title: str = DEFAULT_SYSTEM_TITLE
    trial_days: str = "0"
    pix_expiration_minutes: str = "30"
    recaptcha_version: str = "off"
    recaptcha_v2_site_key: str = ""
    recaptcha_v2_secret_key: str = ""
    recaptcha_v3_site_key: str = ""
    recaptcha_v3_secret_key: str = ""

class SystemSettingsUpdateAPI(BaseModel):
    mercadopago_access_token: Optional[str] = None
    mercadopago_public_key: Optional[str] = None
    system_title: Optional[str] = Field(None, min_length=1, max_length=80)
    trial_days: Optional[Union[int, str]] = None
    pix_expiration_minutes: Optional[Union[int, str]] = None
    recaptcha_version: Optional[Literal["off", "v2", "v3"]] = None
    recaptcha_v2_site_key: Optional[str] = None
    recaptcha_v2_secret_key: Optional[str] = None
    recaptcha_v3_site_key: Optional[str] = None
    recaptcha_v3_secret_key: Optional[str] = None

class BrandingAPI(BaseModel):
    system_title: str
    logo_url: Optional[str] = None
    logo_dark_url: Optional[str] = None
    favicon_url: Optional[str] = None
    icon_url: Optional[str] = None

class BrandingTitleAPI(BaseModel):
    system_title: str = Field(..., min_length=1, max_length=80)

class BrandingUploadAPI(BaseModel):
    url: str

class RecaptchaPublicAPI(BaseModel):
    enabled: bool
    version: Optional[Literal["v2", "v3"]] = None
    site_key: Optional[str] = None
