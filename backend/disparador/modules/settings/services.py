# disparador/modules/settings/services.py
import re
from pathlib import Path
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, UploadFile
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.config import settings
from disparador.core.database import get_database
from disparador.core.dates import utcnow
from disparador.core.exceptions import AppError, NotFoundError
from disparador.modules.companies.repository import CompanyRepository
from .models import (
    DEFAULT_DISPATCH_PRESET, DEFAULT_SYSTEM_TITLE, DISPATCH_PRESETS, MASKED_VALUE,
    BrandingAPI, DispatchSettingsAPI, DispatchSettingsUpdateAPI, RecaptchaPublicAPI,
    SystemSettingsAPI, SystemSettingsUpdateAPI,
)
from .repository import SystemSettingRepository

SECRET_KEYS = ("mercadopago_access_token", "recaptcha_v2_secret_key", "recaptcha_v3_secret_key")
PLAIN_KEYS = ("mercadopago_public_key", "recaptcha_version", "recaptcha_v2_site_key", "recaptcha_v3_site_key")
SYSTEM_DEFAULTS = {"trial_days": "0", "pix_expiration_minutes": "30", "recaptcha_version": "off"}

BRANDING_FILES: Dict[str, Dict[str, Any]] = {
    "logo": {"base": "logo", "exts": ("svg", "webp", "png", "jpg", "jpeg"), "default": "png", "max_bytes": 5 * 1024 * 1024},
    "logo-dark": {"base": "logo-dark", "exts": ("svg", "webp", "png", "jpg", "jpeg"), "default": "png", "max_bytes": 5 * 1024 * 1024},
    "favicon": {"base": "favicon", "exts": ("ico", "png"), "default": "ico", "max_bytes": 512 * 1024},
    "icon": {"base": "icon", "exts": ("svg", "webp", "png", "jpg", "jpeg"), "default": "png", "max_bytes": 512 * 1024},
}

def resolve_dispatch_settings(stored: Optional[Dict[str, Any]]) -> DispatchSettingsAPI:
    """Valor gravado pela empresa, senão o valor do preset."""
    stored = stored or {}
    preset = stored.get("preset") if stored.get("preset") in DISPATCH_PRESETS else DEFAULT_DISPATCH_PRESET
    base = DISPATCH_PRESETS[preset]

    def pick(field: str) -> int:
        value = stored.get(field)
        return int(value) if isinstance(value, (int, float)) else base[field]

    return DispatchSettingsAPI(
        preset=preset,
        delay_min_sec=pick("delay_min_sec"),
        delay_max_sec=pick("delay_max_sec"),
        batch_size=pick("batch_size"),
        pause_between_batches_sec=pick("pause_between_batches_sec"),
        estimated_per_hour=base["estimated_per_hour"],
        api_terms_accepted_at=stored.get("api_terms_accepted_at"),
    )

class SettingsService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.setting_repo = SystemSettingRepository(db)
        self.company_repo = CompanyRepository(db)
        self.log = logger.bind(service="SettingsService")

    # --- Key/value ---
    async def get_setting(self, key: str) -> Optional[str]:
        return await self.setting_repo.get_value(key)

    async def set_setting(self, key: str, value: str) -> None:
        await self.setting_repo.set_value(key, value)

    async def get_int_setting(self, key: str, default: int) -> int:
        raw = await self.get_setting(key)
        try:
            return int(raw) if raw not in (None, "") else default
        except ValueError:
            self.log.warning(f"Setting '{key}' has non-integer value '{raw}', using {default}")
            return default

    # --- Dispatch (por empresa) ---
    async def get_dispatch_settings(self, company_id: ObjectId) -> DispatchSettingsAPI:
        company = await self.company_repo.get_by_id(company_id)
        if not company:
            raise NotFoundError("Empresa não encontrada")
        return resolve_dispatch_settings(company.dispatch_settings)

    async def set_dispatch_settings(self, company_id: ObjectId, data: DispatchSettingsUpdateAPI) -> DispatchSettingsAPI:
        company = await self.company_repo.get_by_id(company_id)
        if not company:
            raise NotFoundError("Empresa não encontrada")
        stored = dict(company.dispatch_settings or {})
        preset = data.preset or stored.get("preset") or DEFAULT_DISPATCH_PRESET
        if preset not in DISPATCH_PRESETS:
            preset = DEFAULT_DISPATCH_PRESET
        base = DISPATCH_PRESETS[preset]

        payload: Dict[str, Any] = {"preset": preset}
        for field in ("delay_min_sec", "delay_max_sec", "batch_size", "pause_between_batches_sec"):
            new_value = getattr(data, field)
            if new_value is not None:
                payload[field] = new_value
            elif data.preset is not None:
                # Trocar de preset descarta os valores customizados anteriores
                payload[field] = base[field]
            else:
                payload[field] = stored.get(field, base[field])

        if payload["delay_min_sec"] > payload["delay_max_sec"]:
            raise AppError("O delay mínimo não pode ser maior que o delay máximo.")

        payload["api_terms_accepted_at"] = utcnow() if data.accept_api_terms else stored.get("api_terms_accepted_at")
        await self.company_repo.update(company_id, {"dispatch_settings": payload})
        self.log.info(f"Dispatch settings updated for company {company_id}: preset={preset}")
        return resolve_dispatch_settings(payload)

    # --- Sistema (superadmin) ---
    async def get_system_settings(self) -> SystemSettingsAPI:
        values: Dict[str, str] = {}
        for key in SECRET_KEYS:
            values[key] = MASKED_VALUE if await self.get_setting(key) else ""
        for key in PLAIN_KEYS + tuple(SYSTEM_DEFAULTS) + ("system_title",):
            stored = await self.get_setting(key)
            if stored is not None:
                values[key] = stored
        return SystemSettingsAPI(**values)

    async def update_system_settings(self, data: SystemSettingsUpdateAPI) -> None:
        updates = data.model_dump(exclude_unset=True, exclude_none=True)
        if "trial_days" in updates:
            updates["trial_days"] = str(self._bounded_int(updates["trial_days"], 0, 365, "trial_days"))
        if "pix_expiration_minutes" in updates:
            updates["pix_expiration_minutes"] = str(
                self._bounded_int(updates["pix_expiration_minutes"], 30, 43200, "pix_expiration_minutes")
            )
        for key, value in updates.items():
            # O front devolve o valor mascarado quando o segredo não foi alterado
            if key in SECRET_KEYS and value == MASKED_VALUE:
                continue
            await self.set_setting(key, str(value))
        self.log.info(f"System settings updated: {sorted(updates)}")

    @staticmethod
    def _bounded_int(value: Any, minimum: int, maximum: int, field: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise AppError(f"Valor inválido para {field}")
        if number < minimum or number > maximum:
            raise AppError(f"{field} deve estar entre {minimum} e {maximum}")
        return number

    async def recaptcha_public(self) -> RecaptchaPublicAPI:
        version = await self.get_setting("recaptcha_version") or "off"
        if version not in ("v2", "v3"):
            return RecaptchaPublicAPI(enabled=False)
        site_key = await self.get_setting(f"recaptcha_{version}_site_key")
        if not site_key:
            return RecaptchaPublicAPI(enabled=False)
        return RecaptchaPublicAPI(enabled=True, version=version, site_key=site_key)

    # --- Branding ---
    @staticmethod
    def logotipos_dir() -> Path:
        return Path(settings.PUBLIC_DIR) / "logotipos"

    async def get_branding(self) -> BrandingAPI:
        directory = self.logotipos_dir()

        def find(kind: str) -> Optional[str]:
            file_rule = BRANDING_FILES[kind]
            for ext in file_rule["exts"]:
                name = f"{file_rule['base']}.{ext}"
                if (directory / name).is_file():
                    return f"/public/logotipos/{name}"
            return None

        return BrandingAPI(
            system_title=await self.get_setting("system_title") or DEFAULT_SYSTEM_TITLE,
            logo_url=find("logo"),
            logo_dark_url=find("logo-dark"),
            favicon_url=find("favicon"),
            icon_url=find("icon"),
        )

    async def save_branding_file(self, kind: str, upload: UploadFile) -> str:
        file_rule = BRANDING_FILES.get(kind)
        if file_rule is None:
            raise NotFoundError("Tipo de arquivo de marca desconhecido")
        if not upload.filename:
            raise AppError("Arquivo não enviado")
        if not (upload.content_type or "").startswith("image/"):
            raise AppError("Apenas imagens são permitidas")

        content = await upload.read()
        if len(content) > file_rule["max_bytes"]:
            raise AppError(f"Arquivo muito grande (máximo {file_rule['max_bytes'] // 1024} KB)")

        pattern = "|".join(file_rule["exts"])
        match = re.search(rf"\.({pattern})$", upload.filename, re.IGNORECASE)
        ext = match.group(1).lower() if match else file_rule["default"]
        filename = f"{file_rule['base']}.{ext}"

        directory = self.logotipos_dir()
        directory.mkdir(parents=True, exist_ok=True)
        (directory / filename).write_bytes(content)
        for other_ext in file_rule["exts"]:
            other = directory / f"{file_rule['base']}.{other_ext}"
            if other.name != filename and other.is_file():
                other.unlink()
        self.log.success(f"Branding file '{kind}' saved as {filename}")
        return f"/public/logotipos/{filename}"

async def get_settings_service(db=Depends(get_database)) -> SettingsService:
    return SettingsService(db)
