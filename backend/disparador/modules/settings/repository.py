# disparador/modules/settings/repository.py
from typing import Optional

from fastapi import Depends

from disparador.core.dates import utcnow
from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import SystemSettingInDB

class SystemSettingRepository(BaseRepository[SystemSettingInDB]):
    model = SystemSettingInDB
    collection_name = "system_settings"

    async def get_value(self, key: str) -> Optional[str]:
        setting = await self.get_by({"key": key})
        return setting.value if setting else None

    async def set_value(self, key: str, value: str) -> None:
        now = utcnow()
        try:
            await self.collection.update_one(
                {"key": key},
                {"$set": {"value": value, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except Exception as e:
            self._handle_db_exception(e, "set_value", query={"key": key})

async def get_system_setting_repository(db=Depends(get_database)) -> SystemSettingRepository:
    return SystemSettingRepository(db)
