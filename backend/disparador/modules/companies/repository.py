# disparador/modules/companies/repository.py
from typing import Optional

from fastapi import Depends

from disparador.core.config import settings
from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import CompanyInDB

class CompanyRepository(BaseRepository[CompanyInDB]):
    model = CompanyInDB
    collection_name = "companies"

    async def get_by_slug(self, slug: str) -> Optional[CompanyInDB]:
        return await self.get_by({"slug": slug})

    async def get_system_company(self) -> Optional[CompanyInDB]:
        return await self.get_by_slug(settings.SYSTEM_COMPANY_SLUG)

async def get_company_repository(db=Depends(get_database)) -> CompanyRepository:
    return CompanyRepository(db)
