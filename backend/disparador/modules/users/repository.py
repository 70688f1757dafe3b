# disparador/modules/users/repository.py
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import DESCENDING

from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import UserInDB

class UserRepository(BaseRepository[UserInDB]):
    model = UserInDB
    collection_name = "users"

    async def get_by_email(self, email: str) -> Optional[UserInDB]:
        return await self.get_by({"email": email.lower()})

    async def list_by_company(self, company_id: Optional[ObjectId]) -> List[UserInDB]:
        query = {"company_id": company_id} if company_id else {}
        return await self.list_by(query, sort=[("created_at", DESCENDING)])

    async def count_by_company(self, company_id: ObjectId) -> int:
        return await self.count({"company_id": company_id})

# Factory to get repository instance
async def get_user_repository(db=Depends(get_database)) -> UserRepository:
    return UserRepository(db)
