# disparador/modules/catalog/repository.py
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import ASCENDING, DESCENDING

from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import MessageTemplateInDB, ProductInDB, TemplateTypeInDB

class ProductRepository(BaseRepository[ProductInDB]):
    model = ProductInDB
    collection_name = "products"

    async def list_by_user(self, user_id: ObjectId) -> List[ProductInDB]:
        return await self.list_by({"user_id": user_id}, sort=[("created_at", DESCENDING)])

    async def push_images(self, product_id: ObjectId, images: List[dict]) -> None:
        if not images:
            return
        try:
            await self.collection.update_one({"_id": product_id}, {"$push": {"images": {"$each": images}}})
        except Exception as e:
            self._handle_db_exception(e, "push_images", product_id)

class MessageTemplateRepository(BaseRepository[MessageTemplateInDB]):
    model = MessageTemplateInDB
    collection_name = "message_templates"

    async def list_by_user(self, user_id: ObjectId) -> List[MessageTemplateInDB]:
        return await self.list_by({"user_id": user_id}, sort=[("created_at", DESCENDING)])

    async def reset_type(self, user_id: ObjectId, slug: str, new_slug: str = "custom") -> int:
        try:
            result = await self.collection.update_many(
                {"user_id": user_id, "template_type": slug},
                {"$set": {"template_type": new_slug}},
            )
        except Exception as e:
            self._handle_db_exception(e, "reset_type")
        return result.modified_count

class TemplateTypeRepository(BaseRepository[TemplateTypeInDB]):
    model = TemplateTypeInDB
    collection_name = "template_types"

    async def list_by_user(self, user_id: ObjectId) -> List[TemplateTypeInDB]:
        return await self.list_by({"user_id": user_id}, sort=[("sort_order", ASCENDING)])

    async def get_by_slug(self, user_id: ObjectId, slug: str, exclude_id: Optional[ObjectId] = None) -> Optional[TemplateTypeInDB]:
        query = {"user_id": user_id, "slug": slug}
        if exclude_id:
            query["_id"] = {"$ne": exclude_id}
        return await self.get_by(query)

    async def max_sort_order(self, user_id: ObjectId) -> int:
        last = await self.get_by({"user_id": user_id}, sort=[("sort_order", DESCENDING)])
        return last.sort_order if last else -1

async def get_product_repository(db=Depends(get_database)) -> ProductRepository:
    return ProductRepository(db)

async def get_template_repository(db=Depends(get_database)) -> MessageTemplateRepository:
    return MessageTemplateRepository(db)

async def get_template_type_repository(db=Depends(get_database)) -> TemplateTypeRepository:
    return TemplateTypeRepository(db)
