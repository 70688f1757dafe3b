# disparador/modules/catalog/services.py
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends, UploadFile
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import get_database
from disparador.core.exceptions import AppError, NotFoundError
from disparador.core.uploads import remove_upload, save_company_upload
from .generator import DEFAULT_TEMPLATES, generate_message
from .models import (
    DEFAULT_TEMPLATE_TYPES, GenerateRequestAPI, MessageTemplateInDB, ProductFields, ProductImage,
    ProductInDB, TemplateCreateAPI, TemplateListAPI, TemplateTypeCreateAPI, TemplateTypeInDB,
    TemplateTypeUpdateAPI, TemplateUpdateAPI,
)
from .repository import MessageTemplateRepository, ProductRepository, TemplateTypeRepository

MAX_PRODUCT_FILES = 10
MAX_PRODUCT_FILE_BYTES = 10 * 1024 * 1024

class ProductService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = ProductRepository(db)
        self.log = logger.bind(service="ProductService")

    async def list_products(self, user_id: ObjectId) -> List[ProductInDB]:
        products = await self.repo.list_by_user(user_id)
        for product in products:
            product.images = product.sorted_images()
        return products

    async def get_product(self, product_id: str, user_id: ObjectId) -> ProductInDB:
        product = await self.repo.get_scoped(product_id, user_id=user_id)
        if not product:
            raise NotFoundError("Produto não encontrado")
        product.images = product.sorted_images()
        return product

    async def _store_images(self, company_id: Optional[ObjectId], files: List[UploadFile], start_order: int) -> List[dict]:
        if len(files) > MAX_PRODUCT_FILES:
            raise AppError(f"Envie no máximo {MAX_PRODUCT_FILES} arquivos")
        images = []
        for index, upload in enumerate(files):
            file_path = await save_company_upload(company_id, upload, prefix="product_", max_bytes=MAX_PRODUCT_FILE_BYTES)
            media_type = "video" if (upload.content_type or "").startswith("video/") else "image"
            images.append(ProductImage(file_path=file_path, type=media_type, sort_order=start_order + index).model_dump())
        return images

    async def create_product(
        self, user_id: ObjectId, company_id: Optional[ObjectId], fields: ProductFields, files: List[UploadFile]
    ) -> ProductInDB:
        if not fields.title or not fields.price:
            raise AppError("Título e preço são obrigatórios")
        data = fields.model_dump(exclude_none=True)
        data.setdefault("status", "active")
        data.update({"user_id": user_id, "company_id": company_id})
        data["images"] = await self._store_images(company_id, files, 0)
        product = await self.repo.create(data)
        self.log.info(f"Product {product.id} created by user {user_id} with {len(product.images)} file(s)")
        return product

    async def update_product(
        self, product_id: str, user_id: ObjectId, company_id: Optional[ObjectId], fields: ProductFields, files: List[UploadFile]
    ) -> ProductInDB:
        existing = await self.get_product(product_id, user_id)
        changes = fields.model_dump(exclude_unset=True)
        # Campos opcionais enviados vazios limpam o valor
        for key in ("old_price", "coupon", "link", "store", "category", "tags"):
            if key in changes and not changes[key]:
                changes[key] = None
        for key in ("title", "price", "status"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        if changes:
            await self.repo.update(existing.id, changes)
        if files:
            start = max((image.sort_order for image in existing.images), default=-1) + 1
            await self.repo.push_images(existing.id, await self._store_images(company_id, files, start))
        return await self.get_product(product_id, user_id)

    async def delete_product(self, product_id: str, user_id: ObjectId) -> None:
        product = await self.get_product(product_id, user_id)
        await self.repo.delete(product.id)
        for image in product.images:
            remove_upload(image.file_path)

class TemplateService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = MessageTemplateRepository(db)
        self.product_repo = ProductRepository(db)

    async def list_templates(self, user_id: ObjectId) -> TemplateListAPI:
        custom = await self.repo.list_by_user(user_id)
        return TemplateListAPI.model_validate({"builtin": DEFAULT_TEMPLATES, "custom": custom}, from_attributes=True)

    async def generate(self, user_id: ObjectId, request: GenerateRequestAPI) -> str:
        product_data = None
        if request.product_id:
            product = await self.product_repo.get_scoped(request.product_id, user_id=user_id)
            if product:
                product_data = product.generator_data()
        return generate_message(request.template_body, product_data, request.seed)

    async def get_template(self, template_id: str, user_id: ObjectId) -> MessageTemplateInDB:
        template = await self.repo.get_scoped(template_id, user_id=user_id)
        if not template:
            raise NotFoundError("Template não encontrado")
        return template

    async def create_template(self, user_id: ObjectId, data: TemplateCreateAPI) -> MessageTemplateInDB:
        return await self.repo.create({**data.model_dump(), "user_id": user_id})

    async def update_template(self, template_id: str, user_id: ObjectId, data: TemplateUpdateAPI) -> MessageTemplateInDB:
        template = await self.get_template(template_id, user_id)
        return await self.repo.update(template.id, data)

    async def delete_template(self, template_id: str, user_id: ObjectId) -> None:
        template = await self.get_template(template_id, user_id)
        await self.repo.delete(template.id)

class TemplateTypeService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = TemplateTypeRepository(db)
        self.template_repo = MessageTemplateRepository(db)

    async def list_types(self, user_id: ObjectId) -> List[TemplateTypeInDB]:
        types = await self.repo.list_by_user(user_id)
        if not types:
            for default in DEFAULT_TEMPLATE_TYPES:
                await self.repo.create({**default, "user_id": user_id})
            types = await self.repo.list_by_user(user_id)
        return types

    async def create_type(self, user_id: ObjectId, data: TemplateTypeCreateAPI) -> TemplateTypeInDB:
        if await self.repo.get_by_slug(user_id, data.slug):
            raise AppError("Já existe um tipo com este slug")
        sort_order = await self.repo.max_sort_order(user_id) + 1
        return await self.repo.create({"user_id": user_id, "slug": data.slug, "label": data.label, "sort_order": sort_order})

    async def _get_type(self, type_id: str, user_id: ObjectId) -> TemplateTypeInDB:
        existing = await self.repo.get_scoped(type_id, user_id=user_id)
        if not existing:
            raise NotFoundError("Tipo não encontrado")
        return existing

    async def update_type(self, type_id: str, user_id: ObjectId, data: TemplateTypeUpdateAPI) -> TemplateTypeInDB:
        existing = await self._get_type(type_id, user_id)
        if data.slug and await self.repo.get_by_slug(user_id, data.slug, exclude_id=existing.id):
            raise AppError("Já existe um tipo com este slug")
        return await self.repo.update(existing.id, data)

    async def delete_type(self, type_id: str, user_id: ObjectId) -> None:
        existing = await self._get_type(type_id, user_id)
        await self.repo.delete(existing.id)
        await self.template_repo.reset_type(user_id, existing.slug)

async def get_product_service(db=Depends(get_database)) -> ProductService:
    return ProductService(db)

async def get_template_service(db=Depends(get_database)) -> TemplateService:
    return TemplateService(db)

async def get_template_type_service(db=Depends(get_database)) -> TemplateTypeService:
    return TemplateTypeService(db)
