# disparador/modules/catalog/routers.py
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from pydantic import ValidationError

from disparador.core.exceptions import AppError
from disparador.core.security import CurrentUser, OptionalCompanyId
from disparador.models.api_common import StatusResponse
from .link_preview import fetch_link_preview
from .models import (
    GenerateRequestAPI, GenerateResponseAPI, LinkPreviewAPI, ProductAPI, ProductFields, TemplateAPI,
    TemplateCreateAPI, TemplateListAPI, TemplateTypeAPI, TemplateTypeCreateAPI, TemplateTypeUpdateAPI,
    TemplateUpdateAPI,
)
from .services import (
    ProductService, TemplateService, TemplateTypeService,
    get_product_service, get_template_service, get_template_type_service,
)

products_router = APIRouter()
templates_router = APIRouter()
template_types_router = APIRouter()
link_preview_router = APIRouter()

PRODUCT_FIELDS = tuple(ProductFields.model_fields)

async def product_form(request: Request) -> ProductFields:
    """Campos multipart -> ProductFields. Só as chaves enviadas ficam 'set'; enviada vazia limpa o valor."""
    form = await request.form()
    sent = {}
    for key in PRODUCT_FIELDS:
        if key not in form:
            continue
        value = form.get(key)
        if isinstance(value, str):
            value = value.strip() or None
        sent[key] = value
    try:
        return ProductFields(**sent)
    except ValidationError as e:
        first = e.errors()[0]
        raise AppError(f"Campo inválido: {first['loc'][0]} ({first['msg']})")

# --- Products ---
@products_router.get("", response_model=List[ProductAPI], summary="List products", tags=["Products"])
async def list_products(current_user: CurrentUser, service: ProductService = Depends(get_product_service)):
    return await service.list_products(current_user.id)

@products_router.get("/{product_id}", response_model=ProductAPI, summary="Get product", tags=["Products"])
async def get_product(product_id: str, current_user: CurrentUser, service: ProductService = Depends(get_product_service)):
    return await service.get_product(product_id, current_user.id)

@products_router.post("", response_model=ProductAPI, status_code=status.HTTP_201_CREATED, summary="Create product", tags=["Products"])
async def create_product(
    current_user: CurrentUser,
    company_id: OptionalCompanyId,
    fields: ProductFields = Depends(product_form),
    images: List[UploadFile] = File(default=[]),
    service: ProductService = Depends(get_product_service),
):
    """Cria produto com até 10 imagens/vídeos (multipart, campo `images`)."""
    return await service.create_product(current_user.id, company_id, fields, images)

@products_router.put("/{product_id}", response_model=ProductAPI, summary="Update product", tags=["Products"])
async def update_product(
    product_id: str,
    current_user: CurrentUser,
    company_id: OptionalCompanyId,
    fields: ProductFields = Depends(product_form),
    images: List[UploadFile] = File(default=[]),
    service: ProductService = Depends(get_product_service),
):
    return await service.update_product(product_id, current_user.id, company_id, fields, images)

@products_router.delete("/{product_id}", response_model=StatusResponse, summary="Delete product", tags=["Products"])
async def delete_product(product_id: str, current_user: CurrentUser, service: ProductService = Depends(get_product_service)):
    await service.delete_product(product_id, current_user.id)
    return StatusResponse(message="Produto removido")

# --- Templates ---
@templates_router.get("", response_model=TemplateListAPI, summary="List builtin and custom templates", tags=["Templates"])
async def list_templates(current_user: CurrentUser, service: TemplateService = Depends(get_template_service)):
    return await service.list_templates(current_user.id)

@templates_router.post("/generate", response_model=GenerateResponseAPI, summary="Render a template", tags=["Templates"])
async def generate_message(
    payload: GenerateRequestAPI, current_user: CurrentUser, service: TemplateService = Depends(get_template_service)
):
    return GenerateResponseAPI(message=await service.generate(current_user.id, payload))

@templates_router.post("", response_model=TemplateAPI, status_code=status.HTTP_201_CREATED, tags=["Templates"])
async def create_template(
    payload: TemplateCreateAPI, current_user: CurrentUser, service: TemplateService = Depends(get_template_service)
):
    return await service.create_template(current_user.id, payload)

@templates_router.put("/{template_id}", response_model=TemplateAPI, tags=["Templates"])
async def update_template(
    template_id: str, payload: TemplateUpdateAPI, current_user: CurrentUser,
    service: TemplateService = Depends(get_template_service),
):
    return await service.update_template(template_id, current_user.id, payload)

@templates_router.delete("/{template_id}", response_model=StatusResponse, tags=["Templates"])
async def delete_template(template_id: str, current_user: CurrentUser, service: TemplateService = Depends(get_template_service)):
    await service.delete_template(template_id, current_user.id)
    return StatusResponse(message="Template removido")

# --- Template types ---
@template_types_router.get("", response_model=List[TemplateTypeAPI], tags=["Templates"])
async def list_template_types(current_user: CurrentUser, service: TemplateTypeService = Depends(get_template_type_service)):
    """Lista os tipos do usuário; cria os tipos padrão no primeiro acesso."""
    return await service.list_types(current_user.id)

@template_types_router.post("", response_model=TemplateTypeAPI, status_code=status.HTTP_201_CREATED, tags=["Templates"])
async def create_template_type(
    payload: TemplateTypeCreateAPI, current_user: CurrentUser,
    service: TemplateTypeService = Depends(get_template_type_service),
):
    return await service.create_type(current_user.id, payload)

@template_types_router.put("/{type_id}", response_model=TemplateTypeAPI, tags=["Templates"])
async def update_template_type(
    type_id: str, payload: TemplateTypeUpdateAPI, current_user: CurrentUser,
    service: TemplateTypeService = Depends(get_template_type_service),
):
    return await service.update_type(type_id, current_user.id, payload)

@template_types_router.delete("/{type_id}", response_model=StatusResponse, tags=["Templates"])
async def delete_template_type(
    type_id: str, current_user: CurrentUser, service: TemplateTypeService = Depends(get_template_type_service)
):
    await service.delete_type(type_id, current_user.id)
    return StatusResponse(message="Tipo removido")

# --- Link preview ---
@link_preview_router.get("", response_model=LinkPreviewAPI, summary="Open Graph preview of a URL", tags=["Templates"])
async def link_preview(current_user: CurrentUser, url: str = Query(..., min_length=1)):
    return await fetch_link_preview(url)
