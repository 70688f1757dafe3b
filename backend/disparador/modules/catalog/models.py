# disparador/modules/catalog/models.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, ObjectIdStr, PyObjectId

DEFAULT_TEMPLATE_TYPES: List[Dict[str, Any]] = [
    {"slug": "oferta_relampago", "label": "Oferta Relâmpago", "sort_order": 0},
    {"slug": "cupom", "label": "Cupom", "sort_order": 1},
    {"slug": "frete_gratis", "label": "Frete Grátis", "sort_order": 2},
    {"slug": "custom", "label": "Personalizado", "sort_order": 3},
]
TEMPLATE_TYPE_SLUG = r"^[a-z0-9_]+$"

# --- Internal/DB Models ---
class ProductImage(BaseModel):
    file_path: str
    type: Literal["image", "video"] = "image"
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)

class ProductInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    user_id: PyObjectId
    company_id: Optional[PyObjectId] = None
    title: str
    price: str
    old_price: Optional[str] = None
    discount_percent: Optional[int] = None
    coupon: Optional[str] = None
    link: Optional[str] = None
    store: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[str] = None
    valid_until: Optional[datetime] = None
    status: Literal["active", "expired"] = "active"
    images: List[ProductImage] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    def sorted_images(self) -> List[ProductImage]:
        return sorted(self.images, key=lambda image: image.sort_order)

    def generator_data(self) -> Dict[str, Any]:
        return self.model_dump(include={"title", "price", "old_price", "discount_percent", "coupon", "link", "store", "category"})

class MessageTemplateInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    user_id: PyObjectId
    name: str
    template_type: str
    body: str
    cta: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class TemplateTypeInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    user_id: PyObjectId
    slug: str
    label: str
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class ProductImageAPI(BaseModel):
    file_path: str
    type: str
    sort_order: int

    model_config = ConfigDict(from_attributes=True)

class ProductAPI(BaseModel):
    id: ApiId
    title: str
    price: str
    old_price: Optional[str] = None
    discount_percent: Optional[int] = None
    coupon: Optional[str] = None
    link: Optional[str] = None
    store: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[str] = None
    valid_until: Optional[datetime] = None
    status: str
    images: List[ProductImageAPI] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ProductFields(BaseModel):
    """Campos de produto vindos do formulário multipart."""
    title: Optional[str] = None
    price: Optional[str] = None
    old_price: Optional[str] = None
    discount_percent: Optional[int] = None
    coupon: Optional[str] = None
    link: Optional[str] = None
    store: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[str] = None
    valid_until: Optional[datetime] = None
    status: Optional[Literal["active", "expired"]] = None

class TemplateAPI(BaseModel):
    id: ApiId
    name: str
    template_type: str
    body: str
    cta: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class BuiltinTemplateAPI(BaseModel):
    name: str
    template_type: str
    body: str

class TemplateListAPI(BaseModel):
    builtin: List[BuiltinTemplateAPI]
    custom: List[TemplateAPI]

class TemplateCreateAPI(BaseModel):
    name: str = Field(..., min_length=1)
    template_type: str
    body: str = Field(..., min_length=1)
    cta: Optional[str] = None

class TemplateUpdateAPI(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    template_type: Optional[str] = None
    body: Optional[str] = Field(None, min_length=1)
    cta: Optional[str] = None

class GenerateRequestAPI(BaseModel):
    template_body: str = Field(..., min_length=1)
    product_id: Optional[str] = None
    seed: Optional[int] = None

class GenerateResponseAPI(BaseModel):
    message: str

class TemplateTypeAPI(BaseModel):
    id: ApiId
    slug: str
    label: str
    sort_order: int

    model_config = ConfigDict(from_attributes=True)

class TemplateTypeCreateAPI(BaseModel):
    slug: str = Field(..., min_length=1, pattern=TEMPLATE_TYPE_SLUG)
    label: str = Field(..., min_length=1)

class TemplateTypeUpdateAPI(BaseModel):
    slug: Optional[str] = Field(None, min_length=1, pattern=TEMPLATE_TYPE_SLUG)
    label: Optional[str] = Field(None, min_length=1)

class LinkPreviewAPI(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
