# disparador/models/api_common.py

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, List, Optional, Union

from bson import ObjectId
from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, Field, PlainSerializer

def _validate_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError(f"Invalid ObjectId: {value!r}")

def _object_id_to_str(value: Any) -> Any:
    return str(value) if isinstance(value, ObjectId) else value

# ObjectId nos modelos *InDB (serializado como str)
PyObjectId = Annotated[ObjectId, BeforeValidator(_validate_object_id), PlainSerializer(str, return_type=str)]
# Ids nos modelos de API
ObjectIdStr = Annotated[str, BeforeValidator(_object_id_to_str)]
# id de resposta: aceita "_id" quando o objeto veio de um modelo InDB
ApiId = Annotated[str, BeforeValidator(_object_id_to_str), Field(validation_alias=AliasChoices("id", "_id"))]

def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

# Valores em reais: Decimal com 2 casas, número no JSON
Money = Annotated[Decimal, AfterValidator(quantize_money), PlainSerializer(float, return_type=float, when_used="json")]

class StatusResponse(BaseModel):
    """Resposta genérica indicando o status de uma operação."""
    status: str = Field("ok", description="Status geral (ex: 'ok', 'accepted')")
    message: Optional[str] = None

class DetailResponse(BaseModel):
    detail: str = Field(..., description="Mensagem detalhada do erro.")

class ErrorDetail(BaseModel):
    msg: str
    type: Optional[str] = None
    loc: Optional[List[Union[str, int]]] = None

class ValidationErrorResponse(BaseModel):
    """Resposta para erros de validação (HTTP 422)."""
    detail: str = "Validation Error"
    errors: List[ErrorDetail]

class AcceptedResponse(BaseModel):
    """Resposta para operações aceitas para processamento assíncrono."""
    status: str = "accepted"
    message: str = "Request accepted for processing."
    job_id: Optional[str] = Field(None, description="ID da task Celery.")
