# disparador/core/repository.py

from typing import TypeVar, Type, Optional, List, Any, Dict, Tuple, Generic
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorCollection
from bson import ObjectId
from pymongo.errors import DuplicateKeyError
from loguru import logger

from disparador.core.dates import utcnow
from disparador.core.exceptions import DuplicateRecordError

ModelType = TypeVar("ModelType", bound=BaseModel)

class BaseRepository(Generic[ModelType]):
    """Repositório base MongoDB (Motor) que devolve modelos Pydantic validados."""

    model: Type[ModelType]
    collection_name: str

    def __init__(self, db: AsyncIOMotorDatabase):
        if not getattr(self, 'collection_name', None):
            raise AttributeError("Repository subclass must define a 'collection_name'")
        if not getattr(self, 'model', None) or not issubclass(self.model, BaseModel):
            raise AttributeError("Repository subclass must define a Pydantic 'model'")
        self.db = db
        self.collection: AsyncIOMotorCollection = db[self.collection_name]

    @staticmethod
    def _to_objectid(id_str: Any) -> Optional[ObjectId]:
        """Converte input para ObjectId de forma segura, retornando None se inválido."""
        if isinstance(id_str, ObjectId):
            return id_str
        if isinstance(id_str, str) and ObjectId.is_valid(id_str):
            return ObjectId(id_str)
        return None

    def _handle_db_exception(self, e: Exception, operation: str, doc_id: Any = None, query: Optional[Dict] = None):
        """Loga e levanta exceções de banco de dados padronizadas."""
        context = f"op='{operation}' coll='{self.collection_name}'"
        if doc_id:
            context += f" id='{doc_id}'"
        if query:
            context += f" query='{str(query)[:100]}'"
        log_msg = f"DB Error during {context}: {e}"

        if isinstance(e, DuplicateKeyError):
            dup_key_info = (e.details or {}).get('keyValue', {})
            logger.error(f"{log_msg} - Duplicate Key: {dup_key_info}")
            raise DuplicateRecordError(f"Duplicate key error: Field(s) {list(dup_key_info.keys())} must be unique.") from e
        logger.exception(log_msg)
        raise RuntimeError(f"Database error during operation: {operation}") from e

    def _prepare_data_for_db(self, data: Dict) -> Dict:
        prepared = {}
        for key, value in data.items():
            if isinstance(value, Decimal):
                prepared[key] = float(value)
            else:
                prepared[key] = value
        return prepared

    async def get_by_id(self, id: str | ObjectId) -> Optional[ModelType]:
        obj_id = self._to_objectid(id)
        if not obj_id:
            return None
        try:
            document = await self.collection.find_one({"_id": obj_id})
        except Exception as e:
            self._handle_db_exception(e, "get_by_id", obj_id)
        return self.model.model_validate(document) if document else None

    async def get_scoped(self, id: str | ObjectId, **scope: Any) -> Optional[ModelType]:
        """Busca por id restrito ao dono (ex: user_id=..., company_id=...)."""
        obj_id = self._to_objectid(id)
        if not obj_id:
            return None
        return await self.get_by({"_id": obj_id, **scope})

    async def get_by(self, query: Dict[str, Any], sort: Optional[List[Tuple[str, int]]] = None) -> Optional[ModelType]:
        """Busca o PRIMEIRO documento que corresponde a um critério."""
        try:
            document = await self.collection.find_one(query, sort=sort)
        except Exception as e:
            self._handle_db_exception(e, "get_by", query=query)
        return self.model.model_validate(document) if document else None

    async def list_by(
        self,
        query: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[List[Tuple[str, int]]] = None,
    ) -> List[ModelType]:
        """Lista documentos; limit=0 significa sem limite."""
        query = query or {}
        try:
            cursor = self.collection.find(query)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(max(0, skip))
            if limit:
                cursor = cursor.limit(limit)
            documents = await cursor.to_list(length=limit or None)
        except Exception as e:
            self._handle_db_exception(e, "list_by", query=query)
        return [self.model.model_validate(doc) for doc in documents]

    async def create(self, data_in: BaseModel | Dict) -> ModelType:
        if isinstance(data_in, BaseModel):
            data = data_in.model_dump(exclude_unset=False, by_alias=False)
        else:
            data = dict(data_in)
        data = self._prepare_data_for_db(data)

        now = utcnow()
        data.setdefault("created_at", now)
        data.setdefault("updated_at", now)
        data.pop("_id", None)
        data.pop("id", None)

        try:
            result = await self.collection.insert_one(data)
        except Exception as e:
            self._handle_db_exception(e, "create")
        created = await self.get_by_id(result.inserted_id)
        if created is None:
            logger.critical(f"Failed to retrieve document right after insertion. ID: {result.inserted_id}, Collection: {self.collection_name}")
            raise RuntimeError("Failed to retrieve document after creation.")
        return created

    async def update(self, id: str | ObjectId, data_in: BaseModel | Dict) -> Optional[ModelType]:
        """Atualiza um documento existente usando $set."""
        obj_id = self._to_objectid(id)
        if not obj_id:
            return None

        if isinstance(data_in, BaseModel):
            data = data_in.model_dump(exclude_unset=True, by_alias=False)
        else:
            data = dict(data_in)
        data = self._prepare_data_for_db(data)
        for field in ("_id", "id", "created_at"):
            data.pop(field, None)

        if not data:
            return await self.get_by_id(obj_id)
        data["updated_at"] = utcnow()

        try:
            result = await self.collection.update_one({"_id": obj_id}, {"$set": data})
        except Exception as e:
            self._handle_db_exception(e, "update", obj_id)
        if result.matched_count == 0:
            logger.warning(f"Document not found for update: ID {id}, Collection: {self.collection_name}")
            return None
        return await self.get_by_id(obj_id)

    async def delete(self, id: str | ObjectId) -> bool:
        obj_id = self._to_objectid(id)
        if not obj_id:
            return False
        try:
            result = await self.collection.delete_one({"_id": obj_id})
        except Exception as e:
            self._handle_db_exception(e, "delete", obj_id)
        deleted = result.deleted_count > 0
        if deleted:
            logger.info(f"Document deleted: ID {id}, Collection: {self.collection_name}")
        return deleted

    async def delete_many(self, query: Dict[str, Any]) -> int:
        try:
            result = await self.collection.delete_many(query)
        except Exception as e:
            self._handle_db_exception(e, "delete_many", query=query)
        return result.deleted_count

    async def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        try:
            return await self.collection.count_documents(query or {})
        except Exception as e:
            self._handle_db_exception(e, "count", query=query)

    async def set_active_status(self, id: str | ObjectId, is_active: bool) -> Optional[ModelType]:
        """Define o status ativo/inativo (requer campo 'is_active')."""
        logger.info(f"Setting active status to {is_active} for ID {id} in {self.collection_name}")
        return await self.update(id, {"is_active": is_active})
