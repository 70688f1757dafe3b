# disparador/core/uploads.py
# Toda mídia enviada fica em UPLOADS_DIR/{company_id}/ e é gravada no banco
# como "uploads/{company_id}/{arquivo}" (servida pelo mount /uploads).

import re
from pathlib import Path
from typing import Optional

from bson import ObjectId
from fastapi import UploadFile
from loguru import logger

from disparador.core.config import settings
from disparador.core.dates import now_ms
from disparador.core.exceptions import AppError

DEFAULT_FOLDER = "_default"

def safe_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.\-_]", "_", name or "arquivo")

def company_upload_dir(company_id: Optional[ObjectId]) -> Path:
    directory = Path(settings.UPLOADS_DIR) / (str(company_id) if company_id else DEFAULT_FOLDER)
    directory.mkdir(parents=True, exist_ok=True)
    return directory

def resolve_upload_path(db_path: str) -> Path:
    """Converte o caminho gravado no banco para o arquivo em disco."""
    relative = db_path.split("uploads/", 1)[-1] if db_path.startswith("uploads/") else db_path
    return Path(settings.UPLOADS_DIR) / relative

async def save_company_upload(
    company_id: Optional[ObjectId],
    upload: UploadFile,
    prefix: str = "",
    max_bytes: int = 10 * 1024 * 1024,
) -> str:
    content = await upload.read()
    if len(content) > max_bytes:
        raise AppError(f"Arquivo muito grande (máximo {max_bytes // (1024 * 1024)} MB)")
    folder = str(company_id) if company_id else DEFAULT_FOLDER
    filename = f"{prefix}{now_ms()}_{safe_filename(upload.filename or '')}"
    (company_upload_dir(company_id) / filename).write_bytes(content)
    logger.debug(f"Upload saved: {folder}/{filename} ({len(content)} bytes)")
    return f"uploads/{folder}/{filename}"

def remove_upload(db_path: Optional[str]) -> None:
    if not db_path:
        return
    path = resolve_upload_path(db_path)
    if path.is_file():
        path.unlink()
