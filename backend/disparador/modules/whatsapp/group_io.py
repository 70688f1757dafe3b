# disparador/modules/whatsapp/group_io.py
# Importação/exportação da lista de grupos (CSV separado por ";" e planilhas XLSX).

import io
import re
import zipfile
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from loguru import logger
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel

from disparador.core.exceptions import AppError

INVITE_LINK_PREFIX = "https://chat.whatsapp.com/"
EXPORT_HEADER = ["waId", "nome", "participantes", "origem"]
EXPORT_SHEET = "Grupos"

_WA_ID_HEADER = re.compile(r"waid|wa_id|id|grupo")
_NAME_HEADER = re.compile(r"nome|name")

class ImportedRow(BaseModel):
    wa_id: str
    name: Optional[str] = None

def normalize_wa_id(value: object) -> str:
    """Número/JID do grupo -> "<dígitos>@g.us". Links de convite não são resolvidos."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text or text.startswith(INVITE_LINK_PREFIX):
        return ""
    if "@" not in text:
        digits = re.sub(r"\D", "", text)
        return f"{digits}@g.us" if digits else ""
    return text

def _find_column(columns: Sequence[str], pattern: re.Pattern) -> int:
    for index, column in enumerate(columns):
        if pattern.search(column):
            return index
    return -1

def _rows_from_frame(df: pd.DataFrame) -> List[ImportedRow]:
    """Cabeçalho reconhecido por nome; sem coluna reconhecida usa as colunas 0 e 1."""
    if df.empty or len(df.columns) == 0:
        return []
    df = df.fillna("")
    df.columns = df.columns.astype(str).str.strip().str.lower()

    wa_index = _find_column(df.columns, _WA_ID_HEADER)
    name_index = _find_column(df.columns, _NAME_HEADER)
    wa_index = wa_index if wa_index >= 0 else 0
    name_index = name_index if name_index >= 0 else 1

    wa_ids = df.iloc[:, wa_index].astype(str).str.strip()
    if name_index < len(df.columns):
        names = df.iloc[:, name_index].astype(str).str.strip()
    else:
        names = pd.Series("", index=df.index)

    return [
        ImportedRow(wa_id=wa_id, name=name or None)
        for wa_id, name in zip(wa_ids, names)
        if wa_id
    ]

def parse_csv(content: bytes) -> List[ImportedRow]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    sample = text[:1024]
    sep = ";" if sample.count(";") > sample.count(",") else ","
    try:
        df = pd.read_csv(io.StringIO(text), sep=sep, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        raise AppError("CSV inválido") from e
    return _rows_from_frame(df)

def parse_xlsx(content: bytes) -> List[ImportedRow]:
    try:
        df = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, engine="openpyxl")
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as e:
        logger.warning(f"Group import: unreadable spreadsheet ({e})")
        raise AppError("Planilha inválida ou corrompida") from e
    return _rows_from_frame(df)

def parse_group_file(filename: str, content: bytes) -> List[ImportedRow]:
    lower = (filename or "").lower()
    if lower.endswith(".csv"):
        return parse_csv(content)
    if lower.endswith(".xlsx"):
        return parse_xlsx(content)
    raise AppError("Formato não suportado. Envie um arquivo .csv ou .xlsx")

def _export_frame(rows: Iterable[Sequence[object]]) -> pd.DataFrame:
    # object mantém contagens inteiras ao lado de valores vazios
    return pd.DataFrame(list(rows), columns=EXPORT_HEADER, dtype=object)

def export_groups_csv(rows: Iterable[Sequence[object]]) -> str:
    """CSV com BOM (Excel) e ";" como separador."""
    content = _export_frame(rows).to_csv(sep=";", index=False, lineterminator="\n", na_rep="")
    return "\ufeff" + content

def export_groups_xlsx(rows: Iterable[Sequence[object]]) -> bytes:
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        _export_frame(rows).to_excel(writer, sheet_name=EXPORT_SHEET, index=False)
    return output.getvalue()
