# tests/modules/whatsapp/test_group_io.py
import io

import pytest
from openpyxl import Workbook, load_workbook

from disparador.core.exceptions import AppError
from disparador.modules.whatsapp.group_io import (
    export_groups_csv, export_groups_xlsx, normalize_wa_id, parse_csv, parse_group_file, parse_xlsx,
)

def test_normalize_wa_id():
    assert normalize_wa_id("120363-0412 345") == "1203630412345@g.us"
    assert normalize_wa_id("120363041234@g.us") == "120363041234@g.us"
    assert normalize_wa_id("https://chat.whatsapp.com/AbCdEf") == ""
    assert normalize_wa_id(None) == ""
    assert normalize_wa_id("sem números") == ""

def test_parse_csv_with_semicolon_and_headers():
    content = "\ufeffnome;waId\nPromoções;120363001@g.us\nSem id;\n".encode("utf-8")
    rows = parse_csv(content)
    assert [(r.wa_id, r.name) for r in rows] == [("120363001@g.us", "Promoções")]

def test_parse_csv_without_known_headers_uses_first_columns():
    rows = parse_csv(b"a,b\n120363002,Ofertas\n")
    assert rows[0].wa_id == "120363002"
    assert rows[0].name == "Ofertas"

def test_parse_xlsx():
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["waId", "nome"])
    sheet.append([120363003, "Cupons"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    rows = parse_xlsx(buffer.getvalue())
    assert rows[0].wa_id == "120363003"
    assert rows[0].name == "Cupons"

def test_invalid_xlsx_raises():
    with pytest.raises(AppError):
        parse_xlsx(b"not a spreadsheet")

def test_unsupported_extension():
    with pytest.raises(AppError) as exc:
        parse_group_file("grupos.txt", b"x")
    assert ".csv" in exc.value.message

def test_export_csv_has_bom_and_header():
    content = export_groups_csv([("1@g.us", "Grupo", 10, "whatsapp"), ("2@g.us", "Outro", None, "manual")])
    lines = content.lstrip("\ufeff").splitlines()
    assert content.startswith("\ufeff")
    assert lines[0] == "waId;nome;participantes;origem"
    assert lines[2] == "2@g.us;Outro;;manual"
    assert lines[1] == "1@g.us;Grupo;10;whatsapp"

def test_parse_csv_empty_file():
    assert parse_csv(b"") == []

def test_export_xlsx_sheet():
    content = export_groups_xlsx([("1@g.us", "Grupo", 10, "whatsapp"), ("2@g.us", "Outro", None, "manual")])

    sheet = load_workbook(io.BytesIO(content)).active
    values = [list(row) for row in sheet.iter_rows(values_only=True)]
    assert sheet.title == "Grupos"
    assert values[0] == ["waId", "nome", "participantes", "origem"]
    assert values[1] == ["1@g.us", "Grupo", 10, "whatsapp"]
    assert values[2] == ["2@g.us", "Outro", None, "manual"]
