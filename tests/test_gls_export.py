from io import BytesIO
from pathlib import Path
import sys

import pytest
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from giftcrm.gls_export import (
    GLS_HEADERS,
    SHEET_TITLE,
    NoRecordsToExport,
    export_gls,
    gls_row,
    gls_rows,
    select_gls_records,
)
from giftcrm.workbook_import import import_workbook


def _sheet_values(content: bytes):
    wb = load_workbook(BytesIO(content))
    return wb, [list(row) for row in wb.active.iter_rows(values_only=True)]


def test_only_flagged_records_are_exported():
    records = [
        {"nome": "A", "gls": "1", "indirizzo": "Via X", "civico": "5"},
        {"nome": "B", "gls": ""},
    ]

    rows = gls_rows(records)

    assert len(rows) == 1
    assert rows[0]["NOME DESTINATARIO"] == "A"
    assert rows[0]["INDIRIZZO"] == "Via X 5"
    assert rows[0]["TIPO MERCE"] == "OMAGGIO NATALIZIO"
    assert rows[0]["COLLI"] == "1"


def test_every_persisted_flag_encoding_is_recognized():
    records = [
        {"nome": "string", "gls": "1"},
        {"nome": "int", "gls": 1},
        {"nome": "bool", "gls": True},
        {"nome": "empty", "gls": ""},
        {"nome": "zero", "gls": "0"},
        {"nome": "false", "gls": False},
        {"nome": "missing"},
    ]

    assert [record["nome"] for record in select_gls_records(records)] == ["string", "int", "bool"]


def test_company_name_is_preferred_as_recipient():
    row = gls_row({"nome": "Mario Rossi", "azienda": "Acme", "gls": "1", "telefono": "0432"})
    assert row["NOME DESTINATARIO"] == "Acme"
    assert row["RIFERIMENTO MITTENTE"] == "Mario Rossi"
    assert row["TELEFONO"] == "0432"

    row = gls_row({"nome": "Mario Rossi", "azienda": "  ", "gls": "1"})
    assert row["NOME DESTINATARIO"] == "Mario Rossi"


def test_missing_fields_become_empty_text():
    row = gls_row({"nome": "B", "gls": True, "cap": None})

    assert list(row) == GLS_HEADERS
    assert all(isinstance(value, str) for value in row.values())
    assert row["INDIRIZZO"] == ""
    assert row["CAP"] == ""
    assert row["NOTE SPEDIZIONE"] == ""


def test_address_without_house_number_has_no_trailing_space():
    assert gls_row({"nome": "A", "indirizzo": "Piazza Duomo"})["INDIRIZZO"] == "Piazza Duomo"
    assert gls_row({"nome": "A", "civico": "12"})["INDIRIZZO"] == "12"


def test_no_flagged_records_raises():
    with pytest.raises(NoRecordsToExport, match="Nessun record da esportare per GLS"):
        export_gls([{"nome": "A", "gls": ""}])
    with pytest.raises(NoRecordsToExport):
        export_gls([])


def test_workbook_layout():
    content = export_gls(
        [
            {
                "nome": "Mario Rossi",
                "azienda": "Acme",
                "indirizzo": "Via Roma",
                "civico": "12",
                "localita": "Udine",
                "provincia": "UD",
                "cap": "33100",
                "note": "Citofonare",
                "telefono": "0432 1",
                "gls": "1",
            }
        ]
    )

    wb, values = _sheet_values(content)
    ws = wb.active
    assert ws.title == SHEET_TITLE
    assert values[0] == GLS_HEADERS
    assert values[1] == [
        "Acme",
        "Via Roma 12",
        "Udine",
        "UD",
        "33100",
        "OMAGGIO NATALIZIO",
        "1",
        "Citofonare",
        "Mario Rossi",
        "0432 1",
    ]
    assert ws.column_dimensions["A"].width == 30
    assert ws.column_dimensions["B"].width == 40
    assert ws.column_dimensions["D"].width == 5
    assert ws.column_dimensions["J"].width == 15


def test_exported_workbook_can_be_imported_again():
    content = export_gls(
        [
            {
                "nome": "Mario Rossi",
                "indirizzo": "Via Roma",
                "civico": "12",
                "localita": "Udine",
                "provincia": "UD",
                "cap": "33100",
                "telefono": "0432 1",
                "gls": "1",
            }
        ]
    )

    result = import_workbook(content, "Spedizioni_GLS.xlsx", "clienti")

    assert result["success"] is True
    [record] = result["data"]
    assert record["nome"] == "Mario Rossi"
    assert record["indirizzo"] == "Via Roma"
    assert record["civico"] == "12"
    assert record["localita"] == "Udine"
    assert record["provincia"] == "UD"
    assert record["cap"] == "33100"
    assert record["telefono"] == "0432 1"
    assert record["tipologia"] == "OMAGGIO NATALIZIO"
