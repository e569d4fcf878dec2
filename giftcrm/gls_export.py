from __future__ import annotations

import logging
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from giftcrm.models import is_flag_set

logger = logging.getLogger(__name__)

SHEET_TITLE = "Spedizioni GLS"
EXPORT_FILENAME = "Spedizioni_GLS.xlsx"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MERCHANDISE_LABEL = "OMAGGIO NATALIZIO"
PACKAGE_COUNT = "1"

# (header, width in characters)
GLS_COLUMNS = [
    ("NOME DESTINATARIO", 30),
    ("INDIRIZZO", 40),
    ("LOCALITA'", 20),
    ("PROV", 5),
    ("CAP", 10),
    ("TIPO MERCE", 20),
    ("COLLI", 5),
    ("NOTE SPEDIZIONE", 30),
    ("RIFERIMENTO MITTENTE", 25),
    ("TELEFONO", 15),
]
GLS_HEADERS = [header for header, _ in GLS_COLUMNS]


class NoRecordsToExport(ValueError):
    def __init__(self, message: str = "Nessun record da esportare per GLS"):
        super().__init__(message)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def select_gls_records(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [record for record in records if is_flag_set(record.get("gls"))]


def gls_row(record: dict[str, Any]) -> dict[str, str]:
    azienda = _text(record.get("azienda"))
    recipient = azienda if azienda.strip() else _text(record.get("nome"))
    address = " ".join(
        part for part in (_text(record.get("indirizzo")).strip(), _text(record.get("civico")).strip()) if part
    )
    return {
        "NOME DESTINATARIO": recipient,
        "INDIRIZZO": address,
        "LOCALITA'": _text(record.get("localita")),
        "PROV": _text(record.get("provincia")),
        "CAP": _text(record.get("cap")),
        "TIPO MERCE": MERCHANDISE_LABEL,
        "COLLI": PACKAGE_COUNT,
        "NOTE SPEDIZIONE": _text(record.get("note")),
        "RIFERIMENTO MITTENTE": _text(record.get("nome")),
        "TELEFONO": _text(record.get("telefono")),
    }


def gls_rows(records: list[dict[str, Any]]) -> list[dict[str, str]]:
    selected = select_gls_records(records)
    if not selected:
        raise NoRecordsToExport()
    return [gls_row(record) for record in selected]


def export_gls(records: list[dict[str, Any]]) -> bytes:
    """Build the courier workbook for every record flagged for GLS shipment."""
    rows = gls_rows(records)

    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = SHEET_TITLE
    worksheet.append(GLS_HEADERS)
    for row in rows:
        worksheet.append([row[header] for header in GLS_HEADERS])
    for col, (_, width) in enumerate(GLS_COLUMNS, start=1):
        worksheet.column_dimensions[get_column_letter(col)].width = width

    buffer = BytesIO()
    workbook.save(buffer)
    logger.info("Exported %d GLS shipment rows", len(rows))
    return buffer.getvalue()
