from __future__ import annotations

import logging
import re
from datetime import date, datetime, time
from io import BytesIO
from pathlib import Path
from typing import Any, Callable

from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string, get_column_letter

from giftcrm.models import IMPORT_COLUMNS, encode_flag, is_blank, now_ms

logger = logging.getLogger(__name__)

WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm", ".xltx", ".xltm")
MIN_FILLED_FIELDS = 3
BOOLEAN_FIELDS = {"grappa", "gls"}
RESERVED_FIELDS = {"tipo", "eliminato", "eliminatoIl", "createdAt", "lastUpdate"}
TRUTHY_TEXT = {"1", "true", "yes", "sì", "si", "vero", "x", "✓", "✔", "√"}

# Accepted header spellings per canonical field. Order matters: the substring
# pass returns the first field whose spellings overlap the header.
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "nome": (
        "nome", "nome persona", "nominativo", "nome_persona", "nome cliente",
        "nome e cognome", "persona", "referente", "nome referente", "cliente",
    ),
    "azienda": (
        "azienda", "nome azienda", "società", "ragione sociale", "company",
        "ditta", "società cliente", "societa", "nome societa",
    ),
    "indirizzo": (
        "indirizzo", "via", "strada", "address", "via/piazza",
        "indirizzo stradale", "via piazza", "indirizzo spedizione",
    ),
    "civico": (
        "civico", "numero civico", "n. civico", "n.civico", "n°", "numero",
        "numero indirizzo", "num", "num.",
    ),
    "cap": ("cap", "codice postale", "postal code", "zip", "codice avviamento postale", "c.a.p.", "c.a.p"),
    "localita": ("localita", "località", "comune", "città", "city", "paese", "town", "citta", "loc", "loc."),
    "provincia": ("provincia", "prov", "province", "pr", "pr.", "sigla provincia", "prov.", "provincia sigla"),
    "telefono": (
        "telefono", "tel", "phone", "cellulare", "tel.", "numero telefono", "cell",
        "numero cellulare", "tel/cell", "cell.",
    ),
    "email": ("email", "e-mail", "mail", "posta elettronica", "indirizzo email", "e mail", "posta"),
    "note": ("note", "annotazioni", "commenti", "notes", "note aggiuntive", "note cliente", "commento"),
    "tipologia": ("tipologia", "tipo partner", "categoria", "tipo cliente", "tipo", "category", "gruppo"),
    "grappa": ("grappa", "regalo grappa", "omaggio grappa", "regalo", "gift", "presente", "omaggio", "dono"),
    "extraAltro": (
        "extra/altro", "extra", "altro regalo", "altro omaggio", "extra regalo", "regalo extra",
        "altro", "altri regali", "extra/altri",
    ),
    "consegnaSpedizione": (
        "consegna/spedizione", "consegna", "consegna a mano", "incaricato consegna", "consegnatario",
        "deliverer", "spedizione", "incaricato", "consegna spedizione",
    ),
    "gls": ("gls", "spedizione gls", "corriere", "spedizione", "shipping", "courier", "corriere gls"),
}

_KEY_SEPARATORS = re.compile(r"[/\-_.]")
_WHITESPACE = re.compile(r"\s+")
_GENERIC_COLUMN = re.compile(r"^[A-Z]{1,2}$")
_TRAILING_HOUSE_NUMBER = re.compile(r"^(.*?)[,\s]+(\d[^,]*)$")
_ZERO_PADDED_FORMAT = re.compile(r"^0+$")


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\xa0", " ").strip()


def _clean_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_key(key: Any) -> str:
    lowered = str(key).lower().strip()
    return _WHITESPACE.sub(" ", _KEY_SEPARATORS.sub(" ", lowered)).strip()


_SPELLINGS: dict[str, tuple[str, ...]] = {
    field: tuple(dict.fromkeys([normalize_key(field), *(normalize_key(s) for s in spellings)]))
    for field, spellings in FIELD_SYNONYMS.items()
}


def resolve_field_name(key: Any) -> str:
    """Map a spreadsheet header onto a canonical field name.

    Exact spelling first, then substring overlap in either direction. Headers
    that match nothing are kept as ``snake_case`` extra fields.
    """
    normalized = normalize_key(key)
    for field, spellings in _SPELLINGS.items():
        if normalized in spellings:
            return field
    if normalized:
        for field, spellings in _SPELLINGS.items():
            if any(normalized in spelling or spelling in normalized for spelling in spellings):
                return field
    return normalized.replace(" ", "_")


def normalize_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_TEXT
    return False


def normalize_value(field: str, value: Any) -> Any:
    if field in BOOLEAN_FIELDS:
        return encode_flag(normalize_boolean(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime.combine(value, time()).isoformat()
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _clean_number(value)
    return _clean_text(value)


def split_house_number(record: dict[str, Any]) -> None:
    address = record.get("indirizzo")
    if not address or record.get("civico"):
        return
    match = _TRAILING_HOUSE_NUMBER.match(str(address).strip())
    if match:
        record["indirizzo"] = match.group(1).strip()
        record["civico"] = match.group(2).strip()


def _has_generic_columns(row: dict[str, Any]) -> bool:
    return bool(row) and all(_GENERIC_COLUMN.match(key) for key in row)


def normalize_row(row: dict[str, Any], kind: str, created_at: int) -> dict[str, Any]:
    normalized: dict[str, Any] = {"tipo": kind, "eliminato": False, "createdAt": created_at}

    if _has_generic_columns(row):
        letters = sorted(row, key=column_index_from_string)
        for field, letter in zip(IMPORT_COLUMNS, letters):
            value = row[letter]
            if not is_blank(value):
                normalized[field] = normalize_value(field, value)
    else:
        for original_key, value in row.items():
            if is_blank(value):
                continue
            field = resolve_field_name(original_key)
            if field in RESERVED_FIELDS:
                continue
            normalized[field] = normalize_value(field, value)

    split_house_number(normalized)
    return normalized


def count_filled(record: dict[str, Any]) -> int:
    return sum(1 for value in record.values() if not is_blank(value))


def is_acceptable(record: dict[str, Any]) -> bool:
    has_identity = bool(record.get("nome") or record.get("azienda"))
    return has_identity and count_filled(record) >= MIN_FILLED_FIELDS


def select_sheet_name(sheet_names: list[str], kind: str) -> str | None:
    capitalized = kind[:1].upper() + kind[1:]
    candidates = [capitalized, kind, f"{kind}i", f"{kind[:1].upper()}{kind[1:-1]}i"]
    for name in candidates:
        if name in sheet_names:
            return name
    target = kind.lower()
    for name in sheet_names:
        if target in name.lower():
            return name
    return sheet_names[0] if sheet_names else None


# ---- row materialization strategies ----

def _is_row_populated(values: list[Any]) -> bool:
    return any(_clean_text(v) for v in values)


def _populated_keys(row: dict[str, Any]) -> int:
    return sum(1 for value in row.values() if _clean_text(value))


def _is_usable(rows: list[dict[str, Any]]) -> bool:
    return bool(rows) and any(_populated_keys(row) > 1 for row in rows)


def _row_dict(headers: list[str], values: list[Any]) -> dict[str, Any]:
    return {
        header: values[i] if i < len(values) and values[i] is not None else ""
        for i, header in enumerate(headers)
    }


def _unique_headers(values: list[Any]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for value in values:
        base = _clean_text(value) or "__EMPTY"
        count = seen.get(base, 0)
        seen[base] = count + 1
        headers.append(base if count == 0 else f"{base}_{count}")
    return headers


def rows_from_header_row(grid: list[list[Any]]) -> list[dict[str, Any]]:
    if not grid:
        return []
    headers = _unique_headers(grid[0])
    return [_row_dict(headers, values) for values in grid[1:] if _is_row_populated(values)]


def rows_from_column_letters(grid: list[list[Any]]) -> list[dict[str, Any]]:
    width = max((len(values) for values in grid), default=0)
    headers = [get_column_letter(i) for i in range(1, width + 1)]
    return [_row_dict(headers, values) for values in grid if _is_row_populated(values)]


def rows_from_import_columns(grid: list[list[Any]]) -> list[dict[str, Any]]:
    return [_row_dict(IMPORT_COLUMNS, values) for values in grid if _is_row_populated(values)]


ROW_STRATEGIES: list[tuple[str, Callable[[list[list[Any]]], list[dict[str, Any]]]]] = [
    ("header_row", rows_from_header_row),
    ("column_letters", rows_from_column_letters),
    ("import_columns", rows_from_import_columns),
]


def materialize_rows(grid: list[list[Any]]) -> tuple[str, list[dict[str, Any]]]:
    name, rows = "", []
    for name, strategy in ROW_STRATEGIES:
        rows = strategy(grid)
        if _is_usable(rows):
            break
    return name, rows


def _cell_value(cell) -> Any:
    value = cell.value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number_format = getattr(cell, "number_format", "") or ""
        if _ZERO_PADDED_FORMAT.match(number_format) and float(value).is_integer():
            return str(int(value)).zfill(len(number_format))
    return value


def sheet_grid(worksheet) -> list[list[Any]]:
    return [
        [_cell_value(cell) for cell in row]
        for row in worksheet.iter_rows(min_row=worksheet.min_row, min_col=worksheet.min_column)
    ]


def normalize_rows(rows: list[dict[str, Any]], kind: str, imported_at: int | None = None) -> list[dict[str, Any]]:
    stamp = now_ms() if imported_at is None else imported_at
    records = []
    for index, row in enumerate(rows):
        record = normalize_row(row, kind, stamp)
        if is_blank(record.get("id")):
            record["id"] = stamp + index
        records.append(record)
    return records


def _failure(message: str) -> dict[str, Any]:
    return {"success": False, "message": message}


def import_workbook(content: bytes, filename: str, kind: str) -> dict[str, Any]:
    if not filename.lower().endswith(WORKBOOK_EXTENSIONS):
        return _failure("Formato non supportato: caricare un file .xlsx o .xlsm")
    if not content:
        return _failure("Il file selezionato è vuoto")

    try:
        workbook = load_workbook(BytesIO(content), data_only=True)
        sheet_name = select_sheet_name(workbook.sheetnames, kind)
        if sheet_name is None:
            return _failure("Il file non contiene fogli di lavoro")
        strategy, rows = materialize_rows(sheet_grid(workbook[sheet_name]))
        records = normalize_rows(rows, kind)
    except Exception as exc:
        logger.exception("Workbook import failed for %s", filename)
        return _failure(f"Errore durante l'importazione: {exc}")

    valid = [record for record in records if is_acceptable(record)]
    logger.info(
        "Imported %s from sheet '%s' (%s): %d valid of %d rows",
        filename,
        sheet_name,
        strategy,
        len(valid),
        len(records),
    )
    return {
        "success": True,
        "message": f"Importazione completata con successo: {len(valid)}/{len(records)} record validi",
        "data": valid,
    }


def import_file(path: str | Path, kind: str) -> dict[str, Any]:
    file_path = Path(path)
    try:
        content = file_path.read_bytes()
    except OSError as exc:
        logger.warning("Could not read %s: %s", file_path, exc)
        return _failure(f"Errore durante l'importazione: {exc}")
    return import_workbook(content, file_path.name, kind)
