import time
from typing import Any

from pydantic import BaseModel, Field

RECORD_KINDS = ("clienti", "partner")
DELETED_KIND = "eliminati"
SETTINGS_KIND = "settings"
COLLECTIONS = (*RECORD_KINDS, DELETED_KIND, SETTINGS_KIND)

# Column order of the import template; also used for positional mapping.
IMPORT_COLUMNS = [
    "nome",
    "azienda",
    "indirizzo",
    "civico",
    "cap",
    "localita",
    "provincia",
    "telefono",
    "email",
    "note",
    "grappa",
    "extraAltro",
    "consegnaSpedizione",
    "gls",
]

RECORD_FIELDS = [
    "id",
    "tipo",
    *IMPORT_COLUMNS[:10],
    "tipologia",
    *IMPORT_COLUMNS[10:],
    "eliminato",
    "eliminatoIl",
    "createdAt",
    "lastUpdate",
]

FLAG_FIELDS = ("grappa", "extraAltro", "gls")


def now_ms() -> int:
    return int(time.time() * 1000)


def is_blank(value: Any) -> bool:
    return value is None or value == ""


def is_flag_set(value: Any) -> bool:
    """Read a gift/shipping flag in any persisted encoding: True, 1 or "1"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip() == "1"
    return False


def encode_flag(value: bool) -> str:
    # Rows written by the importer keep the spreadsheet-compatible "1"/"" form.
    return "1" if value else ""


def identity_key(record: dict[str, Any]) -> tuple[str, str] | None:
    nome = record.get("nome")
    azienda = record.get("azienda")
    if not isinstance(nome, str) or not isinstance(azienda, str) or not nome or not azienda:
        return None
    return nome.lower(), azienda.lower()


class BulkUpdate(BaseModel):
    ids: list[int | str]
    propertyName: str
    propertyValue: Any = None


class BulkAssign(BaseModel):
    ids: list[int | str]
    consegna: str = ""
    regalo: str = ""
    gls: str = ""


class ExportTarget(BaseModel):
    filePath: str = Field(min_length=1)


class ImportPath(BaseModel):
    filePath: str = Field(min_length=1)


class RecordRef(BaseModel):
    id: int | str
