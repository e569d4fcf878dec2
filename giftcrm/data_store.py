from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from typing import Any

from giftcrm.models import COLLECTIONS, DELETED_KIND, RECORD_KINDS, SETTINGS_KIND, encode_flag, now_ms

logger = logging.getLogger(__name__)

DEFAULT_GIFT = "Grappa"
DEFAULT_DELIVERERS = ["Andrea Gosgnach", "Marco Crasnich", "Massimo Cendron", "Matteo Rocchetto"]
DEFAULT_GIFT_NAMES = ["Grappa", "Extra/Altro", "Nessuno"]


class StoreError(Exception):
    status_code = 500


class UnknownCollection(StoreError):
    status_code = 400


class RecordNotFound(StoreError):
    status_code = 404


def _default_settings() -> dict[str, Any]:
    return {
        "regaloCorrente": DEFAULT_GIFT,
        "annoCorrente": datetime.now().year,
        "consegnatari": list(DEFAULT_DELIVERERS),
        "giftNames": list(DEFAULT_GIFT_NAMES),
    }


def _valid_gift_names(value: Any) -> bool:
    return isinstance(value, list) and len(value) == 3


class JsonRecordStore:
    """One JSON file per collection under ``data_dir``.

    Record collections hold a list of canonical records; ``settings`` holds a
    single object. Saves replace the whole file.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def _path(self, kind: str) -> str:
        if kind not in COLLECTIONS:
            allowed = ", ".join(COLLECTIONS)
            raise UnknownCollection(f"Unknown collection '{kind}'. Allowed: {allowed}.")
        return os.path.join(self.data_dir, f"{kind}.json")

    def _read(self, kind: str) -> Any:
        path = self._path(kind)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                raw = fh.read()
            if not raw.strip():
                return None
            return json.loads(raw)
        except (OSError, ValueError) as exc:
            raise StoreError(str(exc)) from exc

    def _write(self, kind: str, payload: Any) -> None:
        path = self._path(kind)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{kind}-", suffix=".json", dir=self.data_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=2, ensure_ascii=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(str(exc)) from exc

    def load(self, kind: str, include_deleted: bool = False) -> list[dict[str, Any]]:
        parsed = self._read(kind)
        if parsed is None:
            return []
        if not isinstance(parsed, list):
            parsed = [parsed]
        if not all(isinstance(item, dict) for item in parsed):
            raise StoreError(f"Collection '{kind}' contains entries that are not records")
        if not include_deleted and kind != DELETED_KIND:
            parsed = [item for item in parsed if not item.get("eliminato")]
        return parsed

    def save(self, kind: str, records: list[dict[str, Any]] | dict[str, Any]) -> None:
        self._write(kind, records)
        logger.debug("Saved collection %s", kind)

    def move_to_deleted(self, kind: str, record_id: int | str) -> dict[str, Any]:
        records = self.load(kind, include_deleted=True)
        index = next((i for i, item in enumerate(records) if item.get("id") == record_id), None)
        if index is None:
            raise RecordNotFound(f"Record con ID {record_id} non trovato")

        records[index]["eliminato"] = True
        records[index]["eliminatoIl"] = now_ms()
        self.save(kind, records)

        deleted = self.load(DELETED_KIND, include_deleted=True)
        deleted.append(dict(records[index]))
        self.save(DELETED_KIND, deleted)
        logger.info("Moved %s record %s to %s", kind, record_id, DELETED_KIND)
        return records[index]

    def restore(self, record_id: int | str) -> dict[str, Any]:
        deleted = self.load(DELETED_KIND, include_deleted=True)
        index = next((i for i, item in enumerate(deleted) if item.get("id") == record_id), None)
        if index is None:
            raise RecordNotFound(f"Record con ID {record_id} non trovato")

        record = dict(deleted.pop(index))
        kind = record.get("tipo")
        if kind not in RECORD_KINDS:
            raise UnknownCollection(f"Record con ID {record_id} ha un tipo non valido: {kind!r}")
        current = self.load(kind, include_deleted=True)
        self.save(DELETED_KIND, deleted)

        record["eliminato"] = False
        record.pop("eliminatoIl", None)
        existing = next((i for i, item in enumerate(current) if item.get("id") == record_id), None)
        if existing is None:
            current.append(record)
        else:
            current[existing] = record
        self.save(kind, current)
        logger.info("Restored record %s into %s", record_id, kind)
        return record

    def upsert_record(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        records = self.load(kind, include_deleted=True)
        stamp = now_ms()
        record_id = payload.get("id")
        if record_id in (None, ""):
            record = {**payload, "id": stamp, "tipo": kind, "eliminato": False, "createdAt": stamp}
            records.append(record)
        else:
            index = next((i for i, item in enumerate(records) if item.get("id") == record_id), None)
            if index is None:
                raise RecordNotFound(f"Record con ID {record_id} non trovato")
            record = {**records[index], **payload, "id": records[index].get("id"), "lastUpdate": stamp}
            records[index] = record
        self.save(kind, records)
        return record

    def update_bulk(
        self,
        kind: str,
        ids: list[int | str],
        property_name: str,
        property_value: Any,
    ) -> list[dict[str, Any]]:
        wanted = set(ids)
        stamp = now_ms()
        records = self.load(kind, include_deleted=True)
        updated = [
            {**item, property_name: property_value, "lastUpdate": stamp} if item.get("id") in wanted else item
            for item in records
        ]
        self.save(kind, updated)
        return [item for item in updated if not item.get("eliminato")]

    def load_settings(self) -> dict[str, Any]:
        defaults = _default_settings()
        try:
            stored = self._read(SETTINGS_KIND)
        except StoreError:
            logger.exception("Could not read settings; using defaults")
            return defaults

        if isinstance(stored, list):
            stored = stored[0] if stored else None
        if not isinstance(stored, dict):
            stored = {}

        return {
            "regaloCorrente": stored.get("regaloCorrente") or defaults["regaloCorrente"],
            "annoCorrente": stored.get("annoCorrente") or defaults["annoCorrente"],
            "consegnatari": stored["consegnatari"]
            if isinstance(stored.get("consegnatari"), list)
            else defaults["consegnatari"],
            "giftNames": stored["giftNames"] if _valid_gift_names(stored.get("giftNames")) else defaults["giftNames"],
        }

    def save_settings(self, settings: dict[str, Any] | None) -> dict[str, Any]:
        defaults = _default_settings()
        settings = settings or {}
        deliverers = settings.get("consegnatari")
        normalized = {
            "regaloCorrente": settings.get("regaloCorrente") or defaults["regaloCorrente"],
            "annoCorrente": settings.get("annoCorrente") or defaults["annoCorrente"],
            "consegnatari": deliverers if isinstance(deliverers, list) and deliverers else defaults["consegnatari"],
            "giftNames": settings["giftNames"]
            if _valid_gift_names(settings.get("giftNames"))
            else defaults["giftNames"],
        }
        self.save(SETTINGS_KIND, normalized)
        return normalized

    def assign_bulk(
        self,
        kind: str,
        ids: list[int | str],
        *,
        consegna: str = "",
        regalo: str = "",
        gls: str = "",
    ) -> list[dict[str, Any]]:
        wanted = set(ids)
        stamp = now_ms()
        records = self.load(kind, include_deleted=True)
        updated = [
            {**apply_assignment(item, consegna=consegna, regalo=regalo, gls=gls), "lastUpdate": stamp}
            if item.get("id") in wanted
            else item
            for item in records
        ]
        self.save(kind, updated)
        return [item for item in updated if not item.get("eliminato")]


def apply_assignment(record: dict[str, Any], *, consegna: str = "", regalo: str = "", gls: str = "") -> dict[str, Any]:
    """Apply the bulk-edit rules to a copy of ``record``.

    A hand deliverer and GLS shipment exclude each other, and the two gift
    flags are set exclusively. Empty arguments leave the field untouched.
    """
    updated = dict(record)
    if consegna:
        updated["consegnaSpedizione"] = consegna
        updated["gls"] = encode_flag(False)
    if regalo:
        updated["grappa"] = encode_flag(regalo == "grappa")
        updated["extraAltro"] = encode_flag(regalo == "extra")
    if gls == "true":
        updated["gls"] = encode_flag(True)
        updated["consegnaSpedizione"] = ""
    elif gls == "false":
        updated["gls"] = encode_flag(False)
    return updated
