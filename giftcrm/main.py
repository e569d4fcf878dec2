import logging
from io import BytesIO
from pathlib import Path
from typing import Any

from fastapi import Body, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from giftcrm.config import settings
from giftcrm.data_store import JsonRecordStore, StoreError
from giftcrm.gls_export import EXPORT_FILENAME, XLSX_MEDIA_TYPE, NoRecordsToExport, export_gls, select_gls_records
from giftcrm.merge import merge_records
from giftcrm.models import (
    COLLECTIONS,
    RECORD_KINDS,
    SETTINGS_KIND,
    BulkAssign,
    BulkUpdate,
    ExportTarget,
    ImportPath,
    RecordRef,
    is_flag_set,
)
from giftcrm.stats import dashboard_summary
from giftcrm.workbook_import import import_file, import_workbook

app = FastAPI(title="Gift Shipment CRM")
logger = logging.getLogger(__name__)

VALID_GIFTS = {"", "grappa", "extra", "nessuno"}
VALID_GLS_VALUES = {"", "true", "false"}
LISTABLE_KINDS = tuple(kind for kind in COLLECTIONS if kind != SETTINGS_KIND)


@app.on_event("startup")
def configure_logging():
    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Data folder: %s", settings.data_dir)


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})


def get_store() -> JsonRecordStore:
    return JsonRecordStore(settings.data_dir)


def require_kind(kind: str, allowed: tuple[str, ...] = RECORD_KINDS) -> str:
    if kind not in allowed:
        raise HTTPException(status_code=400, detail=f"Invalid collection '{kind}'. Allowed: {', '.join(allowed)}.")
    return kind


def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def merge_import(store: JsonRecordStore, kind: str, result: dict[str, Any]) -> dict[str, Any]:
    if not result.get("success") or not result.get("data"):
        return result

    current = [item for item in store.load(kind, include_deleted=True) if not item.get("eliminato")]
    merged = merge_records(result["data"], current)
    store.save(kind, merged.records)
    logger.info("Import into %s: %s", kind, merged.message)
    return {
        "success": True,
        "message": f"Importazione completata: {merged.message}",
        "inserted": merged.inserted,
        "updated": merged.updated,
        "data": [item for item in merged.records if not item.get("eliminato")],
    }


def import_response(store: JsonRecordStore, kind: str, result: dict[str, Any]):
    if not result.get("success"):
        return failure(400, result.get("message", "Importazione non riuscita"))
    try:
        return merge_import(store, kind, result)
    except StoreError as exc:
        logger.exception("Could not save imported records into %s", kind)
        return failure(exc.status_code, str(exc))


def load_shipping_records(store: JsonRecordStore) -> list[dict[str, Any]]:
    return [*store.load("clienti"), *store.load("partner")]


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/settings")
def read_settings(store: JsonRecordStore = Depends(get_store)):
    return {"success": True, "data": store.load_settings()}


@app.put("/api/settings")
def write_settings(payload: dict[str, Any] = Body(...), store: JsonRecordStore = Depends(get_store)):
    return {"success": True, "data": store.save_settings(payload)}


@app.get("/api/dashboard")
def dashboard(store: JsonRecordStore = Depends(get_store)):
    current = store.load_settings()
    summary = dashboard_summary(store.load("clienti"), store.load("partner"), current["consegnatari"])
    return {"success": True, "data": {**summary, "settings": current}}


@app.get("/api/shipments")
def shipments(store: JsonRecordStore = Depends(get_store)):
    return {"success": True, "data": select_gls_records(load_shipping_records(store))}


@app.get("/api/export/gls")
def download_gls_export(store: JsonRecordStore = Depends(get_store)):
    try:
        content = export_gls(load_shipping_records(store))
    except NoRecordsToExport as exc:
        return failure(400, str(exc))
    except StoreError as exc:
        logger.exception("Could not load records for GLS export")
        return failure(exc.status_code, str(exc))

    return StreamingResponse(
        BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={EXPORT_FILENAME}"},
    )


@app.post("/api/export/gls/file")
def save_gls_export(target: ExportTarget, store: JsonRecordStore = Depends(get_store)):
    """Write the GLS workbook to a path on the server's own filesystem.

    Stands in for the desktop save dialog, so it is meant for the local
    service only (bound to 127.0.0.1 by default).
    """
    try:
        records = select_gls_records(load_shipping_records(store))
        content = export_gls(records)
        Path(target.filePath).write_bytes(content)
    except NoRecordsToExport as exc:
        return failure(400, str(exc))
    except StoreError as exc:
        logger.exception("Could not load records for GLS export")
        return failure(exc.status_code, str(exc))
    except OSError as exc:
        logger.exception("Could not write GLS export to %s", target.filePath)
        return failure(500, str(exc))

    return {
        "success": True,
        "message": f"Esportazione completata con successo: {len(records)} record",
        "filePath": target.filePath,
    }


@app.post("/api/restore")
def restore_record(ref: RecordRef, store: JsonRecordStore = Depends(get_store)):
    record = store.restore(ref.id)
    return {"success": True, "data": record}


@app.get("/api/{kind}")
def list_records(
    kind: str,
    include_deleted: bool = Query(default=False),
    store: JsonRecordStore = Depends(get_store),
):
    require_kind(kind, LISTABLE_KINDS)
    return {"success": True, "data": store.load(kind, include_deleted)}


@app.put("/api/{kind}")
def replace_records(
    kind: str,
    records: list[dict[str, Any]] = Body(...),
    store: JsonRecordStore = Depends(get_store),
):
    require_kind(kind, LISTABLE_KINDS)
    store.save(kind, records)
    return {"success": True}


@app.post("/api/{kind}/records")
def save_record(
    kind: str,
    payload: dict[str, Any] = Body(...),
    store: JsonRecordStore = Depends(get_store),
):
    require_kind(kind)
    if not is_flag_set(payload.get("gls")) and not payload.get("consegnaSpedizione"):
        raise HTTPException(
            status_code=400,
            detail="È necessario selezionare un consegnatario per le consegne interne",
        )
    return {"success": True, "data": store.upsert_record(kind, payload)}


@app.post("/api/{kind}/delete")
def delete_record(kind: str, ref: RecordRef, store: JsonRecordStore = Depends(get_store)):
    require_kind(kind)
    store.move_to_deleted(kind, ref.id)
    return {"success": True}


@app.post("/api/{kind}/bulk-update")
def bulk_update(kind: str, change: BulkUpdate, store: JsonRecordStore = Depends(get_store)):
    require_kind(kind)
    data = store.update_bulk(kind, change.ids, change.propertyName, change.propertyValue)
    return {
        "success": True,
        "message": f"Aggiornamento completato con successo: {len(change.ids)} record",
        "data": data,
    }


@app.post("/api/{kind}/bulk-assign")
def bulk_assign(kind: str, change: BulkAssign, store: JsonRecordStore = Depends(get_store)):
    require_kind(kind)
    regalo = change.regalo.strip().lower()
    gls = change.gls.strip().lower()
    if regalo not in VALID_GIFTS:
        allowed = ", ".join(sorted(v for v in VALID_GIFTS if v))
        raise HTTPException(status_code=400, detail=f"Invalid gift '{change.regalo}'. Allowed: {allowed}.")
    if gls not in VALID_GLS_VALUES:
        raise HTTPException(status_code=400, detail=f"Invalid gls value '{change.gls}'. Use true or false.")

    data = store.assign_bulk(kind, change.ids, consegna=change.consegna.strip(), regalo=regalo, gls=gls)
    return {
        "success": True,
        "message": f"Aggiornamento completato con successo: {len(change.ids)} record",
        "data": data,
    }


@app.post("/api/{kind}/import")
def import_upload(
    kind: str,
    workbook_file: UploadFile = File(...),
    store: JsonRecordStore = Depends(get_store),
):
    # Plain def: parsing and saving run in the threadpool, off the event loop.
    require_kind(kind)
    payload = workbook_file.file.read()
    result = import_workbook(payload, workbook_file.filename or "workbook.xlsx", kind)
    return import_response(store, kind, result)


@app.post("/api/{kind}/import-path")
def import_from_path(kind: str, source: ImportPath, store: JsonRecordStore = Depends(get_store)):
    """Import a workbook read from a path on the server's own filesystem.

    Meant for the local desktop service only (bound to 127.0.0.1 by default).
    """
    require_kind(kind)
    result = import_file(source.filePath, kind)
    return import_response(store, kind, result)


def run():
    import uvicorn

    uvicorn.run("giftcrm.main:app", host=settings.app_host, port=settings.app_port)
