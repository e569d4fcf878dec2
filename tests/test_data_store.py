import json
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from giftcrm.data_store import (
    DEFAULT_DELIVERERS,
    DEFAULT_GIFT_NAMES,
    JsonRecordStore,
    RecordNotFound,
    StoreError,
    UnknownCollection,
    apply_assignment,
)


@pytest.fixture()
def store(tmp_path):
    return JsonRecordStore(str(tmp_path / "data"))


def test_missing_collection_loads_empty(store):
    assert store.load("clienti") == []
    assert store.load("eliminati") == []


def test_unknown_collection_is_rejected(store):
    with pytest.raises(UnknownCollection):
        store.load("fornitori")


def test_single_object_file_is_wrapped_in_a_list(store, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "partner.json").write_text(json.dumps({"id": 1, "nome": "Solo"}), encoding="utf-8")

    assert store.load("partner") == [{"id": 1, "nome": "Solo"}]


def test_soft_deleted_records_are_hidden_unless_requested(store):
    store.save("clienti", [{"id": 1, "eliminato": False}, {"id": 2, "eliminato": True}])

    assert [r["id"] for r in store.load("clienti")] == [1]
    assert [r["id"] for r in store.load("clienti", include_deleted=True)] == [1, 2]


def test_failed_save_keeps_previous_file(store, tmp_path):
    store.save("clienti", [{"id": 1, "nome": "Mario"}])

    with pytest.raises(StoreError):
        store.save("clienti", [{"id": 2, "nome": object()}])

    assert store.load("clienti") == [{"id": 1, "nome": "Mario"}]
    assert sorted(p.name for p in (tmp_path / "data").iterdir()) == ["clienti.json"]


def test_corrupt_file_raises_store_error(store, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "clienti.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        store.load("clienti")


def test_delete_then_restore_round_trip(store):
    store.save("clienti", [{"id": 1, "nome": "Mario", "tipo": "clienti", "eliminato": False}])

    deleted = store.move_to_deleted("clienti", 1)

    assert deleted["eliminato"] is True
    assert isinstance(deleted["eliminatoIl"], int)
    assert store.load("clienti") == []
    assert [r["id"] for r in store.load("eliminati")] == [1]

    restored = store.restore(1)

    assert restored["eliminato"] is False
    assert "eliminatoIl" not in restored
    assert store.load("eliminati") == []
    assert store.load("clienti") == [restored]
    assert len(store.load("clienti", include_deleted=True)) == 1


def test_delete_unknown_record(store):
    with pytest.raises(RecordNotFound, match="Record con ID 42 non trovato"):
        store.move_to_deleted("partner", 42)


def test_restore_with_invalid_type_keeps_deleted_entry(store):
    store.save("eliminati", [{"id": 9, "tipo": "fornitori", "eliminato": True}])

    with pytest.raises(UnknownCollection):
        store.restore(9)

    assert [r["id"] for r in store.load("eliminati")] == [9]


def test_upsert_creates_and_edits(store):
    created = store.upsert_record("partner", {"nome": "Anna", "gls": "1"})

    assert created["tipo"] == "partner"
    assert created["eliminato"] is False
    assert created["createdAt"] == created["id"]

    edited = store.upsert_record("partner", {"id": created["id"], "telefono": "0432"})

    assert edited["nome"] == "Anna"
    assert edited["telefono"] == "0432"
    assert "lastUpdate" in edited
    assert store.load("partner") == [edited]

    with pytest.raises(RecordNotFound):
        store.upsert_record("partner", {"id": 12345, "nome": "X"})


def test_bulk_update_sets_property_on_selected_records(store):
    store.save("clienti", [{"id": 1}, {"id": 2}, {"id": 3, "eliminato": True}])

    data = store.update_bulk("clienti", [1, 3], "tipologia", "VIP")

    assert [r.get("tipologia") for r in data] == ["VIP", None]
    assert store.load("clienti", include_deleted=True)[2]["tipologia"] == "VIP"


def test_settings_defaults_and_validation(store):
    defaults = store.load_settings()
    assert defaults["consegnatari"] == DEFAULT_DELIVERERS
    assert defaults["giftNames"] == DEFAULT_GIFT_NAMES
    assert defaults["regaloCorrente"] == "Grappa"

    saved = store.save_settings({"consegnatari": ["Luca"], "giftNames": ["a", "b"], "annoCorrente": 2025})
    assert saved["consegnatari"] == ["Luca"]
    assert saved["giftNames"] == DEFAULT_GIFT_NAMES
    assert store.load_settings()["annoCorrente"] == 2025

    saved = store.save_settings({"consegnatari": []})
    assert saved["consegnatari"] == DEFAULT_DELIVERERS


def test_unreadable_settings_fall_back_to_defaults(store, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "settings.json").write_text("[[[", encoding="utf-8")

    assert store.load_settings()["consegnatari"] == DEFAULT_DELIVERERS


def test_assignment_rules():
    record = {"id": 1, "gls": "1", "consegnaSpedizione": "", "grappa": "1", "extraAltro": ""}

    by_hand = apply_assignment(record, consegna="Marco Crasnich")
    assert by_hand["consegnaSpedizione"] == "Marco Crasnich"
    assert by_hand["gls"] == ""
    assert record["gls"] == "1"

    shipped = apply_assignment(by_hand, gls="true")
    assert shipped["gls"] == "1"
    assert shipped["consegnaSpedizione"] == ""

    extra = apply_assignment(record, regalo="extra")
    assert (extra["grappa"], extra["extraAltro"]) == ("", "1")

    nothing = apply_assignment(record, regalo="nessuno")
    assert (nothing["grappa"], nothing["extraAltro"]) == ("", "")

    assert apply_assignment(record) == record


def test_assign_bulk_only_touches_selected_ids(store):
    store.save("partner", [{"id": 1, "gls": ""}, {"id": 2, "gls": ""}])

    data = store.assign_bulk("partner", [2], gls="true", regalo="grappa")

    assert data[0] == {"id": 1, "gls": ""}
    assert data[1]["gls"] == "1"
    assert data[1]["grappa"] == "1"
    assert "lastUpdate" in data[1]


def test_entries_that_are_not_records_raise_store_error(store, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "clienti.json").write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(StoreError, match="not records"):
        store.load("clienti")
