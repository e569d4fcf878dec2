from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from giftcrm.models import identity_key, now_ms


@dataclass
class MergeResult:
    records: list[dict[str, Any]] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0

    @property
    def message(self) -> str:
        return f"{self.inserted} nuovi record, {self.updated} record aggiornati"


def _index_identities(records: list[dict[str, Any]]) -> dict[tuple[str, str], int]:
    index: dict[tuple[str, str], int] = {}
    for position, record in enumerate(records):
        key = identity_key(record)
        if key is not None:
            index.setdefault(key, position)
    return index


def find_match(records: list[dict[str, Any]], candidate: dict[str, Any]) -> int | None:
    """Index of the first record with the same (nome, azienda), ignoring case."""
    key = identity_key(candidate)
    if key is None:
        return None
    return _index_identities(records).get(key)


def merge_records(
    imported: list[dict[str, Any]],
    current: list[dict[str, Any]],
    now: int | None = None,
) -> MergeResult:
    """Upsert imported rows into ``current`` keyed on (nome, azienda).

    Matches keep their id and deletion flag and take every imported field.
    Unmatched rows are appended with ids that stay unique within the batch.
    Neither input list is modified.
    """
    stamp = now_ms() if now is None else now
    result = MergeResult(records=[dict(record) for record in current])
    # First record per identity wins, as in a front-to-back scan.
    positions = _index_identities(result.records)

    for item in imported:
        key = identity_key(item)
        index = positions.get(key) if key is not None else None
        if index is not None:
            existing = result.records[index]
            result.records[index] = {
                **existing,
                **item,
                "id": existing.get("id"),
                "eliminato": existing.get("eliminato") or False,
                "lastUpdate": stamp,
            }
            result.updated += 1
            continue

        result.records.append(
            {
                **item,
                "id": stamp + len(result.records) + result.inserted,
                "eliminato": False,
                "createdAt": stamp,
            }
        )
        result.inserted += 1
        if key is not None:
            positions.setdefault(key, len(result.records) - 1)

    return result
