from __future__ import annotations

from typing import Any

from giftcrm.models import is_flag_set


def _ratio(part: int, total: int) -> float:
    return part / total if total else 0.0


def dashboard_summary(
    clienti: list[dict[str, Any]],
    partner: list[dict[str, Any]],
    deliverers: list[str],
) -> dict[str, Any]:
    records = [*clienti, *partner]
    total = len(records)
    grappa = sum(1 for rec in records if is_flag_set(rec.get("grappa")))
    extra = sum(1 for rec in records if is_flag_set(rec.get("extraAltro")))
    no_gift = total - grappa - extra

    # Hand deliveries only: GLS records are shipped by courier.
    hand_delivered = [
        str(rec.get("consegnaSpedizione") or "").lower()
        for rec in records
        if not is_flag_set(rec.get("gls"))
    ]
    deliveries = {name: sum(1 for value in hand_delivered if value and value == name.lower()) for name in deliverers}

    return {
        "counts": {
            "clienti": len(clienti),
            "partner": len(partner),
            "gls": sum(1 for rec in records if is_flag_set(rec.get("gls"))),
        },
        "gifts": {"grappa": grappa, "extra": extra, "none": no_gift},
        "giftProgress": {
            "grappa": _ratio(grappa, total),
            "extra": _ratio(extra, total),
            "none": _ratio(no_gift, total),
        },
        "deliveries": deliveries,
        "totalInternalDeliveries": sum(deliveries.values()),
        "maxDeliveries": max(deliveries.values(), default=0),
    }
