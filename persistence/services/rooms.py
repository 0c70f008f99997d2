"""Ward/room category inference from billed estimate line items."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

PLACEMENT_CATEGORY_KEYWORDS = ("размещение", "placement", "госпитализ", "ward", "палат", "стационар")
PLACEMENT_NAME_KEYWORDS = ("палата", "размещение", "койко", "bed", "room", "лечение в палате")
PLACEMENT_CODE_KEYWORDS = ("room", "bed", "ward")

# checked in order; the first tier with a matching keyword wins
ROOM_TIERS = (
    ("economy", "Эконом", ("эконом", "economy")),
    ("vip", "VIP", ("vip",)),
    ("comfort", "Комфорт", ("комфорт", "comfort")),
)
DEFAULT_TIER = ("standard", "Стандарт")


@dataclass(frozen=True)
class RoomPlacement:
    room_type: str
    room_number: str
    days: Any
    service_name: Optional[str]

    def as_dict(self) -> dict[str, Any]:
        return {
            "roomType": self.room_type,
            "roomNumber": self.room_number,
            "days": self.days,
            "serviceName": self.service_name,
        }


def _text(item: Mapping[str, Any], *fields: str) -> str:
    for name in fields:
        value = item.get(name)
        if value:
            return str(value).lower()
    return ""


def _is_placement(item: Mapping[str, Any]) -> bool:
    category = _text(item, "category", "categoryName", "category_name")
    name = _text(item, "name")
    code = _text(item, "code", "service_code")
    return (
        category == "ward_treatment"
        or any(k in category for k in PLACEMENT_CATEGORY_KEYWORDS)
        or any(k in name for k in PLACEMENT_NAME_KEYWORDS)
        or any(k in code for k in PLACEMENT_CODE_KEYWORDS)
    )


def line_items(estimate: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items = estimate.get("services") or estimate.get("estimate_items") or []
    return [i for i in items if isinstance(i, Mapping)]


def classify_room(services: Iterable[Mapping[str, Any]]) -> Optional[RoomPlacement]:
    """Return the placement inferred from the first ward item, or None."""
    item = next((s for s in services if isinstance(s, Mapping) and _is_placement(s)), None)
    if item is None:
        return None
    haystacks = (
        _text(item, "name"),
        _text(item, "code", "service_code"),
        _text(item, "category", "categoryName", "category_name"),
    )
    room_type, label = DEFAULT_TIER
    for tier, tier_label, keywords in ROOM_TIERS:
        if any(k in text for k in keywords for text in haystacks):
            room_type, label = tier, tier_label
            break
    return RoomPlacement(
        room_type=room_type,
        room_number=label,
        days=item.get("days") or item.get("quantity") or 1,
        service_name=item.get("name"),
    )


def placement_dict(placement: Optional[RoomPlacement]) -> Optional[dict[str, Any]]:
    return placement.as_dict() if placement else None
