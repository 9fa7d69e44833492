"""Garment slot policy: which body region a catalog category targets."""

from dataclasses import dataclass
from enum import Enum

from calistar.common.errors import InvalidGarmentSet


class GarmentSlot(str, Enum):
    UPPER = "upper"
    LOWER = "lower"
    FULL_SET = "full_set"


# Catalog category -> slot. Categories not listed are treated as full sets.
CATEGORY_SLOTS: dict[str, GarmentSlot] = {
    "tops": GarmentSlot.UPPER,
    "calcinhas": GarmentSlot.LOWER,
}

# Upper garments are composed before lower ones.
SLOT_ORDER: dict[GarmentSlot, int] = {
    GarmentSlot.UPPER: 0,
    GarmentSlot.LOWER: 1,
    GarmentSlot.FULL_SET: 2,
}


@dataclass(frozen=True)
class Garment:
    image_url: str
    slot: GarmentSlot
    category: str | None = None


def build_slot_table(overrides: dict[str, str] | None = None) -> dict[str, GarmentSlot]:
    """Merge configured category overrides over the built-in table.

    Raises ValueError for an unknown slot name so bad config fails at startup.
    """

    table = dict(CATEGORY_SLOTS)
    for category, slot in (overrides or {}).items():
        table[category.strip().lower()] = GarmentSlot(slot)
    return table


def infer_slot(category: str | None, table: dict[str, GarmentSlot] | None = None) -> GarmentSlot:
    table = CATEGORY_SLOTS if table is None else table
    if not category:
        return GarmentSlot.FULL_SET
    return table.get(category.strip().lower(), GarmentSlot.FULL_SET)


def order_garments(garments: list[Garment]) -> list[Garment]:
    """Composition order: uppers, then lowers; a full set only on its own."""

    if not garments:
        raise InvalidGarmentSet(detail="no garments")
    if len(garments) > 1 and any(g.slot is GarmentSlot.FULL_SET for g in garments):
        raise InvalidGarmentSet(detail="full_set garments cannot be combined with other pieces")
    return sorted(garments, key=lambda g: SLOT_ORDER[g.slot])
