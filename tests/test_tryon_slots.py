"""Category to slot inference and composition order."""

import pytest

from calistar.common.errors import InvalidGarmentSet
from calistar.services.tryon.slots import Garment, GarmentSlot, build_slot_table, infer_slot, order_garments


@pytest.mark.parametrize(
    "category,slot",
    [
        ("tops", GarmentSlot.UPPER),
        ("Tops ", GarmentSlot.UPPER),
        ("calcinhas", GarmentSlot.LOWER),
        ("conjuntos", GarmentSlot.FULL_SET),
        ("", GarmentSlot.FULL_SET),
        (None, GarmentSlot.FULL_SET),
    ],
)
def test_infer_slot(category, slot):
    assert infer_slot(category) is slot


def test_configured_overrides_extend_the_table():
    table = build_slot_table({"Sutias": "upper"})
    assert infer_slot("sutias", table) is GarmentSlot.UPPER
    assert infer_slot("tops", table) is GarmentSlot.UPPER


def test_unknown_configured_slot_fails_fast():
    with pytest.raises(ValueError):
        build_slot_table({"meias": "feet"})


def test_uppers_are_composed_before_lowers():
    lower = Garment("https://cdn.test/bottom.jpg", GarmentSlot.LOWER)
    upper = Garment("https://cdn.test/top.jpg", GarmentSlot.UPPER)
    assert order_garments([lower, upper]) == [upper, lower]


def test_full_set_cannot_be_combined():
    with pytest.raises(InvalidGarmentSet):
        order_garments(
            [
                Garment("https://cdn.test/dress.jpg", GarmentSlot.FULL_SET),
                Garment("https://cdn.test/top.jpg", GarmentSlot.UPPER),
            ]
        )


def test_empty_outfit_is_rejected():
    with pytest.raises(InvalidGarmentSet):
        order_garments([])
