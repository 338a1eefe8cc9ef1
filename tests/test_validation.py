import pytest

from factories import BURGER_ID, COMPANY_ID, RESTAURANT_ID, THURSDAY, WEDNESDAY, cart_line, make_burger
from shiftmeal.catalog import ScheduledRestaurant, SnapshotCompany, SnapshotSchedule
from shiftmeal.errors import InvalidCart, InvalidInput
from shiftmeal.schemas import AddonSpec, Item
from shiftmeal.validation import (
    optional_addons_are_valid,
    removed_ingredients_are_valid,
    required_addons_are_valid,
    validate_cart,
)

REQUIRED = AddonSpec.model_validate({"addons": "cheese-1, bacon-2", "addable": 2})


@pytest.mark.parametrize(
    "selections",
    [["cheese - 1", "bacon - 2"], ["Bacon - 2", "Cheese - 1"]],
)
def test_required_addons_accept_exact_count_in_any_order(selections):
    assert required_addons_are_valid(REQUIRED, selections)


@pytest.mark.parametrize(
    "selections",
    [["cheese - 1"], ["cheese - 1", "bacon - 2", "onion - 1"], ["cheese - 1", "onion - 1"]],
)
def test_required_addons_reject(selections):
    assert not required_addons_are_valid(REQUIRED, selections)


def test_optional_addons_allow_fewer_than_addable():
    assert optional_addons_are_valid(REQUIRED, ["cheese"])
    assert optional_addons_are_valid(REQUIRED, [])
    assert not optional_addons_are_valid(REQUIRED, ["cheese", "bacon", "cheese"])
    assert not optional_addons_are_valid(REQUIRED, ["onion"])


def test_removed_ingredients_are_case_insensitive():
    item = Item(id="i1", name="Burger", price=10, removable_ingredients="Onion, Pickles")

    assert removed_ingredients_are_valid(item, ["onion", "PICKLES"])
    assert not removed_ingredients_are_valid(item, ["tomato"])


@pytest.fixture
def snapshot():
    return [
        ScheduledRestaurant(
            id=RESTAURANT_ID,
            name="Grill House",
            items=[make_burger()],
            company=SnapshotCompany(id=COMPANY_ID, shift="day"),
            schedule=SnapshotSchedule(date=WEDNESDAY, status="ACTIVE"),
        )
    ]


def test_validate_cart_matches_snapshot(snapshot):
    lines = validate_cart(snapshot, [cart_line(item_id=BURGER_ID)])

    assert len(lines) == 1
    assert lines[0].item.name == "Burger"


def test_validate_cart_rejects_unscheduled_date(snapshot):
    with pytest.raises(InvalidCart):
        validate_cart(snapshot, [cart_line(date=THURSDAY, item_id=BURGER_ID)])


def test_one_bad_line_rejects_whole_cart(snapshot):
    good = cart_line(item_id=BURGER_ID)
    bad = cart_line(item_id=BURGER_ID, removed_ingredients=["Lettuce"])

    with pytest.raises(InvalidCart):
        validate_cart(snapshot, [good, bad])


def test_empty_cart_is_invalid_input(snapshot):
    with pytest.raises(InvalidInput):
        validate_cart(snapshot, [])
