import pytest

from conftest import make_place
from services.taxonomy import (
    TAXONOMY,
    allowed_tags,
    classify,
    group_of,
    is_mixed_use,
    matches_any_filter,
    matches_filter,
)


def test_every_tag_classifies_to_its_subtype():
    for subtypes in TAXONOMY.values():
        for subtype, tags in subtypes.items():
            for tag in tags:
                assert classify(make_place("x", [tag])) in subtypes


def test_classify_is_total():
    assert classify(make_place("x", ["point_of_interest", "establishment"])) == "unknown"
    assert classify(make_place("x", [])) == "unknown"


def test_classify_prefers_primary_category():
    place = make_place("x", ["bar", "restaurant"], primary="restaurant")
    assert classify(place) == "restaurant"

    place = make_place("x", ["establishment", "coffee_shop"], primary="establishment")
    assert classify(place) == "cafe"


def test_hotel_with_restaurant_tag_stays_out_of_restaurant_filter():
    hotel = make_place("h", ["hotel", "restaurant", "lodging", "point_of_interest"])

    assert is_mixed_use(hotel)
    assert not matches_filter(hotel, "restaurant")
    assert matches_filter(hotel, "hotel")


def test_restaurant_with_bar_matches_both_filters():
    place = make_place("r", ["restaurant", "bar", "food", "point_of_interest"])

    assert not is_mixed_use(place)
    assert matches_filter(place, "restaurant")
    assert matches_filter(place, "bar")
    assert not matches_filter(place, "museum")


def test_cross_group_tags_make_a_place_mixed_use():
    place = make_place("r", ["restaurant", "gym"])

    assert is_mixed_use(place)
    assert matches_filter(place, "restaurant")
    assert not matches_filter(place, "gym")


@pytest.mark.parametrize(
    "filter_category, included, excluded",
    [
        ("cafe", "coffee_shop", "bar"),
        ("food_drink", "pub", "museum"),
        ("outdoors_recreation", "dog_park", "cafe"),
    ],
)
def test_allowed_tags_for_subtypes_and_groups(filter_category, included, excluded):
    tags = allowed_tags(filter_category)
    assert included in tags
    assert excluded not in tags


def test_unlisted_filter_is_treated_as_raw_tag():
    assert allowed_tags("bicycle_store") == ["bicycle_store"]
    assert matches_filter(make_place("b", ["bicycle_store"]), "bicycle_store")


def test_all_and_empty_filters_match_everything():
    place = make_place("x", ["point_of_interest"])
    assert matches_filter(place, "all")
    assert matches_filter(place, None)
    assert matches_any_filter(place, [])
    assert matches_any_filter(make_place("c", ["cafe"]), ["museum", "cafe"])


def test_generic_tags_have_no_group():
    assert group_of("point_of_interest") is None
    assert group_of("restaurant") == "food_drink"
