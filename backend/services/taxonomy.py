"""
Place taxonomy: groups raw Places type tags into user-facing categories.

Each top-level group holds named subtypes and each subtype lists the raw
tags it accepts. The first tag of a subtype is its canonical tag (used as
the legacy search ``type`` parameter).
"""
from __future__ import annotations

from typing import Dict, FrozenSet, List, Optional

from domain.models import StandardPlace, UNKNOWN_TYPE

ALL_TYPES = "all"

TAXONOMY: Dict[str, Dict[str, List[str]]] = {
    "food_drink": {
        "restaurant": [
            "restaurant", "american_restaurant", "asian_restaurant", "barbecue_restaurant",
            "brazilian_restaurant", "breakfast_restaurant", "brunch_restaurant",
            "chinese_restaurant", "fast_food_restaurant", "fine_dining_restaurant",
            "french_restaurant", "greek_restaurant", "hamburger_restaurant",
            "indian_restaurant", "italian_restaurant", "japanese_restaurant",
            "korean_restaurant", "mediterranean_restaurant", "mexican_restaurant",
            "middle_eastern_restaurant", "pizza_restaurant", "ramen_restaurant",
            "seafood_restaurant", "spanish_restaurant", "steak_house", "sushi_restaurant",
            "thai_restaurant", "turkish_restaurant", "vegan_restaurant",
            "vegetarian_restaurant", "vietnamese_restaurant", "diner", "food_court",
            "meal_takeaway", "meal_delivery",
        ],
        "cafe": ["cafe", "coffee_shop", "tea_house", "cat_cafe", "dog_cafe"],
        "bar": ["bar", "pub", "wine_bar", "bar_and_grill"],
        "bakery": [
            "bakery", "bagel_shop", "donut_shop", "dessert_shop", "ice_cream_shop",
            "confectionery", "sandwich_shop",
        ],
    },
    "shopping": {
        "shopping_mall": ["shopping_mall", "department_store", "market"],
        "store": [
            "store", "book_store", "clothing_store", "electronics_store", "furniture_store",
            "gift_shop", "hardware_store", "home_goods_store", "jewelry_store",
            "shoe_store", "sporting_goods_store",
        ],
        "grocery": ["supermarket", "grocery_store", "convenience_store", "liquor_store"],
    },
    "entertainment_culture": {
        "museum": ["museum", "historical_landmark", "cultural_landmark", "monument"],
        "art_gallery": ["art_gallery", "art_studio"],
        "night_club": ["night_club", "karaoke", "casino", "comedy_club"],
        "tourist_attraction": ["tourist_attraction", "visitor_center", "observation_deck"],
        "zoo": ["zoo", "aquarium", "wildlife_park"],
        "stadium": ["stadium", "arena"],
        "concert_hall": [
            "concert_hall", "performing_arts_theater", "opera_house", "amphitheatre",
            "philharmonic_hall",
        ],
        "movie_theater": ["movie_theater"],
        "amusement_park": ["amusement_park", "amusement_center", "bowling_alley", "video_arcade"],
    },
    "health_wellness": {
        "gym": ["gym", "fitness_center", "yoga_studio"],
        "pharmacy": ["pharmacy", "drugstore"],
        "medical": ["hospital", "doctor", "dentist", "dental_clinic", "physiotherapist"],
        "spa": ["spa", "massage", "sauna", "beauty_salon", "hair_care"],
    },
    "services_utilities": {
        "bank": ["bank", "atm"],
        "gas_station": ["gas_station", "electric_vehicle_charging_station"],
        "car_services": ["car_wash", "car_repair"],
        "post_office": ["post_office"],
        "laundry": ["laundry"],
    },
    "outdoors_recreation": {
        "park": ["park", "national_park", "state_park", "dog_park", "playground"],
        "garden": ["garden", "botanical_garden"],
        "natural_feature": ["natural_feature", "beach", "hiking_area", "picnic_ground"],
        "campground": ["campground", "rv_park"],
        "marina": ["marina"],
    },
    "lodging_travel": {
        "hotel": ["hotel", "lodging", "motel", "hostel", "resort_hotel", "bed_and_breakfast", "inn"],
        "transit": ["subway_station", "train_station", "bus_station", "transit_station", "airport"],
    },
}

# Venues whose primary type legitimately spans several groups.
MIXED_USE_PRIMARY_TYPES: FrozenSet[str] = frozenset({
    # multi-purpose buildings
    "shopping_mall", "department_store", "market", "convention_center", "event_venue",
    "community_center", "cultural_center", "airport", "train_station",
    # cultural venues with food
    "museum", "art_gallery", "performing_arts_theater", "zoo", "aquarium",
    # entertainment venues with food
    "stadium", "arena", "casino", "bowling_alley", "movie_theater", "amusement_park",
    "night_club",
    # lodging that hosts restaurants and bars
    "hotel", "lodging", "motel", "hostel", "resort_hotel", "bed_and_breakfast", "inn",
    # food/drink venues that commonly host non-food services
    "food_court", "gas_station", "convenience_store", "supermarket", "grocery_store",
})

# The original app's default discovery preferences (all enabled).
DEFAULT_DISCOVERY_TYPES: List[str] = [
    "restaurant", "cafe", "bar", "bakery", "park", "museum", "art_gallery",
    "night_club", "tourist_attraction", "zoo", "shopping_mall", "stadium",
    "concert_hall", "movie_theater",
]


def _build_indexes():
    tag_to_subtype: Dict[str, str] = {}
    tag_to_group: Dict[str, str] = {}
    subtype_to_group: Dict[str, str] = {}
    for group, subtypes in TAXONOMY.items():
        for subtype, tags in subtypes.items():
            subtype_to_group[subtype] = group
            for tag in tags:
                tag_to_subtype.setdefault(tag, subtype)
                tag_to_group.setdefault(tag, group)
    return tag_to_subtype, tag_to_group, subtype_to_group


_TAG_TO_SUBTYPE, _TAG_TO_GROUP, _SUBTYPE_TO_GROUP = _build_indexes()


def subtype_of(tag: Optional[str]) -> Optional[str]:
    if not tag:
        return None
    return _TAG_TO_SUBTYPE.get(tag)


def group_of(tag: Optional[str]) -> Optional[str]:
    """Top-level group a raw tag belongs to, or None for generic tags."""
    if not tag:
        return None
    return _TAG_TO_GROUP.get(tag)


def allowed_tags(filter_category: str) -> List[str]:
    """
    Raw tags accepted by a filter.

    The filter may be a subtype key, a top-level group key, or a raw tag
    that is not in the table.
    """
    for subtypes in TAXONOMY.values():
        if filter_category in subtypes:
            return list(subtypes[filter_category])
    if filter_category in TAXONOMY:
        tags: List[str] = []
        for subtype_tags in TAXONOMY[filter_category].values():
            tags.extend(subtype_tags)
        return tags
    return [filter_category]


def classify(place: StandardPlace) -> str:
    """Return the subtype for a place: primary category first, then types in order."""
    subtype = subtype_of(place.primary_category)
    if subtype:
        return subtype
    for tag in place.types:
        subtype = subtype_of(tag)
        if subtype:
            return subtype
    return UNKNOWN_TYPE


def is_mixed_use(place: StandardPlace) -> bool:
    if place.primary_category in MIXED_USE_PRIMARY_TYPES:
        return True
    primary_group = group_of(place.primary_category)
    if primary_group is None:
        return False
    for tag in place.types:
        other = group_of(tag)
        if other is not None and other != primary_group:
            return True
    return False


def matches_filter(place: StandardPlace, filter_category: Optional[str]) -> bool:
    """
    True when the place belongs under ``filter_category``.

    A primary-category match always counts. A match on a secondary tag only
    counts for places that are not mixed-use, so a hotel with a restaurant
    tag stays out of the restaurant filter.
    """
    if not filter_category or filter_category == ALL_TYPES:
        return True
    allowed = set(allowed_tags(filter_category))
    if place.primary_category in allowed:
        return True
    if not any(tag in allowed for tag in place.types):
        return False
    return not is_mixed_use(place)


def matches_any_filter(place: StandardPlace, filters: List[str]) -> bool:
    if not filters:
        return True
    return any(matches_filter(place, f) for f in filters)
