"""
Typed payload schemas for both generations of the Places lookup service,
plus the named field profiles the resolver requests.

Raw responses are validated here before normalization so that the rest of
the pipeline never handles untyped dicts.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ----------------------------------------------------------------------------
# Current-generation ("new") Places API
# ----------------------------------------------------------------------------


class NewLocalizedText(_Payload):
    text: str
    language_code: Optional[str] = Field(default=None, alias="languageCode")


class NewLatLng(_Payload):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class NewPhoto(_Payload):
    name: str
    width_px: Optional[int] = Field(default=None, alias="widthPx")
    height_px: Optional[int] = Field(default=None, alias="heightPx")


class NewAttribution(_Payload):
    provider: Optional[str] = None
    provider_uri: Optional[str] = Field(default=None, alias="providerUri")


class NewOpeningHours(_Payload):
    open_now: Optional[bool] = Field(default=None, alias="openNow")
    weekday_descriptions: List[str] = Field(default_factory=list, alias="weekdayDescriptions")


class NewAuthorAttribution(_Payload):
    display_name: Optional[str] = Field(default=None, alias="displayName")


class NewReview(_Payload):
    rating: Optional[float] = None
    text: Optional[NewLocalizedText] = None
    author_attribution: Optional[NewAuthorAttribution] = Field(default=None, alias="authorAttribution")
    publish_time: Optional[str] = Field(default=None, alias="publishTime")


class NewPlacePayload(_Payload):
    id: str = Field(min_length=1)
    display_name: Optional[NewLocalizedText] = Field(default=None, alias="displayName")
    types: List[str] = Field(default_factory=list)
    primary_type: Optional[str] = Field(default=None, alias="primaryType")
    location: Optional[NewLatLng] = None
    formatted_address: Optional[str] = Field(default=None, alias="formattedAddress")
    short_formatted_address: Optional[str] = Field(default=None, alias="shortFormattedAddress")
    rating: Optional[float] = None
    user_rating_count: Optional[int] = Field(default=None, alias="userRatingCount")
    price_level: Optional[str] = Field(default=None, alias="priceLevel")
    photos: List[NewPhoto] = Field(default_factory=list)
    attributions: List[NewAttribution] = Field(default_factory=list)
    regular_opening_hours: Optional[NewOpeningHours] = Field(default=None, alias="regularOpeningHours")
    website_uri: Optional[str] = Field(default=None, alias="websiteUri")
    national_phone_number: Optional[str] = Field(default=None, alias="nationalPhoneNumber")
    international_phone_number: Optional[str] = Field(default=None, alias="internationalPhoneNumber")
    editorial_summary: Optional[NewLocalizedText] = Field(default=None, alias="editorialSummary")
    reviews: List[NewReview] = Field(default_factory=list)


class NewSearchResponse(_Payload):
    # The service omits "places" entirely when nothing matched.
    places: List[NewPlacePayload] = Field(default_factory=list)


# ----------------------------------------------------------------------------
# Legacy Places API
# ----------------------------------------------------------------------------


class LegacyLatLng(_Payload):
    lat: Optional[float] = None
    lng: Optional[float] = None


class LegacyGeometry(_Payload):
    location: Optional[LegacyLatLng] = None


class LegacyPhoto(_Payload):
    photo_reference: str
    width: Optional[int] = None
    height: Optional[int] = None
    html_attributions: List[str] = Field(default_factory=list)


class LegacyOpeningHours(_Payload):
    open_now: Optional[bool] = None
    weekday_text: List[str] = Field(default_factory=list)


class LegacyReview(_Payload):
    author_name: Optional[str] = None
    rating: Optional[float] = None
    text: Optional[str] = None
    time: Optional[int] = None


class LegacyEditorialSummary(_Payload):
    overview: Optional[str] = None


class LegacyPlacePayload(_Payload):
    place_id: str = Field(min_length=1)
    name: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    vicinity: Optional[str] = None
    formatted_address: Optional[str] = None
    geometry: Optional[LegacyGeometry] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    photos: List[LegacyPhoto] = Field(default_factory=list)
    website: Optional[str] = None
    formatted_phone_number: Optional[str] = None
    opening_hours: Optional[LegacyOpeningHours] = None
    reviews: List[LegacyReview] = Field(default_factory=list)
    editorial_summary: Optional[LegacyEditorialSummary] = None


class LegacySearchResponse(_Payload):
    status: str
    results: List[LegacyPlacePayload] = Field(default_factory=list)
    html_attributions: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class LegacyDetailsResponse(_Payload):
    status: str
    result: Optional[LegacyPlacePayload] = None
    html_attributions: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None


# ----------------------------------------------------------------------------
# Field profiles
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldProfile:
    """A named subset of response fields requested from the service."""
    name: str
    new_fields: Tuple[str, ...]
    legacy_fields: Tuple[str, ...]

    def new_field_mask(self, prefix: str = "") -> str:
        return ",".join(f"{prefix}{f}" for f in self.new_fields)

    def legacy_field_list(self) -> str:
        return ",".join(self.legacy_fields)


_BASIC_NEW = ("id", "displayName", "location", "types", "primaryType")
_BASIC_LEGACY = ("place_id", "name", "geometry", "types")
_STANDARD_NEW = _BASIC_NEW + (
    "rating",
    "userRatingCount",
    "priceLevel",
    "formattedAddress",
    "shortFormattedAddress",
    "photos",
    "attributions",
)
_STANDARD_LEGACY = _BASIC_LEGACY + (
    "rating",
    "user_ratings_total",
    "price_level",
    "formatted_address",
    "vicinity",
    "photos",
)

FIELD_PROFILES: Dict[str, FieldProfile] = {
    "search-basic": FieldProfile("search-basic", _BASIC_NEW, _BASIC_LEGACY),
    "search-standard": FieldProfile("search-standard", _STANDARD_NEW, _STANDARD_LEGACY),
    "details-full": FieldProfile(
        "details-full",
        _STANDARD_NEW
        + (
            "regularOpeningHours",
            "websiteUri",
            "nationalPhoneNumber",
            "internationalPhoneNumber",
            "reviews",
            "editorialSummary",
        ),
        _STANDARD_LEGACY
        + (
            "opening_hours",
            "website",
            "formatted_phone_number",
            "reviews",
            "editorial_summary",
        ),
    ),
}


def get_field_profile(name: str) -> FieldProfile:
    try:
        return FIELD_PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown field profile: {name}") from None
