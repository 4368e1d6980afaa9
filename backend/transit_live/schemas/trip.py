"""Inbound trip payloads from the transport.rest HAFAS API.

A listing entry (preliminary) and a trip detail record (detailed) share the
identifier/cancellation/schedule projection in TripPayloadBase. The two are
told apart once, at ingestion, by parse_trip_payload.
"""

import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class Product(str, Enum):
    SUBURBAN = "suburban"
    SUBWAY = "subway"
    TRAM = "tram"
    BUS = "bus"
    FERRY = "ferry"
    OTHER = "other"


class Location(BaseModel):
    latitude: float
    longitude: float


class Line(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    product: Product = Product.OTHER

    @field_validator("product", mode="before")
    @classmethod
    def _unknown_product_is_other(cls, v: Any) -> Any:
        if v in Product._value2member_map_:
            return v
        return Product.OTHER


class Place(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str = ""
    location: Location | None = None


class FeatureGeometry(BaseModel):
    coordinates: tuple[float, float]  # [lon, lat]


class FeatureProperties(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None


class PolylineFeature(BaseModel):
    geometry: FeatureGeometry
    properties: FeatureProperties = Field(default_factory=FeatureProperties)


class Polyline(BaseModel):
    features: list[PolylineFeature] = []


class Stopover(BaseModel):
    model_config = ConfigDict(extra="allow")

    stop: Place
    arrival: datetime.datetime | None = None
    departure: datetime.datetime | None = None
    cancelled: bool = False


class TripPayloadBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    line: Line = Field(default_factory=Line)
    origin: Place | None = None
    destination: Place | None = None
    cancelled: bool = False
    departure: datetime.datetime | None = None
    arrival: datetime.datetime | None = None
    current_location: Location | None = Field(default=None, alias="currentLocation")


class PreliminaryTrip(TripPayloadBase):
    kind: Literal["preliminary"] = "preliminary"


class DetailedTrip(TripPayloadBase):
    kind: Literal["detailed"] = "detailed"
    polyline: Polyline
    stopovers: list[Stopover]


TripPayload = Annotated[Union[PreliminaryTrip, DetailedTrip], Field(discriminator="kind")]

_trip_payload_adapter = TypeAdapter(TripPayload)


class NotModified:
    """Marker for a detail request answered with 304 Not Modified."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_MODIFIED"


NOT_MODIFIED = NotModified()


def parse_trip_payload(raw: dict) -> PreliminaryTrip | DetailedTrip:
    """Resolve a raw API record into its variant.

    A record carrying both a polyline and a stopover list is detailed;
    anything else is preliminary. Raises pydantic.ValidationError on
    malformed input.
    """
    kind = "detailed" if raw.get("polyline") and raw.get("stopovers") is not None else "preliminary"
    return _trip_payload_adapter.validate_python({**raw, "kind": kind})
