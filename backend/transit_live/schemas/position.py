import datetime

from pydantic import BaseModel


class TripPosition(BaseModel):
    id: str
    line: str
    product: str
    emoji: str
    origin: str
    destination: str
    lat: float
    lon: float
    detailed: bool
    details_age_seconds: float | None = None


class TripStopInfo(BaseModel):
    id: str
    name: str
    lat: float
    lon: float
    arrival: datetime.datetime | None = None
    departure: datetime.datetime | None = None
    cancelled: bool = False


class TripDetail(BaseModel):
    id: str
    line: str
    product: str
    origin: str
    destination: str
    cancelled: bool
    detailed: bool
    position: TripPosition | None = None
    stops: list[TripStopInfo] = []
    geometry: list[list[float]] | None = None  # [[lat, lon], ...]


class ViewUpdate(BaseModel):
    lat: float
    lon: float
