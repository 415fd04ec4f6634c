from pydantic import BaseModel, Field


class Coordinate(BaseModel):
    """WGS84 point in degrees."""

    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class GeocodedLocation(Coordinate):
    formatted_address: str
    place_id: str | None = None
