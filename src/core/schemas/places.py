from pydantic import BaseModel


class PlaceResult(BaseModel):
    """One ranked hit from the places search."""

    name: str
    address: str = ""
    lat: float
    lng: float
    place_id: str
    rating: float | None = None
    open_now: bool | None = None
