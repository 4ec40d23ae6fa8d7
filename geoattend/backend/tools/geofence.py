# geoattend/backend/tools/geofence.py

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

EARTH_RADIUS_METERS = 6_371_000
COORDINATE_PRECISION = 8


class InvalidCoordinatesError(ValueError):
    """Raised for non-numeric or out-of-range coordinates. Never clamped."""
    pass


class GeoConfigError(RuntimeError):
    """Campus configuration is missing or malformed. Fatal at startup."""
    pass


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float

    def as_text(self) -> str:
        return f"{self.latitude},{self.longitude}"


class GeoConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    campus_latitude: float
    campus_longitude: float
    campus_radius: float

    @property
    def center(self) -> Location:
        return Location(latitude=self.campus_latitude, longitude=self.campus_longitude)


def distance_meters(a: Location, b: Location) -> float:
    """Haversine great-circle distance in meters on a mean Earth radius."""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)
    h = (math.sin(dphi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2)
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_radius(user: Location, campus_center: Location, radius_meters: float) -> bool:
    """Inclusive boundary: a user exactly on the circle is inside."""
    return distance_meters(user, campus_center) <= radius_meters


def _to_float(value: Any) -> float:
    # bool, int'in alt sınıfı olduğu için ayrıca reddedilir.
    if isinstance(value, bool) or value is None:
        raise InvalidCoordinatesError("Coordinates must be numbers")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidCoordinatesError("Coordinates must be numbers")
    if not isinstance(value, (int, float)):
        raise InvalidCoordinatesError("Coordinates must be numbers")
    try:
        number = float(value)
    except (OverflowError, ValueError):
        raise InvalidCoordinatesError("Coordinates must be finite numbers")
    if math.isnan(number) or math.isinf(number):
        raise InvalidCoordinatesError("Coordinates must be finite numbers")
    return number


def validate_coordinates(latitude: float, longitude: float) -> bool:
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def sanitize_location(latitude: Any, longitude: Any) -> Location:
    """
    Kullanıcının gönderdiği koordinatları doğrular ve 8 ondalık basamağa indirger.

    Raises:
        InvalidCoordinatesError: Sayı değilse veya geçerli aralık dışındaysa.
    """
    lat = _to_float(latitude)
    lng = _to_float(longitude)
    if not validate_coordinates(lat, lng):
        raise InvalidCoordinatesError("Latitude must be between -90 and 90, longitude between -180 and 180")
    return Location(latitude=round(lat, COORDINATE_PRECISION), longitude=round(lng, COORDINATE_PRECISION))


def load_geo_config(latitude: Optional[str], longitude: Optional[str], radius: Optional[str]) -> GeoConfig:
    """Parses campus center and radius from raw configuration values."""
    if not latitude or not longitude or not radius:
        raise GeoConfigError("Missing required geo configuration (CAMPUS_LAT, CAMPUS_LON, CAMPUS_RADIUS)")
    try:
        lat, lng, rad = float(latitude), float(longitude), float(radius)
    except ValueError as e:
        raise GeoConfigError(f"Geo configuration is not numeric: {e}") from e

    if any(math.isnan(v) or math.isinf(v) for v in (lat, lng, rad)) or not validate_coordinates(lat, lng):
        raise GeoConfigError("Invalid campus coordinates in geo configuration")
    if rad <= 0:
        raise GeoConfigError("Invalid campus radius in geo configuration")
    return GeoConfig(campus_latitude=lat, campus_longitude=lng, campus_radius=rad)


def format_location_for_log(user: Location, config: GeoConfig) -> str:
    distance = distance_meters(user, config.center)
    valid = distance <= config.campus_radius
    return f"lat:{user.latitude:.6f},lng:{user.longitude:.6f},dist:{round(distance)}m,valid:{str(valid).lower()}"
