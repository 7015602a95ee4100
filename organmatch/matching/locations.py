"""Location resolution - map place names to coordinates"""

from typing import Dict, Optional, Protocol

from loguru import logger

from organmatch.data.schema import Coordinates


# Cities served by the original hospital network
DEFAULT_CITY_COORDINATES: Dict[str, Coordinates] = {
    "mumbai": Coordinates(lat=19.0760, lon=72.8777),
    "delhi": Coordinates(lat=28.6139, lon=77.2090),
    "chennai": Coordinates(lat=13.0827, lon=80.2707),
    "bangalore": Coordinates(lat=12.9716, lon=77.5946),
    "kolkata": Coordinates(lat=22.5726, lon=88.3639),
    "hyderabad": Coordinates(lat=17.3850, lon=78.4867),
    "pune": Coordinates(lat=18.5204, lon=73.8567),
    "ahmedabad": Coordinates(lat=23.0225, lon=72.5714),
    "jaipur": Coordinates(lat=26.9124, lon=75.7873),
    "lucknow": Coordinates(lat=26.8467, lon=80.9462),
}


class LocationResolver(Protocol):
    """Anything that can turn a place name into coordinates"""

    def resolve(self, name: str) -> Optional[Coordinates]:
        ...


class StaticLocationResolver:
    """
    Lookup-table resolver

    Names are matched case-insensitively after trimming whitespace.
    """

    def __init__(self, table: Optional[Dict[str, Coordinates]] = None):
        source = DEFAULT_CITY_COORDINATES if table is None else table
        self._table = {name.strip().lower(): coords for name, coords in source.items()}

    def resolve(self, name: str) -> Optional[Coordinates]:
        key = name.strip().lower()
        coords = self._table.get(key)
        if coords is None:
            logger.warning(f"Unknown location '{name}', treating as out of range")
        return coords

    def __contains__(self, name: str) -> bool:
        return name.strip().lower() in self._table
