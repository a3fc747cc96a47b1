"""
Calculs de distance et classification du pointage.
"""

import math

from unitrack.services.errors import OutOfRange

EARTH_RADIUS_METERS = 6371000

STATUS_PRESENT = "present"
STATUS_LATE = "late"

OUT_OF_RANGE_POLICIES = ("late", "reject")


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance orthodromique entre deux points GPS, en mètres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2
         + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def classify_check_in(distance_meters: float, allowed_radius_meters: float, policy: str = "late") -> str:
    """
    present dans le rayon (bornes incluses). Au-delà : late, ou OutOfRange
    si la politique vaut "reject".
    """
    if policy not in OUT_OF_RANGE_POLICIES:
        raise ValueError(f"Politique hors rayon inconnue : {policy}")
    if distance_meters <= allowed_radius_meters:
        return STATUS_PRESENT
    if policy == "reject":
        raise OutOfRange(distance_meters, allowed_radius_meters)
    return STATUS_LATE
