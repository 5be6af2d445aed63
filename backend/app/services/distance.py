"""Distance-based delivery pricing between two CEPs."""
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Tuple, Optional

from backend.app.core.cep import clean_cep
from backend.app.core.logging import get_logger

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0

BASE_COST = Decimal("8.00")
COST_PER_KM = Decimal("1.50")
FREE_KM = Decimal("5")
MIN_COST = Decimal("12.00")
MAX_COST = Decimal("45.00")

# Used when either CEP has no known coordinates
FALLBACK_DISTANCE_KM = 12.5
FALLBACK_COST = Decimal("18.50")

# Known CEP -> (lat, lon). Greater João Pessoa region.
POSTAL_CODE_COORDINATES: Dict[str, Tuple[float, float]] = {
    "58000000": (-7.1195, -34.8450),  # João Pessoa centro
    "58030000": (-7.1500, -34.8600),
    "58040000": (-7.1000, -34.8300),
    "58050000": (-7.1300, -34.8700),
    "58100000": (-6.9500, -35.2000),  # Santa Rita
    "58400000": (-7.2300, -35.8800),  # Campina Grande
}


def register_postal_code(cep: str, lat: float, lon: float) -> None:
    POSTAL_CODE_COORDINATES[clean_cep(cep)] = (lat, lon)


def get_coordinates(cep: str) -> Optional[Tuple[float, float]]:
    return POSTAL_CODE_COORDINATES.get(clean_cep(cep))


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def delivery_cost_for_distance(distance_km: float) -> Decimal:
    """R$ 8.00 + R$ 1.50 per km beyond 5 km, clamped to [12.00, 45.00]."""
    km = Decimal(str(distance_km))
    cost = BASE_COST + max(Decimal(0), km - FREE_KM) * COST_PER_KM
    cost = min(max(cost, MIN_COST), MAX_COST)
    return cost.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def calculate_delivery_cost(from_cep: str, to_cep: str) -> Dict[str, object]:
    """
    Delivery cost between pickup and destination CEPs.

    Returns:
        {"distance": float km rounded to 1 decimal, "cost": Decimal, "estimated": bool}
    """
    origin = get_coordinates(from_cep)
    destination = get_coordinates(to_cep)
    if origin is None or destination is None:
        logger.info(
            "Coordinates unknown, using fallback delivery cost",
            from_cep=clean_cep(from_cep),
            to_cep=clean_cep(to_cep),
        )
        return {"distance": FALLBACK_DISTANCE_KM, "cost": FALLBACK_COST, "estimated": True}

    distance = round(haversine_km(origin, destination), 1)
    return {"distance": distance, "cost": delivery_cost_for_distance(distance), "estimated": False}
