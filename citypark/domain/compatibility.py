# File: citypark/domain/compatibility.py
"""
Compatibility rules between vehicle and spot categories

    Vehicle      | Compact | Regular | Accessible | Reserved
    -------------+---------+---------+------------+---------
    Motorcycle   |    x    |         |            |
    Car          |    x    |    x    |            |
    SUV          |         |    x    |            |
    Accessible   |    x    |    x    |     x      |    x

Accessible vehicles holding a valid card are billed the accessible default
rate when they occupy an accessible spot, whatever that spot is configured
to charge.
"""

from decimal import Decimal
from typing import Dict, FrozenSet, List

from .models import SpotType, VehicleType, ParkingSpot, Vehicle


COMPATIBILITY_MATRIX: Dict[VehicleType, FrozenSet[SpotType]] = {
    VehicleType.MOTORCYCLE: frozenset({SpotType.COMPACT}),
    VehicleType.CAR: frozenset({SpotType.COMPACT, SpotType.REGULAR}),
    VehicleType.SUV: frozenset({SpotType.REGULAR}),
    VehicleType.ACCESSIBLE: frozenset(SpotType),
}


def can_park(vehicle_type: VehicleType, spot_type: SpotType) -> bool:
    """Check if a vehicle category may occupy a spot category"""
    return spot_type in COMPATIBILITY_MATRIX.get(vehicle_type, frozenset())


def eligible_spot_types(vehicle_type: VehicleType) -> List[SpotType]:
    """Spot categories a vehicle may use, in enum declaration order"""
    allowed = COMPATIBILITY_MATRIX.get(vehicle_type, frozenset())
    return [spot_type for spot_type in SpotType if spot_type in allowed]


def qualifies_for_accessible_rate(vehicle: Vehicle, spot: ParkingSpot) -> bool:
    return (
        vehicle.vehicle_type == VehicleType.ACCESSIBLE
        and vehicle.has_accessibility_card
        and spot.spot_type == SpotType.ACCESSIBLE
    )


def effective_hourly_rate(spot: ParkingSpot, vehicle: Vehicle) -> Decimal:
    """
    Hourly rate billed for this vehicle on this spot
    Applies the accessible pricing override, otherwise the spot's own rate
    """
    if qualifies_for_accessible_rate(vehicle, spot):
        return SpotType.ACCESSIBLE.default_rate
    return spot.hourly_rate
