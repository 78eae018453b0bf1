# File: tests/unit/test_compatibility.py
"""
Unit tests for vehicle/spot compatibility and accessible pricing
"""

import unittest
from decimal import Decimal

from citypark.domain.compatibility import (
    can_park, effective_hourly_rate, eligible_spot_types
)
from citypark.domain.models import (
    LicensePlate, ParkingSpot, SpotType, Vehicle, VehicleType
)


class TestCompatibilityMatrix(unittest.TestCase):

    def test_allowed_pairs(self):
        expected = {
            VehicleType.MOTORCYCLE: {SpotType.COMPACT},
            VehicleType.CAR: {SpotType.COMPACT, SpotType.REGULAR},
            VehicleType.SUV: {SpotType.REGULAR},
            VehicleType.ACCESSIBLE: set(SpotType),
        }
        for vehicle_type in VehicleType:
            for spot_type in SpotType:
                with self.subTest(vehicle=vehicle_type, spot=spot_type):
                    self.assertEqual(
                        can_park(vehicle_type, spot_type),
                        spot_type in expected[vehicle_type]
                    )

    def test_eligible_types_follow_declaration_order(self):
        self.assertEqual(
            eligible_spot_types(VehicleType.CAR), [SpotType.COMPACT, SpotType.REGULAR]
        )
        self.assertEqual(eligible_spot_types(VehicleType.ACCESSIBLE), list(SpotType))


class TestEffectiveRate(unittest.TestCase):

    def setUp(self):
        self.accessible_spot = ParkingSpot(1, 3, 1, SpotType.ACCESSIBLE, Decimal("8.00"))
        self.regular_spot = ParkingSpot(1, 2, 2, SpotType.REGULAR)

    def _vehicle(self, vehicle_type, card=False):
        return Vehicle(LicensePlate("ACC123"), vehicle_type, has_accessibility_card=card)

    def test_card_holder_on_accessible_spot_pays_accessible_default(self):
        vehicle = self._vehicle(VehicleType.ACCESSIBLE, card=True)
        self.assertEqual(effective_hourly_rate(self.accessible_spot, vehicle), Decimal("2.00"))

    def test_no_card_pays_spot_rate(self):
        vehicle = self._vehicle(VehicleType.ACCESSIBLE, card=False)
        self.assertEqual(effective_hourly_rate(self.accessible_spot, vehicle), Decimal("8.00"))

    def test_card_holder_elsewhere_pays_spot_rate(self):
        vehicle = self._vehicle(VehicleType.ACCESSIBLE, card=True)
        self.assertEqual(effective_hourly_rate(self.regular_spot, vehicle), Decimal("5.00"))


if __name__ == '__main__':
    unittest.main()
