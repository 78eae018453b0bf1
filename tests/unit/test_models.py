# File: tests/unit/test_models.py
"""
Unit tests for value objects and entities
"""

import unittest
from datetime import datetime
from decimal import Decimal

from citypark.domain.exceptions import InvalidPlateError, ValidationError
from citypark.domain.models import (
    LicensePlate, ParkingSpot, ParkingTicket, Payment, PaymentMethod, Receipt,
    SpotStatus, SpotType, Vehicle, VehicleType, to_money
)


class TestLicensePlate(unittest.TestCase):

    def test_separators_are_stripped_and_letters_upper_cased(self):
        self.assertEqual(LicensePlate("abc-123").value, "ABC123")
        self.assertEqual(LicensePlate(" WXY 9 ").value, "WXY9")

    def test_equal_plates_after_normalization(self):
        self.assertEqual(LicensePlate("abc 123"), LicensePlate("ABC-123"))

    def test_invalid_plates(self):
        for raw in ("", "   ", "AB", "A-B", "ABCDEFGHIJK"):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidPlateError):
                    LicensePlate(raw)

    def test_is_valid_does_not_raise(self):
        self.assertTrue(LicensePlate.is_valid("VAB 1234"))
        self.assertFalse(LicensePlate.is_valid("!!"))
        self.assertFalse(LicensePlate.is_valid(None))

    def test_invalid_plate_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            LicensePlate("X")


class TestCategories(unittest.TestCase):

    def test_vehicle_type_parse(self):
        self.assertEqual(VehicleType.parse("Car"), VehicleType.CAR)
        self.assertEqual(VehicleType.parse(" suv "), VehicleType.SUV)
        self.assertEqual(VehicleType.parse(VehicleType.MOTORCYCLE), VehicleType.MOTORCYCLE)
        with self.assertRaises(ValidationError):
            VehicleType.parse("bus")

    def test_spot_type_default_rates(self):
        self.assertEqual(SpotType.COMPACT.default_rate, Decimal("2.00"))
        self.assertEqual(SpotType.REGULAR.default_rate, Decimal("5.00"))
        self.assertEqual(SpotType.ACCESSIBLE.default_rate, Decimal("2.00"))
        self.assertEqual(SpotType.RESERVED.default_rate, Decimal("10.00"))

    def test_labels(self):
        self.assertEqual(str(VehicleType.SUV), "SUV/Truck")
        self.assertEqual(str(SpotType.RESERVED), "Reserved")
        self.assertEqual(str(PaymentMethod.CARD), "Card")


class TestParkingSpot(unittest.TestCase):

    def test_key_format(self):
        spot = ParkingSpot(1, 2, 5, SpotType.REGULAR)
        self.assertEqual(spot.key, "F1-R2-S5")
        self.assertEqual(spot.sort_key, (1, 2, 5))

    def test_rate_defaults_to_spot_type(self):
        self.assertEqual(ParkingSpot(1, 1, 1, SpotType.RESERVED).hourly_rate, Decimal("10.00"))
        self.assertEqual(
            ParkingSpot(1, 1, 1, SpotType.RESERVED, Decimal("12.5")).hourly_rate,
            Decimal("12.50")
        )

    def test_invalid_spots(self):
        with self.assertRaises(ValidationError):
            ParkingSpot(0, 1, 1, SpotType.COMPACT)
        with self.assertRaises(ValidationError):
            ParkingSpot(1, 1, 1, SpotType.COMPACT, Decimal("-1"))

    def test_occupy_and_vacate(self):
        spot = ParkingSpot(1, 1, 1, SpotType.COMPACT)
        spot.occupy("ABC123")
        self.assertEqual(spot.status, SpotStatus.OCCUPIED)
        self.assertFalse(spot.is_available)
        self.assertEqual(spot.vacate(), "ABC123")
        self.assertTrue(spot.is_available)
        self.assertIsNone(spot.occupant_plate)


class TestVehicle(unittest.TestCase):

    def test_identity_is_plate(self):
        vehicle = Vehicle(LicensePlate("abc123"), VehicleType.CAR)
        self.assertEqual(vehicle.id, "ABC123")
        self.assertEqual(vehicle.plate, "ABC123")

    def test_card_only_kept_for_accessible_vehicles(self):
        car = Vehicle(LicensePlate("CAR1"), VehicleType.CAR, has_accessibility_card=True)
        accessible = Vehicle(LicensePlate("ACC1"), VehicleType.ACCESSIBLE, has_accessibility_card=True)
        self.assertFalse(car.has_accessibility_card)
        self.assertTrue(accessible.has_accessibility_card)


class TestTicketAndPayment(unittest.TestCase):

    def setUp(self):
        self.when = datetime(2024, 1, 1, 8, 30, 0)

    def test_ticket_id(self):
        ticket = ParkingTicket("ABC123", "F1-R1-S1", self.when)
        self.assertEqual(ticket.ticket_id, "T-ABC123-20240101083000")

    def test_payment_totals_and_id(self):
        payment = Payment(
            plate="ABC123",
            ticket_id="T-ABC123-20240101083000",
            parking_fee=Decimal("6"),
            fine_amount=Decimal("50"),
            method=PaymentMethod.CASH,
            payment_time=self.when,
        )
        self.assertEqual(payment.total_amount, Decimal("56.00"))
        self.assertEqual(payment.payment_id, "P-ABC123-20240101083000")
        self.assertEqual(payment.to_dict()["method"], "cash")

    def test_negative_payment_rejected(self):
        with self.assertRaises(ValidationError):
            Payment("ABC123", "T-1", Decimal("-1"), Decimal("0"), PaymentMethod.CASH, self.when)

    def test_receipt_id_mirrors_payment_id(self):
        payment = Payment("ABC123", "T-1", Decimal("2"), Decimal("0"), PaymentMethod.CARD, self.when)
        receipt = Receipt(
            payment=payment,
            spot_key="F1-R1-S1",
            spot_type=SpotType.COMPACT,
            entry_time=self.when,
            exit_time=self.when,
            duration_hours=1,
            hourly_rate=Decimal("2.00"),
            overstay_fine=Decimal("0.00"),
            previous_fines=Decimal("0.00"),
        )
        self.assertEqual(receipt.receipt_id, "R-ABC123-20240101083000")

    def test_to_money_rounds_half_up(self):
        self.assertEqual(to_money("2.345"), Decimal("2.35"))
        self.assertEqual(to_money(3), Decimal("3.00"))
        with self.assertRaises(ValidationError):
            to_money("lots")


if __name__ == '__main__':
    unittest.main()
