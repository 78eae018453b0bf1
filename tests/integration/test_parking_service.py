# File: tests/integration/test_parking_service.py
"""
Integration tests for ParkingService over both stores

Time is driven by FakeClock; store failures are injected with
unittest.mock so the rollback guarantees can be checked.
"""

import threading
import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from citypark.application.parking_service import ParkingService, PaymentProcessor
from citypark.config import Settings
from citypark.domain.exceptions import (
    DuplicateVehicleError, IncompatibleCategoryError, InfrastructureError,
    InvalidPlateError, NoAvailableSpotError, PaymentValidationError,
    SpotNotFoundError, SpotOccupiedError, ValidationError, VehicleNotFoundError
)
from citypark.domain.models import ParkingSpot, SpotType
from citypark.domain.strategies import HourlyFineStrategy
from citypark.infrastructure.factories import ServiceFactory
from citypark.infrastructure.repositories import (
    CachingRepository, InMemoryUnitOfWork, RepositoryFactory, TicketRepository
)


START = datetime(2024, 1, 1, 8, 0, 0)


class FakeClock:
    """Controllable replacement for datetime.now"""

    def __init__(self, start=START):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class ServiceTestBase(unittest.TestCase):
    """One-floor lot (18 spots) over an in-memory store"""

    def setUp(self):
        self.clock = FakeClock()
        self.uow = InMemoryUnitOfWork()
        self.service = ParkingService(self.uow, clock=self.clock)
        self.service.restore(num_floors=1)


# ============================================================================
# ENTRY
# ============================================================================

class TestEntryTransaction(ServiceTestBase):

    def test_car_gets_first_compatible_spot(self):
        ticket = self.service.open_session("abc-123", "car")
        self.assertEqual(ticket.plate, "ABC123")
        self.assertEqual(ticket.spot_key, "F1-R1-S1")
        self.assertEqual(ticket.ticket_id, "T-ABC123-20240101080000")
        self.assertEqual(ticket.hourly_rate, Decimal("2.00"))
        self.assertEqual(ticket.entry_time, START)
        self.assertTrue(self.service.is_parked("ABC123"))

    def test_entry_is_persisted(self):
        self.service.open_session("ABC123", "car")
        self.assertIsNotNone(self.uow.tickets.find_by_plate("ABC123"))
        self.assertEqual(self.uow.spots.get("F1-R1-S1").occupant_plate, "ABC123")
        self.assertTrue(self.uow.vehicles.exists("ABC123"))

    def test_suv_skips_compact_row(self):
        self.assertEqual(self.service.open_session("SUV001", "suv").spot_key, "F1-R2-S6")

    def test_duplicate_vehicle(self):
        self.service.open_session("ABC123", "car")
        with self.assertRaises(DuplicateVehicleError):
            self.service.open_session("abc 123", "car")

    def test_invalid_input(self):
        with self.assertRaises(InvalidPlateError):
            self.service.open_session("!", "car")
        with self.assertRaises(ValidationError):
            self.service.open_session("ABC123", "bus")

    def test_no_available_spot(self):
        for i in range(5):
            self.service.open_session(f"MOTO{i}", "motorcycle")
        with self.assertRaises(NoAvailableSpotError):
            self.service.open_session("MOTO9", "motorcycle")
        self.assertEqual(self.service.occupancy_stats().occupied_spots, 5)

    def test_preferred_spot(self):
        ticket = self.service.open_session("RES001", "accessible", preferred_spot_key="F1-R4-S16")
        self.assertEqual(ticket.spot_key, "F1-R4-S16")
        self.assertEqual(ticket.hourly_rate, Decimal("10.00"))

        with self.assertRaises(SpotOccupiedError):
            self.service.open_session("CAR001", "car", preferred_spot_key="F1-R4-S16")
        with self.assertRaises(IncompatibleCategoryError):
            self.service.open_session("SUV001", "suv", preferred_spot_key="F1-R1-S1")
        with self.assertRaises(SpotNotFoundError):
            self.service.open_session("CAR002", "car", preferred_spot_key="F7-R1-S1")
        self.assertFalse(self.service.is_parked("SUV001"))

    def test_store_failure_leaves_registry_unchanged(self):
        with patch.object(self.uow.tickets, "add", side_effect=SQLAlchemyError("disk full")):
            with self.assertRaises(InfrastructureError):
                self.service.open_session("ABC123", "car")

        self.assertFalse(self.service.is_parked("ABC123"))
        self.assertTrue(self.service.lot.get_spot("F1-R1-S1").is_available)
        self.assertTrue(self.uow.spots.get("F1-R1-S1").is_available)
        self.assertEqual(self.uow.vehicles.count(), 0)

        # The same vehicle can enter once the store recovers
        self.assertEqual(self.service.open_session("ABC123", "car").spot_key, "F1-R1-S1")


# ============================================================================
# EXIT
# ============================================================================

class TestExitTransaction(ServiceTestBase):

    def test_round_trip(self):
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=2, minutes=30)
        receipt = self.service.close_session("ABC123", "cash")

        self.assertEqual(receipt.duration_hours, 3)
        self.assertEqual(receipt.parking_fee, Decimal("6.00"))
        self.assertEqual(receipt.fine_amount, Decimal("0.00"))
        self.assertEqual(receipt.total_amount, Decimal("6.00"))
        self.assertEqual(receipt.payment_id, "P-ABC123-20240101103000")
        self.assertEqual(receipt.method, "cash")

        self.assertFalse(self.service.is_parked("ABC123"))
        self.assertTrue(self.service.lot.get_spot("F1-R1-S1").is_available)
        self.assertTrue(self.uow.spots.get("F1-R1-S1").is_available)
        self.assertIsNone(self.uow.tickets.find_by_plate("ABC123"))
        self.assertFalse(self.uow.vehicles.exists("ABC123"))
        self.assertEqual(self.service.occupancy_stats().occupied_spots, 0)

        revenue = self.service.revenue_summary()
        self.assertEqual(revenue.total_revenue, Decimal("6.00"))
        self.assertEqual(revenue.payment_count, 1)
        self.assertEqual(revenue.by_method["cash"], Decimal("6.00"))

    def test_unknown_vehicle(self):
        with self.assertRaises(VehicleNotFoundError):
            self.service.close_session("NOPE99", "cash")

    def test_overstay_uses_active_policy(self):
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=26)
        receipt = self.service.close_session("ABC123", "card")
        self.assertEqual(receipt.parking_fee, Decimal("52.00"))
        self.assertEqual(receipt.overstay_fine, Decimal("50.00"))
        self.assertEqual(receipt.total_amount, Decimal("102.00"))

    def test_exit_recomputes_after_preview(self):
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=26)
        preview = self.service.preview_bill("ABC123")
        self.assertEqual(preview.total_fine, Decimal("50.00"))

        self.service.set_fine_policy("hourly")
        self.clock.advance(hours=1)
        receipt = self.service.close_session("ABC123", "cash")
        self.assertEqual(receipt.duration_hours, 27)
        self.assertEqual(receipt.overstay_fine, Decimal("60.00"))
        self.assertEqual(receipt.total_amount, Decimal("114.00"))

    def test_previous_fines_are_collected_and_settled(self):
        self.service.add_fine("ABC123", "30", "Blocked lane")
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=1)

        self.assertEqual(self.service.preview_bill("ABC123").previous_fines, Decimal("30.00"))
        receipt = self.service.close_session("ABC123", "cash")
        self.assertEqual(receipt.previous_fines, Decimal("30.00"))
        self.assertEqual(receipt.fine_amount, Decimal("30.00"))
        self.assertEqual(receipt.total_amount, Decimal("32.00"))
        self.assertEqual(self.service.unpaid_fines("ABC123"), Decimal("0.00"))
        self.assertTrue(all(f.paid for f in self.service.fines_for("ABC123")))

    def test_invalid_payment_method_changes_nothing(self):
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=1)
        with self.assertRaises(PaymentValidationError):
            self.service.close_session("ABC123", "bitcoin")

        self.assertTrue(self.service.is_parked("ABC123"))
        self.assertIsNotNone(self.uow.tickets.find_by_plate("ABC123"))
        self.assertEqual(self.uow.payments.count(), 0)

    def test_store_failure_rolls_back_everything(self):
        self.service.add_fine("ABC123", "30")
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=3)

        with patch.object(self.uow.tickets, "delete", side_effect=SQLAlchemyError("boom")):
            with self.assertRaises(InfrastructureError):
                self.service.close_session("ABC123", "cash")

        self.assertTrue(self.service.is_parked("ABC123"))
        self.assertFalse(self.service.lot.get_spot("F1-R1-S1").is_available)
        self.assertEqual(self.uow.spots.get("F1-R1-S1").occupant_plate, "ABC123")
        self.assertTrue(self.uow.vehicles.exists("ABC123"))
        self.assertEqual(self.uow.payments.count(), 0)
        self.assertEqual(self.uow.fines.get_unpaid_total("ABC123"), Decimal("30.00"))

        # A retry after the failure succeeds
        self.clock.advance(seconds=5)
        receipt = self.service.close_session("ABC123", "cash")
        self.assertEqual(receipt.total_amount, Decimal("36.00"))

    def test_repeat_visits(self):
        for _ in range(2):
            self.service.open_session("ABC123", "car")
            self.clock.advance(hours=1)
            self.service.close_session("ABC123", "card")
            self.clock.advance(minutes=5)

        history = self.service.payment_history("ABC123")
        self.assertEqual(len(history), 2)
        self.assertEqual(self.service.revenue_summary().by_method["card"], Decimal("4.00"))

    def test_second_exit_in_the_same_second_is_a_store_failure(self):
        self.service.open_session("ABC123", "car")
        self.service.close_session("ABC123", "cash")
        self.service.open_session("ABC123", "car")

        with self.assertRaises(InfrastructureError) as ctx:
            self.service.close_session("ABC123", "cash")
        self.assertEqual(ctx.exception.plate, "ABC123")
        self.assertIn("P-ABC123-20240101080000", str(ctx.exception))

        self.assertTrue(self.service.is_parked("ABC123"))
        self.assertIsNotNone(self.uow.tickets.find_by_plate("ABC123"))
        self.assertEqual(self.uow.payments.count(), 1)

        self.clock.advance(seconds=1)
        self.service.close_session("ABC123", "cash")
        self.assertFalse(self.service.is_parked("ABC123"))


class TestAccessiblePricing(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.uow = InMemoryUnitOfWork()
        self.uow.spots.add(ParkingSpot(1, 3, 1, SpotType.ACCESSIBLE, Decimal("8.00")))
        self.service = ParkingService(self.uow, clock=self.clock)
        self.service.restore()

    def test_card_holder_billed_accessible_rate(self):
        ticket = self.service.open_session("ACC001", "accessible", has_accessibility_card=True)
        self.assertEqual(ticket.hourly_rate, Decimal("2.00"))
        self.clock.advance(hours=2)
        self.assertEqual(self.service.close_session("ACC001", "cash").total_amount, Decimal("4.00"))

    def test_without_card_billed_spot_rate(self):
        ticket = self.service.open_session("ACC002", "accessible")
        self.assertEqual(ticket.hourly_rate, Decimal("8.00"))
        self.clock.advance(hours=2)
        self.assertEqual(self.service.close_session("ACC002", "cash").total_amount, Decimal("16.00"))


# ============================================================================
# QUERIES AND ADMINISTRATION
# ============================================================================

class TestQueries(ServiceTestBase):

    def test_list_available(self):
        spots = self.service.list_available("suv")
        self.assertEqual(len(spots), 8)
        self.assertEqual(spots[0].key, "F1-R2-S6")
        self.service.open_session("SUV001", "suv")
        self.assertEqual(self.service.list_available("suv")[0].key, "F1-R2-S7")

    def test_occupancy_stats(self):
        self.service.open_session("ABC123", "car")
        stats = self.service.occupancy_stats()
        self.assertEqual(stats.total_spots, 18)
        self.assertEqual(stats.occupied_spots, 1)
        self.assertAlmostEqual(stats.occupancy_rate, 100.0 / 18)
        self.assertEqual(stats.by_type["compact"].occupied, 1)
        self.assertEqual(stats.by_floor[1].available, 17)
        self.assertEqual(stats.fine_policy, "Fixed Fine (RM 50 flat)")

    def test_current_vehicles_ordered_by_entry(self):
        self.service.open_session("LATE01", "car")
        self.clock.advance(minutes=10)
        self.service.open_session("LATE02", "suv")
        plates = [v.plate for v in self.service.current_vehicles()]
        self.assertEqual(plates, ["LATE01", "LATE02"])

    def test_preview_unknown_vehicle(self):
        with self.assertRaises(VehicleNotFoundError):
            self.service.preview_bill("NOPE99")


class TestAdministration(ServiceTestBase):

    def test_set_fine_policy(self):
        result = self.service.set_fine_policy("progressive")
        self.assertEqual(result.policy, "progressive")
        self.assertEqual(result.name, "Progressive Scheme (Tiered)")
        self.assertEqual(self.service.set_fine_policy(HourlyFineStrategy()).policy, "hourly")
        with self.assertRaises(ValidationError):
            self.service.set_fine_policy("weekly")
        self.assertEqual(self.service.fine_strategy.name, "Hourly Scheme (RM 20/hr)")

    def test_fine_policy_is_stored_for_later_services(self):
        self.service.set_fine_policy("progressive")
        self.assertEqual(self.uow.lot_settings.get("fine_policy"), "progressive")

        restarted = ParkingService(self.uow, clock=self.clock)
        restarted.restore(num_floors=1)
        self.assertEqual(restarted.fine_strategy.name, "Progressive Scheme (Tiered)")

        pinned = ParkingService(self.uow, fine_strategy=HourlyFineStrategy(), clock=self.clock)
        pinned.restore(num_floors=1)
        self.assertEqual(pinned.fine_strategy.name, "Hourly Scheme (RM 20/hr)")

    def test_unknown_stored_policy_is_ignored(self):
        self.uow.lot_settings.set("fine_policy", "weekly")
        restarted = ParkingService(self.uow, clock=self.clock)
        restarted.restore(num_floors=1)
        self.assertEqual(restarted.fine_strategy.name, "Fixed Fine (RM 50 flat)")

    def test_policy_change_store_failure(self):
        with patch.object(self.uow.lot_settings, "set", side_effect=SQLAlchemyError("boom")):
            with self.assertRaises(InfrastructureError):
                self.service.set_fine_policy("hourly")
        self.assertEqual(self.service.fine_strategy.name, "Fixed Fine (RM 50 flat)")
        self.assertIsNone(self.uow.lot_settings.get("fine_policy"))

    def test_outstanding_fines(self):
        self.assertEqual(self.service.outstanding_fines(), [])
        self.service.add_fine("ABC123", "30", "Blocked lane")
        self.clock.advance(minutes=1)
        self.service.add_fine("XYZ999", "10")
        self.clock.advance(minutes=1)
        self.service.add_fine("ABC123", "5", "Lost ticket")

        fines = self.service.outstanding_fines()
        self.assertEqual([f.plate for f in fines], ["ABC123", "XYZ999", "ABC123"])
        self.assertEqual(sum(f.amount for f in fines), Decimal("45.00"))

        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=1)
        self.service.close_session("ABC123", "cash")
        remaining = self.service.outstanding_fines()
        self.assertEqual([f.plate for f in remaining], ["XYZ999"])
        self.assertFalse(remaining[0].paid)

    def test_add_fine_validation(self):
        with self.assertRaises(ValidationError):
            self.service.add_fine("ABC123", 0)
        with self.assertRaises(ValidationError):
            self.service.add_fine("ABC123", "lots")
        fine = self.service.add_fine("ABC123", Decimal("12.5"), "Lost ticket")
        self.assertEqual(fine.amount, Decimal("12.50"))
        self.assertFalse(fine.paid)
        self.assertEqual(self.service.unpaid_fines("abc-123"), Decimal("12.50"))


class TestRestore(ServiceTestBase):

    def test_new_service_picks_up_active_sessions(self):
        self.service.open_session("ABC123", "car")
        self.service.open_session("SUV001", "suv")

        restarted = ParkingService(self.uow, clock=self.clock)
        self.assertEqual(restarted.restore(num_floors=1), 2)
        self.assertTrue(restarted.is_parked("ABC123"))
        self.assertEqual(restarted.occupancy_stats().occupied_spots, 2)
        self.assertEqual(restarted.lot.find_spot_by_plate("SUV001").key, "F1-R2-S6")

        self.clock.advance(hours=1)
        receipt = restarted.close_session("SUV001", "card")
        self.assertEqual(receipt.total_amount, Decimal("5.00"))

    def test_layout_is_created_once(self):
        self.assertEqual(self.uow.spots.count(), 18)
        ParkingService(self.uow, clock=self.clock).restore(num_floors=3)
        self.assertEqual(self.uow.spots.count(), 18)


class TestConcurrentEntries(ServiceTestBase):

    def test_no_spot_is_double_booked(self):
        outcomes = []

        def park(i):
            try:
                outcomes.append(self.service.open_session(f"CAR{i:03d}", "car").spot_key)
            except NoAvailableSpotError:
                outcomes.append(None)

        threads = [threading.Thread(target=park, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        taken = [key for key in outcomes if key is not None]
        self.assertEqual(len(outcomes), 20)
        self.assertEqual(len(taken), 13)
        self.assertEqual(len(set(taken)), 13)
        self.assertEqual(self.uow.tickets.count(), 13)


class TestPaymentProcessor(unittest.TestCase):

    def test_parse_method(self):
        self.assertEqual(PaymentProcessor.parse_method("CARD").value, "card")
        with self.assertRaises(PaymentValidationError):
            PaymentProcessor.parse_method(None)

    def test_calculate_change(self):
        self.assertEqual(PaymentProcessor.calculate_change(Decimal("6"), Decimal("10")), Decimal("4.00"))
        with self.assertRaises(PaymentValidationError):
            PaymentProcessor.calculate_change(Decimal("6"), Decimal("5"))


# ============================================================================
# SQLALCHEMY STORE
# ============================================================================

class TestServiceOverSQLAlchemy(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.uow = RepositoryFactory.create_sqlalchemy_uow("sqlite://")
        self.service = ParkingService(self.uow, clock=self.clock)
        self.service.restore(num_floors=2)

    def test_round_trip(self):
        self.service.add_fine("ABC123", "20")
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=25)
        receipt = self.service.close_session("ABC123", "card")

        self.assertEqual(receipt.parking_fee, Decimal("50.00"))
        self.assertEqual(receipt.fine_amount, Decimal("70.00"))
        self.assertEqual(receipt.total_amount, Decimal("120.00"))
        self.assertEqual(self.service.revenue_summary().total_revenue, Decimal("120.00"))
        self.assertEqual(self.service.unpaid_fines("ABC123"), Decimal("0.00"))

    def test_restore_from_database(self):
        self.service.open_session("ABC123", "car")
        restarted = ParkingService(self.uow, clock=self.clock)
        self.assertEqual(restarted.restore(num_floors=2), 1)
        self.assertEqual(restarted.lot.total_spots, 36)
        self.assertEqual(restarted.current_vehicles()[0].entry_time, START)

    def test_exit_failure_rolls_back_database(self):
        self.service.open_session("ABC123", "car")
        self.clock.advance(hours=1)

        with patch.object(TicketRepository, "delete", side_effect=SQLAlchemyError("boom")):
            with self.assertRaises(InfrastructureError):
                self.service.close_session("ABC123", "cash")

        self.assertTrue(self.service.is_parked("ABC123"))
        self.assertEqual(self.service.revenue_summary().payment_count, 0)
        with self.uow as uow:
            self.assertIsNotNone(uow.tickets.find_by_plate("ABC123"))
            self.assertEqual(uow.spots.get("F1-R1-S1").occupant_plate, "ABC123")

    def test_fine_policy_survives_restart(self):
        self.service.set_fine_policy("hourly")
        self.service.set_fine_policy("progressive")
        restarted = ParkingService(self.uow, clock=self.clock)
        restarted.restore(num_floors=2)
        self.assertEqual(restarted.fine_strategy.name, "Progressive Scheme (Tiered)")

    def test_outstanding_fines(self):
        self.service.add_fine("ABC123", "20")
        self.service.add_fine("XYZ999", "15", "Blocked lane")
        fines = self.service.outstanding_fines()
        self.assertEqual([(f.plate, f.amount) for f in fines],
                         [("ABC123", Decimal("20.00")), ("XYZ999", Decimal("15.00"))])


class TestServiceFactory(unittest.TestCase):

    def test_builds_restored_service(self):
        settings = Settings(database_url="sqlite://", floors=1, fine_policy="hourly", lot_name="Annex")
        service = ServiceFactory(settings, clock=FakeClock()).create_parking_service()
        self.assertEqual(service.lot.total_spots, 18)
        self.assertEqual(service.lot.name, "Annex")
        self.assertEqual(service.fine_strategy.name, "Hourly Scheme (RM 20/hr)")

    def test_cache_client_wraps_spot_repository(self):
        cache = {}

        class DictRedis:
            def get(self, key):
                return cache.get(key)

            def set(self, key, value, ex=None):
                cache[key] = value

            def delete(self, key):
                cache.pop(key, None)

        settings = Settings(database_url="sqlite://", floors=1)
        service = ServiceFactory(settings, cache_client=DictRedis(), clock=FakeClock()).create_parking_service()
        with service.uow as uow:
            self.assertIsInstance(uow.spots, CachingRepository)

        service.open_session("ABC123", "car")
        self.assertTrue(service.is_parked("ABC123"))

    def test_command_processor(self):
        factory = ServiceFactory(
            Settings(floors=1), uow_factory=InMemoryUnitOfWork, clock=FakeClock()
        )
        processor = factory.create_command_processor()
        self.assertEqual(processor.service.lot.total_spots, 18)


if __name__ == '__main__':
    unittest.main()
