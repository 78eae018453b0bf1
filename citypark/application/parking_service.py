# File: citypark/application/parking_service.py
"""
Parking Application Service

Orchestrates the use cases of the engine on top of the ParkingLot
aggregate, the billing engine and a unit of work over the store.

Use cases:
1. Entry transaction - open_session
2. Exit transaction - close_session (bill recomputed at commit time)
3. Queries - preview_bill, list_available, occupancy_stats,
   current_vehicles, revenue_summary, outstanding_fines
4. Administration - set_fine_policy (stored), add_fine, restore

Key Principles:
- One RLock per service serializes every mutating use case
- The store is written inside one unit of work per use case; the in-memory
  registry changes only when that unit of work commits
- Time comes from an injectable clock
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union
import logging
import threading

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ..domain.aggregates import ParkingLot
from ..domain.billing import BillingEngine
from ..domain.compatibility import effective_hourly_rate
from ..domain.exceptions import (
    DuplicateVehicleError, InfrastructureError, NoAvailableSpotError,
    PaymentValidationError, SpotNotFoundError, ValidationError,
    VehicleNotFoundError
)
from ..domain.models import (
    LicensePlate, ParkingTicket, Payment, PaymentMethod, Receipt, Vehicle,
    VehicleType, to_money
)
from ..domain.strategies import FineStrategy, FixedFineStrategy
from ..infrastructure.repositories import StorageError, UnitOfWork
from .dtos import (
    ActiveVehicleDTO, BillDTO, FineDTO, FinePolicyDTO, OccupancyStatsDTO,
    ReceiptDTO, RevenueSummaryDTO, SpotCountsDTO, SpotDTO, TicketDTO
)


Clock = Callable[[], datetime]

STORE_ERRORS = (SQLAlchemyError, RedisError, StorageError)

FINE_POLICY_SETTING = "fine_policy"


# ============================================================================
# PAYMENT PROCESSOR
# ============================================================================

class PaymentProcessor:
    """Validates payment input and builds immutable Payment records"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def parse_method(method: Any) -> PaymentMethod:
        if isinstance(method, PaymentMethod):
            return method
        if method is None:
            raise PaymentValidationError("Payment method is required")
        text = str(method).strip().lower()
        for member in PaymentMethod:
            if text in (member.value, member.name.lower()):
                return member
        raise PaymentValidationError(
            f"Unsupported payment method {method!r}; use cash or card"
        )

    def process_payment(
        self,
        plate: str,
        parking_fee: Decimal,
        fine_amount: Decimal,
        method: PaymentMethod,
        ticket_id: str,
        payment_time: datetime
    ) -> Payment:
        if not ticket_id:
            raise PaymentValidationError("Ticket ID is required", plate=plate)
        if parking_fee < 0 or fine_amount < 0:
            raise PaymentValidationError("Payment amounts cannot be negative", plate=plate)

        payment = Payment(
            plate=plate,
            ticket_id=ticket_id,
            parking_fee=parking_fee,
            fine_amount=fine_amount,
            method=method,
            payment_time=payment_time,
        )
        self.logger.info(
            f"{method} payment of RM {payment.total_amount:.2f} "
            f"accepted: {payment.payment_id}"
        )
        return payment

    @staticmethod
    def calculate_change(total_due: Decimal, amount_paid: Decimal) -> Decimal:
        """Change to hand back for a cash payment"""
        total_due = to_money(total_due)
        amount_paid = to_money(amount_paid)
        if amount_paid < total_due:
            raise PaymentValidationError(
                f"Insufficient payment: RM {amount_paid:.2f} < RM {total_due:.2f}"
            )
        return amount_paid - total_due


# ============================================================================
# PARKING SERVICE
# ============================================================================

class ParkingService:
    """
    Main application service for the allocation and billing engine

    The service owns the registry (ParkingLot), the index of active
    tickets by plate and the active fine strategy. All three change only
    under self._lock.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        lot: Optional[ParkingLot] = None,
        fine_strategy: Optional[FineStrategy] = None,
        clock: Optional[Clock] = None,
        billing_engine: Optional[BillingEngine] = None,
        payment_processor: Optional[PaymentProcessor] = None,
        strategy_factory: Any = None
    ):
        """
        Args:
            uow: Unit of work over the store
            lot: Registry to start from; restore() replaces it from the store
            fine_strategy: Active fine strategy, pinned for this instance when given;
                otherwise restore() loads the stored policy (Fixed by default)
            clock: Returns "now"; tests inject a controllable one
            strategy_factory: Resolves policy names in set_fine_policy
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.uow = uow
        self.lot = lot or ParkingLot()
        self.billing_engine = billing_engine or BillingEngine()
        self.payment_processor = payment_processor or PaymentProcessor()

        if strategy_factory is None:
            from ..infrastructure.factories import FineStrategyFactory
            strategy_factory = FineStrategyFactory()
        self.strategy_factory = strategy_factory

        self._clock: Clock = clock or datetime.now
        self._fine_strategy: FineStrategy = fine_strategy or FixedFineStrategy()
        self._policy_pinned = fine_strategy is not None
        self._lock = threading.RLock()
        self._active: Dict[str, ParkingTicket] = {}
        self._vehicles: Dict[str, Vehicle] = {}

        self.logger.info(
            f"ParkingService initialized (fine policy: {self._fine_strategy.name})"
        )

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def now(self) -> datetime:
        """Current time from the clock, truncated to whole seconds"""
        return self._clock().replace(microsecond=0)

    @property
    def fine_strategy(self) -> FineStrategy:
        return self._fine_strategy

    @contextmanager
    def _transaction(self, action: str, plate: Optional[str] = None, spot_key: Optional[str] = None):
        """Unit of work whose store failures surface as InfrastructureError"""
        try:
            with self.uow as uow:
                yield uow
        except STORE_ERRORS as e:
            self.logger.error(f"Store failure during {action}: {e}")
            raise InfrastructureError(
                f"Store failure during {action}: {e}", plate=plate, spot_key=spot_key
            ) from e

    def _load_stored_policy(self, stored_policy: str) -> None:
        try:
            self._fine_strategy = self.strategy_factory.create_by_type(stored_policy)
        except ValidationError:
            self.logger.warning(
                f"Ignoring unknown stored fine policy {stored_policy!r}; "
                f"keeping {self._fine_strategy.name}"
            )
            return
        self.logger.info(f"Fine policy loaded from store: {self._fine_strategy.name}")

    def _publish_events(self) -> None:
        for event in self.lot.clear_events():
            self.logger.info(f"Event: {event.to_dict()}")

    @staticmethod
    def _normalize_plate(plate: Union[str, LicensePlate]) -> LicensePlate:
        if isinstance(plate, LicensePlate):
            return plate
        return LicensePlate(plate)

    def _require_active(self, plate: str) -> ParkingTicket:
        ticket = self._active.get(plate)
        if ticket is None:
            raise VehicleNotFoundError(f"No active ticket for {plate}", plate=plate)
        return ticket

    def _load_session(self, uow: UnitOfWork, plate: str):
        """
        Stored ticket, spot and vehicle of an active session
        Returns: (ticket, spot, vehicle)
        """
        ticket = uow.tickets.find_by_plate(plate)
        if ticket is None:
            raise VehicleNotFoundError(f"No stored ticket for {plate}", plate=plate)

        spot = uow.spots.get(ticket.spot_key)
        if spot is None:
            raise SpotNotFoundError(
                f"Spot {ticket.spot_key} of ticket {ticket.ticket_id} not found",
                plate=plate, spot_key=ticket.spot_key
            )

        vehicle = uow.vehicles.get(plate) or self._vehicles.get(plate)
        if vehicle is None:
            raise VehicleNotFoundError(f"No vehicle record for {plate}", plate=plate)

        return ticket, spot, vehicle

    # ========================================================================
    # STARTUP
    # ========================================================================

    def restore(self, num_floors: int = 3, lot_name: Optional[str] = None) -> int:
        """
        Rebuild the registry and the active ticket index from the store
        If the store holds no spots, the default layout is created and saved

        Returns: number of active tickets restored
        """
        with self._lock:
            lot = ParkingLot(lot_name or self.lot.name)
            with self._transaction("restore") as uow:
                stored_spots = uow.spots.get_all()
                if stored_spots:
                    for spot in sorted(stored_spots, key=lambda s: s.sort_key):
                        lot.register_spot(spot)
                else:
                    for spot in lot.initialize_default_layout(num_floors):
                        uow.spots.add(spot)
                tickets = uow.tickets.get_all()
                vehicles = {vehicle.plate: vehicle for vehicle in uow.vehicles.get_all()}
                stored_policy = uow.lot_settings.get(FINE_POLICY_SETTING)

            active: Dict[str, ParkingTicket] = {}
            active_vehicles: Dict[str, Vehicle] = {}
            for ticket in tickets:
                spot = lot.find_spot_by_plate(ticket.plate)
                if spot is None or spot.key != ticket.spot_key:
                    self.logger.warning(
                        f"Ticket {ticket.ticket_id} points at {ticket.spot_key} "
                        f"but the spot is not held by {ticket.plate}"
                    )
                active[ticket.plate] = ticket
                vehicle = vehicles.get(ticket.plate)
                if vehicle is None:
                    self.logger.warning(f"No vehicle record for active ticket {ticket.ticket_id}")
                    continue
                active_vehicles[ticket.plate] = vehicle

            self.lot = lot
            self._active = active
            self._vehicles = active_vehicles
            self.lot.clear_events()

            if stored_policy and not self._policy_pinned:
                self._load_stored_policy(stored_policy)

            self.logger.info(
                f"Restored {lot.total_spots} spots and {len(active)} active tickets"
            )
            return len(active)

    # ========================================================================
    # ENTRY TRANSACTION
    # ========================================================================

    def open_session(
        self,
        plate: Union[str, LicensePlate],
        vehicle_type: Union[str, VehicleType],
        has_accessibility_card: bool = False,
        preferred_spot_key: Optional[str] = None
    ) -> TicketDTO:
        """
        Park a vehicle

        1. Validate plate and vehicle type
        2. Reject a plate that already has an active ticket
        3. Use the preferred spot if given, else the first available one
        4. Occupy, stamp entry time, create the ticket and persist all of it
           in one unit of work

        Raises: InvalidPlateError, ValidationError, DuplicateVehicleError,
                SpotNotFoundError, SpotOccupiedError, IncompatibleCategoryError,
                NoAvailableSpotError, InfrastructureError
        """
        license_plate = self._normalize_plate(plate)
        vtype = VehicleType.parse(vehicle_type)
        plate_value = license_plate.value

        with self._lock:
            if plate_value in self._active:
                self.logger.warning(f"Rejected entry: {plate_value} is already parked")
                raise DuplicateVehicleError(
                    f"Vehicle {plate_value} is already parked at "
                    f"{self._active[plate_value].spot_key}",
                    plate=plate_value, spot_key=self._active[plate_value].spot_key
                )

            vehicle = Vehicle(license_plate, vtype, has_accessibility_card)

            if preferred_spot_key:
                spot = self.lot.check_can_occupy(preferred_spot_key, vehicle)
            else:
                candidates = self.lot.find_available(vtype)
                if not candidates:
                    self.logger.warning(f"Rejected entry: no spot for {vtype}")
                    raise NoAvailableSpotError(
                        f"No available spot for {vtype}", plate=plate_value
                    )
                spot = candidates[0]

            entry_time = self.now()
            vehicle.entry_time = entry_time
            ticket = ParkingTicket(plate_value, spot.key, entry_time)

            self.lot.occupy(spot.key, vehicle)
            try:
                with self._transaction("entry", plate_value, spot.key) as uow:
                    uow.spots.update(spot)
                    uow.vehicles.add(vehicle)
                    uow.tickets.add(ticket)
            except Exception:
                # Store was rolled back; undo the in-memory occupation
                self.lot.release(spot.key)
                self.lot.clear_events()
                raise

            self._active[plate_value] = ticket
            self._vehicles[plate_value] = vehicle
            self._publish_events()

            rate = effective_hourly_rate(spot, vehicle)
            self.logger.info(
                f"Ticket {ticket.ticket_id}: {plate_value} parked at {spot.key} "
                f"(RM {rate:.2f}/hr)"
            )
            return TicketDTO.from_domain(ticket, vehicle, spot, rate)

    # ========================================================================
    # EXIT TRANSACTION
    # ========================================================================

    def close_session(
        self,
        plate: Union[str, LicensePlate],
        payment_method: Union[str, PaymentMethod]
    ) -> ReceiptDTO:
        """
        Bill, take payment and release the spot

        Everything is re-read from the stored ticket; any preview shown
        earlier is ignored. Payment, fine settlement, spot release and ticket
        deletion commit together or not at all.

        Raises: InvalidPlateError, VehicleNotFoundError, InvalidIntervalError,
                PaymentValidationError, InfrastructureError
        """
        plate_value = self._normalize_plate(plate).value

        with self._lock:
            self._require_active(plate_value)
            exit_time = self.now()

            with self._transaction("exit", plate_value) as uow:
                ticket, spot, vehicle = self._load_session(uow, plate_value)

                rate = effective_hourly_rate(spot, vehicle)
                previous_fines = uow.fines.get_unpaid_total(plate_value)
                bill = self.billing_engine.compose_bill(
                    ticket.entry_time, exit_time, rate, self._fine_strategy, previous_fines
                )

                method = self.payment_processor.parse_method(payment_method)
                payment = self.payment_processor.process_payment(
                    plate=plate_value,
                    parking_fee=bill.parking_fee,
                    fine_amount=bill.total_fine,
                    method=method,
                    ticket_id=ticket.ticket_id,
                    payment_time=exit_time,
                )

                uow.payments.add(payment)
                uow.fines.mark_paid(plate_value, exit_time)
                spot.vacate()
                uow.spots.update(spot)
                uow.vehicles.delete(plate_value)
                uow.tickets.delete(ticket.ticket_id)

            self.lot.release(ticket.spot_key, payment)
            del self._active[plate_value]
            self._vehicles.pop(plate_value, None)
            self._publish_events()

            receipt = Receipt(
                payment=payment,
                spot_key=spot.key,
                spot_type=spot.spot_type,
                entry_time=ticket.entry_time,
                exit_time=exit_time,
                duration_hours=bill.duration_hours,
                hourly_rate=bill.hourly_rate,
                overstay_fine=bill.overstay_fine,
                previous_fines=bill.previous_fines,
            )
            self.logger.info(
                f"{plate_value} left {spot.key}: {bill.duration_hours}h, "
                f"paid RM {payment.total_amount:.2f} by {method}"
            )
            return ReceiptDTO.from_receipt(receipt)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def preview_bill(self, plate: Union[str, LicensePlate]) -> BillDTO:
        """
        Advisory bill as of now
        The exit transaction recomputes it, so the result may be stale
        """
        plate_value = self._normalize_plate(plate).value

        # The unit of work is shared, so store reads go through the lock too
        with self._lock:
            self._require_active(plate_value)
            fine_strategy = self._fine_strategy
            exit_time = self.now()
            with self._transaction("bill preview", plate_value) as uow:
                ticket, spot, vehicle = self._load_session(uow, plate_value)
                previous_fines = uow.fines.get_unpaid_total(plate_value)

        rate = effective_hourly_rate(spot, vehicle)
        bill = self.billing_engine.compose_bill(
            ticket.entry_time, exit_time, rate, fine_strategy, previous_fines
        )
        self.logger.debug(f"Preview for {plate_value}: RM {bill.total:.2f}")
        return BillDTO.from_bill(bill, ticket, spot)

    def list_available(self, vehicle_type: Union[str, VehicleType]) -> List[SpotDTO]:
        """Free spots the vehicle type may use, ordered by (floor, row, index)"""
        vtype = VehicleType.parse(vehicle_type)
        return [SpotDTO.from_domain(spot) for spot in self.lot.find_available(vtype)]

    def list_spots(self) -> List[SpotDTO]:
        return [SpotDTO.from_domain(spot) for spot in self.lot.spots]

    def occupancy_stats(self) -> OccupancyStatsDTO:
        report = self.lot.get_status_report()
        return OccupancyStatsDTO(
            lot_name=report["name"],
            total_spots=report["total_spots"],
            occupied_spots=report["occupied_spots"],
            available_spots=report["available_spots"],
            occupancy_rate=report["occupancy_rate"],
            by_type={k: SpotCountsDTO(**v) for k, v in report["by_type"].items()},
            by_floor={k: SpotCountsDTO(**v) for k, v in report["by_floor"].items()},
            fine_policy=self._fine_strategy.name,
        )

    def current_vehicles(self) -> List[ActiveVehicleDTO]:
        """Active tickets ordered by entry time"""
        with self._lock:
            active = sorted(self._active.items(), key=lambda item: item[1].entry_time)

        result = []
        for plate, ticket in active:
            vehicle = self._vehicles.get(plate)
            result.append(ActiveVehicleDTO(
                plate=plate,
                vehicle_type=vehicle.vehicle_type.value if vehicle else "unknown",
                has_accessibility_card=vehicle.has_accessibility_card if vehicle else False,
                ticket_id=ticket.ticket_id,
                spot_key=ticket.spot_key,
                entry_time=ticket.entry_time,
            ))
        return result

    def is_parked(self, plate: Union[str, LicensePlate]) -> bool:
        return self._normalize_plate(plate).value in self._active

    def revenue_summary(self) -> RevenueSummaryDTO:
        with self._lock, self._transaction("revenue summary") as uow:
            return RevenueSummaryDTO(
                total_revenue=uow.payments.total_revenue(),
                payment_count=uow.payments.count(),
                by_method=uow.payments.revenue_by_method(),
            )

    def payment_history(self, plate: Union[str, LicensePlate]) -> List[Dict[str, Any]]:
        plate_value = self._normalize_plate(plate).value
        with self._lock, self._transaction("payment history", plate_value) as uow:
            return [payment.to_dict() for payment in uow.payments.find_by_plate(plate_value)]

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_fine_policy(self, variant: Union[str, FineStrategy]) -> FinePolicyDTO:
        """
        Swap the active fine strategy and store it for later services
        Only bills computed afterwards are affected
        """
        if isinstance(variant, FineStrategy):
            strategy = variant
        else:
            strategy = self.strategy_factory.create_by_type(variant)

        with self._lock:
            with self._transaction("fine policy change") as uow:
                uow.lot_settings.set(FINE_POLICY_SETTING, strategy.policy_type.value)

            old = self._fine_strategy
            self._fine_strategy = strategy
            self.lot.record_fine_policy_change(old.name, strategy.name, self.now())
            self._publish_events()

        self.logger.info(f"Fine policy changed: {old.name} -> {strategy.name}")
        return FinePolicyDTO(policy=strategy.policy_type.value, name=strategy.name)

    def add_fine(
        self,
        plate: Union[str, LicensePlate],
        amount: Union[Decimal, float, int, str],
        reason: str = "Manual fine"
    ) -> FineDTO:
        """Record an unpaid fine, collected at the plate's next exit"""
        plate_value = self._normalize_plate(plate).value
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Fine amount must be positive", plate=plate_value)

        with self._lock:
            with self._transaction("add fine", plate_value) as uow:
                record = uow.fines.add_fine(plate_value, amount, reason, self.now())

        self.logger.info(f"Fine RM {amount:.2f} recorded for {plate_value}: {reason}")
        return FineDTO.from_record(record)

    def unpaid_fines(self, plate: Union[str, LicensePlate]) -> Decimal:
        plate_value = self._normalize_plate(plate).value
        with self._lock, self._transaction("fine lookup", plate_value) as uow:
            return uow.fines.get_unpaid_total(plate_value)

    def fines_for(self, plate: Union[str, LicensePlate]) -> List[FineDTO]:
        plate_value = self._normalize_plate(plate).value
        with self._lock, self._transaction("fine lookup", plate_value) as uow:
            records = uow.fines.get_fines(plate_value)
        return [FineDTO.from_record(record) for record in records]

    def outstanding_fines(self) -> List[FineDTO]:
        """Unpaid fines across every plate, oldest first"""
        with self._lock, self._transaction("outstanding fines") as uow:
            records = uow.fines.get_unpaid()
        return [FineDTO.from_record(record) for record in records]
