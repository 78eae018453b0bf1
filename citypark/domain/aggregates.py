# File: citypark/domain/aggregates.py
"""
Aggregate Roots for the CityPark engine
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. ParkingLot - Root aggregate owning floors and spots (the spot registry)

Key Concepts:
- Spots are only reached through the ParkingLot
- A spot is OCCUPIED iff exactly one vehicle is recorded against it
- Availability queries are ordered by (floor, row, index) so the first
  match is reproducible
- Domain events are raised for occupy/release and drained by the service
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from .compatibility import can_park, eligible_spot_types
from .exceptions import (
    IncompatibleCategoryError, SpotNotFoundError, SpotOccupiedError,
    ValidationError
)
from .models import (
    DomainEvent, Entity, FinePolicyChangedEvent, ParkingSpot, ParkingTicket,
    Payment, SpotStatus, SpotType, Vehicle, VehicleLeftEvent,
    VehicleParkedEvent
)


# Default layout of one floor: (row, spot type, count)
DEFAULT_FLOOR_LAYOUT: Tuple[Tuple[int, SpotType, int], ...] = (
    (1, SpotType.COMPACT, 5),
    (2, SpotType.REGULAR, 8),
    (3, SpotType.ACCESSIBLE, 2),
    (4, SpotType.RESERVED, 3),
)

DEFAULT_ROW_FOR_TYPE: Dict[SpotType, int] = {
    spot_type: row for row, spot_type, _ in DEFAULT_FLOOR_LAYOUT
}


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        return self._version

    def _increment_version(self) -> None:
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.event_type}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        return len(self._changes) > 0


# ============================================================================
# FLOOR
# ============================================================================

class Floor(Entity):
    """
    Entity: One floor of the lot
    Spot indexes are a running counter per floor, independent of row
    """

    def __init__(self, number: int):
        if number < 1:
            raise ValidationError(f"Floor number must be positive, got {number}")
        super().__init__(f"F{number}")
        self.number = number
        self._spots: Dict[str, ParkingSpot] = OrderedDict()
        self._last_index = 0

    @property
    def spots(self) -> List[ParkingSpot]:
        return sorted(self._spots.values(), key=lambda spot: spot.sort_key)

    def next_index(self) -> int:
        return self._last_index + 1

    def attach(self, spot: ParkingSpot) -> None:
        if spot.floor != self.number:
            raise ValidationError(
                f"Spot belongs to floor {spot.floor}, not {self.number}",
                spot_key=spot.key
            )
        self._spots[spot.key] = spot
        self._last_index = max(self._last_index, spot.index)

    def __len__(self) -> int:
        return len(self._spots)


# ============================================================================
# PARKING LOT AGGREGATE
# ============================================================================

class ParkingLot(AggregateRoot):
    """
    Aggregate Root: Parking lot with floors and spots
    Single owner of spot records and of the plate -> spot mapping
    """

    def __init__(self, name: str = "CityPark", id: Optional[str] = None):
        super().__init__(id)
        self.name = name
        self._floors: Dict[int, Floor] = OrderedDict()
        self._spots: Dict[str, ParkingSpot] = {}
        self._plate_to_spot: Dict[str, str] = {}

        self._logger.info(f"Created ParkingLot: {self.name}")

    # ========================================================================
    # STRUCTURE
    # ========================================================================

    def add_floor(self) -> Floor:
        floor = Floor(len(self._floors) + 1)
        self._floors[floor.number] = floor
        self._logger.debug(f"Added floor {floor.number}")
        return floor

    def get_floor(self, number: int) -> Floor:
        floor = self._floors.get(number)
        if floor is None:
            raise ValidationError(f"Floor {number} does not exist")
        return floor

    def add_spot(
        self,
        floor: int,
        spot_type: SpotType,
        row: Optional[int] = None,
        hourly_rate: Optional[Decimal] = None
    ) -> ParkingSpot:
        """
        Create a spot on an existing floor
        Row defaults to the row that spot type uses in the default layout
        """
        target = self.get_floor(floor)
        spot_type = SpotType.parse(spot_type)
        spot = ParkingSpot(
            floor=target.number,
            row=row if row is not None else DEFAULT_ROW_FOR_TYPE[spot_type],
            index=target.next_index(),
            spot_type=spot_type,
            hourly_rate=hourly_rate,
        )
        self.register_spot(spot)
        return spot

    def register_spot(self, spot: ParkingSpot) -> None:
        """
        Attach an already built spot, e.g. one restored from the store
        Missing floors up to spot.floor are created
        """
        if spot.key in self._spots:
            raise ValidationError(f"Duplicate spot key {spot.key}", spot_key=spot.key)

        while len(self._floors) < spot.floor:
            self.add_floor()

        if not spot.is_available:
            if spot.occupant_plate is None:
                raise ValidationError(
                    "Occupied spot has no occupant", spot_key=spot.key
                )
            if spot.occupant_plate in self._plate_to_spot:
                raise ValidationError(
                    f"Vehicle {spot.occupant_plate} recorded on two spots",
                    plate=spot.occupant_plate, spot_key=spot.key
                )
            self._plate_to_spot[spot.occupant_plate] = spot.key

        self._floors[spot.floor].attach(spot)
        self._spots[spot.key] = spot
        self._increment_version()

    def initialize_default_layout(self, num_floors: int = 3) -> List[ParkingSpot]:
        """
        Build num_floors floors of 18 spots each:
        row 1: 5 compact, row 2: 8 regular, row 3: 2 accessible, row 4: 3 reserved
        """
        if num_floors < 1:
            raise ValidationError("A lot needs at least one floor")

        created: List[ParkingSpot] = []
        for _ in range(num_floors):
            floor = self.add_floor()
            for row, spot_type, count in DEFAULT_FLOOR_LAYOUT:
                for _ in range(count):
                    created.append(self.add_spot(floor.number, spot_type, row=row))

        self._logger.info(
            f"Initialized default layout: {num_floors} floors, {len(created)} spots"
        )
        return created

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def get_spot(self, key: str) -> ParkingSpot:
        spot = self._spots.get(key)
        if spot is None:
            raise SpotNotFoundError(f"Spot {key} not found", spot_key=key)
        return spot

    @property
    def spots(self) -> List[ParkingSpot]:
        return sorted(self._spots.values(), key=lambda spot: spot.sort_key)

    @property
    def floors(self) -> List[Floor]:
        return list(self._floors.values())

    def find_available(self, vehicle_type) -> List[ParkingSpot]:
        """
        Free spots a vehicle type may use, ordered by (floor, row, index)
        """
        allowed = set(eligible_spot_types(vehicle_type))
        return [
            spot for spot in self.spots
            if spot.is_available and spot.spot_type in allowed
        ]

    def find_spot_by_plate(self, plate: str) -> Optional[ParkingSpot]:
        key = self._plate_to_spot.get(plate)
        return self._spots.get(key) if key else None

    def check_can_occupy(self, key: str, vehicle: Vehicle) -> ParkingSpot:
        """
        Validate that vehicle may take spot `key` without changing anything
        Raises: SpotNotFoundError, SpotOccupiedError, IncompatibleCategoryError
        """
        spot = self.get_spot(key)
        if not spot.is_available:
            raise SpotOccupiedError(
                f"Spot {key} is already occupied", plate=vehicle.plate, spot_key=key
            )
        if not can_park(vehicle.vehicle_type, spot.spot_type):
            raise IncompatibleCategoryError(
                f"{vehicle.vehicle_type} cannot park in a {spot.spot_type} spot",
                plate=vehicle.plate, spot_key=key
            )
        return spot

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def occupy(self, key: str, vehicle: Vehicle) -> ParkingSpot:
        spot = self.check_can_occupy(key, vehicle)
        if vehicle.plate in self._plate_to_spot:
            raise ValidationError(
                f"Vehicle {vehicle.plate} already occupies "
                f"{self._plate_to_spot[vehicle.plate]}",
                plate=vehicle.plate, spot_key=key
            )

        spot.occupy(vehicle.plate)
        self._plate_to_spot[vehicle.plate] = spot.key
        self._increment_version()

        if vehicle.entry_time is not None:
            self._add_domain_event(VehicleParkedEvent(
                plate=vehicle.plate,
                spot_key=spot.key,
                ticket_id=ParkingTicket.make_id(vehicle.plate, vehicle.entry_time),
                occurred_at=vehicle.entry_time,
            ))

        self._logger.info(f"Vehicle {vehicle.plate} occupied spot {spot.key}")
        return spot

    def release(self, key: str, payment: Optional[Payment] = None) -> Optional[str]:
        """
        Free a spot
        Returns: plate of the vehicle that was released, None if already free
        """
        spot = self.get_spot(key)
        plate = spot.vacate()
        if plate is not None:
            self._plate_to_spot.pop(plate, None)
        self._increment_version()

        if payment is not None:
            self._add_domain_event(VehicleLeftEvent(
                plate=payment.plate,
                spot_key=key,
                payment_id=payment.payment_id,
                total_amount=payment.total_amount,
                occurred_at=payment.payment_time,
            ))

        self._logger.info(f"Spot {key} released (was {plate})")
        return plate

    def record_fine_policy_change(self, old_policy: str, new_policy: str, occurred_at=None) -> None:
        self._add_domain_event(FinePolicyChangedEvent(old_policy, new_policy, occurred_at))

    # ========================================================================
    # QUERY METHODS (Read-only)
    # ========================================================================

    @property
    def total_spots(self) -> int:
        return len(self._spots)

    @property
    def occupied_spots(self) -> int:
        return sum(1 for spot in self._spots.values() if not spot.is_available)

    @property
    def available_spots(self) -> int:
        return self.total_spots - self.occupied_spots

    def get_occupancy_rate(self) -> float:
        """Occupancy rate in percent (0-100)"""
        if self.total_spots == 0:
            return 0.0
        return self.occupied_spots * 100.0 / self.total_spots

    def stats_by_type(self) -> Dict[str, Dict[str, int]]:
        stats = {
            spot_type.value: {"total": 0, "occupied": 0, "available": 0}
            for spot_type in SpotType
        }
        for spot in self._spots.values():
            entry = stats[spot.spot_type.value]
            entry["total"] += 1
            entry["occupied" if spot.status == SpotStatus.OCCUPIED else "available"] += 1
        return stats

    def stats_by_floor(self) -> Dict[int, Dict[str, int]]:
        stats = {}
        for floor in self._floors.values():
            occupied = sum(1 for spot in floor.spots if not spot.is_available)
            stats[floor.number] = {
                "total": len(floor),
                "occupied": occupied,
                "available": len(floor) - occupied,
            }
        return stats

    def get_status_report(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "total_spots": self.total_spots,
            "occupied_spots": self.occupied_spots,
            "available_spots": self.available_spots,
            "occupancy_rate": self.get_occupancy_rate(),
            "by_type": self.stats_by_type(),
            "by_floor": self.stats_by_floor(),
        }

    def __str__(self) -> str:
        return (
            f"ParkingLot {self.name}: {self.occupied_spots}/{self.total_spots} "
            f"occupied ({self.get_occupancy_rate():.1f}%)"
        )
