# File: citypark/domain/models.py
"""
Domain Models for the CityPark allocation and billing engine

This module contains:
1. Value Objects: LicensePlate, Payment, Receipt
2. Enums: vehicle and spot categories, spot status, payment methods
3. Entities: ParkingSpot, Vehicle, ParkingTicket
4. Domain Events: VehicleParkedEvent, VehicleLeftEvent, FinePolicyChangedEvent

Categories are closed enums. Which vehicle may use which spot lives in
compatibility.py, not in per-category subclasses.
"""

from abc import ABC
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
import re
import uuid

from .exceptions import InvalidPlateError, ValidationError


ID_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
DISPLAY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
CENTS = Decimal('0.01')


def to_money(value: Any) -> Decimal:
    """Convert a number to a two-place Decimal amount"""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class LicensePlate:
    """
    Value Object: License plate number with validation
    Separators (spaces, hyphens, dots) are stripped and letters upper-cased,
    so "abc-123" and "ABC 123" identify the same vehicle.
    """
    value: str

    MIN_LENGTH = 3
    MAX_LENGTH = 10

    def __post_init__(self):
        if self.value is None or not str(self.value).strip():
            raise InvalidPlateError("License plate cannot be empty")

        cleaned = re.sub(r'[^A-Za-z0-9]', '', str(self.value)).upper()
        if not self.MIN_LENGTH <= len(cleaned) <= self.MAX_LENGTH:
            raise InvalidPlateError(
                f"License plate must be {self.MIN_LENGTH}-{self.MAX_LENGTH} "
                f"alphanumeric characters, got: {self.value!r}",
                plate=cleaned or None
            )

        object.__setattr__(self, 'value', cleaned)

    @classmethod
    def is_valid(cls, raw: Optional[str]) -> bool:
        """Check a raw plate without raising"""
        try:
            cls(raw)
        except InvalidPlateError:
            return False
        return True

    def __str__(self) -> str:
        return self.value


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleType(Enum):
    """Enumeration of vehicle categories"""
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    SUV = "suv"               # Oversized: SUV, pickup, van
    ACCESSIBLE = "accessible"  # Vehicle registered for accessibility parking

    @classmethod
    def parse(cls, value: Any) -> 'VehicleType':
        """Accept an enum member, its value or its name (case-insensitive)"""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValidationError(f"Unknown vehicle type: {value!r}")

    def __str__(self) -> str:
        names = {
            VehicleType.MOTORCYCLE: "Motorcycle",
            VehicleType.CAR: "Car",
            VehicleType.SUV: "SUV/Truck",
            VehicleType.ACCESSIBLE: "Accessible Vehicle",
        }
        return names[self]


class SpotType(Enum):
    """
    Enumeration of parking spot categories
    Each category carries its default hourly rate
    """
    COMPACT = "compact"
    REGULAR = "regular"
    ACCESSIBLE = "accessible"
    RESERVED = "reserved"

    @property
    def default_rate(self) -> Decimal:
        """Get default hourly rate for this spot type"""
        rates = {
            SpotType.COMPACT: Decimal('2.00'),
            SpotType.REGULAR: Decimal('5.00'),
            SpotType.ACCESSIBLE: Decimal('2.00'),
            SpotType.RESERVED: Decimal('10.00'),
        }
        return rates[self]

    @classmethod
    def parse(cls, value: Any) -> 'SpotType':
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValidationError(f"Unknown spot type: {value!r}")

    def __str__(self) -> str:
        return self.value.title()


class SpotStatus(Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"


class PaymentMethod(Enum):
    """Accepted payment methods"""
    CASH = "cash"
    CARD = "card"

    def __str__(self) -> str:
        return self.value.title()


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


class ParkingSpot(Entity):
    """
    Entity: Individual parking spot identified by floor, row and index
    Key format is F{floor}-R{row}-S{index}, e.g. F1-R2-S5
    """

    def __init__(
        self,
        floor: int,
        row: int,
        index: int,
        spot_type: SpotType,
        hourly_rate: Optional[Decimal] = None
    ):
        super().__init__(self.make_key(floor, row, index))
        self.floor = floor
        self.row = row
        self.index = index
        self.spot_type = spot_type
        self.hourly_rate = to_money(
            spot_type.default_rate if hourly_rate is None else hourly_rate
        )
        self.status = SpotStatus.AVAILABLE
        self.occupant_plate: Optional[str] = None

        self._validate()

    @staticmethod
    def make_key(floor: int, row: int, index: int) -> str:
        return f"F{floor}-R{row}-S{index}"

    def _validate(self) -> None:
        if self.floor < 1 or self.row < 1 or self.index < 1:
            raise ValidationError(
                "Floor, row and index must be positive", spot_key=self.key
            )
        if self.hourly_rate < Decimal('0'):
            raise ValidationError(
                "Hourly rate cannot be negative", spot_key=self.key
            )

    @property
    def key(self) -> str:
        return self.id

    @property
    def sort_key(self):
        return (self.floor, self.row, self.index)

    @property
    def is_available(self) -> bool:
        return self.status == SpotStatus.AVAILABLE

    def occupy(self, plate: str) -> None:
        """Mark the spot occupied; compatibility is checked by the registry"""
        self.status = SpotStatus.OCCUPIED
        self.occupant_plate = plate

    def vacate(self) -> Optional[str]:
        """
        Free the spot
        Returns: plate of the vehicle that was here, if any
        """
        plate = self.occupant_plate
        self.status = SpotStatus.AVAILABLE
        self.occupant_plate = None
        return plate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "floor": self.floor,
            "row": self.row,
            "index": self.index,
            "spot_type": self.spot_type.value,
            "hourly_rate": str(self.hourly_rate),
            "status": self.status.value,
            "occupant_plate": self.occupant_plate,
        }

    def __str__(self) -> str:
        occupant = f" [{self.occupant_plate}]" if self.occupant_plate else ""
        return f"{self.key} ({self.spot_type}) - {self.status.value}{occupant}"


class Vehicle(Entity):
    """
    Entity: Vehicle currently known to the lot
    Identity is the normalized license plate
    """

    def __init__(
        self,
        license_plate: LicensePlate,
        vehicle_type: VehicleType,
        has_accessibility_card: bool = False,
        entry_time: Optional[datetime] = None
    ):
        super().__init__(license_plate.value)
        self.license_plate = license_plate
        self.vehicle_type = vehicle_type
        # The card only matters for accessible vehicles
        self.has_accessibility_card = (
            bool(has_accessibility_card) and vehicle_type == VehicleType.ACCESSIBLE
        )
        self.entry_time = entry_time

    @property
    def plate(self) -> str:
        return self.license_plate.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plate": self.plate,
            "vehicle_type": self.vehicle_type.value,
            "has_accessibility_card": self.has_accessibility_card,
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
        }

    def __str__(self) -> str:
        return f"{self.vehicle_type} [{self.plate}]"


class ParkingTicket(Entity):
    """
    Entity: Active occupation of a spot by a vehicle
    The id is derived from plate and entry time: T-{PLATE}-{yyyyMMddHHmmss}
    """

    def __init__(
        self,
        plate: str,
        spot_key: str,
        entry_time: datetime,
        ticket_id: Optional[str] = None
    ):
        super().__init__(ticket_id or self.make_id(plate, entry_time))
        self.plate = plate
        self.spot_key = spot_key
        self.entry_time = entry_time

    @staticmethod
    def make_id(plate: str, entry_time: datetime) -> str:
        return f"T-{plate}-{entry_time.strftime(ID_TIMESTAMP_FORMAT)}"

    @property
    def ticket_id(self) -> str:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "plate": self.plate,
            "spot_key": self.spot_key,
            "entry_time": self.entry_time.isoformat(),
        }


@dataclass(frozen=True)
class Payment:
    """
    Value Object: Immutable payment record
    Written once by the exit transaction, never updated or deleted
    """
    plate: str
    ticket_id: str
    parking_fee: Decimal
    fine_amount: Decimal
    method: PaymentMethod
    payment_time: datetime
    payment_id: str = ""
    total_amount: Decimal = field(init=False)

    def __post_init__(self):
        if self.parking_fee < Decimal('0') or self.fine_amount < Decimal('0'):
            raise ValidationError("Payment amounts cannot be negative", plate=self.plate)

        object.__setattr__(self, 'parking_fee', to_money(self.parking_fee))
        object.__setattr__(self, 'fine_amount', to_money(self.fine_amount))
        object.__setattr__(self, 'total_amount', self.parking_fee + self.fine_amount)
        if not self.payment_id:
            object.__setattr__(self, 'payment_id', self.make_id(self.plate, self.payment_time))

    @staticmethod
    def make_id(plate: str, payment_time: datetime) -> str:
        return f"P-{plate}-{payment_time.strftime(ID_TIMESTAMP_FORMAT)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "plate": self.plate,
            "ticket_id": self.ticket_id,
            "parking_fee": str(self.parking_fee),
            "fine_amount": str(self.fine_amount),
            "total_amount": str(self.total_amount),
            "method": self.method.value,
            "payment_time": self.payment_time.isoformat(),
        }


@dataclass(frozen=True)
class Receipt:
    """Value Object: What the exit transaction hands back for display"""
    payment: Payment
    spot_key: str
    spot_type: SpotType
    entry_time: datetime
    exit_time: datetime
    duration_hours: int
    hourly_rate: Decimal
    overstay_fine: Decimal
    previous_fines: Decimal

    @property
    def receipt_id(self) -> str:
        return "R-" + self.payment.payment_id[2:]


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class DomainEvent(ABC):
    """Base class for domain events"""

    def __init__(self, occurred_at: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.occurred_at = occurred_at or datetime.now()

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.event_type} at {self.occurred_at}"


class VehicleParkedEvent(DomainEvent):
    def __init__(self, plate: str, spot_key: str, ticket_id: str, occurred_at: datetime):
        super().__init__(occurred_at)
        self.plate = plate
        self.spot_key = spot_key
        self.ticket_id = ticket_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "plate": self.plate,
            "spot_key": self.spot_key,
            "ticket_id": self.ticket_id,
        })
        return data


class VehicleLeftEvent(DomainEvent):
    def __init__(
        self,
        plate: str,
        spot_key: str,
        payment_id: str,
        total_amount: Decimal,
        occurred_at: datetime
    ):
        super().__init__(occurred_at)
        self.plate = plate
        self.spot_key = spot_key
        self.payment_id = payment_id
        self.total_amount = total_amount

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "plate": self.plate,
            "spot_key": self.spot_key,
            "payment_id": self.payment_id,
            "total_amount": str(self.total_amount),
        })
        return data


class FinePolicyChangedEvent(DomainEvent):
    def __init__(self, old_policy: str, new_policy: str, occurred_at: Optional[datetime] = None):
        super().__init__(occurred_at)
        self.old_policy = old_policy
        self.new_policy = new_policy

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"old_policy": self.old_policy, "new_policy": self.new_policy})
        return data
