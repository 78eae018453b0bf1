# File: citypark/application/dtos.py
"""
Data Transfer Objects (DTOs) for the CityPark engine

ParkingService returns these instead of domain objects, so consumers
(commands, CLI) never hold references into the live registry.

1. Output DTOs - TicketDTO, BillDTO, ReceiptDTO, SpotDTO
2. Report DTOs - OccupancyStatsDTO, ActiveVehicleDTO, RevenueSummaryDTO
3. Text rendering for the CLI - format_ticket, format_receipt
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import json

from pydantic import BaseModel, ConfigDict, Field

from ..domain.billing import Bill, BillingCalculator
from ..domain.models import (
    DISPLAY_TIMESTAMP_FORMAT, ParkingSpot, ParkingTicket, Receipt, SpotType,
    Vehicle, VehicleType
)


DOUBLE_RULE = "=" * 55
SINGLE_RULE = "-" * 55


# ============================================================================
# BASE DTO CLASS
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        return cls(**json.loads(json_str))


def _display_time(value: datetime) -> str:
    return value.strftime(DISPLAY_TIMESTAMP_FORMAT)


def _spot_type_label(value: str) -> str:
    return str(SpotType(value))


def _vehicle_type_label(value: str) -> str:
    return str(VehicleType(value))


# ============================================================================
# SPOT DTOs
# ============================================================================

class SpotDTO(BaseDTO):
    key: str = Field(description="Spot key, F{floor}-R{row}-S{index}")
    floor: int
    row: int
    index: int
    spot_type: str
    hourly_rate: Decimal
    status: str
    occupant_plate: Optional[str] = None

    @classmethod
    def from_domain(cls, spot: ParkingSpot) -> 'SpotDTO':
        return cls(
            key=spot.key,
            floor=spot.floor,
            row=spot.row,
            index=spot.index,
            spot_type=spot.spot_type.value,
            hourly_rate=spot.hourly_rate,
            status=spot.status.value,
            occupant_plate=spot.occupant_plate,
        )


# ============================================================================
# SESSION DTOs
# ============================================================================

class TicketDTO(BaseDTO):
    """Issued on entry"""
    ticket_id: str
    plate: str
    vehicle_type: str
    has_accessibility_card: bool = False
    spot_key: str
    spot_type: str
    floor: int
    hourly_rate: Decimal = Field(description="Effective hourly rate for this session")
    entry_time: datetime

    @classmethod
    def from_domain(
        cls,
        ticket: ParkingTicket,
        vehicle: Vehicle,
        spot: ParkingSpot,
        hourly_rate: Decimal
    ) -> 'TicketDTO':
        return cls(
            ticket_id=ticket.ticket_id,
            plate=ticket.plate,
            vehicle_type=vehicle.vehicle_type.value,
            has_accessibility_card=vehicle.has_accessibility_card,
            spot_key=spot.key,
            spot_type=spot.spot_type.value,
            floor=spot.floor,
            hourly_rate=hourly_rate,
            entry_time=ticket.entry_time,
        )

    def format_ticket(self) -> str:
        lines = [
            DOUBLE_RULE,
            "PARKING TICKET".center(55).rstrip(),
            DOUBLE_RULE,
            f"Ticket ID    : {self.ticket_id}",
            f"License Plate: {self.plate}",
            f"Vehicle Type : {_vehicle_type_label(self.vehicle_type)}",
            f"Spot ID      : {self.spot_key}",
            f"Spot Type    : {_spot_type_label(self.spot_type)}",
            f"Hourly Rate  : RM {self.hourly_rate:.2f}/hour",
            f"Entry Time   : {_display_time(self.entry_time)}",
            DOUBLE_RULE,
            "Please keep this ticket for exit.",
            DOUBLE_RULE,
        ]
        return "\n".join(lines) + "\n"


class BillDTO(BaseDTO):
    """Advisory bill; the exit transaction recomputes it"""
    plate: str
    ticket_id: str
    spot_key: str
    spot_type: str
    entry_time: datetime
    exit_time: datetime
    duration_hours: int
    hourly_rate: Decimal
    parking_fee: Decimal
    overstay_fine: Decimal
    previous_fines: Decimal
    total_fine: Decimal
    total: Decimal
    fine_policy: str

    @classmethod
    def from_bill(cls, bill: Bill, ticket: ParkingTicket, spot: ParkingSpot) -> 'BillDTO':
        return cls(
            plate=ticket.plate,
            ticket_id=ticket.ticket_id,
            spot_key=spot.key,
            spot_type=spot.spot_type.value,
            entry_time=bill.entry_time,
            exit_time=bill.exit_time,
            duration_hours=bill.duration_hours,
            hourly_rate=bill.hourly_rate,
            parking_fee=bill.parking_fee,
            overstay_fine=bill.overstay_fine,
            previous_fines=bill.previous_fines,
            total_fine=bill.total_fine,
            total=bill.total,
            fine_policy=bill.fine_policy,
        )

    def format_bill(self) -> str:
        lines = [
            f"Vehicle    : {self.plate} at {self.spot_key}",
            f"Entry      : {_display_time(self.entry_time)}",
            f"Duration   : {BillingCalculator.format_duration(self.duration_hours)}",
            f" Parking Fee: RM {self.parking_fee:7.2f}",
        ]
        if self.total_fine > 0:
            lines.append(f" Fines      : RM {self.total_fine:7.2f}")
        lines.append(f" TOTAL DUE  : RM {self.total:7.2f}")
        return "\n".join(lines) + "\n"


class ReceiptDTO(BaseDTO):
    """Handed back by the exit transaction"""
    receipt_id: str
    payment_id: str
    ticket_id: str
    plate: str
    spot_key: str
    spot_type: str
    entry_time: datetime
    exit_time: datetime
    duration_hours: int
    hourly_rate: Decimal
    parking_fee: Decimal
    overstay_fine: Decimal
    previous_fines: Decimal
    fine_amount: Decimal
    total_amount: Decimal
    method: str

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> 'ReceiptDTO':
        payment = receipt.payment
        return cls(
            receipt_id=receipt.receipt_id,
            payment_id=payment.payment_id,
            ticket_id=payment.ticket_id,
            plate=payment.plate,
            spot_key=receipt.spot_key,
            spot_type=receipt.spot_type.value,
            entry_time=receipt.entry_time,
            exit_time=receipt.exit_time,
            duration_hours=receipt.duration_hours,
            hourly_rate=receipt.hourly_rate,
            parking_fee=payment.parking_fee,
            overstay_fine=receipt.overstay_fine,
            previous_fines=receipt.previous_fines,
            fine_amount=payment.fine_amount,
            total_amount=payment.total_amount,
            method=payment.method.value,
        )

    def format_receipt(self) -> str:
        lines = [
            DOUBLE_RULE,
            "PARKING EXIT RECEIPT".center(55).rstrip(),
            DOUBLE_RULE,
            f"Receipt ID      : {self.receipt_id}",
            f"Ticket ID       : {self.ticket_id}",
            f"License Plate   : {self.plate}",
            f"Parking Spot    : {self.spot_key} ({_spot_type_label(self.spot_type)})",
            SINGLE_RULE,
            f"Entry Time      : {_display_time(self.entry_time)}",
            f"Exit Time       : {_display_time(self.exit_time)}",
            f"Duration        : {BillingCalculator.format_duration(self.duration_hours)}",
            SINGLE_RULE,
            f"Hourly Rate     : RM {self.hourly_rate:.2f}/hour",
            f"Parking Fee     : RM {self.parking_fee:.2f} "
            f"({self.duration_hours} x {self.hourly_rate:.2f})",
        ]
        if self.fine_amount > 0:
            lines.append(f"Fine Amount     : RM {self.fine_amount:.2f}")
        lines.extend([
            SINGLE_RULE,
            f"TOTAL PAID      : RM {self.total_amount:.2f}",
            f"Payment Method  : {self.method.title()}",
            DOUBLE_RULE,
            "Thank you for parking with us!".center(55).rstrip(),
            DOUBLE_RULE,
        ])
        return "\n".join(lines) + "\n"


# ============================================================================
# REPORT DTOs
# ============================================================================

class SpotCountsDTO(BaseDTO):
    total: int = 0
    occupied: int = 0
    available: int = 0


class OccupancyStatsDTO(BaseDTO):
    lot_name: str
    total_spots: int
    occupied_spots: int
    available_spots: int
    occupancy_rate: float = Field(ge=0, le=100, description="Percent occupied")
    by_type: Dict[str, SpotCountsDTO] = Field(default_factory=dict)
    by_floor: Dict[int, SpotCountsDTO] = Field(default_factory=dict)
    fine_policy: str


class ActiveVehicleDTO(BaseDTO):
    plate: str
    vehicle_type: str
    has_accessibility_card: bool
    ticket_id: str
    spot_key: str
    entry_time: datetime


class RevenueSummaryDTO(BaseDTO):
    total_revenue: Decimal
    payment_count: int
    by_method: Dict[str, Decimal] = Field(default_factory=dict)


class FineDTO(BaseDTO):
    plate: str
    amount: Decimal
    reason: str
    created_at: datetime
    paid: bool

    @classmethod
    def from_record(cls, record) -> 'FineDTO':
        """Build from a fines ledger record"""
        return cls(
            plate=record.plate,
            amount=record.amount,
            reason=record.reason,
            created_at=record.created_at,
            paid=record.paid,
        )


class FinePolicyDTO(BaseDTO):
    policy: str
    name: str


def format_ticket(ticket: TicketDTO) -> str:
    return ticket.format_ticket()


def format_receipt(receipt: ReceiptDTO) -> str:
    return receipt.format_receipt()


def format_spot_table(spots: List[SpotDTO]) -> str:
    rows = [f"{'Spot ID':<12}{'Type':<12}{'Rate (RM/hr)':>14}  {'Floor':>5}"]
    for spot in spots:
        rows.append(
            f"{spot.key:<12}{_spot_type_label(spot.spot_type):<12}"
            f"{spot.hourly_rate:>14.2f}  {spot.floor:>5}"
        )
    return "\n".join(rows) + "\n"
