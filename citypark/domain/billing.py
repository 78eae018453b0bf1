# File: citypark/domain/billing.py
"""
Billing for parking sessions

BillingCalculator holds the stateless arithmetic: duration with ceiling
rounding, parking fee and total. BillingEngine combines it with the active
fine strategy to compose the bill for a live session. Neither keeps any
persistent state.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Union
import logging

from .exceptions import InvalidIntervalError, ValidationError
from .models import to_money
from .strategies import FineStrategy, GRACE_PERIOD_HOURS


Number = Union[int, float, Decimal]


# ============================================================================
# BILL VALUE OBJECT
# ============================================================================

@dataclass(frozen=True)
class Bill:
    """Value Object: bill for a session as of a given exit time"""
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

    @property
    def has_overstayed(self) -> bool:
        return BillingCalculator.has_overstayed(self.duration_hours)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "duration_hours": self.duration_hours,
            "hourly_rate": str(self.hourly_rate),
            "parking_fee": str(self.parking_fee),
            "overstay_fine": str(self.overstay_fine),
            "previous_fines": str(self.previous_fines),
            "total_fine": str(self.total_fine),
            "total": str(self.total),
            "fine_policy": self.fine_policy,
        }


# ============================================================================
# DOMAIN SERVICES
# ============================================================================

class BillingCalculator:
    """
    Domain Service: stateless billing arithmetic

    Duration is rounded UP to the next whole hour:
    1h01m bills 2 hours, 2h30m bills 3 hours, exactly 3h bills 3 hours.
    Any session bills at least one hour.
    """

    @staticmethod
    def calculate_duration(entry_time: datetime, exit_time: datetime) -> int:
        """
        Billed duration in hours
        Raises: InvalidIntervalError if exit_time is before entry_time
        """
        if entry_time is None or exit_time is None:
            raise ValidationError("Entry time and exit time are required")

        if exit_time < entry_time:
            raise InvalidIntervalError(
                f"Exit time {exit_time.isoformat()} is before entry time "
                f"{entry_time.isoformat()}"
            )

        total_minutes = int((exit_time - entry_time).total_seconds() // 60)
        hours, remaining_minutes = divmod(total_minutes, 60)
        if remaining_minutes > 0:
            hours += 1

        return max(1, hours)

    @staticmethod
    def calculate_parking_fee(duration_hours: int, hourly_rate: Number) -> Decimal:
        if duration_hours < 0:
            raise ValidationError("Duration cannot be negative")

        rate = to_money(hourly_rate)
        if rate < Decimal('0'):
            raise ValidationError("Hourly rate cannot be negative")

        return to_money(rate * duration_hours)

    @staticmethod
    def calculate_total_bill(parking_fee: Number, fine_amount: Number) -> Decimal:
        fee = to_money(parking_fee)
        fine = to_money(fine_amount)
        if fee < Decimal('0') or fine < Decimal('0'):
            raise ValidationError("Bill amounts cannot be negative")
        return fee + fine

    @staticmethod
    def has_overstayed(duration_hours: int) -> bool:
        return duration_hours > GRACE_PERIOD_HOURS

    @staticmethod
    def format_duration(duration_hours: int) -> str:
        return f"{duration_hours} hour" + ("" if duration_hours == 1 else "s")


class BillingEngine:
    """
    Composes bills for live sessions using the fine strategy it is given

    The strategy is passed in explicitly; the engine holds no policy of its
    own so a swap on the owning service takes effect on the next bill.
    """

    def __init__(self, calculator: BillingCalculator = None):
        self.calculator = calculator or BillingCalculator()
        self.logger = logging.getLogger(self.__class__.__name__)

    def current_session_fine(self, fine_strategy: FineStrategy, duration_hours: int) -> Decimal:
        return to_money(fine_strategy.calculate_fine(duration_hours))

    def compose_bill(
        self,
        entry_time: datetime,
        exit_time: datetime,
        hourly_rate: Number,
        fine_strategy: FineStrategy,
        previous_fines: Number = Decimal('0')
    ) -> Bill:
        """
        Compute (duration, fee, fine, total) for a session

        Args:
            entry_time: Stored entry time of the ticket
            exit_time: Exit time, normally "now" from the service clock
            hourly_rate: Effective hourly rate for the occupation
            fine_strategy: Active fine strategy
            previous_fines: Unpaid fines from earlier visits

        Returns: Bill
        """
        previous = to_money(previous_fines)
        if previous < Decimal('0'):
            raise ValidationError("Previous fines cannot be negative")

        duration_hours = self.calculator.calculate_duration(entry_time, exit_time)
        parking_fee = self.calculator.calculate_parking_fee(duration_hours, hourly_rate)
        overstay_fine = self.current_session_fine(fine_strategy, duration_hours)
        total_fine = overstay_fine + previous
        total = self.calculator.calculate_total_bill(parking_fee, total_fine)

        self.logger.debug(
            f"Bill: {duration_hours}h x {to_money(hourly_rate)} = {parking_fee}, "
            f"fine {total_fine} ({fine_strategy.name}), total {total}"
        )

        return Bill(
            entry_time=entry_time,
            exit_time=exit_time,
            duration_hours=duration_hours,
            hourly_rate=to_money(hourly_rate),
            parking_fee=parking_fee,
            overstay_fine=overstay_fine,
            previous_fines=previous,
            total_fine=total_fine,
            total=total,
            fine_policy=fine_strategy.name,
        )
