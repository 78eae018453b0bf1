# File: citypark/domain/strategies.py
"""
Strategy Pattern Implementation for overstay fines

A fine strategy turns the billed duration of a session into a penalty.
The first 24 hours are a grace period under every strategy. Exactly one
strategy is active per ParkingService; swapping it only affects bills
computed afterwards, stored payments keep the amount they were charged.

Strategies:
1. FixedFineStrategy - flat penalty once the grace period is exceeded
2. HourlyFineStrategy - penalty per overstay hour
3. ProgressiveFineStrategy - tiered penalty growing every 24 overstay hours
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Tuple
import logging


GRACE_PERIOD_HOURS = 24
ZERO = Decimal('0.00')


class FinePolicyType(str, Enum):
    FIXED = "fixed"
    HOURLY = "hourly"
    PROGRESSIVE = "progressive"


# ============================================================================
# STRATEGY INTERFACE
# ============================================================================

class FineStrategy(ABC):
    """
    Abstract base class for fine strategies
    Implementations must be deterministic and side-effect free
    """

    policy_type: FinePolicyType

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def calculate_fine(self, duration_hours: int) -> Decimal:
        """
        Calculate the overstay fine for a billed duration
        Returns: Fine amount, 0.00 within the grace period
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable strategy name"""
        pass

    @staticmethod
    def overstay_hours(duration_hours: int) -> int:
        return max(0, duration_hours - GRACE_PERIOD_HOURS)

    def __str__(self) -> str:
        return self.name


# ============================================================================
# CONCRETE STRATEGIES
# ============================================================================

class FixedFineStrategy(FineStrategy):
    """Flat RM 50 once the stay exceeds 24 hours"""

    policy_type = FinePolicyType.FIXED
    FLAT_FINE = Decimal('50.00')

    def calculate_fine(self, duration_hours: int) -> Decimal:
        if duration_hours <= GRACE_PERIOD_HOURS:
            return ZERO
        return self.FLAT_FINE

    @property
    def name(self) -> str:
        return "Fixed Fine (RM 50 flat)"


class HourlyFineStrategy(FineStrategy):
    """RM 20 for every hour over 24"""

    policy_type = FinePolicyType.HOURLY
    RATE_PER_HOUR = Decimal('20.00')

    def calculate_fine(self, duration_hours: int) -> Decimal:
        if duration_hours <= GRACE_PERIOD_HOURS:
            return ZERO
        return self.RATE_PER_HOUR * self.overstay_hours(duration_hours)

    @property
    def name(self) -> str:
        return "Hourly Scheme (RM 20/hr)"


class ProgressiveFineStrategy(FineStrategy):
    """
    Tiered fine, cumulative across the tiers already crossed:
    - overstay > 0h:  RM 50
    - overstay > 24h: additional RM 100
    - overstay > 48h: additional RM 150
    - overstay > 72h: additional RM 200
    """

    policy_type = FinePolicyType.PROGRESSIVE
    TIERS: Tuple[Tuple[int, Decimal], ...] = (
        (0, Decimal('50.00')),
        (24, Decimal('100.00')),
        (48, Decimal('150.00')),
        (72, Decimal('200.00')),
    )

    def calculate_fine(self, duration_hours: int) -> Decimal:
        if duration_hours <= GRACE_PERIOD_HOURS:
            return ZERO

        overstay = self.overstay_hours(duration_hours)
        fine = ZERO
        for threshold, amount in self.TIERS:
            if overstay > threshold:
                fine += amount
        return fine

    @property
    def name(self) -> str:
        return "Progressive Scheme (Tiered)"
