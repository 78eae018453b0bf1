# File: citypark/domain/exceptions.py
"""
Error taxonomy for the allocation and billing engine

Every failure carries enough context (plate, spot key, reason) for a
consumer to render a precise message. Nothing here is retried automatically.
"""

from typing import Any, Dict, Optional


class ParkingError(Exception):
    """Base exception for all parking errors"""

    def __init__(
        self,
        reason: str,
        plate: Optional[str] = None,
        spot_key: Optional[str] = None
    ):
        super().__init__(reason)
        self.reason = reason
        self.plate = plate
        self.spot_key = spot_key

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for command results"""
        return {
            "error": self.reason,
            "error_type": self.error_type,
            "plate": self.plate,
            "spot_key": self.spot_key,
        }


class ValidationError(ParkingError):
    """Malformed input: plate, negative amounts, unknown categories"""
    pass


class InvalidPlateError(ValidationError):
    pass


class InvalidIntervalError(ValidationError):
    """Exit time lies before entry time"""
    pass


class DuplicateVehicleError(ParkingError):
    """Vehicle already has an active ticket"""
    pass


class SpotNotFoundError(ParkingError):
    pass


class SpotOccupiedError(ParkingError):
    pass


class IncompatibleCategoryError(ParkingError):
    """Vehicle type is not permitted on the spot type"""
    pass


class NoAvailableSpotError(ParkingError):
    pass


class VehicleNotFoundError(ParkingError):
    """No active ticket for the plate"""
    pass


class PaymentValidationError(ParkingError):
    pass


class InfrastructureError(ParkingError):
    """The backing store is unreachable or rejected the write"""
    pass
