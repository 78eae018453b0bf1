# File: citypark/application/commands.py
"""
Command Pattern Implementation for the CityPark engine

Each consumer request is wrapped in a command object that validates its
own input and runs one ParkingService use case. Commands never raise for
expected failures: a ParkingError becomes a result dictionary

    {"success": False, "error": ..., "error_type": ..., "plate": ..., "spot_key": ...}

Command Types:
1. Session Commands - ParkVehicleCommand, ExitVehicleCommand
2. Query Commands - PreviewBillCommand
3. Admin Commands - SetFinePolicyCommand, AddFineCommand
"""

from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Deque, Dict, List, Optional, Tuple
import logging
import uuid

from ..domain.exceptions import ParkingError
from ..domain.models import LicensePlate, VehicleType
from ..domain.strategies import FinePolicyType
from .parking_service import ParkingService


# ============================================================================
# COMMAND BASE CLASS
# ============================================================================

class Command(ABC):
    """
    Abstract base class for all commands
    Commands are named in the imperative (e.g., ParkVehicleCommand)
    """

    def __init__(self, command_id: Optional[str] = None):
        self.command_id = command_id or str(uuid.uuid4())
        self.executed_at: Optional[datetime] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate command parameters before execution
        Returns: (is_valid, error_messages)
        """
        pass

    @abstractmethod
    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        """Run the use case; returns the payload for a successful result"""
        pass

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        is_valid, errors = self.validate()
        if not is_valid:
            self.logger.warning(f"{self.get_description()} rejected: {errors}")
            return {
                "success": False,
                "command_id": self.command_id,
                "error": f"Validation failed: {'; '.join(errors)}",
                "error_type": "ValidationError",
            }

        try:
            data = self._perform(service)
        except ParkingError as e:
            self.logger.warning(f"{self.get_description()} failed: {e.reason}")
            result = {"success": False, "command_id": self.command_id}
            result.update(e.to_dict())
            return result

        self.executed_at = datetime.now()
        return {"success": True, "command_id": self.command_id, "data": data}

    def get_description(self) -> str:
        return self.__class__.__name__.replace("Command", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "command_type": self.__class__.__name__,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


def _plate_errors(plate: Optional[str]) -> List[str]:
    if not plate:
        return ["License plate is required"]
    if not LicensePlate.is_valid(plate):
        return [f"Invalid license plate: {plate!r}"]
    return []


# ============================================================================
# SESSION COMMANDS
# ============================================================================

class ParkVehicleCommand(Command):
    """Command: Park a vehicle (entry transaction)"""

    def __init__(
        self,
        plate: str,
        vehicle_type: str,
        has_accessibility_card: bool = False,
        preferred_spot_key: Optional[str] = None
    ):
        super().__init__()
        self.plate = plate
        self.vehicle_type = vehicle_type
        self.has_accessibility_card = has_accessibility_card
        self.preferred_spot_key = preferred_spot_key

    def validate(self) -> Tuple[bool, List[str]]:
        errors = _plate_errors(self.plate)
        if not self.vehicle_type:
            errors.append("Vehicle type is required")
        else:
            try:
                VehicleType.parse(self.vehicle_type)
            except ParkingError:
                errors.append(f"Invalid vehicle type: {self.vehicle_type}")
        return len(errors) == 0, errors

    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        ticket = service.open_session(
            self.plate,
            self.vehicle_type,
            has_accessibility_card=self.has_accessibility_card,
            preferred_spot_key=self.preferred_spot_key,
        )
        return {"ticket": ticket, "text": ticket.format_ticket()}

    def get_description(self) -> str:
        return f"Park {self.plate}"


class ExitVehicleCommand(Command):
    """Command: Pay and leave (exit transaction)"""

    def __init__(self, plate: str, payment_method: str):
        super().__init__()
        self.plate = plate
        self.payment_method = payment_method

    def validate(self) -> Tuple[bool, List[str]]:
        errors = _plate_errors(self.plate)
        if not self.payment_method:
            errors.append("Payment method is required")
        return len(errors) == 0, errors

    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        receipt = service.close_session(self.plate, self.payment_method)
        return {"receipt": receipt, "text": receipt.format_receipt()}

    def get_description(self) -> str:
        return f"Exit {self.plate}"


# ============================================================================
# QUERY COMMANDS
# ============================================================================

class PreviewBillCommand(Command):
    """Command: Show the current (advisory) bill of an active vehicle"""

    def __init__(self, plate: str):
        super().__init__()
        self.plate = plate

    def validate(self) -> Tuple[bool, List[str]]:
        errors = _plate_errors(self.plate)
        return len(errors) == 0, errors

    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        bill = service.preview_bill(self.plate)
        return {"bill": bill, "text": bill.format_bill()}


# ============================================================================
# ADMIN COMMANDS
# ============================================================================

class SetFinePolicyCommand(Command):
    """Command: Swap the active fine policy"""

    def __init__(self, policy: str):
        super().__init__()
        self.policy = policy

    def validate(self) -> Tuple[bool, List[str]]:
        valid = [p.value for p in FinePolicyType]
        if str(self.policy).strip().lower() not in valid:
            return False, [f"Unknown fine policy {self.policy!r}; choose from {valid}"]
        return True, []

    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        return {"policy": service.set_fine_policy(self.policy)}


class AddFineCommand(Command):
    """Command: Record an unpaid fine against a plate"""

    def __init__(self, plate: str, amount: Any, reason: str = "Manual fine"):
        super().__init__()
        self.plate = plate
        self.amount = amount
        self.reason = reason

    def validate(self) -> Tuple[bool, List[str]]:
        errors = _plate_errors(self.plate)
        try:
            if Decimal(str(self.amount)) <= 0:
                errors.append("Fine amount must be positive")
        except InvalidOperation:
            errors.append(f"Invalid fine amount: {self.amount!r}")
        return len(errors) == 0, errors

    def _perform(self, service: ParkingService) -> Dict[str, Any]:
        return {"fine": service.add_fine(self.plate, self.amount, self.reason)}


# ============================================================================
# COMMAND PROCESSOR
# ============================================================================

class CommandProcessor:
    """
    Executes commands one at a time against a single service
    and keeps a bounded history of the successful ones
    """

    def __init__(self, service: ParkingService, max_history_size: int = 1000):
        self.service = service
        self.logger = logging.getLogger(self.__class__.__name__)
        self.command_history: Deque[Command] = deque(maxlen=max_history_size)

    def process(self, command: Command) -> Dict[str, Any]:
        self.logger.info(f"Processing command: {command.get_description()}")

        try:
            result = command.execute(self.service)
        except Exception as e:
            self.logger.error(f"Error processing command: {e}", exc_info=True)
            return {
                "success": False,
                "command_id": command.command_id,
                "error": str(e),
                "error_type": e.__class__.__name__,
            }

        if result.get("success", False):
            self.command_history.append(command)
        return result

    def process_batch(self, commands: List[Command]) -> List[Dict[str, Any]]:
        return [self.process(command) for command in commands]

    def get_history(self) -> List[Dict[str, Any]]:
        return [command.to_dict() for command in self.command_history]


