# File: citypark/main.py
"""
Command line entry point for the CityPark engine

Every invocation loads Settings, restores the service from the store,
runs one command through the CommandProcessor and prints the result.
"""

from typing import Callable, Dict, List, Optional
import argparse
import logging
import os
import sys

import yaml

from . import __version__
from .application.commands import (
    AddFineCommand, Command, CommandProcessor, ExitVehicleCommand,
    ParkVehicleCommand, PreviewBillCommand, SetFinePolicyCommand
)
from .application.dtos import format_spot_table
from .config import Settings
from .domain.exceptions import ParkingError
from .domain.models import PaymentMethod, VehicleType
from .domain.strategies import FinePolicyType
from .infrastructure.factories import FineStrategyFactory, ServiceFactory


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_dir = "logs"
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(os.path.join(log_dir, log_file)))

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    return logging.getLogger(__name__)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    vehicle_types = [t.value for t in VehicleType]
    policies = [p.value for p in FinePolicyType]

    parser = argparse.ArgumentParser(
        prog="citypark",
        description="CityPark parking allocation and billing engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init                          # Create the default layout
  %(prog)s park ABC1234 car              # Park a car in the first free spot
  %(prog)s park XYZ9 accessible --card   # Accessible vehicle with a permit
  %(prog)s bill ABC1234                  # Show the current bill
  %(prog)s exit ABC1234 --method card    # Pay and leave
  %(prog)s fine progressive              # Switch and store the fine policy
  %(prog)s fines                         # Unpaid fines of every plate
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--database-url", help="SQLAlchemy database URL")
    parser.add_argument("--fine-policy", choices=policies, help="Fine policy for this run, overriding the stored one")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.required = True

    sub.add_parser("init", help="Create or load the parking layout")

    park = sub.add_parser("park", help="Park a vehicle")
    park.add_argument("plate")
    park.add_argument("vehicle_type", choices=vehicle_types)
    park.add_argument("--card", action="store_true", help="Holds an accessibility card")
    park.add_argument("--spot", help="Preferred spot key, e.g. F1-R1-S1")

    leave = sub.add_parser("exit", help="Pay and leave")
    leave.add_argument("plate")
    leave.add_argument("--method", default=PaymentMethod.CASH.value,
                       choices=[m.value for m in PaymentMethod])

    bill = sub.add_parser("bill", help="Preview the bill of a parked vehicle")
    bill.add_argument("plate")

    available = sub.add_parser("available", help="List free spots for a vehicle type")
    available.add_argument("vehicle_type", choices=vehicle_types)

    sub.add_parser("stats", help="Occupancy and revenue")
    sub.add_parser("vehicles", help="Vehicles currently parked")

    fine = sub.add_parser("fine", help="Show or set the fine policy")
    fine.add_argument("policy", nargs="?", choices=policies)

    add_fine = sub.add_parser("add-fine", help="Record an unpaid fine")
    add_fine.add_argument("plate")
    add_fine.add_argument("amount")
    add_fine.add_argument("--reason", default="Manual fine")

    sub.add_parser("fines", help="Unpaid fines across all plates")

    return parser


# ============================================================================
# COMMAND HANDLERS
# ============================================================================

def _run(processor: CommandProcessor, command: Command, text_key: Optional[str] = "text") -> int:
    result = processor.process(command)
    if not result["success"]:
        print(f"Error: {result['error']}", file=sys.stderr)
        return 1
    if text_key:
        print(result["data"][text_key], end="")
    return 0


def _init(processor: CommandProcessor, args: argparse.Namespace) -> int:
    stats = processor.service.occupancy_stats()
    print(f"{stats.lot_name}: {stats.total_spots} spots on {len(stats.by_floor)} floors")
    for spot_type, counts in stats.by_type.items():
        print(f"  {spot_type:<12}{counts.total:>4}")
    return 0


def _park(processor: CommandProcessor, args: argparse.Namespace) -> int:
    return _run(processor, ParkVehicleCommand(args.plate, args.vehicle_type, args.card, args.spot))


def _exit(processor: CommandProcessor, args: argparse.Namespace) -> int:
    return _run(processor, ExitVehicleCommand(args.plate, args.method))


def _bill(processor: CommandProcessor, args: argparse.Namespace) -> int:
    return _run(processor, PreviewBillCommand(args.plate))


def _available(processor: CommandProcessor, args: argparse.Namespace) -> int:
    spots = processor.service.list_available(args.vehicle_type)
    if not spots:
        print(f"No available spots for {VehicleType.parse(args.vehicle_type)}")
        return 0
    print(format_spot_table(spots), end="")
    return 0


def _stats(processor: CommandProcessor, args: argparse.Namespace) -> int:
    stats = processor.service.occupancy_stats()
    revenue = processor.service.revenue_summary()
    print(f"Lot          : {stats.lot_name}")
    print(f"Occupied     : {stats.occupied_spots}/{stats.total_spots} ({stats.occupancy_rate:.1f}%)")
    print(f"Fine policy  : {stats.fine_policy}")
    for spot_type, counts in stats.by_type.items():
        print(f"  {spot_type:<12}{counts.occupied:>4}/{counts.total:<4}")
    print(f"Revenue      : RM {revenue.total_revenue:.2f} from {revenue.payment_count} payments")
    return 0


def _vehicles(processor: CommandProcessor, args: argparse.Namespace) -> int:
    vehicles = processor.service.current_vehicles()
    if not vehicles:
        print("No vehicles parked")
        return 0
    for vehicle in vehicles:
        print(f"{vehicle.plate:<12}{vehicle.vehicle_type:<12}{vehicle.spot_key:<12}"
              f"{vehicle.entry_time:%Y-%m-%d %H:%M:%S}")
    return 0


def _fine(processor: CommandProcessor, args: argparse.Namespace) -> int:
    if not args.policy:
        print(f"Active: {processor.service.fine_strategy.name}")
        for option in FineStrategyFactory().available_policies():
            print(f"  {option['policy']:<12}{option['name']}")
        return 0

    result = processor.process(SetFinePolicyCommand(args.policy))
    if not result["success"]:
        print(f"Error: {result['error']}", file=sys.stderr)
        return 1
    print(f"Fine policy set to {result['data']['policy'].name}")
    return 0


def _add_fine(processor: CommandProcessor, args: argparse.Namespace) -> int:
    result = processor.process(AddFineCommand(args.plate, args.amount, args.reason))
    if not result["success"]:
        print(f"Error: {result['error']}", file=sys.stderr)
        return 1
    fine = result["data"]["fine"]
    print(f"Fine of RM {fine.amount:.2f} recorded for {fine.plate}")
    return 0


def _fines(processor: CommandProcessor, args: argparse.Namespace) -> int:
    fines = processor.service.outstanding_fines()
    if not fines:
        print("No outstanding fines")
        return 0
    for fine in fines:
        print(f"{fine.plate:<12}RM {fine.amount:>8.2f}  {fine.created_at:%Y-%m-%d %H:%M:%S}  {fine.reason}")
    total = sum(fine.amount for fine in fines)
    print(f"Total outstanding: RM {total:.2f}")
    return 0


HANDLERS: Dict[str, Callable[[CommandProcessor, argparse.Namespace], int]] = {
    "init": _init,
    "park": _park,
    "exit": _exit,
    "bill": _bill,
    "available": _available,
    "stats": _stats,
    "vehicles": _vehicles,
    "fine": _fine,
    "add-fine": _add_fine,
    "fines": _fines,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.load(
            args.config,
            database_url=args.database_url,
            fine_policy=args.fine_policy,
            log_level=args.log_level,
        )
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger = setup_logging(settings.log_level, settings.log_file)

    try:
        processor = ServiceFactory(settings).create_command_processor()
        return HANDLERS[args.command](processor, args)
    except ParkingError as e:
        print(f"Error: {e.reason}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Fatal error: {str(e)}")
        logger.error(f"Fatal error in main: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
