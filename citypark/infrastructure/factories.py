# File: citypark/infrastructure/factories.py
"""
Factory Pattern Implementation for the CityPark engine

1. Strategy Factories - FineStrategyFactory
2. Builders - ParkingLotBuilder for custom layouts
3. Service Factories - ServiceFactory wires settings, store, cache and
   service together
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar, Union
import logging

import redis

from ..config import Settings
from ..domain.aggregates import ParkingLot
from ..domain.exceptions import ValidationError
from ..domain.models import SpotType
from ..domain.strategies import (
    FinePolicyType, FineStrategy, FixedFineStrategy, HourlyFineStrategy,
    ProgressiveFineStrategy
)
from .repositories import RepositoryFactory, UnitOfWork

T = TypeVar('T')


# ============================================================================
# STRATEGY FACTORIES
# ============================================================================

class StrategyFactory(ABC, Generic[T]):
    """Factory for strategy objects"""

    @abstractmethod
    def create(self, **kwargs) -> T:
        pass

    @abstractmethod
    def create_by_type(self, strategy_type: str) -> T:
        pass


class FineStrategyFactory(StrategyFactory[FineStrategy]):
    """Factory for creating FineStrategy instances"""

    strategy_map: Dict[FinePolicyType, Type[FineStrategy]] = {
        FinePolicyType.FIXED: FixedFineStrategy,
        FinePolicyType.HOURLY: HourlyFineStrategy,
        FinePolicyType.PROGRESSIVE: ProgressiveFineStrategy,
    }

    def create(self, **kwargs) -> FineStrategy:
        """Default strategy"""
        return FixedFineStrategy()

    def create_by_type(self, strategy_type: Union[str, FinePolicyType]) -> FineStrategy:
        try:
            policy = FinePolicyType(str(getattr(strategy_type, "value", strategy_type)).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in FinePolicyType)
            raise ValidationError(
                f"Unknown fine policy: {strategy_type!r} (expected one of {valid})"
            )
        return self.strategy_map[policy]()

    def available_policies(self) -> List[Dict[str, str]]:
        return [
            {"policy": policy.value, "name": strategy_class().name}
            for policy, strategy_class in self.strategy_map.items()
        ]


# ============================================================================
# BUILDER
# ============================================================================

class ParkingLotBuilder:
    """Builder pattern for constructing custom ParkingLot layouts"""

    def __init__(self):
        self.reset()

    def reset(self) -> 'ParkingLotBuilder':
        self._name = "CityPark"
        self._floors = 0
        self._spots: List[Dict[str, Any]] = []
        self._default_layout_floors = 0
        return self

    def set_name(self, name: str) -> 'ParkingLotBuilder':
        self._name = name
        return self

    def with_default_layout(self, num_floors: int) -> 'ParkingLotBuilder':
        self._default_layout_floors = num_floors
        return self

    def add_floors(self, count: int) -> 'ParkingLotBuilder':
        self._floors += count
        return self

    def add_spots(
        self,
        floor: int,
        spot_type: Union[str, SpotType],
        count: int = 1,
        row: Optional[int] = None,
        hourly_rate: Optional[Decimal] = None
    ) -> 'ParkingLotBuilder':
        for _ in range(count):
            self._spots.append({
                "floor": floor,
                "spot_type": SpotType.parse(spot_type),
                "row": row,
                "hourly_rate": hourly_rate,
            })
        return self

    def build(self) -> ParkingLot:
        lot = ParkingLot(self._name)
        if self._default_layout_floors:
            lot.initialize_default_layout(self._default_layout_floors)
        for _ in range(self._floors):
            lot.add_floor()
        for entry in self._spots:
            lot.add_spot(entry["floor"], entry["spot_type"], row=entry["row"], hourly_rate=entry["hourly_rate"])
        self.reset()
        return lot


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ServiceFactory:
    """Factory for creating application services from Settings"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        uow_factory: Optional[Callable[[], UnitOfWork]] = None,
        cache_client: Any = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or Settings()
        self.uow_factory = uow_factory or self._create_sqlalchemy_uow
        self.cache_client = cache_client
        self.clock = clock
        self.strategy_factory = FineStrategyFactory()
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_cache_client(self) -> Any:
        if self.cache_client is None and self.settings.redis_url:
            self.cache_client = redis.Redis.from_url(self.settings.redis_url)
            self.logger.info("Spot cache enabled")
        return self.cache_client

    def _create_sqlalchemy_uow(self) -> UnitOfWork:
        return RepositoryFactory.create_sqlalchemy_uow(
            self.settings.database_url, self.create_cache_client()
        )

    def create_parking_service(self, restore: bool = True) -> 'ParkingService':
        """
        Create ParkingService and load its state from the store
        A configured fine policy is pinned for this service; otherwise the
        stored policy applies
        """
        from ..application.parking_service import ParkingService

        fine_strategy = None
        if self.settings.fine_policy is not None:
            fine_strategy = self.strategy_factory.create_by_type(self.settings.fine_policy)

        service = ParkingService(
            uow=self.uow_factory(),
            lot=ParkingLot(self.settings.lot_name),
            fine_strategy=fine_strategy,
            clock=self.clock,
            strategy_factory=self.strategy_factory,
        )
        if restore:
            service.restore(num_floors=self.settings.floors, lot_name=self.settings.lot_name)
        return service

    def create_command_processor(self) -> 'CommandProcessor':
        from ..application.commands import CommandProcessor

        return CommandProcessor(self.create_parking_service())
