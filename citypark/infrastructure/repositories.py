# File: citypark/infrastructure/repositories.py
"""
Repository Pattern Implementation for the CityPark engine

Repositories give the application layer a collection-like view of the
keyed store. The store holds six record families:

    spots[key]            layout and occupancy of every spot
    vehicles[plate]       vehicles currently parked (removed at exit)
    tickets[ticket_id]    active sessions, at most one per plate
    payments[payment_id]  append-only payment records
    fines[id]             unpaid fines ledger
    lot_settings[name]    lot-wide values such as the active fine policy

All writes of one entry or exit happen inside a single UnitOfWork, which
commits on clean exit and rolls back on exception.

Storage Implementations:
- InMemory* repositories + InMemoryUnitOfWork (snapshot rollback)
- SQLAlchemy* repositories + SQLAlchemyUnitOfWork
- CachingRepository - redis read-through cache decorator for spots
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import (
    Any, Callable, Dict, Generic, List, Optional, Type, TypeVar
)
import copy
import itertools
import json
import logging

from sqlalchemy import (
    Boolean, Column, DateTime, DECIMAL, Integer, String, create_engine, func
)
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..domain.models import (
    LicensePlate, ParkingSpot, ParkingTicket, Payment, PaymentMethod,
    SpotStatus, SpotType, Vehicle, VehicleType, to_money
)

T = TypeVar('T')    # Entity type
ID = TypeVar('ID')  # Key type (spot key, plate, ticket id, payment id)

ZERO = Decimal('0.00')


class StorageError(Exception):
    """Store-level failure raised by the repositories themselves"""
    pass


class DuplicateKeyError(StorageError):
    pass


class RecordNotFoundError(StorageError):
    pass


class AppendOnlyError(StorageError):
    """Update or delete attempted on an append-only record family"""
    pass


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class Repository(ABC, Generic[T, ID]):
    """Base repository interface"""

    @abstractmethod
    def add(self, entity: T) -> T:
        pass

    @abstractmethod
    def get(self, id: ID) -> Optional[T]:
        pass

    @abstractmethod
    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[T]:
        """All entities, optionally paginated"""
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        pass

    @abstractmethod
    def delete(self, id: ID) -> bool:
        pass

    @abstractmethod
    def exists(self, id: ID) -> bool:
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class TicketQueries(ABC):
    @abstractmethod
    def find_by_plate(self, plate: str) -> Optional[ParkingTicket]:
        """Active ticket for a plate"""
        pass


class PaymentQueries(ABC):
    """Running totals used by reporting"""

    @abstractmethod
    def find_by_plate(self, plate: str) -> List[Payment]:
        pass

    @abstractmethod
    def total_revenue(self) -> Decimal:
        pass

    @abstractmethod
    def revenue_by_method(self) -> Dict[str, Decimal]:
        pass


@dataclass(frozen=True)
class FineRecord:
    """A fine charged against a plate, settled at that plate's next exit"""
    plate: str
    amount: Decimal
    reason: str
    created_at: datetime
    paid: bool = False
    paid_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plate": self.plate,
            "amount": str(self.amount),
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "paid": self.paid,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class FineLedger(ABC):
    """Unpaid fines per plate"""

    @abstractmethod
    def add_fine(self, plate: str, amount: Decimal, reason: str, created_at: datetime) -> FineRecord:
        pass

    @abstractmethod
    def get_unpaid_total(self, plate: str) -> Decimal:
        pass

    @abstractmethod
    def get_fines(self, plate: str) -> List[FineRecord]:
        pass

    @abstractmethod
    def get_unpaid(self) -> List[FineRecord]:
        """Unpaid fines of every plate, oldest first"""
        pass

    @abstractmethod
    def mark_paid(self, plate: str, paid_at: Optional[datetime] = None) -> int:
        """
        Settle every unpaid fine of a plate
        Returns: number of fines settled
        """
        pass


class LotSettings(ABC):
    """Named lot-wide values that outlive a process (the active fine policy)"""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        pass


# ============================================================================
# UNIT OF WORK INTERFACE
# ============================================================================

class UnitOfWork(ABC):
    """
    Transactional boundary over all repositories
    Commits on clean exit, rolls back when the block raises
    """

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()

    @abstractmethod
    def commit(self):
        pass

    @abstractmethod
    def rollback(self):
        pass

    @property
    @abstractmethod
    def spots(self) -> Repository[ParkingSpot, str]:
        pass

    @property
    @abstractmethod
    def vehicles(self) -> Repository[Vehicle, str]:
        pass

    @property
    @abstractmethod
    def tickets(self) -> Repository[ParkingTicket, str]:
        pass

    @property
    @abstractmethod
    def payments(self) -> Repository[Payment, str]:
        pass

    @property
    @abstractmethod
    def fines(self) -> FineLedger:
        pass

    @property
    @abstractmethod
    def lot_settings(self) -> LotSettings:
        pass


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class SpotModel(Base):
    """SQLAlchemy model for ParkingSpot"""
    __tablename__ = 'parking_spots'

    key = Column(String(20), primary_key=True)
    floor = Column(Integer, nullable=False)
    row = Column(Integer, nullable=False)
    spot_index = Column(Integer, nullable=False)
    spot_type = Column(String(20), nullable=False)
    hourly_rate = Column(DECIMAL(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=SpotStatus.AVAILABLE.value)
    occupant_plate = Column(String(10))
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class VehicleModel(Base):
    """SQLAlchemy model for an active Vehicle"""
    __tablename__ = 'vehicles'

    plate = Column(String(10), primary_key=True)
    vehicle_type = Column(String(20), nullable=False)
    has_accessibility_card = Column(Boolean, default=False)
    entry_time = Column(DateTime)


class TicketModel(Base):
    """SQLAlchemy model for ParkingTicket"""
    __tablename__ = 'tickets'

    ticket_id = Column(String(40), primary_key=True)
    plate = Column(String(10), nullable=False, unique=True, index=True)
    spot_key = Column(String(20), nullable=False)
    entry_time = Column(DateTime, nullable=False)


class PaymentModel(Base):
    """SQLAlchemy model for Payment"""
    __tablename__ = 'payments'

    payment_id = Column(String(40), primary_key=True)
    plate = Column(String(10), nullable=False, index=True)
    ticket_id = Column(String(40), nullable=False)
    parking_fee = Column(DECIMAL(12, 2), nullable=False)
    fine_amount = Column(DECIMAL(12, 2), nullable=False)
    total_amount = Column(DECIMAL(12, 2), nullable=False)
    method = Column(String(10), nullable=False)
    payment_time = Column(DateTime, nullable=False)


class FineModel(Base):
    """SQLAlchemy model for the fines ledger"""
    __tablename__ = 'fines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate = Column(String(10), nullable=False, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)
    reason = Column(String(100))
    created_at = Column(DateTime, nullable=False)
    paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime)


class LotSettingModel(Base):
    """SQLAlchemy model for lot-wide settings"""
    __tablename__ = 'lot_settings'

    name = Column(String(40), primary_key=True)
    value = Column(String(100), nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


# ============================================================================
# MAPPER (ORM <-> Domain)
# ============================================================================

class Mapper:
    """Convert between ORM rows, plain dicts and domain objects"""

    @staticmethod
    def spot_to_orm(spot: ParkingSpot) -> SpotModel:
        return SpotModel(
            key=spot.key,
            floor=spot.floor,
            row=spot.row,
            spot_index=spot.index,
            spot_type=spot.spot_type.value,
            hourly_rate=spot.hourly_rate,
            status=spot.status.value,
            occupant_plate=spot.occupant_plate,
        )

    @staticmethod
    def spot_to_domain(model: SpotModel) -> ParkingSpot:
        spot = ParkingSpot(
            floor=model.floor,
            row=model.row,
            index=model.spot_index,
            spot_type=SpotType(model.spot_type),
            hourly_rate=to_money(model.hourly_rate),
        )
        spot.status = SpotStatus(model.status)
        spot.occupant_plate = model.occupant_plate
        return spot

    @staticmethod
    def spot_from_dict(data: Dict[str, Any]) -> ParkingSpot:
        spot = ParkingSpot(
            floor=data["floor"],
            row=data["row"],
            index=data["index"],
            spot_type=SpotType(data["spot_type"]),
            hourly_rate=Decimal(data["hourly_rate"]),
        )
        spot.status = SpotStatus(data["status"])
        spot.occupant_plate = data.get("occupant_plate")
        return spot

    @staticmethod
    def vehicle_to_orm(vehicle: Vehicle) -> VehicleModel:
        return VehicleModel(
            plate=vehicle.plate,
            vehicle_type=vehicle.vehicle_type.value,
            has_accessibility_card=vehicle.has_accessibility_card,
            entry_time=vehicle.entry_time,
        )

    @staticmethod
    def vehicle_to_domain(model: VehicleModel) -> Vehicle:
        return Vehicle(
            license_plate=LicensePlate(model.plate),
            vehicle_type=VehicleType(model.vehicle_type),
            has_accessibility_card=bool(model.has_accessibility_card),
            entry_time=model.entry_time,
        )

    @staticmethod
    def ticket_to_orm(ticket: ParkingTicket) -> TicketModel:
        return TicketModel(
            ticket_id=ticket.ticket_id,
            plate=ticket.plate,
            spot_key=ticket.spot_key,
            entry_time=ticket.entry_time,
        )

    @staticmethod
    def ticket_to_domain(model: TicketModel) -> ParkingTicket:
        return ParkingTicket(
            plate=model.plate,
            spot_key=model.spot_key,
            entry_time=model.entry_time,
            ticket_id=model.ticket_id,
        )

    @staticmethod
    def payment_to_orm(payment: Payment) -> PaymentModel:
        return PaymentModel(
            payment_id=payment.payment_id,
            plate=payment.plate,
            ticket_id=payment.ticket_id,
            parking_fee=payment.parking_fee,
            fine_amount=payment.fine_amount,
            total_amount=payment.total_amount,
            method=payment.method.value,
            payment_time=payment.payment_time,
        )

    @staticmethod
    def payment_to_domain(model: PaymentModel) -> Payment:
        return Payment(
            plate=model.plate,
            ticket_id=model.ticket_id,
            parking_fee=to_money(model.parking_fee),
            fine_amount=to_money(model.fine_amount),
            method=PaymentMethod(model.method),
            payment_time=model.payment_time,
            payment_id=model.payment_id,
        )

    @staticmethod
    def fine_to_domain(model: FineModel) -> FineRecord:
        return FineRecord(
            id=model.id,
            plate=model.plate,
            amount=to_money(model.amount),
            reason=model.reason or "",
            created_at=model.created_at,
            paid=bool(model.paid),
            paid_at=model.paid_at,
        )


# ============================================================================
# IN-MEMORY REPOSITORIES (For Testing)
# ============================================================================

class InMemoryRepository(Repository[T, str]):
    """
    In-memory repository for testing
    Stores copies so callers never alias stored state
    """

    def __init__(self):
        self._storage: Dict[str, T] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def _key(self, entity: T) -> str:
        return getattr(entity, 'id')

    def add(self, entity: T) -> T:
        entity_id = self._key(entity)
        if entity_id in self._storage:
            raise DuplicateKeyError(f"Entity {entity_id} already exists")
        self._storage[entity_id] = copy.deepcopy(entity)
        self._logger.debug(f"Added entity {entity_id}")
        return entity

    def get(self, id: str) -> Optional[T]:
        entity = self._storage.get(id)
        return copy.deepcopy(entity) if entity is not None else None

    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[T]:
        items = list(self._storage.values())
        end = None if limit is None else skip + limit
        return [copy.deepcopy(item) for item in items[skip:end]]

    def update(self, entity: T) -> T:
        entity_id = self._key(entity)
        if entity_id not in self._storage:
            raise RecordNotFoundError(f"Entity {entity_id} not found")
        self._storage[entity_id] = copy.deepcopy(entity)
        self._logger.debug(f"Updated entity {entity_id}")
        return entity

    def delete(self, id: str) -> bool:
        if id in self._storage:
            del self._storage[id]
            self._logger.debug(f"Deleted entity {id}")
            return True
        return False

    def exists(self, id: str) -> bool:
        return id in self._storage

    def count(self) -> int:
        return len(self._storage)

    def snapshot(self) -> Dict[str, T]:
        return dict(self._storage)

    def restore(self, snapshot: Dict[str, T]) -> None:
        self._storage = dict(snapshot)

    def clear(self):
        """Clear all data (for testing)"""
        self._storage.clear()


class InMemorySpotRepository(InMemoryRepository[ParkingSpot]):
    pass


class InMemoryVehicleRepository(InMemoryRepository[Vehicle]):
    pass


class InMemoryTicketRepository(InMemoryRepository[ParkingTicket], TicketQueries):

    def find_by_plate(self, plate: str) -> Optional[ParkingTicket]:
        for ticket in self._storage.values():
            if ticket.plate == plate:
                return copy.deepcopy(ticket)
        return None


class InMemoryPaymentRepository(InMemoryRepository[Payment], PaymentQueries):
    """Append-only: update and delete are refused"""

    def _key(self, entity: Payment) -> str:
        return entity.payment_id

    def update(self, entity: Payment) -> Payment:
        raise AppendOnlyError("Payments are append-only")

    def delete(self, id: str) -> bool:
        raise AppendOnlyError("Payments are append-only")

    def find_by_plate(self, plate: str) -> List[Payment]:
        return [p for p in self._storage.values() if p.plate == plate]

    def total_revenue(self) -> Decimal:
        return sum((p.total_amount for p in self._storage.values()), ZERO)

    def revenue_by_method(self) -> Dict[str, Decimal]:
        totals = {method.value: ZERO for method in PaymentMethod}
        for payment in self._storage.values():
            totals[payment.method.value] += payment.total_amount
        return totals


class InMemoryFineLedger(FineLedger):

    def __init__(self):
        self._storage: Dict[int, FineRecord] = {}
        self._ids = itertools.count(1)
        self._logger = logging.getLogger(self.__class__.__name__)

    def add_fine(self, plate: str, amount: Decimal, reason: str, created_at: datetime) -> FineRecord:
        record = FineRecord(
            id=next(self._ids),
            plate=plate,
            amount=to_money(amount),
            reason=reason,
            created_at=created_at,
        )
        self._storage[record.id] = record
        self._logger.debug(f"Fine {record.amount} added for {plate}")
        return record

    def get_unpaid_total(self, plate: str) -> Decimal:
        return sum(
            (f.amount for f in self._storage.values() if f.plate == plate and not f.paid),
            ZERO
        )

    def get_fines(self, plate: str) -> List[FineRecord]:
        return [f for f in self._storage.values() if f.plate == plate]

    def get_unpaid(self) -> List[FineRecord]:
        unpaid = [f for f in self._storage.values() if not f.paid]
        return sorted(unpaid, key=lambda f: (f.created_at, f.id))

    def mark_paid(self, plate: str, paid_at: Optional[datetime] = None) -> int:
        settled = 0
        for fine_id, fine in list(self._storage.items()):
            if fine.plate == plate and not fine.paid:
                self._storage[fine_id] = replace(fine, paid=True, paid_at=paid_at)
                settled += 1
        return settled

    def snapshot(self) -> Dict[int, FineRecord]:
        return dict(self._storage)

    def restore(self, snapshot: Dict[int, FineRecord]) -> None:
        self._storage = dict(snapshot)


class InMemoryLotSettings(LotSettings):

    def __init__(self):
        self._storage: Dict[str, str] = {}

    def get(self, name: str) -> Optional[str]:
        return self._storage.get(name)

    def set(self, name: str, value: str) -> None:
        self._storage[name] = value

    def snapshot(self) -> Dict[str, str]:
        return dict(self._storage)

    def restore(self, snapshot: Dict[str, str]) -> None:
        self._storage = dict(snapshot)


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of Work over in-memory repositories
    The repositories outlive each `with` block; a rollback restores the
    snapshot taken on entry.
    """

    def __init__(self):
        self._spots = InMemorySpotRepository()
        self._vehicles = InMemoryVehicleRepository()
        self._tickets = InMemoryTicketRepository()
        self._payments = InMemoryPaymentRepository()
        self._fines = InMemoryFineLedger()
        self._lot_settings = InMemoryLotSettings()
        self._snapshots: Optional[List[Dict]] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    def _stores(self):
        return (
            self._spots, self._vehicles, self._tickets, self._payments,
            self._fines, self._lot_settings
        )

    def __enter__(self):
        self._snapshots = [store.snapshot() for store in self._stores()]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self._logger.error(f"Exception in unit of work: {exc_val}")
        super().__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        self._snapshots = None
        self._logger.debug("Transaction committed")

    def rollback(self):
        if self._snapshots is not None:
            for store, snapshot in zip(self._stores(), self._snapshots):
                store.restore(snapshot)
            self._snapshots = None
        self._logger.debug("Transaction rolled back")

    @property
    def spots(self) -> InMemorySpotRepository:
        return self._spots

    @property
    def vehicles(self) -> InMemoryVehicleRepository:
        return self._vehicles

    @property
    def tickets(self) -> InMemoryTicketRepository:
        return self._tickets

    @property
    def payments(self) -> InMemoryPaymentRepository:
        return self._payments

    @property
    def fines(self) -> InMemoryFineLedger:
        return self._fines

    @property
    def lot_settings(self) -> InMemoryLotSettings:
        return self._lot_settings


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(Repository[T, str], ABC):
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        pass

    @abstractmethod
    def key_of(self, entity: T) -> str:
        pass

    def add(self, entity: T) -> T:
        try:
            model = self.to_orm(entity)
            self.session.add(model)
            self.session.flush()
            self._logger.debug(f"Added entity: {self.key_of(entity)}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.error(f"Integrity error adding entity: {e}")
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error adding entity: {e}")
            raise

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                return self.to_domain(model)
            return None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting entity {id}: {e}")
            raise

    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[T]:
        try:
            query = self.session.query(self.model_class).offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return [self.to_domain(model) for model in query.all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting all entities: {e}")
            raise

    def update(self, entity: T) -> T:
        entity_id = self.key_of(entity)
        try:
            model = self.session.get(self.model_class, entity_id)
            if not model:
                raise RecordNotFoundError(f"Entity {entity_id} not found")

            updated_model = self.to_orm(entity)
            # Nullable columns (occupant_plate) must be cleared too
            for column in self.model_class.__table__.columns:
                if column.primary_key or column.name == 'updated_at':
                    continue
                setattr(model, column.name, getattr(updated_model, column.name))

            self.session.flush()
            self._logger.debug(f"Updated entity: {entity_id}")
            return entity
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating entity: {e}")
            raise

    def delete(self, id: str) -> bool:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                self.session.delete(model)
                self.session.flush()
                self._logger.debug(f"Deleted entity: {id}")
                return True
            return False
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error deleting entity {id}: {e}")
            raise

    def exists(self, id: str) -> bool:
        try:
            return self.session.get(self.model_class, id) is not None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error checking existence of {id}: {e}")
            raise

    def count(self) -> int:
        try:
            return self.session.query(self.model_class).count()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting entities: {e}")
            raise


class SpotRepository(SQLAlchemyRepository[ParkingSpot]):

    @property
    def model_class(self) -> Type[Base]:
        return SpotModel

    def to_domain(self, model: SpotModel) -> ParkingSpot:
        return Mapper.spot_to_domain(model)

    def to_orm(self, entity: ParkingSpot) -> SpotModel:
        return Mapper.spot_to_orm(entity)

    def key_of(self, entity: ParkingSpot) -> str:
        return entity.key


class VehicleRepository(SQLAlchemyRepository[Vehicle]):

    @property
    def model_class(self) -> Type[Base]:
        return VehicleModel

    def to_domain(self, model: VehicleModel) -> Vehicle:
        return Mapper.vehicle_to_domain(model)

    def to_orm(self, entity: Vehicle) -> VehicleModel:
        return Mapper.vehicle_to_orm(entity)

    def key_of(self, entity: Vehicle) -> str:
        return entity.plate


class TicketRepository(SQLAlchemyRepository[ParkingTicket], TicketQueries):

    @property
    def model_class(self) -> Type[Base]:
        return TicketModel

    def to_domain(self, model: TicketModel) -> ParkingTicket:
        return Mapper.ticket_to_domain(model)

    def to_orm(self, entity: ParkingTicket) -> TicketModel:
        return Mapper.ticket_to_orm(entity)

    def key_of(self, entity: ParkingTicket) -> str:
        return entity.ticket_id

    def find_by_plate(self, plate: str) -> Optional[ParkingTicket]:
        try:
            model = self.session.query(TicketModel).filter(
                TicketModel.plate == plate
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding ticket for {plate}: {e}")
            raise


class PaymentRepository(SQLAlchemyRepository[Payment], PaymentQueries):
    """Append-only payment records"""

    @property
    def model_class(self) -> Type[Base]:
        return PaymentModel

    def to_domain(self, model: PaymentModel) -> Payment:
        return Mapper.payment_to_domain(model)

    def to_orm(self, entity: Payment) -> PaymentModel:
        return Mapper.payment_to_orm(entity)

    def key_of(self, entity: Payment) -> str:
        return entity.payment_id

    def update(self, entity: Payment) -> Payment:
        raise AppendOnlyError("Payments are append-only")

    def delete(self, id: str) -> bool:
        raise AppendOnlyError("Payments are append-only")

    def find_by_plate(self, plate: str) -> List[Payment]:
        try:
            models = self.session.query(PaymentModel).filter(
                PaymentModel.plate == plate
            ).order_by(PaymentModel.payment_time).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding payments for {plate}: {e}")
            raise

    def total_revenue(self) -> Decimal:
        try:
            total = self.session.query(func.sum(PaymentModel.total_amount)).scalar()
            return to_money(total) if total is not None else ZERO
        except SQLAlchemyError as e:
            self._logger.error(f"Database error computing revenue: {e}")
            raise

    def revenue_by_method(self) -> Dict[str, Decimal]:
        totals = {method.value: ZERO for method in PaymentMethod}
        try:
            rows = self.session.query(
                PaymentModel.method, func.sum(PaymentModel.total_amount)
            ).group_by(PaymentModel.method).all()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error computing revenue by method: {e}")
            raise
        for method, total in rows:
            totals[method] = to_money(total or 0)
        return totals


class SQLAlchemyFineLedger(FineLedger):

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    def add_fine(self, plate: str, amount: Decimal, reason: str, created_at: datetime) -> FineRecord:
        try:
            model = FineModel(
                plate=plate,
                amount=to_money(amount),
                reason=reason,
                created_at=created_at,
                paid=False,
            )
            self.session.add(model)
            self.session.flush()
            return Mapper.fine_to_domain(model)
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error adding fine for {plate}: {e}")
            raise

    def get_unpaid_total(self, plate: str) -> Decimal:
        try:
            total = self.session.query(func.sum(FineModel.amount)).filter(
                FineModel.plate == plate, FineModel.paid.is_(False)
            ).scalar()
            return to_money(total) if total is not None else ZERO
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading fines for {plate}: {e}")
            raise

    def get_fines(self, plate: str) -> List[FineRecord]:
        try:
            models = self.session.query(FineModel).filter(
                FineModel.plate == plate
            ).order_by(FineModel.id).all()
            return [Mapper.fine_to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading fines for {plate}: {e}")
            raise

    def get_unpaid(self) -> List[FineRecord]:
        try:
            models = self.session.query(FineModel).filter(
                FineModel.paid.is_(False)
            ).order_by(FineModel.created_at, FineModel.id).all()
            return [Mapper.fine_to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading unpaid fines: {e}")
            raise

    def mark_paid(self, plate: str, paid_at: Optional[datetime] = None) -> int:
        try:
            settled = self.session.query(FineModel).filter(
                FineModel.plate == plate, FineModel.paid.is_(False)
            ).update({"paid": True, "paid_at": paid_at}, synchronize_session=False)
            self.session.flush()
            return settled
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error settling fines for {plate}: {e}")
            raise


class SQLAlchemyLotSettings(LotSettings):

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    def get(self, name: str) -> Optional[str]:
        try:
            model = self.session.get(LotSettingModel, name)
            return model.value if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error reading setting {name}: {e}")
            raise

    def set(self, name: str, value: str) -> None:
        try:
            model = self.session.get(LotSettingModel, name)
            if model:
                model.value = value
            else:
                self.session.add(LotSettingModel(name=name, value=value))
            self.session.flush()
            self._logger.debug(f"Setting {name} = {value}")
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error writing setting {name}: {e}")
            raise


# ============================================================================
# CACHING REPOSITORY (Decorator Pattern)
# ============================================================================

class CachingRepository(Repository[ParkingSpot, str]):
    """
    Spot repository decorator backed by a redis client
    Reads are cached as JSON for CACHE_TTL seconds; every write invalidates
    """

    CACHE_TTL = 300

    def __init__(self, repository: Repository[ParkingSpot, str], cache_client: Any):
        self.repository = repository
        self.cache = cache_client
        self._logger = logging.getLogger(self.__class__.__name__)
        self.cache_prefix = "citypark:spot:"

    def _cache_key(self, id: str) -> str:
        return f"{self.cache_prefix}{id}"

    def add(self, entity: ParkingSpot) -> ParkingSpot:
        result = self.repository.add(entity)
        self.cache.delete(self._cache_key(entity.key))
        return result

    def get(self, id: str) -> Optional[ParkingSpot]:
        cache_key = self._cache_key(id)

        cached = self.cache.get(cache_key)
        if cached:
            self._logger.debug(f"Cache hit for {id}")
            return Mapper.spot_from_dict(json.loads(cached))

        entity = self.repository.get(id)
        if entity:
            self.cache.set(cache_key, json.dumps(entity.to_dict()), ex=self.CACHE_TTL)
            self._logger.debug(f"Cached spot {id}")

        return entity

    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[ParkingSpot]:
        return self.repository.get_all(skip, limit)

    def update(self, entity: ParkingSpot) -> ParkingSpot:
        result = self.repository.update(entity)
        self.cache.delete(self._cache_key(entity.key))
        return result

    def delete(self, id: str) -> bool:
        result = self.repository.delete(id)
        if result:
            self.cache.delete(self._cache_key(id))
        return result

    def exists(self, id: str) -> bool:
        return self.repository.exists(id)

    def count(self) -> int:
        return self.repository.count()


# ============================================================================
# SQLALCHEMY UNIT OF WORK
# ============================================================================

class SQLAlchemyUnitOfWork(UnitOfWork):
    """Unit of Work implementation with SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session], cache_client: Any = None):
        self.session_factory = session_factory
        self.cache_client = cache_client
        self.session: Optional[Session] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()

        spots = SpotRepository(self.session)
        self._spots = CachingRepository(spots, self.cache_client) if self.cache_client else spots
        self._vehicles = VehicleRepository(self.session)
        self._tickets = TicketRepository(self.session)
        self._payments = PaymentRepository(self.session)
        self._fines = SQLAlchemyFineLedger(self.session)
        self._lot_settings = SQLAlchemyLotSettings(self.session)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self):
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def spots(self) -> Repository[ParkingSpot, str]:
        return self._spots

    @property
    def vehicles(self) -> VehicleRepository:
        return self._vehicles

    @property
    def tickets(self) -> TicketRepository:
        return self._tickets

    @property
    def payments(self) -> PaymentRepository:
        return self._payments

    @property
    def fines(self) -> SQLAlchemyFineLedger:
        return self._fines

    @property
    def lot_settings(self) -> SQLAlchemyLotSettings:
        return self._lot_settings


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating units of work"""

    @staticmethod
    def create_in_memory_uow() -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork()

    @staticmethod
    def create_sqlalchemy_uow(database_url: str, cache_client: Any = None) -> SQLAlchemyUnitOfWork:
        """Create SQLAlchemy Unit of Work, creating tables if missing"""
        engine_kwargs: Dict[str, Any] = {"echo": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same database
            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )

        engine = create_engine(database_url, **engine_kwargs)
        SessionLocal = sessionmaker(autoflush=False, bind=engine)

        Base.metadata.create_all(bind=engine)

        return SQLAlchemyUnitOfWork(SessionLocal, cache_client)
