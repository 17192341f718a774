# File: parking_billing/infrastructure/repositories.py
"""
Repository Pattern Implementation for the Parking Billing Engine

Stores give the engine a collection-like view of tickets and pension
customers while owning identity generation and atomicity:

- create() assigns the ticket number and barcode and enforces the
  one-ACTIVE-ticket-per-plate rule
- save() is a compare-and-set on Ticket.version; a stale write raises
  ConcurrentModification so two concurrent payments can never both succeed

Storage Implementations:
- InMemoryTicketStore - for tests and embedding (RLock protected)
- SQLAlchemyTicketStore - relational databases; money as integer minor units
- SQLAlchemyTransactionSink - transactions table as the financial ledger
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import copy
import logging
import threading

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String,
    Text, create_engine, select, text, update
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..domain.errors import (
    ConcurrentModification, CorruptRecord, TransactionSinkError,
    VehicleAlreadyInside
)
from ..domain.models import (
    BarcodeMatch, LicensePlate, PaymentMethod, PensionCustomer, PensionMatch,
    StatusChange, Ticket, TicketMatch, TicketStatus, Transaction, TransactionType
)
from ..domain.money import Money
from .identifiers import IdGenerator
from .messaging import TransactionSink


# ============================================================================
# REPOSITORY INTERFACE
# ============================================================================

class TicketStore(ABC):
    """Ticket and pension customer store used by the billing service"""

    @abstractmethod
    def create(self, ticket: Ticket) -> Ticket:
        """
        Insert a new ticket at version 1

        A ticket without identity gets its id and barcode here. ACTIVE
        tickets are subject to the one-per-plate guard; a ticket created in
        another status (a settled LOST record) is inserted as is.
        """
        pass

    @abstractmethod
    def assign_identity(self, ticket: Ticket) -> Ticket:
        """Reserve an id and barcode for a ticket that is not stored yet"""
        pass

    @abstractmethod
    def save(self, ticket: Ticket) -> Ticket:
        """Compare-and-set on ticket.version; bumps the version on success"""
        pass

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[Ticket]:
        pass

    @abstractmethod
    def find_active_by_plate(self, plate: LicensePlate) -> Optional[Ticket]:
        pass

    @abstractmethod
    def find_by_barcode(self, barcode: str) -> Optional[BarcodeMatch]:
        pass

    @abstractmethod
    def get_pension_customer(self, customer_id: str) -> Optional[PensionCustomer]:
        pass

    @abstractmethod
    def add_pension_customer(self, customer: PensionCustomer) -> PensionCustomer:
        """Registration seam; the engine itself never writes customers"""
        pass


# ============================================================================
# IN-MEMORY STORE (For Testing)
# ============================================================================

class InMemoryTicketStore(TicketStore):
    """
    In-memory store

    Callers always receive copies, so a ticket mutated by a failed
    operation never leaks into the stored state.
    """

    def __init__(self, id_generator: Optional[IdGenerator] = None):
        self._tickets: Dict[str, Ticket] = {}
        self._customers: Dict[str, PensionCustomer] = {}
        self._id_generator = id_generator or IdGenerator()
        self._lock = threading.RLock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def create(self, ticket: Ticket) -> Ticket:
        with self._lock:
            if ticket.status == TicketStatus.ACTIVE:
                existing = self._find_active(ticket.plate)
                if existing is not None:
                    raise VehicleAlreadyInside(ticket.plate.value, existing.id)

            if ticket.id is None:
                self.assign_identity(ticket)
            elif ticket.id in self._tickets:
                raise CorruptRecord(f"Ticket {ticket.id} already exists", {"ticket_id": ticket.id})

            ticket.version = 1
            self._tickets[ticket.id] = copy.deepcopy(ticket)

        self._logger.debug(f"Created {ticket.status.value} ticket {ticket.id} for {ticket.plate}")
        return ticket

    def assign_identity(self, ticket: Ticket) -> Ticket:
        with self._lock:
            ticket_id = self._id_generator.next_ticket_number()
            while ticket_id in self._tickets:
                ticket_id = self._id_generator.next_ticket_number()
            ticket.assign_identity(ticket_id, IdGenerator.barcode_for(ticket_id, ticket.plate.value))
        return ticket

    def save(self, ticket: Ticket) -> Ticket:
        with self._lock:
            stored = self._tickets.get(ticket.id)
            if stored is None:
                raise CorruptRecord(f"Ticket {ticket.id} does not exist", {"ticket_id": ticket.id})
            if stored.version != ticket.version:
                raise ConcurrentModification(ticket.id, ticket.version)

            ticket.version += 1
            self._tickets[ticket.id] = copy.deepcopy(ticket)

        self._logger.debug(f"Saved ticket {ticket.id} at version {ticket.version}")
        return ticket

    def get(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            return copy.deepcopy(ticket) if ticket else None

    def find_active_by_plate(self, plate: LicensePlate) -> Optional[Ticket]:
        with self._lock:
            ticket = self._find_active(plate)
            return copy.deepcopy(ticket) if ticket else None

    def find_by_barcode(self, barcode: str) -> Optional[BarcodeMatch]:
        code = barcode.strip().upper()
        with self._lock:
            for ticket in self._tickets.values():
                if ticket.barcode == code:
                    return TicketMatch(copy.deepcopy(ticket))
            for customer in self._customers.values():
                if customer.barcode.upper() == code:
                    return PensionMatch(customer)
        return None

    def get_pension_customer(self, customer_id: str) -> Optional[PensionCustomer]:
        with self._lock:
            return self._customers.get(customer_id)

    def add_pension_customer(self, customer: PensionCustomer) -> PensionCustomer:
        with self._lock:
            self._customers[customer.id] = customer
        return customer

    def all_tickets(self) -> List[Ticket]:
        with self._lock:
            return [copy.deepcopy(ticket) for ticket in self._tickets.values()]

    def _find_active(self, plate: LicensePlate) -> Optional[Ticket]:
        for ticket in self._tickets.values():
            if ticket.plate == plate and ticket.status == TicketStatus.ACTIVE:
                return ticket
        return None


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class TicketModel(Base):
    """SQLAlchemy model for Ticket"""
    __tablename__ = 'tickets'

    id = Column(String(32), primary_key=True)
    barcode = Column(String(64), nullable=False, unique=True)
    plate = Column(String(15), nullable=False, index=True)
    entry_time = Column(DateTime(timezone=True), nullable=False)
    exit_time = Column(DateTime(timezone=True))
    status = Column(String(16), nullable=False, default=TicketStatus.ACTIVE.value)
    total_amount_minor = Column(Integer)
    currency = Column(String(3))
    payment_method = Column(String(16))
    operator_id = Column(String(64))
    paid_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False, default=1)
    status_history = Column(JSON, default=list)
    notes = Column(Text)

    __table_args__ = (
        # At most one ACTIVE ticket per plate
        Index(
            'uq_tickets_active_plate', 'plate', unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'")
        ),
    )


class PensionCustomerModel(Base):
    """SQLAlchemy model for PensionCustomer"""
    __tablename__ = 'pension_customers'

    id = Column(String(36), primary_key=True)
    name = Column(String(120), nullable=False)
    plate = Column(String(15), nullable=False, index=True)
    phone = Column(String(30))
    monthly_rate_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True)
    barcode = Column(String(64), nullable=False, unique=True)


class TransactionModel(Base):
    """SQLAlchemy model for Transaction (append-only)"""
    __tablename__ = 'transactions'

    id = Column(String(32), primary_key=True)
    type = Column(String(16), nullable=False)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(String(16), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    description = Column(Text, nullable=False)
    operator_id = Column(String(64))
    ticket_id = Column(String(32), ForeignKey('tickets.id'))
    pension_customer_id = Column(String(36), ForeignKey('pension_customers.id'))


class PricingConfigModel(Base):
    """SQLAlchemy model for a pricing configuration row; rates as decimal text"""
    __tablename__ = 'pricing_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    currency = Column(String(3), nullable=False)
    minimum_hours = Column(Integer, nullable=False)
    minimum_rate = Column(String(20), nullable=False)
    increment_minutes = Column(Integer, nullable=False)
    increment_rates = Column(JSON, nullable=False)
    daily_special_hours = Column(Integer)
    daily_special_rate = Column(String(20))
    monthly_rate = Column(String(20), nullable=False)
    lost_ticket_fee = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


# ============================================================================
# DOMAIN <-> ORM MAPPER
# ============================================================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Databases without timezone support hand back naive UTC values"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def ticket_fields(ticket: Ticket) -> Dict[str, Any]:
        """Mutable columns of a ticket row"""
        return {
            "status": ticket.status.value,
            "exit_time": as_utc(ticket.exit_time),
            "total_amount_minor": ticket.total_amount.minor_units if ticket.total_amount else None,
            "currency": ticket.total_amount.currency if ticket.total_amount else None,
            "payment_method": ticket.payment_method.value if ticket.payment_method else None,
            "operator_id": ticket.operator_id,
            "paid_at": as_utc(ticket.paid_at),
            "status_history": [change.to_dict() for change in ticket.status_history],
            "notes": ticket.notes
        }

    @staticmethod
    def ticket_to_orm(ticket: Ticket, ticket_id: str, barcode: str, version: int) -> TicketModel:
        return TicketModel(
            id=ticket_id,
            barcode=barcode,
            plate=ticket.plate.value,
            entry_time=as_utc(ticket.entry_time),
            version=version,
            **Mapper.ticket_fields(ticket)
        )

    @staticmethod
    def ticket_to_domain(model: TicketModel) -> Ticket:
        total = None
        if model.total_amount_minor is not None:
            total = Money(model.total_amount_minor, model.currency)
        return Ticket(
            id=model.id,
            barcode=model.barcode,
            plate=LicensePlate(model.plate),
            entry_time=as_utc(model.entry_time),
            exit_time=as_utc(model.exit_time),
            status=TicketStatus.parse(model.status, model.id),
            total_amount=total,
            payment_method=PaymentMethod(model.payment_method) if model.payment_method else None,
            operator_id=model.operator_id,
            paid_at=as_utc(model.paid_at),
            version=model.version,
            status_history=[StatusChange.from_dict(item) for item in (model.status_history or [])],
            notes=model.notes
        )

    @staticmethod
    def pension_customer_to_orm(customer: PensionCustomer) -> PensionCustomerModel:
        return PensionCustomerModel(
            id=customer.id,
            name=customer.name,
            plate=customer.plate.value,
            phone=customer.phone,
            monthly_rate_minor=customer.monthly_rate.minor_units,
            currency=customer.monthly_rate.currency,
            start_date=as_utc(customer.start_date),
            end_date=as_utc(customer.end_date),
            is_active=customer.is_active,
            barcode=customer.barcode
        )

    @staticmethod
    def pension_customer_to_domain(model: PensionCustomerModel) -> PensionCustomer:
        return PensionCustomer(
            id=model.id,
            name=model.name,
            plate=LicensePlate(model.plate),
            monthly_rate=Money(model.monthly_rate_minor, model.currency),
            start_date=as_utc(model.start_date),
            end_date=as_utc(model.end_date),
            is_active=bool(model.is_active),
            barcode=model.barcode,
            phone=model.phone
        )

    @staticmethod
    def transaction_to_orm(transaction: Transaction) -> TransactionModel:
        return TransactionModel(
            id=transaction.id,
            type=transaction.type.value,
            amount_minor=transaction.amount.minor_units,
            currency=transaction.amount.currency,
            payment_method=transaction.payment_method.value,
            timestamp=as_utc(transaction.timestamp),
            description=transaction.description,
            operator_id=transaction.operator_id,
            ticket_id=transaction.ticket_id,
            pension_customer_id=transaction.pension_customer_id
        )

    @staticmethod
    def transaction_to_domain(model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            type=TransactionType(model.type),
            amount=Money(model.amount_minor, model.currency),
            payment_method=PaymentMethod(model.payment_method),
            timestamp=as_utc(model.timestamp),
            description=model.description,
            operator_id=model.operator_id,
            ticket_id=model.ticket_id,
            pension_customer_id=model.pension_customer_id
        )


# ============================================================================
# UNIT OF WORK
# ============================================================================

class SQLAlchemyUnitOfWork:
    """Unit of Work implementation with SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.debug(f"Exception in unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        """Commit the transaction"""
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self):
        """Rollback the transaction"""
        self.session.rollback()
        self._logger.debug("Transaction rolled back")


# ============================================================================
# SQLALCHEMY STORE
# ============================================================================

class SQLAlchemyTicketStore(TicketStore):
    """
    Relational store

    Duplicate entry is guarded twice: a read before insert for the common
    case and the partial unique index for racing entries.
    """

    def __init__(self, session_factory: Callable[[], Session], id_generator: Optional[IdGenerator] = None):
        self.session_factory = session_factory
        self._id_generator = id_generator or IdGenerator()
        self._logger = logging.getLogger(self.__class__.__name__)

    def _uow(self) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(self.session_factory)

    def create(self, ticket: Ticket) -> Ticket:
        if ticket.id is None:
            ticket_id = self._id_generator.next_ticket_number()
            barcode = IdGenerator.barcode_for(ticket_id, ticket.plate.value)
        else:
            ticket_id, barcode = ticket.id, ticket.barcode
        active = ticket.status == TicketStatus.ACTIVE

        try:
            with self._uow() as uow:
                if active:
                    existing = self._active_model(uow.session, ticket.plate)
                    if existing is not None:
                        raise VehicleAlreadyInside(ticket.plate.value, existing.id)

                uow.session.add(Mapper.ticket_to_orm(ticket, ticket_id, barcode, version=1))
                uow.session.flush()
        except IntegrityError as e:
            self._logger.warning(f"Integrity error creating ticket for {ticket.plate}: {e.orig}")
            existing = self.find_active_by_plate(ticket.plate) if active else None
            if existing is not None:
                raise VehicleAlreadyInside(ticket.plate.value, existing.id) from e
            raise CorruptRecord(
                f"Ticket number {ticket_id} or barcode already in use",
                {"ticket_id": ticket_id, "reason": str(e.orig)}
            ) from e
        except SQLAlchemyError as e:
            self._logger.error(f"Database error creating ticket: {e}")
            raise

        if ticket.id is None:
            ticket.assign_identity(ticket_id, barcode)
        ticket.version = 1
        self._logger.debug(f"Created {ticket.status.value} ticket {ticket_id} for {ticket.plate}")
        return ticket

    def assign_identity(self, ticket: Ticket) -> Ticket:
        ticket_id = self._id_generator.next_ticket_number()
        ticket.assign_identity(ticket_id, IdGenerator.barcode_for(ticket_id, ticket.plate.value))
        return ticket

    def save(self, ticket: Ticket) -> Ticket:
        try:
            with self._uow() as uow:
                result = uow.session.execute(
                    update(TicketModel)
                    .where(TicketModel.id == ticket.id, TicketModel.version == ticket.version)
                    .values(version=ticket.version + 1, **Mapper.ticket_fields(ticket))
                )
                if result.rowcount == 0:
                    if uow.session.get(TicketModel, ticket.id) is None:
                        raise CorruptRecord(f"Ticket {ticket.id} does not exist", {"ticket_id": ticket.id})
                    raise ConcurrentModification(ticket.id, ticket.version)
        except SQLAlchemyError as e:
            self._logger.error(f"Database error saving ticket {ticket.id}: {e}")
            raise

        ticket.version += 1
        self._logger.debug(f"Saved ticket {ticket.id} at version {ticket.version}")
        return ticket

    def get(self, ticket_id: str) -> Optional[Ticket]:
        try:
            with self._uow() as uow:
                model = uow.session.get(TicketModel, ticket_id)
                return Mapper.ticket_to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting ticket {ticket_id}: {e}")
            raise

    def find_active_by_plate(self, plate: LicensePlate) -> Optional[Ticket]:
        with self._uow() as uow:
            model = self._active_model(uow.session, plate)
            return Mapper.ticket_to_domain(model) if model else None

    def find_by_barcode(self, barcode: str) -> Optional[BarcodeMatch]:
        code = barcode.strip().upper()
        with self._uow() as uow:
            ticket = uow.session.scalars(
                select(TicketModel).where(TicketModel.barcode == code)
            ).first()
            if ticket is not None:
                return TicketMatch(Mapper.ticket_to_domain(ticket))

            customer = uow.session.scalars(
                select(PensionCustomerModel).where(PensionCustomerModel.barcode == code)
            ).first()
            if customer is not None:
                return PensionMatch(Mapper.pension_customer_to_domain(customer))
        return None

    def get_pension_customer(self, customer_id: str) -> Optional[PensionCustomer]:
        with self._uow() as uow:
            model = uow.session.get(PensionCustomerModel, customer_id)
            return Mapper.pension_customer_to_domain(model) if model else None

    def add_pension_customer(self, customer: PensionCustomer) -> PensionCustomer:
        with self._uow() as uow:
            uow.session.add(Mapper.pension_customer_to_orm(customer))
        return customer

    @staticmethod
    def _active_model(session: Session, plate: LicensePlate) -> Optional[TicketModel]:
        return session.scalars(
            select(TicketModel).where(
                TicketModel.plate == plate.value,
                TicketModel.status == TicketStatus.ACTIVE.value
            )
        ).first()


class SQLAlchemyTransactionSink(TransactionSink):
    """Appends transactions to the transactions table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def record(self, transaction: Transaction) -> None:
        try:
            with SQLAlchemyUnitOfWork(self.session_factory) as uow:
                uow.session.add(Mapper.transaction_to_orm(transaction))
        except SQLAlchemyError as e:
            raise TransactionSinkError(transaction.id, str(e)) from e
        self._logger.debug(f"Recorded transaction {transaction.id}")

    def list_transactions(self, ticket_id: Optional[str] = None) -> List[Transaction]:
        with SQLAlchemyUnitOfWork(self.session_factory) as uow:
            query = select(TransactionModel).order_by(TransactionModel.timestamp)
            if ticket_id is not None:
                query = query.where(TransactionModel.ticket_id == ticket_id)
            return [Mapper.transaction_to_domain(model) for model in uow.session.scalars(query)]


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating stores"""

    @staticmethod
    def create_session_factory(database_url: str) -> Callable[[], Session]:
        """Create engine + session factory and make sure the schema exists"""
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine = create_engine(
                database_url, echo=False, poolclass=StaticPool,
                connect_args={"check_same_thread": False}
            )
        else:
            engine = create_engine(database_url, echo=False)
        Base.metadata.create_all(bind=engine)
        return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

    @staticmethod
    def create_in_memory_store(id_generator: Optional[IdGenerator] = None) -> InMemoryTicketStore:
        return InMemoryTicketStore(id_generator)

    @staticmethod
    def create_sqlalchemy_store(
        session_factory: Callable[[], Session],
        id_generator: Optional[IdGenerator] = None
    ) -> SQLAlchemyTicketStore:
        return SQLAlchemyTicketStore(session_factory, id_generator)
