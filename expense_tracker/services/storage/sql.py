"""
SQL Storage Implementation

DESIGN DECISION: A relational database is the durable backend because the
core depends on atomic uniqueness. Three constraints carry the system's
correctness:
- uq_accounts_email
- uq_accounts_federated_id
- uq_expenses_account_idempotency_key

A violated constraint surfaces as IntegrityError, which we translate into
DuplicateError(field) so the core can decide between conflict and replay.

Money is stored as integer cents and summed in the database, so totals
never pass through binary floating point.

SQLAlchemy's async engine is used, so the same code runs on SQLite
(aiosqlite) for development and tests and on PostgreSQL (asyncpg) in
production, selected by DATABASE_URL.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from tenacity import retry, stop_after_attempt, wait_exponential

from expense_tracker.config import get_settings
from expense_tracker.models.account import Account, PasscodeIntent, PasscodeRecord, utcnow
from expense_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_tracker.models.expense import Expense, ExpenseListQuery, ExpensePage, ExpenseSort
from expense_tracker.models.money import from_cents, to_cents
from expense_tracker.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    PasscodeStorageInterface,
    StorageConnectionError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# =============================================================================
# SCHEMA
# =============================================================================

class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("email", name="uq_accounts_email"),
        UniqueConstraint("federated_id", name="uq_accounts_federated_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    federated_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PasscodeRow(Base):
    __tablename__ = "passcodes"
    __table_args__ = (
        Index("ix_passcodes_account_intent", "account_id", "intent"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    intent: Mapped[str] = mapped_column(String(32), nullable=False)
    code_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ExpenseRow(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "idempotency_key",
            name="uq_expenses_account_idempotency_key",
        ),
        Index("ix_expenses_account_date", "account_id", "expense_date"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32))
    entity_id: Mapped[Optional[UUID]] = mapped_column(Uuid)
    account_id: Mapped[Optional[UUID]] = mapped_column(Uuid)
    correlation_id: Mapped[Optional[UUID]] = mapped_column(Uuid)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    is_user_action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


# =============================================================================
# HELPERS
# =============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we write is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UNIQUE_CONSTRAINT_FIELDS = {
    "uq_accounts_email": "email",
    "uq_accounts_federated_id": "federated_id",
    "uq_expenses_account_idempotency_key": "idempotency_key",
}

# SQLite reports the violated columns instead of the constraint name
SQLITE_UNIQUE_COLUMNS = {
    "accounts.email": "uq_accounts_email",
    "accounts.federated_id": "uq_accounts_federated_id",
    "expenses.account_id, expenses.idempotency_key": "uq_expenses_account_idempotency_key",
}

SQLITE_UNIQUE_PREFIX = "UNIQUE constraint failed: "


def _violated_constraint(error: IntegrityError) -> Optional[str]:
    """Constraint name as reported by the driver, if any."""
    orig = error.orig
    # psycopg
    name = getattr(getattr(orig, "diag", None), "constraint_name", None)
    if name:
        return name
    # asyncpg, wrapped by SQLAlchemy's adapter
    name = getattr(orig.__cause__, "constraint_name", None)
    if name:
        return name
    message = str(orig)
    if message.startswith(SQLITE_UNIQUE_PREFIX):
        return SQLITE_UNIQUE_COLUMNS.get(message[len(SQLITE_UNIQUE_PREFIX):].strip())
    return None


def _duplicate_from(error: IntegrityError) -> StorageError:
    """Name the unique field an IntegrityError tripped over."""
    field = UNIQUE_CONSTRAINT_FIELDS.get(_violated_constraint(error))
    if field:
        return DuplicateError(field)
    message = str(error.orig).lower()
    if "unique" not in message and "duplicate" not in message:
        return StorageError(f"Integrity violation: {error.orig}")
    return DuplicateError("unknown", f"Unique constraint violated: {error.orig}")


def _account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        federated_id=row.federated_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _passcode_from_row(row: PasscodeRow) -> PasscodeRecord:
    return PasscodeRecord(
        id=row.id,
        account_id=row.account_id,
        intent=PasscodeIntent(row.intent),
        code_digest=row.code_digest,
        attempts=row.attempts,
        expires_at=_aware(row.expires_at),
        consumed_at=_aware(row.consumed_at),
        created_at=_aware(row.created_at),
    )


def _expense_from_row(row: ExpenseRow) -> Expense:
    return Expense(
        id=row.id,
        account_id=row.account_id,
        amount=from_cents(row.amount_cents),
        category=row.category,
        description=row.description,
        expense_date=row.expense_date,
        idempotency_key=row.idempotency_key,
        created_at=_aware(row.created_at),
    )


def _event_from_row(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        event_id=row.event_id,
        timestamp=_aware(row.timestamp),
        event_type=AuditEventType(row.event_type),
        severity=AuditSeverity(row.severity),
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        account_id=row.account_id,
        correlation_id=row.correlation_id,
        description=row.description,
        details=row.details or {},
        error_message=row.error_message,
        is_user_action=row.is_user_action,
    )


# =============================================================================
# DATABASE
# =============================================================================

class SQLDatabase:
    """
    Owns the async engine and session factory.

    One instance is shared by all SQL stores of an application.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        settings = get_settings().database
        self._engine = engine or create_async_engine(
            url or settings.url,
            echo=settings.echo if echo is None else echo,
        )
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def session(self) -> AsyncSession:
        return self._sessions()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_schema(self) -> None:
        """Create missing tables. Existing tables are left untouched."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except OperationalError as e:
            raise StorageConnectionError(f"Failed to initialize database: {e}") from e

    async def dispose(self) -> None:
        await self._engine.dispose()


# =============================================================================
# STORES
# =============================================================================

class SQLAccountStorage(AccountStorageInterface):

    def __init__(self, database: SQLDatabase):
        self._db = database

    async def create_account(
        self,
        email: str,
        password_hash: Optional[str] = None,
        federated_id: Optional[str] = None,
    ) -> Account:
        account = Account(
            email=email,
            password_hash=password_hash,
            federated_id=federated_id,
        )
        row = AccountRow(
            id=account.id,
            email=account.email,
            password_hash=account.password_hash,
            federated_id=account.federated_id,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )
        try:
            async with self._db.session() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise _duplicate_from(e) from e
        return account

    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        async with self._db.session() as session:
            row = await session.get(AccountRow, account_id)
            return _account_from_row(row) if row else None

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(AccountRow).where(AccountRow.email == email.strip().lower())
            )
            return _account_from_row(row) if row else None

    async def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(AccountRow).where(AccountRow.federated_id == federated_id)
            )
            return _account_from_row(row) if row else None

    async def update_password(self, account_id: UUID, password_hash: str) -> Account:
        async with self._db.session() as session, session.begin():
            result = await session.execute(
                update(AccountRow)
                .where(AccountRow.id == account_id)
                .values(password_hash=password_hash, updated_at=utcnow())
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Account not found: {account_id}")
            row = await session.get(AccountRow, account_id, populate_existing=True)
            return _account_from_row(row)

    async def bind_federated_id(self, account_id: UUID, federated_id: str) -> Account:
        try:
            async with self._db.session() as session, session.begin():
                # Only an unbound account (or one already bound to this
                # identity) may be updated.
                result = await session.execute(
                    update(AccountRow)
                    .where(AccountRow.id == account_id)
                    .where(or_(
                        AccountRow.federated_id.is_(None),
                        AccountRow.federated_id == federated_id,
                    ))
                    .values(federated_id=federated_id, updated_at=utcnow())
                )
                row = await session.get(AccountRow, account_id, populate_existing=True)
                if row is None:
                    raise NotFoundError(f"Account not found: {account_id}")
                if result.rowcount == 0:
                    raise DuplicateError(
                        "federated_id", "Account is bound to a different identity"
                    )
                return _account_from_row(row)
        except IntegrityError as e:
            raise _duplicate_from(e) from e


class SQLPasscodeStorage(PasscodeStorageInterface):

    def __init__(self, database: SQLDatabase):
        self._db = database

    async def invalidate_active(self, account_id: UUID, intent: PasscodeIntent) -> int:
        async with self._db.session() as session, session.begin():
            result = await session.execute(
                update(PasscodeRow)
                .where(PasscodeRow.account_id == account_id)
                .where(PasscodeRow.intent == intent.value)
                .where(PasscodeRow.consumed_at.is_(None))
                .values(consumed_at=utcnow())
            )
            return result.rowcount

    async def create_passcode(self, record: PasscodeRecord) -> PasscodeRecord:
        row = PasscodeRow(
            id=record.id,
            account_id=record.account_id,
            intent=record.intent.value,
            code_digest=record.code_digest,
            attempts=record.attempts,
            expires_at=record.expires_at,
            consumed_at=record.consumed_at,
            created_at=record.created_at,
        )
        try:
            async with self._db.session() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise StorageError(f"Failed to store passcode: {e.orig}") from e
        return record

    async def get_active_passcode(
        self,
        account_id: UUID,
        intent: PasscodeIntent,
        now: datetime,
    ) -> Optional[PasscodeRecord]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(PasscodeRow)
                .where(PasscodeRow.account_id == account_id)
                .where(PasscodeRow.intent == intent.value)
                .where(PasscodeRow.consumed_at.is_(None))
                .where(PasscodeRow.expires_at > now)
                .order_by(PasscodeRow.created_at.desc())
                .limit(1)
            )
            return _passcode_from_row(row) if row else None

    async def increment_attempts(
        self,
        passcode_id: UUID,
        max_attempts: int,
    ) -> Optional[PasscodeRecord]:
        # The conditional UPDATE takes the row lock; the burn below runs
        # in the same transaction, before any other attempt can count.
        async with self._db.session() as session, session.begin():
            result = await session.execute(
                update(PasscodeRow)
                .where(PasscodeRow.id == passcode_id)
                .where(PasscodeRow.consumed_at.is_(None))
                .where(PasscodeRow.attempts < max_attempts)
                .values(attempts=PasscodeRow.attempts + 1)
            )
            if result.rowcount != 1:
                return None
            row = await session.get(PasscodeRow, passcode_id, populate_existing=True)
            if row.attempts >= max_attempts:
                row.consumed_at = utcnow()
                await session.flush()
            return _passcode_from_row(row)

    async def consume(self, passcode_id: UUID) -> Optional[PasscodeRecord]:
        async with self._db.session() as session, session.begin():
            result = await session.execute(
                update(PasscodeRow)
                .where(PasscodeRow.id == passcode_id)
                .where(PasscodeRow.consumed_at.is_(None))
                .values(consumed_at=utcnow())
            )
            if result.rowcount != 1:
                return None
            row = await session.get(PasscodeRow, passcode_id, populate_existing=True)
            return _passcode_from_row(row)


class SQLExpenseStorage(ExpenseStorageInterface):

    def __init__(self, database: SQLDatabase):
        self._db = database

    async def create_expense(self, expense: Expense) -> Expense:
        row = ExpenseRow(
            id=expense.id,
            account_id=expense.account_id,
            amount_cents=to_cents(expense.amount),
            category=expense.category,
            description=expense.description,
            expense_date=expense.expense_date,
            idempotency_key=expense.idempotency_key,
            created_at=expense.created_at,
        )
        try:
            async with self._db.session() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise _duplicate_from(e) from e
        return expense

    async def get_expense_by_idempotency_key(
        self,
        account_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(ExpenseRow)
                .where(ExpenseRow.account_id == account_id)
                .where(ExpenseRow.idempotency_key == idempotency_key)
            )
            return _expense_from_row(row) if row else None

    async def list_expenses(
        self,
        account_id: UUID,
        query: ExpenseListQuery,
    ) -> ExpensePage:
        conditions = [ExpenseRow.account_id == account_id]
        if query.category:
            conditions.append(ExpenseRow.category.icontains(query.category, autoescape=True))
        date_range = query.date_range()
        if date_range:
            conditions.append(ExpenseRow.expense_date >= date_range[0])
            conditions.append(ExpenseRow.expense_date < date_range[1])

        if query.sort == ExpenseSort.NEWEST:
            ordering = (ExpenseRow.expense_date.desc(), ExpenseRow.created_at.desc())
        else:
            ordering = (ExpenseRow.expense_date.asc(), ExpenseRow.created_at.asc())

        async with self._db.session() as session:
            aggregates = await session.execute(
                select(
                    func.count(ExpenseRow.id),
                    func.coalesce(func.sum(ExpenseRow.amount_cents), 0),
                ).where(*conditions)
            )
            total_items, total_cents = aggregates.one()

            rows = await session.scalars(
                select(ExpenseRow)
                .where(*conditions)
                .order_by(*ordering)
                .offset(query.offset)
                .limit(query.page_size)
            )
            expenses = [_expense_from_row(row) for row in rows]

        return ExpensePage(
            expenses=expenses,
            total_cents=int(total_cents),
            total_items=int(total_items),
            page=query.page,
            page_size=query.page_size,
        )

    async def delete_expense(self, account_id: UUID, expense_id: UUID) -> bool:
        async with self._db.session() as session, session.begin():
            result = await session.execute(
                delete(ExpenseRow)
                .where(ExpenseRow.id == expense_id)
                .where(ExpenseRow.account_id == account_id)
            )
            return result.rowcount > 0


class SQLAuditStorage(AuditStorageInterface):

    def __init__(self, database: SQLDatabase):
        self._db = database

    async def append_event(self, event: AuditEvent) -> bool:
        row = AuditEventRow(
            event_id=event.event_id,
            timestamp=event.timestamp,
            event_type=event.event_type.value,
            severity=event.severity.value,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            account_id=event.account_id,
            correlation_id=event.correlation_id,
            description=event.description,
            details=event.details,
            error_message=event.error_message,
            is_user_action=event.is_user_action,
        )
        try:
            async with self._db.session() as session, session.begin():
                session.add(row)
            return True
        except SQLAlchemyError as e:
            # Audit persistence must not break the main flow
            logger.warning(
                "audit_persist_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        async with self._db.session() as session:
            rows = await session.scalars(
                select(AuditEventRow)
                .where(AuditEventRow.entity_type == entity_type)
                .where(AuditEventRow.entity_id == entity_id)
                .order_by(AuditEventRow.timestamp.asc())
            )
            return [_event_from_row(row) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        async with self._db.session() as session:
            rows = await session.scalars(
                select(AuditEventRow)
                .order_by(AuditEventRow.timestamp.desc())
                .limit(limit)
            )
            return [_event_from_row(row) for row in rows]
