"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, ContextManager, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    or_,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quotes_backend.errors import StoreError

if TYPE_CHECKING:
    from quotes_backend.config import Settings
    from quotes_backend.quotes import QuoteProjection

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "placeholder.local"

# Columns overwritten when an existing quote_uid is written again.
# created_by and created_at keep their first-insert values.
MUTABLE_QUOTE_COLUMNS = (
    "project_number",
    "client_name",
    "client_category",
    "brand",
    "project_name",
    "brief_date",
    "in_market_date",
    "project_completion_date",
    "total_program_budget",
    "rate_card",
    "currency",
    "phases",
    "phase_settings",
    "status",
    "updated_by",
    "updated_at",
    "full_quote",
)

JsonType = JSON().with_variant(postgresql.JSONB(), "postgresql")

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

quotes_table = Table(
    "quotes",
    metadata,
    Column("quote_uid", String, primary_key=True),
    Column("project_number", String, nullable=True),
    Column("client_name", String, nullable=True),
    Column("client_category", String, nullable=True),
    Column("brand", String, nullable=True),
    Column("project_name", String, nullable=True),
    Column("brief_date", Date, nullable=True),
    Column("in_market_date", Date, nullable=True),
    Column("project_completion_date", Date, nullable=True),
    Column("total_program_budget", Float, nullable=True),
    Column("rate_card", String, nullable=True),
    Column("currency", String, nullable=False, default="CAD"),
    Column("phases", JsonType, nullable=False),
    Column("phase_settings", JsonType, nullable=False),
    Column("status", String, nullable=False, default="draft"),
    Column("created_by", String, nullable=False, index=True),
    Column("updated_by", String, nullable=False, index=True),
    Column("full_quote", JsonType, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, index=True),
)

user_storage_table = Table(
    "user_storage",
    metadata,
    Column("user_id", String, primary_key=True),
    Column("storage_key", String, primary_key=True),
    Column("value", JsonType, nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def placeholder_email(user_id: str) -> str:
    return f"{user_id}@{PLACEHOLDER_EMAIL_DOMAIN}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteWriter(Protocol):
    """Write operations available inside a per-owner transaction."""

    def ensure_user(self, user_id: str, email: Optional[str] = None) -> None:
        ...

    def upsert_quote(self, projection: "QuoteProjection") -> None:
        ...

    def delete_quotes_except(self, owner_id: str, keep_ids: list[str]) -> int:
        ...

    def delete_quote(self, owner_id: str, quote_uid: str) -> int:
        ...


class DbClient(Protocol):
    """Interface for database access."""

    def transaction(self, owner_id: str) -> ContextManager[QuoteWriter]:
        ...

    def list_quotes(self, owner_id: str) -> list[dict]:
        ...

    def get_quote(self, owner_id: str, quote_uid: str) -> Optional[dict]:
        ...

    def list_quote_ids(self, owner_id: str) -> list[str]:
        ...

    def get_value(self, user_id: str, key: str) -> Any:
        ...

    def set_value(
        self, user_id: str, key: str, value: Any, email: Optional[str] = None
    ) -> None:
        ...

    def delete_value(self, user_id: str, key: str) -> None:
        ...

    def list_values(self, user_id: str) -> dict:
        ...


def build_database_url(settings: "Settings") -> Optional[str | URL]:
    """
    DATABASE_URL wins; otherwise assemble one from the POSTGRES_* settings,
    using the Cloud SQL unix socket when a connection name is configured.
    """
    if settings.database_url:
        return settings.database_url
    if not settings.postgres_db:
        return None
    query: dict[str, str] = {}
    host = settings.postgres_host
    if settings.cloud_sql_connection_name:
        query["host"] = f"/cloudsql/{settings.cloud_sql_connection_name}"
        host = None
    elif settings.postgres_ssl:
        query["sslmode"] = "require"
    return URL.create(
        "postgresql+psycopg2",
        username=settings.postgres_user,
        password=settings.postgres_password,
        host=host,
        port=settings.postgres_port,
        database=settings.postgres_db,
        query=query,
    )


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


@dataclass
class QuoteRow:
    quote_uid: str
    created_by: str
    updated_by: str
    full_quote: dict
    columns: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    sequence: int = 0


@dataclass
class _InMemoryState:
    users: Dict[str, str] = field(default_factory=dict)
    quotes: Dict[str, QuoteRow] = field(default_factory=dict)
    storage: Dict[tuple[str, str], Any] = field(default_factory=dict)


class _InMemoryWriter:
    def __init__(self, state: _InMemoryState, next_sequence):
        self.state = state
        self._next_sequence = next_sequence

    def ensure_user(self, user_id: str, email: Optional[str] = None) -> None:
        self.state.users.setdefault(user_id, email or placeholder_email(user_id))

    def upsert_quote(self, projection: "QuoteProjection") -> None:
        row = projection.as_row()
        full_quote = copy.deepcopy(row.pop("full_quote"))
        uid = row.pop("quote_uid")
        now = _utcnow()
        existing = self.state.quotes.get(uid)
        if existing is None:
            self.state.quotes[uid] = QuoteRow(
                quote_uid=uid,
                created_by=row.pop("created_by"),
                updated_by=row.pop("updated_by"),
                full_quote=full_quote,
                columns=copy.deepcopy(row),
                created_at=now,
                updated_at=now,
                sequence=self._next_sequence(),
            )
            return
        row.pop("created_by")
        self.state.quotes[uid] = QuoteRow(
            quote_uid=uid,
            created_by=existing.created_by,
            updated_by=row.pop("updated_by"),
            full_quote=full_quote,
            columns=copy.deepcopy(row),
            created_at=existing.created_at,
            updated_at=now,
            sequence=self._next_sequence(),
        )

    def delete_quotes_except(self, owner_id: str, keep_ids: list[str]) -> int:
        keep = set(keep_ids)
        doomed = [
            uid
            for uid, row in self.state.quotes.items()
            if row.created_by == owner_id and uid not in keep
        ]
        for uid in doomed:
            del self.state.quotes[uid]
        return len(doomed)

    def delete_quote(self, owner_id: str, quote_uid: str) -> int:
        row = self.state.quotes.get(quote_uid)
        if row is None or row.created_by != owner_id:
            return 0
        del self.state.quotes[quote_uid]
        return 1


class InMemoryDbClient:
    """
    Simple in-memory database for development and tests.

    Transactions run on a staged copy of the state that replaces the live
    state only when the block exits cleanly. One lock covers every
    transaction, which also serialises writers for the same owner.
    """

    def __init__(self):
        self.state = _InMemoryState()
        self._lock = threading.RLock()
        self._sequence = 0

    @property
    def users(self) -> Dict[str, str]:
        return self.state.users

    @property
    def quotes(self) -> Dict[str, QuoteRow]:
        return self.state.quotes

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.state = _InMemoryState()
            self._sequence = 0

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    @contextmanager
    def transaction(self, owner_id: str) -> Iterator[_InMemoryWriter]:
        with self._lock:
            staged = _InMemoryState(
                users=dict(self.state.users),
                quotes=dict(self.state.quotes),
                storage=dict(self.state.storage),
            )
            yield _InMemoryWriter(staged, self._next_sequence)
            self.state = staged

    def _visible_rows(self, owner_id: str) -> list[QuoteRow]:
        rows = [
            row
            for row in self.state.quotes.values()
            if owner_id in (row.created_by, row.updated_by)
        ]
        return sorted(rows, key=lambda row: (row.updated_at, row.sequence), reverse=True)

    def list_quotes(self, owner_id: str) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(row.full_quote) for row in self._visible_rows(owner_id)]

    def get_quote(self, owner_id: str, quote_uid: str) -> Optional[dict]:
        with self._lock:
            row = self.state.quotes.get(quote_uid)
            if row is None or owner_id not in (row.created_by, row.updated_by):
                return None
            return copy.deepcopy(row.full_quote)

    def list_quote_ids(self, owner_id: str) -> list[str]:
        with self._lock:
            return sorted(
                uid for uid, row in self.state.quotes.items() if row.created_by == owner_id
            )

    def get_value(self, user_id: str, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self.state.storage.get((user_id, key)))

    def set_value(
        self, user_id: str, key: str, value: Any, email: Optional[str] = None
    ) -> None:
        with self.transaction(user_id) as writer:
            writer.ensure_user(user_id, email)
            writer.state.storage[(user_id, key)] = copy.deepcopy(value)

    def delete_value(self, user_id: str, key: str) -> None:
        with self._lock:
            self.state.storage.pop((user_id, key), None)

    def list_values(self, user_id: str) -> dict:
        with self._lock:
            return {
                key: copy.deepcopy(value)
                for (owner, key), value in self.state.storage.items()
                if owner == user_id
            }


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


def _to_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


class _SqlWriter:
    def __init__(self, session: Session, dialect_name: str):
        self.session = session
        self.dialect_name = dialect_name

    def _insert(self, table: Table):
        if self.dialect_name == "postgresql":
            return postgresql.insert(table)
        if self.dialect_name == "sqlite":
            return sqlite.insert(table)
        raise StoreError(f"Unsupported database dialect: {self.dialect_name}")

    def ensure_user(self, user_id: str, email: Optional[str] = None) -> None:
        stmt = self._insert(users_table).values(
            id=user_id,
            email=email or placeholder_email(user_id),
            created_at=_utcnow(),
        )
        self.session.execute(
            stmt.on_conflict_do_nothing(index_elements=[users_table.c.id])
        )

    def upsert_quote(self, projection: "QuoteProjection") -> None:
        row = projection.as_row()
        for column in ("brief_date", "in_market_date", "project_completion_date"):
            row[column] = _to_date(row[column])
        now = _utcnow()
        row["created_at"] = now
        row["updated_at"] = now
        stmt = self._insert(quotes_table).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[quotes_table.c.quote_uid],
            set_={name: stmt.excluded[name] for name in MUTABLE_QUOTE_COLUMNS},
        )
        self.session.execute(stmt)

    def delete_quotes_except(self, owner_id: str, keep_ids: list[str]) -> int:
        stmt = delete(quotes_table).where(quotes_table.c.created_by == owner_id)
        if keep_ids:
            stmt = stmt.where(quotes_table.c.quote_uid.not_in(keep_ids))
        result = self.session.execute(stmt)
        return result.rowcount or 0

    def delete_quote(self, owner_id: str, quote_uid: str) -> int:
        result = self.session.execute(
            delete(quotes_table).where(
                quotes_table.c.quote_uid == quote_uid,
                quotes_table.c.created_by == owner_id,
            )
        )
        return result.rowcount or 0

    def set_value(self, user_id: str, key: str, value: Any) -> None:
        stmt = self._insert(user_storage_table).values(
            user_id=user_id, storage_key=key, value=value, updated_at=_utcnow()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                user_storage_table.c.user_id,
                user_storage_table.c.storage_key,
            ],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        self.session.execute(stmt)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres
    or SQLite for tests).

    The engine and its connection pool are created on first use, not when the
    client is constructed.
    """

    def __init__(self, database_url: str | URL):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.database_url = make_url(database_url)
        self._engine: Optional[Engine] = None
        self._Session: Optional[sessionmaker] = None
        self._init_lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        self._ensure_initialized()
        return self._engine

    def _engine_kwargs(self) -> dict:
        kwargs: dict = {"future": True, "pool_pre_ping": True}
        if self.database_url.get_backend_name() == "sqlite":
            if self.database_url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_recycle"] = 1800
        return kwargs

    def _ensure_initialized(self) -> sessionmaker:
        if self._Session is not None:
            return self._Session
        with self._init_lock:
            if self._Session is None:
                try:
                    engine = create_engine(self.database_url, **self._engine_kwargs())
                    metadata.create_all(engine)
                except SQLAlchemyError as exc:
                    logger.exception("Failed to initialize database engine")
                    raise StoreError() from exc
                self._engine = engine
                self._Session = sessionmaker(
                    bind=engine, class_=Session, expire_on_commit=False, future=True
                )
                logger.info(
                    "Database engine initialized (%s)",
                    self.database_url.get_backend_name(),
                )
        return self._Session

    def _lock_owner(self, session: Session, owner_id: str) -> None:
        # Held until commit/rollback, so concurrent writers for one owner queue up.
        if session.get_bind().dialect.name == "postgresql":
            session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:owner_id))"),
                {"owner_id": owner_id},
            )

    @contextmanager
    def transaction(self, owner_id: str) -> Iterator[_SqlWriter]:
        Session_ = self._ensure_initialized()
        try:
            with Session_.begin() as session:
                self._lock_owner(session, owner_id)
                yield _SqlWriter(session, session.get_bind().dialect.name)
        except SQLAlchemyError as exc:
            logger.exception("Quote transaction failed for %s", owner_id)
            raise StoreError("Failed to save quotes") from exc

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        Session_ = self._ensure_initialized()
        try:
            with Session_() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Database read failed")
            raise StoreError("Failed to load data") from exc

    def list_quotes(self, owner_id: str) -> list[dict]:
        stmt = (
            select(quotes_table.c.full_quote)
            .where(
                or_(
                    quotes_table.c.created_by == owner_id,
                    quotes_table.c.updated_by == owner_id,
                )
            )
            .order_by(quotes_table.c.updated_at.desc(), quotes_table.c.quote_uid)
        )
        with self._read_session() as session:
            return [full_quote or {} for full_quote in session.execute(stmt).scalars()]

    def get_quote(self, owner_id: str, quote_uid: str) -> Optional[dict]:
        stmt = select(quotes_table.c.full_quote).where(
            quotes_table.c.quote_uid == quote_uid,
            or_(
                quotes_table.c.created_by == owner_id,
                quotes_table.c.updated_by == owner_id,
            ),
        )
        with self._read_session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def list_quote_ids(self, owner_id: str) -> list[str]:
        stmt = (
            select(quotes_table.c.quote_uid)
            .where(quotes_table.c.created_by == owner_id)
            .order_by(quotes_table.c.quote_uid)
        )
        with self._read_session() as session:
            return list(session.execute(stmt).scalars())

    def get_quote_row(self, quote_uid: str) -> Optional[dict]:
        """Return every column of one quote row (maintenance and tests)."""
        stmt = select(quotes_table).where(quotes_table.c.quote_uid == quote_uid)
        with self._read_session() as session:
            row = session.execute(stmt).mappings().one_or_none()
            return dict(row) if row else None

    def get_user_email(self, user_id: str) -> Optional[str]:
        stmt = select(users_table.c.email).where(users_table.c.id == user_id)
        with self._read_session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def get_value(self, user_id: str, key: str) -> Any:
        stmt = select(user_storage_table.c.value).where(
            user_storage_table.c.user_id == user_id,
            user_storage_table.c.storage_key == key,
        )
        with self._read_session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def set_value(
        self, user_id: str, key: str, value: Any, email: Optional[str] = None
    ) -> None:
        with self.transaction(user_id) as writer:
            writer.ensure_user(user_id, email)
            writer.set_value(user_id, key, value)

    def delete_value(self, user_id: str, key: str) -> None:
        stmt = delete(user_storage_table).where(
            user_storage_table.c.user_id == user_id,
            user_storage_table.c.storage_key == key,
        )
        Session_ = self._ensure_initialized()
        try:
            with Session_.begin() as session:
                session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete storage key %s for %s", key, user_id)
            raise StoreError() from exc

    def list_values(self, user_id: str) -> dict:
        stmt = (
            select(user_storage_table.c.storage_key, user_storage_table.c.value)
            .where(user_storage_table.c.user_id == user_id)
            .order_by(user_storage_table.c.storage_key)
        )
        with self._read_session() as session:
            return {key: value for key, value in session.execute(stmt)}
