"""
SQLAlchemy-backed booking store.

Instants are persisted as integer epoch milliseconds (UTC), never as local
date/time pairs. The atomic check-and-write operations re-run the overlap
query and write inside one transaction that holds an exclusive write lock:

- SQLite: write transactions are opened with ``BEGIN IMMEDIATE``
- PostgreSQL: ``pg_advisory_xact_lock`` on a fixed key
- anything else: a process-wide ``threading.Lock``
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from typing import Iterator, List, Optional

import pendulum
from pendulum import DateTime
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Engine,
    Index,
    String,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ..domain.conflicts import find_conflicts
from ..domain.exceptions import ConflictError, NotFound, StoreUnavailable
from ..domain.models import (
    UTC,
    Booking,
    Interval,
    epoch_ms_to_instant,
    instant_to_epoch_ms,
    to_instant,
)

logger = logging.getLogger(__name__)

WRITE_OPTION = "coachslots_write"

ADVISORY_LOCK_KEY = 0x636F616368

# SQLSTATE of an exclusion constraint violation, e.g. a PostgreSQL
# EXCLUDE USING gist (tstzrange(...) WITH &&) constraint
EXCLUSION_VIOLATION = "23P01"


class EpochInstant(TypeDecorator):
    """Stores an aware datetime as BIGINT epoch milliseconds in UTC."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return instant_to_epoch_ms(to_instant(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return epoch_ms_to_instant(value)


class Base(DeclarativeBase):
    pass


class BookingRecord(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_ts < end_ts", name="bookings_interval_valid"),
        Index("ix_bookings_start_end", "start_ts", "end_ts"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    start_ts: Mapped[DateTime] = mapped_column(EpochInstant, nullable=False)
    end_ts: Mapped[DateTime] = mapped_column(EpochInstant, nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(EpochInstant, nullable=False)

    def to_booking(self) -> Booking:
        return Booking(
            id=self.id,
            interval=Interval(start=self.start_ts, end=self.end_ts),
            subject=self.subject,
            note=self.note,
            created_at=self.created_at,
        )


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in url


def _enable_sqlite_write_locks(engine: Engine) -> None:
    """
    Take over pysqlite's transaction handling so write transactions can be
    opened with BEGIN IMMEDIATE (reserving the database write lock up front).
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = "IMMEDIATE" if conn.get_execution_options().get(WRITE_OPTION) else "DEFERRED"
        conn.exec_driver_sql(f"BEGIN {mode}")


class SqlBookingStore:
    """
    Booking store on top of a SQL database (SQLite or PostgreSQL).
    """

    def __init__(self, engine: Engine, *, in_process_lock: bool = False):
        self.engine = engine
        self.dialect = engine.dialect.name

        if self.dialect == "sqlite":
            _enable_sqlite_write_locks(engine)

        self._fallback_lock: Optional[threading.Lock] = None
        if in_process_lock or self.dialect not in ("sqlite", "postgresql"):
            self._fallback_lock = threading.Lock()

        self._read_sessions = sessionmaker(engine, expire_on_commit=False)
        self._write_sessions = sessionmaker(
            engine.execution_options(**{WRITE_OPTION: True}),
            expire_on_commit=False,
        )

        logger.debug(
            "SqlBookingStore on %s (lock strategy: %s)",
            self.dialect,
            self.lock_strategy,
        )

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False) -> "SqlBookingStore":
        """
        Create a store from a database URL.

        In-memory SQLite databases share a single connection, so writes to them
        are additionally serialised in-process.
        """
        if database_url.startswith("sqlite") and _is_memory_sqlite(database_url):
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            return cls(engine, in_process_lock=True)

        return cls(create_engine(database_url, echo=echo))

    @property
    def lock_strategy(self) -> str:
        if self._fallback_lock is not None:
            return "process-lock"
        if self.dialect == "sqlite":
            return "begin-immediate"
        return "advisory-lock"

    def create_schema(self) -> None:
        with self._translate_errors("create schema"):
            Base.metadata.create_all(self.engine)

    def list_overlapping(
        self,
        time_range: Interval,
        exclude_id: Optional[str] = None,
    ) -> List[Booking]:
        with self._translate_errors("list overlapping bookings"):
            with self._read_sessions() as session:
                records = self._query_overlapping(session, time_range, exclude_id)
                return [record.to_booking() for record in records]

    def insert_if_no_overlap(
        self,
        interval: Interval,
        subject: str,
        note: Optional[str] = None,
    ) -> Booking:
        with self._translate_errors("insert booking"):
            with self._write_transaction() as session:
                self._raise_if_overlapping(session, interval)

                record = BookingRecord(
                    id=str(uuid.uuid4()),
                    start_ts=interval.start,
                    end_ts=interval.end,
                    subject=subject,
                    note=note,
                    created_at=to_instant(pendulum.now(UTC)),
                )
                session.add(record)
                session.flush()
                return record.to_booking()

    def replace_if_no_overlap(self, booking_id: str, new_interval: Interval) -> Booking:
        with self._translate_errors("replace booking"):
            with self._write_transaction() as session:
                record = session.get(BookingRecord, booking_id)
                if record is None:
                    raise NotFound(booking_id)

                self._raise_if_overlapping(session, new_interval, exclude_id=booking_id)

                record.start_ts = new_interval.start
                record.end_ts = new_interval.end
                session.flush()
                return record.to_booking()

    def delete_by_id(self, booking_id: str) -> None:
        with self._translate_errors("delete booking"):
            with self._write_transaction() as session:
                record = session.get(BookingRecord, booking_id)
                if record is None:
                    raise NotFound(booking_id)
                session.delete(record)

    def get(self, booking_id: str) -> Booking:
        with self._translate_errors("get booking"):
            with self._read_sessions() as session:
                record = session.get(BookingRecord, booking_id)
                if record is None:
                    raise NotFound(booking_id)
                return record.to_booking()

    def list_bookings(
        self,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
    ) -> List[Booking]:
        statement = select(BookingRecord).order_by(BookingRecord.start_ts)
        if start is not None:
            statement = statement.where(BookingRecord.start_ts >= start)
        if end is not None:
            statement = statement.where(BookingRecord.start_ts < end)

        with self._translate_errors("list bookings"):
            with self._read_sessions() as session:
                return [record.to_booking() for record in session.scalars(statement)]

    def ping(self) -> bool:
        with self._translate_errors("ping"):
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        return True

    @contextlib.contextmanager
    def _write_transaction(self) -> Iterator[Session]:
        """
        Open a transaction holding the store-wide write lock; commits on
        success and rolls back on any exception.
        """
        process_lock = self._fallback_lock or contextlib.nullcontext()

        with process_lock:
            with self._write_sessions() as session:
                with session.begin():
                    if self.dialect == "postgresql" and self._fallback_lock is None:
                        session.execute(
                            text("SELECT pg_advisory_xact_lock(:key)"),
                            {"key": ADVISORY_LOCK_KEY},
                        )
                    yield session

    @staticmethod
    def _query_overlapping(
        session: Session,
        time_range: Interval,
        exclude_id: Optional[str] = None,
    ) -> List[BookingRecord]:
        # Half-open overlap: existing.start < new.end AND existing.end > new.start
        statement = (
            select(BookingRecord)
            .where(BookingRecord.start_ts < time_range.end)
            .where(BookingRecord.end_ts > time_range.start)
            .order_by(BookingRecord.start_ts)
        )
        if exclude_id is not None:
            statement = statement.where(BookingRecord.id != exclude_id)

        return list(session.scalars(statement))

    def _raise_if_overlapping(
        self,
        session: Session,
        interval: Interval,
        exclude_id: Optional[str] = None,
    ) -> None:
        records = self._query_overlapping(session, interval, exclude_id)
        conflicts = find_conflicts(interval, [Interval(r.start_ts, r.end_ts) for r in records])
        if conflicts:
            logger.debug("Commit of %s blocked by %d overlap(s)", interval, len(conflicts))
            raise ConflictError(
                f"Interval {interval} overlaps {len(conflicts)} existing booking(s)",
                conflicts=conflicts,
            )

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            if _sqlstate(exc) == EXCLUSION_VIOLATION:
                logger.warning("Exclusion constraint rejected %s: %s", operation, exc.orig)
                raise ConflictError(
                    f"Booking store rejected the interval during {operation}: {exc.orig}"
                ) from exc
            logger.error("Integrity error during %s: %s", operation, exc.orig)
            raise StoreUnavailable(f"Failed to {operation}: {exc.orig}") from exc
        except (DBAPIError, SQLAlchemyError) as exc:
            logger.error("Store failure during %s: %s", operation, exc)
            raise StoreUnavailable(f"Failed to {operation}: {exc}") from exc


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    # psycopg exposes ``sqlstate``, psycopg2 ``pgcode``; SQLite has neither
    return getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
