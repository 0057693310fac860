"""
Relational backing store: schema, engine setup and demo seeding.

Slot availability is the only state shared across conversations, and it
is protected by database transactions alone. On SQLite every transaction
is opened with ``BEGIN IMMEDIATE`` so concurrent writers queue on the
database write lock instead of failing with a deadlock; on servers with
row locks the transaction manager's ``SELECT ... FOR UPDATE`` does the job.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from reservai.config import settings
from reservai.utils import weekday_label

logger = logging.getLogger(__name__)

Base = declarative_base()

STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"

DEMO_SERVICES = ["Corte", "Barba", "Sobrancelha"]
DEMO_STAFF = ["João", "Pedro"]


appointment_services = Table(
    "appointment_services",
    Base.metadata,
    Column("appointment_id", Integer, ForeignKey("appointments.id"), primary_key=True),
    Column("service_id", Integer, ForeignKey("services.id"), primary_key=True),
)


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    contact_key = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)


class Slot(Base):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True)
    start_timestamp = Column(DateTime, nullable=False, index=True)
    weekday_label = Column(String, nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=True)
    available = Column(Boolean, nullable=False, default=True)

    staff = relationship("Staff")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=True)
    status = Column(String, nullable=False, default=STATUS_ACTIVE)
    created_at = Column(DateTime, server_default=func.now())

    client = relationship("Client")
    slot = relationship("Slot")
    staff = relationship("Staff")
    services = relationship("Service", secondary=appointment_services, order_by="Service.id")


class Database:
    """Engine plus session factory for one backing store."""

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None) -> None:
        self.url = url or settings.database.url
        self.engine = _build_engine(
            self.url, settings.database.echo if echo is None else echo
        )
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.debug("Schema ensured on %s", self.engine.url)

    def dispose(self) -> None:
        self.engine.dispose()


def _build_engine(url: str, echo: bool) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    engine = create_engine(
        url,
        echo=echo,
        connect_args={
            "timeout": settings.database.busy_timeout_sec,
            "check_same_thread": False,
        },
    )

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so it can be IMMEDIATE.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def seed_demo_data(database: Database, now: datetime) -> bool:
    """Populate services, staff and a slot grid for the coming days.

    Does nothing if services already exist. Sundays are closed. Every
    staff member gets one slot per grid time. Returns True if data was
    written.
    """
    cfg = settings.scheduling
    session = database.session_factory()
    try:
        if session.scalar(select(func.count(Service.id))):
            return False

        session.add_all(Service(name=name) for name in DEMO_SERVICES)
        staff = [Staff(name=name) for name in DEMO_STAFF]
        session.add_all(staff)
        session.flush()

        base = now.replace(hour=0, minute=0, second=0, microsecond=0)
        slot_count = 0
        for day_offset in range(1, cfg.seed_days + 1):
            day = base + timedelta(days=day_offset)
            if day.weekday() == 6:  # Sunday closed
                continue
            start = day.replace(hour=cfg.seed_open_hour)
            close = day.replace(hour=0) + timedelta(hours=cfg.seed_close_hour)
            while start < close:
                for member in staff:
                    session.add(Slot(
                        start_timestamp=start,
                        weekday_label=weekday_label(start),
                        staff_id=member.id,
                        available=True,
                    ))
                    slot_count += 1
                start += timedelta(minutes=cfg.seed_slot_minutes)

        session.commit()
        logger.info(
            "Seeded %d services, %d staff, %d slots",
            len(DEMO_SERVICES), len(staff), slot_count,
        )
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
