"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from reservai.conversation.dispatcher import ConversationEngine, MessageHandler
from reservai.conversation.session_store import InMemorySessionStore
from reservai.conversation.state_machine import ConversationStateMachine
from reservai.tools.database import Database, Service, Slot, Staff
from reservai.tools.intent_classifier import KeywordIntentClassifier
from reservai.utils import weekday_label

# Monday 19/10/2026 08:00, business-local.
FIXED_NOW = datetime(2026, 10, 19, 8, 0)

CONTACT = "whatsapp:+5511999990000"


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
def state_machine():
    return ConversationStateMachine()


@pytest.fixture
def database(tmp_path):
    """Empty schema on a temporary SQLite file (shared across threads)."""
    db = Database(f"sqlite:///{tmp_path / 'reservai.db'}")
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def catalog(database) -> dict[str, int]:
    """Corte/Barba/Sobrancelha and João/Pedro. Returns name -> id."""
    with database.session_factory() as session:
        rows = [Service(name=n) for n in ("Corte", "Barba", "Sobrancelha")]
        rows += [Staff(name=n) for n in ("João", "Pedro")]
        session.add_all(rows)
        session.commit()
        return {row.name: row.id for row in rows}


def add_slot(
    database: Database,
    start: datetime,
    staff_id: Optional[int] = None,
    available: bool = True,
) -> int:
    with database.session_factory() as session:
        slot = Slot(
            start_timestamp=start,
            weekday_label=weekday_label(start),
            staff_id=staff_id,
            available=available,
        )
        session.add(slot)
        session.commit()
        return slot.id


def get_slot_row(database: Database, slot_id: int) -> Slot:
    with database.session_factory() as session:
        return session.get(Slot, slot_id)


@pytest.fixture
def slot_grid(database, catalog) -> dict[str, int]:
    """A handful of slots in the week after FIXED_NOW. Returns label -> id."""
    joao, pedro = catalog["João"], catalog["Pedro"]
    grid = {
        "tue_10": (datetime(2026, 10, 20, 10, 0), joao),
        "wed_14": (datetime(2026, 10, 21, 14, 0), pedro),
        "fri_10": (datetime(2026, 10, 23, 10, 0), joao),
        "fri_11": (datetime(2026, 10, 23, 11, 0), pedro),
        "sat_15": (datetime(2026, 10, 24, 15, 0), joao),
    }
    return {label: add_slot(database, start, staff) for label, (start, staff) in grid.items()}


@pytest.fixture
def store():
    return InMemorySessionStore(idle_timeout=timedelta(minutes=30), clock=fixed_clock)


@pytest.fixture
def engine(database, catalog, store):
    return ConversationEngine(database, store=store, clock=fixed_clock, max_slots_listed=10)


@pytest.fixture
def handler(engine):
    return MessageHandler(engine, KeywordIntentClassifier(["João", "Pedro"]), locale="pt-BR")


def say(handler: MessageHandler, text: str, contact: str = CONTACT,
        display_name: Optional[str] = "Ana") -> str:
    """Send one message through the full pipeline and return the reply text."""
    reply = handler.handle({
        "conversation_id": contact,
        "text": text,
        "display_name": display_name,
    })
    return reply.text


def current_step(handler: MessageHandler, contact: str = CONTACT):
    session = handler.engine.store.get(contact)
    return session.step if session else None
