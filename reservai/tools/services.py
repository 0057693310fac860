"""Service catalogue and staff lookup with free-text synonym matching."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from reservai.errors import TransientError
from reservai.schemas.booking_schema import ServiceEntry, StaffMember
from reservai.tools.database import Database, Service, Staff
from reservai.utils import normalize_text

logger = logging.getLogger(__name__)

STORE_UNAVAILABLE = "Tivemos um erro ao processar seu pedido. Tente novamente mais tarde."

# Normalized free-text name -> canonical catalogue name.
SERVICE_ALIASES: dict[str, str] = {
    "corte": "Corte", "cortar": "Corte", "cabelo": "Corte",
    "corte de cabelo": "Corte", "cortar o cabelo": "Corte", "haircut": "Corte",
    "barba": "Barba", "fazer a barba": "Barba", "aparar barba": "Barba",
    "barbear": "Barba", "beard": "Barba",
    "sobrancelha": "Sobrancelha", "sobrancelhas": "Sobrancelha",
    "design de sobrancelha": "Sobrancelha",
}


def canonical_service_name(query: str) -> Optional[str]:
    """Map free text to a canonical service name via the synonym table."""
    normalized = normalize_text(query)
    if normalized in SERVICE_ALIASES:
        return SERVICE_ALIASES[normalized]
    # Longest alias first so "corte de cabelo" wins over "cabelo".
    for alias in sorted(SERVICE_ALIASES, key=len, reverse=True):
        if alias in normalized:
            return SERVICE_ALIASES[alias]
    return None


class ServiceCatalog:
    """Read access to the services and staff tables."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def match_service(self, query: str) -> Optional[ServiceEntry]:
        """Resolve a free-text service name to a catalogue entry, or None."""
        wanted = normalize_text(canonical_service_name(query) or query)
        for service in self.list_services():
            if normalize_text(service.name) == wanted:
                return service
        logger.debug("No service matches '%s'", query)
        return None

    def list_services(self) -> list[ServiceEntry]:
        try:
            with self._db.session_factory() as session:
                rows = session.scalars(select(Service).order_by(Service.id)).all()
                return [ServiceEntry.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Service lookup failed: %s", exc)
            raise TransientError(STORE_UNAVAILABLE) from exc

    def find_staff_by_name(self, name: str) -> Optional[StaffMember]:
        """Case- and accent-insensitive staff lookup by name or first name."""
        wanted = normalize_text(name)
        for prefix in ("com o ", "com a ", "com ", "o ", "a "):
            if wanted.startswith(prefix):
                wanted = wanted[len(prefix):]
                break
        for member in self.list_staff():
            full = normalize_text(member.name)
            if full == wanted or full.split(" ")[0] == wanted:
                return member
        return None

    def list_staff(self) -> list[StaffMember]:
        try:
            with self._db.session_factory() as session:
                rows = session.scalars(select(Staff).order_by(Staff.id)).all()
                return [StaffMember.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Staff lookup failed: %s", exc)
            raise TransientError(STORE_UNAVAILABLE) from exc
