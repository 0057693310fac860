"""
Client lookup-or-create keyed by contact.

The conversation id delivered by the messaging gateway doubles as the
contact key once its transport prefix is stripped.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from reservai.config import settings
from reservai.errors import TransientError
from reservai.schemas.booking_schema import ClientRecord
from reservai.tools.database import Client, Database
from reservai.tools.services import STORE_UNAVAILABLE
from reservai.utils import normalize_contact

logger = logging.getLogger(__name__)


class ClientDirectory:
    """Keyed upsert over the clients table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def find_or_create(self, contact: str, display_name: Optional[str] = None) -> ClientRecord:
        """Return the client for this contact, creating it if missing.

        A client still carrying the default placeholder name is renamed
        when a display name is supplied.
        """
        key = normalize_contact(contact) or contact.strip()
        default_name = settings.business.default_client_name
        try:
            with self._db.session_factory() as session:
                client = session.scalar(select(Client).where(Client.contact_key == key))
                if client is None:
                    client = Client(contact_key=key, name=display_name or default_name)
                    session.add(client)
                    try:
                        session.commit()
                    except IntegrityError:
                        # Created by a concurrent turn for the same contact.
                        session.rollback()
                        client = session.scalar(
                            select(Client).where(Client.contact_key == key)
                        )
                    else:
                        logger.info("New client created: %s (%s)", client.name, key)
                elif display_name and client.name == default_name:
                    client.name = display_name
                    session.commit()
                    logger.info("Client %s renamed to %s", client.id, display_name)
                return ClientRecord.model_validate(client)
        except SQLAlchemyError as exc:
            logger.error("Client lookup failed for %s: %s", key, exc)
            raise TransientError(STORE_UNAVAILABLE) from exc
