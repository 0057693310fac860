"""
Reservai entry point.

Wires the configured database and intent classifier into a MessageHandler.
The transport layer is out of scope; ``jsonl`` mode reads one inbound
message per line on stdin and writes one reply per line on stdout, which
is enough to sit behind any webhook adapter.

Usage:
    Seed demo data:  python main.py seed
    JSON lines:      python main.py jsonl < messages.jsonl
    Console mode:    python main.py console [--scenario booking]
"""

import json
import logging
import sys

from reservai.config import settings
from reservai.conversation.dispatcher import ConversationEngine, MessageHandler
from reservai.tools.database import Database, seed_demo_data
from reservai.tools.intent_classifier import build_classifier
from reservai.tools.services import ServiceCatalog
from reservai.utils import local_now

logger = logging.getLogger(__name__)


def build_handler(database: Database) -> MessageHandler:
    """MessageHandler with the classifier selected by CLASSIFIER_BACKEND."""
    staff_names = [member.name for member in ServiceCatalog(database).list_staff()]
    classifier = build_classifier(staff_names)
    return MessageHandler(ConversationEngine(database), classifier)


def _run_seed() -> None:
    database = Database()
    database.create_schema()
    if seed_demo_data(database, local_now()):
        logger.info("Demo data written to %s", database.url)
    else:
        logger.info("Database %s already has data, nothing seeded", database.url)
    database.dispose()


def _run_jsonl_mode() -> None:
    """Process newline-delimited JSON messages from stdin."""
    database = Database()
    database.create_schema()
    handler = build_handler(database)
    logger.info(
        "Reservai ready for %s (classifier: %s)",
        settings.business.name, settings.classifier.backend,
    )
    try:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed line: %s", line[:80])
                continue
            reply = handler.handle(payload)
            sys.stdout.write(reply.model_dump_json() + "\n")
            sys.stdout.flush()
            evicted = handler.engine.store.evict_idle()
            if evicted:
                logger.debug("Evicted %d idle sessions", evicted)
    finally:
        database.dispose()


def _run_console_mode(argv: list[str]) -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import main as console_main

    console_main(argv)


if __name__ == "__main__":
    command = sys.argv[1] if len(sys.argv) > 1 else "console"
    if command == "seed":
        _run_seed()
    elif command == "jsonl":
        _run_jsonl_mode()
    elif command == "console":
        _run_console_mode(sys.argv[2:])
    else:
        print(__doc__)
        sys.exit(2)
