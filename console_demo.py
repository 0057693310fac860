"""
Offline console demo: runs booking conversations without any API keys.

Drives the real dispatcher, slot resolver and transaction manager against a
seeded SQLite database, with the offline keyword classifier standing in for
the hosted intent service. Designed for live demo walkthroughs.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario nearest
    python console_demo.py --scenario cancel
    python console_demo.py --scenario reschedule
"""

import argparse
import sys
from typing import Optional

from reservai.config import settings
from reservai.conversation.dispatcher import ConversationEngine, MessageHandler
from reservai.tools.database import DEMO_STAFF, Database, seed_demo_data
from reservai.tools.intent_classifier import KeywordIntentClassifier
from reservai.utils import local_now

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_CONTACT = "whatsapp:+5511999990000"

_BOOK_FRIDAY = ["Oi", "Quero um corte", "Sexta 10:00", "Sim", "Sim"]


class ConsoleSession:
    """Simulates a messaging conversation in the terminal."""

    SCENARIOS: dict[str, list[str]] = {
        "booking": _BOOK_FRIDAY,
        "nearest": [
            "Quero fazer a barba",
            "Sexta 10:30 com o Pedro",
            "Sim",
            "Sim",
            "Sim",
        ],
        "cancel": _BOOK_FRIDAY + ["Quero cancelar meu agendamento", "Sim"],
        "reschedule": _BOOK_FRIDAY + ["Quero remarcar", "Sim", "Sábado 15:00", "Sim"],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(
        self,
        database_url: Optional[str] = None,
        contact: str = DEMO_CONTACT,
        display_name: Optional[str] = "Visitante",
    ) -> None:
        self.database = Database(database_url)
        self.database.create_schema()
        if seed_demo_data(self.database, local_now()):
            self.system_log("Demo data seeded")
        self.engine = ConversationEngine(self.database)
        self.handler = MessageHandler(self.engine, KeywordIntentClassifier(DEMO_STAFF))
        self.contact = contact
        self.display_name = display_name

    def agent_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[{settings.business.name}]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def send(self, text: str) -> str:
        reply = self.handler.handle({
            "conversation_id": self.contact,
            "text": text,
            "display_name": self.display_name,
        })
        self.agent_say(reply.text)
        self.system_log(f"Step: {self._current_step()}")
        return reply.text

    def _current_step(self) -> str:
        session = self.engine.store.get(self.contact)
        return session.step.value if session else "none (no session)"

    def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")
        for step in steps:
            print(f"\n{BLUE}[Cliente] {RESET}{step}")
            self.send(step)

        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    def run(self) -> None:
        self._banner("Console Demo")
        print(f"{BOLD}  Type 'quit' to exit{RESET}")

        while True:
            user_input = input(f"\n{BLUE}[Cliente] {RESET}").strip()
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "sair", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                return
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.agent_say("Mensagem muito longa. Pode resumir?")
                continue
            self.send(user_input)

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  RESERVAI - {title}{RESET}")
        print(f"{BOLD}  Business: {settings.business.name}{RESET}")
        print(f"{BOLD}  Database: {self.database.url}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Reservai offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        help="Auto-play a scripted conversation instead of reading from stdin",
    )
    parser.add_argument(
        "--database",
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL)",
    )
    args = parser.parse_args(argv)

    session = ConsoleSession(database_url=args.database)
    try:
        if args.scenario:
            session.run_scenario(args.scenario)
        else:
            session.run()
    except (KeyboardInterrupt, EOFError):
        print(f"\n{DIM}Session ended.{RESET}")
    finally:
        session.database.dispose()


if __name__ == "__main__":
    main(sys.argv[1:])
