"""
Command line console for support tickets.

``support-console`` mounts the staff or the customer variant of the
ticket conversation screen, depending on the role flag (or, without
one, on the role the server reports for the token).  It starts on the
ticket list; picking a ticket opens its conversation, and ``/back``
returns to the list.

Inside a conversation, plain text lines are added to the reply
composer and commands start with a slash::

    /attach PATH [PATH ...]   stage files for the next reply
    /remove N                 unstage file number N
    /send                     upload staged files, then send the reply
    /status STATUS            set the ticket status (staff)
    /staff                    list staff members (staff)
    /assign N|STAFF_ID        assign the ticket (staff)
    /refresh                  reload the ticket and its messages
    /back                     return to the ticket list
    /quit                     leave the console

Usage::

    support-console --base-url http://localhost:8000 --token <token> [--ticket ID]
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
from typing import Callable, List, Optional

from support_desk.app.core.logging_config import setup_logging
from support_desk.client import SupportDeskClient
from support_desk.console import errors
from support_desk.console.conversation import TicketConversation
from support_desk.console.models import TicketPage
from support_desk.console.projector import PRIORITY_LABELS, STATUS_LABELS, ConversationView
from support_desk.console.settings import ConsoleSettings
from support_desk.lifecycle import Role

logger = logging.getLogger(__name__)

HELP = __doc__.split("::")[1].split("Usage")[0].rstrip()

BACK = "back"
QUIT = "quit"


def render_ticket_list(page: TicketPage, role: Role) -> str:
    lines = [f"Tickets ({page.count})"]
    if not page.tickets:
        lines.append("  no tickets")
    for number, ticket in enumerate(page.tickets, start=1):
        lines.append(
            f"  {number:>2}. [{STATUS_LABELS[role][ticket.status]}] "
            f"[{PRIORITY_LABELS[role][ticket.priority]}] {ticket.subject}  ({ticket.id})"
        )
    lines.append("Enter a number or ticket id, /refresh or /quit")
    return "\n".join(lines)


def render_view(view: ConversationView, conversation: TicketConversation) -> str:
    """Draw a conversation as plain text."""
    lines = [
        f"== {view.subject} ==",
        f"Customer: {view.customer_title}",
        f"Status: {view.status_label} ({view.status_color})   "
        f"Priority: {view.priority_label} ({view.priority_color})",
        f"Assigned to: {view.assigned_to_label}",
        "",
    ]
    width = 72
    for row in view.rows:
        header = f"{row.sender_name} · {row.created_at}"
        text = [header] + (row.body.splitlines() or [""])
        text += [f"[file] {a.name or a.id} {a.url}" for a in row.attachments]
        for line in text:
            lines.append(line.rjust(width) if row.side == "right" else line)
        lines.append("")

    if view.show_admin_controls:
        options = ", ".join(s.value for s, _ in view.status_options)
        lines.append(f"/status <{options}>   /assign N: {view.assign_label}")

    if view.composer_enabled:
        for staged in conversation.stager.active():
            kind = "image" if staged.is_image else "file"
            lines.append(f"  #{staged.local_id} {staged.name} ({kind}, {staged.size} bytes)")
        if conversation.composer:
            lines.append("> " + conversation.composer.replace("\n", "\n> "))
    else:
        lines.append(view.composer_hint or "Replies are disabled.")

    if conversation.status_message:
        lines.append(f"! {conversation.status_message}")
    return "\n".join(lines)


class ConsoleApp:
    """Interactive loop over the ticket list and one conversation at a time."""

    def __init__(
        self,
        client: SupportDeskClient,
        role: Role,
        input_fn: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ) -> None:
        self.client = client
        self.role = Role(role)
        self.input = input_fn
        self.output = output

    def _read(self, prompt: str) -> Optional[str]:
        try:
            return self.input(prompt)
        except EOFError:
            return None

    def run(self, ticket_id: Optional[str] = None) -> int:
        while True:
            if ticket_id is None:
                ticket_id = self.choose_ticket()
                if ticket_id is None:
                    return 0
            if self.open_conversation(ticket_id) == QUIT:
                return 0
            ticket_id = None

    def choose_ticket(self) -> Optional[str]:
        """Show the ticket list and return the picked id, or ``None`` to quit."""
        page = None
        while True:
            if page is None:
                try:
                    page = self.client.list_tickets()
                except errors.SupportDeskError as exc:
                    self.output(f"! {exc.user_message}")
                    return None
                self.output(render_ticket_list(page, self.role))
            line = self._read("ticket> ")
            if line is None or line.strip() == "/quit":
                return None
            choice = line.strip()
            if not choice:
                continue
            if choice == "/refresh":
                page = None
                continue
            if choice.isdigit() and 1 <= int(choice) <= len(page.tickets):
                return page.tickets[int(choice) - 1].id
            return choice

    def open_conversation(self, ticket_id: str) -> str:
        conversation = TicketConversation(self.client, ticket_id, self.role)
        if not conversation.load():
            self.output(f"! {conversation.status_message}")
            return BACK
        self.output(render_view(conversation.view(), conversation))
        while True:
            line = self._read("> ")
            if line is None:
                return QUIT
            outcome = self.handle(conversation, line)
            if outcome in (BACK, QUIT):
                return outcome
            self.output(render_view(conversation.view(), conversation))

    def handle(self, conversation: TicketConversation, line: str) -> Optional[str]:
        """Apply one input line to ``conversation``."""
        if not line.startswith("/"):
            text = conversation.composer
            conversation.set_composer(f"{text}\n{line}" if text else line)
            return None

        try:
            parts = shlex.split(line)
        except ValueError as exc:
            conversation.status_message = str(exc)
            return None
        command, args = parts[0], parts[1:]

        if command == "/quit":
            return QUIT
        if command == "/back":
            return BACK
        if command == "/help":
            self.output(HELP)
        elif command == "/send":
            conversation.submit_reply()
        elif command == "/attach":
            if conversation.view().composer_enabled:
                conversation.stage_files(args)
            else:
                conversation.status_message = conversation.view().composer_hint
        elif command == "/remove" and len(args) == 1 and args[0].isdigit():
            if not conversation.remove_staged(int(args[0])):
                conversation.status_message = conversation.status_message or f"No staged file #{args[0]}"
        elif command == "/refresh":
            conversation.load()
        elif command == "/status" and len(args) == 1:
            conversation.change_status(args[0])
        elif command == "/staff":
            if conversation.load_staff():
                self.output(self._staff_listing(conversation))
        elif command == "/assign" and len(args) == 1:
            conversation.assign(self._staff_id(conversation, args[0]))
        else:
            conversation.status_message = f"Unknown command: {line.strip()} (try /help)"
        return None

    @staticmethod
    def _staff_listing(conversation: TicketConversation) -> str:
        return "\n".join(
            f"  {number:>2}. {person.display_name}  ({person.id})"
            for number, person in enumerate(conversation.staff, start=1)
        ) or "  no staff members"

    @staticmethod
    def _staff_id(conversation: TicketConversation, choice: str) -> str:
        if choice.isdigit() and 1 <= int(choice) <= len(conversation.staff):
            return conversation.staff[int(choice) - 1].id
        return choice


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="support-console",
        description="Read and answer support tickets from the terminal.",
    )
    parser.add_argument("--base-url", help="Server URL (env SUPPORT_DESK_BASE_URL)")
    parser.add_argument("--token", help="Bearer token (env SUPPORT_DESK_TOKEN)")
    parser.add_argument(
        "--role",
        choices=[r.value for r in Role],
        help="Screen variant to mount (env SUPPORT_DESK_ROLE); defaults to the token's role",
    )
    parser.add_argument("--ticket", help="Open this ticket directly")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    parser.add_argument("--log-level", help="Logging level (default WARNING)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = ConsoleSettings()
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 2
    setup_logging(args.log_level or settings.log_level)

    base_url = args.base_url or settings.base_url
    if not base_url:
        print("A server URL is required (--base-url or SUPPORT_DESK_BASE_URL)", file=sys.stderr)
        return 2
    client = SupportDeskClient(
        base_url=base_url,
        token=args.token or settings.token,
        timeout=args.timeout or settings.timeout,
    )

    role = args.role or settings.role
    if not role:
        try:
            role = client.me().get("role")
        except errors.SupportDeskError as exc:
            print(exc.user_message, file=sys.stderr)
            return 1
    try:
        role = Role(role)
    except ValueError:
        print(f"Unknown role: {role}", file=sys.stderr)
        return 2

    logger.info("Starting %s console against %s", role.value, base_url)
    return ConsoleApp(client, role).run(args.ticket)


if __name__ == "__main__":
    sys.exit(main())
