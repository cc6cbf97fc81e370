"""Command-line interface for mailbridge.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from email.utils import getaddresses
from pathlib import Path

import structlog

from mailbridge import __version__
from mailbridge.config import get_settings
from mailbridge.engine import MailEngine
from mailbridge.exceptions import MailbridgeError
from mailbridge.models import (
    ConnectedAccount,
    ConversationFilters,
    ConversationStatus,
    EmailAddress,
    ProviderType,
    ReplyContent,
    SyncResult,
)

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbridge", description="Mail sync and reply engine")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings db_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create or upgrade the database schema")

    # Account commands
    accounts_parser = subparsers.add_parser("accounts", help="Manage connected accounts")
    accounts_sub = accounts_parser.add_subparsers(dest="accounts_command", required=True)

    add_parser = accounts_sub.add_parser("add", help="Connect an IMAP/SMTP mailbox")
    add_parser.add_argument("--client", required=True, help="Tenant that owns the account")
    add_parser.add_argument("--email", required=True, help="Mailbox address")
    add_parser.add_argument("--name", default=None, help="Display name used on outgoing mail")
    add_parser.add_argument(
        "--provider",
        choices=[p.value for p in ProviderType],
        default=ProviderType.IMAP.value,
    )
    add_parser.add_argument("--imap-host", default=None)
    add_parser.add_argument("--imap-port", type=int, default=None)
    add_parser.add_argument("--smtp-host", default=None)
    add_parser.add_argument("--smtp-port", type=int, default=None)
    add_parser.add_argument("--username", default=None, help="Login name (default: --email)")
    add_parser.add_argument(
        "--password-env",
        default=None,
        help="Environment variable holding the mailbox password",
    )
    add_parser.add_argument("--no-tls", action="store_true", help="Connect without TLS")

    list_accounts_parser = accounts_sub.add_parser("list", help="List connected accounts")
    list_accounts_parser.add_argument("--client", default=None, help="Only this tenant's accounts")

    # Sync commands
    sync_parser = subparsers.add_parser("sync", help="Fetch new messages")
    sync_parser.add_argument("--account", default=None, help="Sync one account")
    sync_parser.add_argument("--client", default=None, help="Sync every account of one tenant")
    sync_parser.add_argument(
        "--max",
        type=int,
        default=None,
        help="Messages per account (default: settings sync_default_max_messages)",
    )

    reset_parser = subparsers.add_parser("reset-sync", help="Forget an account's sync cursor")
    reset_parser.add_argument("account", help="Account id")

    # Conversation commands
    conv_parser = subparsers.add_parser("conversations", help="Browse and manage conversations")
    conv_sub = conv_parser.add_subparsers(dest="conversations_command", required=True)

    conv_list = conv_sub.add_parser("list", help="List conversations, most recent first")
    conv_list.add_argument("--account", default=None)
    conv_list.add_argument("--client", default=None)
    conv_list.add_argument("--status", choices=[s.value for s in ConversationStatus], default=None)
    conv_list.add_argument("--search", default=None, help="Match subject or snippet")
    conv_list.add_argument("--limit", type=int, default=25, help="Max results")

    for name, help_text in (
        ("show", "Show a conversation with its messages"),
        ("close", "Close a conversation"),
        ("reopen", "Reopen a conversation"),
        ("archive", "Archive a conversation"),
    ):
        sub = conv_sub.add_parser(name, help=help_text)
        sub.add_argument("conversation", help="Conversation id")

    rebuild_parser = conv_sub.add_parser(
        "rebuild", help="Assign messages without a conversation, oldest first"
    )
    rebuild_parser.add_argument("account", help="Account id")

    # Message commands
    msg_parser = subparsers.add_parser("messages", help="Manage stored messages")
    msg_sub = msg_parser.add_subparsers(dest="messages_command", required=True)
    delete_parser = msg_sub.add_parser("delete", help="Delete a message and fix its conversation")
    delete_parser.add_argument("message", help="Message id")

    # Reply
    reply_parser = subparsers.add_parser("reply", help="Reply to a stored message")
    reply_parser.add_argument("message", help="Id of the message being answered")
    reply_parser.add_argument("--body", required=True, help="Plain-text body")
    reply_parser.add_argument("--subject", default=None, help="Subject override")
    reply_parser.add_argument(
        "--to",
        action="append",
        default=None,
        help="Recipient (repeatable; default: the original sender)",
    )

    return parser


def _parse_addresses(values: list[str] | None) -> list[EmailAddress]:
    if not values:
        return []
    return [
        EmailAddress(address=addr, name=name or None)
        for name, addr in getaddresses(values)
        if addr
    ]


def _print_result(result: SyncResult) -> None:
    if result.success:
        print(f"{result.account_id}\tok\t{result.new_message_count} new")
    else:
        kind = result.error_kind.value if result.error_kind else "error"
        print(f"{result.account_id}\t{kind}\t{result.error}")


def _cmd_init(engine: MailEngine, args: argparse.Namespace) -> int:
    print(f"Database ready at {engine.context.settings.db_path}")
    return 0


def _cmd_accounts_add(engine: MailEngine, args: argparse.Namespace) -> int:
    account = ConnectedAccount(
        client_id=args.client,
        provider=ProviderType(args.provider),
        email_address=args.email,
        display_name=args.name,
        imap_host=args.imap_host,
        imap_port=args.imap_port,
        smtp_host=args.smtp_host,
        smtp_port=args.smtp_port,
        username=args.username or args.email,
        password_env=args.password_env,
        use_tls=not args.no_tls,
    )
    engine.store.save_account(account)
    logger.info("account_added", account_id=account.id, client_id=account.client_id)
    print(account.id)
    return 0


def _cmd_accounts_list(engine: MailEngine, args: argparse.Namespace) -> int:
    for account in engine.store.list_accounts(args.client):
        last_sync = account.last_sync_at.isoformat() if account.last_sync_at else "never"
        line = f"{account.id}\t{account.client_id}\t{account.email_address}\t{account.status.value}\t{last_sync}"
        if account.last_error:
            line += f"\t{account.last_error}"
        print(line)
    return 0


async def _cmd_sync(engine: MailEngine, args: argparse.Namespace) -> int:
    if args.account:
        results = [await engine.sync_account(args.account, max_messages=args.max)]
    elif args.client:
        results = (await engine.sync.sync_client(args.client, max_messages=args.max)).results
    else:
        results = (await engine.sync.sync_all(max_messages=args.max)).results

    for result in results:
        _print_result(result)
    return 0 if all(r.success for r in results) else 1


async def _cmd_reset_sync(engine: MailEngine, args: argparse.Namespace) -> int:
    await engine.sync.reset_sync_state(args.account)
    print(f"Sync cursor cleared for {args.account}")
    return 0


def _cmd_conversations(engine: MailEngine, args: argparse.Namespace) -> int:
    service = engine.conversations
    command = args.conversations_command

    if command == "list":
        filters = ConversationFilters(
            account_id=args.account,
            client_id=args.client,
            status=ConversationStatus(args.status) if args.status else None,
            search=args.search,
            limit=args.limit,
        )
        for c in service.list_conversations(filters):
            print(
                f"{c.id}\t{c.status.value}\t{c.last_message_at.isoformat()}\t"
                f"{c.message_count} msgs ({c.unread_count} unread)\t{c.subject}"
            )
        return 0

    if command == "show":
        found = service.get_conversation(args.conversation)
        if found is None:
            print(f"Conversation not found: {args.conversation}", file=sys.stderr)
            return 1
        c = found.conversation
        print(f"Subject: {c.subject}")
        print(f"Status: {c.status.value}")
        print(f"Participants: {', '.join(p.formatted() for p in c.participants)}")
        print(f"Messages: {c.message_count} ({c.unread_count} unread)")
        for m in found.messages:
            direction = "OUT" if m.is_outgoing else "IN"
            print(f"\n[{direction}] {m.date.isoformat()} {m.sender.formatted()}  ({m.id})")
            print(f"  {m.subject}")
            if m.body_text:
                for body_line in m.body_text.strip().splitlines():
                    print(f"  | {body_line}")
        return 0

    if command == "rebuild":
        report = service.rebuild_account(args.account)
        print(
            f"Processed {report.processed} of {report.total_messages} messages "
            f"({report.already_linked} already linked, {report.conversations_created} "
            f"conversations created, {report.errors} errors)"
        )
        return 0 if report.errors == 0 else 1

    transitions = {
        "close": service.close_conversation,
        "reopen": service.reopen_conversation,
        "archive": service.archive_conversation,
    }
    updated = transitions[command](args.conversation)
    print(f"{updated.id}\t{updated.status.value}")
    return 0


def _cmd_messages_delete(engine: MailEngine, args: argparse.Namespace) -> int:
    engine.messages.delete_message(args.message)
    print(f"Deleted {args.message}")
    return 0


async def _cmd_reply(engine: MailEngine, args: argparse.Namespace) -> int:
    content = ReplyContent(
        to=_parse_addresses(args.to),
        subject=args.subject,
        body_text=args.body,
    )
    result = await engine.send_reply(args.message, content)
    if not result.success:
        print(f"Reply failed: {result.error}", file=sys.stderr)
        return 1
    print(f"Sent {result.sent_message_id} (stored as {result.message_id})")
    return 0


def _dispatch(engine: MailEngine, parsed: argparse.Namespace) -> int:
    if parsed.command == "init":
        return _cmd_init(engine, parsed)
    if parsed.command == "accounts":
        if parsed.accounts_command == "add":
            return _cmd_accounts_add(engine, parsed)
        if parsed.accounts_command == "list":
            return _cmd_accounts_list(engine, parsed)
    if parsed.command == "sync":
        return asyncio.run(_cmd_sync(engine, parsed))
    if parsed.command == "reset-sync":
        return asyncio.run(_cmd_reset_sync(engine, parsed))
    if parsed.command == "conversations":
        return _cmd_conversations(engine, parsed)
    if parsed.command == "messages" and parsed.messages_command == "delete":
        return _cmd_messages_delete(engine, parsed)
    if parsed.command == "reply":
        return asyncio.run(_cmd_reply(engine, parsed))

    logger.error("unknown_command", command=parsed.command)
    return 2


def main(args: list[str] | None = None) -> int:
    """Main entry point for the mailbridge CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )

    parser = _build_parser()
    parsed = parser.parse_args(args)

    logger.info("mailbridge_started", version=__version__, debug=settings.debug)

    if parsed.db is not None:
        settings = settings.model_copy(update={"db_path": parsed.db})

    try:
        engine = MailEngine.from_settings(settings)
        return _dispatch(engine, parsed)
    except MailbridgeError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
