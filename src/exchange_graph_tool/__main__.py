"""CLI entry point for Exchange Graph Tool."""

import argparse
import sys
import uuid
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

# Initialize SSL truststore early, before any HTTPS connection
from .utils.ssl_utils import init_ssl

init_ssl()

from . import __version__
from .auth.msal_auth import GraphAuthProvider
from .config import MAX_BATCH_SIZE, MULTI_TENANT, AppConfig, GraphConfig
from .graph.client import GraphBatchClient
from .orchestrator.calendar import BatchCalendar
from .utils.exceptions import ExchangeGraphToolError, OperationCancelledError
from .utils.logging import setup_logging


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def _add_auth_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("authentication")
    group.add_argument("--client-id", "-cid", help="Graph API client ID (env GRAPH_CLIENT_ID)")
    group.add_argument(
        "--tenant-id",
        "-tid",
        help=f"Graph API tenant ID (env GRAPH_TENANT_ID, default {MULTI_TENANT})",
    )
    group.add_argument(
        "--client-secret", "-cs", help="Graph API client secret (env GRAPH_CLIENT_SECRET)"
    )
    group.add_argument(
        "--certificate-path",
        "-cert",
        type=Path,
        help="PEM private key of the app certificate (env GRAPH_CERTIFICATE_PATH)",
    )
    group.add_argument(
        "--certificate-thumbprint",
        "-thumb",
        help="Thumbprint of the app certificate (env GRAPH_CERTIFICATE_THUMBPRINT)",
    )


def _add_event_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mailbox-template",
        "-mt",
        required=True,
        help="Mailbox address template, e.g. user{0}@contoso.com",
    )
    parser.add_argument(
        "--num-mailbox",
        "-nm",
        type=_non_negative_int,
        required=True,
        help="Number of mailboxes to use in template",
    )
    parser.add_argument(
        "--start-mailbox",
        "-sm",
        type=_non_negative_int,
        default=1,
        help="Start number of mailboxes to use in template (default 1)",
    )
    parser.add_argument(
        "--batch-size",
        "-bs",
        type=_positive_int,
        default=None,
        help=f"Max batch size for Graph API calls (env BATCH_SIZE, default {MAX_BATCH_SIZE}, max {MAX_BATCH_SIZE})",
    )
    parser.add_argument(
        "--transaction-id",
        "-trid",
        help="Use specified ID as prefix for transaction ID on events",
    )
    parser.add_argument(
        "--spread-mailboxes",
        action="store_true",
        help="Put at most 4 requests for the same mailbox in one batch",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="exchange-graph-tool",
        description=f"Exchange Graph API test tool v{__version__}",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser(
        "get-events",
        help="Fetches events matching specified transaction ID, or all events if not specified",
    )
    _add_auth_options(get_parser)
    _add_event_options(get_parser)
    get_parser.add_argument(
        "--dump-events", "-dump", action="store_true", help="Dump event detail"
    )

    create_parser = subparsers.add_parser("create-events", help="Creates sample events")
    _add_auth_options(create_parser)
    _add_event_options(create_parser)
    create_parser.add_argument(
        "--max-events",
        "-me",
        type=_non_negative_int,
        default=1,
        help="Max number of events per mailbox per run, default 1, max 4",
    )

    delete_parser = subparsers.add_parser(
        "delete-events", help="Deletes events matching specified transaction ID"
    )
    _add_auth_options(delete_parser)
    _add_event_options(delete_parser)
    delete_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count the events that would be deleted",
    )

    return parser


def expand_mailboxes(template: str, count: int, start: int = 1) -> list[str]:
    """Substitute start .. start+count-1 into the mailbox template."""
    return [template.format(i) for i in range(start, start + count)]


def _validate_template(parser: argparse.ArgumentParser, template: str) -> None:
    try:
        first = template.format(1)
        second = template.format(2)
    except (IndexError, KeyError, ValueError) as e:
        parser.error(f"invalid --mailbox-template {template!r}: {e}")
    if first == second:
        parser.error(f"--mailbox-template {template!r} needs a number placeholder such as {{0}}")


def _resolve_graph_config(
    parser: argparse.ArgumentParser, args: argparse.Namespace, env: GraphConfig
) -> GraphConfig:
    """Overlay command line credentials on the environment configuration."""
    overrides = {
        "client_id": args.client_id,
        "tenant_id": args.tenant_id,
        "client_secret": args.client_secret,
        "certificate_path": args.certificate_path,
        "certificate_thumbprint": args.certificate_thumbprint,
    }
    graph_config = env.model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )

    if not graph_config.client_id:
        parser.error("--client-id is required")
    if not graph_config.client_secret and not graph_config.certificate_path:
        parser.error("one of --client-secret or --certificate-path is required")
    if (
        graph_config.certificate_path
        and not graph_config.client_secret
        and not graph_config.certificate_thumbprint
    ):
        parser.error("--certificate-thumbprint is required with --certificate-path")
    return graph_config


def _handle_get(calendar: BatchCalendar, mailboxes: list[str], args, logger) -> int:
    logger.info("Find events...")
    event_lists = calendar.find_events(mailboxes, args.transaction_id)

    total = 0
    for mailbox, events in event_lists.items():
        total += len(events)
        logger.info(f"Found {len(events)} events for {mailbox}")

        if args.dump_events:
            for e in events:
                logger.info(f"{e.start:%Y-%m-%d %H:%M:%S} - {e.end:%Y-%m-%d %H:%M:%S}: {e.subject}")

    logger.info(f"Total: {total} events")
    return 0


def _handle_create(calendar: BatchCalendar, mailboxes: list[str], args, logger) -> int:
    transaction_id = args.transaction_id or str(uuid.uuid4())
    logger.info(f"Transaction ID = {transaction_id}")

    logger.info("Creating events...")
    calendar.create_sample_events(mailboxes, args.max_events, transaction_id)
    return 0


def _handle_delete(calendar: BatchCalendar, mailboxes: list[str], args, logger) -> int:
    events = calendar.find_events(mailboxes, args.transaction_id)
    num_events = sum(len(v) for v in events.values())

    if args.dry_run:
        logger.info(f"Dry run - would delete {num_events} events in {len(events)} mailboxes")
        return 0

    logger.info(f"Deleting {num_events} events...")
    calendar.delete_events(events)
    return 0


HANDLERS = {
    "get-events": _handle_get,
    "create-events": _handle_create,
    "delete-events": _handle_delete,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = AppConfig()
    except ValidationError as e:
        parser.error(f"invalid configuration in environment: {e}")
    _validate_template(parser, args.mailbox_template)
    graph_config = _resolve_graph_config(parser, args, config.graph)

    log_level = "DEBUG" if args.verbose else config.log_level
    logger = setup_logging(level=log_level, log_file=config.log_file)

    try:
        auth_provider = GraphAuthProvider(graph_config)
        client = GraphBatchClient(
            auth_provider,
            base_url=graph_config.base_url,
            timeout=config.request_timeout,
        )
        calendar = BatchCalendar(
            client,
            batch_size=args.batch_size or config.batch_size,
            spread_mailboxes=args.spread_mailboxes,
        )
        mailboxes = expand_mailboxes(
            args.mailbox_template, args.num_mailbox, args.start_mailbox
        )
        return HANDLERS[args.command](calendar, mailboxes, args, logger)

    except (OperationCancelledError, KeyboardInterrupt):
        logger.warning("Operation cancelled")
        return 130
    except ExchangeGraphToolError as e:
        logger.error(f"Exchange Graph Tool error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
