#!/usr/bin/env python3
"""
Helpdesk export CLI

Usage:
    helpdesk-export sources                      # List supported sources
    helpdesk-export test zendesk                 # Check credentials
    helpdesk-export export zendesk --out ./out   # Full canonical export
    helpdesk-export sync-ticket 123 --tenant acme --workspace support
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import structlog
from colorama import Fore, Style, init

from helpdesk_connector import __version__
from helpdesk_connector.cancellation import CancellationToken, ExportCancelled
from helpdesk_connector.client import (
    AuthFatalError,
    HelpdeskAPIError,
    MFARequiredError,
    RateLimitExhaustedError,
)
from helpdesk_connector.config import ENV_MAPPINGS, ConfigError, CredentialStore
from helpdesk_connector.exporter import CanonicalExporter, ExportWarning
from helpdesk_connector.sinks import MemoryIngestionSink
from helpdesk_connector.sources import SOURCES, ConnectorMissingCredentialError, get_source
from helpdesk_connector.sync import sync_ticket_by_id

init()
GREEN = Fore.GREEN
RED = Fore.RED
YELLOW = Fore.YELLOW
BLUE = Fore.CYAN
RESET = Style.RESET_ALL
BOLD = Style.BRIGHT


def print_banner():
    print(f"""
{BLUE}╔══════════════════════════════════════════════════════════════╗
║     {BOLD}Helpdesk Export{RESET}{BLUE}  v{__version__:<40}║
║     Canonical tickets, customers and KB from any helpdesk    ║
╚══════════════════════════════════════════════════════════════╝{RESET}
""")


def print_success(msg: str):
    print(f"{GREEN}✓ {msg}{RESET}")


def print_error(msg: str):
    print(f"{RED}✗ {msg}{RESET}", file=sys.stderr)


def print_warning(msg: str):
    print(f"{YELLOW}⚠ {msg}{RESET}")


def print_info(msg: str):
    print(f"{BLUE}ℹ {msg}{RESET}")


def configure_logging(verbose: bool = False) -> None:
    """Route structlog to stderr so progress output on stdout stays readable."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


class ConsoleProgress:
    """Live per-resource counter on one line, ending in ✓ or ⚠."""

    def resource_started(self, resource: str) -> None:
        print(f"\r{BLUE}{resource}: 0{RESET}", end="", flush=True)

    def resource_progress(self, resource: str, count: int) -> None:
        print(f"\r{BLUE}{resource}: {count}{RESET}", end="", flush=True)

    def resource_finished(self, resource: str, count: int, warning: ExportWarning | None) -> None:
        print("\r", end="")
        if warning is None:
            print_success(f"{resource}: {count} exported")
        else:
            print_warning(f"{resource}: {count} exported ({warning.message})")


def _print_not_configured(source: str, missing: list[str]) -> None:
    print_error(f"{source} is not configured (missing: {', '.join(missing)})")
    print_info("Set environment variables:")
    for key in missing:
        env_var = ENV_MAPPINGS.get(source, {}).get(key)
        if env_var:
            print(f"    export {env_var}=...")
    print_info(f"Or add a \"{source}\" object to ~/.helpdesk-export/config.json")


def _open_source(name: str, args, store: CredentialStore):
    source_cls = get_source(name)
    missing = store.missing_keys(source_cls.name, source_cls.credential_keys)
    if missing:
        _print_not_configured(source_cls.name, missing)
        return None

    options: dict[str, Any] = {}
    if getattr(args, "rpm", None):
        options["requests_per_minute"] = args.rpm
    if getattr(args, "page_size", None):
        options["page_size"] = args.page_size
    return source_cls.from_credentials(store.credentials_for(source_cls.name), **options)


def cmd_sources(args, store: CredentialStore):
    """List supported sources and whether they are configured."""
    print(f"{BOLD}Supported sources{RESET}\n")
    for name, source_cls in SOURCES.items():
        missing = store.missing_keys(name, source_cls.credential_keys)
        state = f"{GREEN}configured{RESET}" if not missing else f"{YELLOW}not configured{RESET}"
        keys = ", ".join(source_cls.credential_keys)
        print(f"  {name:<10} {source_cls.display_name:<12} [{keys}]  {state}")
    return 0


def cmd_test(args, store: CredentialStore):
    """Verify credentials without exporting anything."""
    source = _open_source(args.source, args, store)
    if source is None:
        return 1

    print_info(f"Connecting to {source.display_name}...")
    with source:
        result = source.verify_connection()

    if not result.get("success"):
        print_error(f"Connection failed: {result.get('error', 'Unknown error')}")
        return 1

    print_success("Connected successfully!")
    for key, value in result.items():
        if key != "success":
            print(f"  {key.replace('_', ' ')}: {value}")
    return 0


def cmd_export(args, store: CredentialStore):
    """Run a full canonical export."""
    source = _open_source(args.source, args, store)
    if source is None:
        return 1

    print_banner()
    print(f"{BOLD}Exporting {source.display_name} → {args.out}{RESET}\n")

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())

    try:
        with source:
            result = CanonicalExporter(source, args.out, ConsoleProgress(), token).run()
    except MFARequiredError as e:
        print_error(str(e))
        return 1
    except AuthFatalError as e:
        print_error(f"Authentication failed, check your credentials: {e}")
        return 1
    except RateLimitExhaustedError as e:
        print_error(f"{e}. Try again later.")
        return 1
    except ExportCancelled:
        print()
        print_warning("Export cancelled; output is incomplete and has no manifest")
        return 1
    except HelpdeskAPIError as e:
        print_error(f"Export failed: {e}")
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    counts = result.manifest.counts
    print(f"\n{GREEN}Export complete!{RESET}")
    print(f"  Tickets:       {counts.tickets}")
    print(f"  Messages:      {counts.messages}")
    print(f"  Customers:     {counts.customers}")
    print(f"  Organizations: {counts.organizations}")
    print(f"  KB articles:   {counts.kb_articles}")
    print(f"  Rules:         {counts.rules}")
    print(f"  Manifest:      {Path(args.out) / 'manifest.json'}")

    if result.warnings:
        print_warning(f"Completed with {len(result.warnings)} warning(s):")
        for warning in result.warnings[:10]:
            print(f"    - {warning}")
        if len(result.warnings) > 10:
            print(f"    ... and {len(result.warnings) - 10} more")
    if result.unmapped_values:
        print_info(f"Unmapped values defaulted: {json.dumps(result.unmapped_values)}")
    return 0


def cmd_sync_ticket(args, store: CredentialStore):
    """Sync one Zendesk ticket and print the canonical bundle."""
    raw_event = None
    if args.event:
        with open(args.event, encoding="utf-8") as f:
            raw_event = json.load(f)

    sink = MemoryIngestionSink()
    try:
        sync_ticket_by_id(
            args.tenant,
            args.workspace,
            args.ticket_id,
            sink,
            auth=store.credentials_for("zendesk"),
            raw_event=raw_event,
        )
    except ConnectorMissingCredentialError as e:
        print_error(str(e))
        return 1
    except HelpdeskAPIError as e:
        print_error(f"Sync failed: {e}")
        return 1

    _, _, bundle = sink.bundles[0]
    output = json.dumps(
        {
            "tenant": args.tenant,
            "workspace": args.workspace,
            "bundle": bundle.to_record(),
            "events": sink.events,
        },
        indent=2,
        ensure_ascii=False,
    )
    if args.out:
        Path(args.out).write_text(output + "\n", encoding="utf-8")
        print_success(f"Bundle written to {args.out}")
    else:
        print(output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="helpdesk-export",
        description="Export helpdesk data into canonical JSONL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  helpdesk-export sources
  helpdesk-export test helpscout
  helpdesk-export export kayako --out ./kayako-export
  helpdesk-export sync-ticket 4521 --tenant acme --workspace support --event hook.json
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--config", help="Config file (default: ~/.helpdesk-export/config.json)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("sources", help="List supported sources")

    test_parser = subparsers.add_parser("test", help="Verify credentials for a source")
    test_parser.add_argument("source", choices=sorted(SOURCES))

    export_parser = subparsers.add_parser("export", help="Run a full canonical export")
    export_parser.add_argument("source", choices=sorted(SOURCES))
    export_parser.add_argument("--out", required=True, help="Output directory")
    export_parser.add_argument("--page-size", type=int, help="Items per page where supported")
    export_parser.add_argument("--rpm", type=int, help="Requests per minute budget")

    sync_parser = subparsers.add_parser("sync-ticket", help="Sync one Zendesk ticket")
    sync_parser.add_argument("ticket_id")
    sync_parser.add_argument("--tenant", required=True)
    sync_parser.add_argument("--workspace", required=True)
    sync_parser.add_argument("--event", help="JSON file with the webhook payload")
    sync_parser.add_argument("--out", help="Write the bundle here instead of stdout")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command is None:
        print_banner()
        parser.print_help()
        return 0

    try:
        store = CredentialStore.load(args.config)
    except ConfigError as e:
        print_error(str(e))
        return 1

    commands = {
        "sources": cmd_sources,
        "test": cmd_test,
        "export": cmd_export,
        "sync-ticket": cmd_sync_ticket,
    }
    return commands[args.command](args, store)


if __name__ == "__main__":
    sys.exit(main())
