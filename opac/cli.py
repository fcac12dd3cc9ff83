"""CLI interface for OPAC adapters."""

import argparse
import json
import logging
import sys
from datetime import date
from enum import Enum

from opac.config import (
    account_from_env,
    browser_state_from_env,
    headless_from_env,
    language_from_env,
    load_library,
)
from opac.exceptions import OpacError
from opac.multistep import MultiStepAction, MultiStepStatus
from opac.registry import create_adapter
from opac.searchfields import SearchQuery
from opac.transport import BrowserTransport

logger = logging.getLogger("opac")


def json_serializer(obj):
    """JSON serializer for objects not serializable by default."""
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Type {type(obj)} not serializable")


def output_json(data):
    """Output data as JSON to stdout."""
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    elif isinstance(data, list) and data and hasattr(data[0], "model_dump"):
        data = [item.model_dump() for item in data]
    print(json.dumps(data, default=json_serializer, indent=2, ensure_ascii=False))


def error(message: str):
    """Output error to stderr and exit."""
    print(json.dumps({"error": message}, ensure_ascii=False), file=sys.stderr)
    sys.exit(1)


def build_query(fields, pairs: list[str]) -> list[SearchQuery]:
    """Turn KEY=VALUE arguments into queries against the backend's fields."""
    by_id = {f.id: f for f in fields}
    query = []
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        if key not in by_id:
            raise ValueError(f"unknown search field {key!r}, see the 'fields' command")
        query.append(SearchQuery(field=by_id[key], value=value))
    return query


def run_action(action: MultiStepAction, choose: str | None):
    """Invoke a multi-step action, resuming with `choose` if a selection is needed."""
    result = action.invoke()
    if result.status is MultiStepStatus.SELECTION_NEEDED and choose is not None:
        result = action.resume(choose)
    output_json(result)


def cmd_fields(adapter, args):
    """List the backend's search fields."""
    output_json(adapter.list_search_fields())


def cmd_search(adapter, args):
    """Search the catalog."""
    fields = adapter.list_search_fields()
    query = build_query(fields, args.field)
    if args.query:
        free = next((f for f in fields if f.free_search), None)
        if free is None:
            error("This library has no free text search field, use --field")
        query.append(SearchQuery(field=free, value=args.query))

    result = adapter.search(query)
    if args.page > 1:
        result = adapter.fetch_page(args.page)
    output_json(result)


def cmd_detail(adapter, args):
    """Show an item with its copies."""
    output_json(adapter.get_detail(args.id))


def cmd_account(adapter, args):
    """Show lent items, reservations and fees."""
    output_json(adapter.fetch_account(args.account))


def cmd_reserve(adapter, args):
    """Reserve an item."""
    item = adapter.get_detail(args.id)
    run_action(adapter.start_reservation(item, args.account), args.choose)


def cmd_renew(adapter, args):
    """Renew one lent item."""
    data = adapter.fetch_account(args.account)
    item = next((i for i in data.lent if args.item_id in (i.item_id, i.barcode)), None)
    if item is None:
        error(f"No lent item {args.item_id!r}")
    run_action(adapter.start_renewal(item, args.account), args.choose)


def cmd_renew_all(adapter, args):
    """Renew all lent items."""
    run_action(adapter.start_renew_all(args.account), args.choose)


def cmd_cancel(adapter, args):
    """Cancel one reservation."""
    data = adapter.fetch_account(args.account)
    item = next((i for i in data.reserved if args.item_id in (i.item_id, i.cancel_token)), None)
    if item is None:
        error(f"No reservation {args.item_id!r}")
    run_action(adapter.start_cancellation(item, args.account), args.choose)


def cmd_languages(adapter, args):
    """List languages the backend can switch to."""
    languages = adapter.supported_languages()
    output_json({"languages": sorted(languages) if languages is not None else None})


def run_command(args):
    """Run the specified command."""
    library = load_library(args.library)

    if args.func in ACCOUNT_COMMANDS:
        args.account = account_from_env(library)

    transport = None
    if args.browser:
        # Headless mode: CLI flag or environment variable
        headless = args.headless or headless_from_env()
        transport = BrowserTransport(state_file=browser_state_from_env(), headless=headless)

    with create_adapter(library, transport, language=args.language or language_from_env()) as adapter:
        args.func(adapter, args)


ACCOUNT_COMMANDS = (cmd_account, cmd_reserve, cmd_renew, cmd_renew_all, cmd_cancel)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opac",
        description="Search library catalogs and manage library accounts",
    )
    parser.add_argument("--library", required=True, metavar="PATH", help="Library configuration (JSON)")
    parser.add_argument("--language", help="Preferred language (default: OPAC_LANGUAGE or en)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log requests to stderr")
    parser.add_argument("--browser", action="store_true", help="Fetch pages through a real browser")
    parser.add_argument("--headless", action="store_true", help="Run the browser in headless mode")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # fields command
    fields_parser = subparsers.add_parser("fields", help="List search fields")
    fields_parser.set_defaults(func=cmd_fields)

    # search command
    search_parser = subparsers.add_parser("search", help="Search the library catalog")
    search_parser.add_argument("query", nargs="?", help="Free text search")
    search_parser.add_argument(
        "--field", action="append", default=[], metavar="KEY=VALUE", help="Search a specific field (repeatable)"
    )
    search_parser.add_argument("--page", type=int, default=1, help="Result page to show")
    search_parser.set_defaults(func=cmd_search)

    # detail command
    detail_parser = subparsers.add_parser("detail", help="Show item details")
    detail_parser.add_argument("id", help="Item ID from search results")
    detail_parser.set_defaults(func=cmd_detail)

    # account command
    account_parser = subparsers.add_parser("account", help="Show account data")
    account_parser.set_defaults(func=cmd_account)

    # reserve command
    reserve_parser = subparsers.add_parser("reserve", help="Reserve an item")
    reserve_parser.add_argument("id", help="Item ID from search results")
    reserve_parser.add_argument("--choose", metavar="KEY", help="Option key from a previous selection prompt")
    reserve_parser.set_defaults(func=cmd_reserve)

    # renew command
    renew_parser = subparsers.add_parser("renew", help="Renew a lent item")
    renew_parser.add_argument("item_id", help="Item ID or barcode")
    renew_parser.add_argument("--choose", metavar="KEY", help="Option key from a previous selection prompt")
    renew_parser.set_defaults(func=cmd_renew)

    # renew-all command
    renew_all_parser = subparsers.add_parser("renew-all", help="Renew all lent items")
    renew_all_parser.add_argument("--choose", metavar="KEY", help="Option key from a previous selection prompt")
    renew_all_parser.set_defaults(func=cmd_renew_all)

    # cancel command
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a reservation")
    cancel_parser.add_argument("item_id", help="Item ID of the reservation")
    cancel_parser.add_argument("--choose", metavar="KEY", help="Option key from a previous selection prompt")
    cancel_parser.set_defaults(func=cmd_cancel)

    # languages command
    languages_parser = subparsers.add_parser("languages", help="List supported languages")
    languages_parser.set_defaults(func=cmd_languages)

    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        run_command(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except (OpacError, ValueError, OSError) as e:
        logger.debug("command failed", exc_info=True)
        error(str(e))


if __name__ == "__main__":
    main()
