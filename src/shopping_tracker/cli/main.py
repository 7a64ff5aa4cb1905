from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from typing import Sequence

from ..config import build_app_config
from ..context import build_context
from ..errors import ScanError, ScanParseError
from ..logging import get_logger
from ..paths import expand_abs
from ..remote import SqliteRecordStore
from ..scan import build_data_url, build_scanner

LOG = get_logger("cli-main")


def _init(ns: argparse.Namespace) -> int:
    config = build_app_config(ns.root or os.getcwd())
    if config.store.backend != "sqlite":
        LOG.info(f"Store backend is {config.store.backend!r}; nothing to initialise locally")
        return 0
    store = SqliteRecordStore(config.store.db_path, root_dir=config.root_dir)
    LOG.info(f"Shopping DB ready at: {store.db_path}")
    print(store.db_path)
    return 0


def _serve(ns: argparse.Namespace) -> int:
    from ..api import create_app
    import uvicorn

    context = build_context(ns.root or os.getcwd())
    allow_origins = ns.allow_origins
    if allow_origins and len(allow_origins) == 1 and allow_origins[0] == "*":
        allow_origins = ["*"]
    app = create_app(context, allow_origins=allow_origins)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def _scan(ns: argparse.Namespace) -> int:
    source = expand_abs(ns.source)
    if not os.path.isfile(source):
        LOG.error(f"Image not found: {source}")
        return 2
    config = build_app_config(ns.root or os.getcwd())
    size = os.path.getsize(source)
    if size > config.scan.max_image_bytes:
        LOG.error(f"Image is {size} bytes; limit is {config.scan.max_image_bytes}")
        return 2
    mime, _ = mimetypes.guess_type(source)
    with open(source, "rb") as handle:
        data_url = build_data_url(handle.read(), mime or "image/jpeg")
    scanner = build_scanner(config.scan)
    try:
        receipt = scanner.scan(data_url)
    except ScanParseError as exc:
        LOG.error(f"Could not parse scan result: {exc}")
        print(json.dumps({"error": str(exc), "raw": exc.raw}, ensure_ascii=False))
        return 1
    except ScanError as exc:
        LOG.error(f"Scan failed: {exc}")
        return 1
    print(json.dumps({"success": True, "data": receipt.as_dict()}, ensure_ascii=False, indent=2))
    return 0


def _lists(ns: argparse.Namespace) -> int:
    context = build_context(ns.root or os.getcwd())
    if context.lists.bootstrap() is None:
        return 1
    for shopping_list in context.lists.get_all_lists():
        marker = "*" if shopping_list.is_active else " "
        print(f"{marker} {shopping_list.id}  {shopping_list.name}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="shopping-tracker",
        description="Shopping list and receipt tracker: local store, API server and receipt scanning.",
    )
    parser.add_argument("--root", help="Project root used to find .env and var/ (default: current directory)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_cmd = subparsers.add_parser("init", help="Create/ensure the local shopping DB schema exists")
    init_cmd.set_defaults(handler=_init)

    serve_cmd = subparsers.add_parser("serve", help="Run the JSON API server.")
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8001)
    serve_cmd.add_argument("--log-level", default="info")
    serve_cmd.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve_cmd.set_defaults(handler=_serve)

    scan_cmd = subparsers.add_parser("scan", help="Scan a receipt photo and print the extracted JSON.")
    scan_cmd.add_argument("--source", required=True, help="Path to receipt image (JPG/PNG)")
    scan_cmd.set_defaults(handler=_scan)

    lists_cmd = subparsers.add_parser("lists", help="Print the user's shopping lists (active one marked).")
    lists_cmd.set_defaults(handler=_lists)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
