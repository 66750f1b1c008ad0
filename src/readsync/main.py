import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from .account import login, logout
from .digest import Book, document_digest
from .errors import AuthError
from .kosync_client import KoSyncClient
from .positions import FixedPage, Flowing, encode
from .settings import JsonSettingsStore, SyncSettings

# Logging setup
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def trace(self, message, *args, **kws):
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kws)


logging.Logger.trace = trace
logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("READSYNC_DATA_DIR", Path.home() / ".readsync"))
SETTINGS_FILE = DATA_DIR / "settings.json"


def setup_logging(level=None):
    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    resolved = TRACE_LEVEL_NUM if level_name == "TRACE" else getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=resolved, format='%(asctime)s %(levelname)s: %(message)s', datefmt='%H:%M:%S')


def _store(args) -> JsonSettingsStore:
    store = JsonSettingsStore(args.settings)
    store.load(default=SyncSettings.from_env())
    return store


def _book(path: str) -> Book:
    p = Path(path)
    return Book(title=p.name, format=p.suffix.lstrip('.').upper() or "EPUB", path=str(p))


def cmd_login(args) -> int:
    store = _store(args)
    password = args.password if args.password is not None else getpass.getpass("KoSync password: ")
    try:
        result = login(store, args.server, args.username, password,
                       device_name=args.device_name, precision=args.precision)
    except AuthError as e:
        print(e, file=sys.stderr)
        return 1
    print(result.message)
    return 0


def cmd_logout(args) -> int:
    logout(_store(args))
    print("Disconnected")
    return 0


def cmd_pull(args) -> int:
    settings = _store(args).get()
    book = _book(args.file)
    if not settings.has_credentials:
        print("Not logged in", file=sys.stderr)
        return 1
    record = KoSyncClient(settings).get_progress(book)
    if record is None:
        print(f"No remote progress for {book.title} ({document_digest(book, settings.checksum_method)})")
        return 0
    pct = f"{record.percentage:.1%}" if record.percentage is not None else "?"
    print(f"{record.progress} ({pct}) from {record.device or 'unknown device'} at {record.timestamp}")
    return 0


def cmd_push(args) -> int:
    settings = _store(args).get()
    book = _book(args.file)
    if not settings.can_push:
        print(f"Pushing is off (strategy: {settings.strategy})", file=sys.stderr)
        return 1

    if book.is_fixed_layout:
        if args.page is None or args.total is None:
            print("--page and --total are required for fixed-layout documents", file=sys.stderr)
            return 2
        wire = encode(FixedPage(args.page - 1, args.total))
    else:
        if args.percentage is None:
            print("--percentage is required for reflowable documents", file=sys.stderr)
            return 2
        wire = encode(Flowing(args.pointer, args.percentage))

    ok = KoSyncClient(settings).update_progress(book, wire.progress, wire.percentage)
    return 0 if ok else 1


def cmd_relay(args) -> int:
    from .relay import create_app

    create_app().run(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="readsync", description="KOReader-compatible reading progress sync")
    parser.add_argument("--settings", default=str(SETTINGS_FILE), help="settings file")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="check or register a KoSync account and save it")
    p.add_argument("server")
    p.add_argument("username")
    p.add_argument("--password")
    p.add_argument("--device-name")
    p.add_argument("--precision", type=int, help="digits after the decimal point that must match (default 4)")
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("logout", help="forget the saved credentials")
    p.set_defaults(func=cmd_logout)

    p = sub.add_parser("pull", help="show remote progress for a document")
    p.add_argument("file")
    p.set_defaults(func=cmd_pull)

    p = sub.add_parser("push", help="send progress for a document")
    p.add_argument("file")
    p.add_argument("--page", type=int, help="1-based page (fixed layout)")
    p.add_argument("--total", type=int, help="page count (fixed layout)")
    p.add_argument("--percentage", type=float, help="0.0 - 1.0 (reflowable)")
    p.add_argument("--pointer", help="CFI or XPointer (reflowable)")
    p.set_defaults(func=cmd_push)

    p = sub.add_parser("relay", help="serve the relay endpoint")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8080)
    p.set_defaults(func=cmd_relay)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
