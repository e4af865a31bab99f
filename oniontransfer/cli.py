#!/usr/bin/env python3
"""
oniontransfer — CLI entry point

Subcommands
───────────
  listen  Receive files and directories into an output directory
  send    Send files, directories or piped stdin to a listening receiver

Usage examples
──────────────
  # Receive into ./received/ on port 8000
  oniontransfer listen --port 8000 --output-dir ./received

  # Send two files, everything matching *.png and a directory tree
  oniontransfer send 192.168.1.50 notes.txt photo.jpg '*.png' project/

  # Pipe data in; it arrives as data.bin unless --name is given
  tar cz project/ | oniontransfer send 192.168.1.50:8000 --name project.tgz
"""

import argparse
import glob
import logging
import sys
from typing import List, Tuple

from oniontransfer.errors import TransferError
from oniontransfer.progress import ConsoleProgress, format_bytes, format_duration
from oniontransfer.server import DEFAULT_OUTPUT_DIR, DEFAULT_PORT

# ---------------------------------------------------------------------------
# Logging setup (called before anything else so imports log correctly)
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt   = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    # Per-frame chatter only when verbose
    if not verbose:
        logging.getLogger("oniontransfer.protocol").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def parse_target(target: str, default_port: int) -> Tuple[str, int]:
    """'host' or 'host:port' -> (host, port)."""
    host, sep, port = target.rpartition(":")
    if not sep:
        return target, default_port
    if not host:
        raise ValueError(f"missing host in {target!r}")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in {target!r}") from None


def expand_patterns(patterns: List[str]) -> List[str]:
    """
    Expand glob patterns, keep literal paths as-is, drop duplicates while
    preserving first-seen order.
    """
    items: List[str] = []
    for pattern in patterns:
        if glob.has_magic(pattern):
            items.extend(sorted(glob.glob(pattern)))
        else:
            items.append(pattern)

    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


# ---------------------------------------------------------------------------
# Subcommand: listen
# ---------------------------------------------------------------------------

def cmd_listen(args: argparse.Namespace) -> int:
    """Start the receiver server."""
    from oniontransfer.server import TransferServer

    server = TransferServer(
        host=args.host,
        port=args.port,
        output_dir=args.output_dir,
        io_timeout=args.timeout,
        progress_factory=None if args.quiet else ConsoleProgress,
    )
    print(f"Files will be saved to: {args.output_dir}/")
    print("Listening... press Ctrl-C to stop")
    try:
        server.start()   # blocks
    except OSError as exc:
        print(f"Error: cannot start server: {exc}", file=sys.stderr)
        return 1
    return 0


# ---------------------------------------------------------------------------
# Subcommand: send
# ---------------------------------------------------------------------------

def cmd_send(args: argparse.Namespace) -> int:
    """Send items (or stdin) to a receiver."""
    from oniontransfer.sender import TransferClient

    try:
        host, port = parse_target(args.target, args.port)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    client = TransferClient(
        host=host,
        port=port,
        connect_timeout=args.connect_timeout,
        timeout=args.timeout,
        progress=None if args.quiet else ConsoleProgress(),
    )

    use_stdin = args.items == ["-"] or (not args.items and not sys.stdin.isatty())
    try:
        if use_stdin:
            print("Reading from stdin...")
            stats = client.send_bytes(sys.stdin.buffer, name=args.name)
        else:
            if not args.items:
                print("Error: please specify files or directories to send", file=sys.stderr)
                return 1
            items = expand_patterns(args.items)
            if not items:
                print(
                    f"Error: no files or directories found matching: {' '.join(args.items)}",
                    file=sys.stderr,
                )
                return 1
            print(f"Found {len(items)} item(s) to send")
            stats = client.send_paths(items)
    except TransferError as exc:
        where = f" {exc.path}" if exc.path else ""
        print(f"Error sending{where}: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        where = f" {exc.filename}" if exc.filename else ""
        print(f"Error sending{where}: {exc}", file=sys.stderr)
        return 1

    print(
        f"\nAll items transferred successfully: {stats['items']} item(s), "
        f"{format_bytes(stats['bytes'])} in {format_duration(stats['elapsed_s'])}"
    )
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oniontransfer",
        description="oniontransfer — stream files and directories over one TCP connection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    # ── listen ─────────────────────────────────────────────────────────
    p_listen = sub.add_parser(
        "listen",
        help="Receive items into an output directory",
        description="Accept connections and save every received item under the output directory.",
    )
    p_listen.add_argument(
        "--host", default="0.0.0.0", metavar="HOST",
        help="Interface to bind (default: 0.0.0.0)",
    )
    p_listen.add_argument(
        "--port", type=int, default=DEFAULT_PORT, metavar="PORT",
        help=f"TCP port to listen on (default: {DEFAULT_PORT})",
    )
    p_listen.add_argument(
        "--output-dir", default=DEFAULT_OUTPUT_DIR, metavar="DIR",
        help=f"Directory to save received items (default: {DEFAULT_OUTPUT_DIR})",
    )
    p_listen.add_argument(
        "--timeout", type=float, default=None, metavar="SECS",
        help="Abort a connection stalled this long on one read (default: never)",
    )
    p_listen.add_argument(
        "--quiet", "-q", action="store_true",
        help="Do not draw progress lines",
    )

    # ── send ───────────────────────────────────────────────────────────
    p_send = sub.add_parser(
        "send",
        help="Send files, directories or stdin",
        description=(
            "Send files and directories (glob patterns allowed) to a receiver.\n"
            "With '-' or piped stdin and no items, stdin is sent as one file."
        ),
    )
    p_send.add_argument(
        "target",
        metavar="HOST[:PORT]",
        help="Receiver address",
    )
    p_send.add_argument(
        "items",
        nargs="*",
        metavar="ITEM",
        help="Files, directories or glob patterns ('-' for stdin)",
    )
    p_send.add_argument(
        "--port", type=int, default=DEFAULT_PORT, metavar="PORT",
        help=f"Receiver port when HOST has none (default: {DEFAULT_PORT})",
    )
    p_send.add_argument(
        "--name", default="data.bin", metavar="NAME",
        help="File name for stdin input (default: data.bin)",
    )
    p_send.add_argument(
        "--connect-timeout", type=float, default=30.0, metavar="SECS",
        help="Seconds to wait for the connection (default: 30)",
    )
    p_send.add_argument(
        "--timeout", type=float, default=None, metavar="SECS",
        help="Abort if one write stalls this long (default: never)",
    )
    p_send.add_argument(
        "--quiet", "-q", action="store_true",
        help="Do not draw progress lines",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None) -> None:
    parser = build_parser()
    args   = parser.parse_args(argv)
    _setup_logging(args.verbose)

    dispatch = {
        "listen": cmd_listen,
        "send":   cmd_send,
    }

    handler = dispatch.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
