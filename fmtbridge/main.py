"""
Command line entry point for the fmtbridge Language Server.

By default the server talks to the editor over stdin/stdout. ``--tcp``
serves a single client over TCP instead, which is handy for debugging.
"""
import argparse
import os

from fmtbridge import __version__
from fmtbridge.lsp.server import create_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmtbridge",
        description="Language server that formats documents with an external command.",
    )
    parser.add_argument(
        "--formatter",
        default=os.getenv("FMTBRIDGE_FORMATTER"),
        help="Formatter command; the temporary file path is appended "
             "(default: $FMTBRIDGE_FORMATTER)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the formatter before giving up",
    )
    parser.add_argument("--tcp", action="store_true", help="Serve over TCP instead of stdio")
    parser.add_argument("--host", default="127.0.0.1", help="TCP host (default: %(default)s)")
    parser.add_argument("--port", type=int, default=2087, help="TCP port (default: %(default)s)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_overrides(args: argparse.Namespace) -> dict:
    """Settings given on the command line, in ``ServerSettings.merged`` form."""
    overrides = {}
    if args.formatter:
        overrides["command"] = args.formatter
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    return overrides


def main(argv: list[str] | None = None):
    """Start the language server."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        server = create_server(settings_overrides(args))
    except ValueError as e:
        parser.error(str(e))

    if args.tcp:
        server.start_tcp(args.host, args.port)
    else:
        # Listen on stdin/stdout until the editor closes the channel.
        server.start_io()


if __name__ == "__main__":
    main()
