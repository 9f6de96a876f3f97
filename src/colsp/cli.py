"""
colsp command line.

Usage
-----
    colsp                                     # stdio (what editors launch)
    colsp --tcp 2087                          # TCP on localhost, for debugging
    colsp --api-url http://registry:8080/api/v1 --debounce 0.2
"""
from __future__ import annotations

import argparse
import logging
import sys

_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog='colsp',
        description='Language server for collector pipeline configuration (YAML) files.',
    )
    transport = p.add_mutually_exclusive_group()
    transport.add_argument(
        '--stdio', action='store_true',
        help='talk LSP over stdin/stdout (the default)',
    )
    transport.add_argument(
        '--tcp', metavar='PORT', type=int,
        help='listen on PORT instead of stdio',
    )
    p.add_argument(
        '--host', default='127.0.0.1',
        help='interface to bind with --tcp (default: %(default)s)',
    )
    p.add_argument(
        '--api-url', metavar='URL',
        help='schema registry base URL; client and .colsp.toml settings take precedence',
    )
    p.add_argument(
        '--debounce', metavar='SECONDS', type=float,
        help='delay between the last edit and validation',
    )
    p.add_argument(
        '--log-level', metavar='LEVEL', default='WARNING', choices=_LOG_LEVELS,
        type=str.upper,
        help='stderr logging level (default: %(default)s)',
    )
    p.add_argument('--version', action='store_true', help='print the version and exit')
    return p


def colsp(argv: list[str] | None = None) -> None:
    """Entry point for the ``colsp`` command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    if args.version:
        from colsp import __version__
        print(f'colsp {__version__}')
        return

    # Importing the server registers every LSP feature; keep it out of --version.
    from colsp.server import configure, server
    configure(cli_api_url=args.api_url, cli_debounce=args.debounce)

    if args.tcp is not None:
        server.start_tcp(args.host, args.tcp)
    else:
        server.start_io()


if __name__ == '__main__':
    colsp()
