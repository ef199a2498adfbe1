# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""CLI entry point for buildkit.

Subcommands::

    buildkit build      Build packages in dependency order (optionally watch)
    buildkit graph      Show the build schedule without building
    buildkit explain    Explain an error code

Usage::

    # Build the package in the current directory and its dependencies:
    buildkit build

    # Build every workspace member for development and keep watching:
    buildkit --verbose build --cwd path/to/repo --env dev --watch

    # Inspect the schedule:
    buildkit graph --format dot | dot -Tsvg -o graph.svg

    # Explain an error:
    buildkit explain BK-GRAPH-CYCLE-DETECTED
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from rich_argparse import RichHelpFormatter

from buildkit import __version__
from buildkit.config import ENV_ALIASES
from buildkit.errors import BuildKitError, explain, render_error
from buildkit.formatters import FORMATTERS, format_schedule
from buildkit.logging import configure_logging, get_logger
from buildkit.runner import BuildOptions, plan_build, run_build

logger = get_logger(__name__)


async def _cmd_build(args: argparse.Namespace) -> int:
    """Handle the ``build`` subcommand."""
    options = BuildOptions(
        cwd=Path(args.cwd).resolve(),
        env=args.env,
        watch=args.watch,
        debug=args.debug,
    )
    result = await run_build(options)
    if result.aborted:
        return 130
    return 0 if result.ok else 1


async def _cmd_graph(args: argparse.Namespace) -> int:
    """Handle the ``graph`` subcommand."""
    entries = await plan_build(Path(args.cwd).resolve(), all_members=args.all)
    output = format_schedule(entries, fmt=args.format)
    print(output, end='')  # noqa: T201 - CLI output
    return 0


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        return 1
    print(result)  # noqa: T201 - CLI output
    return 0


def _add_cwd(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--cwd',
        metavar='DIR',
        default='.',
        help='Directory to start package discovery from (default: current directory).',
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured :class:`argparse.ArgumentParser`.
    """
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='buildkit',
        description='Dependency-ordered builds for JavaScript-style monorepos.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only log warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Log JSON lines instead of console output.')

    subparsers = parser.add_subparsers(dest='command')

    build_parser_ = subparsers.add_parser(
        'build',
        help='Build packages in dependency order.',
        formatter_class=RichHelpFormatter,
    )
    build_parser_.add_argument(
        '--watch',
        '-w',
        action='store_true',
        help='Keep rebuilding changed packages until interrupted.',
    )
    build_parser_.add_argument(
        '--env',
        '-e',
        choices=sorted(ENV_ALIASES),
        default=None,
        help='Build environment (default: buildkit.toml, then BUILD_ENV/NODE_ENV/ENVIRONMENT, then production).',
    )
    build_parser_.add_argument(
        '--debug',
        '-d',
        action='store_true',
        help='Run build commands in debug mode and log their output.',
    )
    _add_cwd(build_parser_)

    graph_parser = subparsers.add_parser(
        'graph',
        help='Show the build schedule without building.',
        formatter_class=RichHelpFormatter,
    )
    graph_parser.add_argument(
        '--format',
        '-f',
        choices=sorted(FORMATTERS),
        default='levels',
        help='Output format (default: levels).',
    )
    graph_parser.add_argument(
        '--all',
        action='store_true',
        help='Schedule every workspace member instead of the current selection.',
    )
    _add_cwd(graph_parser)

    explain_parser = subparsers.add_parser(
        'explain',
        help='Explain an error code.',
        formatter_class=RichHelpFormatter,
    )
    explain_parser.add_argument('code', help='Error code, e.g. BK-GRAPH-CYCLE-DETECTED.')

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Arguments without the program name. Defaults to
            ``sys.argv[1:]``.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)

    try:
        command = args.command
        if command == 'build':
            return asyncio.run(_cmd_build(args))
        if command == 'graph':
            return asyncio.run(_cmd_graph(args))
        if command == 'explain':
            return _cmd_explain(args)

        parser.print_help()  # noqa: T201 - CLI output
        print(  # noqa: T201 - CLI output
            f'\n{parser.prog}: error: please provide a command',
            file=sys.stderr,
        )
        return 2

    except BuildKitError as exc:
        render_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.info('interrupted')
        return 130


def _main() -> None:
    """Wrapper for pyproject.toml [project.scripts] entry point."""
    sys.exit(main())


__all__ = [
    'build_parser',
    'main',
]
