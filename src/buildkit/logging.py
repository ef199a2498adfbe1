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

"""Structured logging for buildkit.

Configures `structlog <https://www.structlog.org/>`_ in one of two modes.
Console output is the default and is colored when stderr is a TTY.
``--json-log`` switches to one JSON object per line for CI log scrapers.

Everything goes to stderr, so ``buildkit graph --format json | jq``
keeps working while a build logs.

While a package builds, :func:`package_context` binds ``package=<name>``
to every event, including those logged deep inside the build unit and
the subprocess runner::

    with package_context('core'):
        log.debug('target_start', target='lib')   # package='core' added

Usage::

    from buildkit.logging import configure_logging, get_logger

    configure_logging(verbose=True)
    log = get_logger(__name__)
    log.info('workspace_discovered', members=12)
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager

import structlog

# Third-party loggers that flood DEBUG output with per-event noise.
_CHATTY_LOGGERS: tuple[str, ...] = ('watchdog', 'asyncio')


def _level_for(*, verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return logging.INFO


def _renderer(*, json_log: bool) -> structlog.types.Processor:
    if json_log:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    json_log: bool = False,
) -> None:
    """Configure structlog for buildkit.

    Call once at startup, before anything logs. Calling it again
    reconfigures in place. ``quiet`` wins over ``verbose``.

    Args:
        verbose: Enable debug-level output.
        quiet: Only warnings and errors.
        json_log: Render JSON lines instead of console output.
    """
    level = _level_for(verbose=verbose, quiet=quiet)
    logging.basicConfig(format='%(message)s', stream=sys.stderr, level=level, force=True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_log=json_log),
        ],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = 'buildkit') -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger.

    Args:
        name: Logger name, normally the caller's ``__name__``.

    Returns:
        A :class:`structlog.stdlib.BoundLogger` instance.
    """
    return structlog.get_logger(name)


def package_context(name: str) -> AbstractContextManager[None]:
    """Bind ``package=name`` to every event logged inside the block.

    The binding lives in a context variable, so concurrent tasks keep
    their own package.
    """
    return structlog.contextvars.bound_contextvars(package=name)


__all__ = [
    'configure_logging',
    'get_logger',
    'package_context',
]
