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

"""Progress reporting for builds.

Architecture::

    dispatcher.py                   ui.py
    ┌──────────────┐    callback    ┌───────────────────┐
    │ _build_one   │───────────────▶│ reporters          │
    └──────────────┘                └─────────┬─────────┘
                                              │
                          ┌───────────────────┼───────────────────┐
                  ┌───────┴───────┐   ┌───────┴───────┐   ┌──────┴──────┐
                  │ RichReporter  │   │ LogReporter   │   │ NullReporter│
                  │   (TTY)       │   │   (CI)        │   │  (tests)    │
                  └───────────────┘   └───────────────┘   └─────────────┘

Usage::

    from buildkit.ui import create_reporter

    with create_reporter() as reporter:
        reporter.init_packages(schedule)
        reporter.on_status('core', BuildStatus.BUSY)
        reporter.on_status('core', BuildStatus.PASS)
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import TracebackType

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from buildkit.graph import ScheduleEntry
from buildkit.logging import get_logger
from buildkit.observer import TERMINAL_STATUSES, BuildObserver, BuildStatus, RunResult

logger = get_logger(__name__)

_STATUS_DISPLAY: dict[BuildStatus, tuple[str, str]] = {
    BuildStatus.IDLE: ('💤', 'dim'),
    BuildStatus.QUEUED: ('⏳', 'yellow'),
    BuildStatus.BUSY: ('🔨', 'cyan bold'),
    BuildStatus.PASS: ('✅', 'green'),
    BuildStatus.FAIL: ('❌', 'red bold'),
    BuildStatus.SKIP: ('⏭️ ', 'dim'),
}

_LOG_LEVELS = frozenset({'debug', 'info', 'warning', 'error'})

# Most recent messages shown under the table.
_MAX_MESSAGES = 8


def format_time(seconds: float) -> str:
    """Format a duration the way build logs show it.

    ``1.234`` → ``'1.2s'``, ``0.0456`` → ``'46ms'``.
    """
    if seconds >= 1:
        return f'{seconds:.1f}s'
    return f'{round(seconds * 1000)}ms'


@dataclass
class _PackageRow:
    """Tracking for one package."""

    name: str
    level: int
    depends_on: list[str] = field(default_factory=list)
    status: BuildStatus = BuildStatus.IDLE
    start_time: float | None = None
    end_time: float | None = None
    message: str = ''

    def set_status(self, status: BuildStatus) -> None:
        self.status = status
        if status is BuildStatus.BUSY:
            self.start_time = time.monotonic()
            self.end_time = None
        elif status in TERMINAL_STATUSES and self.start_time is not None:
            self.end_time = time.monotonic()

    @property
    def elapsed_str(self) -> str:
        if self.start_time is None:
            return '-'
        end = self.end_time if self.end_time is not None else time.monotonic()
        return format_time(end - self.start_time)


def _rows_for(entries: Sequence[ScheduleEntry]) -> dict[str, _PackageRow]:
    return {
        e.name: _PackageRow(name=e.name, level=e.level, depends_on=[d.name for d in e.package.downstream])
        for e in entries
    }


class NullReporter(BuildObserver):
    """No-op observer for tests and embedding."""

    def __enter__(self) -> NullReporter:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""


@dataclass
class LogReporter(BuildObserver):
    """Structured-log observer for non-TTY/CI environments.

    Emits one log line per status change.
    """

    _packages: dict[str, _PackageRow] = field(default_factory=dict)

    def __enter__(self) -> LogReporter:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""

    def init_packages(self, entries: Sequence[ScheduleEntry]) -> None:
        """Register packages."""
        self._packages.update(_rows_for(entries))
        logger.info('build_plan', packages=[e.name for e in entries])

    def on_status(self, name: str, status: BuildStatus, message: str = '') -> None:
        """Log the status change."""
        row = self._packages.get(name)
        if row is None:
            return
        row.set_status(status)
        if status in {BuildStatus.IDLE, BuildStatus.QUEUED}:
            logger.debug('status_change', package=name, status=status.value)
            return
        kwargs = {'message': message} if message else {}
        if status in TERMINAL_STATUSES and row.start_time is not None:
            kwargs['elapsed'] = row.elapsed_str
        logger.info('status_change', package=name, status=status.value, **kwargs)

    def on_error(self, name: str, error: str) -> None:
        """Log the error."""
        row = self._packages.get(name)
        if row is not None:
            row.message = error
        logger.error('package_error', package=name, error=error)

    def on_log(self, title: str, message: str, level: str = 'info') -> None:
        """Forward the message to structlog at *level*."""
        method = level if level in _LOG_LEVELS else 'info'
        getattr(logger, method)('package_log', package=title, message=message)

    def on_complete(self, result: RunResult) -> None:
        """Log completion summary."""
        logger.info(
            'build_pass_complete',
            passed=len(result.passed),
            failed=len(result.failed),
            skipped=len(result.skipped),
            aborted=result.aborted,
            elapsed=format_time(result.duration),
        )


@dataclass
class RichReporter(BuildObserver):
    """Rich Live table observer for TTY environments.

    Shows every package with its status, what it depends on, and how
    long its last build took. Recent log messages appear below the
    table.
    """

    _packages: dict[str, _PackageRow] = field(default_factory=dict)
    _messages: list[Text] = field(default_factory=list)
    _console: Console = field(default_factory=lambda: Console(stderr=True))
    _live: Live | None = field(default=None, repr=False)
    _start_time: float = field(default_factory=time.monotonic)
    _last_result: RunResult | None = None

    def __enter__(self) -> RichReporter:
        """Start the Rich Live display."""
        self._start_time = time.monotonic()
        self._live = Live(self._render(), console=self._console, refresh_per_second=4, transient=False)
        self._live.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the Rich Live display with a final render."""
        if self._live is not None:
            self._live.update(self._render())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None

    def init_packages(self, entries: Sequence[ScheduleEntry]) -> None:
        """Register packages in schedule order."""
        self._packages = _rows_for(entries)
        self._refresh()

    def on_status(self, name: str, status: BuildStatus, message: str = '') -> None:
        """Update a package's status."""
        row = self._packages.get(name)
        if row is None:
            return
        row.set_status(status)
        if status is BuildStatus.BUSY:
            row.message = ''
        elif message:
            row.message = message
        self._refresh()

    def on_error(self, name: str, error: str) -> None:
        """Record the error next to the package and in the message area."""
        row = self._packages.get(name)
        if row is not None:
            row.message = error.splitlines()[0] if error else ''
        self._add_message(name, error, 'error')

    def on_log(self, title: str, message: str, level: str = 'info') -> None:
        """Show a message below the table."""
        self._add_message(title, message, level)

    def on_complete(self, result: RunResult) -> None:
        """Remember the result for the footer."""
        self._last_result = result
        self._refresh()

    def _add_message(self, title: str, message: str, level: str) -> None:
        style = {'error': 'red', 'warning': 'yellow', 'debug': 'dim'}.get(level, '')
        text = Text()
        text.append(f'{title}: ', style='bold')
        text.append(message, style=style)
        self._messages.append(text)
        del self._messages[:-_MAX_MESSAGES]
        self._refresh()

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def _render(self) -> Panel:
        table = Table(show_header=True, header_style='bold', show_edge=False, pad_edge=False, expand=True)
        table.add_column('Lvl', width=3, justify='right')
        table.add_column('Package', min_width=20, ratio=2)
        table.add_column('Status', min_width=10, ratio=1)
        table.add_column('Depends on', ratio=2)
        table.add_column('Time', width=8, justify='right')
        table.add_column('Detail', ratio=3, overflow='ellipsis', no_wrap=True)

        for row in self._packages.values():
            emoji, style = _STATUS_DISPLAY[row.status]
            table.add_row(
                str(row.level),
                Text(row.name, style='bold' if row.status is BuildStatus.BUSY else ''),
                Text(f'{emoji} {row.status.value}', style=style),
                Text(', '.join(row.depends_on), style='dim'),
                row.elapsed_str,
                Text(row.message, style='dim'),
            )

        for message in self._messages:
            table.add_row('', '', '', '', '', message)

        elapsed = format_time(time.monotonic() - self._start_time)
        subtitle = self._last_result.summary() if self._last_result is not None else f'elapsed {elapsed}'
        return Panel(table, title='buildkit', subtitle=subtitle, border_style='blue')


def _truthy(value: str | None) -> bool:
    return bool(value) and value.strip().lower() not in {'0', 'false', 'no', ''}


def create_reporter(
    *,
    force_tty: bool | None = None,
    environ: Mapping[str, str] | None = None,
) -> BuildObserver:
    """Create the appropriate reporter for the environment.

    Returns :class:`RichReporter` on an interactive terminal and
    :class:`LogReporter` otherwise or when ``CI`` is set.

    Args:
        force_tty: Override TTY detection (``True``/``False``).
            ``None`` (default) auto-detects.
        environ: Environment used for the ``CI`` check. Defaults to
            :data:`os.environ`.

    Returns:
        A :class:`BuildObserver` instance.
    """
    if force_tty is not None:
        is_tty = force_tty
    else:
        env = os.environ if environ is None else environ
        is_tty = sys.stderr.isatty() and not _truthy(env.get('CI'))
    if is_tty:
        return RichReporter()
    return LogReporter()


__all__ = [
    'LogReporter',
    'NullReporter',
    'RichReporter',
    'create_reporter',
    'format_time',
]
