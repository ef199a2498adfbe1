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

"""Observer protocol, status enum and run result.

Shared by the dispatcher (which emits events) and the UI module (which
renders them)::

    observer.py  ← BuildStatus, BuildObserver, RunResult
      ↑              ↑
      │              │
    ui.py        dispatcher.py

Status indicators::

    💤 idle → ⏳ queued → 🔨 busy → ✅ pass / ❌ fail / ⏭️  skip
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from buildkit.graph import ScheduleEntry


class BuildStatus(str, Enum):
    """Per-package build status."""

    IDLE = 'idle'
    QUEUED = 'queued'
    BUSY = 'busy'
    PASS = 'pass'
    FAIL = 'fail'
    SKIP = 'skip'


TERMINAL_STATUSES = frozenset({BuildStatus.PASS, BuildStatus.FAIL, BuildStatus.SKIP})


@dataclass(frozen=True)
class RunResult:
    """Outcome of one one-shot build pass.

    Every scheduled package appears in exactly one of :attr:`passed`,
    :attr:`failed` or :attr:`skipped`.

    Attributes:
        passed: Packages that built successfully, in build order.
        failed: Package name → error message.
        skipped: Packages that were not built (no build config, a failed
            dependency, or the run was stopped).
        aborted: Whether the run was stopped before finishing.
        duration: Wall-clock seconds for the pass.
    """

    passed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    aborted: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        """Whether nothing failed and the run was not stopped."""
        return not self.failed and not self.aborted

    def summary(self) -> str:
        """One-line human-readable summary."""
        parts = [f'{len(self.passed)} passed', f'{len(self.failed)} failed', f'{len(self.skipped)} skipped']
        if self.aborted:
            parts.append('aborted')
        return ', '.join(parts)


class BuildObserver(AbstractContextManager['BuildObserver']):
    """Receives build progress notifications.

    All methods are no-ops. Implementations override what they need and
    must support the context manager protocol for setup and teardown of
    UI resources (e.g. Rich Live).
    """

    def init_packages(self, entries: Sequence[ScheduleEntry]) -> None:
        """Register all scheduled packages, in schedule order.

        Args:
            entries: The build schedule.
        """

    def on_status(self, name: str, status: BuildStatus, message: str = '') -> None:
        """Notify that a package changed status.

        Args:
            name: Package name.
            status: The new status.
            message: Optional detail, e.g. why a package was skipped.
        """

    def on_error(self, name: str, error: str) -> None:
        """Notify that a package failed.

        Args:
            name: Package name.
            error: Error message.
        """

    def on_log(self, title: str, message: str, level: str = 'info') -> None:
        """Free-form message attached to the run.

        Args:
            title: Short heading, usually a package name.
            message: Message text.
            level: ``'debug'``, ``'info'``, ``'warning'`` or ``'error'``.
        """

    def on_complete(self, result: RunResult) -> None:
        """Notify that a build pass finished.

        Args:
            result: Outcome of the pass.
        """

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Clean up UI resources."""


__all__ = [
    'TERMINAL_STATUSES',
    'BuildObserver',
    'BuildStatus',
    'RunResult',
]
