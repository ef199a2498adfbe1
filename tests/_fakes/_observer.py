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

"""Observer that records every notification."""

from __future__ import annotations

from collections.abc import Sequence

from buildkit.graph import ScheduleEntry
from buildkit.observer import BuildObserver, BuildStatus, RunResult


class RecordingObserver(BuildObserver):
    """Keeps a flat list of ``(event, *args)`` tuples.

    Args:
        explode: Raise from every callback, to check that reporter
            failures never reach the build.
    """

    def __init__(self, *, explode: bool = False) -> None:
        """Initialize with no events."""
        self.explode = explode
        self.events: list[tuple[object, ...]] = []
        self.results: list[RunResult] = []
        self.initialized: list[str] = []

    def _record(self, *event: object) -> None:
        self.events.append(event)
        if self.explode:
            raise RuntimeError('reporter is broken')

    def init_packages(self, entries: Sequence[ScheduleEntry]) -> None:
        """Record the schedule."""
        self.initialized = [e.name for e in entries]
        self._record('init', len(entries))

    def on_status(self, name: str, status: BuildStatus, message: str = '') -> None:
        """Record a status change."""
        self._record('status', name, status, message)

    def on_error(self, name: str, error: str) -> None:
        """Record an error."""
        self._record('error', name, error)

    def on_log(self, title: str, message: str, level: str = 'info') -> None:
        """Record a log message."""
        self._record('log', title, message, level)

    def on_complete(self, result: RunResult) -> None:
        """Record the result."""
        self.results.append(result)
        self._record('complete', result)

    def statuses(self, name: str) -> list[BuildStatus]:
        """Statuses reported for *name*, in order."""
        return [e[2] for e in self.events if e[0] == 'status' and e[1] == name]  # type: ignore[misc]

    def errors(self) -> list[tuple[object, ...]]:
        """All ``on_error`` events."""
        return [e for e in self.events if e[0] == 'error']
