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

"""Build priorities and cycle detection.

Turns the requested packages into a build schedule: a list of
:class:`ScheduleEntry` sorted so that every package comes after all of
the packages it depends on.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ level               │ How tall the dependency tower under a package │
    │                     │ is. No deps = 0. Otherwise 1 + tallest dep.   │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ priority            │ max level - level. Dependencies always get a  │
    │                     │ strictly bigger number than their dependents. │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ discovery order     │ The order the walk first touched each         │
    │                     │ package. Breaks ties between equal priority.  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ cycle               │ A → B → A. No valid order exists, so the     │
    │                     │ whole run stops before building anything.     │
    └─────────────────────┴────────────────────────────────────────────────┘

Example::

    requested: [C]      C → B → A          X (no edges)

    level:     A=0  B=1  C=2
    priority:  A=2  B=1  C=0
    schedule:  [A, B, C]

The walk is a depth-first search with three colors. Seeing a package that
is still on the current path (gray) means a cycle, reported from the
re-entered package around to itself::

    dependency cycle [-> A -> B ->]
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from buildkit.errors import DependencyCycleError
from buildkit.logging import get_logger
from buildkit.manifest import Package

logger = get_logger(__name__)


class _Color(Enum):
    VISITING = 1
    VISITED = 2


@dataclass(frozen=True)
class ScheduleEntry:
    """One package in a build schedule.

    Attributes:
        package: The package to build.
        priority: Ordering key. Higher builds earlier.
        level: Height of the package's dependency tree (0 = leaf).
        order: Index at which the traversal first reached the package.
    """

    package: Package
    priority: int
    level: int
    order: int

    @property
    def name(self) -> str:
        """The package name."""
        return self.package.name


class _Traversal:
    """Colored DFS state for one :func:`compute_schedule` call."""

    def __init__(self) -> None:
        self.colors: dict[Package, _Color] = {}
        self.levels: dict[Package, int] = {}
        self.discovered: list[Package] = []
        self.path: list[Package] = []

    def visit(self, package: Package) -> int:
        color = self.colors.get(package)
        if color is _Color.VISITED:
            return self.levels[package]
        if color is _Color.VISITING:
            start = self.path.index(package)
            raise DependencyCycleError([p.name for p in self.path[start:]])

        self.colors[package] = _Color.VISITING
        self.path.append(package)
        self.discovered.append(package)

        level = 0
        for dependency in package.downstream:
            level = max(level, self.visit(dependency) + 1)

        self.path.pop()
        self.colors[package] = _Color.VISITED
        self.levels[package] = level
        return level


def compute_schedule(packages: Iterable[Package]) -> list[ScheduleEntry]:
    """Compute the build schedule for *packages* and their dependencies.

    Every package reachable through ``downstream`` edges is included.

    Args:
        packages: Packages requested for this run, in discovery order.

    Returns:
        Entries sorted by descending priority, ties in discovery order.
        For every edge A → B in the result, B comes before A.

    Raises:
        DependencyCycleError: The reachable graph contains a cycle.
    """
    traversal = _Traversal()
    for package in packages:
        traversal.visit(package)

    if not traversal.discovered:
        return []

    height = max(traversal.levels.values())
    entries = [
        ScheduleEntry(
            package=package,
            priority=height - traversal.levels[package],
            level=traversal.levels[package],
            order=index,
        )
        for index, package in enumerate(traversal.discovered)
    ]
    entries.sort(key=lambda e: (-e.priority, e.order))
    logger.debug('schedule_computed', packages=len(entries), levels=height + 1)
    return entries


def group_by_level(entries: Iterable[ScheduleEntry]) -> list[list[ScheduleEntry]]:
    """Group schedule entries by level, leaves first.

    Entries within a level keep their schedule order.
    """
    groups: dict[int, list[ScheduleEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.level, []).append(entry)
    return [groups[level] for level in sorted(groups)]


__all__ = [
    'ScheduleEntry',
    'compute_schedule',
    'group_by_level',
]
