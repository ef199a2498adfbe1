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

"""Graphviz DOT output.

Usage::

    buildkit graph --format dot | dot -Tsvg -o graph.svg
"""

from __future__ import annotations

from buildkit.graph import ScheduleEntry


def _node_id(name: str) -> str:
    escaped = name.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def format_dot(entries: list[ScheduleEntry], *, rankdir: str = 'BT') -> str:
    """Render the schedule's dependency graph as a DOT digraph.

    Edges point from dependent to dependency. Packages without a build
    config are drawn dashed.

    Args:
        entries: Build schedule.
        rankdir: Graph direction (``TB``, ``LR``, ``BT``, ``RL``).

    Returns:
        A DOT language string.
    """
    scheduled = {id(e.package) for e in entries}
    lines = [
        'digraph dependencies {',
        f'  rankdir={rankdir};',
        '  node [shape=box, style=rounded];',
        '',
    ]
    for entry in entries:
        style = '' if entry.package.is_buildable else ', style="rounded,dashed"'
        lines.append(f'  {_node_id(entry.name)} [label="{entry.name}\\nP{entry.priority}"{style}];')
    lines.append('')
    for entry in entries:
        for dep in entry.package.downstream:
            if id(dep) in scheduled:
                lines.append(f'  {_node_id(entry.name)} -> {_node_id(dep.name)};')
    lines.append('}')
    return '\n'.join(lines) + '\n'


__all__ = ['format_dot']
