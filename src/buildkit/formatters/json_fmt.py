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

"""JSON output for build schedules.

Machine-readable: build order, per-package metadata, and level groups::

    buildkit graph --format json | jq '.order'
"""

from __future__ import annotations

import json

from buildkit.graph import ScheduleEntry, group_by_level


def format_json(entries: list[ScheduleEntry], *, indent: int = 2) -> str:
    """Render the schedule as a JSON string.

    Args:
        entries: Build schedule.
        indent: JSON indentation level.

    Returns:
        A JSON document with ``order``, ``nodes`` and ``level_groups``.
    """
    nodes: list[dict[str, object]] = []
    for entry in entries:
        package = entry.package
        nodes.append({
            'name': entry.name,
            'version': package.version,
            'path': str(package.directory),
            'priority': entry.priority,
            'level': entry.level,
            'buildable': package.is_buildable,
            'build_config': str(package.build_config) if package.build_config else None,
            'deps': [d.name for d in package.downstream],
            'rdeps': [d.name for d in package.upstream],
        })

    data = {
        'packages': len(entries),
        'order': [e.name for e in entries],
        'nodes': nodes,
        'level_groups': [[e.name for e in level] for level in group_by_level(entries)],
    }
    return json.dumps(data, indent=indent) + '\n'


__all__ = ['format_json']
