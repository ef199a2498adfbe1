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

"""Level-grouped text output.

The default ``buildkit graph`` format. Level 0 holds packages without
workspace dependencies; each later level only depends on earlier ones.

Example output::

    Level 0: core, utils
    Level 1: ui
    Level 2: app
"""

from __future__ import annotations

from buildkit.graph import ScheduleEntry, group_by_level


def format_levels(entries: list[ScheduleEntry], *, show_version: bool = False) -> str:
    """Render the schedule as a level-grouped text listing.

    Args:
        entries: Build schedule.
        show_version: Append the version to each package name.

    Returns:
        A simple text listing.
    """
    lines: list[str] = []
    for level in group_by_level(entries):
        names: list[str] = []
        for entry in level:
            version = entry.package.version
            names.append(f'{entry.name} ({version})' if show_version and version else entry.name)
        lines.append(f'  Level {level[0].level}: {", ".join(names)}')
    return '\n'.join(lines) + '\n'


__all__ = ['format_levels']
