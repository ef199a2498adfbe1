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

"""Build order output, one package per line.

Example output::

    1. core      (priority 2)
    2. ui        (priority 1)
    3. app       (priority 0)
"""

from __future__ import annotations

from buildkit.graph import ScheduleEntry


def format_order(entries: list[ScheduleEntry]) -> str:
    """Render the schedule in the exact order packages are built."""
    if not entries:
        return '\n'
    width = max(len(e.name) for e in entries)
    lines: list[str] = []
    for i, entry in enumerate(entries, start=1):
        line = f'  {i}. {entry.name.ljust(width)}  (priority {entry.priority})'
        if not entry.package.is_buildable:
            line += '  [no build config]'
        lines.append(line)
    return '\n'.join(lines) + '\n'


__all__ = ['format_order']
