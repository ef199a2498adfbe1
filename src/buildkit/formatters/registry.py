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

"""Formatter registry and dispatch.

Maps format names to formatter functions behind a single
``format_schedule()`` entry point for the CLI.
"""

from __future__ import annotations

from collections.abc import Callable

from buildkit.formatters.dot import format_dot
from buildkit.formatters.json_fmt import format_json
from buildkit.formatters.levels import format_levels
from buildkit.formatters.order import format_order
from buildkit.graph import ScheduleEntry

Formatter = Callable[..., str]

FORMATTERS: dict[str, Formatter] = {
    'dot': format_dot,
    'json': format_json,
    'levels': format_levels,
    'order': format_order,
}


def format_schedule(entries: list[ScheduleEntry], *, fmt: str = 'levels') -> str:
    """Format a build schedule using the named formatter.

    Args:
        entries: Build schedule.
        fmt: Format name (one of :data:`FORMATTERS`).

    Returns:
        The formatted string.

    Raises:
        ValueError: If ``fmt`` is not a registered format name.
    """
    formatter = FORMATTERS.get(fmt)
    if formatter is None:
        available = ', '.join(sorted(FORMATTERS))
        msg = f'Unknown format {fmt!r}. Available: {available}'
        raise ValueError(msg)
    return formatter(entries)


__all__ = [
    'FORMATTERS',
    'format_schedule',
]
