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

"""Filesystem and glob provider used by manifest and workspace discovery.

Only two operations are needed: read a text file (``None`` when it does
not exist) and expand a glob relative to a directory. Both are async so
that discovery of many workspace members can overlap.

Glob patterns support ``{a,b}`` alternation on top of :mod:`pathlib`
syntax, e.g. ``build.config.{toml,json}``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiofiles

from buildkit.errors import BuildKitError, E, FilesystemError
from buildkit.logging import get_logger

log = get_logger(__name__)

# Errors that mean "no file here" rather than "something is broken".
_NOT_FOUND = (FileNotFoundError, NotADirectoryError, IsADirectoryError)


def _unsupported_pattern(pattern: str, detail: str) -> BuildKitError:
    return BuildKitError(
        code=E.CONFIG_INVALID_VALUE,
        message=f"unsupported glob pattern '{pattern}': {detail}",
        hint='Use a pattern relative to the workspace root, e.g. "packages/*".',
    )


@runtime_checkable
class FileSystem(Protocol):
    """Read-only filesystem operations needed by discovery."""

    async def read_text(self, path: Path) -> str | None:
        """Return the file's UTF-8 contents, or ``None`` if it does not exist.

        Raises:
            FilesystemError: For any I/O error other than "not found".
        """
        ...

    async def glob(self, directory: Path, pattern: str) -> list[Path]:
        """Return sorted paths under *directory* matching *pattern*.

        Raises:
            BuildKitError: The pattern is absolute or not a valid glob.
        """
        ...


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternations into separate glob patterns.

    Nested groups are supported. A pattern without braces expands to
    itself.

    Args:
        pattern: Glob pattern, e.g. ``'build.config.{toml,json}'``.

    Returns:
        Expanded patterns in left-to-right order.
    """
    start = pattern.find('{')
    if start == -1:
        return [pattern]

    depth = 0
    alternatives: list[str] = []
    current_start = start + 1
    for i in range(start, len(pattern)):
        ch = pattern[i]
        if ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                alternatives.append(pattern[current_start:i])
                prefix, suffix = pattern[:start], pattern[i + 1 :]
                expanded: list[str] = []
                for alt in alternatives:
                    expanded.extend(expand_braces(prefix + alt + suffix))
                return expanded
        elif ch == ',' and depth == 1:
            alternatives.append(pattern[current_start:i])
            current_start = i + 1

    # Unbalanced brace: treat literally.
    return [pattern]


class LocalFileSystem:
    """:class:`FileSystem` backed by the local disk via aiofiles."""

    async def read_text(self, path: Path) -> str | None:
        """Read a UTF-8 text file asynchronously via aiofiles."""
        try:
            async with aiofiles.open(path, encoding='utf-8') as f:
                return await f.read()
        except _NOT_FOUND:
            return None
        except OSError as exc:
            raise FilesystemError(path, exc) from exc

    async def glob(self, directory: Path, pattern: str) -> list[Path]:
        """Expand *pattern* relative to *directory* in a worker thread."""
        return await asyncio.to_thread(self._glob_sync, directory, pattern)

    def _glob_sync(self, directory: Path, pattern: str) -> list[Path]:
        found: set[Path] = set()
        for expanded in expand_braces(pattern):
            # "." and "./" both mean the directory itself.
            if expanded.startswith('./'):
                expanded = expanded[2:]
            if expanded in {'', '.'}:
                found.add(directory)
                continue
            if Path(expanded).is_absolute():
                raise _unsupported_pattern(pattern, 'absolute patterns are not allowed')
            try:
                found.update(directory.glob(expanded))
            except _NOT_FOUND:
                continue
            except (NotImplementedError, ValueError) as exc:
                raise _unsupported_pattern(pattern, str(exc)) from exc
            except OSError as exc:
                raise FilesystemError(directory, exc) from exc
        result = sorted(found)
        log.debug('glob_expanded', directory=str(directory), pattern=pattern, count=len(result))
        return result


__all__ = [
    'FileSystem',
    'LocalFileSystem',
    'expand_braces',
]
