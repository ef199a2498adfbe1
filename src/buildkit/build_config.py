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

"""Per-package build config (``build.config.toml`` / ``build.config.json``).

A build config lists one or more targets. Each target is a command run
in the package directory, plus the file patterns that trigger a rebuild
in watch mode::

    [[target]]
    name = "lib"
    command = ["tsc", "-p", "."]
    watch = ["src/**"]

    [[target]]
    name = "css"
    command = "sass src/index.scss dist/index.css"
    timeout = 60

A single top-level ``command`` is shorthand for one target::

    command = "rollup -c"

JSON files use the same keys (``{"target": [{...}]}``).
"""

from __future__ import annotations

import difflib
import json
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from buildkit.errors import BuildKitError, E
from buildkit.fs import FileSystem, LocalFileSystem
from buildkit.logging import get_logger

logger = get_logger(__name__)

VALID_TARGET_KEYS: frozenset[str] = frozenset({
    'name',
    'command',
    'watch',
    'ignore',
    'env',
    'timeout',
})

VALID_KEYS: frozenset[str] = VALID_TARGET_KEYS | {'target'}

DEFAULT_WATCH: tuple[str, ...] = ('src/**',)

DEFAULT_IGNORE: tuple[str, ...] = (
    'node_modules/**',
    '.git/**',
    'dist/**',
    'build/**',
)


@dataclass(frozen=True)
class BuildTarget:
    """One command in a package's build.

    Attributes:
        name: Target name, used in logs.
        command: Program and arguments.
        watch: Glob patterns (relative to the package) that trigger a
            rebuild in watch mode.
        ignore: Glob patterns excluded from watching.
        env: Extra environment variables for the command.
        timeout: Seconds before the command is killed, or ``None`` to
            use the run-wide default.
    """

    name: str
    command: tuple[str, ...]
    watch: tuple[str, ...] = DEFAULT_WATCH
    ignore: tuple[str, ...] = DEFAULT_IGNORE
    env: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(frozen=True)
class BuildConfig:
    """Parsed build config for one package."""

    path: Path
    targets: tuple[BuildTarget, ...]


def _invalid(path: Path, message: str) -> BuildKitError:
    return BuildKitError(
        code=E.CONFIG_INVALID_VALUE,
        message=f'{message} in {path}',
        hint=f'Fix the value in {path.name}.',
    )


def _check_keys(raw: dict[str, Any], valid: frozenset[str], path: Path) -> None:  # noqa: ANN401
    for key in raw:
        if key in valid:
            continue
        suggestion = difflib.get_close_matches(key, valid, n=1, cutoff=0.6)
        hint = f"Did you mean '{suggestion[0]}'?" if suggestion else f'Valid keys: {", ".join(sorted(valid))}.'
        raise BuildKitError(
            code=E.CONFIG_INVALID_KEY,
            message=f"Unknown key '{key}' in {path}",
            hint=hint,
        )


def _string_list(value: object, key: str, path: Path) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise _invalid(path, f"'{key}' must be a list of strings")
    return tuple(value)


def _parse_command(value: object, path: Path) -> tuple[str, ...]:
    if isinstance(value, str):
        command = tuple(shlex.split(value))
    else:
        command = _string_list(value, 'command', path)
    if not command:
        raise _invalid(path, "'command' must not be empty")
    return command


def _parse_target(raw: dict[str, Any], default_name: str, path: Path) -> BuildTarget:  # noqa: ANN401
    _check_keys(raw, VALID_TARGET_KEYS, path)
    if 'command' not in raw:
        raise BuildKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"target '{raw.get('name', default_name)}' has no 'command' in {path}",
            hint='Every target needs a command to run.',
        )

    name = raw.get('name', default_name)
    if not isinstance(name, str) or not name:
        raise _invalid(path, "'name' must be a non-empty string")

    env = raw.get('env', {})
    if not isinstance(env, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in env.items()):
        raise _invalid(path, "'env' must be a table of strings")

    timeout = raw.get('timeout')
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise _invalid(path, "'timeout' must be a positive number")
        timeout = float(timeout)

    return BuildTarget(
        name=name,
        command=_parse_command(raw['command'], path),
        watch=_string_list(raw['watch'], 'watch', path) if 'watch' in raw else DEFAULT_WATCH,
        ignore=_string_list(raw['ignore'], 'ignore', path) if 'ignore' in raw else DEFAULT_IGNORE,
        env=dict(env),
        timeout=timeout,
    )


def _decode(text: str, path: Path) -> dict[str, Any]:  # noqa: ANN401
    try:
        if path.suffix == '.json':
            data = json.loads(text)
        else:
            data = tomlkit.parse(text).unwrap()
    except (json.JSONDecodeError, tomlkit.exceptions.TOMLKitError) as exc:
        raise BuildKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to parse {path}: {exc}',
            hint=f'Check the syntax of {path.name}.',
        ) from exc
    if not isinstance(data, dict):
        raise _invalid(path, 'expected a table at the top level')
    return data


def parse_build_config(text: str, path: Path) -> BuildConfig:
    """Parse build config text.

    The format is chosen by file suffix: ``.json`` is JSON, anything
    else is TOML.

    Args:
        text: File contents.
        path: File path, used for the format and in error messages.

    Returns:
        The parsed :class:`BuildConfig`.

    Raises:
        BuildKitError: Syntax errors, unknown keys, or bad values.
    """
    raw = _decode(text, path)
    _check_keys(raw, VALID_KEYS, path)

    if 'target' in raw:
        if set(raw) - {'target'}:
            raise _invalid(path, "top-level target keys cannot be mixed with 'target' entries")
        targets_raw = raw['target']
        if not isinstance(targets_raw, list) or not all(isinstance(t, dict) for t in targets_raw):
            raise _invalid(path, "'target' must be an array of tables")
        if not targets_raw:
            raise _invalid(path, "'target' must not be empty")
        targets = tuple(
            _parse_target(t, 'default' if len(targets_raw) == 1 else f'target-{i}', path)
            for i, t in enumerate(targets_raw)
        )
    else:
        targets = (_parse_target(raw, 'default', path),)

    return BuildConfig(path=path, targets=targets)


async def load_build_config(path: Path, *, fs: FileSystem | None = None) -> BuildConfig:
    """Read and parse the build config at *path*.

    Raises:
        BuildKitError: The file is missing, unreadable, or invalid.
    """
    try:
        text = await (fs or LocalFileSystem()).read_text(path)
    except UnicodeDecodeError as exc:
        raise BuildKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Build config {path} is not valid UTF-8: {exc}',
        ) from exc
    if text is None:
        raise BuildKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Build config {path} does not exist',
        )
    config = parse_build_config(text, path)
    logger.debug('build_config_loaded', path=str(path), targets=[t.name for t in config.targets])
    return config


__all__ = [
    'DEFAULT_IGNORE',
    'DEFAULT_WATCH',
    'BuildConfig',
    'BuildTarget',
    'load_build_config',
    'parse_build_config',
]
