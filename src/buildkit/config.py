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

"""Configuration loading and validation for buildkit.

Reads the nearest ``buildkit.toml`` (normally at the workspace root)
into a frozen :class:`BuildKitConfig`. Every key is optional and a
missing file means "all defaults"::

    # buildkit.toml
    exclude = ["build-logic", "docs"]
    follow_deps = ["runtime", "development", "peer"]
    workspace_protocol = "workspace:"
    build_config_glob = "build.config.{toml,json}"
    debounce_ms = 100
    skip_dependents_on_failure = false
    rebuild_dependents = true
    env = "development"
    timeout = 600

Unknown keys fail fast with a "did you mean" hint, so a typo such as
``debounce = 50`` is not silently ignored.

The build environment is resolved separately by :func:`resolve_env`,
because the CLI flag and process environment take part too::

    --env flag  >  env key  >  BUILD_ENV / NODE_ENV / ENVIRONMENT  >  production
"""

from __future__ import annotations

import difflib
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from buildkit.errors import BuildKitError, E
from buildkit.logging import get_logger
from buildkit.manifest import DEFAULT_BUILD_CONFIG_GLOB, DependencyKind

logger = get_logger(__name__)

CONFIG_FILENAME = 'buildkit.toml'

VALID_KEYS: frozenset[str] = frozenset({
    'exclude',
    'follow_deps',
    'workspace_protocol',
    'build_config_glob',
    'debounce_ms',
    'skip_dependents_on_failure',
    'rebuild_dependents',
    'env',
    'timeout',
})

# Short names used in buildkit.toml for each dependency section.
FOLLOW_NAMES: dict[str, DependencyKind] = {
    'runtime': DependencyKind.RUNTIME,
    'development': DependencyKind.DEVELOPMENT,
    'peer': DependencyKind.PEER,
    'optional': DependencyKind.OPTIONAL,
}

ENV_VARIABLES: tuple[str, ...] = ('BUILD_ENV', 'NODE_ENV', 'ENVIRONMENT')


class Env(str, Enum):
    """Build environment passed to build commands as ``BUILD_ENV``."""

    DEVELOPMENT = 'development'
    STAGING = 'staging'
    PRODUCTION = 'production'


ENV_ALIASES: dict[str, Env] = {
    'dev': Env.DEVELOPMENT,
    'development': Env.DEVELOPMENT,
    'stag': Env.STAGING,
    'staging': Env.STAGING,
    'prod': Env.PRODUCTION,
    'production': Env.PRODUCTION,
}


@dataclass(frozen=True)
class BuildKitConfig:
    """Validated configuration for a buildkit run.

    Attributes:
        exclude: Package names left out of the workspace.
        follow_deps: Dependency kinds that create graph edges, by
            short name (``runtime``, ``development``, ``peer``,
            ``optional``).
        workspace_protocol: Reference prefix marking workspace-local
            dependencies.
        build_config_glob: Pattern locating a package's build config.
        debounce_ms: Watch-mode debounce window in milliseconds.
        skip_dependents_on_failure: Skip everything that depends on a
            failed package instead of attempting it.
        rebuild_dependents: In watch mode, rebuild the direct
            dependents of a package after it rebuilds successfully.
        env: Default build environment, or empty string.
        timeout: Default per-target timeout in seconds.
        config_path: The file that was loaded, if any.
    """

    exclude: tuple[str, ...] = ('build-logic',)
    follow_deps: tuple[str, ...] = ('runtime', 'development', 'peer')
    workspace_protocol: str = 'workspace:'
    build_config_glob: str = DEFAULT_BUILD_CONFIG_GLOB
    debounce_ms: int = 100
    skip_dependents_on_failure: bool = False
    rebuild_dependents: bool = True
    env: str = ''
    timeout: float = 600.0
    config_path: Path | None = None

    @property
    def follow_kinds(self) -> frozenset[DependencyKind]:
        """:attr:`follow_deps` as :class:`DependencyKind` values."""
        return frozenset(FOLLOW_NAMES[name] for name in self.follow_deps)

    @property
    def debounce_seconds(self) -> float:
        """:attr:`debounce_ms` in seconds."""
        return self.debounce_ms / 1000


_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    'exclude': list,
    'follow_deps': list,
    'workspace_protocol': str,
    'build_config_glob': str,
    'debounce_ms': int,
    'skip_dependents_on_failure': bool,
    'rebuild_dependents': bool,
    'env': str,
    'timeout': (int, float),
}


_SCALAR_KEYS: tuple[str, ...] = (
    'workspace_protocol',
    'build_config_glob',
    'debounce_ms',
    'skip_dependents_on_failure',
    'rebuild_dependents',
    'env',
)


def _validate_value_type(key: str, value: Any) -> None:  # noqa: ANN401 - dynamic config values
    """Raise if a config value has the wrong type."""
    expected = _TYPE_MAP[key]
    # bool is an int subclass; only accept it where bool is expected.
    wrong_bool = isinstance(value, bool) and expected is not bool
    if wrong_bool or not isinstance(value, expected):
        type_name = expected.__name__ if isinstance(expected, type) else ' or '.join(t.__name__ for t in expected)
        raise BuildKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"'{key}' must be {type_name}, got {type(value).__name__}",
            hint=f'Check the value of {key} in {CONFIG_FILENAME}.',
        )


def _validate_string_list(key: str, items: list[object]) -> None:
    for item in items:
        if not isinstance(item, str):
            raise BuildKitError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"'{key}' must contain only strings, got {type(item).__name__}",
            )


def parse_env(value: str) -> Env:
    """Map an environment name or alias to :class:`Env`.

    Raises:
        BuildKitError: *value* is not a known environment.
    """
    env = ENV_ALIASES.get(value.strip().lower())
    if env is None:
        raise BuildKitError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"Unknown build environment '{value}'",
            hint=f'Use one of: {", ".join(sorted(ENV_ALIASES))}.',
        )
    return env


def resolve_env(
    cli_value: str | None,
    config: BuildKitConfig,
    environ: Mapping[str, str] | None = None,
) -> Env:
    """Pick the build environment.

    Args:
        cli_value: Value of ``--env``, if given.
        config: Loaded configuration.
        environ: Process environment. Defaults to :data:`os.environ`.

    Returns:
        The first of: *cli_value*, ``config.env``, the first set and
        recognized variable among :data:`ENV_VARIABLES`, or
        :attr:`Env.PRODUCTION`.
    """
    if cli_value:
        return parse_env(cli_value)
    if config.env:
        return parse_env(config.env)
    environ = os.environ if environ is None else environ
    for var in ENV_VARIABLES:
        value = environ.get(var)
        if not value:
            continue
        env = ENV_ALIASES.get(value.strip().lower())
        if env is not None:
            return env
        logger.warning('unknown_env_value', variable=var, value=value)
    return Env.PRODUCTION


def find_config_root(start: Path, *, max_depth: int = 128) -> Path | None:
    """Return the nearest directory at or above *start* holding ``buildkit.toml``."""
    directory = start.resolve()
    for _ in range(max_depth):
        if (directory / CONFIG_FILENAME).is_file():
            return directory
        if directory.parent == directory:
            return None
        directory = directory.parent
    return None


def load_config(root: Path) -> BuildKitConfig:
    """Load and validate ``buildkit.toml`` from *root*.

    Args:
        root: Directory containing ``buildkit.toml``, normally the
            workspace root.

    Returns:
        A validated :class:`BuildKitConfig`; defaults when the file is
        absent.

    Raises:
        BuildKitError: If the file is unreadable or contains invalid config.
    """
    config_path = root / CONFIG_FILENAME

    if not config_path.is_file():
        logger.debug('no_buildkit_config', path=str(config_path))
        return BuildKitConfig()

    try:
        text = config_path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as exc:
        raise BuildKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to read {config_path}: {exc}',
        ) from exc

    try:
        raw: dict[str, Any] = tomlkit.parse(text).unwrap()  # noqa: ANN401
    except tomlkit.exceptions.TOMLKitError as exc:
        raise BuildKitError(
            code=E.CONFIG_PARSE_ERROR,
            message=f'Failed to parse {config_path}: {exc}',
        ) from exc

    for key in raw:
        if key not in VALID_KEYS:
            suggestion = difflib.get_close_matches(key, VALID_KEYS, n=1, cutoff=0.6)
            hint = f"Did you mean '{suggestion[0]}'?" if suggestion else 'Check the buildkit docs for valid keys.'
            raise BuildKitError(
                code=E.CONFIG_INVALID_KEY,
                message=f"Unknown key '{key}' in {CONFIG_FILENAME}",
                hint=hint,
            )

    for key, value in raw.items():
        _validate_value_type(key, value)

    kwargs: dict[str, Any] = {}  # noqa: ANN401
    for key in ('exclude', 'follow_deps'):
        if key in raw:
            _validate_string_list(key, raw[key])
            kwargs[key] = tuple(raw[key])

    for name in kwargs.get('follow_deps', ()):
        if name not in FOLLOW_NAMES:
            raise BuildKitError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"Unknown dependency kind '{name}' in follow_deps",
                hint=f'Use any of: {", ".join(FOLLOW_NAMES)}.',
            )

    if 'env' in raw:
        parse_env(raw['env'])

    if raw.get('debounce_ms', 0) < 0:
        raise BuildKitError(code=E.CONFIG_INVALID_VALUE, message="'debounce_ms' must not be negative")
    if 'timeout' in raw and raw['timeout'] <= 0:
        raise BuildKitError(code=E.CONFIG_INVALID_VALUE, message="'timeout' must be positive")

    for key in _SCALAR_KEYS:
        if key in raw:
            kwargs[key] = raw[key]
    if 'timeout' in raw:
        kwargs['timeout'] = float(raw['timeout'])

    logger.debug('buildkit_config_loaded', path=str(config_path), keys=sorted(raw))
    return BuildKitConfig(**kwargs, config_path=config_path)


__all__ = [
    'CONFIG_FILENAME',
    'ENV_ALIASES',
    'ENV_VARIABLES',
    'FOLLOW_NAMES',
    'VALID_KEYS',
    'BuildKitConfig',
    'Env',
    'find_config_root',
    'load_config',
    'parse_env',
    'resolve_env',
]
