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

"""Structured error system for buildkit.

Every error has a unique ``BK-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorCode           │ A unique named ID like "BK-GRAPH-CYCLE"       │
    │                     │ for each error. Readable at a glance.         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ErrorInfo           │ A bundle of code + message + hint.            │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ BuildKitError       │ An exception you can raise. Carries the       │
    │                     │ error card so renderers can display it.       │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ AbortedError        │ The "someone pressed Ctrl-C" error. Expected, │
    │                     │ never reported as a build failure.            │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ explain()           │ Looks up an error code and prints details.    │
    └─────────────────────┴────────────────────────────────────────────────┘

Code categories::

    BK-CONFIG-*       Configuration errors (buildkit.toml, build configs)
    BK-MANIFEST-*     Manifest (package.json) errors
    BK-WORKSPACE-*    Workspace discovery errors
    BK-FS-*           Filesystem errors
    BK-GRAPH-*        Dependency graph errors
    BK-BUILD-*        Build errors
    BK-ABORTED        Cooperative cancellation

Usage::

    from buildkit.errors import BuildKitError, E

    raise BuildKitError(
        code=E.BUILD_NO_CONFIG,
        message="package 'app' has no build config",
        hint='Add a build.config.toml next to package.json.',
    )
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all buildkit diagnostic codes."""

    # Configuration
    CONFIG_INVALID_KEY = 'BK-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'BK-CONFIG-INVALID-VALUE'
    CONFIG_PARSE_ERROR = 'BK-CONFIG-PARSE-ERROR'

    # Manifest reader
    MANIFEST_PARSE_ERROR = 'BK-MANIFEST-PARSE-ERROR'
    MANIFEST_SHAPE_ERROR = 'BK-MANIFEST-SHAPE-ERROR'
    MANIFEST_AMBIGUOUS_BUILD_CONFIG = 'BK-MANIFEST-AMBIGUOUS-BUILD-CONFIG'

    # Workspace discovery
    WORKSPACE_NOT_FOUND = 'BK-WORKSPACE-NOT-FOUND'
    WORKSPACE_DUPLICATE_PACKAGE = 'BK-WORKSPACE-DUPLICATE-PACKAGE'

    # Filesystem
    FS_ERROR = 'BK-FS-ERROR'

    # Dependency graph
    GRAPH_CYCLE_DETECTED = 'BK-GRAPH-CYCLE-DETECTED'

    # Build
    BUILD_FAILED = 'BK-BUILD-FAILED'
    BUILD_TIMEOUT = 'BK-BUILD-TIMEOUT'
    BUILD_NO_CONFIG = 'BK-BUILD-NO-CONFIG'

    # Cancellation
    ABORTED = 'BK-ABORTED'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``BK-NAMED-KEY`` error code.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class BuildKitError(Exception):
    """Base exception for all buildkit errors.

    Carries structured diagnostic information (code, message, hint) that
    can be rendered as a rich terminal message or structured JSON.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


class ManifestParseError(BuildKitError):
    """A manifest file exists but is not valid JSON."""

    def __init__(self, path: Path, detail: str) -> None:
        """Initialize with the manifest path and the decoder's complaint."""
        self.path = path
        super().__init__(
            code=E.MANIFEST_PARSE_ERROR,
            message=f"could not parse 'package.json' file at {path}: {detail}",
            hint=f'Check that {path} contains valid JSON.',
        )


class ManifestShapeError(BuildKitError):
    """A manifest parsed fine but a field is missing or has the wrong type."""

    def __init__(self, path: Path, detail: str) -> None:
        """Initialize with the manifest path and a description of the bad field."""
        self.path = path
        super().__init__(
            code=E.MANIFEST_SHAPE_ERROR,
            message=f'{detail} in {path}',
            hint="A manifest needs a string 'name'; 'workspaces' must be an array of strings.",
        )


class AmbiguousBuildConfigError(BuildKitError):
    """More than one build config file matched in a package directory."""

    def __init__(self, directory: Path, matches: list[Path]) -> None:
        """Initialize with the package directory and the competing files."""
        self.directory = directory
        self.matches = matches
        names = ', '.join(p.name for p in matches)
        super().__init__(
            code=E.MANIFEST_AMBIGUOUS_BUILD_CONFIG,
            message=f'multiple build config files found in {directory}: {names}',
            hint='Keep exactly one build config file per package.',
        )


class FilesystemError(BuildKitError):
    """An I/O error other than "file not found"."""

    def __init__(self, path: Path, exc: OSError) -> None:
        """Initialize with the offending path and the underlying OS error."""
        self.path = path
        super().__init__(
            code=E.FS_ERROR,
            message=f'failed to access {path}: {exc}',
            hint=f'Check permissions for {path}.',
        )


class DependencyCycleError(BuildKitError):
    """The dependency graph contains a cycle, so no build order exists.

    Attributes:
        cycle: Package names along the cycle, starting at the re-entered
            package. ``['A', 'B']`` means ``A -> B -> A``.
    """

    def __init__(self, cycle: list[str]) -> None:
        """Initialize with the package names along the cycle."""
        self.cycle = cycle
        path = ''.join(f'-> {name} ' for name in cycle)
        super().__init__(
            code=E.GRAPH_CYCLE_DETECTED,
            message=f'dependency cycle [{path}->]',
            hint='Break the cycle by removing one of the workspace dependencies.',
        )


class AbortedError(BuildKitError):
    """Raised by :meth:`Activity.ensure_active` once the activity is stopped."""

    def __init__(self, message: str = 'the activity was stopped') -> None:
        """Initialize with an optional message."""
        super().__init__(code=E.ABORTED, message=message)


class BuildFailure(BuildKitError):
    """A single package failed to build.

    Attributes:
        package: Name of the failed package.
        output: Captured tail of the build output, if any.
    """

    def __init__(
        self,
        package: str,
        message: str,
        *,
        output: str = '',
        code: ErrorCode = E.BUILD_FAILED,
    ) -> None:
        """Initialize with the package name, a summary, and optional output."""
        self.package = package
        self.output = output
        super().__init__(code=code, message=message, hint='See the build output above for details.')


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.CONFIG_INVALID_KEY: ErrorInfo(
        code=E.CONFIG_INVALID_KEY,
        message='Unknown key in buildkit.toml or a build config file.',
        hint='Check for typos. The error message suggests the closest valid key.',
    ),
    E.CONFIG_INVALID_VALUE: ErrorInfo(
        code=E.CONFIG_INVALID_VALUE,
        message='A configuration value has the wrong type or an unsupported value.',
        hint='Compare the value against the documented type and allowed values.',
    ),
    E.CONFIG_PARSE_ERROR: ErrorInfo(
        code=E.CONFIG_PARSE_ERROR,
        message='A configuration file could not be read or parsed.',
        hint='Validate the TOML or JSON syntax of the file.',
    ),
    E.MANIFEST_PARSE_ERROR: ErrorInfo(
        code=E.MANIFEST_PARSE_ERROR,
        message='A package.json file is not valid JSON.',
        hint='Fix the JSON syntax. Trailing commas and comments are not allowed.',
    ),
    E.MANIFEST_SHAPE_ERROR: ErrorInfo(
        code=E.MANIFEST_SHAPE_ERROR,
        message='A package.json file is missing a required field or a field has the wrong type.',
        hint="'name' must be a string, 'workspaces' an array of strings, dependency sections objects.",
    ),
    E.MANIFEST_AMBIGUOUS_BUILD_CONFIG: ErrorInfo(
        code=E.MANIFEST_AMBIGUOUS_BUILD_CONFIG,
        message='A package directory contains more than one build config file.',
        hint='Delete all but one build.config.* file.',
    ),
    E.WORKSPACE_NOT_FOUND: ErrorInfo(
        code=E.WORKSPACE_NOT_FOUND,
        message='No package.json was found in the current directory or any parent.',
        hint='Run buildkit from inside a package or pass --cwd.',
    ),
    E.WORKSPACE_DUPLICATE_PACKAGE: ErrorInfo(
        code=E.WORKSPACE_DUPLICATE_PACKAGE,
        message='Two workspace members declare the same package name.',
        hint='Rename one of the packages or exclude it from the workspace globs.',
    ),
    E.FS_ERROR: ErrorInfo(
        code=E.FS_ERROR,
        message='A file or directory could not be read.',
        hint='Check file permissions and that the path is not a broken symlink.',
    ),
    E.GRAPH_CYCLE_DETECTED: ErrorInfo(
        code=E.GRAPH_CYCLE_DETECTED,
        message='Workspace packages depend on each other in a cycle; no build order exists.',
        hint="Run 'buildkit graph' to inspect the dependency graph.",
    ),
    E.BUILD_FAILED: ErrorInfo(
        code=E.BUILD_FAILED,
        message='A build command exited with a non-zero status.',
        hint='Re-run with --debug to see the full command output.',
    ),
    E.BUILD_TIMEOUT: ErrorInfo(
        code=E.BUILD_TIMEOUT,
        message='A build command did not finish within its timeout.',
        hint="Raise 'timeout' for the target or in buildkit.toml.",
    ),
    E.BUILD_NO_CONFIG: ErrorInfo(
        code=E.BUILD_NO_CONFIG,
        message='The selected package has no build config file.',
        hint='Add build.config.toml to the package, or run from the workspace root.',
    ),
    E.ABORTED: ErrorInfo(
        code=E.ABORTED,
        message='The run was stopped before all work finished (e.g. Ctrl-C).',
    ),
}


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Args:
        code: The error code string, e.g. ``"BK-GRAPH-CYCLE-DETECTED"``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{code}: No detailed explanation available.'

    lines = [f'{code}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def render_error(exc: BuildKitError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style with color.

    Output format::

        error[BK-BUILD-NO-CONFIG]: package 'app' has no build config
          |
          = hint: Add build.config.toml to the package.

    Args:
        exc: The error to render.
        file: Output stream (defaults to ``sys.stderr``).
    """
    out = file or sys.stderr

    if out.isatty():
        console = Console(file=out, highlight=False)
        msg = rich_escape(exc.info.message)
        console.print(
            f'[bold red]error[/bold red][bold red]\\[{exc.code.value}][/bold red][bold]: {msg}[/bold]',
        )
        if exc.hint:
            hint = rich_escape(exc.hint)
            console.print('  [dim]|[/dim]')
            console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {hint}')
        console.print()
    else:
        print(f'error[{exc.code.value}]: {exc.info.message}', file=out)  # noqa: T201 - CLI output
        if exc.hint:
            print('  |', file=out)  # noqa: T201 - CLI output
            print(f'  = hint: {exc.hint}', file=out)  # noqa: T201 - CLI output
        print(file=out)  # noqa: T201 - CLI output


__all__ = [
    'ERRORS',
    'AbortedError',
    'AmbiguousBuildConfigError',
    'BuildFailure',
    'BuildKitError',
    'DependencyCycleError',
    'E',
    'ErrorCode',
    'ErrorInfo',
    'FilesystemError',
    'ManifestParseError',
    'ManifestShapeError',
    'explain',
    'render_error',
]
