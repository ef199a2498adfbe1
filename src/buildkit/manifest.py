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

"""Package model and manifest reader.

Locates the nearest ``package.json`` at or above a directory and turns it
into a :class:`Package`.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Package             │ One folder with a package.json. Knows its     │
    │                     │ name, its declared deps, and its build file.  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ downstream          │ Packages this one depends on (build first).   │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ upstream            │ Packages that depend on this one.             │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ jail                │ A fence. The upward search never climbs       │
    │                     │ above this directory.                         │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ ManifestReader      │ Walks up, reads, validates, and remembers     │
    │                     │ every directory it looked at.                 │
    └─────────────────────┴────────────────────────────────────────────────┘

Search::

    /repo/packages/app/src/components   ← start
    /repo/packages/app/src              (no package.json)
    /repo/packages/app                  ← package.json found, stop

Every directory on that path is cached, so a second lookup from
``/repo/packages/app/src`` returns the same :class:`Package` instance
without touching the disk.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from buildkit.errors import AmbiguousBuildConfigError, ManifestParseError, ManifestShapeError
from buildkit.fs import FileSystem, LocalFileSystem
from buildkit.logging import get_logger

logger = get_logger(__name__)

MANIFEST_FILENAME = 'package.json'

DEFAULT_BUILD_CONFIG_GLOB = 'build.config.{toml,json}'

# Upper bound on directories visited by one upward search.
MAX_SEARCH_DEPTH = 128


class DependencyKind(str, Enum):
    """Dependency sections of a manifest, by their JSON key."""

    RUNTIME = 'dependencies'
    DEVELOPMENT = 'devDependencies'
    PEER = 'peerDependencies'
    OPTIONAL = 'optionalDependencies'


@dataclass(eq=False)
class Package:
    """A package discovered from a ``package.json`` manifest.

    Instances compare by identity. Within one discovery run there is
    exactly one instance per directory.

    Attributes:
        directory: Resolved absolute path of the package directory.
        name: Declared package name.
        version: Declared version, or empty string.
        dependency_refs: Dependency kind → {dependency name → reference}.
        workspaces: Member glob patterns when this is a workspace root,
            otherwise ``None``.
        build_config: Path of the package's build config file, or
            ``None`` when the package is not buildable.
        downstream: Packages this package depends on.
        upstream: Packages that depend on this package.
    """

    directory: Path
    name: str
    version: str = ''
    dependency_refs: dict[DependencyKind, dict[str, str]] = field(default_factory=dict)
    workspaces: list[str] | None = None
    build_config: Path | None = None
    downstream: list[Package] = field(default_factory=list, repr=False)
    upstream: list[Package] = field(default_factory=list, repr=False)

    @property
    def manifest_path(self) -> Path:
        """Path to this package's ``package.json``."""
        return self.directory / MANIFEST_FILENAME

    @property
    def is_buildable(self) -> bool:
        """Whether the package has a build config."""
        return self.build_config is not None

    @property
    def is_workspace_root(self) -> bool:
        """Whether the manifest declares workspace member patterns."""
        return self.workspaces is not None

    def add_dependency(self, dependency: Package) -> bool:
        """Record that this package depends on *dependency*.

        Both adjacency lists are updated together. Adding an existing
        edge or a self-edge is a no-op.

        Returns:
            ``True`` if a new edge was added.
        """
        if dependency is self or dependency in self.downstream:
            return False
        self.downstream.append(dependency)
        dependency.upstream.append(self)
        return True


def _parse_manifest(text: str, path: Path) -> dict[str, Any]:
    """Parse and shape-check manifest JSON."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestParseError(path, str(exc)) from exc

    if not isinstance(data, dict):
        raise ManifestShapeError(path, 'expected a JSON object')
    if not isinstance(data.get('name'), str):
        raise ManifestShapeError(path, 'name must be a string')
    if 'version' in data and not isinstance(data['version'], str):
        raise ManifestShapeError(path, 'version must be a string')
    if 'workspaces' in data:
        workspaces = data['workspaces']
        if not isinstance(workspaces, list) or not all(isinstance(w, str) for w in workspaces):
            raise ManifestShapeError(path, 'workspaces must be an array of strings')
    for kind in DependencyKind:
        section = data.get(kind.value)
        if section is not None and not isinstance(section, dict):
            raise ManifestShapeError(path, f'{kind.value} must be an object')
    return data


def _dependency_refs(data: dict[str, Any]) -> dict[DependencyKind, dict[str, str]]:
    refs: dict[DependencyKind, dict[str, str]] = {}
    for kind in DependencyKind:
        section = data.get(kind.value)
        if not section:
            continue
        # Non-string references are ignored.
        refs[kind] = {name: ref for name, ref in section.items() if isinstance(ref, str)}
    return refs


class ManifestReader:
    """Finds and parses manifests, caching results for one discovery run.

    The cache maps each visited directory (per jail) to the package that
    governs it, or ``None`` when no package was found. Failed reads are
    not cached, so a fixed manifest is picked up on the next run.

    Args:
        fs: Filesystem provider. Defaults to :class:`LocalFileSystem`.
        build_config_glob: Pattern matched in the package directory to
            find its build config file.
        max_depth: Maximum number of directories visited per search.
    """

    def __init__(
        self,
        fs: FileSystem | None = None,
        *,
        build_config_glob: str = DEFAULT_BUILD_CONFIG_GLOB,
        max_depth: int = MAX_SEARCH_DEPTH,
    ) -> None:
        """Initialize an empty cache."""
        self._fs: FileSystem = fs or LocalFileSystem()
        self._build_config_glob = build_config_glob
        self._max_depth = max_depth
        self._lookups: dict[tuple[Path, Path | None], Package | None] = {}
        self._packages: dict[Path, Package] = {}

    @property
    def fs(self) -> FileSystem:
        """The filesystem provider used for reads and globs."""
        return self._fs

    async def find(self, start: Path, *, jail: Path | None = None) -> Package | None:
        """Return the package at *start* or its nearest ancestor.

        Args:
            start: Directory to start searching from.
            jail: Directory the search must not climb above. ``None``
                allows climbing to the filesystem root.

        Returns:
            The :class:`Package`, or ``None`` if no manifest was found
            inside the jail.

        Raises:
            ManifestParseError: The manifest is not valid JSON.
            ManifestShapeError: A manifest field is missing or mistyped.
            AmbiguousBuildConfigError: More than one build config matched.
            FilesystemError: An I/O error other than "not found".
        """
        directory = start.resolve()
        jail_dir = jail.resolve() if jail is not None else None

        visited: list[Path] = []
        result: Package | None = None
        for _ in range(self._max_depth):
            if jail_dir is not None and not directory.is_relative_to(jail_dir):
                break
            key = (directory, jail_dir)
            if key in self._lookups:
                result = self._lookups[key]
                break
            visited.append(directory)
            package = await self._load(directory)
            if package is not None:
                result = package
                break
            parent = directory.parent
            if parent == directory:
                break
            directory = parent

        for visited_dir in visited:
            self._lookups[visited_dir, jail_dir] = result

        if result is None:
            logger.debug('manifest_not_found', start=str(start))
        return result

    async def _load(self, directory: Path) -> Package | None:
        """Read the manifest in exactly *directory*, without walking."""
        cached = self._packages.get(directory)
        if cached is not None:
            return cached

        manifest_path = directory / MANIFEST_FILENAME
        try:
            text = await self._fs.read_text(manifest_path)
        except UnicodeDecodeError as exc:
            raise ManifestParseError(manifest_path, f'not valid UTF-8: {exc}') from exc
        if text is None:
            return None

        data = _parse_manifest(text, manifest_path)
        build_config = await self._find_build_config(directory)
        package = Package(
            directory=directory,
            name=data['name'],
            version=data.get('version', ''),
            dependency_refs=_dependency_refs(data),
            workspaces=list(data['workspaces']) if 'workspaces' in data else None,
            build_config=build_config,
        )
        # Concurrent lookups may race to the same directory; keep the first.
        package = self._packages.setdefault(directory, package)
        logger.debug(
            'manifest_found',
            package=package.name,
            directory=str(directory),
            buildable=package.is_buildable,
        )
        return package

    async def _find_build_config(self, directory: Path) -> Path | None:
        matches = [p for p in await self._fs.glob(directory, self._build_config_glob) if not p.is_dir()]
        if len(matches) > 1:
            raise AmbiguousBuildConfigError(directory, matches)
        return matches[0] if matches else None


async def read_package(
    start: Path,
    *,
    jail: Path | None = None,
    build_config_glob: str = DEFAULT_BUILD_CONFIG_GLOB,
    fs: FileSystem | None = None,
) -> Package | None:
    """One-off lookup with a fresh :class:`ManifestReader`.

    See :meth:`ManifestReader.find` for arguments and errors.
    """
    reader = ManifestReader(fs, build_config_glob=build_config_glob)
    return await reader.find(start, jail=jail)


__all__ = [
    'DEFAULT_BUILD_CONFIG_GLOB',
    'MANIFEST_FILENAME',
    'MAX_SEARCH_DEPTH',
    'DependencyKind',
    'ManifestReader',
    'Package',
    'read_package',
]
