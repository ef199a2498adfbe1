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

"""Workspace discovery and dependency graph construction.

A workspace is a root ``package.json`` with a ``workspaces`` array of
member globs. Discovery expands the globs, reads every member manifest
concurrently, then links members whose dependency references use the
``workspace:`` protocol::

    package.json (root)          workspaces: ["packages/*"]
    packages/core/package.json   name: core
    packages/app/package.json    name: app, dependencies: {core: "workspace:*"}

    app.downstream == [core]     core.upstream == [app]

Only workspace-local references create edges. ``"core": "^1.0.0"`` is an
ordinary registry dependency and is ignored.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from buildkit.errors import BuildKitError, E
from buildkit.logging import get_logger
from buildkit.manifest import MAX_SEARCH_DEPTH, DependencyKind, ManifestReader, Package

logger = get_logger(__name__)

DEFAULT_EXCLUDE: tuple[str, ...] = ('build-logic',)

DEFAULT_FOLLOW: frozenset[DependencyKind] = frozenset({
    DependencyKind.RUNTIME,
    DependencyKind.DEVELOPMENT,
    DependencyKind.PEER,
})

WORKSPACE_PROTOCOL = 'workspace:'

RefPredicate = Callable[[str], bool]


def workspace_protocol(prefix: str = WORKSPACE_PROTOCOL) -> RefPredicate:
    """Return a predicate matching references that start with *prefix*."""

    def _is_local(ref: str) -> bool:
        return ref.startswith(prefix)

    return _is_local


@dataclass
class Workspace:
    """A workspace root plus all of its member packages.

    Attributes:
        root: The package whose manifest declares ``workspaces``.
        members: All member packages in discovery order, root first.
    """

    root: Package
    members: list[Package]

    def __iter__(self) -> Iterator[Package]:
        """Iterate over members in discovery order."""
        return iter(self.members)

    def __len__(self) -> int:
        """Return the number of members."""
        return len(self.members)

    def __contains__(self, package: object) -> bool:
        """Whether *package* is one of this workspace's members."""
        return any(member is package for member in self.members)

    def get(self, name: str) -> Package | None:
        """Return the member named *name*, or ``None``."""
        for member in self.members:
            if member.name == name:
                return member
        return None

    @property
    def names(self) -> list[str]:
        """Member names in discovery order."""
        return [m.name for m in self.members]


@dataclass(frozen=True)
class DiscoverResult:
    """Outcome of :func:`discover_workspace`.

    Attributes:
        current_package: Nearest package to the start directory, or
            ``None`` if there is none.
        workspace: The enclosing workspace, or ``None`` when the current
            package is not inside one.
    """

    current_package: Package | None
    workspace: Workspace | None


def _references(
    package: Package,
    name: str,
    follow: frozenset[DependencyKind],
    is_workspace_ref: RefPredicate,
) -> bool:
    for kind in DependencyKind:
        if kind not in follow:
            continue
        ref = package.dependency_refs.get(kind, {}).get(name)
        if ref is not None and is_workspace_ref(ref):
            return True
    return False


def link_members(
    members: Sequence[Package],
    *,
    follow: Iterable[DependencyKind] = DEFAULT_FOLLOW,
    is_workspace_ref: RefPredicate | None = None,
) -> int:
    """Add an edge A → B for every member A that references member B.

    Pairs are visited in member order, so each adjacency list ends up in
    discovery order. References to a package's own name are ignored.

    Returns:
        The number of edges added.
    """
    followed = frozenset(follow)
    predicate = is_workspace_ref or workspace_protocol()
    edges = 0
    for a in members:
        for b in members:
            if a is b or a.name == b.name:
                continue
            if _references(a, b.name, followed, predicate) and a.add_dependency(b):
                edges += 1
    return edges


async def build_workspace(
    root: Package,
    *,
    reader: ManifestReader | None = None,
    exclude: Iterable[str] = DEFAULT_EXCLUDE,
    follow: Iterable[DependencyKind] = DEFAULT_FOLLOW,
    is_workspace_ref: RefPredicate | None = None,
) -> Workspace:
    """Expand *root*'s member globs and link the members into a graph.

    Args:
        root: A package whose manifest declares ``workspaces``.
        reader: Manifest reader to share a cache with. A new one is
            created when omitted.
        exclude: Package names to leave out of the workspace.
        follow: Dependency kinds that create edges.
        is_workspace_ref: Predicate selecting workspace-local
            references. Defaults to the ``workspace:`` prefix.

    Returns:
        The assembled :class:`Workspace`.

    Raises:
        BuildKitError: *root* declares no workspaces, a member glob is
            absolute or malformed, or two members share a name.
    """
    if root.workspaces is None:
        raise BuildKitError(
            code=E.WORKSPACE_NOT_FOUND,
            message=f"package '{root.name}' does not declare workspaces",
            hint=f"Add a 'workspaces' array to {root.manifest_path}.",
        )

    reader = reader or ManifestReader()
    excluded = frozenset(exclude)

    matches: list[Path] = []
    for pattern in root.workspaces:
        for path in await reader.fs.glob(root.directory, pattern):
            if path.is_dir():
                matches.append(path.resolve())

    found = await asyncio.gather(*(reader.find(path, jail=path) for path in matches))

    members: list[Package] = [root]
    seen: set[Path] = {root.directory}
    by_name: dict[str, Package] = {root.name: root}
    for package in found:
        if package is None or package.directory in seen:
            continue
        seen.add(package.directory)
        if package.name in excluded:
            logger.debug('workspace_member_excluded', package=package.name)
            continue
        other = by_name.get(package.name)
        if other is not None:
            raise BuildKitError(
                code=E.WORKSPACE_DUPLICATE_PACKAGE,
                message=f"package name '{package.name}' is used by {other.directory} and {package.directory}",
                hint='Package names must be unique within a workspace.',
            )
        by_name[package.name] = package
        members.append(package)

    edges = link_members(members, follow=follow, is_workspace_ref=is_workspace_ref)
    logger.debug('workspace_built', root=root.name, members=len(members), edges=edges)
    return Workspace(root=root, members=members)


async def find_workspace_root(
    package: Package,
    *,
    reader: ManifestReader,
    max_depth: int = MAX_SEARCH_DEPTH,
) -> Package | None:
    """Return *package* or its nearest enclosing workspace root."""
    current: Package | None = package
    for _ in range(max_depth):
        if current is None or current.is_workspace_root:
            return current
        parent = current.directory.parent
        if parent == current.directory:
            return None
        current = await reader.find(parent)
    return None


async def discover_workspace(
    cwd: Path,
    *,
    reader: ManifestReader | None = None,
    exclude: Iterable[str] = DEFAULT_EXCLUDE,
    follow: Iterable[DependencyKind] = DEFAULT_FOLLOW,
    is_workspace_ref: RefPredicate | None = None,
) -> DiscoverResult:
    """Find the package at *cwd* and the workspace that encloses it.

    Args:
        cwd: Directory to start from.
        reader: Manifest reader to share a cache with.
        exclude: Package names to leave out of the workspace.
        follow: Dependency kinds that create edges.
        is_workspace_ref: Predicate selecting workspace-local references.

    Returns:
        A :class:`DiscoverResult`. Both fields are ``None`` when no
        manifest exists at or above *cwd*.
    """
    reader = reader or ManifestReader()
    current = await reader.find(cwd)
    if current is None:
        return DiscoverResult(current_package=None, workspace=None)

    root = await find_workspace_root(current, reader=reader)
    if root is None:
        logger.debug('workspace_root_not_found', package=current.name)
        return DiscoverResult(current_package=current, workspace=None)

    workspace = await build_workspace(
        root,
        reader=reader,
        exclude=exclude,
        follow=follow,
        is_workspace_ref=is_workspace_ref,
    )
    logger.info('workspace_discovered', root=str(root.directory), members=len(workspace))
    return DiscoverResult(current_package=current, workspace=workspace)


def _walk(start: Package, edges: Callable[[Package], list[Package]]) -> list[Package]:
    result: list[Package] = []
    seen: set[int] = {id(start)}
    stack = list(reversed(edges(start)))
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        result.append(node)
        stack.extend(reversed(edges(node)))
    return result


def forward_deps(package: Package) -> list[Package]:
    """Return every package *package* depends on, directly or transitively."""
    return _walk(package, lambda p: p.downstream)


def reverse_deps(package: Package) -> list[Package]:
    """Return every package that depends on *package*, directly or transitively."""
    return _walk(package, lambda p: p.upstream)


__all__ = [
    'DEFAULT_EXCLUDE',
    'DEFAULT_FOLLOW',
    'WORKSPACE_PROTOCOL',
    'DiscoverResult',
    'RefPredicate',
    'Workspace',
    'build_workspace',
    'discover_workspace',
    'find_workspace_root',
    'forward_deps',
    'link_members',
    'reverse_deps',
    'workspace_protocol',
]
