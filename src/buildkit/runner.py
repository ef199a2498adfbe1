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

"""Top-level build entry point.

Ties discovery, configuration, scheduling and reporting together::

    cwd ──▶ buildkit.toml ──▶ discover_workspace ──▶ select packages
                                                         │
           RunResult ◀── Dispatcher.run_once ◀── Dispatcher.create
                              │ (--watch)
                              ▼
                        Dispatcher.watch ── until Ctrl-C

Package selection:

- At a workspace root that has no build config of its own, every member
  is built.
- Anywhere else, the current package is built together with the
  workspace packages it depends on. It must have a build config.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from buildkit.activity import Activity
from buildkit.config import BuildKitConfig, find_config_root, load_config, resolve_env
from buildkit.dispatcher import Dispatcher
from buildkit.errors import BuildKitError, E
from buildkit.graph import ScheduleEntry, compute_schedule
from buildkit.logging import get_logger
from buildkit.manifest import ManifestReader, Package
from buildkit.observer import BuildObserver, RunResult
from buildkit.ui import create_reporter, format_time
from buildkit.units import BuildContext, UnitFactory, create_unit
from buildkit.workspace import DiscoverResult, discover_workspace, workspace_protocol

logger = get_logger(__name__)


@dataclass(frozen=True)
class BuildOptions:
    """Inputs for :func:`run_build`.

    Attributes:
        cwd: Directory to start discovery from.
        env: ``--env`` value, if given.
        watch: Keep rebuilding on changes until stopped.
        debug: Pass debug mode to build commands and log their output.
        activity: Cancellation token. When omitted, one wired to
            SIGINT/SIGTERM is created for the run.
        observer: Progress reporter. Chosen by :func:`create_reporter`
            when omitted.
        unit_factory: Creates the build unit for each package.
        environ: Environment used to resolve the build environment.
    """

    cwd: Path
    env: str | None = None
    watch: bool = False
    debug: bool = False
    activity: Activity | None = None
    observer: BuildObserver | None = None
    unit_factory: UnitFactory = create_unit
    environ: Mapping[str, str] | None = field(default=None, repr=False)


def load_config_for(cwd: Path) -> BuildKitConfig:
    """Load the ``buildkit.toml`` governing *cwd*, or defaults."""
    root = find_config_root(cwd)
    return load_config(root) if root is not None else BuildKitConfig()


async def discover(cwd: Path, config: BuildKitConfig) -> DiscoverResult:
    """Discover the current package and workspace using *config*.

    Raises:
        BuildKitError: No package exists at or above *cwd*.
    """
    reader = ManifestReader(build_config_glob=config.build_config_glob)
    result = await discover_workspace(
        cwd,
        reader=reader,
        exclude=config.exclude,
        follow=config.follow_kinds,
        is_workspace_ref=workspace_protocol(config.workspace_protocol),
    )
    if result.current_package is None:
        raise BuildKitError(
            code=E.WORKSPACE_NOT_FOUND,
            message=f'no package found at: {cwd}',
            hint='Run buildkit inside a directory with a package.json, or pass --cwd.',
        )
    return result


def select_packages(discovered: DiscoverResult) -> list[Package]:
    """Pick the packages a build starting at the current package covers.

    Raises:
        BuildKitError: The current package has no build config and is
            not a workspace root.
    """
    current = discovered.current_package
    workspace = discovered.workspace
    if current is None:
        return []
    if workspace is not None and current is workspace.root and not current.is_buildable:
        return list(workspace.members)
    if not current.is_buildable:
        raise BuildKitError(
            code=E.BUILD_NO_CONFIG,
            message=f"package '{current.name}' has no build config",
            hint=f'Add a build config next to {current.manifest_path}, or run from the workspace root.',
        )
    return [current]


async def plan_build(cwd: Path, *, all_members: bool = False) -> list[ScheduleEntry]:
    """Return the build schedule for *cwd* without building anything.

    Args:
        cwd: Directory to start discovery from.
        all_members: Schedule every workspace member, regardless of
            where *cwd* is.

    Returns:
        Schedule entries in build order.
    """
    config = load_config_for(cwd)
    discovered = await discover(cwd, config)
    if all_members and discovered.workspace is not None:
        return compute_schedule(discovered.workspace.members)
    return compute_schedule(select_packages(discovered))


async def run_build(options: BuildOptions) -> RunResult:
    """Build the packages selected from ``options.cwd``.

    Runs one pass in schedule order, then, with ``options.watch``,
    keeps rebuilding changed packages until the activity stops.

    Args:
        options: Build options.

    Returns:
        The result of the initial pass.

    Raises:
        BuildKitError: Discovery, configuration or scheduling failed
            (for example a dependency cycle). Individual build failures
            are reported in the result instead.
    """
    start = time.monotonic()
    config = load_config_for(options.cwd)
    discovered = await discover(options.cwd, config)
    packages = select_packages(discovered)

    context = BuildContext(
        env=resolve_env(options.env, config, options.environ),
        watch=options.watch,
        debug=options.debug,
        timeout=config.timeout,
    )
    logger.info('build_start', packages=len(packages), env=context.env.value, watch=options.watch)

    owns_activity = options.activity is None
    activity = options.activity or Activity.until_signal()
    observer = options.observer or create_reporter()
    try:
        dispatcher = await Dispatcher.create(
            packages,
            unit_factory=options.unit_factory,
            context=context,
            observer=observer,
            debounce_seconds=config.debounce_seconds,
            skip_dependents_on_failure=config.skip_dependents_on_failure,
            rebuild_dependents=config.rebuild_dependents,
        )
        with dispatcher.reporting():
            result = await dispatcher.run_once(activity)
            if options.watch and activity.is_active:
                dispatcher.log('buildkit', 'watching for changes, press Ctrl-C to stop')
                await dispatcher.watch(activity)
    finally:
        if owns_activity:
            activity.stop(reason='finished')
        logger.info('done', elapsed=format_time(time.monotonic() - start))
    return result


__all__ = [
    'BuildOptions',
    'discover',
    'load_config_for',
    'plan_build',
    'run_build',
    'select_packages',
]
