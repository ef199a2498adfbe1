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

"""Build units: the per-package "compile this" operation.

The dispatcher only knows the :class:`BuildUnit` protocol. Two
implementations ship with buildkit:

- :class:`CommandBuildUnit` runs the targets of a package's build config
  as subprocesses and watches the package's files with watchdog.
- :class:`NoOpBuildUnit` stands in for packages without a build config.

Watch flow::

    watchdog thread              event loop
    ┌───────────────┐  call_soon_threadsafe  ┌──────────────────────┐
    │ on_any_event  │───────────────────────▶│ on_pending_change()  │
    │ (match globs) │                        │ (dispatcher debounce)│
    └───────────────┘                        └──────────────────────┘
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from buildkit._run import DEFAULT_TIMEOUT_SECONDS, run_command
from buildkit.activity import Activity
from buildkit.build_config import BuildConfig, BuildTarget, load_build_config
from buildkit.config import Env
from buildkit.errors import BuildFailure, E
from buildkit.logging import get_logger
from buildkit.manifest import Package

logger = get_logger(__name__)

# Seconds to wait for the watchdog thread to exit on stop.
_OBSERVER_JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class BuildContext:
    """Run-wide settings handed to every build unit.

    Attributes:
        env: Build environment.
        watch: Whether the run is in watch mode.
        debug: Whether debug output was requested.
        timeout: Default per-target timeout in seconds.
    """

    env: Env = Env.PRODUCTION
    watch: bool = False
    debug: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS


@runtime_checkable
class BuildUnit(Protocol):
    """Builds one package and optionally reports source changes."""

    @property
    def package(self) -> Package:
        """The package this unit builds."""
        ...

    async def build(self, activity: Activity) -> None:
        """Build the package.

        Raises:
            BuildFailure: The build failed.
            AbortedError: *activity* was stopped before work started.
        """
        ...

    def start_watch(self, on_pending_change: Callable[[], None]) -> None:
        """Start reporting source changes by calling *on_pending_change*.

        The callback must be invoked on the event loop thread.
        """
        ...

    def stop_watch(self) -> None:
        """Stop reporting changes. Called on the event loop; must not block it."""
        ...


UnitFactory = Callable[[Package, BuildContext], Awaitable[BuildUnit]]


class NoOpBuildUnit:
    """Unit for packages without a build config. Never builds, never watches."""

    def __init__(self, package: Package) -> None:
        """Wrap *package*."""
        self._package = package

    @property
    def package(self) -> Package:
        """The wrapped package."""
        return self._package

    async def build(self, activity: Activity) -> None:
        """Do nothing."""

    def start_watch(self, on_pending_change: Callable[[], None]) -> None:
        """Do nothing."""

    def stop_watch(self) -> None:
        """Do nothing."""


def _matches(relative: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(relative, pattern):
        return True
    # Let "src/**/*.ts" also match files directly under "src/".
    return '**/' in pattern and fnmatch.fnmatchcase(relative, pattern.replace('**/', ''))


class _ChangeHandler(FileSystemEventHandler):
    """Forwards relevant file events from the watchdog thread to the loop."""

    def __init__(
        self,
        root: Path,
        targets: tuple[BuildTarget, ...],
        notify: Callable[[str], None],
    ) -> None:
        super().__init__()
        self._root = root
        self._targets = targets
        self._notify = notify

    def is_relevant(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self._root).as_posix()
        except ValueError:
            return False
        for target in self._targets:
            if any(_matches(relative, p) for p in target.ignore):
                continue
            if any(_matches(relative, p) for p in target.watch):
                return True
        return False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in {'opened', 'closed_no_write'}:
            return
        paths = [event.src_path, getattr(event, 'dest_path', '')]
        for raw in paths:
            if not raw:
                continue
            path = Path(os.fsdecode(raw))
            if self.is_relevant(path):
                self._notify(str(path))
                return


class CommandBuildUnit:
    """Runs a package's build targets as subprocesses.

    Targets run one after another in the package directory. The
    activity is checked before each target, so a stop request takes
    effect between targets without killing a running command.

    Args:
        package: The package to build.
        config: Its parsed build config.
        context: Run-wide settings.
    """

    def __init__(self, package: Package, config: BuildConfig, context: BuildContext) -> None:
        """Initialize the unit without starting anything."""
        self._package = package
        self._config = config
        self._context = context
        self._observer: BaseObserver | None = None

    @property
    def package(self) -> Package:
        """The package this unit builds."""
        return self._package

    @property
    def config(self) -> BuildConfig:
        """The parsed build config."""
        return self._config

    @property
    def is_watching(self) -> bool:
        """Whether a watchdog observer is running."""
        return self._observer is not None

    def _env(self, target: BuildTarget) -> dict[str, str]:
        return {
            'BUILD_ENV': self._context.env.value,
            'BUILDKIT_WATCH': '1' if self._context.watch else '0',
            'BUILDKIT_DEBUG': '1' if self._context.debug else '0',
            'BUILDKIT_PACKAGE': self._package.name,
            **target.env,
        }

    async def build(self, activity: Activity) -> None:
        """Run every target in order, stopping at the first failure."""
        for target in self._config.targets:
            activity.ensure_active()
            timeout = target.timeout if target.timeout is not None else self._context.timeout
            logger.debug('target_start', package=self._package.name, target=target.name)
            result = await run_command(
                target.command,
                cwd=self._package.directory,
                env=self._env(target),
                timeout=timeout,
            )
            if self._context.debug and result.stdout:
                logger.debug('target_output', package=self._package.name, target=target.name, stdout=result.stdout)
            if result.timed_out:
                raise BuildFailure(
                    self._package.name,
                    f"target '{target.name}' timed out after {timeout:g}s",
                    output=result.output_tail(),
                    code=E.BUILD_TIMEOUT,
                )
            if not result.ok:
                raise BuildFailure(
                    self._package.name,
                    f"target '{target.name}' failed with exit code {result.return_code}: {result.command_str}",
                    output=result.output_tail(),
                )

    def start_watch(self, on_pending_change: Callable[[], None]) -> None:
        """Watch the package directory. Calling it again is a no-op."""
        if self._observer is not None:
            return
        loop = asyncio.get_running_loop()
        name = self._package.name

        def _notify(path: str) -> None:
            logger.debug('change_detected', package=name, path=path)
            loop.call_soon_threadsafe(on_pending_change)

        handler = _ChangeHandler(self._package.directory, self._config.targets, _notify)
        observer = Observer()
        observer.schedule(handler, str(self._package.directory), recursive=True)
        observer.start()
        self._observer = observer
        logger.debug('watch_started', package=name)

    def stop_watch(self) -> None:
        """Stop the watchdog observer. Calling it again is a no-op.

        On an event loop the observer thread is joined from a worker
        thread, so a slow watcher shutdown never stalls the loop.
        """
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            observer.join(timeout=_OBSERVER_JOIN_TIMEOUT)
        else:
            loop.run_in_executor(None, observer.join, _OBSERVER_JOIN_TIMEOUT)
        logger.debug('watch_stopped', package=self._package.name)


async def create_unit(package: Package, context: BuildContext) -> BuildUnit:
    """Default :data:`UnitFactory`.

    Returns a :class:`CommandBuildUnit` for packages with a build config
    and a :class:`NoOpBuildUnit` otherwise.
    """
    if package.build_config is None:
        return NoOpBuildUnit(package)
    config = await load_build_config(package.build_config)
    return CommandBuildUnit(package, config, context)


__all__ = [
    'BuildContext',
    'BuildUnit',
    'CommandBuildUnit',
    'NoOpBuildUnit',
    'UnitFactory',
    'create_unit',
]
