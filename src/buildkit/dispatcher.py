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

"""Build dispatcher: one-shot pass and watch-mode rebuild queue.

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ One-shot pass       │ Walk the schedule top to bottom, building one │
    │                     │ package at a time. A failure is reported and  │
    │                     │ the walk continues.                           │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ QueueEntry          │ A package's slot in the rebuild queue: its    │
    │                     │ unit, its priority, and whether a rebuild is  │
    │                     │ pending (dirty).                              │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Debounce            │ Wait until files stop changing for a moment   │
    │                     │ before queueing the rebuild. 3 saves in a row │
    │                     │ = 1 rebuild.                                  │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Single flight       │ Exactly one build runs at any instant, in     │
    │                     │ both modes.                                   │
    └─────────────────────┴────────────────────────────────────────────────┘

Watch mode::

    change ──▶ debounce timer (restarts on every change, capped at
                   │            3x the window after the first change)
                   │ fires
                   ▼
             enqueue (idempotent, priority order, stable)
                   │
                   ▼
             idle? ──yes──▶ pop head ──▶ build ──▶ pop next ... until empty
                   │
                   no: the running build pops it when done

Everything runs on one event loop. Watcher threads hand their events to
the loop before the dispatcher sees them, so the queue and the "build in
flight" slot are never touched concurrently.

Stopping the activity closes the queue, cancels pending timers, calls
``stop_watch`` once for every unit that was started, and waits for the
in-flight build (if any) to finish on its own.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Generator, Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from buildkit.activity import Activity
from buildkit.errors import AbortedError, BuildFailure, BuildKitError
from buildkit.graph import ScheduleEntry, compute_schedule
from buildkit.logging import get_logger, package_context
from buildkit.manifest import Package
from buildkit.observer import BuildObserver, BuildStatus, RunResult
from buildkit.units import BuildContext, BuildUnit, NoOpBuildUnit, UnitFactory, create_unit
from buildkit.workspace import reverse_deps

logger = get_logger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.1

# A burst of changes delays a rebuild by at most this many debounce windows.
DEBOUNCE_MAX_WAIT_FACTOR = 3


@dataclass(eq=False)
class QueueEntry:
    """A package's slot in the dispatcher.

    Attributes:
        unit: The build unit for the package.
        priority: Ordering key from the schedule. Higher builds earlier.
        is_dirty: Whether a rebuild is pending (debouncing or queued).
    """

    unit: BuildUnit
    priority: int
    is_dirty: bool = False

    @property
    def package(self) -> Package:
        """The package this entry builds."""
        return self.unit.package

    @property
    def name(self) -> str:
        """The package name."""
        return self.unit.package.name

    @property
    def buildable(self) -> bool:
        """Whether the unit does any work."""
        return not isinstance(self.unit, NoOpBuildUnit)


def _describe(exc: Exception) -> str:
    if isinstance(exc, BuildFailure):
        return f'{exc.info.message}\n{exc.output}' if exc.output else exc.info.message
    if isinstance(exc, BuildKitError):
        return exc.info.message
    return f'{type(exc).__name__}: {exc}'


class Dispatcher:
    """Drives build units in schedule order.

    Args:
        schedule: Entries from :func:`~buildkit.graph.compute_schedule`.
        units: One build unit per schedule entry, in the same order.
        observer: Receives progress notifications. Its failures are
            logged and otherwise ignored.
        debounce_seconds: Quiet period before a changed package is
            queued in watch mode.
        skip_dependents_on_failure: In a one-shot pass, skip every
            package that depends on a failed one.
        rebuild_dependents: In watch mode, queue the direct dependents
            of a package after it rebuilds successfully.
    """

    def __init__(
        self,
        schedule: Sequence[ScheduleEntry],
        units: Sequence[BuildUnit],
        *,
        observer: BuildObserver | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        skip_dependents_on_failure: bool = False,
        rebuild_dependents: bool = True,
    ) -> None:
        """Initialize the dispatcher. Nothing runs until a mode is started."""
        if len(schedule) != len(units):
            raise ValueError(f'expected {len(schedule)} build units, got {len(units)}')
        self._schedule = list(schedule)
        self._entries = [QueueEntry(unit=u, priority=s.priority) for s, u in zip(schedule, units, strict=True)]
        self._by_package: dict[Package, QueueEntry] = {e.package: e for e in self._entries}
        self._observer = observer or BuildObserver()
        self._debounce = debounce_seconds
        self._max_wait = debounce_seconds * DEBOUNCE_MAX_WAIT_FACTOR
        self._skip_dependents = skip_dependents_on_failure
        self._rebuild_dependents = rebuild_dependents
        self._observer_initialized = False

        # Watch-mode state.
        self._activity: Activity | None = None
        self._queue: list[QueueEntry] = []
        self._timers: dict[QueueEntry, asyncio.TimerHandle] = {}
        self._first_change: dict[QueueEntry, float] = {}
        self._building: asyncio.Task[None] | None = None
        self._watched: list[QueueEntry] = []

    @classmethod
    async def create(
        cls,
        packages: Iterable[Package],
        *,
        unit_factory: UnitFactory = create_unit,
        context: BuildContext | None = None,
        observer: BuildObserver | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        skip_dependents_on_failure: bool = False,
        rebuild_dependents: bool = True,
    ) -> Dispatcher:
        """Schedule *packages* and create their build units.

        Raises:
            DependencyCycleError: Before any unit is created.
        """
        schedule = compute_schedule(packages)
        ctx = context or BuildContext()
        units = await asyncio.gather(*(unit_factory(entry.package, ctx) for entry in schedule))
        return cls(
            schedule,
            list(units),
            observer=observer,
            debounce_seconds=debounce_seconds,
            skip_dependents_on_failure=skip_dependents_on_failure,
            rebuild_dependents=rebuild_dependents,
        )

    @property
    def schedule(self) -> list[ScheduleEntry]:
        """The build schedule, in build order."""
        return list(self._schedule)

    @property
    def entries(self) -> list[QueueEntry]:
        """All entries, in build order."""
        return list(self._entries)

    @property
    def queue(self) -> list[QueueEntry]:
        """Entries waiting to rebuild, head first."""
        return list(self._queue)

    @property
    def is_building(self) -> bool:
        """Whether a watch-mode build is in flight."""
        return self._building is not None

    def entry(self, name: str) -> QueueEntry:
        """Return the entry for the package named *name*.

        Raises:
            KeyError: No such package in this dispatcher.
        """
        for entry in self._entries:
            if entry.name == name:
                return entry
        raise KeyError(name)

    # Observer plumbing.

    def _notify(self, method: str, *args: object) -> bool:
        try:
            getattr(self._observer, method)(*args)
        except Exception as exc:  # noqa: BLE001 - a broken reporter must not break the build
            logger.warning('observer_failed', method=method, error=str(exc))
            return False
        return True

    @contextmanager
    def reporting(self) -> Generator[None]:
        """Hold the observer's context open around a run.

        Like every other observer call, a failing ``__enter__`` or
        ``__exit__`` is logged and otherwise ignored.
        """
        entered = self._notify('__enter__')
        try:
            yield
        except BaseException as exc:
            if entered:
                self._notify('__exit__', type(exc), exc, exc.__traceback__)
            raise
        if entered:
            self._notify('__exit__', None, None, None)

    def log(self, title: str, message: str, level: str = 'info') -> None:
        """Forward a free-form message to the observer."""
        self._notify('on_log', title, message, level)

    def _init_observer(self) -> None:
        if not self._observer_initialized:
            self._observer_initialized = True
            self._notify('init_packages', self._schedule)

    async def _build_one(self, entry: QueueEntry, activity: Activity) -> tuple[BuildStatus, str]:
        """Build one entry and report its outcome.

        Returns:
            The final status and, for failures, the error message.
        """
        name = entry.name
        self._notify('on_status', name, BuildStatus.BUSY)
        logger.debug('build_start', package=name)
        start = time.monotonic()
        try:
            with package_context(name):
                await entry.unit.build(activity)
        except AbortedError:
            self._notify('on_status', name, BuildStatus.SKIP, 'aborted')
            logger.debug('build_aborted', package=name)
            return BuildStatus.SKIP, ''
        except Exception as exc:  # noqa: BLE001 - failures are reported per package
            message = _describe(exc)
            headline = message.splitlines()[0] if message else ''
            self._notify('on_error', name, message)
            self._notify('on_status', name, BuildStatus.FAIL, headline)
            logger.debug('build_failed', package=name, error=headline)
            return BuildStatus.FAIL, message
        self._notify('on_status', name, BuildStatus.PASS)
        logger.debug('build_passed', package=name, duration=f'{time.monotonic() - start:.2f}s')
        return BuildStatus.PASS, ''

    # One-shot mode.

    async def run_once(self, activity: Activity) -> RunResult:
        """Build every entry once, strictly one at a time, in schedule order.

        Failures are reported and do not stop the pass. Stopping
        *activity* ends the pass before the next unit starts; the
        current and remaining packages are reported as skipped.

        Args:
            activity: Cancellation token checked before each unit.

        Returns:
            The :class:`RunResult`. ``aborted`` is set when *activity*
            stopped the pass.
        """
        self._init_observer()
        logger.info('dispatcher_start', packages=len(self._entries))
        start = time.monotonic()

        passed: list[str] = []
        failed: dict[str, str] = {}
        skipped: list[str] = []
        blocked: set[Package] = set()
        aborted = False

        for index, entry in enumerate(self._entries):
            name = entry.name
            if entry.package in blocked:
                skipped.append(name)
                self._notify('on_status', name, BuildStatus.SKIP, 'dependency failed')
                continue
            if not entry.buildable:
                skipped.append(name)
                self._notify('on_status', name, BuildStatus.SKIP, 'no build config')
                continue
            try:
                activity.ensure_active()
            except AbortedError:
                aborted = True
                for rest in self._entries[index:]:
                    skipped.append(rest.name)
                    self._notify('on_status', rest.name, BuildStatus.SKIP, 'aborted')
                break

            status, message = await self._build_one(entry, activity)
            if status is BuildStatus.PASS:
                passed.append(name)
            elif status is BuildStatus.FAIL:
                failed[name] = message
                if self._skip_dependents:
                    blocked.update(reverse_deps(entry.package))
            else:
                aborted = True
                skipped.append(name)
                for rest in self._entries[index + 1 :]:
                    skipped.append(rest.name)
                    self._notify('on_status', rest.name, BuildStatus.SKIP, 'aborted')
                break

        result = RunResult(
            passed=passed,
            failed=failed,
            skipped=skipped,
            aborted=aborted,
            duration=time.monotonic() - start,
        )
        self._notify('on_complete', result)
        logger.info('dispatcher_complete', summary=result.summary())
        return result

    # Watch mode.

    def _accepting(self) -> bool:
        return self._activity is not None and self._activity.is_active

    def notify_change(self, entry: QueueEntry) -> None:
        """Record a source change for *entry* and (re)start its debounce timer.

        The timer restarts on every change but never fires later than
        ``DEBOUNCE_MAX_WAIT_FACTOR`` windows after the first change of a
        burst, so a steady stream of changes still rebuilds. Changes for
        an entry already in the queue are absorbed by the pending rebuild.
        """
        if not self._accepting() or entry in self._queue:
            return
        handle = self._timers.pop(entry, None)
        if handle is not None:
            handle.cancel()
        entry.is_dirty = True
        loop = asyncio.get_running_loop()
        now = loop.time()
        deadline = self._first_change.setdefault(entry, now) + self._max_wait
        delay = min(self._debounce, max(0.0, deadline - now))
        self._timers[entry] = loop.call_later(delay, self._debounce_fired, entry)

    def _debounce_fired(self, entry: QueueEntry) -> None:
        self._timers.pop(entry, None)
        self.enqueue(entry)

    def enqueue(self, entry: QueueEntry) -> None:
        """Queue *entry* for a rebuild.

        A no-op if it is already queued. Otherwise it is inserted before
        the first entry with a strictly lower priority, after all entries
        of equal or higher priority.
        """
        if not self._accepting():
            return
        handle = self._timers.pop(entry, None)
        if handle is not None:
            handle.cancel()
        self._first_change.pop(entry, None)

        position = len(self._queue)
        for index, queued in enumerate(self._queue):
            if queued is entry:
                return
            if queued.priority < entry.priority:
                position = index
                break
        entry.is_dirty = True
        self._queue.insert(position, entry)
        self._notify('on_status', entry.name, BuildStatus.QUEUED)
        logger.debug('enqueued', package=entry.name, position=position, queued=len(self._queue))
        self._build_next()

    def _build_next(self) -> None:
        if self._building is not None or not self._queue or not self._accepting():
            return
        entry = self._queue.pop(0)
        entry.is_dirty = False
        self._building = asyncio.get_running_loop().create_task(self._rebuild(entry, self._activity))

    async def _rebuild(self, entry: QueueEntry, activity: Activity) -> None:
        try:
            status, _ = await self._build_one(entry, activity)
            if status is BuildStatus.PASS and self._rebuild_dependents:
                for dependent in entry.package.upstream:
                    dependent_entry = self._by_package.get(dependent)
                    if dependent_entry is not None and dependent_entry.buildable:
                        self.enqueue(dependent_entry)
        finally:
            self._building = None
            self._build_next()

    async def watch(self, activity: Activity) -> None:
        """Rebuild changed packages until *activity* stops.

        Returns once every watcher is closed and the in-flight build, if
        any, has finished.
        """
        self._init_observer()
        self._activity = activity
        if not activity.is_active:
            return

        for entry in self._entries:
            if not entry.buildable:
                continue
            try:
                entry.unit.start_watch(lambda e=entry: self.notify_change(e))
            except Exception as exc:  # noqa: BLE001 - keep watching the other packages
                self._notify('on_log', entry.name, f'failed to start watching: {exc}', 'error')
                logger.warning('watch_start_failed', package=entry.name, error=str(exc))
                continue
            self._watched.append(entry)

        logger.info('watch_start', packages=len(self._watched))
        await activity.wait()
        await self._teardown()

    async def _teardown(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._first_change.clear()

        for entry in self._queue:
            entry.is_dirty = False
            self._notify('on_status', entry.name, BuildStatus.IDLE)
        self._queue.clear()

        watched, self._watched = self._watched, []
        for entry in watched:
            try:
                entry.unit.stop_watch()
            except Exception as exc:  # noqa: BLE001 - every watcher must get its stop call
                logger.warning('watch_stop_failed', package=entry.name, error=str(exc))

        if self._building is not None:
            await asyncio.wait({self._building})
        logger.info('watch_stopped')


__all__ = [
    'DEFAULT_DEBOUNCE_SECONDS',
    'DEBOUNCE_MAX_WAIT_FACTOR',
    'Dispatcher',
    'QueueEntry',
]
