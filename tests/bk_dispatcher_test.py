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

"""Tests for buildkit.dispatcher: one-shot pass and watch-mode queue."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from types import TracebackType

import pytest

from buildkit.activity import Activity
from buildkit.dispatcher import Dispatcher
from buildkit.errors import DependencyCycleError
from buildkit.graph import compute_schedule
from buildkit.manifest import Package
from buildkit.observer import BuildStatus
from buildkit.units import NoOpBuildUnit
from tests._fakes import FakeUnitFactory, RecordingObserver, make_package


def _chain() -> tuple[Package, Package, Package]:
    """C depends on B depends on A."""
    a = make_package('A')
    b = make_package('B', [a])
    c = make_package('C', [b])
    return a, b, c


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.005)


async def _start_watch(dispatcher: Dispatcher, activity: Activity) -> asyncio.Task[None]:
    task = asyncio.create_task(dispatcher.watch(activity))
    await asyncio.sleep(0.01)
    return task


async def _stop(activity: Activity, task: asyncio.Task[None]) -> None:
    activity.stop()
    await asyncio.wait_for(task, timeout=2.0)


class _ContextRecorder(RecordingObserver):
    """Records entering and leaving its context; optionally fails in both."""

    def __init__(self, *, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail

    def __enter__(self) -> _ContextRecorder:
        self.events.append(('enter',))
        if self.fail:
            raise RuntimeError('no terminal')
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.events.append(('exit', exc_type))
        if self.fail:
            raise RuntimeError('no terminal')


class TestDispatcherCreate:
    """Tests for Dispatcher construction."""

    @pytest.mark.asyncio
    async def test_units_follow_schedule(self) -> None:
        """Entries are created in schedule order with schedule priorities."""
        _, _, c = _chain()
        dispatcher = await Dispatcher.create([c], unit_factory=FakeUnitFactory())
        assert [e.name for e in dispatcher.entries] == ['A', 'B', 'C']
        assert [e.priority for e in dispatcher.entries] == [2, 1, 0]
        assert not any(e.is_dirty for e in dispatcher.entries)

    @pytest.mark.asyncio
    async def test_cycle_fails_before_units(self) -> None:
        """A cycle raises before any unit is created."""
        a = make_package('A')
        b = make_package('B', [a])
        a.add_dependency(b)
        factory = FakeUnitFactory()
        with pytest.raises(DependencyCycleError):
            await Dispatcher.create([a], unit_factory=factory)
        assert factory.contexts == []

    def test_mismatched_units(self) -> None:
        """Schedule and unit lists must line up."""
        a = make_package('A')
        with pytest.raises(ValueError, match='expected 1 build units'):
            Dispatcher(compute_schedule([a]), [])

    @pytest.mark.asyncio
    async def test_entry_lookup(self) -> None:
        """entry() finds by name and raises KeyError otherwise."""
        dispatcher = await Dispatcher.create([make_package('A')], unit_factory=FakeUnitFactory())
        assert dispatcher.entry('A').name == 'A'
        with pytest.raises(KeyError):
            dispatcher.entry('missing')


class TestRunOnce:
    """Tests for Dispatcher.run_once()."""

    @pytest.mark.asyncio
    async def test_builds_in_dependency_order(self) -> None:
        """A chain builds leaves first, one unit at a time."""
        _, _, c = _chain()
        factory = FakeUnitFactory(delay=0.01)
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([c], unit_factory=factory, observer=observer)

        result = await dispatcher.run_once(Activity())

        assert factory.log == ['A', 'B', 'C']
        assert result.passed == ['A', 'B', 'C']
        assert result.ok
        assert observer.initialized == ['A', 'B', 'C']
        assert observer.statuses('A') == [BuildStatus.BUSY, BuildStatus.PASS]
        assert observer.results == [result]
        assert all(u.max_running == 1 for u in factory.units.values())

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_pass(self) -> None:
        """A failed package is reported and the pass continues."""
        _, _, c = _chain()
        factory = FakeUnitFactory(failing={'A'})
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([c], unit_factory=factory, observer=observer)

        result = await dispatcher.run_once(Activity())

        assert factory.log == ['A', 'B', 'C']
        assert list(result.failed) == ['A']
        assert result.failed['A'].startswith('A exploded')
        assert 'line 2' in result.failed['A']
        assert result.passed == ['B', 'C']
        assert not result.ok
        assert observer.statuses('A') == [BuildStatus.BUSY, BuildStatus.FAIL]
        assert len(observer.errors()) == 1

    @pytest.mark.asyncio
    async def test_skip_dependents_on_failure(self) -> None:
        """With skipping enabled, dependents of a failure are not built."""
        _, _, c = _chain()
        x = make_package('X')
        factory = FakeUnitFactory(failing={'A'})
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create(
            [c, x],
            unit_factory=factory,
            observer=observer,
            skip_dependents_on_failure=True,
        )

        result = await dispatcher.run_once(Activity())

        assert factory.log == ['A', 'X']
        assert result.skipped == ['B', 'C']
        assert observer.statuses('B') == [BuildStatus.SKIP]
        assert ('status', 'C', BuildStatus.SKIP, 'dependency failed') in observer.events

    @pytest.mark.asyncio
    async def test_packages_without_build_config_skipped(self) -> None:
        """No-op units are reported as skipped, not built."""
        lib = make_package('lib', buildable=False)
        app = make_package('app', [lib])
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([app], unit_factory=factory, observer=observer)
        assert isinstance(dispatcher.entry('lib').unit, NoOpBuildUnit)

        result = await dispatcher.run_once(Activity())

        assert factory.log == ['app']
        assert result.skipped == ['lib']
        assert ('status', 'lib', BuildStatus.SKIP, 'no build config') in observer.events

    @pytest.mark.asyncio
    async def test_stopped_before_start(self) -> None:
        """A stopped activity builds nothing and marks the run aborted."""
        _, _, c = _chain()
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([c], unit_factory=factory)
        activity = Activity()
        activity.stop()

        result = await dispatcher.run_once(activity)

        assert factory.log == []
        assert result.aborted
        assert result.skipped == ['A', 'B', 'C']
        assert not result.failed

    @pytest.mark.asyncio
    async def test_stopped_mid_pass(self) -> None:
        """Stopping during a build lets it finish and skips the rest."""
        _, _, c = _chain()
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([c], unit_factory=factory, observer=observer)
        activity = Activity()
        factory.units['A'].on_build = activity.stop

        result = await dispatcher.run_once(activity)

        assert factory.log == ['A']
        assert result.passed == ['A']
        assert result.skipped == ['B', 'C']
        assert result.aborted
        assert not result.failed
        assert observer.statuses('B') == [BuildStatus.SKIP]
        assert observer.errors() == []

    @pytest.mark.asyncio
    async def test_broken_observer_ignored(self) -> None:
        """An observer that raises never breaks the build."""
        _, _, c = _chain()
        factory = FakeUnitFactory()
        observer = RecordingObserver(explode=True)
        dispatcher = await Dispatcher.create([c], unit_factory=factory, observer=observer)

        result = await dispatcher.run_once(Activity())

        assert result.ok
        assert factory.log == ['A', 'B', 'C']
        assert observer.results == [result]


class TestReporting:
    """Tests for Dispatcher.reporting() and Dispatcher.log()."""

    @pytest.mark.asyncio
    async def test_context_wraps_block(self) -> None:
        """The observer is entered before the block and exited after it."""
        observer = _ContextRecorder()
        dispatcher = await Dispatcher.create([make_package('A')], unit_factory=FakeUnitFactory(), observer=observer)
        with dispatcher.reporting():
            dispatcher.log('buildkit', 'hello')
        assert observer.events == [('enter',), ('log', 'buildkit', 'hello', 'info'), ('exit', None)]

    @pytest.mark.asyncio
    async def test_broken_context_ignored(self) -> None:
        """Failures entering or leaving the observer do not escape."""
        observer = _ContextRecorder(fail=True)
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([make_package('A')], unit_factory=factory, observer=observer)
        with dispatcher.reporting():
            result = await dispatcher.run_once(Activity())
        assert result.ok
        assert factory.log == ['A']
        assert ('exit', None) not in observer.events

    @pytest.mark.asyncio
    async def test_block_error_propagates(self) -> None:
        """An error inside the block reaches the observer's exit and the caller."""
        observer = _ContextRecorder()
        dispatcher = await Dispatcher.create([make_package('A')], unit_factory=FakeUnitFactory(), observer=observer)
        with pytest.raises(KeyError):
            with dispatcher.reporting():
                dispatcher.entry('missing')
        assert observer.events[-1] == ('exit', KeyError)

    @pytest.mark.asyncio
    async def test_broken_log_ignored(self) -> None:
        """log() swallows observer failures."""
        observer = RecordingObserver(explode=True)
        dispatcher = await Dispatcher.create([make_package('A')], unit_factory=FakeUnitFactory(), observer=observer)
        dispatcher.log('buildkit', 'hello', 'warning')
        assert observer.events == [('log', 'buildkit', 'hello', 'warning')]


class TestWatchQueue:
    """Tests for the watch-mode priority queue."""

    @pytest.mark.asyncio
    async def test_enqueue_orders_by_priority(self) -> None:
        """Queued entries are kept highest priority first."""
        _, _, c = _chain()
        x = make_package('X')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([c, x], unit_factory=factory, rebuild_dependents=False)
        factory.units['X'].delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('X'))
        dispatcher.enqueue(dispatcher.entry('C'))
        dispatcher.enqueue(dispatcher.entry('B'))
        dispatcher.enqueue(dispatcher.entry('A'))
        assert dispatcher.is_building
        assert [e.name for e in dispatcher.queue] == ['A', 'B', 'C']

        await _wait_for(lambda: len(factory.log) == 4)
        await _stop(activity, task)
        assert factory.log == ['X', 'A', 'B', 'C']

    @pytest.mark.asyncio
    async def test_enqueue_idempotent(self) -> None:
        """Queueing an entry twice keeps one slot and one QUEUED event."""
        x = make_package('X')
        a = make_package('A')
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([x, a], unit_factory=factory, observer=observer)
        factory.units['X'].delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('X'))
        dispatcher.enqueue(dispatcher.entry('A'))
        dispatcher.enqueue(dispatcher.entry('A'))
        assert [e.name for e in dispatcher.queue] == ['A']
        assert observer.statuses('A').count(BuildStatus.QUEUED) == 1
        assert dispatcher.entry('A').is_dirty

        await _wait_for(lambda: factory.units['A'].builds == 1)
        await _stop(activity, task)
        assert factory.units['A'].builds == 1
        assert not dispatcher.entry('A').is_dirty

    @pytest.mark.asyncio
    async def test_equal_priority_is_fifo(self) -> None:
        """Entries of equal priority keep their arrival order."""
        x, p, q = make_package('X'), make_package('P'), make_package('Q')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([x, p, q], unit_factory=factory)
        factory.units['X'].delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('X'))
        dispatcher.enqueue(dispatcher.entry('Q'))
        dispatcher.enqueue(dispatcher.entry('P'))
        assert [e.name for e in dispatcher.queue] == ['Q', 'P']

        await _wait_for(lambda: len(factory.log) == 3)
        await _stop(activity, task)
        assert factory.log == ['X', 'Q', 'P']

    @pytest.mark.asyncio
    async def test_single_flight(self) -> None:
        """At most one build runs at any instant."""
        packages = [make_package(n) for n in 'ABCD']
        factory = FakeUnitFactory(delay=0.02)
        dispatcher = await Dispatcher.create(packages, unit_factory=factory)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        running: list[int] = []
        for unit in factory.units.values():
            unit.on_build = lambda: running.append(sum(u.running for u in factory.units.values()))
        for name in 'ABCD':
            dispatcher.enqueue(dispatcher.entry(name))

        await _wait_for(lambda: len(factory.log) == 4)
        await _stop(activity, task)
        assert running == [0, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_enqueue_ignored_before_watch_and_after_stop(self) -> None:
        """The queue only accepts entries while watching."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory)
        dispatcher.enqueue(dispatcher.entry('A'))
        assert dispatcher.queue == []

        activity = Activity()
        task = await _start_watch(dispatcher, activity)
        await _stop(activity, task)
        dispatcher.enqueue(dispatcher.entry('A'))
        assert dispatcher.queue == []
        assert factory.log == []


class TestWatchDebounce:
    """Tests for change debouncing in watch mode."""

    @pytest.mark.asyncio
    async def test_burst_of_changes_builds_once(self) -> None:
        """Three changes 20ms apart cause one build, at least 100ms after the last."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, debounce_seconds=0.1)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)
        unit = factory.units['A']

        for _ in range(3):
            unit.change()
            last_change = time.monotonic()
            await asyncio.sleep(0.02)
        assert unit.builds == 0
        assert dispatcher.entry('A').is_dirty

        await _wait_for(lambda: unit.builds == 1)
        await asyncio.sleep(0.2)
        await _stop(activity, task)

        assert unit.builds == 1
        assert unit.build_times[0] - last_change >= 0.095

    @pytest.mark.asyncio
    async def test_steady_changes_still_build(self) -> None:
        """Changes arriving faster than the window still rebuild within 3 windows."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, debounce_seconds=0.1)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)
        unit = factory.units['A']

        first_change = time.monotonic()
        for _ in range(30):
            unit.change()
            await asyncio.sleep(0.03)
        builds_while_changing = unit.builds
        await _stop(activity, task)

        assert builds_while_changing >= 2
        assert unit.build_times[0] - first_change < 0.45

    @pytest.mark.asyncio
    async def test_change_while_queued_absorbed(self) -> None:
        """A change for an entry already queued does not add a build."""
        x, a = make_package('X'), make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([x, a], unit_factory=factory, debounce_seconds=0.01)
        factory.units['X'].delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('X'))
        dispatcher.enqueue(dispatcher.entry('A'))
        factory.units['A'].change()

        await _wait_for(lambda: factory.units['A'].builds == 1)
        await asyncio.sleep(0.05)
        await _stop(activity, task)
        assert factory.units['A'].builds == 1

    @pytest.mark.asyncio
    async def test_change_during_build_rebuilds(self) -> None:
        """A change reported while the package builds triggers another build."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, debounce_seconds=0.01)
        unit = factory.units['A']
        unit.delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        unit.change()
        await _wait_for(lambda: unit.running == 1)
        assert not dispatcher.entry('A').is_dirty
        unit.change()

        await _wait_for(lambda: unit.builds == 2)
        await _stop(activity, task)
        assert unit.builds == 2

    @pytest.mark.asyncio
    async def test_pending_timer_cancelled_on_stop(self) -> None:
        """Stopping during the debounce window prevents the build."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, debounce_seconds=0.05)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        factory.units['A'].change()
        await _stop(activity, task)
        await asyncio.sleep(0.1)
        assert factory.units['A'].builds == 0


class TestWatchDependents:
    """Tests for rebuilding dependents after a watch-mode build."""

    @pytest.mark.asyncio
    async def test_dependents_rebuilt(self) -> None:
        """A successful rebuild queues direct dependents, transitively."""
        _, _, c = _chain()
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([c], unit_factory=factory, debounce_seconds=0.01)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        factory.units['A'].change()
        await _wait_for(lambda: len(factory.log) == 3)
        await _stop(activity, task)
        assert factory.log == ['A', 'B', 'C']

    @pytest.mark.asyncio
    async def test_dependents_not_rebuilt_when_disabled(self) -> None:
        """With rebuild_dependents off only the changed package builds."""
        _, _, c = _chain()
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create(
            [c],
            unit_factory=factory,
            debounce_seconds=0.01,
            rebuild_dependents=False,
        )
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        factory.units['A'].change()
        await _wait_for(lambda: len(factory.log) == 1)
        await asyncio.sleep(0.05)
        await _stop(activity, task)
        assert factory.log == ['A']

    @pytest.mark.asyncio
    async def test_failure_does_not_rebuild_dependents(self) -> None:
        """A failed rebuild leaves dependents alone and watching continues."""
        _, _, c = _chain()
        factory = FakeUnitFactory(failing={'A'})
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([c], unit_factory=factory, observer=observer, debounce_seconds=0.01)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        factory.units['A'].change()
        await _wait_for(lambda: BuildStatus.FAIL in observer.statuses('A'))
        factory.units['C'].change()
        await _wait_for(lambda: factory.units['C'].builds == 1)
        await _stop(activity, task)
        assert factory.log == ['A', 'C']


class TestWatchLifecycle:
    """Tests for starting and stopping watch mode."""

    @pytest.mark.asyncio
    async def test_watchers_started_and_stopped_once(self) -> None:
        """Every buildable unit is started once and stopped exactly once."""
        lib = make_package('lib', buildable=False)
        app = make_package('app', [lib])
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([app], unit_factory=factory)
        activity = Activity()
        task = await _start_watch(dispatcher, activity)
        unit = factory.units['app']
        assert unit.start_calls == 1

        activity.stop()
        activity.stop()
        await asyncio.wait_for(task, timeout=2.0)
        assert unit.stop_calls == 1

    @pytest.mark.asyncio
    async def test_watch_on_stopped_activity(self) -> None:
        """Watching with a stopped activity returns without starting watchers."""
        a = make_package('A')
        factory = FakeUnitFactory()
        dispatcher = await Dispatcher.create([a], unit_factory=factory)
        activity = Activity()
        activity.stop()
        await asyncio.wait_for(dispatcher.watch(activity), timeout=1.0)
        assert factory.units['A'].start_calls == 0
        assert factory.units['A'].stop_calls == 0

    @pytest.mark.asyncio
    async def test_in_flight_build_finishes(self) -> None:
        """Stopping waits for the running build instead of killing it."""
        a = make_package('A')
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, observer=observer)
        unit = factory.units['A']
        unit.delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('A'))
        await _wait_for(lambda: unit.running == 1)
        await _stop(activity, task)

        assert unit.running == 0
        assert observer.statuses('A')[-1] is BuildStatus.PASS
        assert not dispatcher.is_building

    @pytest.mark.asyncio
    async def test_queued_entries_reset_on_stop(self) -> None:
        """Entries still queued at stop go back to idle and are not built."""
        x, a = make_package('X'), make_package('A')
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([x, a], unit_factory=factory, observer=observer)
        factory.units['X'].delay = 0.1
        activity = Activity()
        task = await _start_watch(dispatcher, activity)

        dispatcher.enqueue(dispatcher.entry('X'))
        dispatcher.enqueue(dispatcher.entry('A'))
        await _stop(activity, task)

        assert factory.units['A'].builds == 0
        assert observer.statuses('A')[-1] is BuildStatus.IDLE
        assert not dispatcher.entry('A').is_dirty
        assert dispatcher.queue == []

    @pytest.mark.asyncio
    async def test_failing_watcher_does_not_block_others(self) -> None:
        """A unit whose watcher cannot start is reported and skipped."""
        a, b = make_package('A'), make_package('B')
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([a, b], unit_factory=factory, observer=observer)

        def _refuse(_callback: Callable[[], None]) -> None:
            raise OSError('inotify limit reached')

        factory.units['A'].start_watch = _refuse  # type: ignore[method-assign]
        activity = Activity()
        task = await _start_watch(dispatcher, activity)
        await _stop(activity, task)

        assert factory.units['B'].start_calls == 1
        assert factory.units['B'].stop_calls == 1
        assert factory.units['A'].stop_calls == 0
        logs = [e for e in observer.events if e[0] == 'log']
        assert logs and logs[0][1] == 'A' and logs[0][3] == 'error'

    @pytest.mark.asyncio
    async def test_run_once_then_watch_initializes_observer_once(self) -> None:
        """The observer sees init_packages once across both modes."""
        a = make_package('A')
        factory = FakeUnitFactory()
        observer = RecordingObserver()
        dispatcher = await Dispatcher.create([a], unit_factory=factory, observer=observer)
        activity = Activity()
        await dispatcher.run_once(activity)
        task = await _start_watch(dispatcher, activity)
        await _stop(activity, task)
        assert [e for e in observer.events if e[0] == 'init'] == [('init', 1)]
