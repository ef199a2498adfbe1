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

"""Cooperative cancellation token shared by one scheduling run.

An :class:`Activity` starts active and can be stopped exactly once.
Stopping never interrupts running work. Long operations poll
:meth:`Activity.ensure_active` before committing to something expensive,
and watch mode awaits :meth:`Activity.wait` to know when to tear down.

Lifecycle::

    Activity()          stop()           stop() again
    ┌────────┐  ─────────────────▶  ┌─────────┐  ──────▶  (no-op)
    │ active │                      │ stopped │
    └────────┘                      └─────────┘
                                    callbacks fire once,
                                    wait() returns,
                                    ensure_active() raises AbortedError

Usage::

    activity = Activity.until_signal()   # Ctrl-C / SIGTERM stop it
    activity.ensure_active()
    await activity.wait()

:data:`STOPPED` is a shared, already-stopped instance for callers that
have no ambient cancellation and want units to treat the run as final.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Callable

from buildkit.errors import AbortedError
from buildkit.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class Activity:
    """A one-way active → stopped flag with a completion signal."""

    def __init__(self) -> None:
        """Create an active activity."""
        self._active = True
        self._reason = ''
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_active(self) -> bool:
        """Whether :meth:`stop` has not been called yet."""
        return self._active

    @property
    def reason(self) -> str:
        """Why the activity was stopped, or empty string while active."""
        return self._reason

    def stop(self, reason: str = '') -> None:
        """Stop the activity. Only the first call has any effect.

        Registered callbacks run synchronously, in registration order.
        A callback that raises is logged and does not prevent the others
        from running.

        Args:
            reason: Free-form text kept for diagnostics.
        """
        if not self._active:
            return
        self._active = False
        self._reason = reason
        self._event.set()
        logger.debug('activity_stopped', reason=reason)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:  # noqa: BLE001 - one bad callback must not block the rest
                logger.warning('activity_callback_failed', error=str(exc))

    def ensure_active(self) -> None:
        """Raise :class:`AbortedError` if the activity has been stopped."""
        if not self._active:
            raise AbortedError()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run *callback* when the activity stops.

        If the activity is already stopped, *callback* runs immediately.

        Returns:
            A function that unregisters the callback.
        """
        if not self._active:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def wait(self) -> None:
        """Return once the activity has been stopped."""
        await self._event.wait()

    @classmethod
    def until_signal(
        cls,
        *signals: signal.Signals,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> Activity:
        """Create an activity stopped by process signals.

        Defaults to SIGINT and SIGTERM. Handlers are installed on the
        running event loop and removed again once the activity stops.
        On Windows no handlers are installed; ``KeyboardInterrupt``
        propagates as usual.

        Args:
            *signals: Signals that stop the activity.
            loop: Event loop to install handlers on. Defaults to the
                running loop.

        Returns:
            A new, active :class:`Activity`.
        """
        activity = cls()
        if sys.platform == 'win32':
            return activity

        watched = signals or _DEFAULT_SIGNALS
        event_loop = loop or asyncio.get_running_loop()

        def _on_signal(sig: signal.Signals) -> None:
            logger.info('stopping_watchers', signal=sig.name)
            activity.stop(reason=sig.name)

        installed: list[signal.Signals] = []
        for sig in watched:
            try:
                event_loop.add_signal_handler(sig, _on_signal, sig)
                installed.append(sig)
            except (ValueError, OSError, RuntimeError, NotImplementedError):
                # Not the main thread, or the platform lacks the signal.
                logger.debug('signal_handler_unavailable', signal=sig.name)

        def _remove_handlers() -> None:
            for sig in installed:
                try:
                    event_loop.remove_signal_handler(sig)
                except (ValueError, OSError, RuntimeError):
                    logger.debug('signal_handler_not_removed', signal=sig.name)

        activity.add_callback(_remove_handlers)
        return activity


def _stopped_activity() -> Activity:
    activity = Activity()
    activity.stop(reason='completed')
    return activity


STOPPED: Activity = _stopped_activity()


__all__ = [
    'STOPPED',
    'Activity',
]
