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

"""Async subprocess execution for build commands.

Every command runs with an explicit working directory. The process-wide
current directory is never changed, so a build never depends on where
buildkit itself was started.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from buildkit.logging import get_logger

log = get_logger('buildkit.run')

# Default timeout for a build command (10 minutes).
DEFAULT_TIMEOUT_SECONDS = 600.0

# Exit code reported when the program cannot be started at all.
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Result of a subprocess invocation.

    Attributes:
        command: The command that was executed.
        return_code: Process exit code (0 = success).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration: Wall-clock duration in seconds.
        timed_out: Whether the process was killed after its timeout.
    """

    command: list[str]
    return_code: int
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """Whether the command exited successfully."""
        return self.return_code == 0 and not self.timed_out

    @property
    def command_str(self) -> str:
        """The command as a shell-quoted string (for display only)."""
        return shlex.join(self.command)

    def output_tail(self, lines: int = 20) -> str:
        """Return the last *lines* lines of combined stderr and stdout."""
        combined = '\n'.join(part for part in (self.stdout.rstrip(), self.stderr.rstrip()) if part)
        return '\n'.join(combined.splitlines()[-lines:])


async def run_command(
    cmd: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        cmd: Program and arguments.
        cwd: Working directory for the child process.
        env: Variables added to the inherited environment.
        timeout: Seconds before the process is killed.

    Returns:
        A :class:`CommandResult`. Failures are reported through the
        result, never raised.
    """
    command = list(cmd)
    child_env = {**os.environ, **(env or {})}
    log.debug('run_command', cmd=shlex.join(command), cwd=str(cwd))

    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=cwd,
            env=child_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        log.warning('command_not_started', cmd=command[0], error=str(exc))
        return CommandResult(
            command=command,
            return_code=COMMAND_NOT_FOUND,
            stderr=str(exc),
            duration=time.monotonic() - start,
        )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        stdout, stderr = await proc.communicate()
        duration = time.monotonic() - start
        log.warning('command_timeout', cmd=shlex.join(command), timeout=timeout)
        return CommandResult(
            command=command,
            return_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors='replace'),
            stderr=stderr.decode(errors='replace'),
            duration=duration,
            timed_out=True,
        )
    except asyncio.CancelledError:
        proc.kill()
        raise

    result = CommandResult(
        command=command,
        return_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors='replace'),
        stderr=stderr.decode(errors='replace'),
        duration=time.monotonic() - start,
    )
    log.debug(
        'command_complete',
        cmd=result.command_str,
        return_code=result.return_code,
        duration=f'{result.duration:.2f}s',
    )
    return result


__all__ = [
    'DEFAULT_TIMEOUT_SECONDS',
    'CommandResult',
    'run_command',
]
