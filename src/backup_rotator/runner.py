"""Process runner for external dump invocations.

Defines the ``ProcessRunner`` Protocol the orchestrator calls for every
``DumpTask`` and ``SubprocessRunner``, which executes the argument list
directly (no shell) via ``asyncio.create_subprocess_exec``.

Usage:
    from backup_rotator.runner import SubprocessRunner

    runner = SubprocessRunner()
    result = await runner.run(["mysqldump", "--version"], timeout=30)
    if result.returncode != 0:
        print(result.stderr)
"""

import asyncio
import os
from typing import Protocol

from pydantic import BaseModel


class ProcessResult(BaseModel):
    """Exit status and captured stderr of one process."""

    returncode: int | None
    stderr: str = ""
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class ProcessRunner(Protocol):
    """Executes one argument list and waits for it to finish."""

    async def run(
        self,
        arguments: list[str],
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessResult:
        """Run ``arguments[0]`` with the remaining arguments.

        Args:
            arguments: Program followed by its arguments.
            timeout: Seconds before the process is killed; None waits forever.
            env: Variables added to the inherited environment.

        Returns:
            ``ProcessResult``; a killed process has ``timed_out=True``.
        """
        ...


class SubprocessRunner:
    """``ProcessRunner`` backed by ``asyncio.create_subprocess_exec``.

    stdout is discarded (dump output goes to ``--result-file``); stderr is
    captured for error reporting.
    """

    async def run(
        self,
        arguments: list[str],
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *arguments,
                env={**os.environ, **env} if env else None,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ProcessResult(returncode=None, stderr=str(e))

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ProcessResult(
                returncode=process.returncode,
                stderr=f"timed out after {timeout}s",
                timed_out=True,
            )

        return ProcessResult(
            returncode=process.returncode,
            stderr=stderr.decode(errors="replace").strip() if stderr else "",
        )
