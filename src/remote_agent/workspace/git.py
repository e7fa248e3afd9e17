"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..errors import ToolInvocationError, ToolTimeoutError
from ..utils import sanitize_environment

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _discard_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class GitRunner:
    """Execute git commands asynchronously with a bounded timeout.

    A caller that is cancelled while git is running does not kill the process:
    the invocation is shielded, finishes on its own and its result is dropped.
    A timeout, on the other hand, kills the process and raises.
    """

    def __init__(self, executable: Path | None = None, *, timeout: float = 30.0) -> None:
        self._explicit = Path(executable) if executable is not None else None
        self.timeout = timeout

    @property
    def executable(self) -> str:
        if self._explicit is not None:
            return str(self._explicit)
        binary = shutil.which("git")
        if binary is None:
            raise ToolInvocationError("git executable not found on PATH", args=("git",))
        return binary

    async def run(
        self,
        *args: str,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> GitResult:
        """Run git and return its result without checking the exit code."""

        return await self._invoke(*args, cwd=cwd, timeout=timeout or self.timeout)

    async def check(
        self,
        *args: str,
        cwd: str | Path | None = None,
        timeout: float | None = None,
    ) -> GitResult:
        """Run git and raise :class:`ToolInvocationError` on a non-zero exit."""

        result = await self.run(*args, cwd=cwd, timeout=timeout)
        if not result.ok:
            raise ToolInvocationError(
                result.stderr.strip() or f"git exited with code {result.returncode}",
                args=result.args,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    async def _invoke(self, *args: str, cwd: str | Path | None, timeout: float) -> GitResult:
        cmd = [self.executable, *args]
        logger.debug("Running git", extra={"git_args": args, "cwd": str(cwd) if cwd else None})
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment({"GIT_TERMINAL_PROMPT": "0"}),
        )
        communicate = asyncio.ensure_future(process.communicate())
        communicate.add_done_callback(_discard_result)
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(asyncio.shield(communicate), timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await asyncio.gather(communicate, return_exceptions=True)
            raise ToolTimeoutError(
                f"git {' '.join(args)} timed out after {timeout:g}s",
                args=tuple(cmd),
            ) from exc

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that replays canned git results.

    Responses may be :class:`GitResult` instances or exceptions to raise.
    """

    def __init__(self, responses: Iterable[GitResult | Exception] | None = None) -> None:  # type: ignore[override]
        super().__init__(Path("/tmp/fake-git"))
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []

    def queue(self, *responses: GitResult | Exception) -> None:
        self._responses.extend(responses)

    async def _invoke(self, *args: str, cwd: str | Path | None, timeout: float) -> GitResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return GitResult(args=("git", *args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


__all__ = ["FakeGitRunner", "GitResult", "GitRunner"]
