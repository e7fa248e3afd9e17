"""Assistant client contract and the JSON-lines subprocess runner behind it."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from contextlib import aclosing
from pathlib import Path
from typing import Any, AsyncIterator, ClassVar, Iterable, Protocol

from ..errors import AssistantNotFoundError, AssistantStreamError
from ..models import StreamEvent
from ..utils import sanitize_environment, truncate

logger = logging.getLogger(__name__)

# Assistant CLIs emit large single-line JSON payloads (file contents, diffs).
_STREAM_LIMIT = 16 * 1024 * 1024


class AssistantClient(Protocol):
    """Streams assistant output for one prompt."""

    def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        ...

    def get_type(self) -> str:
        ...


class CliAssistantClient:
    """Run an assistant CLI and translate its JSON-lines output into stream events.

    Subclasses provide the executable name, the argument list and the
    translation of one decoded JSON payload into zero or more events.
    """

    executable_name: ClassVar[str] = ""
    assistant_type: ClassVar[str] = ""

    _background: ClassVar[set[asyncio.Task]] = set()

    def __init__(self, executable: Path | None = None, *, timeout: float = 900.0) -> None:
        self._executable_path = self._resolve_executable(executable)
        self.timeout = timeout

    @classmethod
    def _resolve_executable(cls, explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AssistantNotFoundError(f"{cls.executable_name} executable not found at {candidate}")

        binary = shutil.which(cls.executable_name)
        if binary is None:
            raise AssistantNotFoundError(f"{cls.executable_name} CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def get_type(self) -> str:
        return self.assistant_type

    def build_args(self, prompt: str, resume_session_id: str | None) -> list[str]:
        raise NotImplementedError

    def translate(self, payload: dict[str, Any], state: dict[str, Any]) -> Iterable[StreamEvent]:
        raise NotImplementedError

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        if resume_session_id:
            logger.info(
                "Resuming assistant session",
                extra={"assistant": self.assistant_type, "resume_session_id": resume_session_id},
            )
        else:
            logger.info("Starting assistant session", extra={"assistant": self.assistant_type, "cwd": cwd})

        state: dict[str, Any] = {}
        stream = self._stream_json(self.build_args(prompt, resume_session_id), cwd)
        async with aclosing(stream) as payloads:
            async for payload in payloads:
                for event in self.translate(payload, state):
                    yield event

    async def _stream_json(self, args: list[str], cwd: str) -> AsyncIterator[dict[str, Any]]:
        process = await asyncio.create_subprocess_exec(
            str(self._executable_path),
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
            limit=_STREAM_LIMIT,
        )
        stderr_task = asyncio.ensure_future(process.stderr.read())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        finished = False
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                line = await asyncio.wait_for(process.stdout.readline(), remaining)
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON assistant output", extra={"line": truncate(text, 200)})
                    continue
                if isinstance(payload, dict):
                    yield payload

            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            finished = True
            if returncode != 0:
                raise AssistantStreamError(
                    f"{self.executable_name} exited with code {returncode}: {truncate(stderr.strip(), 500)}"
                )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            finished = True
            raise AssistantStreamError(
                f"{self.executable_name} did not finish within {self.timeout:g}s"
            ) from exc
        finally:
            if not finished and process.returncode is None:
                # Consumer stopped early: let the assistant finish its writes.
                task = asyncio.ensure_future(self._drain(process))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    @staticmethod
    async def _drain(process: asyncio.subprocess.Process) -> None:
        while await process.stdout.read(65536):
            pass
        await process.wait()


class FakeAssistantClient:
    """Test double that replays a fixed list of events and records its calls.

    An exception placed in ``events`` is raised at that point of the stream.
    """

    def __init__(self, events: Iterable[StreamEvent | Exception] | None = None, *, assistant_type: str = "claude") -> None:
        self._events = list(events or [])
        self._type = assistant_type
        self.calls: list[dict[str, Any]] = []

    def get_type(self) -> str:
        return self._type

    async def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append({"prompt": prompt, "cwd": cwd, "resume_session_id": resume_session_id})
        for event in self._events:
            if isinstance(event, Exception):
                raise event
            yield event


__all__ = ["AssistantClient", "CliAssistantClient", "FakeAssistantClient"]
