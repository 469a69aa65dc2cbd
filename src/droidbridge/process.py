"""Async helpers for running external commands and observing their output."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import suppress
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Literal, Sequence

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096

MessageKind = Literal["stdout", "stderr", "exit", "error"]
ExitErrorPredicate = Callable[[int], bool]


class ProcessError(RuntimeError):
    """Raised when an external command cannot be run to completion."""


class ProcessExitError(ProcessError):
    """Raised when a command exits with a status treated as a failure."""

    def __init__(self, executable: str, args: Sequence[str], returncode: int, stderr: str) -> None:
        self.executable = executable
        self.command_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        rendered = " ".join([executable, *args])
        details = stderr.strip() or "no stderr output"
        super().__init__(f"{rendered} exited with {returncode}: {details}")


class ProcessTimeoutError(ProcessError):
    """Raised when a command does not finish within its timeout."""


@dataclass(slots=True, frozen=True)
class ProcessMessage:
    kind: MessageKind
    data: str = ""
    exit_code: int | None = None
    error: BaseException | None = None


async def run_command(
    executable: str,
    args: Sequence[str],
    *,
    timeout: float | None = None,
) -> str:
    """Run ``executable`` to completion and return its trimmed stdout."""

    process = await _spawn(executable, args)
    try:
        if timeout is None:
            stdout_bytes, stderr_bytes = await process.communicate()
        else:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout,
            )
    except asyncio.TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        rendered = " ".join([executable, *args])
        raise ProcessTimeoutError(f"{rendered} timed out after {timeout}s") from exc
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    returncode = int(process.returncode or 0)
    logger.debug("%s %s exited with %s", executable, " ".join(args), returncode)
    if returncode != 0:
        raise ProcessExitError(executable, args, returncode, stderr)
    return stdout.strip()


async def observe_process(
    executable: str,
    args: Sequence[str],
    *,
    kill_tree_when_done: bool = False,
    is_exit_error: ExitErrorPredicate | None = None,
) -> AsyncIterator[ProcessMessage]:
    """Yield stdout/stderr chunks as they arrive, then a single exit message.

    Closing the generator early kills the process. With ``kill_tree_when_done``
    the command runs in its own session and the whole process group is killed
    once the generator finishes, however it finishes.
    """

    exit_is_error = is_exit_error or _nonzero
    process = await _spawn(executable, args, new_session=kill_tree_when_done)
    queue: asyncio.Queue[ProcessMessage | None] = asyncio.Queue()
    readers = [
        asyncio.create_task(_pump(process.stdout, "stdout", queue)),
        asyncio.create_task(_pump(process.stderr, "stderr", queue)),
    ]
    stderr_chunks: list[str] = []
    try:
        open_streams = len(readers)
        while open_streams:
            message = await queue.get()
            if message is None:
                open_streams -= 1
                continue
            if message.kind == "stderr":
                stderr_chunks.append(message.data)
            yield message

        returncode = await process.wait()
        logger.debug("%s %s exited with %s", executable, " ".join(args), returncode)
        if exit_is_error(returncode):
            raise ProcessExitError(executable, args, returncode, "".join(stderr_chunks))
        yield ProcessMessage(kind="exit", exit_code=returncode)
    finally:
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
        await _terminate(process, kill_tree=kill_tree_when_done)


async def collect_output(messages: AsyncIterator[ProcessMessage]) -> str:
    """Reduce a message stream to its concatenated stdout text."""

    chunks: list[str] = []
    async for message in messages:
        if message.kind == "stdout":
            chunks.append(message.data)
        elif message.kind == "error" and message.error is not None:
            raise message.error
    return "".join(chunks)


async def _spawn(
    executable: str,
    args: Sequence[str],
    *,
    new_session: bool = False,
) -> asyncio.subprocess.Process:
    logger.debug("spawning %s %s", executable, " ".join(args))
    try:
        return await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=new_session,
        )
    except OSError as exc:
        raise ProcessError(f"unable to run {executable}: {exc}") from exc


async def _pump(
    stream: asyncio.StreamReader | None,
    kind: MessageKind,
    queue: asyncio.Queue[ProcessMessage | None],
) -> None:
    try:
        if stream is None:
            return
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                return
            await queue.put(ProcessMessage(kind=kind, data=chunk.decode("utf-8", errors="replace")))
    finally:
        queue.put_nowait(None)


async def _terminate(process: asyncio.subprocess.Process, *, kill_tree: bool) -> None:
    if kill_tree:
        # The session leader's pid doubles as the process group id.
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGKILL)
    if process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def _nonzero(returncode: int) -> bool:
    return returncode != 0
