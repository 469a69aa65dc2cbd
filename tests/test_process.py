from __future__ import annotations

import asyncio
import os
import shlex
import sys
from contextlib import aclosing
from pathlib import Path

import pytest

from droidbridge.process import (
    ProcessError,
    ProcessExitError,
    ProcessTimeoutError,
    collect_output,
    observe_process,
    run_command,
)

PYTHON = sys.executable


@pytest.mark.asyncio
async def test_run_command_returns_trimmed_stdout() -> None:
    output = await run_command(PYTHON, ["-c", "print('  hello  ')"])

    assert output == "hello"


@pytest.mark.asyncio
async def test_run_command_raises_on_nonzero_exit() -> None:
    script = "import sys; sys.stderr.write('broken'); sys.exit(3)"

    with pytest.raises(ProcessExitError) as excinfo:
        await run_command(PYTHON, ["-c", script])

    assert excinfo.value.returncode == 3
    assert excinfo.value.stderr == "broken"
    assert "broken" in str(excinfo.value)


@pytest.mark.asyncio
async def test_run_command_times_out() -> None:
    with pytest.raises(ProcessTimeoutError):
        await run_command(PYTHON, ["-c", "import time; time.sleep(10)"], timeout=0.2)


@pytest.mark.asyncio
async def test_run_command_reports_missing_binary() -> None:
    with pytest.raises(ProcessError):
        await run_command("/nonexistent/droidbridge-adb", ["devices"])


@pytest.mark.asyncio
async def test_observe_process_streams_output_then_exit() -> None:
    script = "import sys; print('out'); sys.stdout.flush(); sys.stderr.write('err')"

    messages = [message async for message in observe_process(PYTHON, ["-c", script])]

    kinds = [message.kind for message in messages]
    assert kinds[-1] == "exit"
    assert messages[-1].exit_code == 0
    assert "".join(m.data for m in messages if m.kind == "stdout").strip() == "out"
    assert "".join(m.data for m in messages if m.kind == "stderr") == "err"


@pytest.mark.asyncio
async def test_observe_process_raises_for_error_exit() -> None:
    with pytest.raises(ProcessExitError):
        async for _ in observe_process(PYTHON, ["-c", "raise SystemExit(2)"]):
            pass


@pytest.mark.asyncio
async def test_observe_process_honours_exit_predicate() -> None:
    messages = [
        message
        async for message in observe_process(
            PYTHON,
            ["-c", "raise SystemExit(2)"],
            is_exit_error=lambda _code: False,
        )
    ]

    assert messages[-1].kind == "exit"
    assert messages[-1].exit_code == 2


@pytest.mark.asyncio
async def test_closing_observer_early_returns_first_chunk() -> None:
    script = "import time; print('1234 5678', flush=True); time.sleep(30)"
    stream = observe_process(PYTHON, ["-c", script], kill_tree_when_done=True)

    async with aclosing(stream):
        first = await anext(stream)

    assert first.kind == "stdout"
    assert first.data.split() == ["1234", "5678"]


@pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")
@pytest.mark.asyncio
async def test_closing_observer_early_kills_process_tree(tmp_path: Path) -> None:
    pidfile = tmp_path / "grandchild.pid"
    script = f"sleep 60 & echo $! > {shlex.quote(str(pidfile))}; echo go; wait"
    stream = observe_process("sh", ["-c", script], kill_tree_when_done=True)

    async with aclosing(stream):
        first = await anext(stream)

    assert first.kind == "stdout"
    assert first.data.strip() == "go"
    grandchild = int(pidfile.read_text())
    for _ in range(50):
        if not _running(grandchild):
            break
        await asyncio.sleep(0.05)
    assert not _running(grandchild)


@pytest.mark.asyncio
async def test_collect_output_joins_stdout() -> None:
    script = "print('a'); print('b')"

    output = await collect_output(observe_process(PYTHON, ["-c", script]))

    assert output.split() == ["a", "b"]


def _running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return not Path("/proc").is_dir()
    # The state letter follows the parenthesised command name; Z is a zombie.
    return stat.rsplit(")", 1)[1].split()[0] != "Z"
