"""Common plumbing shared by debug-bridge command wrappers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Sequence

from .devices import Device, DeviceSelector, device_args, parse_device_list
from .process import (
    ExitErrorPredicate,
    ProcessError,
    ProcessMessage,
    observe_process,
    run_command,
)

DeviceInfo = dict[str, str | None]


@dataclass(slots=True)
class DebugBridge:
    """Builds ``[-s <device>] <subcommand...>`` invocations of a bridge binary.

    Base for concrete bridges such as :class:`droidbridge.adb.Adb`, which supply
    the property lookups. Lookups a bridge does not implement are reported as
    unknown in :meth:`get_common_device_info`.
    """

    executable: str = "adb"
    command_timeout: float | None = 15.0

    async def run_short_command(self, device: DeviceSelector, args: Sequence[str]) -> str:
        return await self._run_command([*device_args(device), *args])

    def run_long_command(
        self,
        device: DeviceSelector,
        args: Sequence[str],
    ) -> AsyncIterator[ProcessMessage]:
        return self._observe([*device_args(device), *args], kill_tree_when_done=True)

    async def get_device_list(self) -> list[Device]:
        output = await self._run_command(["devices"])
        return parse_device_list(output)

    async def start_server(self) -> None:
        await self._run_command(["start-server"])

    async def kill_server(self) -> None:
        await self._run_command(["kill-server"])

    async def get_device_architecture(self, device: DeviceSelector) -> str:
        raise NotImplementedError

    async def get_api_version(self, device: DeviceSelector) -> str:
        raise NotImplementedError

    async def get_device_model(self, device: DeviceSelector) -> str:
        raise NotImplementedError

    async def get_common_device_info(self, device: DeviceSelector) -> DeviceInfo:
        return {
            "name": device,
            "architecture": await unknown_on_error(self.get_device_architecture(device)),
            "api_version": await unknown_on_error(self.get_api_version(device)),
            "model": await unknown_on_error(self.get_device_model(device)),
        }

    async def _run_command(self, args: list[str]) -> str:
        return await run_command(self.executable, args, timeout=self.command_timeout)

    def _observe(
        self,
        args: list[str],
        *,
        kill_tree_when_done: bool = False,
        is_exit_error: ExitErrorPredicate | None = None,
    ) -> AsyncIterator[ProcessMessage]:
        return observe_process(
            self.executable,
            args,
            kill_tree_when_done=kill_tree_when_done,
            is_exit_error=is_exit_error,
        )


async def unknown_on_error(lookup: Awaitable[str]) -> str | None:
    """Await an optional lookup, reporting a failed one as ``None``."""

    try:
        return await lookup
    except (ProcessError, NotImplementedError):
        return None
