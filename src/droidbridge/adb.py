"""Async wrappers around adb device, package and process commands."""

from __future__ import annotations

import asyncio
import os
import re
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator

from .bridge import DebugBridge, DeviceInfo, unknown_on_error
from .devices import DeviceSelector, device_args
from .process import ProcessError, ProcessMessage
from .tables import parse_ps_table_output

PACKAGE_PREFIX = "package:"
JAVA_PROCESS_FIELDS = ("user", "pid", "name")
EMULATOR_MODEL = "sdk"

_URI_PATTERN = re.compile(r"^[A-Za-z][\w+.-]*://")


@dataclass(slots=True)
class Adb(DebugBridge):
    """Asynchronous helper for invoking adb commands."""

    jdwp_scan_timeout: float | None = 5.0

    async def get_android_prop(self, device: DeviceSelector, key: str) -> str:
        output = await self.run_short_command(device, ["shell", "getprop", key])
        return output.strip()

    async def get_device_architecture(self, device: DeviceSelector) -> str:
        return await self.get_android_prop(device, "ro.product.cpu.abi")

    async def get_device_model(self, device: DeviceSelector) -> str:
        model = await self.get_android_prop(device, "ro.product.model")
        return "emulator" if model == EMULATOR_MODEL else model

    async def get_api_version(self, device: DeviceSelector) -> str:
        return await self.get_android_prop(device, "ro.build.version.sdk")

    async def get_os_version(self, device: DeviceSelector) -> str:
        return await self.get_android_prop(device, "ro.build.version.release")

    async def get_brand(self, device: DeviceSelector) -> str:
        return await self.get_android_prop(device, "ro.product.brand")

    async def get_manufacturer(self, device: DeviceSelector) -> str:
        return await self.get_android_prop(device, "ro.product.manufacturer")

    async def get_device_info(self, device: DeviceSelector) -> DeviceInfo:
        info = await self.get_common_device_info(device)
        info["android_version"] = await unknown_on_error(self.get_os_version(device))
        info["manufacturer"] = await unknown_on_error(self.get_manufacturer(device))
        info["brand"] = await unknown_on_error(self.get_brand(device))
        return info

    async def get_installed_packages(self, device: DeviceSelector) -> list[str]:
        output = await self.run_short_command(device, ["shell", "pm", "list", "packages"])
        return [entry[len(PACKAGE_PREFIX):] for entry in output.strip().split()]

    async def is_package_installed(self, device: DeviceSelector, package: str) -> bool:
        packages = await self.get_installed_packages(device)
        return package in packages

    def install_package(
        self,
        device: DeviceSelector,
        package_path: str | os.PathLike[str],
    ) -> AsyncIterator[ProcessMessage]:
        path = os.fspath(package_path)
        if _URI_PATTERN.match(path):
            raise ValueError(f"Package path must be local, got {path!r}")
        return self.run_long_command(device, ["install", "-r", path])

    def uninstall_package(
        self,
        device: DeviceSelector,
        package: str,
    ) -> AsyncIterator[ProcessMessage]:
        return self.run_long_command(device, ["uninstall", package])

    async def forward_jdwp_port_to_pid(self, device: DeviceSelector, tcp_port: int, pid: int) -> str:
        return await self.run_short_command(device, ["forward", f"tcp:{tcp_port}", f"jdwp:{pid}"])

    async def launch_activity(
        self,
        device: DeviceSelector,
        package: str,
        activity: str,
        debug: bool,
        action: str | None = None,
    ) -> str:
        args = ["shell", "am", "start", "-W", "-n"]
        if action is not None:
            args.extend(["-a", action])
        if debug:
            args.extend(["-N", "-D"])
        args.append(f"{package}/{activity}")
        return await self.run_short_command(device, args)

    async def activity_exists(self, device: DeviceSelector, package: str, activity: str) -> bool:
        component = f"{package}/{activity}"
        output = await self._run_command([*device_args(device), "shell", "dumpsys", "package"])
        return component in output

    async def get_java_processes(self, device: DeviceSelector) -> list[dict[str, str]]:
        ps_output = await self.run_short_command(device, ["shell", "ps"])
        processes = parse_ps_table_output(ps_output.strip(), JAVA_PROCESS_FIELDS)

        first = await self._first_jdwp_message(device)
        jdwp_pids: set[str] = set()
        if first.kind == "stdout":
            jdwp_pids = {pid.strip() for pid in first.data.split()}
        return [row for row in processes if row.get("pid") in jdwp_pids]

    async def dumpsys_package(self, device: DeviceSelector, package: str) -> str | None:
        if not await self.is_package_installed(device, package):
            return None
        return await self.run_short_command(device, ["shell", "dumpsys", "package", package])

    async def _first_jdwp_message(self, device: DeviceSelector) -> ProcessMessage:
        # adb jdwp keeps running; only the first chunk of pids is read.
        messages = self._observe(
            [*device_args(device), "jdwp"],
            kill_tree_when_done=True,
            is_exit_error=lambda _code: False,
        )
        try:
            async with aclosing(messages):
                return await asyncio.wait_for(anext(messages), timeout=self.jdwp_scan_timeout)
        except (ProcessError, asyncio.TimeoutError, StopAsyncIteration) as exc:
            return ProcessMessage(kind="error", error=exc)
