"""Device selection and discovery helpers."""

from __future__ import annotations

from dataclasses import dataclass

# ``None`` selects the single attached device; adb then runs without ``-s``.
DeviceSelector = str | None


@dataclass(slots=True, frozen=True)
class Device:
    serial: str
    state: str

    @property
    def ready(self) -> bool:
        return self.state == "device"


def device_args(device: DeviceSelector) -> list[str]:
    """Return the global adb flags that target ``device``."""

    if device is None:
        return []
    return ["-s", device]


def parse_device_list(output: str) -> list[Device]:
    devices: list[Device] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        serial, *rest = line.split()
        state = rest[0] if rest else "unknown"
        devices.append(Device(serial=serial, state=state))
    return devices
