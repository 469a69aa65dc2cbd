"""FastAPI integration entrypoint."""

from __future__ import annotations

import json
import logging
import os
from contextlib import aclosing, asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, AsyncIterator, Awaitable, Callable, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .adb import Adb
from .config import Settings, load_settings
from .process import ProcessError, ProcessMessage, ProcessTimeoutError, collect_output

SERVICE_NAME = "droidbridge"
CONFIG_ENV_VAR = "DROIDBRIDGE_CONFIG_PATH"
DEFAULT_CONFIG_FILENAME = "config.yaml"
API_TOKEN_ENV_VAR = "DROIDBRIDGE_API_TOKEN"  # noqa: S105 - env var name, not a secret
LOG_LEVEL_ENV_VAR = "DROIDBRIDGE_LOG_LEVEL"
DEFAULT_CONFIG_PATHS: tuple[Path, ...] = (
    Path(DEFAULT_CONFIG_FILENAME),
    Path("~/.config/droidbridge") / DEFAULT_CONFIG_FILENAME,
)

logger = logging.getLogger(SERVICE_NAME)
auth_scheme = HTTPBearer(auto_error=False)
AuthCredentials = Annotated[HTTPAuthorizationCredentials | None, Security(auth_scheme)]

T = TypeVar("T")


class InstallRequest(BaseModel):
    path: str
    device: str | None = None


class LaunchRequest(BaseModel):
    package: str
    activity: str
    debug: bool = False
    action: str | None = None
    device: str | None = None


class ForwardRequest(BaseModel):
    tcp_port: int
    pid: int
    device: str | None = None


def create_app(
    *,
    config_path: str | None = None,
    adb_client: Adb | None = None,
    api_token: str | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""

    _configure_logging()

    state: dict[str, Any] = {
        "settings": None,
        "adb": adb_client,
        "config_path": config_path,
        "api_token": api_token or os.getenv(API_TOKEN_ENV_VAR),
    }

    @asynccontextmanager
    async def _lifespan(app: FastAPI):  # pragma: no cover - exercised via tests
        resolved_path = _resolve_config_path(state["config_path"])
        try:
            settings = load_settings(resolved_path)
        except Exception:
            _log_event("config.load_failed", path=str(resolved_path))
            raise

        state["settings"] = settings
        state["config_path"] = str(resolved_path)
        _log_event("config.loaded", path=str(resolved_path))
        try:
            yield
        finally:
            state["settings"] = None
            _log_event("config.unloaded")

    app = FastAPI(
        title="droidbridge",
        description="Inspect Android devices, packages and processes through adb.",
        version="1.0.0",
        lifespan=_lifespan,
    )

    def _require_settings() -> Settings:
        settings = state.get("settings")
        if settings is None:
            raise HTTPException(status_code=503, detail={"message": "Service not initialized"})
        return settings

    def _get_adb() -> Adb:
        adb = state.get("adb")
        if adb is None:
            settings = _require_settings()
            adb = Adb(
                executable=settings.adb_path,
                command_timeout=settings.adb_command_timeout,
                jdwp_scan_timeout=settings.jdwp_scan_timeout,
            )
            state["adb"] = adb
        return adb

    async def _authorize(credentials: AuthCredentials) -> None:
        token = state.get("api_token")
        if token is None:
            return
        if credentials is None or credentials.credentials != token:
            raise HTTPException(status_code=401, detail={"message": "Invalid or missing API token"})

    async def _call(event: str, operation: Awaitable[T], **fields: Any) -> T:
        try:
            result = await operation
        except ProcessTimeoutError as exc:
            _log_event(f"{event}.failed", reason="timeout", **fields)
            raise HTTPException(status_code=504, detail={"message": str(exc)}) from exc
        except ProcessError as exc:
            _log_event(f"{event}.failed", reason=str(exc), **fields)
            raise HTTPException(status_code=502, detail={"message": str(exc)}) from exc
        except ValueError as exc:
            _log_event(f"{event}.failed", reason=str(exc), **fields)
            raise HTTPException(status_code=400, detail={"message": str(exc)}) from exc
        _log_event(f"{event}.success", **fields)
        return result

    @app.get("/")
    async def root() -> dict[str, Any]:
        settings = state.get("settings")
        return {
            "service": SERVICE_NAME,
            "version": app.version,
            "config_path": state.get("config_path"),
            "adb_path": settings.adb_path if settings else None,
            "auth_enabled": bool(state.get("api_token")),
        }

    @app.get("/devices")
    async def devices() -> dict[str, Any]:
        found = await _call("devices.list", _get_adb().get_device_list())
        return {
            "service": SERVICE_NAME,
            "devices": [
                {"serial": device.serial, "state": device.state, "ready": device.ready}
                for device in found
            ],
        }

    @app.get("/devices/info")
    async def device_info(device: str | None = None) -> dict[str, Any]:
        info = await _call("devices.info", _get_adb().get_device_info(device), device=device)
        return {"service": SERVICE_NAME, "info": info}

    @app.get("/devices/properties/{key}")
    async def device_property(key: str, device: str | None = None) -> dict[str, Any]:
        value = await _call(
            "devices.property",
            _get_adb().get_android_prop(device, key),
            device=device,
            key=key,
        )
        return {"service": SERVICE_NAME, "key": key, "value": value}

    @app.get("/packages")
    async def packages(device: str | None = None) -> dict[str, Any]:
        installed = await _call(
            "packages.list",
            _get_adb().get_installed_packages(device),
            device=device,
        )
        return {"service": SERVICE_NAME, "count": len(installed), "packages": installed}

    @app.get("/packages/{package}")
    async def package_status(package: str, device: str | None = None) -> dict[str, Any]:
        installed = await _call(
            "packages.status",
            _get_adb().is_package_installed(device, package),
            device=device,
            package=package,
        )
        return {"service": SERVICE_NAME, "package": package, "installed": installed}

    @app.get("/packages/{package}/dumpsys")
    async def package_dumpsys(package: str, device: str | None = None) -> dict[str, Any]:
        output = await _call(
            "packages.dumpsys",
            _get_adb().dumpsys_package(device, package),
            device=device,
            package=package,
        )
        if output is None:
            raise HTTPException(
                status_code=404,
                detail={"message": f"Package {package} is not installed"},
            )
        return {"service": SERVICE_NAME, "package": package, "dumpsys": output}

    @app.post("/packages/install")
    async def install(request: InstallRequest, _: None = Depends(_authorize)) -> dict[str, Any]:
        adb = _get_adb()
        messages, output = await _call(
            "packages.install",
            _drain(lambda: adb.install_package(request.device, request.path)),
            device=request.device,
            path=request.path,
        )
        return {"service": SERVICE_NAME, "output": output, "messages": messages}

    @app.post("/packages/{package}/uninstall")
    async def uninstall(
        package: str,
        device: str | None = None,
        _: None = Depends(_authorize),
    ) -> dict[str, Any]:
        adb = _get_adb()
        messages, output = await _call(
            "packages.uninstall",
            _drain(lambda: adb.uninstall_package(device, package)),
            device=device,
            package=package,
        )
        return {"service": SERVICE_NAME, "output": output, "messages": messages}

    @app.get("/activities/exists")
    async def activity_exists(
        package: str,
        activity: str,
        device: str | None = None,
    ) -> dict[str, Any]:
        exists = await _call(
            "activities.exists",
            _get_adb().activity_exists(device, package, activity),
            device=device,
            package=package,
        )
        return {"service": SERVICE_NAME, "exists": exists}

    @app.post("/activities/launch")
    async def launch(request: LaunchRequest, _: None = Depends(_authorize)) -> dict[str, Any]:
        output = await _call(
            "activities.launch",
            _get_adb().launch_activity(
                request.device,
                request.package,
                request.activity,
                request.debug,
                request.action,
            ),
            device=request.device,
            package=request.package,
        )
        return {"service": SERVICE_NAME, "output": output}

    @app.get("/processes/java")
    async def java_processes(device: str | None = None) -> dict[str, Any]:
        processes = await _call(
            "processes.java",
            _get_adb().get_java_processes(device),
            device=device,
        )
        return {"service": SERVICE_NAME, "count": len(processes), "processes": processes}

    @app.post("/forward/jdwp")
    async def forward_jdwp(request: ForwardRequest, _: None = Depends(_authorize)) -> dict[str, Any]:
        output = await _call(
            "forward.jdwp",
            _get_adb().forward_jdwp_port_to_pid(request.device, request.tcp_port, request.pid),
            device=request.device,
            tcp_port=request.tcp_port,
            pid=request.pid,
        )
        return {"service": SERVICE_NAME, "output": output}

    return app


async def _drain(
    start: Callable[[], AsyncIterator[ProcessMessage]],
) -> tuple[list[dict[str, Any]], str]:
    # The stream is started here so argument errors surface through _call.
    messages = start()
    seen: list[dict[str, Any]] = []

    async def _record() -> AsyncIterator[ProcessMessage]:
        async for message in messages:
            seen.append(
                {"kind": message.kind, "data": message.data, "exit_code": message.exit_code}
            )
            yield message

    async with aclosing(messages):
        output = await collect_output(_record())
    return seen, output


def _resolve_config_path(override: str | None = None) -> Path:
    candidate = override or os.getenv(CONFIG_ENV_VAR)
    if candidate:
        path = Path(candidate).expanduser().resolve()
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found at {path}")
        return path

    searched = [default.expanduser().resolve() for default in DEFAULT_CONFIG_PATHS]
    for path in searched:
        if path.is_file():
            return path
    raise FileNotFoundError(
        f"Unable to locate configuration file. Set {CONFIG_ENV_VAR} or create one of: "
        + ", ".join(str(path) for path in searched)
    )


def _configure_logging() -> None:
    level_name = os.getenv(LOG_LEVEL_ENV_VAR, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(message)s")


def _log_event(event: str, **fields: Any) -> None:
    record = {"event": event, "service": SERVICE_NAME, **fields}
    logger.info(json.dumps(record, sort_keys=True))
