from __future__ import annotations

import io
import subprocess
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Sequence

import pytest

from winconfig.models import HostFacts, RegistryData, StartupMode, TaskLocator
from services.environment import EnvironmentVariableProvider, RegistryEnvironmentStore
from services.filesystem import FileRemovalProvider
from services.installer import PackageProvider
from services.outcome_log import OutcomeLog
from services.power import PowerPlanProvider
from services.processes import ProcessRestartProvider
from services.providers import ProviderRegistry
from services.registry import ContextMenuProvider, RegistryValueProvider
from services.scheduled_tasks import ScheduledTaskProvider, TaskInfo
from services.service_control import ServiceStateProvider, ServiceStatus

HIGH_PERFORMANCE_GUID = "8c5e7fda-e8bf-4a96-9a85-a6e23a8c635c"
BALANCED_GUID = "381b4222-f694-41f0-9685-ff5bb260df2e"


def _norm(path: str) -> str:
    return path.replace("/", "\\").rstrip("\\").lower()


class FakeRegistry:
    def __init__(self) -> None:
        self.keys: set[str] = set()
        self.values: dict[tuple[str, str], RegistryData] = {}
        self.denied: set[str] = set()

    def query_value(self, path: str, value_name: str) -> RegistryData | None:
        return self.values.get((_norm(path), value_name.lower()))

    def set_value(self, path: str, value_name: str, data: RegistryData) -> None:
        self._check(path)
        self.create_key(path)
        self.values[(_norm(path), value_name.lower())] = data

    def key_exists(self, path: str) -> bool:
        return _norm(path) in self.keys

    def create_key(self, path: str) -> None:
        self._check(path)
        parts = _norm(path).split("\\")
        for index in range(1, len(parts) + 1):
            self.keys.add("\\".join(parts[:index]))

    def delete_key(self, path: str) -> None:
        prefix = _norm(path)
        self.keys = {key for key in self.keys if key != prefix and not key.startswith(prefix + "\\")}
        self.values = {
            (key, name): data
            for (key, name), data in self.values.items()
            if key != prefix and not key.startswith(prefix + "\\")
        }

    def _check(self, path: str) -> None:
        for denied in self.denied:
            if _norm(path).startswith(_norm(denied)):
                raise PermissionError(f"Access is denied: {path}")


class FakeServiceControl:
    def __init__(self, services: dict[str, ServiceStatus] | None = None) -> None:
        self.services = dict(services or {})
        self.calls: list[tuple[str, str]] = []

    def query(self, name: str) -> ServiceStatus | None:
        return self.services.get(name)

    def stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        self.services[name] = replace(self.services[name], running=False)

    def set_startup(self, name: str, mode: StartupMode) -> None:
        self.calls.append(("startup", name))
        self.services[name] = replace(self.services[name], startup=mode.value)


class FakeTaskScheduler:
    def __init__(self, tasks: list[TaskInfo] | None = None) -> None:
        self.tasks = list(tasks or [])
        self.disabled: list[str] = []

    def find(self, locator: TaskLocator) -> list[TaskInfo]:
        return [
            task
            for task in self.tasks
            if task.task_path.lower() == locator.task_path.lower()
            and (locator.task_name is None or task.task_name.lower() == locator.task_name.lower())
        ]

    def disable(self, task: TaskInfo) -> None:
        self.disabled.append(task.full_name)
        self.tasks = [replace(t, state="Disabled") if t == task else t for t in self.tasks]


class FakePackageManager:
    def __init__(self, installed: set[str] | None = None, *, available: bool = True) -> None:
        self.installed = set(installed or ())
        self.available = available
        self.install_calls: list[str] = []
        self.uninstall_calls: list[str] = []
        self.failing: set[str] = set()

    def is_available(self) -> bool:
        return self.available

    def is_installed(self, package_id: str, *, source: str | None = None) -> bool:
        return package_id in self.installed

    def install_package(self, package_id: str, *, source: str | None = None) -> None:
        self.install_calls.append(package_id)
        if package_id in self.failing:
            raise RuntimeError(f"installer exited with 1603 for {package_id}")
        self.installed.add(package_id)

    def uninstall_package(self, package_id: str, *, source: str | None = None) -> None:
        self.uninstall_calls.append(package_id)
        self.installed.discard(package_id)


class FakeProcessManager:
    def __init__(self, running: set[str] | None = None) -> None:
        self.running = set(running or ())
        self.terminated: list[str] = []
        self.started: list[str] = []

    def terminate(self, name: str) -> bool:
        self.terminated.append(name)
        if name in self.running:
            self.running.discard(name)
            return True
        return False

    def start(self, executable: str) -> None:
        self.started.append(executable)
        self.running.add(executable.rsplit(".", 1)[0])


class FakePowercfg:
    """Stateful stand-in for powercfg.exe."""

    def __init__(self) -> None:
        self.schemes: dict[str, str] = {BALANCED_GUID: "Balanced", HIGH_PERFORMANCE_GUID: "High performance"}
        self.active = BALANCED_GUID
        self.commands: list[tuple[str, ...]] = []
        self._next = 1

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        cmd = tuple(command)
        self.commands.append(cmd)
        verb = cmd[1].lower()
        if verb == "/list":
            lines = [self._line(guid, guid == self.active) for guid in self.schemes]
            return subprocess.CompletedProcess(cmd, 0, "\n".join(lines), "")
        if verb == "/getactivescheme":
            return subprocess.CompletedProcess(cmd, 0, self._line(self.active, False), "")
        if verb == "-duplicatescheme":
            guid = f"00000000-0000-0000-0000-{self._next:012d}"
            self._next += 1
            self.schemes[guid] = "Ultimate Performance"
            return subprocess.CompletedProcess(cmd, 0, self._line(guid, False), "")
        if verb == "-changename":
            self.schemes[cmd[2]] = cmd[3]
            return subprocess.CompletedProcess(cmd, 0, "", "")
        if verb == "/setactive":
            if cmd[2] not in self.schemes:
                return subprocess.CompletedProcess(cmd, 1, "", "Invalid Parameters")
            self.active = cmd[2]
            return subprocess.CompletedProcess(cmd, 0, "", "")
        return subprocess.CompletedProcess(cmd, 1, "", "unknown")

    def _line(self, guid: str, active: bool) -> str:
        return f"Power Scheme GUID: {guid}  ({self.schemes[guid]}){' *' if active else ''}"


@dataclass
class SimulatedHost:
    root: Path
    registry: FakeRegistry = field(default_factory=FakeRegistry)
    services: FakeServiceControl = field(default_factory=FakeServiceControl)
    scheduler: FakeTaskScheduler = field(default_factory=FakeTaskScheduler)
    packages: FakePackageManager = field(default_factory=FakePackageManager)
    processes: FakeProcessManager = field(default_factory=FakeProcessManager)
    powercfg: FakePowercfg = field(default_factory=FakePowercfg)
    environ: dict[str, str] = field(default_factory=dict)

    def providers(self) -> ProviderRegistry:
        return ProviderRegistry(
            [
                RegistryValueProvider(self.registry),
                ContextMenuProvider(self.registry),
                ServiceStateProvider(self.services),
                ScheduledTaskProvider(self.scheduler),
                PackageProvider(self.packages),
                ProcessRestartProvider(self.processes),
                EnvironmentVariableProvider(RegistryEnvironmentStore(self.registry, self.environ)),
                FileRemovalProvider(self.environ),
                PowerPlanProvider(self.powercfg, settle_attempts=0),
            ]
        )

    def snapshot(self) -> dict[str, Any]:
        files = sorted(str(path.relative_to(self.root)) for path in self.root.rglob("*"))
        return {
            "keys": set(self.registry.keys),
            "values": dict(self.registry.values),
            "services": dict(self.services.services),
            "tasks": list(self.scheduler.tasks),
            "packages": set(self.packages.installed),
            "environ": dict(self.environ),
            "files": files,
            "power": (self.powercfg.active, dict(self.powercfg.schemes)),
        }


@pytest.fixture
def host(tmp_path: Path) -> SimulatedHost:
    root = tmp_path / "host"
    root.mkdir()
    return SimulatedHost(root=root)


@pytest.fixture
def win11_facts() -> HostFacts:
    return HostFacts(os_major=10, build=22631, generation=11, elevated=True, capabilities=frozenset({"winget"}))


@pytest.fixture
def win10_facts() -> HostFacts:
    return HostFacts(os_major=10, build=19045, generation=10, elevated=True, capabilities=frozenset({"winget"}))


@pytest.fixture
def console() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def outcome_log(tmp_path: Path, console: io.StringIO):
    log = OutcomeLog(tmp_path / "logs" / "run.log", stream=console)
    yield log
    log.close()
