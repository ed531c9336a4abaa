"""Process termination/relaunch used to finalize a run."""
from __future__ import annotations

from typing import Protocol

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, ProcessRestartSpec, Setting, SettingCategory
from services.commands import CommandRunner, SubprocessRunner, failure_detail, powershell, ps_quote
from services.providers import BaseProvider

TASKKILL_NOT_FOUND = 128


class ProcessManager(Protocol):
    def terminate(self, name: str) -> bool:  # pragma: no cover - protocol
        """Return False when no process with that name was running."""
        ...

    def start(self, executable: str) -> None:  # pragma: no cover - protocol
        ...


class WindowsProcessManager:
    def __init__(self, command_runner: CommandRunner | None = None) -> None:
        self._runner = command_runner or SubprocessRunner()

    def terminate(self, name: str) -> bool:
        image = name if name.lower().endswith(".exe") else f"{name}.exe"
        completed = self._runner.run(["taskkill", "/F", "/IM", image])
        if completed.returncode == TASKKILL_NOT_FOUND:
            return False
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"terminate {image}"))
        return True

    def start(self, executable: str) -> None:
        completed = self._runner.run(powershell(f"Start-Process {ps_quote(executable)}"))
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"start {executable}"))


class ProcessRestartProvider(BaseProvider):
    category = SettingCategory.PROCESS_RESTART

    def __init__(self, processes: ProcessManager) -> None:
        self._processes = processes

    def _is_satisfied(self, setting: Setting) -> bool:
        return False

    def _apply(self, setting: Setting) -> OutcomeRecord:
        name = str(setting.target)
        spec: ProcessRestartSpec = setting.desired_value or ProcessRestartSpec()
        was_running = self._processes.terminate(name)
        parts = [f"terminated {name}" if was_running else f"{name} was not running"]
        if spec.relaunch:
            self._processes.start(spec.relaunch)
            parts.append(f"started {spec.relaunch}")
        return OutcomeRecord.success(setting, "; ".join(parts))
