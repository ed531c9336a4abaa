"""Windows service control and the ServiceState provider."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Protocol

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, ServiceDesiredState, Setting, SettingCategory, StartupMode
from services.commands import CommandRunner, SubprocessRunner, failure_detail, powershell, ps_quote
from services.providers import BaseProvider


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    running: bool
    startup: str


class ServiceControl(Protocol):
    def query(self, name: str) -> ServiceStatus | None:  # pragma: no cover - protocol
        ...

    def stop(self, name: str) -> None:  # pragma: no cover - protocol
        ...

    def set_startup(self, name: str, mode: StartupMode) -> None:  # pragma: no cover - protocol
        ...


class PowerShellServiceControl:
    def __init__(self, command_runner: CommandRunner | None = None) -> None:
        self._runner = command_runner or SubprocessRunner()

    def query(self, name: str) -> ServiceStatus | None:
        script = "; ".join(
            [
                f"$s = Get-Service -Name {ps_quote(name)} -ErrorAction SilentlyContinue",
                "if (-not $s) { exit 3 }",
                "@{ Status = $s.Status.ToString(); StartType = $s.StartType.ToString() } | ConvertTo-Json -Compress",
            ]
        )
        completed = self._runner.run(powershell(script))
        if completed.returncode == 3:
            return None
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"query {name}"))
        try:
            payload = json.loads(completed.stdout.strip() or "{}")
        except json.JSONDecodeError as exc:
            raise ProviderFailure(
                code="provider.failure",
                message=f"query {name} returned unexpected output: {completed.stdout.strip()}",
            ) from exc
        return ServiceStatus(
            name=name,
            running=str(payload.get("Status", "")).lower() == "running",
            startup=str(payload.get("StartType", "")),
        )

    def stop(self, name: str) -> None:
        completed = self._runner.run(powershell(f"Stop-Service -Name {ps_quote(name)} -Force -ErrorAction Stop"))
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"stop {name}"))

    def set_startup(self, name: str, mode: StartupMode) -> None:
        completed = self._runner.run(
            powershell(f"Set-Service -Name {ps_quote(name)} -StartupType {mode.value} -ErrorAction Stop")
        )
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"set startup of {name}"))


class ServiceStateProvider(BaseProvider):
    category = SettingCategory.SERVICE_STATE

    def __init__(self, services: ServiceControl) -> None:
        self._services = services

    def _is_satisfied(self, setting: Setting) -> bool:
        desired: ServiceDesiredState = setting.desired_value
        status = self._services.query(str(setting.target))
        if status is None:
            return False
        if desired.stopped and status.running:
            return False
        return status.startup.lower() == desired.startup.value.lower()

    def _apply(self, setting: Setting) -> OutcomeRecord:
        name = str(setting.target)
        desired: ServiceDesiredState = setting.desired_value
        status = self._services.query(name)
        if status is None:
            raise ProviderFailure(code="provider.failure", message=f"service {name} not found")
        actions: list[str] = []
        if desired.stopped and status.running:
            self._services.stop(name)
            actions.append("stopped")
        if status.startup.lower() != desired.startup.value.lower():
            self._services.set_startup(name, desired.startup)
            actions.append(f"startup {status.startup or 'unknown'} -> {desired.startup.value}")
        return OutcomeRecord.success(setting, "; ".join(actions) or "no change needed")
