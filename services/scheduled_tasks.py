"""Scheduled task lookup and the ScheduledTaskState provider."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Protocol

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, Setting, SettingCategory, SkipReason, TaskLocator
from services.commands import CommandRunner, SubprocessRunner, failure_detail, powershell, ps_quote
from services.providers import BaseProvider


@dataclass(frozen=True)
class TaskInfo:
    task_path: str
    task_name: str
    state: str

    @property
    def disabled(self) -> bool:
        return self.state.lower() == "disabled"

    @property
    def full_name(self) -> str:
        return f"{self.task_path}{self.task_name}"


class TaskScheduler(Protocol):
    def find(self, locator: TaskLocator) -> List[TaskInfo]:  # pragma: no cover - protocol
        ...

    def disable(self, task: TaskInfo) -> None:  # pragma: no cover - protocol
        ...


class PowerShellTaskScheduler:
    def __init__(self, command_runner: CommandRunner | None = None) -> None:
        self._runner = command_runner or SubprocessRunner()

    def find(self, locator: TaskLocator) -> List[TaskInfo]:
        query = f"Get-ScheduledTask -TaskPath {ps_quote(locator.task_path)} -ErrorAction SilentlyContinue"
        if locator.task_name:
            query = (
                f"Get-ScheduledTask -TaskPath {ps_quote(locator.task_path)} "
                f"-TaskName {ps_quote(locator.task_name)} -ErrorAction SilentlyContinue"
            )
        script = "; ".join(
            [
                f"$tasks = @({query})",
                "$tasks | ForEach-Object { @{ TaskPath = $_.TaskPath; TaskName = $_.TaskName; State = $_.State.ToString() } }"
                " | ConvertTo-Json -Compress",
            ]
        )
        completed = self._runner.run(powershell(script))
        if completed.returncode != 0:
            raise ProviderFailure(
                code="provider.failure",
                message=failure_detail(completed, f"query tasks under {locator.task_path}"),
            )
        return [
            TaskInfo(str(item.get("TaskPath", "")), str(item.get("TaskName", "")), str(item.get("State", "")))
            for item in _as_list(completed.stdout)
        ]

    def disable(self, task: TaskInfo) -> None:
        script = (
            f"Disable-ScheduledTask -TaskPath {ps_quote(task.task_path)} "
            f"-TaskName {ps_quote(task.task_name)} -ErrorAction Stop | Out-Null"
        )
        completed = self._runner.run(powershell(script))
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, f"disable {task.full_name}"))


def _as_list(stdout: str) -> list[dict[str, Any]]:
    text = (stdout or "").strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    return [item for item in data if isinstance(item, dict)]


class ScheduledTaskProvider(BaseProvider):
    category = SettingCategory.SCHEDULED_TASK_STATE

    def __init__(self, scheduler: TaskScheduler) -> None:
        self._scheduler = scheduler

    def _is_satisfied(self, setting: Setting) -> bool:
        tasks = self._scheduler.find(setting.target)  # type: ignore[arg-type]
        return bool(tasks) and all(task.disabled for task in tasks)

    def _missing_target(self, setting: Setting) -> str | None:
        locator: TaskLocator = setting.target  # type: ignore[assignment]
        if self._scheduler.find(locator):
            return None
        return _no_match(locator)

    def _apply(self, setting: Setting) -> OutcomeRecord:
        locator: TaskLocator = setting.target  # type: ignore[assignment]
        tasks = self._scheduler.find(locator)
        if not tasks:
            return OutcomeRecord.skipped(setting, SkipReason.NOT_FOUND, _no_match(locator))
        disabled: list[str] = []
        for task in tasks:
            if task.disabled:
                continue
            self._scheduler.disable(task)
            disabled.append(task.full_name)
        if not disabled:
            return OutcomeRecord.success(setting, "all matching tasks already disabled")
        return OutcomeRecord.success(setting, "disabled " + ", ".join(disabled))


def _no_match(locator: TaskLocator) -> str:
    return f"no scheduled task matches {locator.task_path}{locator.task_name or '*'}"
