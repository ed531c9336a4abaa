"""Declarative setting model shared by the catalog, applier and providers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Tuple, Union

from winconfig.conditions import Condition


class SettingCategory(str, Enum):
    REGISTRY_VALUE = "RegistryValue"
    SERVICE_STATE = "ServiceState"
    SCHEDULED_TASK_STATE = "ScheduledTaskState"
    PACKAGE_INSTALLED = "PackageInstalled"
    PROCESS_RESTART = "ProcessRestart"
    ENVIRONMENT_VARIABLE = "EnvironmentVariable"
    FILE_REMOVAL = "FileRemoval"
    CONTEXT_MENU_ENTRY = "ContextMenuEntry"
    POWER_PLAN = "PowerPlan"

    @classmethod
    def parse(cls, value: str) -> "SettingCategory | str":
        """Return the matching category, or the raw string when unknown."""
        for member in cls:
            if member.value.lower() == value.lower():
                return member
        return value


class RegistryKind(str, Enum):
    SZ = "REG_SZ"
    EXPAND_SZ = "REG_EXPAND_SZ"
    DWORD = "REG_DWORD"
    QWORD = "REG_QWORD"
    MULTI_SZ = "REG_MULTI_SZ"
    BINARY = "REG_BINARY"


@dataclass(frozen=True)
class RegistryLocation:
    path: str
    value_name: str = ""


@dataclass(frozen=True)
class RegistryData:
    value: Any
    kind: RegistryKind = RegistryKind.DWORD


class StartupMode(str, Enum):
    AUTOMATIC = "Automatic"
    MANUAL = "Manual"
    DISABLED = "Disabled"


@dataclass(frozen=True)
class ServiceDesiredState:
    startup: StartupMode = StartupMode.DISABLED
    stopped: bool = True


@dataclass(frozen=True)
class TaskLocator:
    task_path: str
    task_name: str | None = None


class PackagePresence(str, Enum):
    INSTALLED = "installed"
    ABSENT = "absent"


@dataclass(frozen=True)
class PackageLocator:
    package_id: str
    source: str | None = "winget"


@dataclass(frozen=True)
class ProcessRestartSpec:
    relaunch: str | None = None


class EnvironmentScope(str, Enum):
    PROCESS = "process"
    USER = "user"
    MACHINE = "machine"


@dataclass(frozen=True)
class EnvironmentLocator:
    name: str
    scope: EnvironmentScope = EnvironmentScope.MACHINE


@dataclass(frozen=True)
class ContextMenuLocator:
    root: str
    verb: str


@dataclass(frozen=True)
class ContextMenuCommand:
    label: str
    command: str
    icon: str | None = None


@dataclass(frozen=True)
class PowerPlanLocator:
    friendly_name: str
    source_scheme: str


SettingTarget = Union[
    RegistryLocation,
    str,
    TaskLocator,
    PackageLocator,
    EnvironmentLocator,
    ContextMenuLocator,
    PowerPlanLocator,
]


@dataclass(frozen=True)
class Setting:
    """One desired-state assertion about the local machine.

    ``target`` and ``desired_value`` are category specific:

    - RegistryValue: RegistryLocation / RegistryData (``None`` ensures the key only)
    - ServiceState: service name / ServiceDesiredState
    - ScheduledTaskState: TaskLocator / ``False`` (disabled)
    - PackageInstalled: PackageLocator / PackagePresence
    - ProcessRestart: process name / ProcessRestartSpec
    - EnvironmentVariable: EnvironmentLocator / value string
    - FileRemoval: path glob / ``None``
    - ContextMenuEntry: ContextMenuLocator / ContextMenuCommand (``None`` removes)
    - PowerPlan: PowerPlanLocator / ``None``
    """

    id: str
    category: SettingCategory | str
    target: SettingTarget
    desired_value: Any = None
    condition: Condition | None = None
    critical: bool = False
    description: str = ""

    @property
    def category_name(self) -> str:
        if isinstance(self.category, SettingCategory):
            return self.category.value
        return str(self.category)


@dataclass(frozen=True)
class HostFacts:
    os_major: int
    build: int
    generation: int
    elevated: bool
    capabilities: FrozenSet[str] = frozenset()

    @property
    def is_windows_11(self) -> bool:
        return self.generation == 11

    def has_capability(self, name: str) -> bool:
        return name.lower() in self.capabilities


class OutcomeStatus(str, Enum):
    SUCCESS = "Success"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class SkipReason(str, Enum):
    INAPPLICABLE = "inapplicable"
    ALREADY_SATISFIED = "already-satisfied"
    DRY_RUN = "dry-run"
    CAPABILITY_MISSING = "capability-missing"
    NOT_FOUND = "not-found"
    NO_CHANGES = "no-changes"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OutcomeRecord:
    setting_id: str
    status: OutcomeStatus
    detail: str = ""
    category: str = ""
    reason: SkipReason | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def success(cls, setting: Setting, detail: str = "") -> "OutcomeRecord":
        return cls(setting.id, OutcomeStatus.SUCCESS, detail, setting.category_name)

    @classmethod
    def skipped(cls, setting: Setting, reason: SkipReason, detail: str = "") -> "OutcomeRecord":
        return cls(setting.id, OutcomeStatus.SKIPPED, detail, setting.category_name, reason)

    @classmethod
    def failed(cls, setting: Setting, detail: str) -> "OutcomeRecord":
        return cls(setting.id, OutcomeStatus.FAILED, detail, setting.category_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp.isoformat().replace("+00:00", "Z"),
            "setting": self.setting_id,
            "category": self.category,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class RunSummary:
    records: Tuple[OutcomeRecord, ...]
    aborted: bool
    critical_failure: bool

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for record in self.records if record.status is status)

    @property
    def succeeded(self) -> int:
        return self.count(OutcomeStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return self.count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    def line(self) -> str:
        state = "aborted" if self.aborted else "completed"
        return (
            f"run {state}: succeeded={self.succeeded} skipped={self.skipped} "
            f"failed={self.failed} critical_failure={str(self.critical_failure).lower()}"
        )
