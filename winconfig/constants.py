"""Immutable tweak data for the personal Windows setup."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

WINDOWS_11_FIRST_BUILD = 22000


@dataclass(frozen=True)
class RegistryTweak:
    key: str
    path: str
    value_name: str
    desired_value: int | str
    kind: str = "REG_DWORD"
    min_generation: int | None = None


@dataclass(frozen=True)
class ScheduledTaskTweak:
    key: str
    task_path: str
    task_name: str | None = None
    min_generation: int | None = None


@dataclass(frozen=True)
class PowerPlanSetting:
    source_scheme: str
    friendly_name: str


@dataclass(frozen=True)
class ContextMenuSetting:
    root: str
    verb: str
    label: str
    command: str
    icon: str | None = None


@dataclass(frozen=True)
class FixedSetupConfig:
    registry: Tuple[RegistryTweak, ...]
    telemetry_services: Tuple[str, ...]
    telemetry_tasks: Tuple[ScheduledTaskTweak, ...]
    power_plan: PowerPlanSetting
    environment: Tuple[Tuple[str, str], ...]
    classic_context_menu: RegistryTweak
    context_menu: ContextMenuSetting
    cleanup_globs: Tuple[str, ...]
    packages: Tuple[str, ...]
    desktop_shell: str
    desktop_shell_executable: str


CONFIG_ROOT = Path(__file__).resolve().parent

FIXED_SETUP_CONFIG = FixedSetupConfig(
    registry=(
        RegistryTweak(
            "telemetry-policy",
            r"HKLM:\SOFTWARE\Policies\Microsoft\Windows\DataCollection",
            "AllowTelemetry",
            0,
        ),
        RegistryTweak(
            "telemetry-datacollection",
            r"HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Policies\DataCollection",
            "AllowTelemetry",
            0,
        ),
        RegistryTweak(
            "advertising-id",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\AdvertisingInfo",
            "Enabled",
            0,
        ),
        RegistryTweak(
            "consumer-features",
            r"HKLM:\SOFTWARE\Policies\Microsoft\Windows\CloudContent",
            "DisableWindowsConsumerFeatures",
            1,
        ),
        RegistryTweak(
            "silent-installed-apps",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\ContentDeliveryManager",
            "SilentInstalledAppsEnabled",
            0,
        ),
        RegistryTweak(
            "start-suggestions",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\ContentDeliveryManager",
            "SystemPaneSuggestionsEnabled",
            0,
        ),
        RegistryTweak(
            "search-box-suggestions",
            r"HKCU:\Software\Policies\Microsoft\Windows\Explorer",
            "DisableSearchBoxSuggestions",
            1,
        ),
        RegistryTweak(
            "show-file-extensions",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
            "HideFileExt",
            0,
        ),
        RegistryTweak(
            "show-hidden-files",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
            "Hidden",
            1,
        ),
        RegistryTweak(
            "explorer-opens-this-pc",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
            "LaunchTo",
            1,
        ),
        RegistryTweak(
            "taskbar-align-left",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
            "TaskbarAl",
            0,
            min_generation=11,
        ),
        RegistryTweak(
            "taskbar-widgets",
            r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Explorer\Advanced",
            "TaskbarDa",
            0,
            min_generation=11,
        ),
    ),
    telemetry_services=("DiagTrack", "dmwappushservice"),
    telemetry_tasks=(
        ScheduledTaskTweak(
            "compatibility-appraiser",
            "\\Microsoft\\Windows\\Application Experience\\",
            "Microsoft Compatibility Appraiser",
        ),
        ScheduledTaskTweak(
            "program-data-updater",
            "\\Microsoft\\Windows\\Application Experience\\",
            "ProgramDataUpdater",
        ),
        ScheduledTaskTweak(
            "pca-patch-db",
            "\\Microsoft\\Windows\\Application Experience\\",
            "PcaPatchDbTask",
            min_generation=11,
        ),
        ScheduledTaskTweak("ceip", "\\Microsoft\\Windows\\Customer Experience Improvement Program\\"),
        ScheduledTaskTweak("autochk-proxy", "\\Microsoft\\Windows\\Autochk\\", "Proxy"),
        ScheduledTaskTweak("feedback-dmclient", "\\Microsoft\\Windows\\Feedback\\Siuf\\", "DmClient"),
    ),
    power_plan=PowerPlanSetting(
        source_scheme="e9a42b02-d5df-448d-aa00-03f14749eb61",
        friendly_name="Ultimate Performance",
    ),
    environment=(
        ("POWERSHELL_TELEMETRY_OPTOUT", "1"),
        ("DOTNET_CLI_TELEMETRY_OPTOUT", "1"),
    ),
    classic_context_menu=RegistryTweak(
        "classic-context-menu",
        r"HKCU:\Software\Classes\CLSID\{86ca1aa0-34aa-4e8b-a509-50c905bae2a2}\InprocServer32",
        "",
        "",
        kind="REG_SZ",
        min_generation=11,
    ),
    context_menu=ContextMenuSetting(
        root=r"HKCU:\Software\Classes\Directory\Background\shell",
        verb="OpenPowerShellHere",
        label="Open PowerShell here",
        command='powershell.exe -NoExit -Command Set-Location -LiteralPath "%V"',
        icon="powershell.exe",
    ),
    cleanup_globs=(
        r"%TEMP%\*",
        r"%SystemRoot%\Temp\*",
    ),
    packages=(
        "Git.Git",
        "Microsoft.PowerShell",
        "Microsoft.WindowsTerminal",
        "7zip.7zip",
        "Microsoft.VisualStudioCode",
    ),
    desktop_shell="explorer",
    desktop_shell_executable="explorer.exe",
)
