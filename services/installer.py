"""Package installation through winget."""
from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Protocol

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, PackageLocator, PackagePresence, Setting, SettingCategory
from services.commands import CommandRunner, SubprocessRunner, failure_detail
from services.providers import BaseProvider

WINGET_CAPABILITY = "winget"


class WingetError(ProviderFailure):
    pass


class PackageManager(Protocol):
    def is_available(self) -> bool:  # pragma: no cover - protocol
        ...

    def is_installed(self, package_id: str, *, source: str | None = None) -> bool:  # pragma: no cover - protocol
        ...

    def install_package(self, package_id: str, *, source: str | None = None) -> None:  # pragma: no cover - protocol
        ...

    def uninstall_package(self, package_id: str, *, source: str | None = None) -> None:  # pragma: no cover - protocol
        ...


class WingetClient:
    """Thin wrapper around the winget CLI."""

    NO_PACKAGE_PATTERN = re.compile(r"No installed package found", re.IGNORECASE)

    def __init__(self, executable: str | None = None, *, command_runner: CommandRunner | None = None):
        exe_path = executable or shutil.which("winget")
        if not exe_path:
            fallback = self._find_winget_fallback()
            exe_path = str(fallback) if fallback else None
        self._executable = Path(exe_path) if exe_path else None
        self._runner = command_runner or SubprocessRunner()

    def is_available(self) -> bool:
        return self._executable is not None

    def is_installed(self, package_id: str, *, source: str | None = None) -> bool:
        cmd = self._build_base_command("list", package_id, source, force=False, agreements=False)
        cmd.append("--accept-source-agreements")
        completed = self._runner.run(cmd)
        if completed.returncode != 0 or self.NO_PACKAGE_PATTERN.search(completed.stdout or ""):
            return False
        return package_id.lower() in (completed.stdout or "").lower()

    def install_package(self, package_id: str, *, source: str | None = None) -> None:
        cmd = self._build_base_command("install", package_id, source, force=False)
        cmd.append("--silent")
        completed = self._runner.run(cmd)
        if completed.returncode != 0:
            raise WingetError(code="provider.failure", message=failure_detail(completed, f"winget install {package_id}"))

    def uninstall_package(self, package_id: str, *, source: str | None = None) -> None:
        cmd = self._build_base_command("uninstall", package_id, source, force=False, agreements=False)
        cmd.extend(["--silent", "--accept-source-agreements"])
        completed = self._runner.run(cmd)
        if completed.returncode != 0:
            raise WingetError(code="provider.failure", message=failure_detail(completed, f"winget uninstall {package_id}"))

    def _build_base_command(
        self,
        verb: str,
        package_id: str,
        source: str | None,
        force: bool,
        agreements: bool = True,
    ) -> list[str]:
        if not self._executable:
            raise WingetError(code="provider.failure", message="winget executable not found in PATH")
        cmd = [str(self._executable), verb, "--id", package_id, "--exact"]
        if force:
            cmd.append("--force")
        if agreements:
            cmd.extend(["--accept-package-agreements", "--accept-source-agreements"])
        if source:
            cmd.extend(["--source", source])
        return cmd

    def _find_winget_fallback(self) -> Path | None:
        local_appdata = os.environ.get("LOCALAPPDATA")
        if local_appdata:
            candidate = Path(local_appdata) / "Microsoft" / "WindowsApps" / "winget.exe"
            if candidate.exists():
                return candidate
        program_files = os.environ.get("ProgramFiles")
        if program_files:
            base = Path(program_files) / "WindowsApps"
            try:
                candidates = list(base.glob("Microsoft.DesktopAppInstaller_*_x64__8wekyb3d8bbwe/winget.exe"))
            except OSError:
                candidates = []
            for candidate in candidates:
                if candidate.exists():
                    return candidate
        return None


class PackageProvider(BaseProvider):
    category = SettingCategory.PACKAGE_INSTALLED

    def __init__(self, package_manager: PackageManager) -> None:
        self._packages = package_manager

    def _is_satisfied(self, setting: Setting) -> bool:
        locator: PackageLocator = setting.target  # type: ignore[assignment]
        installed = self._packages.is_installed(locator.package_id, source=locator.source)
        return installed == (self._presence(setting) is PackagePresence.INSTALLED)

    def _apply(self, setting: Setting) -> OutcomeRecord:
        locator: PackageLocator = setting.target  # type: ignore[assignment]
        if not self._packages.is_available():
            raise WingetError(code="provider.failure", message="winget executable not found")
        if self._presence(setting) is PackagePresence.ABSENT:
            self._packages.uninstall_package(locator.package_id, source=locator.source)
            return OutcomeRecord.success(setting, f"uninstalled {locator.package_id}")
        self._packages.install_package(locator.package_id, source=locator.source)
        return OutcomeRecord.success(setting, f"installed {locator.package_id}")

    def _presence(self, setting: Setting) -> PackagePresence:
        value = setting.desired_value
        if value is None:
            return PackagePresence.INSTALLED
        return PackagePresence(value)
