"""Power plan installation and activation via powercfg."""
from __future__ import annotations

import re
import time
from typing import Iterable, Sequence

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, PowerPlanLocator, Setting, SettingCategory
from services.commands import CommandRunner, failure_detail, format_command_detail
from services.providers import BaseProvider

POWERCFG_GUID_PATTERN = re.compile(r"Power Scheme GUID:\s*([0-9a-fA-F-]{36})\s*\((.*?)\)\s*(\*)?")
KNOWN_POWER_SCHEMES = {
    "SCHEME_BALANCED": "381b4222-f694-41f0-9685-ff5bb260df2e",
    "SCHEME_MIN": "8c5e7fda-e8bf-4a96-9a85-a6e23a8c635c",
    "SCHEME_MAX": "a1841308-3541-4fab-bc81-f71556f20b4a",
    "SCHEME_ULTIMATE": "e9a42b02-d5df-448d-aa00-03f14749eb61",
}


class PowerPlanProvider(BaseProvider):
    category = SettingCategory.POWER_PLAN

    def __init__(self, command_runner: CommandRunner, *, settle_attempts: int = 5, settle_delay: float = 0.3) -> None:
        self._runner = command_runner
        self._settle_attempts = settle_attempts
        self._settle_delay = settle_delay

    def _is_satisfied(self, setting: Setting) -> bool:
        locator: PowerPlanLocator = setting.target  # type: ignore[assignment]
        _guid, active_name = self._get_active_power_scheme()
        return active_name.lower() == locator.friendly_name.lower()

    def _apply(self, setting: Setting) -> OutcomeRecord:
        locator: PowerPlanLocator = setting.target  # type: ignore[assignment]
        schemes = self._list_power_schemes()
        target_guid = self._find_by_name(schemes, locator.friendly_name)
        detail_parts: list[str] = []
        if not target_guid:
            target_guid = self._duplicate(locator)
            detail_parts.append(f"installed {locator.friendly_name} as {target_guid}")
        completed = self._runner.run(["powercfg", "/setactive", target_guid])
        if completed.returncode != 0:
            raise ProviderFailure(code="provider.failure", message=failure_detail(completed, "powercfg /setactive"))
        active_guid, active_name = self._wait_for_active_scheme(target_guid)
        if active_guid.lower() != target_guid.lower():
            raise ProviderFailure(
                code="provider.failure",
                message=f"active scheme is {active_name or 'unknown'} ({active_guid or '?'}) after activating {target_guid}",
            )
        detail_parts.append(f"active: {active_name} ({active_guid})")
        return OutcomeRecord.success(setting, "; ".join(detail_parts))

    def _duplicate(self, locator: PowerPlanLocator) -> str:
        source = KNOWN_POWER_SCHEMES.get(locator.source_scheme.upper(), locator.source_scheme)
        completed = self._runner.run(["powercfg", "-duplicatescheme", source])
        match = POWERCFG_GUID_PATTERN.search(completed.stdout or "")
        if completed.returncode != 0 or not match:
            raise ProviderFailure(
                code="provider.failure",
                message=f"powercfg -duplicatescheme {source}: {format_command_detail(completed)}",
            )
        new_guid = match.group(1).strip()
        if match.group(2).strip().lower() != locator.friendly_name.lower():
            self._runner.run(["powercfg", "-changename", new_guid, locator.friendly_name])
        return new_guid

    def _find_by_name(self, schemes: Iterable[tuple[str, str, bool]], friendly: str) -> str:
        for guid, name, _active in schemes:
            if name.lower() == friendly.lower():
                return guid
        return ""

    def _list_power_schemes(self) -> list[tuple[str, str, bool]]:
        output = self._run_and_capture(["powercfg", "/list"])
        schemes: list[tuple[str, str, bool]] = []
        for match in POWERCFG_GUID_PATTERN.finditer(output):
            guid = match.group(1).strip()
            name = match.group(2).strip()
            active = bool(match.group(3))
            schemes.append((guid, name, active))
        return schemes

    def _get_active_power_scheme(self) -> tuple[str, str]:
        output = self._run_and_capture(["powercfg", "/getactivescheme"])
        match = POWERCFG_GUID_PATTERN.search(output)
        if match:
            return match.group(1).strip(), match.group(2).strip()
        return "", ""

    def _wait_for_active_scheme(self, target_guid: str) -> tuple[str, str]:
        active_guid, active_name = self._get_active_power_scheme()
        for _ in range(self._settle_attempts):
            if active_guid and active_guid.lower() == target_guid.lower():
                break
            time.sleep(self._settle_delay)
            active_guid, active_name = self._get_active_power_scheme()
        return active_guid, active_name

    def _run_and_capture(self, command: Sequence[str]) -> str:
        completed = self._runner.run(command)
        if completed.stderr and not completed.stdout:
            return completed.stderr.strip()
        return completed.stdout.strip()
