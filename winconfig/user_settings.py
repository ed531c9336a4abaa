"""Persisted, user-adjustable run settings."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Tuple

from winconfig.errors import SettingsError
from winconfig.paths import default_log_path, default_settings_path

PACKAGE_POLICY_SKIP = "skip-when-unavailable"
PACKAGE_POLICY_ATTEMPT = "attempt"
PACKAGE_POLICIES = (PACKAGE_POLICY_SKIP, PACKAGE_POLICY_ATTEMPT)
OUTPUT_FORMATS = ("text", "jsonl")


@dataclass(frozen=True)
class ApplierSettings:
    log_path: str = field(default_factory=lambda: str(default_log_path()))
    command_timeout: float = 300.0
    package_policy: str = PACKAGE_POLICY_SKIP
    continue_on_critical_failure: bool = False
    output_format: str = "text"
    catalog_path: str = ""
    packages: Tuple[str, ...] = ()
    restart_shell: bool = True

    def with_overrides(self, **overrides: Any) -> "ApplierSettings":
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "packages" in changes:
            changes["packages"] = tuple(changes["packages"])
        merged = replace(self, **changes)
        merged.validate()
        return merged

    def validate(self) -> None:
        for name in ("log_path", "package_policy", "output_format", "catalog_path"):
            if not isinstance(getattr(self, name), str):
                raise SettingsError(code="settings.invalid", message=f"{name} must be a string")
        for name in ("continue_on_critical_failure", "restart_shell"):
            if not isinstance(getattr(self, name), bool):
                raise SettingsError(code="settings.invalid", message=f"{name} must be true or false")
        if isinstance(self.command_timeout, bool) or not isinstance(self.command_timeout, (int, float)):
            raise SettingsError(code="settings.invalid", message="command_timeout must be a number of seconds")
        if not isinstance(self.packages, tuple) or not all(isinstance(item, str) for item in self.packages):
            raise SettingsError(code="settings.invalid", message="packages must be a list of package ids")
        if self.package_policy not in PACKAGE_POLICIES:
            raise SettingsError(
                code="settings.invalid",
                message=f"package_policy must be one of {', '.join(PACKAGE_POLICIES)}",
            )
        if self.output_format not in OUTPUT_FORMATS:
            raise SettingsError(
                code="settings.invalid",
                message=f"output_format must be one of {', '.join(OUTPUT_FORMATS)}",
            )
        if self.command_timeout <= 0:
            raise SettingsError(code="settings.invalid", message="command_timeout must be positive")


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path else default_settings_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ApplierSettings:
        if not self._path.exists():
            return ApplierSettings()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SettingsError(
                code="settings.unreadable",
                message=f"Unable to read settings from {self._path}",
                data={"error": repr(exc)},
            ) from exc
        if not isinstance(raw, dict):
            raise SettingsError(code="settings.invalid", message="Settings file must contain a JSON object")
        known = {item.name for item in fields(ApplierSettings)}
        values = {key: value for key, value in raw.items() if key in known}
        if "packages" in values:
            packages = values["packages"]
            if packages is None:
                packages = []
            if not isinstance(packages, list):
                raise SettingsError(code="settings.invalid", message="packages must be a list of package ids")
            values["packages"] = tuple(packages)
        settings = ApplierSettings(**values)
        settings.validate()
        return settings

    def save(self, settings: ApplierSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = asdict(settings)
        payload["packages"] = list(settings.packages)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
