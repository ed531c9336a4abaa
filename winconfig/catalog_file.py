"""Load a setting list from a YAML catalog file."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import jsonschema
import yaml

from winconfig.catalog import ensure_unique_ids
from winconfig.conditions import ALL, Condition
from winconfig.constants import CONFIG_ROOT
from winconfig.errors import CatalogError
from winconfig.models import (
    ContextMenuCommand,
    ContextMenuLocator,
    EnvironmentLocator,
    EnvironmentScope,
    PackageLocator,
    PackagePresence,
    PowerPlanLocator,
    ProcessRestartSpec,
    RegistryData,
    RegistryKind,
    RegistryLocation,
    ServiceDesiredState,
    Setting,
    SettingCategory,
    StartupMode,
    TaskLocator,
)

CATALOG_SCHEMA_PATH = CONFIG_ROOT / "catalog.schema.json"

PayloadParser = Callable[[Any, Any], Tuple[Any, Any]]


def load_catalog(path: Path | str) -> Tuple[Setting, ...]:
    p = Path(path).expanduser()
    if not p.exists():
        raise CatalogError(code="catalog.not_found", message=f"Catalog not found: {path}")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise CatalogError(
            code="catalog.invalid_yaml",
            message="Failed to parse YAML catalog",
            data={"error": repr(exc)},
        ) from exc
    return parse_catalog(raw)


def parse_catalog(raw: Any) -> Tuple[Setting, ...]:
    if not isinstance(raw, dict):
        raise CatalogError(code="catalog.invalid", message="Catalog must be a mapping at top-level")
    schema = json.loads(CATALOG_SCHEMA_PATH.read_text(encoding="utf-8"))
    try:
        jsonschema.Draft202012Validator(schema).validate(raw)
    except jsonschema.ValidationError as exc:
        raise CatalogError(
            code="catalog.schema_invalid",
            message="Catalog does not match schema",
            data={"error": exc.message, "path": list(exc.path)},
        ) from exc

    settings: List[Setting] = []
    for entry in raw["settings"]:
        settings.append(_parse_setting(entry))
    ensure_unique_ids(settings)
    return tuple(settings)


def _parse_setting(entry: Dict[str, Any]) -> Setting:
    setting_id = entry["id"]
    category = SettingCategory.parse(entry["category"])
    target_raw = entry["target"]
    value_raw = entry.get("value")
    parser = _PARSERS.get(category) if isinstance(category, SettingCategory) else None
    if parser is None:
        # unknown categories are carried through and fail at dispatch
        target, value = target_raw, value_raw
    else:
        try:
            target, value = parser(target_raw, value_raw)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise CatalogError(
                code="catalog.invalid_setting",
                message=f"Setting {setting_id} has an invalid target or value for {entry['category']}",
                data={"error": repr(exc)},
            ) from exc
    when = entry.get("when")
    return Setting(
        id=setting_id,
        category=category,
        target=target,
        desired_value=value,
        condition=_parse_condition(when) if when is not None else None,
        critical=bool(entry.get("critical", False)),
        description=entry.get("description", ""),
    )


def _parse_condition(raw: Dict[str, Any]) -> Condition:
    ((kind, value),) = raw.items()
    if kind == ALL:
        return Condition(ALL, tuple(_parse_condition(child) for child in value))
    return Condition(kind, value)


def _registry(target: Any, value: Any) -> Tuple[Any, Any]:
    location = RegistryLocation(target["path"], target.get("value_name", ""))
    if value is None:
        return location, None
    if isinstance(value, dict):
        return location, RegistryData(value["data"], RegistryKind(value.get("kind", RegistryKind.DWORD.value)))
    kind = RegistryKind.DWORD if isinstance(value, int) else RegistryKind.SZ
    return location, RegistryData(value, kind)


def _service(target: Any, value: Any) -> Tuple[Any, Any]:
    name = target if isinstance(target, str) else target["name"]
    value = value or {}
    if not isinstance(value, dict):
        raise TypeError("service value must be a mapping with startup and stopped")
    desired = ServiceDesiredState(
        StartupMode(value.get("startup", StartupMode.DISABLED.value)),
        bool(value.get("stopped", True)),
    )
    return name, desired


def _task(target: Any, value: Any) -> Tuple[Any, Any]:
    if isinstance(target, str):
        return TaskLocator(target), False
    return TaskLocator(target["task_path"], target.get("task_name")), False


def _package(target: Any, value: Any) -> Tuple[Any, Any]:
    if isinstance(target, str):
        locator = PackageLocator(target)
    else:
        locator = PackageLocator(target["package_id"], target.get("source", "winget"))
    return locator, PackagePresence(value or PackagePresence.INSTALLED.value)


def _process(target: Any, value: Any) -> Tuple[Any, Any]:
    name = target if isinstance(target, str) else target["name"]
    relaunch = value.get("relaunch") if isinstance(value, dict) else None
    return name, ProcessRestartSpec(relaunch=relaunch)


def _environment(target: Any, value: Any) -> Tuple[Any, Any]:
    if isinstance(target, str):
        locator = EnvironmentLocator(target)
    else:
        locator = EnvironmentLocator(target["name"], EnvironmentScope(target.get("scope", "machine")))
    if value is None:
        raise ValueError("environment variable value is required")
    return locator, str(value)


def _file_removal(target: Any, value: Any) -> Tuple[Any, Any]:
    if not isinstance(target, str):
        raise TypeError("file removal target must be a path pattern")
    return target, None


def _context_menu(target: Any, value: Any) -> Tuple[Any, Any]:
    locator = ContextMenuLocator(target["root"], target["verb"])
    if value is None:
        return locator, None
    return locator, ContextMenuCommand(value["label"], value["command"], value.get("icon"))


def _power_plan(target: Any, value: Any) -> Tuple[Any, Any]:
    return PowerPlanLocator(target["friendly_name"], target["source_scheme"]), None


_PARSERS: Dict[SettingCategory, PayloadParser] = {
    SettingCategory.REGISTRY_VALUE: _registry,
    SettingCategory.SERVICE_STATE: _service,
    SettingCategory.SCHEDULED_TASK_STATE: _task,
    SettingCategory.PACKAGE_INSTALLED: _package,
    SettingCategory.PROCESS_RESTART: _process,
    SettingCategory.ENVIRONMENT_VARIABLE: _environment,
    SettingCategory.FILE_REMOVAL: _file_removal,
    SettingCategory.CONTEXT_MENU_ENTRY: _context_menu,
    SettingCategory.POWER_PLAN: _power_plan,
}
