"""Registry access and the registry-backed providers."""
from __future__ import annotations

import logging
from typing import Protocol

from winconfig.errors import ProviderFailure
from winconfig.models import (
    ContextMenuCommand,
    ContextMenuLocator,
    OutcomeRecord,
    RegistryData,
    RegistryKind,
    RegistryLocation,
    Setting,
    SettingCategory,
)
from services.providers import BaseProvider

try:  # Windows-only dependency, optional for test doubles
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

logger = logging.getLogger(__name__)


class RegistryAccessor(Protocol):
    def query_value(self, path: str, value_name: str) -> RegistryData | None:  # pragma: no cover - protocol
        ...

    def set_value(self, path: str, value_name: str, data: RegistryData) -> None:  # pragma: no cover - protocol
        ...

    def key_exists(self, path: str) -> bool:  # pragma: no cover - protocol
        ...

    def create_key(self, path: str) -> None:  # pragma: no cover - protocol
        ...

    def delete_key(self, path: str) -> None:  # pragma: no cover - protocol
        ...


class WindowsRegistryAccessor:
    """Registry helper backed by winreg. Paths use the ``HKLM:\\...`` form."""

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")
        self._kinds = {
            RegistryKind.SZ: winreg.REG_SZ,
            RegistryKind.EXPAND_SZ: winreg.REG_EXPAND_SZ,
            RegistryKind.DWORD: winreg.REG_DWORD,
            RegistryKind.QWORD: winreg.REG_QWORD,
            RegistryKind.MULTI_SZ: winreg.REG_MULTI_SZ,
            RegistryKind.BINARY: winreg.REG_BINARY,
        }

    def query_value(self, path: str, value_name: str) -> RegistryData | None:
        hive, subkey = self._split_path(path)
        try:
            with winreg.OpenKey(hive, subkey) as key:  # type: ignore[arg-type]
                value, value_type = winreg.QueryValueEx(key, value_name)
        except FileNotFoundError:
            return None
        for kind, native in self._kinds.items():
            if native == value_type:
                return RegistryData(value, kind)
        return RegistryData(value, RegistryKind.BINARY)

    def set_value(self, path: str, value_name: str, data: RegistryData) -> None:
        hive, subkey = self._split_path(path)
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE) as key:  # type: ignore[arg-type]
            winreg.SetValueEx(key, value_name, 0, self._kinds[data.kind], data.value)

    def key_exists(self, path: str) -> bool:
        hive, subkey = self._split_path(path)
        try:
            with winreg.OpenKey(hive, subkey):  # type: ignore[arg-type]
                return True
        except FileNotFoundError:
            return False

    def create_key(self, path: str) -> None:
        hive, subkey = self._split_path(path)
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE):  # type: ignore[arg-type]
            pass

    def delete_key(self, path: str) -> None:
        hive, subkey = self._split_path(path)
        self._delete_tree(hive, subkey)

    def _delete_tree(self, hive: object, subkey: str) -> None:
        try:
            with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ) as key:  # type: ignore[arg-type]
                children = []
                index = 0
                while True:
                    try:
                        children.append(winreg.EnumKey(key, index))
                    except OSError:
                        break
                    index += 1
        except FileNotFoundError:
            return
        for child in children:
            self._delete_tree(hive, f"{subkey}\\{child}")
        winreg.DeleteKey(hive, subkey)  # type: ignore[arg-type]

    def _split_path(self, path: str) -> tuple[object, str]:
        cleaned = path.replace("/", "\\")
        marker = ":\\"
        if marker not in cleaned:
            raise ValueError(f"Invalid registry path: {path}")
        hive_name, subkey = cleaned.split(marker, 1)
        subkey = subkey.lstrip("\\")
        hive_map = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKCR": winreg.HKEY_CLASSES_ROOT,
            "HKU": winreg.HKEY_USERS,
            "HKCC": winreg.HKEY_CURRENT_CONFIG,
        }
        try:
            hive = hive_map[hive_name.upper()]
        except KeyError as exc:
            raise ValueError(f"Unsupported hive: {hive_name}") from exc
        return hive, subkey


def same_data(actual: RegistryData | None, desired: RegistryData) -> bool:
    if actual is None or actual.kind != desired.kind:
        return False
    if desired.kind in (RegistryKind.DWORD, RegistryKind.QWORD):
        try:
            return int(actual.value) == int(desired.value)
        except (TypeError, ValueError):
            return False
    if desired.kind is RegistryKind.MULTI_SZ:
        return list(actual.value or ()) == list(desired.value or ())
    return actual.value == desired.value


def _describe(data: RegistryData | None) -> str:
    if data is None:
        return "Not Set"
    return f"{data.value!r} ({data.kind.value})"


class RegistryValueProvider(BaseProvider):
    category = SettingCategory.REGISTRY_VALUE

    def __init__(self, registry: RegistryAccessor) -> None:
        self._registry = registry

    def _is_satisfied(self, setting: Setting) -> bool:
        location: RegistryLocation = setting.target  # type: ignore[assignment]
        desired: RegistryData | None = setting.desired_value
        if desired is None:
            return self._registry.key_exists(location.path)
        return same_data(self._registry.query_value(location.path, location.value_name), desired)

    def _apply(self, setting: Setting) -> OutcomeRecord:
        location: RegistryLocation = setting.target  # type: ignore[assignment]
        desired: RegistryData | None = setting.desired_value
        created = not self._registry.key_exists(location.path)
        if desired is None:
            self._registry.create_key(location.path)
            return OutcomeRecord.success(setting, f"created key {location.path}" if created else "key present")
        self._registry.set_value(location.path, location.value_name, desired)
        logger.debug("%s: wrote %s\\%s", setting.id, location.path, location.value_name or "(default)")
        actual = self._registry.query_value(location.path, location.value_name)
        name = location.value_name or "(default)"
        if not same_data(actual, desired):
            raise ProviderFailure(
                code="provider.failure",
                message=f"{name} set to {_describe(desired)} but reads back {_describe(actual)}",
            )
        detail = f"{name} = {_describe(desired)}"
        if created:
            detail = f"{detail}; created key {location.path}"
        return OutcomeRecord.success(setting, detail)


class ContextMenuProvider(BaseProvider):
    """Shell verbs written as ``<root>\\<verb>`` with a ``command`` subkey."""

    category = SettingCategory.CONTEXT_MENU_ENTRY

    def __init__(self, registry: RegistryAccessor) -> None:
        self._registry = registry

    def _is_satisfied(self, setting: Setting) -> bool:
        locator: ContextMenuLocator = setting.target  # type: ignore[assignment]
        desired: ContextMenuCommand | None = setting.desired_value
        verb_key = _verb_key(locator)
        if desired is None:
            return not self._registry.key_exists(verb_key)
        label_ok = same_data(self._registry.query_value(verb_key, ""), RegistryData(desired.label, RegistryKind.SZ))
        command_ok = same_data(
            self._registry.query_value(f"{verb_key}\\command", ""),
            RegistryData(desired.command, RegistryKind.SZ),
        )
        icon_ok = desired.icon is None or same_data(
            self._registry.query_value(verb_key, "Icon"),
            RegistryData(desired.icon, RegistryKind.SZ),
        )
        return label_ok and command_ok and icon_ok

    def _apply(self, setting: Setting) -> OutcomeRecord:
        locator: ContextMenuLocator = setting.target  # type: ignore[assignment]
        desired: ContextMenuCommand | None = setting.desired_value
        verb_key = _verb_key(locator)
        if desired is None:
            self._registry.delete_key(verb_key)
            return OutcomeRecord.success(setting, f"removed {verb_key}")
        self._registry.set_value(verb_key, "", RegistryData(desired.label, RegistryKind.SZ))
        if desired.icon:
            self._registry.set_value(verb_key, "Icon", RegistryData(desired.icon, RegistryKind.SZ))
        self._registry.set_value(f"{verb_key}\\command", "", RegistryData(desired.command, RegistryKind.SZ))
        return OutcomeRecord.success(setting, f"{desired.label!r} -> {desired.command}")


def _verb_key(locator: ContextMenuLocator) -> str:
    root = locator.root.rstrip("\\")
    return f"{root}\\{locator.verb}"
