"""Environment variables persisted through the registry environment keys."""
from __future__ import annotations

import ctypes
import logging
import os
from typing import MutableMapping, Protocol

from winconfig.models import (
    EnvironmentLocator,
    EnvironmentScope,
    OutcomeRecord,
    RegistryData,
    RegistryKind,
    Setting,
    SettingCategory,
)
from services.providers import BaseProvider
from services.registry import RegistryAccessor

logger = logging.getLogger(__name__)

MACHINE_ENVIRONMENT_PATH = r"HKLM:\SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
USER_ENVIRONMENT_PATH = r"HKCU:\Environment"
HWND_BROADCAST = 0xFFFF
WM_SETTINGCHANGE = 0x001A
SMTO_ABORTIFHUNG = 0x0002


class EnvironmentStore(Protocol):
    def get(self, name: str, scope: EnvironmentScope) -> str | None:  # pragma: no cover - protocol
        ...

    def set(self, name: str, value: str, scope: EnvironmentScope) -> None:  # pragma: no cover - protocol
        ...


class RegistryEnvironmentStore:
    """User/machine scope live in the registry; every write is mirrored into the process."""

    def __init__(self, registry: RegistryAccessor, environ: MutableMapping[str, str] | None = None) -> None:
        self._registry = registry
        self._environ = os.environ if environ is None else environ

    def get(self, name: str, scope: EnvironmentScope) -> str | None:
        if scope is EnvironmentScope.PROCESS:
            return self._environ.get(name)
        data = self._registry.query_value(_scope_path(scope), name)
        return None if data is None else str(data.value)

    def set(self, name: str, value: str, scope: EnvironmentScope) -> None:
        if scope is not EnvironmentScope.PROCESS:
            kind = RegistryKind.EXPAND_SZ if "%" in value else RegistryKind.SZ
            self._registry.set_value(_scope_path(scope), name, RegistryData(value, kind))
            _broadcast_environment_change()
        self._environ[name] = value


def _scope_path(scope: EnvironmentScope) -> str:
    if scope is EnvironmentScope.MACHINE:
        return MACHINE_ENVIRONMENT_PATH
    return USER_ENVIRONMENT_PATH


def _broadcast_environment_change() -> None:
    try:
        send = ctypes.windll.user32.SendMessageTimeoutW  # type: ignore[attr-defined]
    except AttributeError:
        return
    result = ctypes.c_long()
    send(HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment", SMTO_ABORTIFHUNG, 5000, ctypes.byref(result))


class EnvironmentVariableProvider(BaseProvider):
    category = SettingCategory.ENVIRONMENT_VARIABLE

    def __init__(self, store: EnvironmentStore) -> None:
        self._store = store

    def _is_satisfied(self, setting: Setting) -> bool:
        locator: EnvironmentLocator = setting.target  # type: ignore[assignment]
        return self._store.get(locator.name, locator.scope) == str(setting.desired_value)

    def _apply(self, setting: Setting) -> OutcomeRecord:
        locator: EnvironmentLocator = setting.target  # type: ignore[assignment]
        value = str(setting.desired_value)
        previous = self._store.get(locator.name, locator.scope)
        self._store.set(locator.name, value, locator.scope)
        logger.debug("%s: %s %r -> %r", setting.id, locator.name, previous, value)
        return OutcomeRecord.success(setting, f"{locator.name}={value} ({locator.scope.value})")
