"""Provider contract and the failure-isolating base class."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Protocol

from winconfig.errors import WinConfigError
from winconfig.models import OutcomeRecord, Setting, SettingCategory

logger = logging.getLogger(__name__)


class SettingProvider(Protocol):
    category: SettingCategory

    def is_satisfied(self, setting: Setting) -> bool:  # pragma: no cover - protocol
        ...

    def apply(self, setting: Setting) -> OutcomeRecord:  # pragma: no cover - protocol
        ...


class BaseProvider:
    """Converts every failure raised by a concrete provider into a Failed record.

    Subclasses implement ``_is_satisfied`` and ``_apply`` and may raise freely;
    nothing raised there crosses ``is_satisfied`` or ``apply``.
    """

    category: SettingCategory

    def is_satisfied(self, setting: Setting) -> bool:
        try:
            return self._is_satisfied(setting)
        except Exception as exc:  # noqa: BLE001 - a failed check means "not satisfied"
            logger.warning("%s: state check failed (%s); treating as not satisfied", setting.id, describe_error(exc))
            return False

    def apply(self, setting: Setting) -> OutcomeRecord:
        try:
            return self._apply(setting)
        except Exception as exc:  # noqa: BLE001 - provider boundary
            logger.debug("%s: apply raised", setting.id, exc_info=True)
            return OutcomeRecord.failed(setting, describe_error(exc))

    def missing_target(self, setting: Setting) -> str | None:
        """Describe why the target does not exist, or None when it does or cannot tell."""
        try:
            return self._missing_target(setting)
        except Exception as exc:  # noqa: BLE001 - unknown means "present"
            logger.warning("%s: target lookup failed (%s)", setting.id, describe_error(exc))
            return None

    def _is_satisfied(self, setting: Setting) -> bool:
        raise NotImplementedError

    def _missing_target(self, setting: Setting) -> str | None:
        return None

    def _apply(self, setting: Setting) -> OutcomeRecord:
        raise NotImplementedError


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, WinConfigError):
        return exc.message
    text = str(exc).strip()
    if text:
        return f"{type(exc).__name__}: {text}"
    return type(exc).__name__


class ProviderRegistry:
    def __init__(self, providers: Iterable[SettingProvider] = ()) -> None:
        self._providers: Dict[SettingCategory, SettingProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: SettingProvider) -> None:
        self._providers[provider.category] = provider

    def get(self, category: SettingCategory | str) -> SettingProvider | None:
        if not isinstance(category, SettingCategory):
            return None
        return self._providers.get(category)

    def categories(self) -> list[SettingCategory]:
        return list(self._providers)
