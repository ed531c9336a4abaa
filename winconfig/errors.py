"""Error types with stable codes, raised by providers, catalogs and settings."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class WinConfigError(Exception):
    code: str
    message: str
    data: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotElevatedError(WinConfigError):
    pass


class ProviderFailure(WinConfigError):
    pass


class CommandTimeout(ProviderFailure):
    pass


class CatalogError(WinConfigError):
    pass


class SettingsError(WinConfigError):
    pass
