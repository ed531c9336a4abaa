"""One-shot snapshot of the facts settings are conditioned on."""
from __future__ import annotations

import logging
import platform
import sys
from typing import Callable, Iterable, Tuple

from winconfig.constants import WINDOWS_11_FIRST_BUILD
from winconfig.models import HostFacts
from services.installer import WINGET_CAPABILITY, PackageManager
from services.privilege import is_admin

logger = logging.getLogger(__name__)


def derive_generation(os_major: int, build: int) -> int:
    if os_major == 10:
        return 11 if build >= WINDOWS_11_FIRST_BUILD else 10
    return os_major


def windows_version() -> Tuple[int, int]:
    getter = getattr(sys, "getwindowsversion", None)
    if getter is not None:
        info = getter()
        return int(info.major), int(info.build)
    parts = platform.version().split(".")
    try:
        return int(parts[0]), int(parts[2]) if len(parts) > 2 else 0
    except (ValueError, IndexError):
        return 0, 0


def gather_host_facts(
    *,
    version_source: Callable[[], Tuple[int, int]] = windows_version,
    elevation_check: Callable[[], bool] = is_admin,
    package_manager: PackageManager | None = None,
    extra_capabilities: Iterable[str] = (),
) -> HostFacts:
    os_major, build = version_source()
    capabilities = {name.lower() for name in extra_capabilities}
    if package_manager is not None and package_manager.is_available():
        capabilities.add(WINGET_CAPABILITY)
    facts = HostFacts(
        os_major=os_major,
        build=build,
        generation=derive_generation(os_major, build),
        elevated=elevation_check(),
        capabilities=frozenset(capabilities),
    )
    logger.debug("host facts: %s", facts)
    return facts
