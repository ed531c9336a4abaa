"""Pure builder for the ordered setting list."""
from __future__ import annotations

from typing import Iterable, List, Tuple

from winconfig.conditions import Condition, generation_at_least
from winconfig.constants import FIXED_SETUP_CONFIG, FixedSetupConfig
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


def build_settings(
    config: FixedSetupConfig = FIXED_SETUP_CONFIG,
    *,
    extra_packages: Iterable[str] = (),
    restart_shell: bool = True,
) -> Tuple[Setting, ...]:
    """Return the static setting list in application order.

    Order matters: registry keys are written before the shell restart that
    picks them up, and the restart is always last.
    """
    settings: List[Setting] = []
    for tweak in config.registry:
        settings.append(
            Setting(
                id=f"registry.{tweak.key}",
                category=SettingCategory.REGISTRY_VALUE,
                target=RegistryLocation(tweak.path, tweak.value_name),
                desired_value=RegistryData(tweak.desired_value, RegistryKind(tweak.kind)),
                condition=_min_generation(tweak.min_generation),
                critical=tweak.key == "telemetry-policy",
            )
        )
    for service in config.telemetry_services:
        settings.append(
            Setting(
                id=f"service.{service.lower()}",
                category=SettingCategory.SERVICE_STATE,
                target=service,
                desired_value=ServiceDesiredState(StartupMode.DISABLED, stopped=True),
            )
        )
    for task in config.telemetry_tasks:
        settings.append(
            Setting(
                id=f"task.{task.key}",
                category=SettingCategory.SCHEDULED_TASK_STATE,
                target=TaskLocator(task.task_path, task.task_name),
                desired_value=False,
                condition=_min_generation(task.min_generation),
            )
        )
    settings.append(
        Setting(
            id="power.plan",
            category=SettingCategory.POWER_PLAN,
            target=PowerPlanLocator(config.power_plan.friendly_name, config.power_plan.source_scheme),
        )
    )
    for name, value in config.environment:
        settings.append(
            Setting(
                id=f"env.{name.lower()}",
                category=SettingCategory.ENVIRONMENT_VARIABLE,
                target=EnvironmentLocator(name, EnvironmentScope.MACHINE),
                desired_value=value,
            )
        )
    classic = config.classic_context_menu
    settings.append(
        Setting(
            id=f"registry.{classic.key}",
            category=SettingCategory.REGISTRY_VALUE,
            target=RegistryLocation(classic.path, classic.value_name),
            desired_value=RegistryData(classic.desired_value, RegistryKind(classic.kind)),
            condition=_min_generation(classic.min_generation),
        )
    )
    menu = config.context_menu
    settings.append(
        Setting(
            id=f"context-menu.{menu.verb.lower()}",
            category=SettingCategory.CONTEXT_MENU_ENTRY,
            target=ContextMenuLocator(menu.root, menu.verb),
            desired_value=ContextMenuCommand(menu.label, menu.command, menu.icon),
        )
    )
    for index, pattern in enumerate(config.cleanup_globs, start=1):
        settings.append(
            Setting(
                id=f"cleanup.{index}",
                category=SettingCategory.FILE_REMOVAL,
                target=pattern,
                description=f"Remove {pattern}",
            )
        )
    packages = list(config.packages)
    for package_id in extra_packages:
        if package_id not in packages:
            packages.append(package_id)
    for package_id in packages:
        settings.append(
            Setting(
                id=f"package.{package_id.lower()}",
                category=SettingCategory.PACKAGE_INSTALLED,
                target=PackageLocator(package_id),
                desired_value=PackagePresence.INSTALLED,
            )
        )
    if restart_shell:
        settings.append(
            Setting(
                id="finalize.restart-shell",
                category=SettingCategory.PROCESS_RESTART,
                target=config.desktop_shell,
                desired_value=ProcessRestartSpec(relaunch=config.desktop_shell_executable),
            )
        )
    ensure_unique_ids(settings)
    return tuple(settings)


def ensure_unique_ids(settings: Iterable[Setting]) -> None:
    seen: set[str] = set()
    for setting in settings:
        if setting.id in seen:
            raise CatalogError(code="catalog.duplicate_id", message=f"Duplicate setting id: {setting.id}")
        seen.add(setting.id)


def _min_generation(generation: int | None) -> Condition | None:
    if generation is None:
        return None
    return generation_at_least(generation)
