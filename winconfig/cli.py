"""Command-line entry point: apply the setup catalog to this machine."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Callable, Sequence, Tuple

from winconfig.catalog import build_settings
from winconfig.catalog_file import load_catalog
from winconfig.conditions import ConditionEvaluator
from winconfig.errors import CatalogError, NotElevatedError, SettingsError
from winconfig.models import HostFacts, OutcomeRecord, Setting, SettingCategory
from winconfig.user_settings import (
    OUTPUT_FORMATS,
    PACKAGE_POLICIES,
    PACKAGE_POLICY_SKIP,
    ApplierSettings,
    SettingsStore,
)
from services.applier import ApplyOptions
from services.commands import CommandRunner, SubprocessRunner
from services.environment import EnvironmentVariableProvider, RegistryEnvironmentStore
from services.filesystem import FileRemovalProvider
from services.host_facts import gather_host_facts
from services.installer import WINGET_CAPABILITY, PackageManager, PackageProvider, WingetClient
from services.orchestrator import EXIT_CONFIG_ERROR, EXIT_NOT_ELEVATED, EXIT_OK, Orchestrator
from services.outcome_log import OutcomeLog
from services.power import PowerPlanProvider
from services.privilege import is_admin
from services.processes import ProcessRestartProvider, WindowsProcessManager
from services.providers import ProviderRegistry
from services.registry import ContextMenuProvider, RegistryAccessor, RegistryValueProvider, WindowsRegistryAccessor
from services.scheduled_tasks import PowerShellTaskScheduler, ScheduledTaskProvider
from services.service_control import PowerShellServiceControl, ServiceStateProvider


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="winconfig-apply",
        description="Apply the declarative Windows setup catalog to the local machine.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Evaluate settings without changing anything")
    parser.add_argument(
        "--continue-on-critical-failure",
        action="store_true",
        default=None,
        help="Keep going after a critical setting fails (exit code still reports it)",
    )
    parser.add_argument("--output", choices=OUTPUT_FORMATS, default=None, help="Console output format")
    parser.add_argument("--log-file", default=None, help="Persistent log file path")
    parser.add_argument("--catalog", default=None, help="YAML catalog to apply instead of the built-in one")
    parser.add_argument("--package-policy", choices=PACKAGE_POLICIES, default=None)
    parser.add_argument("--timeout", type=float, default=None, help="Per-command timeout in seconds")
    parser.add_argument("--package", action="append", dest="packages", default=None, help="Extra winget package id")
    parser.add_argument("--no-restart-shell", action="store_true", help="Do not restart the desktop shell")
    parser.add_argument("--show-outcomes", action="store_true", help="Print every outcome after the summary")
    parser.add_argument("--list", action="store_true", help="List the catalog and exit")
    parser.add_argument("--settings-file", default=None, help="Settings JSON file")
    parser.add_argument("--save-settings", action="store_true", help="Persist the effective settings")
    return parser


def resolve_settings(args: argparse.Namespace, store: SettingsStore) -> ApplierSettings:
    return store.load().with_overrides(
        log_path=args.log_file,
        command_timeout=args.timeout,
        package_policy=args.package_policy,
        continue_on_critical_failure=args.continue_on_critical_failure,
        output_format=args.output,
        catalog_path=args.catalog,
        packages=args.packages,
        restart_shell=False if args.no_restart_shell else None,
    )


def load_settings_list(settings: ApplierSettings) -> Tuple[Setting, ...]:
    if not settings.catalog_path:
        return build_settings(extra_packages=settings.packages, restart_shell=settings.restart_shell)
    catalog = load_catalog(settings.catalog_path)
    if not settings.restart_shell:
        catalog = tuple(s for s in catalog if s.category is not SettingCategory.PROCESS_RESTART)
    return catalog


def apply_options(settings: ApplierSettings, *, dry_run: bool) -> ApplyOptions:
    required = {}
    if settings.package_policy == PACKAGE_POLICY_SKIP:
        required[SettingCategory.PACKAGE_INSTALLED] = WINGET_CAPABILITY
    return ApplyOptions(
        dry_run=dry_run,
        continue_on_critical_failure=settings.continue_on_critical_failure,
        required_capabilities=required,
    )


def build_provider_registry(
    runner: CommandRunner,
    registry: RegistryAccessor,
    package_manager: PackageManager,
) -> ProviderRegistry:
    return ProviderRegistry(
        [
            RegistryValueProvider(registry),
            ContextMenuProvider(registry),
            ServiceStateProvider(PowerShellServiceControl(runner)),
            ScheduledTaskProvider(PowerShellTaskScheduler(runner)),
            PackageProvider(package_manager),
            ProcessRestartProvider(WindowsProcessManager(runner)),
            EnvironmentVariableProvider(RegistryEnvironmentStore(registry)),
            FileRemovalProvider(),
            PowerPlanProvider(runner),
        ]
    )


def format_catalog(settings: Sequence[Setting], facts: HostFacts) -> list[str]:
    evaluator = ConditionEvaluator()
    lines = []
    for setting in settings:
        condition = setting.condition.describe() if setting.condition else "always"
        applicable = "yes" if evaluator.applicable(setting, facts) else "no"
        critical = "critical" if setting.critical else "-"
        lines.append(f"{setting.id:<40} {setting.category_name:<20} {critical:<8} {applicable:<4} {condition}")
    return lines


def format_outcome(record: OutcomeRecord) -> str:
    reason = f" ({record.reason.value})" if record.reason else ""
    return f"{record.setting_id}: {record.status.value}{reason} {record.detail}".rstrip()


def main(
    argv: Sequence[str] | None = None,
    *,
    registry_factory: Callable[[], RegistryAccessor] = WindowsRegistryAccessor,
    elevation_check: Callable[[], bool] = is_admin,
) -> int:
    args = build_parser().parse_args(argv)
    store = SettingsStore(Path(args.settings_file) if args.settings_file else None)
    try:
        settings = resolve_settings(args, store)
        if args.save_settings:
            store.save(settings)
        catalog = load_settings_list(settings)
    except (SettingsError, CatalogError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    runner = SubprocessRunner(timeout=settings.command_timeout)
    winget = WingetClient(command_runner=runner)

    def facts_source() -> HostFacts:
        return gather_host_facts(elevation_check=elevation_check, package_manager=winget)

    if args.list:
        for line in format_catalog(catalog, facts_source()):
            print(line)
        return EXIT_OK

    try:
        registry = registry_factory()
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    with OutcomeLog(settings.log_path, output_format=settings.output_format) as outcome_log:
        orchestrator = Orchestrator(
            build_provider_registry(runner, registry, winget),
            outcome_log,
            settings_builder=lambda _facts: catalog,
            facts_source=facts_source,
            elevation_check=elevation_check,
            options=apply_options(settings, dry_run=args.dry_run),
        )
        try:
            summary = orchestrator.run()
        except NotElevatedError as exc:
            print(f"error: {exc.message}", file=sys.stderr)
            return EXIT_NOT_ELEVATED

    if args.show_outcomes:
        for record in summary.records:
            if settings.output_format == "jsonl":
                print(json.dumps(record.to_dict(), ensure_ascii=False))
            else:
                print(format_outcome(record))
    return Orchestrator.exit_code(summary)


if __name__ == "__main__":
    sys.exit(main())
