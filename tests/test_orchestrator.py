from __future__ import annotations

import pytest

from winconfig.catalog import build_settings
from winconfig.errors import NotElevatedError
from winconfig.models import (
    HostFacts,
    OutcomeStatus,
    ProcessRestartSpec,
    RegistryData,
    RegistryLocation,
    RunSummary,
    Setting,
    SettingCategory,
    SkipReason,
)
from services.applier import ApplyOptions
from services.orchestrator import (
    EXIT_CRITICAL_FAILURE,
    EXIT_OK,
    Orchestrator,
    split_finalizers,
)
from services.outcome_log import OutcomeLog
from services.scheduled_tasks import TaskInfo
from services.service_control import ServiceStatus

from conftest import SimulatedHost

RESTART = Setting("finalize.restart-shell", SettingCategory.PROCESS_RESTART, "explorer", ProcessRestartSpec("explorer.exe"))


def _orchestrator(host, outcome_log, facts, settings, *, elevated=True, options=None) -> Orchestrator:
    return Orchestrator(
        host.providers(),
        outcome_log,
        settings_builder=lambda _facts: settings,
        facts_source=lambda: facts,
        elevation_check=lambda: elevated,
        options=options,
    )


def _prepare_machine(host: SimulatedHost) -> None:
    host.services.services["DiagTrack"] = ServiceStatus("DiagTrack", running=True, startup="Automatic")
    host.services.services["dmwappushservice"] = ServiceStatus("dmwappushservice", running=False, startup="Manual")
    host.scheduler.tasks.extend(
        [
            TaskInfo("\\Microsoft\\Windows\\Application Experience\\", "ProgramDataUpdater", "Ready"),
            TaskInfo("\\Microsoft\\Windows\\Customer Experience Improvement Program\\", "Consolidator", "Ready"),
        ]
    )
    temp = host.root / "temp"
    windows_temp = host.root / "windows" / "Temp"
    temp.mkdir()
    windows_temp.mkdir(parents=True)
    (temp / "setup.log").write_text("x")
    (windows_temp / "cab_1.tmp").write_text("y")
    host.environ["TEMP"] = str(temp)
    host.environ["SystemRoot"] = str(host.root / "windows")
    host.processes.running.add("explorer")


def test_not_elevated_stops_before_any_change(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    gathered = []
    orchestrator = Orchestrator(
        host.providers(),
        outcome_log,
        settings_builder=lambda facts: build_settings(),
        facts_source=lambda: gathered.append(True) or win11_facts,
        elevation_check=lambda: False,
    )

    with pytest.raises(NotElevatedError):
        orchestrator.run()

    assert gathered == []
    assert outcome_log.records == ()
    assert host.registry.keys == set()


def test_full_catalog_is_idempotent(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    _prepare_machine(host)
    settings = build_settings()

    first = _orchestrator(host, outcome_log, win11_facts, settings).run()
    after_first = host.snapshot()
    second = _orchestrator(host, outcome_log, win11_facts, settings).run()

    assert first.failed == 0
    assert first.succeeded > 0
    assert first.records[-1].setting_id == "finalize.restart-shell"
    assert first.records[-1].status is OutcomeStatus.SUCCESS
    assert second.failed == 0
    assert second.succeeded == 0
    assert host.snapshot() == after_first
    assert second.records[-1].reason is SkipReason.NO_CHANGES
    assert host.processes.started == ["explorer.exe"]
    assert list((host.root / "temp").iterdir()) == []


def test_windows_10_host_skips_newer_generation_settings(
    host: SimulatedHost, outcome_log: OutcomeLog, win10_facts: HostFacts
) -> None:
    _prepare_machine(host)
    summary = _orchestrator(host, outcome_log, win10_facts, build_settings()).run()

    by_id = {record.setting_id: record for record in summary.records}
    for setting_id in ("registry.taskbar-align-left", "registry.classic-context-menu", "task.pca-patch-db"):
        assert by_id[setting_id].reason is SkipReason.INAPPLICABLE
    assert by_id["registry.show-file-extensions"].status is OutcomeStatus.SUCCESS


def test_finalizer_runs_after_critical_halt(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    host.registry.denied.add(r"HKLM:\SOFTWARE\Locked")
    host.processes.running.add("explorer")
    settings = [
        Setting("ok", SettingCategory.REGISTRY_VALUE, RegistryLocation(r"HKCU:\Software\A", "V"), RegistryData(1)),
        RESTART,
        Setting(
            "locked",
            SettingCategory.REGISTRY_VALUE,
            RegistryLocation(r"HKLM:\SOFTWARE\Locked", "V"),
            RegistryData(1),
            critical=True,
        ),
        Setting("never", SettingCategory.REGISTRY_VALUE, RegistryLocation(r"HKCU:\Software\B", "V"), RegistryData(1)),
    ]
    summary = _orchestrator(host, outcome_log, win11_facts, settings).run()

    assert [record.setting_id for record in summary.records] == ["ok", "locked", "finalize.restart-shell"]
    assert summary.aborted
    assert summary.records[-1].status is OutcomeStatus.SUCCESS
    assert Orchestrator.exit_code(summary) == EXIT_CRITICAL_FAILURE


def test_finalizer_skipped_when_nothing_changed(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    host.registry.set_value(r"HKCU:\Software\A", "V", RegistryData(1))
    settings = [
        Setting("ok", SettingCategory.REGISTRY_VALUE, RegistryLocation(r"HKCU:\Software\A", "V"), RegistryData(1)),
        RESTART,
    ]
    summary = _orchestrator(host, outcome_log, win11_facts, settings).run()

    assert summary.records[-1].reason is SkipReason.NO_CHANGES
    assert host.processes.terminated == []
    assert Orchestrator.exit_code(summary) == EXIT_OK


def test_dry_run_reports_finalizer_without_restarting(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    settings = [
        Setting("ok", SettingCategory.REGISTRY_VALUE, RegistryLocation(r"HKCU:\Software\A", "V"), RegistryData(1)),
        RESTART,
    ]
    options = ApplyOptions(dry_run=True)
    summary = _orchestrator(host, outcome_log, win11_facts, settings, options=options).run()

    assert [record.reason for record in summary.records] == [SkipReason.DRY_RUN, SkipReason.DRY_RUN]
    assert host.processes.terminated == []
    assert host.registry.keys == set()


def test_split_finalizers_preserves_order() -> None:
    a = Setting("a", SettingCategory.FILE_REMOVAL, "x")
    b = Setting("b", SettingCategory.FILE_REMOVAL, "y")
    main, finalizers = split_finalizers([a, RESTART, b])
    assert main == (a, b)
    assert finalizers == (RESTART,)


def test_exit_code_reflects_critical_failure_only() -> None:
    assert Orchestrator.exit_code(RunSummary((), aborted=False, critical_failure=False)) == EXIT_OK
    assert Orchestrator.exit_code(RunSummary((), aborted=False, critical_failure=True)) == EXIT_CRITICAL_FAILURE
