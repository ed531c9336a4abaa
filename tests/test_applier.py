from __future__ import annotations

from winconfig.conditions import Condition, generation_at_least
from winconfig.models import (
    HostFacts,
    OutcomeRecord,
    OutcomeStatus,
    PackageLocator,
    PackagePresence,
    RegistryData,
    RegistryKind,
    RegistryLocation,
    Setting,
    SettingCategory,
    SkipReason,
    TaskLocator,
)
from services.applier import Applier, ApplyOptions
from services.outcome_log import OutcomeLog
from services.providers import ProviderRegistry
from services.scheduled_tasks import TaskInfo

from conftest import SimulatedHost

POLICY = r"HKLM:\SOFTWARE\Policies\Example"


class SpyProvider:
    category = SettingCategory.FILE_REMOVAL

    def __init__(self, *, satisfied: bool = False, raises: Exception | None = None) -> None:
        self.satisfied = satisfied
        self.raises = raises
        self.applied: list[str] = []

    def is_satisfied(self, setting: Setting) -> bool:
        return self.satisfied

    def apply(self, setting: Setting) -> OutcomeRecord:
        self.applied.append(setting.id)
        if self.raises:
            raise self.raises
        return OutcomeRecord.success(setting, "done")


def _registry_setting(setting_id: str, path: str, *, critical: bool = False) -> Setting:
    return Setting(
        setting_id,
        SettingCategory.REGISTRY_VALUE,
        RegistryLocation(path, "Enabled"),
        RegistryData(0),
        critical=critical,
    )


def test_critical_failure_halts_remaining_settings(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    host.registry.denied.add(r"HKLM:\SOFTWARE\Locked")
    settings = [
        _registry_setting("locked", r"HKLM:\SOFTWARE\Locked\Key", critical=True),
        _registry_setting("later", POLICY),
    ]
    result = Applier(host.providers(), outcome_log).run(settings, win11_facts)

    assert len(result.records) == 1
    assert result.records[0].status is OutcomeStatus.FAILED
    assert "Access is denied" in result.records[0].detail
    assert result.aborted and result.critical_failure
    assert host.registry.query_value(POLICY, "Enabled") is None


def test_non_critical_failure_continues(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    host.registry.denied.add(r"HKLM:\SOFTWARE\Locked")
    settings = [
        _registry_setting("locked", r"HKLM:\SOFTWARE\Locked\Key"),
        _registry_setting("later", POLICY),
    ]
    result = Applier(host.providers(), outcome_log).run(settings, win11_facts)

    assert [record.status for record in result.records] == [OutcomeStatus.FAILED, OutcomeStatus.SUCCESS]
    assert not result.aborted
    assert not result.critical_failure


def test_continue_on_critical_failure_override(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    host.registry.denied.add(r"HKLM:\SOFTWARE\Locked")
    settings = [
        _registry_setting("locked", r"HKLM:\SOFTWARE\Locked\Key", critical=True),
        _registry_setting("later", POLICY),
    ]
    applier = Applier(host.providers(), outcome_log, options=ApplyOptions(continue_on_critical_failure=True))
    result = applier.run(settings, win11_facts)

    assert len(result.records) == 2
    assert not result.aborted
    assert result.critical_failure


def test_unknown_condition_kind_is_skipped_without_applying(outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    spy = SpyProvider()
    setting = Setting("odd", SettingCategory.FILE_REMOVAL, "x", condition=Condition("edition_is", "Enterprise"))
    result = Applier(ProviderRegistry([spy]), outcome_log).run([setting], win11_facts)

    assert result.records[0].status is OutcomeStatus.SKIPPED
    assert result.records[0].reason is SkipReason.INAPPLICABLE
    assert spy.applied == []


def test_task_for_newer_generation_is_skipped_on_older_host(
    host: SimulatedHost, outcome_log: OutcomeLog, win10_facts: HostFacts
) -> None:
    host.scheduler.tasks.append(TaskInfo("\\Microsoft\\Windows\\Application Experience\\", "PcaPatchDbTask", "Ready"))
    setting = Setting(
        "task.pca",
        SettingCategory.SCHEDULED_TASK_STATE,
        TaskLocator("\\Microsoft\\Windows\\Application Experience\\", "PcaPatchDbTask"),
        False,
        condition=generation_at_least(11),
    )
    record = Applier(host.providers(), outcome_log).run([setting], win10_facts).records[0]

    assert record.status is OutcomeStatus.SKIPPED
    assert "not applicable" in record.detail
    assert host.scheduler.disabled == []


def test_installed_package_never_invokes_installer(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    host.packages.installed.add("Git.Git")
    setting = Setting(
        "package.git",
        SettingCategory.PACKAGE_INSTALLED,
        PackageLocator("Git.Git"),
        PackagePresence.INSTALLED,
    )
    record = Applier(host.providers(), outcome_log).run([setting], win11_facts).records[0]

    assert record.status is OutcomeStatus.SKIPPED
    assert record.reason is SkipReason.ALREADY_SATISFIED
    assert len(host.packages.install_calls) == 0


def test_package_policy_skips_when_capability_missing(host: SimulatedHost, outcome_log: OutcomeLog) -> None:
    facts = HostFacts(os_major=10, build=22631, generation=11, elevated=True)
    setting = Setting("package.git", SettingCategory.PACKAGE_INSTALLED, PackageLocator("Git.Git"))
    skip = ApplyOptions(required_capabilities={SettingCategory.PACKAGE_INSTALLED: "winget"})

    record = Applier(host.providers(), outcome_log, options=skip).run([setting], facts).records[0]
    assert record.status is OutcomeStatus.SKIPPED
    assert record.reason is SkipReason.CAPABILITY_MISSING

    host.packages.available = False
    record = Applier(host.providers(), outcome_log).run([setting], facts).records[0]
    assert record.status is OutcomeStatus.FAILED
    assert "winget" in record.detail
    assert host.packages.install_calls == []


def test_package_install_failure_is_non_critical(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    host.packages.failing.add("Broken.App")
    settings = [
        Setting("package.broken", SettingCategory.PACKAGE_INSTALLED, PackageLocator("Broken.App")),
        Setting("package.git", SettingCategory.PACKAGE_INSTALLED, PackageLocator("Git.Git")),
    ]
    result = Applier(host.providers(), outcome_log).run(settings, win11_facts)

    assert [record.status for record in result.records] == [OutcomeStatus.FAILED, OutcomeStatus.SUCCESS]
    assert "1603" in result.records[0].detail
    assert "Git.Git" in host.packages.installed


def test_unknown_category_fails_closed(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    settings = [
        Setting("firewall.rule", "FirewallRule", {"name": "x"}),
        _registry_setting("after", POLICY),
    ]
    result = Applier(host.providers(), outcome_log).run(settings, win11_facts)

    assert result.records[0].status is OutcomeStatus.FAILED
    assert "unknown category FirewallRule" in result.records[0].detail
    assert result.records[1].status is OutcomeStatus.SUCCESS


def test_dry_run_reports_without_mutating(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    host.registry.set_value(POLICY, "Enabled", RegistryData(0))
    settings = [
        _registry_setting("present", POLICY),
        _registry_setting("missing", r"HKCU:\Software\Example"),
    ]
    applier = Applier(host.providers(), outcome_log, options=ApplyOptions(dry_run=True))
    result = applier.run(settings, win11_facts)

    assert [record.reason for record in result.records] == [SkipReason.ALREADY_SATISFIED, SkipReason.DRY_RUN]
    assert not host.registry.key_exists(r"HKCU:\Software\Example")


def test_provider_exceptions_become_failed_records(outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    spy = SpyProvider(raises=OSError("device not ready"))
    setting = Setting("cleanup", SettingCategory.FILE_REMOVAL, "x")
    result = Applier(ProviderRegistry([spy]), outcome_log).run([setting], win11_facts)

    assert result.records[0].status is OutcomeStatus.FAILED
    assert "device not ready" in result.records[0].detail


def test_settings_apply_in_declaration_order(host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts) -> None:
    key = r"HKCU:\Software\Classes\CLSID\{86ca1aa0-34aa-4e8b-a509-50c905bae2a2}"
    create_key = Setting("create", SettingCategory.REGISTRY_VALUE, RegistryLocation(key))
    write_value = Setting(
        "write",
        SettingCategory.REGISTRY_VALUE,
        RegistryLocation(key + r"\InprocServer32", ""),
        RegistryData("", RegistryKind.SZ),
    )
    result = Applier(host.providers(), outcome_log).run([write_value, create_key], win11_facts)

    assert [record.setting_id for record in result.records] == ["write", "create"]
    assert result.records[0].status is OutcomeStatus.SUCCESS
    assert "created key" in result.records[0].detail
    # the parent was created by the nested write
    assert result.records[1].reason is SkipReason.ALREADY_SATISFIED
    assert [record.setting_id for record in outcome_log.records] == ["write", "create"]


class RaisingCheckProvider(SpyProvider):
    def is_satisfied(self, setting: Setting) -> bool:
        raise RuntimeError("state unreadable")


def test_state_check_exceptions_become_failed_records(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    registry = host.providers()
    spy = RaisingCheckProvider()
    registry.register(spy)
    settings = [
        Setting("cleanup", SettingCategory.FILE_REMOVAL, "x", critical=True),
        _registry_setting("after", POLICY),
    ]
    options = ApplyOptions(continue_on_critical_failure=True)
    result = Applier(registry, outcome_log, options=options).run(settings, win11_facts)

    assert result.records[0].status is OutcomeStatus.FAILED
    assert "state unreadable" in result.records[0].detail
    assert spy.applied == []
    assert result.records[1].status is OutcomeStatus.SUCCESS


def test_dry_run_reports_absent_scheduled_task_as_not_found(
    host: SimulatedHost, outcome_log: OutcomeLog, win11_facts: HostFacts
) -> None:
    setting = Setting(
        "task.gone",
        SettingCategory.SCHEDULED_TASK_STATE,
        TaskLocator("\\Microsoft\\Windows\\Maps\\", "Gone"),
        False,
    )
    dry = Applier(host.providers(), outcome_log, options=ApplyOptions(dry_run=True)).apply_one(setting, win11_facts)
    real = Applier(host.providers(), outcome_log).apply_one(setting, win11_facts)

    assert dry.status is OutcomeStatus.SKIPPED
    assert dry.reason is SkipReason.NOT_FOUND
    assert (real.status, real.reason, real.detail) == (dry.status, dry.reason, dry.detail)
