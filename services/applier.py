"""Sequential application of settings with per-setting failure isolation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Sequence, Tuple

from winconfig.conditions import ConditionEvaluator
from winconfig.models import HostFacts, OutcomeRecord, OutcomeStatus, Setting, SettingCategory, SkipReason
from services.outcome_log import OutcomeLog
from services.providers import ProviderRegistry, SettingProvider, describe_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyOptions:
    dry_run: bool = False
    continue_on_critical_failure: bool = False
    # category -> host capability it cannot run without
    required_capabilities: Mapping[SettingCategory, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ApplyResult:
    records: Tuple[OutcomeRecord, ...]
    aborted: bool
    critical_failure: bool

    @property
    def any_succeeded(self) -> bool:
        return any(record.status is OutcomeStatus.SUCCESS for record in self.records)


class Applier:
    """Runs ``Pending -> Skipped | Applying -> Succeeded | Failed`` for each setting in order."""

    def __init__(
        self,
        providers: ProviderRegistry,
        outcome_log: OutcomeLog,
        *,
        evaluator: ConditionEvaluator | None = None,
        options: ApplyOptions | None = None,
    ) -> None:
        self._providers = providers
        self._log = outcome_log
        self._evaluator = evaluator or ConditionEvaluator()
        self._options = options or ApplyOptions()

    def run(self, settings: Sequence[Setting] | Iterable[Setting], facts: HostFacts) -> ApplyResult:
        records: List[OutcomeRecord] = []
        critical_failure = False
        for setting in settings:
            outcome = self.apply_one(setting, facts)
            self._log.record(outcome, critical=setting.critical)
            records.append(outcome)
            if outcome.status is OutcomeStatus.FAILED and setting.critical:
                critical_failure = True
                if not self._options.continue_on_critical_failure:
                    self._log.event(
                        "run-halted",
                        f"critical setting {setting.id} failed; remaining settings not attempted",
                        level=logging.ERROR,
                        setting=setting.id,
                    )
                    return ApplyResult(tuple(records), aborted=True, critical_failure=True)
        return ApplyResult(tuple(records), aborted=False, critical_failure=critical_failure)

    def apply_one(self, setting: Setting, facts: HostFacts) -> OutcomeRecord:
        if not self._evaluator.applicable(setting, facts):
            condition = setting.condition.describe() if setting.condition else ""
            return OutcomeRecord.skipped(setting, SkipReason.INAPPLICABLE, f"not applicable to this host ({condition})")

        provider = self._providers.get(setting.category)
        if provider is None:
            return OutcomeRecord.failed(setting, f"unknown category {setting.category_name}")

        required = self._required_capability(setting)
        if required and not facts.has_capability(required):
            return OutcomeRecord.skipped(
                setting,
                SkipReason.CAPABILITY_MISSING,
                f"{required} is not available on this host",
            )

        try:
            satisfied = provider.is_satisfied(setting)
        except Exception as exc:  # noqa: BLE001 - providers not derived from BaseProvider
            return OutcomeRecord.failed(setting, describe_error(exc))
        if satisfied:
            return OutcomeRecord.skipped(setting, SkipReason.ALREADY_SATISFIED, "already in desired state")

        if self._options.dry_run:
            missing = _missing_target(provider, setting)
            if missing:
                return OutcomeRecord.skipped(setting, SkipReason.NOT_FOUND, missing)
            return OutcomeRecord.skipped(setting, SkipReason.DRY_RUN, "would apply")

        self._log.event("setting-applying", level=logging.DEBUG, setting=setting.id, category=setting.category_name)
        try:
            return provider.apply(setting)
        except Exception as exc:  # noqa: BLE001 - providers not derived from BaseProvider
            return OutcomeRecord.failed(setting, describe_error(exc))

    def _required_capability(self, setting: Setting) -> str | None:
        if not isinstance(setting.category, SettingCategory):
            return None
        return self._options.required_capabilities.get(setting.category)


def _missing_target(provider: SettingProvider, setting: Setting) -> str | None:
    """Lets a dry run report the not-found outcome a real run would produce."""
    check = getattr(provider, "missing_target", None)
    if check is None:
        return None
    try:
        return check(setting)
    except Exception:  # noqa: BLE001 - unknown means "would apply"
        logger.debug("%s: target lookup raised", setting.id, exc_info=True)
        return None
