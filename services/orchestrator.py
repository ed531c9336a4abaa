"""Top-level run sequencing: preflight, facts, apply, finalize, summary."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Sequence, Tuple

from winconfig.conditions import ConditionEvaluator
from winconfig.errors import NotElevatedError
from winconfig.models import HostFacts, OutcomeRecord, RunSummary, Setting, SettingCategory, SkipReason
from services.applier import Applier, ApplyOptions, ApplyResult
from services.outcome_log import OutcomeLog
from services.providers import ProviderRegistry

EXIT_OK = 0
EXIT_NOT_ELEVATED = 1
EXIT_CRITICAL_FAILURE = 2
EXIT_CONFIG_ERROR = 3

SettingsBuilder = Callable[[HostFacts], Sequence[Setting]]


def split_finalizers(settings: Sequence[Setting]) -> Tuple[Tuple[Setting, ...], Tuple[Setting, ...]]:
    main = tuple(s for s in settings if s.category is not SettingCategory.PROCESS_RESTART)
    finalizers = tuple(s for s in settings if s.category is SettingCategory.PROCESS_RESTART)
    return main, finalizers


class Orchestrator:
    def __init__(
        self,
        providers: ProviderRegistry,
        outcome_log: OutcomeLog,
        *,
        settings_builder: SettingsBuilder,
        facts_source: Callable[[], HostFacts],
        elevation_check: Callable[[], bool],
        options: ApplyOptions | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._providers = providers
        self._log = outcome_log
        self._build = settings_builder
        self._facts_source = facts_source
        self._elevation_check = elevation_check
        self._options = options or ApplyOptions()
        self._evaluator = evaluator or ConditionEvaluator()

    def run(self) -> RunSummary:
        self._log.event("run-started", dry_run=self._options.dry_run)
        if not self._elevation_check():
            self._log.event("not-elevated", "administrator privileges are required", level=logging.ERROR)
            raise NotElevatedError(code="preflight.not_elevated", message="Run this tool from an elevated prompt")

        facts = self._facts_source()
        self._log.event(
            "host-facts",
            level=logging.DEBUG,
            os_major=facts.os_major,
            build=facts.build,
            generation=facts.generation,
            capabilities=",".join(sorted(facts.capabilities)) or "-",
        )
        settings = tuple(self._build(facts))
        main, finalizers = split_finalizers(settings)

        applier = Applier(self._providers, self._log, evaluator=self._evaluator, options=self._options)
        result = applier.run(main, facts)
        final_records = self._finalize(applier, finalizers, facts, result)

        summary = RunSummary(
            records=result.records + final_records,
            aborted=result.aborted,
            critical_failure=result.critical_failure,
        )
        self._log.summary(summary)
        return summary

    def _finalize(
        self,
        applier: Applier,
        finalizers: Sequence[Setting],
        facts: HostFacts,
        result: ApplyResult,
    ) -> Tuple[OutcomeRecord, ...]:
        if not finalizers:
            return ()
        self._log.event("finalizing", level=logging.DEBUG, count=len(finalizers))
        records: List[OutcomeRecord] = []
        for setting in finalizers:
            # finalization failures are reported but never abort
            setting = replace(setting, critical=False)
            if not self._options.dry_run and not result.any_succeeded:
                outcome = OutcomeRecord.skipped(setting, SkipReason.NO_CHANGES, "no settings were changed")
            else:
                outcome = applier.apply_one(setting, facts)
            self._log.record(outcome)
            records.append(outcome)
        return tuple(records)

    @staticmethod
    def exit_code(summary: RunSummary) -> int:
        return EXIT_CRITICAL_FAILURE if summary.critical_failure else EXIT_OK
