"""Best-effort file and directory cleanup."""
from __future__ import annotations

import glob
import os
import re
import shutil
import sys
from pathlib import Path
from typing import List, Mapping

from winconfig.errors import ProviderFailure
from winconfig.models import OutcomeRecord, Setting, SettingCategory, SkipReason
from services.providers import BaseProvider

WINDOWS_VAR_PATTERN = re.compile(r"%([^%]+)%")


def expand_pattern(pattern: str, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    lookup = {key.upper(): value for key, value in env.items()}
    expanded = WINDOWS_VAR_PATTERN.sub(lambda match: lookup.get(match.group(1).upper(), match.group(0)), pattern)
    # glob accepts forward slashes on every platform
    return os.path.expanduser(expanded.replace("\\", "/"))


class FileRemovalProvider(BaseProvider):
    category = SettingCategory.FILE_REMOVAL

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ

    def _matches(self, setting: Setting) -> List[str]:
        pattern = expand_pattern(str(setting.target), self._environ)
        if WINDOWS_VAR_PATTERN.search(pattern):
            raise ProviderFailure(code="provider.failure", message=f"unresolved variable in {pattern}")
        return sorted(glob.glob(pattern))

    def _is_satisfied(self, setting: Setting) -> bool:
        return not self._matches(setting)

    def _apply(self, setting: Setting) -> OutcomeRecord:
        matches = self._matches(setting)
        if not matches:
            return OutcomeRecord.skipped(setting, SkipReason.NOT_FOUND, f"nothing matches {setting.target}")
        errors: List[str] = []
        removed = 0
        for match in matches:
            if self._remove(Path(match), errors):
                removed += 1
        if errors and not removed:
            raise ProviderFailure(
                code="provider.failure",
                message=f"could not remove {len(errors)} entries: " + "; ".join(errors[:5]),
            )
        detail = f"removed {removed} of {len(matches)} entries"
        if errors:
            detail = f"{detail}; {len(errors)} left in place (first: {errors[0]})"
        return OutcomeRecord.success(setting, detail)

    def _remove(self, path: Path, errors: List[str]) -> bool:
        before = len(errors)
        try:
            if path.is_dir() and not path.is_symlink():
                _rmtree(path, errors)
            else:
                path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            errors.append(f"{path}: {exc}")
        return len(errors) == before


def _rmtree(path: Path, errors: List[str]) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=lambda _func, failed, exc: errors.append(f"{failed}: {exc}"))
    else:
        shutil.rmtree(path, onerror=lambda _func, failed, info: errors.append(f"{failed}: {info[1]}"))
