"""External command execution with a bounded runtime."""
from __future__ import annotations

import logging
import subprocess
from typing import Protocol, Sequence

from winconfig.errors import CommandTimeout

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 300.0


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def __init__(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        self._timeout = timeout

    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        logger.debug("run: %s", " ".join(command))
        try:
            return subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(
                code="command.timeout",
                message=f"{command[0]} timed out after {self._timeout:g} s",
                data={"command": list(command)},
            ) from exc
        except FileNotFoundError:
            return subprocess.CompletedProcess(list(command), 127, "", f"{command[0]} not found")


def powershell(script: str) -> list[str]:
    return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]


def format_command_detail(completed: subprocess.CompletedProcess[str]) -> str:
    detail_parts = [f"exit={completed.returncode}"]
    stdout = (completed.stdout or "").strip()
    stderr = (completed.stderr or "").strip()
    if stdout:
        detail_parts.append(f"stdout: {stdout}")
    if stderr:
        detail_parts.append(f"stderr: {stderr}")
    return ", ".join(detail_parts)


def failure_detail(completed: subprocess.CompletedProcess[str], step: str) -> str:
    detail = (completed.stderr or completed.stdout or "").strip()
    if detail:
        return f"{step} failed: {detail}"
    return f"{step} failed with exit code {completed.returncode}"


def ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
