"""Append-only outcome log with a durable file sink and a console sink."""
from __future__ import annotations

import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List, TextIO, Tuple

from winconfig.models import OutcomeRecord, OutcomeStatus, RunSummary

OUTCOME_LOGGER_NAME = "winconfig.outcomes"
DETAIL_LOGGER_NAMES = ("winconfig", "services")
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_SIZE = 10 * 1024 * 1024


class DurableFileHandler(RotatingFileHandler):
    """Fsyncs after every record so it is on disk before the next setting runs."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        if self.stream is None:
            return
        try:
            self.stream.flush()
            os.fsync(self.stream.fileno())
        except (OSError, ValueError):
            self.handleError(record)


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "payload", None)
        if payload is None:
            payload = {"message": record.getMessage()}
        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    MARKS = {"Success": "+", "Skipped": "-", "Failed": "x"}

    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "payload", None) or {}
        status = payload.get("status")
        if status:
            mark = self.MARKS.get(status, "?")
            text = f"[{mark}] {payload['setting']}: {status}"
            if payload.get("reason"):
                text = f"{text} ({payload['reason']})"
            if payload.get("detail"):
                text = f"{text} - {payload['detail']}"
            return text
        return f"[*] {record.getMessage()}"


def _field(value: Any) -> str:
    text = "" if value is None else str(value)
    text = text.replace("\r", " ").replace("\n", " ")
    if not text or any(ch.isspace() for ch in text) or '"' in text:
        return json.dumps(text, ensure_ascii=False)
    return text


class OutcomeLog:
    def __init__(
        self,
        log_path: Path | str | None,
        *,
        output_format: str = "text",
        stream: TextIO | None = None,
    ) -> None:
        self._records: List[OutcomeRecord] = []
        self._logger = logging.getLogger(OUTCOME_LOGGER_NAME)
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
        self._handlers: List[logging.Handler] = []
        self._file_handler: DurableFileHandler | None = None

        if log_path:
            path = Path(log_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = DurableFileHandler(path, maxBytes=MAX_LOG_SIZE, backupCount=1, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
            self._attach(self._logger, file_handler)
            for name in DETAIL_LOGGER_NAMES:
                detail_logger = logging.getLogger(name)
                detail_logger.setLevel(logging.DEBUG)
                detail_logger.addHandler(file_handler)
            self._file_handler = file_handler

        console = logging.StreamHandler(stream if stream is not None else sys.stdout)
        console.setLevel(logging.INFO)
        console.setFormatter(JsonLinesFormatter() if output_format == "jsonl" else ConsoleFormatter())
        self._attach(self._logger, console)

    @property
    def records(self) -> Tuple[OutcomeRecord, ...]:
        return tuple(self._records)

    def event(self, name: str, message: str = "", *, level: int = logging.INFO, **fields: Any) -> None:
        parts = [f"event={name}"]
        parts.extend(f"{key}={_field(value)}" for key, value in fields.items())
        if message:
            parts.append(f"message={_field(message)}")
        payload = {"event": name, **fields}
        if message:
            payload["message"] = message
        self._logger.log(level, " ".join(parts), extra={"payload": payload})

    def record(self, outcome: OutcomeRecord, *, critical: bool = False) -> None:
        self._records.append(outcome)
        level = logging.INFO
        if outcome.status is OutcomeStatus.FAILED:
            level = logging.ERROR if critical else logging.WARNING
        line = " ".join(
            [
                f"setting={_field(outcome.setting_id)}",
                f"category={_field(outcome.category)}",
                f"status={outcome.status.value}",
                f"reason={_field(outcome.reason.value if outcome.reason else '-')}",
                f"critical={str(critical).lower()}",
                f"detail={_field(outcome.detail)}",
            ]
        )
        self._logger.log(level, line, extra={"payload": outcome.to_dict()})

    def summary(self, summary: RunSummary) -> None:
        self.event(
            "run-finished",
            summary.line(),
            level=logging.ERROR if summary.critical_failure else logging.INFO,
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
            aborted=summary.aborted,
        )

    def close(self) -> None:
        for handler in self._handlers:
            self._logger.removeHandler(handler)
        if self._file_handler is not None:
            for name in DETAIL_LOGGER_NAMES:
                logging.getLogger(name).removeHandler(self._file_handler)
        for handler in self._handlers:
            handler.close()
        self._handlers.clear()

    def _attach(self, logger: logging.Logger, handler: logging.Handler) -> None:
        logger.addHandler(handler)
        self._handlers.append(handler)

    def __enter__(self) -> "OutcomeLog":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
