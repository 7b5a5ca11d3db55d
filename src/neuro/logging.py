"""Structured event log written as JSON lines.

Each event is one JSON object per line in ``events.jsonl``. When the file
reaches its size limit it is shifted to ``events.jsonl.1`` (older backups
move up by one) and a fresh file is started.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".neuro" / "logs"


@dataclass
class LogEntry:
    """One event in the log."""

    timestamp: str
    event: str
    subject: str | None = None
    account: str | None = None
    attempt: int | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, leaving out unset fields and an empty ``extra``."""
        data: dict[str, Any] = {"timestamp": self.timestamp, "event": self.event}
        for name in ("subject", "account", "attempt", "duration_ms", "error"):
            value = getattr(self, name)
            if value is not None:
                data[name] = round(value, 1) if name == "duration_ms" else value
        if self.extra:
            data["extra"] = self.extra
        return data


class JSONLLogger:
    """Appends :class:`LogEntry` records to a size-capped JSONL file."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        backup_count: int = 5,
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.backup_count = backup_count

    @property
    def log_path(self) -> Path:
        """Path of the file currently written to."""
        return self.log_dir / self.filename

    def backup_path(self, index: int) -> Path:
        """Path of the ``index``-th rotated file (1 is the newest)."""
        return self.log_dir / f"{self.filename}.{index}"

    def _shift_backups(self) -> None:
        oldest = self.backup_path(self.backup_count)
        if oldest.exists():
            oldest.unlink()
        for index in range(self.backup_count - 1, 0, -1):
            source = self.backup_path(index)
            if source.exists():
                source.rename(self.backup_path(index + 1))
        self.log_path.rename(self.backup_path(1))

    def _append(self, entry: LogEntry) -> None:
        path = self.log_path
        if path.exists() and path.stat().st_size >= self.max_size_bytes:
            self._shift_backups()

        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def log(
        self,
        event: str,
        *,
        subject: str | None = None,
        account: str | None = None,
        attempt: int | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Record an event; keyword arguments beyond the known fields go to ``extra``."""
        self._append(
            LogEntry(
                timestamp=datetime.now(timezone.utc).isoformat(),
                event=event,
                subject=subject,
                account=account,
                attempt=attempt,
                duration_ms=duration_ms,
                error=error,
                extra=extra,
            )
        )

    def log_model_call(
        self,
        account: str,
        *,
        attempt: int,
        status_code: int | None,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        """One HTTP attempt against the model endpoint."""
        self.log(
            "model_call",
            account=account,
            attempt=attempt,
            duration_ms=duration_ms,
            error=error,
            status_code=status_code,
        )

    def log_rotation(self, account: str, reason: str) -> None:
        """The caller gave up on ``account`` and moved to the next one."""
        self.log("account_rotated", account=account, reason=reason)

    def log_compression(
        self,
        subject: str,
        *,
        messages_compressed: int,
        tokens_before: int,
        tokens_after: int,
        items_extracted: int,
        fallback: bool,
    ) -> None:
        """A completed compression of a subject's history."""
        self.log(
            "compression",
            subject=subject,
            messages_compressed=messages_compressed,
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            items_extracted=items_extracted,
            fallback=fallback,
        )


# Process-wide event log
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Return the process-wide event log, creating it on first use."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(
    log_dir: str | Path | None = None,
    max_size_mb: float = 10.0,
    backup_count: int = 5,
) -> JSONLLogger:
    """Replace the process-wide event log."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb, backup_count=backup_count)
    return _logger
