"""Structured session logging for sweeps and batch imports.

Logs each sweep or import session to ~/.lexicon/logs/ in JSON-lines
format, so budget use, failures and correction yield can be reviewed
after long unattended runs.

Example usage:
    from lexicon.logging import SweepLogger

    logger = SweepLogger("validate", logs_dir=config.logs_dir)
    logger.log_page_started(page="fuerst_lex_0046.jpg", entries=31)
    logger.log_batch_applied(page="fuerst_lex_0046.jpg", batch=0, submitted=25, updated=25)
    logger.finalize(outcome="completed")
"""

import atexit
import json
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from lexicon.config import CONFIG_DIR

LOGS_DIR = CONFIG_DIR / "logs"


@dataclass
class SessionMetrics:
    """Aggregated metrics for one session."""

    pages_processed: int = 0
    pages_skipped: int = 0
    batches: int = 0
    entries_submitted: int = 0
    entries_updated: int = 0
    marked_valid: int = 0
    marked_invalid: int = 0
    errors: int = 0


@dataclass
class SweepLogger:
    """Session-based logger for sweep and import events."""

    mode: str
    logs_dir: Path = field(default_factory=lambda: LOGS_DIR)
    session_id: str = field(default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S_%f"))
    log_file: Path = field(init=False)
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    _started: datetime = field(default_factory=datetime.now)
    _log_buffer: list[dict[str, Any]] = field(default_factory=list)
    _BUFFER_SIZE: int = field(default=10, repr=False)
    _buffer_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.logs_dir / f"session_{self.session_id}.jsonl"
        self._write_event("session_start", {
            "mode": self.mode,
            "timestamp": self._started.isoformat(),
        })

    def set_config(self, config: dict) -> None:
        """Record the parameters of this session."""
        self._write_event("config", config)

    def log_page_started(self, page: str, entries: int) -> None:
        self._write_event("page_started", {"page": page, "entries": entries})

    def log_page_skipped(self, page: str, reason: str) -> None:
        """Log a page counted as processed without any requests."""
        self.metrics.pages_processed += 1
        self.metrics.pages_skipped += 1
        self._write_event("page_skipped", {"page": page, "reason": reason})

    def log_page_complete(self, page: str, updated: int) -> None:
        self.metrics.pages_processed += 1
        self._write_event("page_complete", {"page": page, "updated": updated})

    def log_batch_applied(
        self,
        page: str,
        batch: int,
        submitted: int,
        updated: int,
        valid: int = 0,
        invalid: int = 0,
    ) -> None:
        """Log one request's results after they were written to the store."""
        self.metrics.batches += 1
        self.metrics.entries_submitted += submitted
        self.metrics.entries_updated += updated
        self.metrics.marked_valid += valid
        self.metrics.marked_invalid += invalid
        self._write_event("batch_applied", {
            "page": page,
            "batch": batch,
            "submitted": submitted,
            "updated": updated,
            "valid": valid,
            "invalid": invalid,
        })

    def log_budget_exhausted(self, requests_used: int, max_requests: int) -> None:
        self._write_event("budget_exhausted", {
            "requests_used": requests_used,
            "max_requests": max_requests,
        })

    def log_cancelled(self, reason: str | None) -> None:
        self._write_event("cancelled", {"reason": reason})

    def log_import(self, kind: str, total: int, applied: int, skipped: int) -> None:
        """Log a batch-result import."""
        self.metrics.entries_submitted += total
        self.metrics.entries_updated += applied
        self._write_event("import_applied", {
            "kind": kind,
            "total": total,
            "applied": applied,
            "skipped": skipped,
        })

    def log_error(self, error_type: str, message: str, details: dict | None = None) -> None:
        """Log an error event."""
        self.metrics.errors += 1
        self._write_event("error", {
            "error_type": error_type,
            "message": message,
            "details": details or {},
        })

    def finalize(self, outcome: str, extra: dict | None = None) -> dict:
        """Finalize session and write summary.

        Returns:
            Summary metrics dict
        """
        elapsed = (datetime.now() - self._started).total_seconds()
        summary = {
            "mode": self.mode,
            "outcome": outcome,
            "duration_seconds": round(elapsed, 2),
            "pages_processed": self.metrics.pages_processed,
            "pages_skipped": self.metrics.pages_skipped,
            "batches": self.metrics.batches,
            "entries_submitted": self.metrics.entries_submitted,
            "entries_updated": self.metrics.entries_updated,
            "marked_valid": self.metrics.marked_valid,
            "marked_invalid": self.metrics.marked_invalid,
            "errors": self.metrics.errors,
            **(extra or {}),
        }

        self._write_event("session_complete", summary)
        self._flush_logs()
        return summary

    def _write_event(self, event_type: str, data: dict) -> None:
        """Buffer a JSON event and flush when buffer is full.

        Thread-safe: Uses _buffer_lock to prevent concurrent buffer modifications.
        """
        event = {
            "event": event_type,
            "ts": datetime.now().isoformat(),
            **data,
        }

        with self._buffer_lock:
            self._log_buffer.append(event)

            critical_events = {"session_start", "session_complete", "error", "budget_exhausted"}
            buffer_full = len(self._log_buffer) >= self._BUFFER_SIZE
            should_flush = buffer_full or event_type in critical_events

        # Flush outside the lock to avoid holding lock during I/O
        if should_flush:
            self._flush_logs()

    def _flush_logs(self) -> None:
        """Flush buffered log events to disk."""
        with self._buffer_lock:
            if not self._log_buffer:
                return
            events_to_write = self._log_buffer.copy()

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                for event in events_to_write:
                    try:
                        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
                    except (TypeError, ValueError) as e:
                        f.write(json.dumps({
                            "event": "serialization_error",
                            "ts": datetime.now().isoformat(),
                            "error": str(e),
                            "original_event_type": event.get("event", "unknown")
                        }) + "\n")

            with self._buffer_lock:
                # Events may have been added during the write
                self._log_buffer = self._log_buffer[len(events_to_write):]

        except OSError as e:
            # Keep the buffer for the next flush
            print(f"Warning: Failed to flush logs to {self.log_file}: {e}", file=sys.stderr)


# Global logger instance for current session (thread-safe)
_current_logger: SweepLogger | None = None
_logger_lock = threading.Lock()


def set_logger(logger: SweepLogger | None) -> None:
    """Set the current session logger (thread-safe)."""
    global _current_logger
    with _logger_lock:
        _current_logger = logger


def log_event(event_type: str, data: dict) -> None:
    """Log to the current session if one is active (thread-safe)."""
    with _logger_lock:
        if _current_logger:
            _current_logger._write_event(event_type, data)


def _flush_on_exit():
    """Flush any pending log events on process exit."""
    with _logger_lock:
        if _current_logger and _current_logger._log_buffer:
            _current_logger._flush_logs()


atexit.register(_flush_on_exit)


def analyze_logs(limit: int = 10, logs_dir: Path | None = None) -> dict[str, Any]:
    """Aggregate the most recent sessions.

    Returns:
        Totals across sessions plus per-mode outcome counts
    """
    logs_dir = logs_dir or LOGS_DIR
    if not logs_dir.exists():
        return {"error": "No logs directory found"}

    log_files = sorted(logs_dir.glob("session_*.jsonl"), reverse=True)[:limit]
    if not log_files:
        return {"error": "No log files found"}

    sessions = []
    error_types: dict[str, int] = {}

    for log_file in log_files:
        session_data: dict[str, Any] = {"file": log_file.name}
        try:
            file_content = log_file.read_text(encoding="utf-8")
        except OSError as e:
            session_data["read_error"] = str(e)
            sessions.append(session_data)
            continue

        for line in file_content.splitlines():
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue

            if event.get("event") == "error":
                kind = event.get("error_type", "unknown")
                error_types[kind] = error_types.get(kind, 0) + 1
            elif event.get("event") == "session_complete":
                session_data["summary"] = event

        sessions.append(session_data)

    summaries = [s["summary"] for s in sessions if "summary" in s]
    outcomes: dict[str, int] = {}
    for summary in summaries:
        key = f"{summary.get('mode', '?')}:{summary.get('outcome', '?')}"
        outcomes[key] = outcomes.get(key, 0) + 1

    submitted = sum(s.get("entries_submitted", 0) for s in summaries)
    invalid = sum(s.get("marked_invalid", 0) for s in summaries)
    invalid_rate = round(invalid / submitted * 100, 1) if submitted else None

    return {
        "sessions_analyzed": len(sessions),
        "pages_processed": sum(s.get("pages_processed", 0) for s in summaries),
        "requests": sum(s.get("batches", 0) for s in summaries),
        "entries_submitted": submitted,
        "entries_updated": sum(s.get("entries_updated", 0) for s in summaries),
        "invalid_rate": invalid_rate,
        "outcomes": outcomes,
        "error_types": error_types,
    }
