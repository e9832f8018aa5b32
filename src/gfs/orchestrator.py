"""Per-file backport loop: format staged content and re-stage it safely."""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .config import BackportSettings
from .structured import ByteContent, FileTarget
from .tools.diff import compute_diff
from .tools.formatter import FormatterError, FormatterInvoker
from .tools.patch import ApplyStatus, PatchConflictError, apply_patch
from .tools.vcs import GitRepository, RepositoryError

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("gfs.telemetry")


class OutcomeStatus(str, Enum):
    """Terminal states of a single file."""

    FORMATTED = "FORMATTED"
    UNCHANGED = "UNCHANGED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(slots=True)
class Outcome:
    """What happened to one requested path."""

    path: str
    status: OutcomeStatus
    reason: str = ""
    blob_id: str | None = None
    apply_status: ApplyStatus | None = None
    offsets: tuple[int, ...] = ()
    rejected: tuple[str, ...] = ()
    worktree_updated: bool = False

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "reason": self.reason,
            "blob_id": self.blob_id,
            "apply_status": self.apply_status,
            "offsets": list(self.offsets),
            "rejected": list(self.rejected),
            "worktree_updated": self.worktree_updated,
        }


@dataclass(slots=True)
class BackportReport:
    """Outcomes of a run, in the order the paths were given."""

    outcomes: list[Outcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def failed(self) -> list[Outcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def counts(self) -> dict[str, int]:
        totals = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            totals[outcome.status.value] += 1
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "counts": self.counts(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_event(event: str, **fields: Any) -> None:
    """Log one structured telemetry event as a JSON line."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


class BackportOrchestrator:
    """Run the formatter on staged content and backport its changes.

    The index is the only shared resource: blob writes and index updates go
    through ``_write_lock`` so concurrent workers never race on it.
    """

    def __init__(
        self,
        repo: GitRepository,
        command: Sequence[str] | None = None,
        *,
        settings: BackportSettings | None = None,
        invoker: FormatterInvoker | None = None,
        cwd: Path | str | None = None,
    ) -> None:
        self.repo = repo
        self.settings = settings or BackportSettings()
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        if invoker is None:
            formatter_command = list(command or self.settings.command)
            invoker = FormatterInvoker(formatter_command, cwd=self.cwd)
        self.invoker = invoker
        self._write_lock = threading.Lock()
        self._cancelled = threading.Event()

    # ------------------------------------------------------------------ run
    def run(self, paths: Iterable[str]) -> BackportReport:
        """Process every path and return exactly one outcome per path."""

        requested = list(paths)
        if self.settings.jobs <= 1 or len(requested) <= 1:
            outcomes = []
            try:
                for path in requested:
                    outcomes.append(self.process_file(path))
            except BaseException:
                self.cancel()
                raise
            return BackportReport(outcomes=outcomes)

        executor = ThreadPoolExecutor(max_workers=self.settings.jobs, thread_name_prefix="gfs")
        try:
            futures = [executor.submit(self.process_file, path) for path in requested]
            outcomes = [future.result() for future in futures]
        except BaseException:
            self.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return BackportReport(outcomes=outcomes)

    def cancel(self) -> None:
        """Stop in-flight formatters and keep unfinished files out of the index."""

        self._cancelled.set()
        self.invoker.cancel()

    # ------------------------------------------------------------ per file
    def process_file(self, path: str) -> Outcome:
        """Backport one path, converting every per-file error into an outcome."""

        _emit_event("file_started", path=path)
        try:
            outcome = self._backport(path)
        except RepositoryError as error:
            outcome = Outcome(path=path, status=OutcomeStatus.FAILED, reason=str(error))
        except FormatterError as error:
            outcome = Outcome(path=path, status=OutcomeStatus.FAILED, reason=str(error))
        except PatchConflictError as error:
            rejected = tuple(entry.describe() for entry in error.rejected)
            for entry in error.rejected:
                _emit_event("hunk_rejected", path=path, **entry.to_dict())
            outcome = Outcome(
                path=path,
                status=OutcomeStatus.FAILED,
                reason=f"conflicting unstaged edit ({error})",
                apply_status="failed",
                rejected=rejected,
            )

        level = logging.WARNING if outcome.status == OutcomeStatus.FAILED else logging.INFO
        LOGGER.log(level, "%s: %s%s", path, outcome.status.value, f" ({outcome.reason})" if outcome.reason else "")
        _emit_event("file_outcome", **outcome.to_dict())
        return outcome

    def _backport(self, path: str) -> Outcome:
        if self._cancelled.is_set():
            return Outcome(path=path, status=OutcomeStatus.FAILED, reason="cancelled")

        relative = self.repo.relative_path(path, self.cwd)
        entry = self.repo.index_entry(relative)
        if entry is None:
            return Outcome(path=path, status=OutcomeStatus.SKIPPED, reason="not staged")

        staged = self.repo.read_blob(entry)
        if staged.is_binary:
            return Outcome(path=path, status=OutcomeStatus.SKIPPED, reason="binary file")

        formatted = self.invoker.run(staged, path=relative)
        if formatted == staged:
            return Outcome(path=path, status=OutcomeStatus.UNCHANGED)

        script = compute_diff(staged, formatted, context=self.settings.context_lines)
        worktree = self.repo.read_worktree_content(relative)
        target = worktree if worktree is not None else staged
        result = apply_patch(target, script, window=self.settings.fuzz_window)
        backported = result.raise_for_status()

        with self._write_lock:
            if self._cancelled.is_set():
                return Outcome(path=path, status=OutcomeStatus.FAILED, reason="cancelled before index update")
            blob_id, worktree_updated = self._commit(entry, formatted, worktree, backported)

        return Outcome(
            path=path,
            status=OutcomeStatus.FORMATTED,
            blob_id=blob_id,
            apply_status=result.status,
            offsets=result.offsets,
            worktree_updated=worktree_updated,
        )

    def _commit(
        self,
        entry: FileTarget,
        formatted: ByteContent,
        worktree: ByteContent | None,
        backported: ByteContent,
    ) -> tuple[str, bool]:
        """Stage ``formatted`` and optionally refresh the working tree."""

        blob_id = self.repo.write_blob(formatted)
        self.repo.update_index_entry(entry.path, entry.mode, blob_id)
        if not self.settings.update_worktree or worktree is None or backported == worktree:
            return blob_id, False
        try:
            self.repo.write_worktree_content(entry.path, backported)
        except RepositoryError:
            self.repo.update_index_entry(entry.path, entry.mode, entry.blob_id)
            raise
        return blob_id, True


__all__ = ["BackportOrchestrator", "BackportReport", "Outcome", "OutcomeStatus"]
