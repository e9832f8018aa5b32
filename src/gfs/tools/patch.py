"""Apply edit scripts onto related text with bounded fuzzy matching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Literal, Mapping, Sequence, Tuple

from ..structured import ByteContent
from .diff import EditScript, Hunk

LOGGER = logging.getLogger(__name__)

DEFAULT_FUZZ_WINDOW = 100

ApplyStatus = Literal["clean", "fuzzy", "failed"]


class PatchError(RuntimeError):
    """Raised when a patch fails validation or application."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class PatchConflictError(PatchError):
    """Raised when at least one hunk could not be located in the target."""

    def __init__(self, message: str, *, rejected: Sequence["RejectedHunk"] = ()) -> None:
        super().__init__(message, details={"rejected": [entry.to_dict() for entry in rejected]})
        self.rejected: Tuple[RejectedHunk, ...] = tuple(rejected)


@dataclass(frozen=True, slots=True)
class RejectedHunk:
    """A hunk whose context and removed lines were not found near ``expected``."""

    index: int
    hunk: Hunk
    expected: int
    reason: str

    def describe(self) -> str:
        return f"hunk #{self.index} {self.hunk.header} {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hunk": self.index,
            "header": self.hunk.header,
            "line": self.expected + 1,
            "reason": self.reason,
        }


@dataclass(slots=True)
class ApplyResult:
    """Outcome of applying an edit script.

    ``offsets`` holds, per hunk, how far the match moved from the hunk's
    recorded position. Any non-zero offset makes the result ``fuzzy``.
    """

    status: ApplyStatus
    content: ByteContent | None = None
    offsets: Tuple[int, ...] = ()
    reason: str = ""
    rejected: Tuple[RejectedHunk, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def raise_for_status(self) -> ByteContent:
        """Return the patched content or raise :class:`PatchConflictError`."""
        if self.status == "failed" or self.content is None:
            raise PatchConflictError(self.reason or "patch failed", rejected=self.rejected)
        return self.content


def _search_order(window: int) -> Iterator[int]:
    """Yield candidate deltas nearest first; the earlier position wins a tie."""
    yield 0
    for distance in range(1, window + 1):
        yield -distance
        yield distance


def _locate(
    lines: Sequence[bytes],
    needle: Sequence[bytes],
    expected: int,
    *,
    floor: int,
    window: int,
) -> int | None:
    limit = len(lines) - len(needle)
    if limit < floor:
        return None
    size = len(needle)
    for delta in _search_order(window):
        position = expected + delta
        if position < floor or position > limit:
            continue
        if list(lines[position : position + size]) == list(needle):
            return position
    return None


def apply_patch(
    target: ByteContent,
    script: EditScript,
    *,
    window: int = DEFAULT_FUZZ_WINDOW,
) -> ApplyResult:
    """Apply ``script`` onto ``target``.

    Hunks are matched in order and never before the end of the previous match.
    Each hunk is first tried at its recorded position, shifted by the drift of
    the previous match, then up to ``window`` lines away in both directions.
    A single rejected hunk fails the whole result and no content is produced.
    """

    if window < 0:
        raise ValueError("window must be non-negative")

    lines = target.lines()
    output: List[bytes] = []
    offsets: List[int] = []
    rejected: List[RejectedHunk] = []
    cursor = 0
    drift = 0

    for index, hunk in enumerate(script, start=1):
        needle = hunk.old_lines
        expected = hunk.source_start + drift
        position = _locate(lines, needle, expected, floor=cursor, window=window)
        if position is None:
            reason = (
                f"does not match within {window} line(s) of line {expected + 1}"
                if needle
                else "has no anchor inside the target"
            )
            rejected.append(RejectedHunk(index=index, hunk=hunk, expected=expected, reason=reason))
            continue

        if position != expected:
            LOGGER.debug("Hunk #%d %s matched at offset %+d", index, hunk.header, position - expected)
        output.extend(lines[cursor:position])
        output.extend(hunk.new_lines)
        cursor = position + len(needle)
        drift = position - hunk.source_start
        offsets.append(drift)

    if rejected:
        summary = "; ".join(entry.describe() for entry in rejected)
        return ApplyResult(status="failed", reason=summary, rejected=tuple(rejected))

    output.extend(lines[cursor:])
    status: ApplyStatus = "fuzzy" if any(offsets) else "clean"
    return ApplyResult(status=status, content=ByteContent(b"".join(output)), offsets=tuple(offsets))


__all__ = [
    "ApplyResult",
    "ApplyStatus",
    "DEFAULT_FUZZ_WINDOW",
    "PatchConflictError",
    "PatchError",
    "RejectedHunk",
    "apply_patch",
]
