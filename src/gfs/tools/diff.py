"""Deterministic line diffs between two versions of a file.

Lines are compared as raw byte tokens that keep their terminator, so a change
from ``\\n`` to ``\\r\\n`` counts as a change. The edit script is minimal: the
unchanged lines form a longest common subsequence found with Myers' O(ND)
algorithm. The search always follows a run of equal lines as far as it goes
and prefers deletions over insertions, which makes the earliest possible match
win and keeps the output identical across runs.

Only a common prefix is trimmed before the search; trimming a common suffix
would pin trailing duplicates to their last occurrence.
"""

from __future__ import annotations

import difflib
import logging
from array import array
from dataclasses import dataclass
from typing import Iterator, List, Literal, Sequence, Tuple

from ..structured import ByteContent

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT = 3
MAX_EDIT_COST = 2000

OpTag = Literal["equal", "replace", "delete", "insert"]
Opcode = Tuple[OpTag, int, int, int, int]


@dataclass(frozen=True, slots=True)
class Hunk:
    """Changed lines plus the unchanged context that anchors them.

    ``source_start`` and ``target_start`` are 0-based offsets of the first
    ``before`` line in the original and modified texts. When two change runs
    were merged, the unchanged lines between them appear in both ``removed``
    and ``added``.
    """

    before: Tuple[bytes, ...]
    removed: Tuple[bytes, ...]
    added: Tuple[bytes, ...]
    after: Tuple[bytes, ...]
    source_start: int
    target_start: int

    @property
    def old_lines(self) -> Tuple[bytes, ...]:
        return self.before + self.removed + self.after

    @property
    def new_lines(self) -> Tuple[bytes, ...]:
        return self.before + self.added + self.after

    @property
    def header(self) -> str:
        old_len = len(self.old_lines)
        new_len = len(self.new_lines)
        old_start = self.source_start + 1 if old_len else self.source_start
        new_start = self.target_start + 1 if new_len else self.target_start
        return f"@@ -{old_start},{old_len} +{new_start},{new_len} @@"


@dataclass(frozen=True, slots=True)
class EditScript:
    """Ordered, non-overlapping hunks turning one text into another."""

    hunks: Tuple[Hunk, ...] = ()
    context: int = DEFAULT_CONTEXT

    def __iter__(self) -> Iterator[Hunk]:
        return iter(self.hunks)

    def __len__(self) -> int:
        return len(self.hunks)

    def __bool__(self) -> bool:
        return bool(self.hunks)

    def render(self) -> str:
        """Return the hunks as unified-diff text (lossy for non UTF-8 bytes)."""
        out: List[str] = []
        for hunk in self.hunks:
            out.append(hunk.header + "\n")
            for prefix, lines in ((" ", hunk.before), ("-", hunk.removed), ("+", hunk.added), (" ", hunk.after)):
                for line in lines:
                    text = line.decode("utf-8", errors="replace")
                    if not text.endswith(("\n", "\r")):
                        text += "\n\\ No newline at end of file\n"
                    out.append(prefix + text)
        return "".join(out)


def _intern(a: Sequence[bytes], b: Sequence[bytes]) -> tuple[list[int], list[int]]:
    """Map line tokens to small integers so comparisons stay cheap."""
    table: dict[bytes, int] = {}
    left = [table.setdefault(line, len(table)) for line in a]
    right = [table.setdefault(line, len(table)) for line in b]
    return left, right


def _shared_lines(a: Sequence[bytes], b: Sequence[bytes]) -> tuple[list[int], list[int]]:
    """Return the indices of lines in ``a`` and ``b`` that also occur on the other side.

    A line without a counterpart can never be matched, so leaving it out does
    not change the common subsequence. A formatter that rewrites every line
    (line endings, indentation) leaves almost nothing to search.
    """
    in_a = set(a)
    in_b = set(b)
    keep_a = [index for index, line in enumerate(a) if line in in_b]
    keep_b = [index for index, line in enumerate(b) if line in in_a]
    return keep_a, keep_b


def _myers_matches(
    a: Sequence[int],
    b: Sequence[int],
    max_cost: int = MAX_EDIT_COST,
) -> List[tuple[int, int]] | None:
    """Return the matched ``(i, j)`` index pairs of a shortest edit script.

    Each step keeps only the furthest point of the diagonals it reached, in a
    compact array. Returns ``None`` when the script needs more than
    ``max_cost`` insertions and deletions.
    """
    n, m = len(a), len(b)
    if n == 0 or m == 0:
        return []

    limit = min(n + m, max_cost)
    offset = limit + 1
    v = array("q", [0]) * (2 * offset + 1)
    trace: List[array] = []
    for d in range(limit + 1):
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]
            else:
                x = v[offset + k - 1] + 1
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                return _backtrack(trace, n, m)
        # diagonals -d, -d + 2, ..., d
        trace.append(v[offset - d : offset + d + 1 : 2])
    return None


def _backtrack(trace: Sequence[array], n: int, m: int) -> List[tuple[int, int]]:
    matches: List[tuple[int, int]] = []
    x, y = n, m
    for d in range(len(trace), 0, -1):
        previous = trace[d - 1]
        k = x - y
        if k == -d or (k != d and previous[(k + d - 2) // 2] < previous[(k + d) // 2]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = previous[(prev_k + d - 1) // 2]
        prev_y = prev_x - prev_k
        while x > prev_x and y > prev_y:
            x -= 1
            y -= 1
            matches.append((x, y))
        x, y = prev_x, prev_y
    while x > 0 and y > 0:
        x -= 1
        y -= 1
        matches.append((x, y))
    matches.reverse()
    return matches


def opcodes(
    original: Sequence[bytes],
    modified: Sequence[bytes],
    *,
    max_cost: int = MAX_EDIT_COST,
) -> List[Opcode]:
    """Return ``difflib``-style opcodes for a minimal line diff.

    When the shortest script costs more than ``max_cost`` edits the matching
    falls back to :class:`difflib.SequenceMatcher`; the opcodes stay valid
    but are no longer guaranteed minimal.
    """

    n, m = len(original), len(modified)
    prefix = 0
    while prefix < n and prefix < m and original[prefix] == modified[prefix]:
        prefix += 1

    rest_a = list(original[prefix:])
    rest_b = list(modified[prefix:])
    keep_a, keep_b = _shared_lines(rest_a, rest_b)
    left, right = _intern([rest_a[i] for i in keep_a], [rest_b[j] for j in keep_b])
    found = _myers_matches(left, right, max_cost)
    if found is None:
        LOGGER.debug("Edit script exceeds %d edits; using difflib matching", max_cost)
        matcher = difflib.SequenceMatcher(None, left, right)
        found = [
            (i + step, j + step)
            for i, j, size in matcher.get_matching_blocks()
            for step in range(size)
        ]
    matches = [(i, i) for i in range(prefix)] + [
        (prefix + keep_a[i], prefix + keep_b[j]) for i, j in found
    ]

    codes: List[Opcode] = []
    i = j = 0
    for mi, mj in [*matches, (n, m)]:
        if i < mi or j < mj:
            if i < mi and j < mj:
                tag: OpTag = "replace"
            elif i < mi:
                tag = "delete"
            else:
                tag = "insert"
            codes.append((tag, i, mi, j, mj))
        if (mi, mj) == (n, m):
            break
        if codes and codes[-1][0] == "equal" and codes[-1][2] == mi and codes[-1][4] == mj:
            _, i1, _, j1, _ = codes[-1]
            codes[-1] = ("equal", i1, mi + 1, j1, mj + 1)
        else:
            codes.append(("equal", mi, mi + 1, mj, mj + 1))
        i, j = mi + 1, mj + 1
    return codes


def _group(codes: List[Opcode], context: int) -> List[List[Opcode]]:
    """Split opcodes into change groups padded with ``context`` equal lines."""
    if not any(tag != "equal" for tag, *_ in codes):
        return []
    codes = list(codes)
    if codes[0][0] == "equal":
        tag, i1, i2, j1, j2 = codes[0]
        codes[0] = (tag, max(i1, i2 - context), i2, max(j1, j2 - context), j2)
    if codes[-1][0] == "equal":
        tag, i1, i2, j1, j2 = codes[-1]
        codes[-1] = (tag, i1, min(i2, i1 + context), j1, min(j2, j1 + context))

    groups: List[List[Opcode]] = []
    current: List[Opcode] = []
    for tag, i1, i2, j1, j2 in codes:
        if tag == "equal" and current and i2 - i1 > 2 * context:
            current.append((tag, i1, i1 + context, j1, j1 + context))
            groups.append(current)
            current = []
            i1, j1 = i2 - context, j2 - context
        current.append((tag, i1, i2, j1, j2))
    if current and not (len(current) == 1 and current[0][0] == "equal"):
        groups.append(current)
    return groups


def _hunk_from_group(group: List[Opcode], original: Sequence[bytes], modified: Sequence[bytes]) -> Hunk:
    before: Tuple[bytes, ...] = ()
    after: Tuple[bytes, ...] = ()
    first, last = 0, len(group)
    if group[0][0] == "equal":
        _, i1, i2, _, _ = group[0]
        before = tuple(original[i1:i2])
        first = 1
    if len(group) > first and group[-1][0] == "equal":
        _, i1, i2, _, _ = group[-1]
        after = tuple(original[i1:i2])
        last = len(group) - 1
    changes = group[first:last]
    i_start, j_start = changes[0][1], changes[0][3]
    i_end, j_end = changes[-1][2], changes[-1][4]
    return Hunk(
        before=before,
        removed=tuple(original[i_start:i_end]),
        added=tuple(modified[j_start:j_end]),
        after=after,
        source_start=group[0][1],
        target_start=group[0][3],
    )


def compute_diff(
    original: ByteContent,
    modified: ByteContent,
    *,
    context: int = DEFAULT_CONTEXT,
) -> EditScript:
    """Return the edit script turning ``original`` into ``modified``."""

    if context < 0:
        raise ValueError("context must be non-negative")
    a = original.lines()
    b = modified.lines()
    groups = _group(opcodes(a, b), context)
    return EditScript(hunks=tuple(_hunk_from_group(group, a, b) for group in groups), context=context)


__all__ = ["DEFAULT_CONTEXT", "MAX_EDIT_COST", "EditScript", "Hunk", "compute_diff", "opcodes"]
