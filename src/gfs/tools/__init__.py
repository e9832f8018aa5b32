"""Building blocks of the backport engine: git access, formatting, diff and patch."""

from .diff import DEFAULT_CONTEXT, EditScript, Hunk, compute_diff, opcodes
from .formatter import FormatterError, FormatterInvoker, run_formatter
from .patch import (
    DEFAULT_FUZZ_WINDOW,
    ApplyResult,
    PatchConflictError,
    PatchError,
    RejectedHunk,
    apply_patch,
)
from .vcs import GitRepository, RepositoryError

__all__ = [
    "ApplyResult",
    "DEFAULT_CONTEXT",
    "DEFAULT_FUZZ_WINDOW",
    "EditScript",
    "FormatterError",
    "FormatterInvoker",
    "GitRepository",
    "Hunk",
    "PatchConflictError",
    "PatchError",
    "RejectedHunk",
    "RepositoryError",
    "apply_patch",
    "compute_diff",
    "opcodes",
    "run_formatter",
]
