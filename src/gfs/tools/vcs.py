"""Minimal git helpers
The helpers below provide just enough structure to read staged and
working-tree content, write blobs, and point index entries at them. Only git
plumbing commands are used; the index file itself is never parsed.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import logging
import os
import subprocess
import tempfile

from ..structured import ByteContent, FileTarget

LOGGER = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` plumbing commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise RepositoryError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise RepositoryError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        stdin: bytes | None = None,
    ) -> subprocess.CompletedProcess[bytes]:
        command = ["git", "--literal-pathspecs", *args]
        try:
            process = subprocess.run(
                command,
                cwd=self.root,
                input=stdin,
                capture_output=True,
                check=False,
            )
        except OSError as error:
            raise RepositoryError(f"git executable not available: {error}") from error
        if check and process.returncode != 0:
            stderr = process.stderr.decode("utf-8", errors="replace").strip()
            stdout = process.stdout.decode("utf-8", errors="replace").strip()
            message = stderr or stdout or "unknown git error"
            raise RepositoryError(f"git {' '.join(args)} failed: {message}")
        return process

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        process = self._run_git(list(args), check=check)
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)

    # ------------------------------------------------------------------ paths
    def relative_path(self, path: Path | str, cwd: Path | str | None = None) -> str:
        """Return ``path`` (relative to ``cwd``) as a repo-relative POSIX path.

        Symlinks are not resolved: a tracked symlink must map to its own index
        entry, not to the file it points at.
        """

        base = Path(cwd) if cwd is not None else Path.cwd()
        absolute = Path(os.path.abspath(base / path))
        try:
            relative = absolute.relative_to(self.root)
        except ValueError:
            # ``self.root`` is resolved; retry with the resolved parent directory.
            try:
                relative = absolute.parent.resolve().relative_to(self.root) / absolute.name
            except ValueError:
                raise RepositoryError(f"{path} is outside repository at {self.root}") from None
        if not relative.parts:
            raise RepositoryError(f"{path} is the repository root, not a file")
        return relative.as_posix()

    # ------------------------------------------------------------------ index
    def index_entry(self, path: str) -> FileTarget | None:
        """Return the stage-0 index entry for ``path`` or ``None`` when untracked."""

        result = self._run_git(["ls-files", "--stage", "-z", "--", path])
        entries: List[tuple[str, str, str]] = []
        for record in result.stdout.decode("utf-8", errors="surrogateescape").split("\0"):
            if not record:
                continue
            meta, _, entry_path = record.partition("\t")
            if entry_path != path:
                # ``path`` named a directory; its children are not our concern.
                continue
            mode, blob_id, stage = meta.split(" ")
            entries.append((mode, blob_id, stage))

        if not entries:
            return None
        if any(stage != "0" for _, _, stage in entries):
            raise RepositoryError(f"{path} has unresolved merge conflicts")
        mode, blob_id, _ = entries[0]
        return FileTarget(path=path, mode=mode, blob_id=blob_id)

    def read_staged_content(self, path: str) -> ByteContent | None:
        """Return the staged content of ``path`` or ``None`` when it is not staged."""

        entry = self.index_entry(path)
        if entry is None:
            return None
        return self.read_blob(entry)

    def read_blob(self, entry: FileTarget) -> ByteContent:
        """Return the content of the blob recorded for ``entry``."""

        if not entry.is_regular:
            raise RepositoryError(f"{entry.path} is not a regular file (mode {entry.mode})")
        result = self._run_git(["cat-file", "blob", entry.blob_id])
        return ByteContent(result.stdout)

    def write_blob(self, content: ByteContent) -> str:
        """Store ``content`` in the object database and return its id."""

        result = self._run_git(["hash-object", "-w", "--stdin"], stdin=content.data)
        blob_id = result.stdout.decode("ascii").strip()
        if not blob_id:
            raise RepositoryError("git hash-object did not report an object id")
        return blob_id

    def update_index_entry(self, path: str, mode: str, blob_id: str) -> None:
        """Point the index entry for ``path`` at ``blob_id`` keeping ``mode``."""

        self._run_git(["update-index", "--cacheinfo", mode, blob_id, path])
        LOGGER.debug("Updated index entry %s -> %s (%s)", path, blob_id, mode)

    # ------------------------------------------------------------ working tree
    def read_worktree_content(self, path: str) -> ByteContent | None:
        """Return the working-tree content of ``path`` or ``None`` when missing."""

        target = self.root / path
        if not target.exists() and not target.is_symlink():
            return None
        if target.is_dir():
            raise RepositoryError(f"{path} is a directory in the working tree")
        try:
            return ByteContent(target.read_bytes())
        except FileNotFoundError:
            return None
        except OSError as error:
            raise RepositoryError(f"Unable to read {path}: {error}") from error

    def write_worktree_content(self, path: str, content: ByteContent) -> None:
        """Atomically replace the working-tree file, preserving its permissions."""

        target = self.root / path
        try:
            mode = target.stat().st_mode & 0o7777
        except OSError as error:
            raise RepositoryError(f"Unable to stat {path}: {error}") from error

        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".gfs", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content.data)
            os.chmod(temp_name, mode)
            os.replace(temp_name, target)
        except OSError as error:
            Path(temp_name).unlink(missing_ok=True)
            raise RepositoryError(f"Unable to write {path}: {error}") from error


__all__ = ["GitRepository", "RepositoryError"]
