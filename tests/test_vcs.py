from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path

import pytest

from gfs.structured import ByteContent
from gfs.tools.vcs import GitRepository, RepositoryError

from conftest import StagedRepo


def test_index_entry_reports_mode_and_blob(staged_repo: StagedRepo) -> None:
    staged_repo.stage("src/app.py", b"print('hi')\n")
    repo = GitRepository(staged_repo.root)

    entry = repo.index_entry("src/app.py")

    assert entry is not None
    assert entry.path == "src/app.py"
    assert entry.mode == "100644"
    assert entry.is_regular
    expected = staged_repo.git("rev-parse", ":src/app.py").stdout.decode().strip()
    assert entry.blob_id == expected


def test_untracked_and_directory_paths_are_not_staged(staged_repo: StagedRepo) -> None:
    staged_repo.stage("pkg/module.py", b"x = 1\n")
    staged_repo.write("notes.txt", b"scratch\n")
    repo = GitRepository(staged_repo.root)

    assert repo.index_entry("notes.txt") is None
    assert repo.read_staged_content("notes.txt") is None
    assert repo.index_entry("pkg") is None


def test_staged_content_is_read_from_index_not_worktree(staged_repo: StagedRepo) -> None:
    staged_repo.stage("a.txt", b"staged\n")
    staged_repo.write("a.txt", b"staged\nunstaged\n")
    repo = GitRepository(staged_repo.root)

    assert repo.read_staged_content("a.txt") == ByteContent(b"staged\n")
    assert repo.read_worktree_content("a.txt") == ByteContent(b"staged\nunstaged\n")


def test_symlink_entries_are_not_regular_files(staged_repo: StagedRepo) -> None:
    staged_repo.stage("target.txt", b"content\n")
    os.symlink("target.txt", staged_repo.root / "link.txt")
    staged_repo.git("add", "link.txt")
    repo = GitRepository(staged_repo.root)

    entry = repo.index_entry("link.txt")

    assert entry is not None and entry.mode == "120000"
    with pytest.raises(RepositoryError, match="not a regular file"):
        repo.read_blob(entry)


def test_unmerged_entries_raise(staged_repo: StagedRepo) -> None:
    blob = subprocess.run(
        ["git", "hash-object", "-w", "--stdin"],
        cwd=staged_repo.root,
        input=b"conflict\n",
        capture_output=True,
        check=True,
    ).stdout.decode().strip()
    index_info = f"100644 {blob} 1\tclash.txt\n100644 {blob} 2\tclash.txt\n100644 {blob} 3\tclash.txt\n"
    subprocess.run(
        ["git", "update-index", "--index-info"],
        cwd=staged_repo.root,
        input=index_info.encode(),
        capture_output=True,
        check=True,
    )
    repo = GitRepository(staged_repo.root)

    with pytest.raises(RepositoryError, match="merge conflicts"):
        repo.index_entry("clash.txt")


def test_write_blob_and_update_index_leave_worktree_and_head(staged_repo: StagedRepo) -> None:
    staged_repo.stage("a.txt", b"old\n")
    head_before = staged_repo.git("rev-parse", "HEAD").stdout
    repo = GitRepository(staged_repo.root)

    blob_id = repo.write_blob(ByteContent(b"new\n"))
    repo.update_index_entry("a.txt", "100644", blob_id)

    assert staged_repo.staged("a.txt") == b"new\n"
    assert staged_repo.worktree("a.txt") == b"old\n"
    assert staged_repo.git("rev-parse", "HEAD").stdout == head_before


def test_update_index_keeps_executable_mode(staged_repo: StagedRepo) -> None:
    script = staged_repo.write("run.sh", b"echo  hi\n")
    script.chmod(0o755)
    staged_repo.git("add", "run.sh")
    repo = GitRepository(staged_repo.root)
    entry = repo.index_entry("run.sh")
    assert entry is not None and entry.mode == "100755"

    repo.update_index_entry("run.sh", entry.mode, repo.write_blob(ByteContent(b"echo hi\n")))

    assert staged_repo.ls_stage("run.sh").startswith("100755 ")
    assert staged_repo.staged("run.sh") == b"echo hi\n"


def test_worktree_reads_missing_and_directories(staged_repo: StagedRepo) -> None:
    (staged_repo.root / "folder").mkdir()
    repo = GitRepository(staged_repo.root)

    assert repo.read_worktree_content("gone.txt") is None
    with pytest.raises(RepositoryError, match="directory"):
        repo.read_worktree_content("folder")


def test_write_worktree_content_preserves_permissions(staged_repo: StagedRepo) -> None:
    script = staged_repo.write("tool.sh", b"#!/bin/sh\n")
    script.chmod(0o750)
    repo = GitRepository(staged_repo.root)

    repo.write_worktree_content("tool.sh", ByteContent(b"#!/bin/sh\necho ok\n"))

    assert script.read_bytes() == b"#!/bin/sh\necho ok\n"
    assert stat.S_IMODE(script.stat().st_mode) == 0o750
    assert sorted(path.name for path in staged_repo.root.iterdir() if path.name != ".git") == ["tool.sh"]


def test_relative_path_from_subdirectory(staged_repo: StagedRepo) -> None:
    subdir = staged_repo.root / "src" / "pkg"
    subdir.mkdir(parents=True)
    repo = GitRepository(staged_repo.root)

    assert repo.relative_path("mod.py", cwd=subdir) == "src/pkg/mod.py"
    assert repo.relative_path("../other.py", cwd=subdir) == "src/other.py"
    with pytest.raises(RepositoryError, match="outside repository"):
        repo.relative_path("../../../elsewhere.py", cwd=subdir)


def test_discover_walks_upward(staged_repo: StagedRepo, tmp_path: Path) -> None:
    nested = staged_repo.root / "a" / "b"
    nested.mkdir(parents=True)

    assert GitRepository.discover(nested).root == staged_repo.root.resolve()

    outside = tmp_path / "plain"
    outside.mkdir()
    with pytest.raises(RepositoryError):
        GitRepository(outside)


def test_missing_git_executable_is_a_repository_error(
    staged_repo: StagedRepo, monkeypatch: pytest.MonkeyPatch
) -> None:
    repo = GitRepository(staged_repo.root)
    monkeypatch.setenv("PATH", "")

    with pytest.raises(RepositoryError, match="git executable not available"):
        repo.index_entry("a.txt")
