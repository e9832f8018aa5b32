from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def python_formatter(source: str) -> list[str]:
    """Return a formatter command running ``source`` with stdin bytes bound to ``data``.

    The snippet must assign the formatted bytes to ``out``.
    """

    program = f"import sys\ndata = sys.stdin.buffer.read()\n{source}\nsys.stdout.buffer.write(out)\n"
    return [sys.executable, "-c", program]


UPPERCASE_B = python_formatter('out = data.replace(b"b\\n", b"B\\n")')
IDENTITY = python_formatter("out = data")
FAILING = python_formatter('sys.stderr.write("boom\\n")\nsys.exit(1)')


@dataclass(slots=True)
class StagedRepo:
    """Fixture payload representing a throwaway repository under test."""

    root: Path

    def git(self, *args: str) -> subprocess.CompletedProcess[bytes]:
        return subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
        )

    def write(self, path: str, content: bytes) -> Path:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target

    def stage(self, path: str, content: bytes) -> None:
        self.write(path, content)
        self.git("add", "--", path)

    def staged(self, path: str) -> bytes:
        return self.git("cat-file", "blob", f":{path}").stdout

    def ls_stage(self, path: str) -> str:
        return self.git("ls-files", "--stage", "--", path).stdout.decode("utf-8").strip()

    def worktree(self, path: str) -> bytes:
        return (self.root / path).read_bytes()


@pytest.fixture()
def staged_repo(tmp_path: Path) -> StagedRepo:
    """Create an empty git repository with an initial commit."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    repo = StagedRepo(root=repo_root)
    repo.git("init")
    repo.git("config", "user.email", "dev@example.com")
    repo.git("config", "user.name", "Format Staged")
    repo.git("config", "core.autocrlf", "false")
    repo.git("commit", "--allow-empty", "-m", "Initial commit")
    return repo
