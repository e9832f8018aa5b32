"""Run external formatting commands as a content-to-content function."""

from __future__ import annotations

from typing import Sequence

import logging
import signal
import subprocess
import threading
from pathlib import Path

from ..structured import ByteContent

LOGGER = logging.getLogger(__name__)

PATH_PLACEHOLDER = "{}"


class FormatterError(RuntimeError):
    """Raised when the formatter cannot be spawned or exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.exit_code = exit_code
        self.stderr = stderr


def expand_command(command: Sequence[str], path: str | None) -> list[str]:
    """Substitute ``{}`` in each argument with ``path`` when one is given."""
    if path is None:
        return list(command)
    return [arg.replace(PATH_PLACEHOLDER, path) for arg in command]


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"terminated by {name}"
    return f"exited with code {returncode}"


class FormatterInvoker:
    """Spawn formatter processes and terminate them on cancellation.

    Each call to :meth:`run` is independent; the invoker only keeps track of
    the processes currently in flight so :meth:`cancel` can stop all of them
    from another thread.
    """

    def __init__(self, command: Sequence[str], *, cwd: Path | str | None = None) -> None:
        if not command:
            raise ValueError("Formatter command must not be empty.")
        self.command = tuple(command)
        self.cwd = Path(cwd) if cwd is not None else None
        self._lock = threading.Lock()
        self._active: set[subprocess.Popen[bytes]] = set()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, content: ByteContent, *, path: str | None = None) -> ByteContent:
        """Feed ``content`` to the formatter and return what it writes to stdout."""

        if self.cancelled:
            raise FormatterError("Formatter run cancelled.", command=self.command)

        argv = expand_command(self.command, path)
        display = " ".join(argv)
        try:
            process = subprocess.Popen(  # noqa: S603 - formatter command comes from the caller
                argv,
                cwd=self.cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as error:
            raise FormatterError(f"command `{display}` failed: {error}", command=argv) from error

        with self._lock:
            self._active.add(process)
        try:
            stdout, stderr = process.communicate(input=content.data)
        except BaseException:
            process.kill()
            process.wait()
            raise
        finally:
            with self._lock:
                self._active.discard(process)

        error_text = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            raise FormatterError(
                f"command `{display}` {_describe_exit(process.returncode)}"
                + (f": {error_text}" if error_text else ""),
                command=argv,
                exit_code=process.returncode,
                stderr=error_text,
            )
        if error_text:
            LOGGER.debug("Formatter stderr for %s: %s", path or display, error_text)
        return ByteContent(stdout)

    def cancel(self) -> None:
        """Terminate every in-flight formatter and refuse new runs."""

        self._cancelled.set()
        with self._lock:
            processes = list(self._active)
        for process in processes:
            if process.poll() is None:
                LOGGER.info("Terminating formatter process %s", process.pid)
                process.terminate()


def run_formatter(
    command: Sequence[str],
    content: ByteContent,
    *,
    path: str | None = None,
    cwd: Path | str | None = None,
) -> ByteContent:
    """Run ``command`` once on ``content``; see :class:`FormatterInvoker`."""

    return FormatterInvoker(command, cwd=cwd).run(content, path=path)


__all__ = ["FormatterError", "FormatterInvoker", "PATH_PLACEHOLDER", "expand_command", "run_formatter"]
