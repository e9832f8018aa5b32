"""CLI entry point: format staged files and re-stage the result."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import typer

from .config import ConfigError, load_settings
from .orchestrator import BackportOrchestrator, BackportReport, OutcomeStatus
from .tools.vcs import GitRepository, RepositoryError

APP_HELP = (
    "Run a formatter on the staged content of FILES and re-stage the result "
    "without touching unstaged edits. Usage: git-format-staged [OPTIONS] FILE... -- COMMAND [ARG...]"
)
PROG_NAME = "git-format-staged"
EXIT_INTERRUPTED = 130

app = typer.Typer(help=APP_HELP, add_completion=False)


def split_argv(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split raw arguments at the first ``--`` into CLI arguments and the formatter command."""
    arguments = list(argv)
    if "--" not in arguments:
        return arguments, []
    index = arguments.index("--")
    return arguments[:index], arguments[index + 1 :]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _render_report(report: BackportReport, *, verbose: bool) -> None:
    """Print failures to stderr and, when verbose, one line per file."""
    for outcome in report.outcomes:
        if outcome.status == OutcomeStatus.FAILED:
            typer.echo(f"error: {outcome.path}: {outcome.reason}", err=True)
            for rejected in outcome.rejected:
                typer.echo(f"  - {rejected}", err=True)
            continue
        if not verbose:
            continue
        label = outcome.status.value.lower()
        detail = f" ({outcome.reason})" if outcome.reason else ""
        if outcome.status == OutcomeStatus.FORMATTED:
            detail = f" -> {outcome.blob_id[:7]}" if outcome.blob_id else ""
            if outcome.apply_status == "fuzzy":
                offsets = ", ".join(f"{offset:+d}" for offset in outcome.offsets)
                detail += f" (fuzzy offsets {offsets})"
            if outcome.worktree_updated:
                detail += " [working tree updated]"
        typer.echo(f"{label}: {outcome.path}{detail}")
    if verbose:
        counts = report.counts()
        summary = ", ".join(f"{count} {status.lower()}" for status, count in counts.items() if count)
        typer.echo(f"Summary: {summary or 'no files'}")


@app.command()
def format_staged(
    ctx: typer.Context,
    files: List[str] = typer.Argument(..., help="Staged files to format."),
    update_working_tree: bool = typer.Option(
        False,
        "--update-working-tree",
        "-w",
        help="Also write the backported content to the working tree (default: index only).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Report the outcome of every file.",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML settings file (default: .format-staged.yaml in the repository root).",
    ),
    context_lines: Optional[int] = typer.Option(
        None,
        "--context",
        help=(
            "Unchanged lines kept around each change when diffing (default 3). "
            "Unstaged edits that touch these lines reject the file; use 0 to only "
            "require the changed lines themselves to match."
        ),
    ),
    fuzz_window: Optional[int] = typer.Option(
        None,
        "--fuzz-window",
        help="How many lines a hunk may drift before it is rejected.",
    ),
    jobs: Optional[int] = typer.Option(
        None,
        "--jobs",
        "-j",
        help="Number of files to format concurrently.",
    ),
) -> None:
    """Format the staged content of FILES with the command given after ``--``."""

    command = list((ctx.obj or {}).get("command") or [])

    try:
        repo = GitRepository.discover(Path.cwd())
    except RepositoryError:
        typer.echo("error: not a Git repository", err=True)
        raise typer.Exit(code=1)

    try:
        settings = load_settings(config, repo.root).merged(
            context_lines=context_lines,
            fuzz_window=fuzz_window,
            jobs=jobs,
            update_worktree=True if update_working_tree else None,
            verbose=True if verbose else None,
        )
    except ConfigError as error:
        typer.echo(f"error: {error}", err=True)
        raise typer.Exit(code=1) from error

    command = command or list(settings.command)
    if not command:
        typer.echo("error: missing formatter command; pass it after `--`", err=True)
        raise typer.Exit(code=2)

    _configure_logging(settings.verbose)
    orchestrator = BackportOrchestrator(repo, command, settings=settings, cwd=Path.cwd())
    try:
        report = orchestrator.run(files)
    except KeyboardInterrupt:
        typer.echo("error: interrupted; files not yet staged were left untouched", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)

    _render_report(report, verbose=settings.verbose)
    raise typer.Exit(code=report.exit_code)


def main(argv: Sequence[str] | None = None) -> None:
    """Console-script entry point; splits the formatter command off at ``--``."""
    arguments, command = split_argv(sys.argv[1:] if argv is None else argv)
    app(args=arguments, prog_name=PROG_NAME, obj={"command": command})


if __name__ == "__main__":
    main()
