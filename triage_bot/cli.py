"""triage-bot CLI."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import typer

from triage_bot.config import TriageConfig, load_config
from triage_bot.errors import ConfigurationError, TriageError
from triage_bot.github.tracker import IssueTracker, build_tracker_from_env, parse_timestamp
from triage_bot.orchestration.batch import BatchReport, BatchRunner
from triage_bot.orchestration.orchestrator import ALL_STEPS, TriageOrchestrator
from triage_bot.orchestration.reporting import ReportingService
from triage_bot.repo_layout import discover_modules, find_codeowners, load_codeowners
from triage_bot.shared.settings import TriageSettings
from triage_bot.store.db import TriageDB

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(add_completion=False, help="triage-bot: classify, dedupe, assign, and size issues")


@dataclass
class CLIState:
    settings: TriageSettings
    config_path: Optional[Path]
    db_path: Path
    repo: str
    tracker: str


@dataclass
class Runtime:
    config: TriageConfig
    db: TriageDB
    tracker: Optional[IssueTracker]


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="YAML engine configuration"),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
    repo: str = typer.Option("", "--repo", help="owner/name of the tracked repository"),
    tracker: str = typer.Option("", "--tracker", help="api or in_memory"),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    settings = TriageSettings.from_env()
    ctx.obj = CLIState(
        settings=settings,
        config_path=config or settings.config_path,
        db_path=db or settings.sqlite_path,
        repo=repo or settings.repo,
        tracker=tracker or settings.tracker,
    )


def _load_config(state: CLIState) -> TriageConfig:
    try:
        config = load_config(state.config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    if not config.modules and config.project_root is not None:
        modules = discover_modules(config.project_root)
        logger.info("Using %d discovered modules from %s", len(modules), config.project_root)
        config = config.with_modules(modules)
    return config


@contextmanager
def _runtime(ctx: typer.Context, with_tracker: bool = True) -> Iterator[Runtime]:
    state: CLIState = ctx.obj
    config = _load_config(state)
    try:
        tracker = build_tracker_from_env(state.repo, kind=state.tracker) if with_tracker else None
        db = TriageDB(state.db_path)
    except TriageError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    try:
        yield Runtime(config=config, db=db, tracker=tracker)
    finally:
        db.close()


def _parse_since(value: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}")
    return parsed


def _emit_report(report: BatchReport) -> None:
    typer.echo(json.dumps(report.to_dict(), indent=2))
    if report.failed:
        raise typer.Exit(code=1)


def _runner(runtime: Runtime, workers: int, timeout: float) -> BatchRunner:
    orchestrator = TriageOrchestrator(runtime.config, runtime.db, runtime.tracker)
    return BatchRunner(orchestrator, workers=workers or None, timeout_s=timeout or None)


@app.command()
def triage(
    ctx: typer.Context,
    numbers: list[str] = typer.Argument(..., help="Issue numbers, e.g. 12 or #12"),
    step: list[str] = typer.Option(list(ALL_STEPS), "--step", help="Limit to these steps"),
    force: bool = typer.Option(False, "--force", help="Re-run steps that already have records"),
    workers: int = typer.Option(0, "--workers"),
    timeout: float = typer.Option(0.0, "--timeout"),
) -> None:
    """Triage specific issues."""
    unknown = sorted(set(step) - set(ALL_STEPS))
    if unknown:
        raise typer.BadParameter(f"Unknown steps {unknown}; choose from {list(ALL_STEPS)}")
    with _runtime(ctx) as runtime:
        report = _runner(runtime, workers, timeout).run(numbers, steps=step, force=force)
    _emit_report(report)


@app.command()
def batch(
    ctx: typer.Context,
    since: str = typer.Option("", "--since", help="Only issues updated since this ISO time"),
    force: bool = typer.Option(False, "--force"),
    workers: int = typer.Option(0, "--workers"),
    timeout: float = typer.Option(0.0, "--timeout"),
) -> None:
    """Triage every open issue."""
    with _runtime(ctx) as runtime:
        report = _runner(runtime, workers, timeout).triage_open(since=_parse_since(since), force=force)
    _emit_report(report)


@app.command()
def classify_new(
    ctx: typer.Context,
    since: str = typer.Option("", "--since"),
    force: bool = typer.Option(False, "--force"),
    workers: int = typer.Option(0, "--workers"),
) -> None:
    """Classify open issues that have not been classified yet."""
    with _runtime(ctx) as runtime:
        report = _runner(runtime, workers, 0.0).classify_new(since=_parse_since(since), force=force)
    _emit_report(report)


@app.command()
def assign_unassigned(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force"),
    workers: int = typer.Option(0, "--workers"),
) -> None:
    """Assign owners to open issues without assignees."""
    with _runtime(ctx) as runtime:
        report = _runner(runtime, workers, 0.0).assign_unassigned(force=force)
    _emit_report(report)


@app.command()
def import_codeowners(
    ctx: typer.Context,
    path: Optional[Path] = typer.Option(None, "--path", help="CODEOWNERS file"),
    root: Path = typer.Option(Path("."), "--root", help="Checkout to search for CODEOWNERS"),
    strength: float = typer.Option(1.0, "--strength", min=0.0, max=1.0),
) -> None:
    """Load CODEOWNERS entries into the ownership table."""
    source = path or find_codeowners(root)
    if source is None:
        typer.echo(f"Error: no CODEOWNERS file found under {root}", err=True)
        raise typer.Exit(code=2)
    entries = load_codeowners(source, strength=strength)
    with _runtime(ctx, with_tracker=False) as runtime:
        count = runtime.db.upsert_ownership(entries)
    typer.echo(json.dumps({"source": str(source), "imported": count}))


@app.command()
def confirm_duplicate(
    ctx: typer.Context,
    issue: int = typer.Argument(...),
    duplicate_of: int = typer.Argument(...),
    by: str = typer.Option(..., "--by", help="Who confirmed the duplicate"),
) -> None:
    """Mark a recorded duplicate pair as confirmed."""
    with _runtime(ctx, with_tracker=False) as runtime:
        updated = runtime.db.confirm_duplicate(issue, duplicate_of, by)
    if not updated:
        typer.echo(f"Error: no duplicate record #{issue} -> #{duplicate_of}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"issue": issue, "duplicate_of": duplicate_of, "confirmed_by": by}))


@app.command()
def stats(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", min=1),
    output: Optional[Path] = typer.Option(None, "--output", help="Write markdown here"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Print the triage summary for the last N days."""
    with _runtime(ctx, with_tracker=False) as runtime:
        service = ReportingService(runtime.db)
        if output is not None:
            typer.echo(str(service.write_report(output, days=days)))
            return
        summary = service.build_summary(days=days)
    if as_json:
        typer.echo(json.dumps(summary, indent=2))
    else:
        typer.echo(service.render_markdown(summary))


@app.command()
def cleanup(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", min=1),
) -> None:
    """Delete unconfirmed duplicate records older than N days."""
    with _runtime(ctx, with_tracker=False) as runtime:
        deleted = runtime.db.cleanup_old_duplicates(days)
    typer.echo(json.dumps({"deleted": deleted}))


@app.command()
def show_config(ctx: typer.Context) -> None:
    """Print the effective engine configuration."""
    config = _load_config(ctx.obj)
    typer.echo(json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
