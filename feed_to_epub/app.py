"""Typer CLI entrypoint for feed-to-epub."""

from __future__ import annotations

import signal
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import AppConfig, ConfigLocator, ConfigRepository
from .errors import ConfigError, StoreError, StoreUnrecoverableError
from .infra import FeedState, SQLiteStateStore, StateStore
from .logging_conf import (
    ERROR_LOG,
    MAIN_LOG,
    available_feed_logs,
    configure_logging,
    current_log_dir,
    feed_log_path,
    tail_log,
)
from .orchestrator import Orchestrator, PollSummary
from .scheduler import APSchedulerAdapter, CycleReport, PollScheduler

EXIT_STORE = 1
EXIT_CONFIG = 2

app = typer.Typer(
    help="Poll RSS/Atom feeds and save every new item as an EPUB.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
feeds_app = typer.Typer(
    name="feeds",
    help="Inspect stored feed state.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Read log files.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    config: AppConfig
    store: StateStore
    orchestrator: Orchestrator
    poller: PollScheduler

    def close(self) -> None:
        self.poller.close()
        self.orchestrator.close()
        self.store.close()


@dataclass
class CliOptions:
    config_path: Optional[Path] = None
    verbose: bool = False
    state: Optional[AppState] = None


def build_state(config_path: Optional[Path], verbose: bool) -> AppState:
    repository = ConfigRepository(ConfigLocator(config_path))
    config = repository.load()
    configure_logging(verbose=verbose, log_dir=config.log_dir)
    store = SQLiteStateStore(config.db_file)
    orchestrator = Orchestrator.from_config(config, store)
    poller = PollScheduler(config, store, orchestrator)
    return AppState(config=config, store=store, orchestrator=orchestrator, poller=poller)


def _get_state(ctx: typer.Context) -> AppState:
    options = ctx.find_root().obj
    if options is None:
        options = CliOptions()
        ctx.find_root().obj = options
    if options.state is None:
        try:
            options.state = build_state(options.config_path, options.verbose)
        except ConfigError as exc:
            console.print(f"Configuration error: {exc}", style="red")
            raise typer.Exit(code=EXIT_CONFIG) from exc
        except StoreError as exc:
            console.print(f"Cannot open state store: {exc}", style="red")
            raise typer.Exit(code=EXIT_STORE) from exc
        ctx.find_root().call_on_close(options.state.close)
    return options.state


def _fmt(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def _render_cycle_table(summaries: Iterable[PollSummary]) -> Table:
    table = Table(title="Poll results", box=box.SIMPLE_HEAD)
    table.add_column("Feed", style="cyan", no_wrap=True)
    table.add_column("Outcome", style="magenta")
    table.add_column("New", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Written", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Write errors", justify="right", style="red")
    table.add_column("Error", overflow="fold")
    for summary in summaries:
        table.add_row(
            summary.feed_id,
            summary.outcome.value,
            str(summary.new),
            str(summary.skipped),
            str(summary.committed),
            str(summary.failed),
            str(summary.write_errors),
            summary.error or "",
        )
    return table


def _render_feeds_table(config: AppConfig, states: dict[str, FeedState]) -> Table:
    table = Table(
        title=f"Feeds · {len(config.feeds)} configured",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("Feed", style="cyan", no_wrap=True)
    table.add_column("URL", overflow="fold")
    table.add_column("Interval", justify="right")
    table.add_column("Last poll", style="green")
    table.add_column("Outcome", style="magenta")
    table.add_column("Last error", style="red", overflow="fold")
    for feed_id, feed in config.feeds.items():
        state = states.get(feed_id)
        table.add_row(
            feed_id,
            feed.url,
            f"{config.interval_for(feed_id)}s",
            _fmt(state.last_polled_at if state else None),
            state.last_outcome.value if state and state.last_outcome else "never",
            (state.last_error if state else None) or "",
        )
    for feed_id in sorted(set(states) - set(config.feeds)):
        state = states[feed_id]
        table.add_row(
            f"{feed_id} (stale)",
            state.url,
            "-",
            _fmt(state.last_polled_at),
            state.last_outcome.value if state.last_outcome else "never",
            state.last_error or "",
        )
    return table


app.add_typer(feeds_app, name="feeds", help="List feeds, show history, purge stale state.")
app.add_typer(log_app, name="log", help="List or tail log files.")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (defaults to $FEED_TO_EPUB_CONFIG or ~/.config/feed-to-epub/config.yaml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.", is_flag=True),
) -> None:
    ctx.obj = CliOptions(config_path=config, verbose=verbose)


@app.command("run", help="Run the polling daemon until interrupted.")
def run(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        state.poller.seed()
    except StoreError as exc:
        console.print(f"Cannot initialise state store: {exc}", style="red")
        state.close()
        raise typer.Exit(code=EXIT_STORE) from exc

    adapter = APSchedulerAdapter(state.poller)

    def _request_stop(signum, frame) -> None:  # noqa: ANN001, ARG001
        console.print("Stopping after the current item…", style="yellow")
        adapter.request_stop()

    previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    console.print(
        f"Polling {len(state.config.feeds)} feed(s) every {state.poller.interval_secs}s.",
        style="cyan",
    )
    try:
        adapter.start()
        while not adapter.wait(timeout=1.0):
            pass
    finally:
        adapter.shutdown()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        state.close()

    if adapter.failure is not None:
        console.print(f"State store unrecoverable: {adapter.failure}", style="red")
        raise typer.Exit(code=EXIT_STORE)
    console.print("Stopped.", style="green")


@app.command(
    "poll",
    help="Run a single poll cycle now and print the results. With --force the minimum poll interval is bypassed.",
)
def poll(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        help="Poll feeds even if they are not due, overriding the minimum poll interval.",
        is_flag=True,
    ),
    feed: Optional[str] = typer.Option(None, "--feed", help="Only poll this feed id."),
) -> None:
    state = _get_state(ctx)
    if feed is not None and feed not in state.config.feeds:
        console.print(f"Unknown feed `{feed}`.", style="red")
        raise typer.Exit(code=EXIT_CONFIG)
    try:
        report: CycleReport = state.poller.run_cycle(force=force, only=feed)
    except StoreUnrecoverableError as exc:
        console.print(f"State store unrecoverable: {exc}", style="red")
        raise typer.Exit(code=EXIT_STORE) from exc
    finally:
        state.close()
    if report.aborted:
        console.print(f"Cycle aborted: {report.error}", style="red")
        raise typer.Exit(code=EXIT_STORE)
    if not report.summaries:
        console.print("No feed is due. Use --force to poll anyway.", style="dim")
        return
    console.print(_render_cycle_table(report.summaries))
    console.print(
        f"Total: {report.total('committed')} written, {report.total('failed')} failed, "
        f"{report.total('skipped')} already converted.",
        style="cyan",
    )


@feeds_app.command("list", help="Show configured and stored feeds with their last poll.")
def feeds_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    states = {feed.feed_id: feed for feed in state.store.list_feeds()}
    if not state.config.feeds and not states:
        console.print("No feeds configured.", style="yellow")
        return
    console.print(_render_feeds_table(state.config, states))


@feeds_app.command("history", help="Show the most recent processing records of a feed.")
def feeds_history(
    ctx: typer.Context,
    feed_id: str = typer.Argument(..., help="Feed id."),
    limit: int = typer.Option(20, "--limit", min=1, help="Number of records to show."),
) -> None:
    state = _get_state(ctx)
    records = state.store.history(feed_id, limit=limit)
    if not records:
        console.print("No records.", style="dim")
        return
    table = Table(title=f"{feed_id} · last {len(records)} records", box=box.SIMPLE_HEAD)
    table.add_column("Processed", style="green")
    table.add_column("Outcome", style="magenta")
    table.add_column("Attempts", justify="right")
    table.add_column("Item", overflow="fold")
    table.add_column("Artifact / error", overflow="fold")
    for record in records:
        detail = str(record.artifact_path) if record.succeeded else (record.error or "")
        table.add_row(
            _fmt(record.processed_at),
            record.outcome.value,
            str(record.attempts),
            record.item_id,
            detail,
        )
    console.print(table)


@feeds_app.command("purge", help="Delete a feed's stored state and processing records.")
def feeds_purge(
    ctx: typer.Context,
    feed_id: str = typer.Argument(..., help="Feed id."),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    if feed_id in state.config.feeds:
        console.print(
            f"`{feed_id}` is still configured; its items will be converted again on the next poll.",
            style="yellow",
        )
    if not yes:
        confirm = typer.confirm(f"Purge stored state of `{feed_id}`?", default=False)
        if not confirm:
            console.print("Cancelled.", style="yellow")
            raise typer.Exit(code=0)
    if not state.store.purge_feed(feed_id):
        console.print(f"Unknown feed `{feed_id}`.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Purged `{feed_id}`.", style="green")


@log_app.command("list", help="List available log files.")
def log_list(ctx: typer.Context) -> None:
    _get_state(ctx)
    log_dir = current_log_dir()
    table = Table(title=str(log_dir), box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for name in (MAIN_LOG, ERROR_LOG):
        if (log_dir / name).exists():
            table.add_row(name)
    for path in available_feed_logs():
        table.add_row(f"feeds/{path.name}")
    console.print(table)


@log_app.command("show", help="Show the last lines of a log.")
def log_show(
    ctx: typer.Context,
    feed: Optional[str] = typer.Option(None, "--feed", help="Feed id (main log when omitted)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    _get_state(ctx)
    path = feed_log_path(feed) if feed else current_log_dir() / MAIN_LOG
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
