#!/usr/bin/env python3
"""
newscard: RSS news to X posts, approved through a GitHub issue.

Usage:
    python -m newscard.main collect               # Fetch feeds, render cards, open a proposal issue
    python -m newscard.main post                  # Publish candidates approved in GITHUB_EVENT_PATH
    python -m newscard.main post 1 3 --issue 42   # Publish candidates 1 and 3 of issue #42
    python -m newscard.main post 1 3 --dry        # Show what would be published
    python -m newscard.main status                # Show the latest batch
    python -m newscard.main ledger                # Show published URLs
    python -m newscard.main refresh-token         # Refresh the X token (rotates X_REFRESH_TOKEN)
"""

import json
import sys
from datetime import datetime

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from newscard.approval import read_event
from newscard.collector import run_collect
from newscard.config import AppContext
from newscard.errors import (
    BatchNotFoundError,
    ConfigurationError,
    MetadataCorruptError,
    TransientIOError,
)
from newscard.ledger import DedupLedger, commit_ledger_if_changed
from newscard.metadata import POST_URL
from newscard.orchestrator import PublishOrchestrator, PublishResult
from newscard.publishers.github import GitHubIssues, raw_content_base
from newscard.publishers.x import OAUTH2_VARS, XPublisher, refresh_access_token
from newscard.store import BatchStore

load_dotenv()

console = Console()

STATUS_STYLES = {"proposed": "cyan", "posted": "green", "skipped": "yellow"}


def _log_run(ctx: AppContext, action: str, results: dict):
    """Append run results to the log."""
    log_dir = ctx.path("log_dir")
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    entry = {
        "timestamp": datetime.now().isoformat(),
        "action": action,
        "results": results,
    }
    with open(log_file, "a") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


def _fail(message: str):
    console.print(f"[bold red]{message}[/bold red]")
    sys.exit(1)


def _store(ctx: AppContext) -> BatchStore:
    return BatchStore(ctx, issues=GitHubIssues.from_context(ctx), image_base_url=raw_content_base(ctx))


@click.group()
def cli():
    """newscard: news cards for X, approved on GitHub"""


@cli.command()
def collect():
    """Fetch feeds, build candidate cards and open a proposal issue."""
    try:
        ctx = AppContext.from_files()
        result = run_collect(ctx, _store(ctx))
    except (ConfigurationError, TransientIOError) as e:
        _fail(str(e))

    stats = result.batch.stats
    console.print(Panel.fit(
        f"[bold]{stats.get('proposed', 0)}[/bold] candidates proposed, "
        f"[bold]{len(result.failures)}[/bold] dropped\n"
        f"Run: {result.batch.run_id}",
        border_style="cyan",
    ))
    _log_run(ctx, "collect", result.to_dict())


def _result_comment(result: PublishResult) -> str:
    lines = [f"Approved: {', '.join(str(n) for n in result.approved)}", ""]
    lines.extend(result.lines)
    for candidate_id, reason in sorted(result.skipped.items()):
        lines.append(f"⚠️ Candidate {candidate_id} skipped ({reason})")
    for candidate_id in result.unchanged:
        lines.append(f"ℹ️ Candidate {candidate_id} was already handled")
    return "\n".join(lines)


def _show_selection(batch, numbers):
    table = Table(title=f"Batch #{batch.batch_id or '-'} selection")
    table.add_column("#", style="cyan", width=3)
    table.add_column("Status", width=9)
    table.add_column("Comment", max_width=40)
    table.add_column("URL", style="dim", max_width=60)
    for candidate in batch.select(numbers):
        style = STATUS_STYLES.get(candidate.status, "white")
        table.add_row(
            str(candidate.id), f"[{style}]{candidate.status}[/{style}]",
            candidate.comment, candidate.url,
        )
    console.print(table)


@cli.command()
@click.argument("numbers", nargs=-1, type=int)
@click.option("--issue", "issue_number", type=int, envvar="NEWSCARD_ISSUE",
              help="Proposal issue number (defaults to the event's issue)")
@click.option("--dry", is_flag=True, help="Show the selection without publishing")
def post(numbers, issue_number, dry):
    """Publish approved candidates to X."""
    try:
        ctx = AppContext.from_files()
        if not dry:
            ctx.require(*OAUTH2_VARS)
    except ConfigurationError as e:
        _fail(str(e))

    approved = sorted({n for n in numbers if n > 0})
    author = "cli"
    if not numbers:
        event_path = ctx.get("GITHUB_EVENT_PATH")
        if not event_path:
            _fail("No candidate numbers given and GITHUB_EVENT_PATH is not set.")
        try:
            event = read_event(event_path)
        except (OSError, json.JSONDecodeError) as e:
            _fail(f"Could not read event payload {event_path}: {e}")
        approved = event.numbers
        author = event.author
        issue_number = issue_number or event.batch_id

    if not approved:
        console.print("[yellow]No approval marker found, nothing to publish.[/yellow]")
        return

    console.print(f"[bold]Approval from {author}:[/bold] {', '.join(map(str, approved))}")
    store = _store(ctx)
    try:
        batch, source = store.resolve(issue_number)
    except (MetadataCorruptError, BatchNotFoundError) as e:
        _fail(str(e))
    console.print(f"[dim]Batch loaded from {source} ({len(batch.candidates)} candidates)[/dim]")

    if not batch.select(approved):
        _fail(f"Approved ids {approved} match no candidate in the batch.")

    if dry:
        _show_selection(batch, approved)
        console.print("[yellow]Dry run: nothing published.[/yellow]")
        return

    try:
        publisher = XPublisher.login(ctx)
    except TransientIOError as e:
        _fail(str(e))

    ledger_path = ctx.path("ledger")
    orchestrator = PublishOrchestrator(
        ledger=DedupLedger(ledger_path),
        uploaders=publisher.upload_strategies(ctx.media_strategy),
        post=publisher.post,
        store=store,
        image_root=ctx.root,
    )
    result = orchestrator.run(batch, approved)

    if store.issues is not None and batch.batch_id:
        try:
            store.issues.comment(batch.batch_id, _result_comment(result))
        except TransientIOError as e:
            console.print(f"[yellow]Result comment not posted: {e}[/yellow]")

    commit_ledger_if_changed(ledger_path, ctx.root)

    console.print(
        f"\n[bold]Done:[/bold] [green]{len(result.posted)} posted[/green], "
        f"[yellow]{len(result.skipped)} skipped[/yellow], {len(result.unchanged)} unchanged"
    )
    _log_run(ctx, "post", {**result.to_dict(), "batch_id": batch.batch_id, "author": author})


@cli.command()
@click.option("--issue", "issue_number", type=int, envvar="NEWSCARD_ISSUE")
def status(issue_number):
    """Show the latest batch (issue if given, else the local cache)."""
    ctx = AppContext.from_files()
    try:
        batch, source = _store(ctx).resolve(issue_number)
    except (MetadataCorruptError, BatchNotFoundError) as e:
        _fail(str(e))

    table = Table(title=f"Batch #{batch.batch_id or '-'} ({source}, run {batch.run_id})")
    table.add_column("#", style="cyan", width=3)
    table.add_column("Publisher", width=16)
    table.add_column("Category", width=12)
    table.add_column("Comment", max_width=40)
    table.add_column("Status", width=9)
    table.add_column("Detail", style="dim", max_width=40)
    for candidate in batch.candidates:
        style = STATUS_STYLES.get(candidate.status, "white")
        if candidate.status == "posted":
            detail = POST_URL.format(id=candidate.published_id)
        else:
            detail = candidate.rejection_reason or ""
        table.add_row(
            str(candidate.id), candidate.source_title, candidate.category,
            candidate.comment, f"[{style}]{candidate.status}[/{style}]", detail,
        )
    console.print(table)
    stats = batch.stats
    console.print(
        f"  Proposed: {stats.get('proposed', 0)}  |  Posted: {stats.get('posted', 0)}  |  "
        f"Skipped: {stats.get('skipped', 0)}"
    )


@cli.command(name="ledger")
@click.option("--limit", default=20, help="Number of most recent entries to show")
def ledger_cmd(limit):
    """Show the most recently published URLs."""
    ctx = AppContext.from_files()
    entries = DedupLedger(ctx.path("ledger")).load()
    if not entries:
        console.print("[yellow]Ledger is empty.[/yellow]")
        return

    table = Table(title=f"Published ({len(entries)} total)")
    table.add_column("Published at", width=20)
    table.add_column("Issue", width=6)
    table.add_column("URL", max_width=60)
    table.add_column("Post", style="dim")
    for entry in entries[-limit:]:
        table.add_row(
            entry.published_at[:19], str(entry.batch_id or "-"), entry.url,
            POST_URL.format(id=entry.published_id),
        )
    console.print(table)


@cli.command(name="refresh-token")
def refresh_token():
    """Refresh the X access token and persist a rotated refresh token."""
    ctx = AppContext.from_files()
    try:
        data = refresh_access_token(ctx)
    except (ConfigurationError, TransientIOError) as e:
        _fail(str(e))

    console.print(f"[green]Access token valid for {data.get('expires_in', '?')}s.[/green]")
    _log_run(ctx, "refresh-token", {
        "expires_in": data.get("expires_in"),
        "rotated": bool(data.get("refresh_token")),
    })


if __name__ == "__main__":
    cli()
