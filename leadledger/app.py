"""Typer CLI entrypoint for Lead-Ledger."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository
from .engine import JobStatus, LeadSort, ScrapingJob, SortOrder, ThreadPoolManager, WorkerSummary
from .engine.leads import PAGE_SIZE
from .errors import LeadLedgerError
from .infra import SQLiteManager
from .logging_conf import available_tenant_logs, configure_logging, log_dir, tail_log
from .orchestrator import ImportSummary, Orchestrator
from .scheduler import APSchedulerAdapter

app = typer.Typer(help="Lead-Ledger command line", no_args_is_help=True, rich_markup_mode=None)
jobs_app = typer.Typer(name="jobs", help="Scraping job queue commands", no_args_is_help=True)
leads_app = typer.Typer(name="leads", help="Lead import and listing", no_args_is_help=True)
tenant_app = typer.Typer(name="tenant", help="Tenant management", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log file viewer", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    orchestrator: Orchestrator
    storage: SQLiteManager
    tenant_id: Optional[str] = None


def build_state(verbose: bool, tenant_id: Optional[str] = None) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    storage = SQLiteManager()
    orchestrator = Orchestrator(
        config_repository=repository,
        storage=storage,
        thread_pool=ThreadPoolManager(global_config.worker.concurrency_limit),
        scheduler=APSchedulerAdapter(),
    )
    return AppState(
        repository=repository,
        orchestrator=orchestrator,
        storage=storage,
        tenant_id=tenant_id,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Turn structural failures into a printed message and exit code 1."""

    try:
        yield
    except (LeadLedgerError, FileNotFoundError) as exc:
        console.print(f"Error: {exc}", style="red")
        raise typer.Exit(code=1) from exc


def _render_jobs_table(jobs: Sequence[ScrapingJob]) -> Table:
    table = Table(title=f"Scraping jobs · {len(jobs)}", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("URL", style="green", overflow="fold")
    table.add_column("Created", style="dim")
    table.add_column("Error", style="red", overflow="fold")
    for job in jobs:
        table.add_row(job.id, job.status.value, job.url, job.created_at[:19], job.error or "")
    return table


def _render_summary(title: str, rows: dict[str, object]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table


app.add_typer(jobs_app, name="jobs")
app.add_typer(leads_app, name="leads")
app.add_typer(tenant_app, name="tenant")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    tenant: Optional[str] = typer.Option(
        None, "--tenant", envvar="LEADLEDGER_TENANT", help="Tenant id to operate on."
    ),
) -> None:
    ctx.obj = build_state(verbose, tenant)


# ----------------------------------------------------------------------
# jobs
# ----------------------------------------------------------------------
@jobs_app.command("submit", help="Queue one or more URLs for scraping.")
def jobs_submit(
    ctx: typer.Context,
    urls: List[str] = typer.Argument(..., help="Page URLs to scrape."),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        jobs = state.orchestrator.submit_jobs(state.tenant_id, urls)
    for job in jobs:
        console.print(f"queued {job.id} {job.url}", style="green")


@jobs_app.command("list", help="Show the tenant's scraping jobs, newest first.")
def jobs_list(
    ctx: typer.Context,
    status: Optional[JobStatus] = typer.Option(None, "--status", help="Only jobs in this status."),
    limit: int = typer.Option(50, "--limit", min=1),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        jobs = state.orchestrator.list_jobs(state.tenant_id, status=status, limit=limit)
    if not jobs:
        console.print("No scraping jobs.", style="dim")
        return
    console.print(_render_jobs_table(jobs))


def _print_worker_summary(summary: WorkerSummary, quiet: bool) -> None:
    if quiet:
        console.print(
            f"processed {summary.processed}: success {summary.success}, "
            f"failed {summary.failed}, skipped {summary.skipped} in {summary.elapsed:.2f}s"
        )
        return
    console.print(_render_summary("Processing summary", summary.as_dict()))
    failures = [outcome for outcome in summary.outcomes if outcome.status == "failed"]
    if failures:
        table = Table(title="Failed jobs", box=box.SIMPLE_HEAD)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("URL", overflow="fold")
        table.add_column("Error", style="red", overflow="fold")
        for outcome in failures:
            table.add_row(outcome.job_id, outcome.url, outcome.reason or "")
        console.print(table)


@jobs_app.command("process", help="Drain pending jobs through the bounded worker pool.")
def jobs_process(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Jobs claimed per run (200)."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Jobs run at once (5)."),
    delay_ms: Optional[int] = typer.Option(None, "--delay-ms", min=0, help="Pause between chunks (500)."),
    quiet: bool = typer.Option(False, "--quiet", help="Print a one-line summary."),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        summary = state.orchestrator.process_pending(
            state.tenant_id,
            concurrency_limit=concurrency,
            inter_batch_delay_ms=delay_ms,
            claim_batch_size=batch_size,
            progress_enabled=False if quiet else None,
        )
    _print_worker_summary(summary, quiet)


@jobs_app.command("cancel", help="Cancel a pending job.")
def jobs_cancel(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        job = state.orchestrator.cancel_job(state.tenant_id, job_id)
    console.print(f"job {job.id} is {job.status.value}", style="green")


@jobs_app.command("retry", help="Re-queue a failed or cancelled job's URL.")
def jobs_retry(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        job = state.orchestrator.retry_job(state.tenant_id, job_id)
    console.print(f"queued {job.id} {job.url}", style="green")


@jobs_app.command("fail-stale", help="Fail jobs stuck in running.")
def jobs_fail_stale(
    ctx: typer.Context,
    older_than: Optional[int] = typer.Option(
        None, "--older-than", min=1, help="Seconds since start (defaults to config)."
    ),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        failed = state.orchestrator.fail_stale_jobs(
            state.tenant_id, timedelta(seconds=older_than) if older_than else None
        )
    console.print(f"failed {len(failed)} stale job(s)")
    for job_id in failed:
        console.print(f"- {job_id}", style="dim")


@jobs_app.command("watch", help="Process pending jobs on the configured schedule.")
def jobs_watch(
    ctx: typer.Context,
    run_for: Optional[float] = typer.Option(
        None, "--run-for", min=0, help="Stop after this many seconds (default: until Ctrl-C)."
    ),
) -> None:
    state = _get_state(ctx)
    orchestrator = state.orchestrator
    with _cli_errors():
        job_id = orchestrator.register_schedule(state.tenant_id)
    console.print(f"scheduled {job_id}; press Ctrl-C to stop", style="cyan")
    deadline = None if run_for is None else time.monotonic() + run_for
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("stopping", style="yellow")
    finally:
        orchestrator.close()


# ----------------------------------------------------------------------
# leads
# ----------------------------------------------------------------------
@leads_app.command("import", help="Import leads from a CSV or JSON file.")
def leads_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="File to import."),
    fmt: Optional[str] = typer.Option(None, "--format", help="csv or json (defaults to file extension)."),
    source: Optional[str] = typer.Option(None, "--source", help="Default source for records without a URL."),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", min=1),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        summary: ImportSummary = state.orchestrator.import_file(
            state.tenant_id, path, fmt, default_source=source, chunk_size=chunk_size
        )
    console.print(_render_summary(f"Import · {path.name}", summary.as_dict()))
    if summary.errors:
        table = Table(title="Write errors", box=box.SIMPLE_HEAD)
        table.add_column("Source", style="cyan", overflow="fold")
        table.add_column("Error", style="red", overflow="fold")
        for error in summary.errors:
            table.add_row(error.source, error.message)
        console.print(table)


@leads_app.command("list", help="Show one page of leads, most recently updated first by default.")
def leads_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status"),
    search: Optional[str] = typer.Option(None, "--search", help="Case-insensitive match on the lead name."),
    sort_by: LeadSort = typer.Option(LeadSort.UPDATED_AT, "--sort"),
    order: SortOrder = typer.Option(SortOrder.DESC, "--order"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(PAGE_SIZE, "--limit", "--page-size", min=1),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        result = state.orchestrator.search_leads(
            state.tenant_id,
            status=status,
            name=search,
            sort_by=sort_by,
            order=order,
            page=page,
            page_size=page_size,
        )
    if not result.leads:
        if result.total_count:
            console.print(f"No leads on page {result.page} of {result.total_pages}.", style="dim")
        else:
            console.print("No leads.", style="dim")
        return
    table = Table(
        title=f"Leads · {result.total_count} (page {result.page}/{result.total_pages})",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("Name", style="cyan", overflow="fold")
    table.add_column("Source", style="green", overflow="fold")
    table.add_column("Status", style="magenta")
    table.add_column("Updated", style="dim")
    for lead in result.leads:
        data = lead.get("data") or {}
        table.add_row(str(data.get("name") or "-"), lead["source"], lead["status"], lead["updated_at"][:19])
    console.print(table)


@leads_app.command("stats", help="Show how complete the tenant's lead data is.")
def leads_stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        stats = state.orchestrator.lead_statistics(state.tenant_id)
    rows = stats.as_dict()
    rows["phone_rate"] = f"{stats.phone_rate:.2f}%"
    rows["website_rate"] = f"{stats.website_rate:.2f}%"
    console.print(_render_summary("Lead statistics", rows))


# ----------------------------------------------------------------------
# tenant
# ----------------------------------------------------------------------
@tenant_app.command("add", help="Create a tenant.")
def tenant_add(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    tenant_id: Optional[str] = typer.Option(None, "--id", help="Explicit tenant id."),
    slug: Optional[str] = typer.Option(None, "--slug"),
) -> None:
    state = _get_state(ctx)
    with _cli_errors():
        tenant = state.orchestrator.create_tenant(name, tenant_id=tenant_id, slug=slug)
    console.print(f"tenant {tenant.slug} created: {tenant.id}", style="green")


@tenant_app.command("list", help="List tenants.")
def tenant_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    tenants = state.orchestrator.list_tenants()
    if not tenants:
        console.print("No tenants; create one with `leadledger tenant add`.", style="yellow")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Slug", style="green")
    table.add_column("Name")
    table.add_column("Active", style="magenta")
    for tenant in tenants:
        table.add_row(tenant.id, tenant.slug, tenant.name, "yes" if tenant.is_active else "no")
    console.print(table)


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="List available tenant log files.")
def log_list() -> None:
    logs = list(available_tenant_logs())
    if not logs:
        console.print("No tenant logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the global or a tenant log.")
def log_show(
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant id (global log when omitted)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    base_dir = log_dir()
    path = base_dir / "tenants" / f"{tenant}.log" if tenant else base_dir / "leadledger.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
