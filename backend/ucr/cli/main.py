"""Main CLI entry point."""

import json
from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from ucr.services.errors import UCRError

app = typer.Typer(
    name="hera-ucr",
    help="HERA Universal Configuration Rules orchestrator CLI",
    add_completion=False,
)

console = Console()


def parse_instant(raw: Optional[str]) -> Optional[datetime]:
    """Parse an ISO date or datetime option."""
    if raw is None:
        return None
    from ucr.services._helpers import parse_iso

    try:
        return parse_iso(raw)
    except ValueError:
        raise typer.BadParameter(
            f"Invalid timestamp '{raw}'. Expected ISO format (e.g., 2026-01-15T09:00:00Z)"
        )


def fail(exc: UCRError) -> NoReturn:
    console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
    for err in getattr(exc, "errors", [])[:10]:
        console.print(f"  {err}")
    raise typer.Exit(code=1)


@app.command()
def init_db(
    force: bool = typer.Option(False, "--force", "-f", help="Drop and recreate tables")
):
    """Initialize the database schema."""
    from db.connection import get_engine, init_database
    from db.models import Base

    with console.status("Initializing database..."):
        if force:
            engine = get_engine()
            Base.metadata.drop_all(engine)
            console.print("[yellow]Dropped existing tables[/yellow]")

        init_database()

    console.print("[green]Database initialized successfully[/green]")


@app.command()
def templates(
    industry: Optional[str] = typer.Option(None, "--industry", "-i", help="Industry filter"),
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Module filter"),
):
    """List rule templates."""
    from ucr.services.templates import TemplateLibrary

    found = TemplateLibrary().list_templates(industry=industry, module=module)
    if not found:
        console.print("[yellow]No templates found[/yellow]")
        return

    table = Table(title="Rule Templates")
    table.add_column("Template", style="cyan")
    table.add_column("Industry", style="blue")
    table.add_column("Module")
    table.add_column("Smart Code", style="green")
    table.add_column("Title")

    for t in found:
        table.add_row(t.template_id, t.industry, t.module, t.smart_code, t.title)

    console.print(table)


@app.command()
def clone(
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    template_id: str = typer.Option(..., "--template", "-t", help="Template ID"),
    smart_code: Optional[str] = typer.Option(None, "--smart-code", "-s", help="Target smart code"),
    actor: str = typer.Option("cli", "--actor", help="Acting user"),
):
    """Clone a template into a new draft rule."""
    from db.connection import get_session
    from ucr.services.templates import TemplateLibrary

    try:
        with get_session() as session:
            rule = TemplateLibrary(session).clone(org, template_id, smart_code, actor)
    except UCRError as exc:
        fail(exc)

    console.print(f"[green]Created draft rule {rule.id}[/green]")
    console.print(f"  Smart code: {rule.smart_code}")
    console.print(f"  Version: {rule.version_label}")


@app.command()
def rules(
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    status: Optional[str] = typer.Option(None, "--status", help="Status filter"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Free-text search"),
    family: Optional[str] = typer.Option(None, "--family", "-f", help="Smart-code family"),
    include_deprecated: bool = typer.Option(
        True, "--include-deprecated/--hide-deprecated", help="Show deprecated rules"
    ),
):
    """List rules of an organization."""
    from db.connection import get_session
    from db.enums import RuleStatus
    from ucr.services.rule_store import RuleStore
    from ucr.services.schemas import RuleFilters

    try:
        rule_status = RuleStatus(status) if status else None
    except ValueError:
        raise typer.BadParameter(
            f"--status must be one of: {', '.join(s.value for s in RuleStatus)}"
        )

    filters = RuleFilters(
        status=rule_status,
        family=family,
        query=query,
        include_deprecated=include_deprecated,
    )
    with get_session() as session:
        found = RuleStore(session).list_rules(org, filters)

    if not found:
        console.print("[yellow]No rules found[/yellow]")
        return

    table = Table(title=f"Rules for {org}")
    table.add_column("ID", style="cyan")
    table.add_column("Smart Code", style="green")
    table.add_column("Version", justify="right")
    table.add_column("Status", style="blue")
    table.add_column("Title")
    table.add_column("Tags")

    for r in found:
        table.add_row(
            r.id[:8] + "...",
            r.smart_code,
            r.version_label,
            r.status.value,
            r.title,
            ", ".join(r.tags),
        )

    console.print(table)


@app.command()
def simulate(
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    scenarios_file: Path = typer.Option(
        ..., "--scenarios", "-s", exists=True, dir_okay=False, help="JSON file of scenarios"
    ),
    rule_id: Optional[str] = typer.Option(None, "--rule", "-r", help="Rule ID to simulate"),
    baseline: Optional[str] = typer.Option(None, "--baseline", "-b", help="Baseline rule ID"),
):
    """Run scenarios from a JSON file against a stored rule.

    The file holds a list of ``{"scenario_id", "context", "expected"}`` objects,
    or an object with a ``scenarios`` list and an optional ``rule_payload`` to
    simulate instead of a stored rule.
    """
    from db.connection import get_session
    from ucr.services.simulation import SimulationEngine

    raw = json.loads(scenarios_file.read_text(encoding="utf-8"))
    draft = None
    if isinstance(raw, dict):
        draft = raw.get("rule_payload")
        raw = raw.get("scenarios", [])
    if not isinstance(raw, list):
        raise typer.BadParameter("Scenarios file must hold a list of scenarios")
    if draft is None and rule_id is None:
        raise typer.BadParameter("--rule is required unless the file carries a rule_payload")

    try:
        with get_session() as session:
            result = SimulationEngine(session).simulate(
                org, raw, rule_id=rule_id, draft=draft, baseline_rule_id=baseline
            )
    except UCRError as exc:
        fail(exc)

    table = Table(title="Simulation Results")
    table.add_column("Scenario", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Details")

    for r in result.results:
        mark = "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]"
        details = r.error or "; ".join(r.diff)
        table.add_row(r.scenario_id, mark, details)

    console.print(table)
    console.print(
        f"\n[bold]Coverage:[/bold] {result.coverage:.2f}% ({result.passed} passed, {result.failed} failed)"
    )
    if result.regressions:
        console.print(f"[red]Regressions:[/red] {', '.join(result.regressions)}")
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def history(
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    family: str = typer.Option(..., "--family", "-f", help="Smart-code family"),
):
    """Show the version history of a smart-code family."""
    from db.connection import get_session
    from ucr.services.versioning import VersionManager

    with get_session() as session:
        entries = VersionManager(session).history(org, family)

    if not entries:
        console.print("[yellow]No versions found[/yellow]")
        return

    table = Table(title=f"History of {family}")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Smart Code", style="green")
    table.add_column("Status", style="blue")
    table.add_column("Created")
    table.add_column("Last Deployed")
    table.add_column("Restored")

    for e in entries:
        table.add_row(
            f"{e['version']}.{e['minor_version']}",
            e["smart_code"],
            e["status"],
            e["created_at"],
            e["last_deployed_at"] or "-",
            e["restored_at"] or "-",
        )

    console.print(table)


@app.command()
def audit(
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    rule_id: Optional[str] = typer.Option(None, "--rule", "-r", help="Only this rule"),
    limit: int = typer.Option(50, "--limit", "-n", help="Most recent N events"),
):
    """Show the audit trail."""
    from db.connection import get_session
    from ucr.services.audit import AuditLog

    with get_session() as session:
        log = AuditLog(session)
        events = log.events(org, rule_id=rule_id)[-limit:] if rule_id else log.recent(org, limit)

    if not events:
        console.print("[yellow]No audit events found[/yellow]")
        return

    table = Table(title=f"Audit trail for {org}")
    table.add_column("When", style="cyan")
    table.add_column("Event", style="green")
    table.add_column("Rule")
    table.add_column("Actor")
    table.add_column("Transition", style="blue")

    for e in events:
        transition = ""
        if e.from_status or e.to_status:
            before = e.from_status.value if e.from_status else "-"
            after = e.to_status.value if e.to_status else "-"
            transition = f"{before} -> {after}"
        table.add_row(e.created_at, e.event_type.value, e.rule_id[:8] + "...", e.actor, transition)

    console.print(table)


@app.command("run-schedule")
def run_schedule(
    org: Optional[str] = typer.Option(None, "--org", "-o", help="Only this organization"),
    now: Optional[str] = typer.Option(None, "--now", help="Evaluate as of this instant"),
):
    """Activate due scheduled deployments and expire lapsed ones."""
    from db.connection import get_session
    from ucr.services.orchestrator import DeploymentOrchestrator

    at = parse_instant(now)
    with get_session() as session:
        result = DeploymentOrchestrator(session).activate_due(at, organization_id=org)

    console.print(f"[green]Activated:[/green] {len(result.activated)}")
    for record in result.activated:
        console.print(f"  {record.smart_code} ({record.id})")
    if result.failed:
        console.print(f"[red]Failed:[/red] {len(result.failed)}")
        for record in result.failed:
            console.print(f"  {record.smart_code}: {record.error}")
    console.print(f"[yellow]Expired:[/yellow] {len(result.expired)}")


if __name__ == "__main__":
    app()
