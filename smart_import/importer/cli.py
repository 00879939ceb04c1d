"""
``flask importer`` commands for driving import sessions from the shell.

Every command loads the Flask app through ``ScriptInfo`` and reports engine
errors as ``click.ClickException`` so operators get a one-line message rather
than a traceback.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo
from sqlalchemy.exc import NoResultFound

from smart_import.importer.catalog import (
    CatalogLoadError,
    get_catalog_directory,
    load_catalog_directory,
    load_catalog_file,
    seed_catalog,
)
from smart_import.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from smart_import.importer.errors import ImportEngineError
from smart_import.importer.pipeline import AuditFilters, ImportSessionService, SessionFilters
from smart_import.models.importer import ImportSession
from smart_import.utils.importer import is_importer_enabled


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """Import session management commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def get_disabled_importer_group() -> click.Group:
    """Return a stand-in group that tells the operator the importer is disabled."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _service() -> ImportSessionService:
    return ImportSessionService()


def _run(operation, *args, **kwargs):
    try:
        return operation(*args, **kwargs)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    except (ImportEngineError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _emit_session(import_session: ImportSession, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(import_session.to_dict(), indent=2, sort_keys=True, default=str))
        return
    click.echo(f"Session {import_session.id} [{import_session.domain}] status={import_session.status.value}")
    if import_session.message:
        click.echo(f"  {import_session.message}")


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true before running worker commands."
        )
    return celery_app


json_option = click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a text summary.")


@importer_cli.command("seed-catalog")
@click.argument("path", required=False, type=click.Path(exists=True, path_type=Path))
@click.pass_context
def seed_catalog_command(ctx, path: Optional[Path]):
    """Load schema definitions and validation rules from YAML catalog files."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    try:
        if path is None:
            specs = load_catalog_directory(get_catalog_directory(app))
        elif path.is_dir():
            specs = load_catalog_directory(path)
        else:
            specs = [load_catalog_file(path)]
    except CatalogLoadError as exc:
        raise click.ClickException(str(exc)) from exc

    summary = seed_catalog(specs)
    app.logger.info("Import catalog seeded", extra={"import_catalog_summary": summary.as_dict()})
    click.echo(json.dumps(summary.as_dict(), sort_keys=True))


@importer_cli.command("upload")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--org", "organization_id", required=True, type=int, help="Owning organization id.")
@click.option("--user", "user_id", type=int, help="Uploading user id.")
@click.option("--domain", help="Target domain; auto-detected from headers when omitted.")
@json_option
def upload_command(file_path: Path, organization_id: int, user_id: Optional[int], domain: Optional[str], as_json):
    """Create an import session from a CSV, XLSX or JSON file."""
    content = file_path.read_bytes()
    import_session = _run(
        _service().create_session,
        organization_id=organization_id,
        file_name=file_path.name,
        content=content,
        file_size=len(content),
        domain=domain,
        uploaded_by=user_id,
        file_url=str(file_path.resolve()),
    )
    _emit_session(import_session, as_json)


@importer_cli.command("classify")
@click.argument("session_id", type=int)
@click.option("--domain", help="Override the detected domain.")
@click.option("--mapping", help='Manual column mapping as JSON, e.g. {"Header": "field"}.')
@json_option
def classify_command(session_id: int, domain: Optional[str], mapping: Optional[str], as_json):
    """Map file columns onto the domain schema."""
    manual_mapping: dict[str, str] | None = None
    if mapping:
        try:
            manual_mapping = json.loads(mapping)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"--mapping is not valid JSON: {exc}") from exc
        if not isinstance(manual_mapping, dict):
            raise click.ClickException("--mapping must be a JSON object of header -> field.")
    import_session = _run(
        _service().classify_session, session_id, override_domain=domain, manual_mapping=manual_mapping
    )
    _emit_session(import_session, as_json)


@importer_cli.command("remap")
@click.argument("session_id", type=int)
@click.option("--mapping", required=True, help="Column mapping as a JSON object of header -> field.")
@json_option
def remap_command(session_id: int, mapping: str, as_json):
    """Replace the column mapping of a classified session."""
    try:
        column_mapping = json.loads(mapping)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"--mapping is not valid JSON: {exc}") from exc
    if not isinstance(column_mapping, dict):
        raise click.ClickException("--mapping must be a JSON object of header -> field.")
    _emit_session(_run(_service().remap_session, session_id, column_mapping), as_json)


@importer_cli.command("validate")
@click.argument("session_id", type=int)
@json_option
def validate_command(session_id: int, as_json):
    """Run the domain's validation rules over the sampled rows."""
    _emit_session(_run(_service().validate_session, session_id), as_json)


@importer_cli.command("submit")
@click.argument("session_id", type=int)
@json_option
def submit_command(session_id: int, as_json):
    """Submit a validated session for approval (auto-approves when eligible)."""
    _emit_session(_run(_service().submit_for_approval, session_id), as_json)


@importer_cli.command("approve")
@click.argument("session_id", type=int)
@click.option("--user", "user_id", required=True, type=int, help="Approving user id.")
@click.option("--no-execute", is_flag=True, help="Approve without starting execution.")
@json_option
def approve_command(session_id: int, user_id: int, no_execute: bool, as_json):
    """Approve a session awaiting review."""
    import_session = _run(
        _service().approve_session, session_id, approver_id=user_id, auto_execute=not no_execute
    )
    _emit_session(import_session, as_json)


@importer_cli.command("reject")
@click.argument("session_id", type=int)
@click.option("--user", "user_id", required=True, type=int, help="Rejecting user id.")
@click.option("--reason", required=True, help="Reason shown on the session.")
@json_option
def reject_command(session_id: int, user_id: int, reason: str, as_json):
    """Reject a session awaiting review."""
    _emit_session(_run(_service().reject_session, session_id, approver_id=user_id, reason=reason), as_json)


@importer_cli.command("execute")
@click.argument("session_id", type=int)
@click.option("--user", "user_id", type=int, help="Executing user id recorded on audit entries.")
@click.option("--async", "run_async", is_flag=True, help="Queue execution on the import worker.")
@json_option
@click.pass_context
def execute_command(ctx, session_id: int, user_id: Optional[int], run_async: bool, as_json):
    """Execute an approved session."""
    if not run_async:
        _emit_session(_run(_service().execute_session, session_id, executed_by=user_id), as_json)
        return

    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    _run(_service().get_session, session_id)
    try:
        async_result = celery_app.send_task(
            "importer.sessions.execute",
            kwargs={"session_id": session_id, "executed_by": user_id},
        )
    except Exception as exc:
        raise click.ClickException(f"Failed to enqueue import session {session_id}: {exc}") from exc
    app.logger.info(
        "Import session execution queued via CLI",
        extra={"import_session_id": session_id, "import_task_id": async_result.id},
    )
    click.echo(json.dumps({"session_id": session_id, "task_id": async_result.id, "status": "queued"}))


@importer_cli.command("cancel")
@click.argument("session_id", type=int)
@click.option("--reason", help="Optional cancellation note.")
@json_option
def cancel_command(session_id: int, reason: Optional[str], as_json):
    """Cancel a session that has not started executing."""
    _emit_session(_run(_service().cancel_session, session_id, reason=reason), as_json)


@importer_cli.command("show")
@click.argument("session_id", type=int)
@json_option
def show_command(session_id: int, as_json):
    """Show one session."""
    _emit_session(_run(_service().get_session, session_id), as_json)


@importer_cli.command("sessions")
@click.option("--org", "organization_id", type=int, help="Restrict to one organization.")
@click.option("--status", "statuses", multiple=True, help="Filter by status (repeatable).")
@click.option("--domain", "domains", multiple=True, help="Filter by domain (repeatable).")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", type=int)
@json_option
def sessions_command(organization_id, statuses, domains, page, page_size, as_json):
    """List import sessions, newest first."""
    filters = _run(SessionFilters.coerce, page=page, page_size=page_size, statuses=statuses, domains=domains)
    result = _service().list_sessions(filters, organization_id=organization_id)
    if as_json:
        click.echo(json.dumps(_page_payload(result, ImportSession.to_dict), indent=2, sort_keys=True, default=str))
        return
    click.echo(f"{result.total} session(s), page {result.page}/{max(result.total_pages, 1)}")
    for item in result.items:
        click.echo(f"  {item.id:>6}  {item.domain:<14} {item.status.value:<22} {item.file_name}")


@importer_cli.command("audit")
@click.argument("session_id", type=int)
@click.option("--action", "action_types", multiple=True, help="Filter by action type (repeatable).")
@click.option("--success/--failed", default=None, help="Filter by outcome.")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", type=int)
@json_option
def audit_command(session_id, action_types, success, page, page_size, as_json):
    """Show the audit ledger of one session in file-row order."""
    filters = _run(AuditFilters.coerce, page=page, page_size=page_size, action_types=action_types, success=success)
    result = _run(_service().get_audit_log, session_id, filters)
    if as_json:
        click.echo(json.dumps(_page_payload(result, lambda entry: entry.to_dict()), indent=2, default=str))
        return
    click.echo(f"{result.total} audit entr{'y' if result.total == 1 else 'ies'}")
    for entry in result.items:
        outcome = "ok" if entry.success else f"error: {entry.error_message}"
        click.echo(f"  row {entry.row_number:>5}  {entry.action_type.value:<7} {entry.table_name}  {outcome}")


@importer_cli.command("schemas")
@click.option("--domain", help="Restrict to one domain.")
def schemas_command(domain: Optional[str]):
    """List schema definitions."""
    definitions = _run(_service().get_schema_definitions, domain)
    if not definitions:
        click.echo("No schema definitions found.")
        return
    for definition in definitions:
        state = "active" if definition.is_active else "inactive"
        click.echo(
            f"  {definition.domain:<14} {definition.table_name:<20} v{definition.version} "
            f"({len(definition.field_definitions or [])} fields, {state})"
        )


@importer_cli.command("rules")
@click.option("--domain", help="Restrict to one domain.")
def rules_command(domain: Optional[str]):
    """List validation rules in evaluation order."""
    rules = _run(_service().get_validation_rules, domain)
    if not rules:
        click.echo("No validation rules found.")
        return
    for rule in rules:
        click.echo(
            f"  {rule.domain:<14} {rule.priority:>4}  {rule.rule_name:<32} "
            f"{rule.rule_type.value:<11} {rule.field_name} [{rule.severity.value}]"
        )


def _page_payload(result, serialize) -> dict[str, Any]:
    return {
        "items": [serialize(item) for item in result.items],
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages,
    }


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the import worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Approvals will still execute inline.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    celery_app = _resolve_celery(info.load_app())

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting import worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Run the heartbeat task and print the worker's reply."""
    info = ctx.ensure_object(ScriptInfo)
    celery_app = _resolve_celery(info.load_app())
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))
