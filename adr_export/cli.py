"""adr-export CLI."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date
from pathlib import Path

import typer

from adr_export.server.app import ExportService
from adr_export.server.errors import ExportJobValidationError
from adr_export.server.models import ExportFailure
from adr_export.server.naming import branch_name_for
from adr_export.server.orchestrator import utc_today
from adr_export.shared.logging_config import configure_logging
from adr_export.shared.settings import ExportSettings, load_export_settings

app = typer.Typer(add_completion=False, help="adr-export: publish approved ADRs to GitHub")


@app.command()
def check_config() -> None:
    """Print the redacted configuration and any missing variables."""
    settings = ExportSettings.from_env()
    missing = settings.missing_required()
    typer.echo(json.dumps({"settings": settings.redacted(), "missing": missing}, indent=2))
    if missing:
        raise typer.Exit(code=1)


@app.command()
def branch_name(
    title: str,
    on: str = typer.Option("", "--date", help="YYYY-MM-DD, defaults to today (UTC)"),
) -> None:
    """Print the branch an export of TITLE would use."""
    try:
        day = date.fromisoformat(on) if on else utc_today()
    except ValueError as exc:
        raise typer.BadParameter("--date must be YYYY-MM-DD") from exc
    typer.echo(branch_name_for(title, day))


@app.command()
def export(
    record_id: str = typer.Option(..., "--record-id"),
    file: Path = typer.Option(..., "--file", exists=True, dir_okay=False),
    title: str = typer.Option("", "--title"),
) -> None:
    """Publish one ADR markdown file and report the result to the database."""
    configure_logging(ExportSettings.from_env().log_level)
    service = ExportService(settings=load_export_settings())
    try:
        job = service.validate(
            {"record_id": record_id, "title": title or None, "document_body": file.read_text()}
        )
    except ExportJobValidationError as exc:
        typer.echo(json.dumps(exc.as_dict(), indent=2), err=True)
        raise typer.Exit(code=2) from exc

    outcome = service.run(job)
    typer.echo(
        json.dumps(
            {
                "record_id": job.record_id,
                "status": outcome.result.status,
                "result": asdict(outcome.result),
                "callback_delivered": outcome.delivery.delivered,
                "callback_attempts": len(outcome.delivery.attempts),
            },
            indent=2,
        )
    )
    if isinstance(outcome.result, ExportFailure):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
