import os
import json
import click

from flask import Flask

from config import Config
from extensions import init_extensions
from routes import register_blueprints
from services import decisions, migration_store, orchestrator, reference_data, track_repair
from services.checkpoint import CheckpointError
from services.manifest import ManifestError


CLI_ERRORS = (
    orchestrator.InvalidTransition,
    orchestrator.MigrationNotFound,
    decisions.DecisionError,
    ManifestError,
    CheckpointError,
)


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)

    init_extensions(app)
    register_blueprints(app)

    # Comandos CLI
    register_cli(app)

    os.makedirs(Config.UPLOAD_DIR, exist_ok=True)

    return app


def _echo_json(data, output_path=None):
    payload = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if output_path:
        with open(output_path, "w", encoding="utf-8") as fh:
            fh.write(payload)
        click.echo(f"Informe escrito en {output_path}")
    else:
        click.echo(payload)


def register_cli(app):
    @app.cli.group("migration")
    def migration_cli():
        """Pipeline de migración del archivo histórico."""

    @migration_cli.command("create")
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--title", default=None, help="Título de la migración")
    @click.option("--created-by", default=None)
    def create(csv_path, title, created_by):
        try:
            migration_id = orchestrator.create_migration(
                csv_path, title=title, created_by=created_by
            )
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        click.echo(migration_id)

    @migration_cli.command("analyze")
    @click.argument("migration_id")
    @click.option("--enqueue", is_flag=True, help="Encolar en RQ en vez de analizar aquí")
    def analyze(migration_id, enqueue):
        try:
            if enqueue:
                job = orchestrator.enqueue_analysis(migration_id)
                click.echo(f"Análisis en cola: {job.id}")
                return
            report = orchestrator.analyze_migration(migration_id)
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        _echo_json({
            "status": migration_store.get_status(migration_id),
            "summary": report.get("summary", {}),
            "issueCounts": report.get("issueCounts", {}),
        })

    @migration_cli.command("decide")
    @click.argument("migration_id")
    @click.argument("catalog_id", type=int)
    @click.argument("action", type=click.Choice(["include", "ignore", "rename", "review"]))
    @click.option("--new-filename", default=None)
    @click.option("--category", "target_category", default=None)
    @click.option("--target-key", default=None)
    @click.option("--notes", default=None)
    @click.option("--by", "decided_by", default=None)
    def decide(migration_id, catalog_id, action, new_filename, target_category,
               target_key, notes, decided_by):
        item = {
            "catalog_id": catalog_id,
            "action": action,
            "new_filename": new_filename,
            "target_category": target_category,
            "target_key": target_key,
            "notes": notes,
        }
        try:
            _ids, status = orchestrator.record_decisions(
                migration_id, [item], decided_by=decided_by
            )
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        click.echo(f"Decisión registrada; estado {status}")

    @migration_cli.command("approve")
    @click.argument("migration_id")
    @click.option("--by", "approved_by", required=True)
    def approve(migration_id, approved_by):
        try:
            orchestrator.approve(migration_id, approved_by=approved_by)
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        click.echo("Migración aprobada")

    @migration_cli.command("execute")
    @click.argument("migration_id")
    @click.option("--resume", type=click.Path(exists=True, dir_okay=False), default=None,
                  help="Checkpoint de una ejecución previa")
    @click.option("--checkpoint", "checkpoint_path", type=click.Path(dir_okay=False), default=None,
                  help="Archivo donde guardar el checkpoint")
    @click.option("--limit", type=int, default=None)
    @click.option("--skip", type=int, default=0)
    @click.option("--dry-run", is_flag=True)
    @click.option("--enqueue", is_flag=True, help="Encolar en RQ en vez de ejecutar aquí")
    def execute(migration_id, resume, checkpoint_path, limit, skip, dry_run, enqueue):
        from services.jobs.execute_migration import run_execution

        try:
            if enqueue:
                job = orchestrator.start_execution(migration_id)
                click.echo(f"Ejecución en cola: {job.id}")
                return
            summary = run_execution(
                migration_id,
                checkpoint_path=checkpoint_path,
                resume=resume,
                limit=limit,
                skip=skip,
                dry_run=dry_run
            )
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        _echo_json(summary.to_dict())

    @migration_cli.command("cancel")
    @click.argument("migration_id")
    def cancel(migration_id):
        try:
            orchestrator.cancel(migration_id)
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        click.echo("Migración cancelada")

    @migration_cli.command("status")
    @click.argument("migration_id")
    def status(migration_id):
        data = migration_store.get_migration_dict(migration_id, include_analysis=False)
        if not data:
            raise click.ClickException("Migración no encontrada")
        data["unresolved"] = decisions.count_unresolved(migration_id)
        _echo_json(data)

    @migration_cli.command("validate")
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--output", "output_path", type=click.Path(dir_okay=False), default=None)
    @click.option("--limit", type=int, default=None)
    @click.option("--skip", type=int, default=0)
    @click.option("--workers", type=int, default=None)
    def validate(csv_path, output_path, limit, skip, workers):
        """Validación en seco del CSV contra S3 (solo lecturas)."""
        from services.validation import validate_manifest

        try:
            report = validate_manifest(csv_path, limit=limit, skip=skip, workers=workers)
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        _echo_json(report, output_path)

    @migration_cli.command("repair-tracks")
    @click.argument("migration_id")
    @click.option("--apply", "apply_changes", is_flag=True, help="Registrar las reparaciones")
    @click.option("--by", "decided_by", default=None)
    def repair_tracks(migration_id, apply_changes, decided_by):
        try:
            repairs = track_repair.plan_track_repairs(migration_id)
            if apply_changes:
                applied = track_repair.apply_track_repairs(
                    migration_id, repairs, decided_by=decided_by
                )
                click.echo(f"{applied} reparaciones aplicadas")
                return
        except CLI_ERRORS as exc:
            raise click.ClickException(str(exc))
        _echo_json([
            {key: value for key, value in repair.items() if key != "decision"}
            for repair in repairs
        ])

    @app.cli.group("reference")
    def reference_cli():
        """Datos de referencia (profesores, lugares, tipos, audiencias)."""

    @reference_cli.command("seed")
    @click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
    def seed(json_path):
        try:
            result = reference_data.seed_from_file(json_path)
        except ValueError as exc:
            raise click.ClickException(f"JSON inválido: {exc}")
        click.echo(f"{result['created']} creadas, {result['updated']} actualizadas")

app = create_app()


if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=8000)
