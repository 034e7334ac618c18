# Overview: Flask CLI command groups for bootstrap, catalog import, invoices and backups.

# backend/duka/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Apply the schema: python -m flask db upgrade
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: default admin (if no admin exists) and default categories.
# - python -m flask system seed
#   Same seeding, without the banner; safe to re-run.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --email cashier@duka.local --full-name "Jane" --password "Cashier123" --role cashier
#
# Catalog:
# - python -m flask catalog template > products.csv
# - python -m flask catalog import products.csv --dry-run
#   Validate only; prints row errors against spreadsheet row numbers.
# - python -m flask catalog import products.xlsx
#
# Invoices:
# - python -m flask invoices refresh-statuses
#   Mark sent invoices past their due date as overdue (e.g. from a daily cron).
#
# Backups:
# - python -m flask backup export backup.json
# - python -m flask backup restore backup.json --mode merge

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import VALID_ROLES
from .services.auth_service import AuthError, PasswordValidationError, create_user
from .services import backup_service, import_service, invoice_service
from .services.backup_service import BackupError
from .services.import_service import CatalogImportError
from .services.seed_service import ensure_seed_data


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the shop: default admin and default categories.

    SECURITY: Change the default admin password immediately in production!
    """
    click.echo("START Initializing duka...")
    result = ensure_seed_data()
    if result["admin"]:
        click.echo(f"PASS Created default admin: {result['admin']}")
    else:
        click.echo("PASS Admin account already exists")
    if result["categories"]:
        click.echo(f"PASS Created categories: {', '.join(result['categories'])}")
    else:
        click.echo("PASS Default categories already exist")
    click.echo("DONE System initialized")


@system_group.command('seed')
@with_appcontext
def seed_system():
    """Create any missing seed data (idempotent)."""
    result = ensure_seed_data()
    click.echo(f"PASS admin={'created' if result['admin'] else 'exists'} categories_created={len(result['categories'])}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, full_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    try:
        user = create_user(email=email, password=password, full_name=full_name, role=role)
        click.echo(f"PASS Created user: {user.email} with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, at least one letter and one digit")
    except AuthError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<32} {'Name':<25} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.full_name:<25} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@click.group('catalog')
def catalog_group():
    """Product catalog import commands."""


@catalog_group.command('template')
def catalog_template():
    """Print the product import CSV template."""
    click.echo(import_service.template_csv(), nl=False)


@catalog_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--dry-run', is_flag=True, help='Validate only; write nothing')
@click.option('--user-email', default=None, help='Record the import against this user')
@with_appcontext
def catalog_import(path, dry_run, user_email):
    """Validate and import products from a .csv, .json or .xlsx file."""
    try:
        with open(path, 'rb') as fh:
            rows = import_service.parse_upload(path, fh)
    except CatalogImportError as e:
        raise click.ClickException(str(e))

    report = import_service.validate_products(rows)
    click.echo(f"INFO {report.total_rows} rows, {len(report.records)} valid, {report.invalid_rows} invalid")
    for error in report.errors:
        click.echo(f"FAIL row {error.row}: {error.field}: {error.message}")
    if report.categories_to_create:
        click.echo(f"INFO New categories: {', '.join(report.categories_to_create)}")

    if dry_run:
        click.echo("DONE Dry run, nothing written")
        return

    user_id = None
    if user_email:
        user = db.session.query(User).filter_by(email=user_email.strip().lower()).first()
        if not user:
            raise click.ClickException(f"User {user_email} not found")
        user_id = user.id

    with click.progressbar(length=100, label="Importing") as bar:
        progress = {"last": 0}

        def on_progress(percent):
            bar.update(percent - progress["last"])
            progress["last"] = percent

        result = import_service.import_batch(
            report.records,
            created_by_user_id=user_id,
            source_file_name=path,
            total_rows=report.total_rows,
            invalid_rows=report.invalid_rows,
            on_progress=on_progress,
        )

    for failure in result.failures:
        click.echo(f"FAIL row {failure['row']}: {failure['message']}")
    status = "PASS" if result.ok else "FAIL"
    click.echo(f"{status} Imported {result.success_count}, failed {result.failed_count}")


@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('refresh-statuses')
@with_appcontext
def refresh_statuses_cli():
    """Apply the paid / overdue rules to every open invoice."""
    changed = invoice_service.refresh_statuses()
    click.echo(f"PASS {changed} invoice(s) updated")


@click.group('backup')
def backup_group():
    """JSON backup export / restore."""


@backup_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@with_appcontext
def backup_export(path):
    document = backup_service.export_backup()
    with open(path, 'w', encoding='utf-8') as fh:
        json.dump(document, fh, indent=2)
    counts = ", ".join(f"{key}={len(document[key])}" for key, _ in backup_service.COLLECTIONS)
    click.echo(f"PASS Backup written to {path} ({counts})")


@backup_group.command('restore')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--mode', type=click.Choice(list(backup_service.RESTORE_MODES)), prompt='Restore mode',
              help='replace: clear everything first; merge: append with new ids')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def backup_restore(path, mode, yes):
    if mode == backup_service.MODE_REPLACE and not yes:
        click.confirm("WARN replace deletes all current data. Continue?", abort=True)
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            document = json.load(fh)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Malformed backup file: {e.msg}")
    try:
        result = backup_service.restore_backup(document, mode=mode)
    except BackupError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Restored ({mode}): {result['restored']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(backup_group)
