"""
Maintenance commands registered on ``flask``:

    flask import-wxr export.xml --dry-run --status publish --status draft
    flask cleanup-uploads --hours 24
    flask purge --kind comment --older-than-days 30 --execute
    flask seed-config
"""

import os

import click

from narravo.services.config_service import get_config_service
from narravo.services.data_operations import purge_soft_deleted, DataOperationError, PURGE_KINDS
from narravo.services.storage_service import cleanup_temporary_uploads
from narravo.services.wxr_import_service import create_job, import_wxr
from narravo.utils.constants import TEMPORARY_UPLOAD_MAX_AGE_HOURS


def register_commands(app):

    @app.cli.command('import-wxr')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    @click.option('--dry-run', is_flag=True, help='Parse and count without writing.')
    @click.option('--status', 'statuses', multiple=True, default=('publish',), show_default=True,
                  help='WordPress statuses to import; repeat for several.')
    def import_wxr_command(path, dry_run, statuses):
        """Import a WordPress WXR export."""
        job = None if dry_run else create_job(os.path.basename(path),
                                              {'dry_run': dry_run, 'statuses': list(statuses)})
        summary = import_wxr(path, dry_run=dry_run, allowed_statuses=tuple(statuses), job=job)

        click.echo(f"Items:       {summary['total_items']}")
        click.echo(f"Posts:       {summary['posts_imported']}")
        click.echo(f"Attachments: {summary['attachments_processed']}")
        click.echo(f"Redirects:   {summary['redirects_created']}")
        click.echo(f"Skipped:     {summary['skipped']}")
        for error in summary['errors']:
            click.secho(f"  {error['item']}: {error['error']}", fg='red')
        if summary['errors']:
            click.secho(f"{len(summary['errors'])} item(s) failed", fg='yellow')
        if dry_run:
            click.secho('Dry run, nothing was written.', fg='cyan')

    @app.cli.command('cleanup-uploads')
    @click.option('--hours', default=TEMPORARY_UPLOAD_MAX_AGE_HOURS, show_default=True, type=int,
                  help='Only uploads older than this many hours.')
    @click.option('--dry-run', is_flag=True)
    def cleanup_uploads_command(hours, dry_run):
        """Delete temporary uploads nothing references."""
        result = cleanup_temporary_uploads(older_than_hours=hours, dry_run=dry_run)
        if dry_run:
            click.echo(f"{result['candidates']} upload(s) would be deleted")
            for key in result['keys']:
                click.echo(f"  {key}")
            return
        click.echo(f"Deleted {result['deleted']} of {result['candidates']} upload(s)")
        if result['failed']:
            click.secho(f"{result['failed']} could not be removed from storage", fg='red')

    @app.cli.command('purge')
    @click.option('--kind', type=click.Choice(PURGE_KINDS), default='post', show_default=True)
    @click.option('--older-than-days', type=int, default=None)
    @click.option('--id', 'ids', type=int, multiple=True, help='Restrict to these ids.')
    @click.option('--dry-run/--execute', default=True, show_default=True)
    def purge_command(kind, older_than_days, ids, dry_run):
        """Hard-delete soft-deleted posts or comments."""
        if older_than_days is None and not ids:
            raise click.UsageError('Pass --older-than-days or at least one --id')
        try:
            result = purge_soft_deleted(kind=kind, older_than_days=older_than_days,
                                        ids=list(ids) or None, dry_run=dry_run)
        except DataOperationError as e:
            raise click.ClickException(str(e))
        verb = 'would be purged' if dry_run else 'purged'
        click.echo(f"{result['count']} {kind}(s) {verb}")

    @app.cli.command('seed-config')
    @click.option('--overwrite', is_flag=True, help='Reset existing keys to their defaults.')
    def seed_config_command(overwrite):
        """Write the default configuration rows."""
        written = get_config_service().seed_defaults(overwrite=overwrite)
        click.echo(f"Seeded {written} configuration key(s)")
