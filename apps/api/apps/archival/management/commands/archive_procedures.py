"""
Management command to run one archival sweep synchronously.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.archival.tasks import ARCHIVAL_ACTOR, run_archival_sweep
from apps.core.observability.correlation import correlation_context


class Command(BaseCommand):
    help = 'Move procedures past the retention window to cold storage'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List candidate procedures without migrating anything',
        )
        parser.add_argument(
            '--page-size',
            type=int,
            default=None,
            help='Procedures per scan page (default: ARCHIVAL_PAGE_SIZE)',
        )

    def handle(self, *args, **options):
        page_size = options['page_size']
        if page_size is not None and page_size <= 0:
            raise CommandError('--page-size must be a positive integer')

        dry_run = options['dry_run']
        self.stdout.write(self.style.NOTICE(
            'Archival sweep (dry run)...' if dry_run else 'Archival sweep...'
        ))
        with correlation_context(actor_id=ARCHIVAL_ACTOR):
            summary = run_archival_sweep(dry_run=dry_run, page_size=page_size)

        if dry_run:
            self.stdout.write(self.style.SUCCESS(
                f"Candidates: {summary['processed']} (cutoff {summary['cutoff']})"
            ))
            for procedure_id in summary['candidates']:
                self.stdout.write(f'  {procedure_id}')
            return

        message = (
            f"Processed: {summary['processed']}, archived: {summary['archived']}, "
            f"failed: {summary['failed']}"
        )
        if summary['failed']:
            self.stdout.write(self.style.WARNING(message))
        else:
            self.stdout.write(self.style.SUCCESS(message))
