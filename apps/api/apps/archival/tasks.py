"""
Celery tasks for archival tiering.
"""
from asgiref.sync import async_to_sync
from celery import shared_task

from apps.core.observability import get_sanitized_logger
from apps.core.observability.correlation import correlation_context

logger = get_sanitized_logger(__name__)

ARCHIVAL_ACTOR = 'system:archival'


def run_archival_sweep(dry_run=False, page_size=None):
    """Run one sweep synchronously and return its summary dict."""
    from apps.core.wiring import build_services

    policy = build_services(page_size=page_size).archival_policy
    result = async_to_sync(policy.run_sweep)(dry_run=dry_run)
    return result.to_dict()


@shared_task(name='apps.archival.tasks.archive_old_procedures')
def archive_old_procedures(dry_run=False, page_size=None):
    """
    Scheduled sweep moving procedures past the retention window to cold storage.

    Args:
        dry_run: List candidates without migrating anything
        page_size: Override ARCHIVAL_PAGE_SIZE for this run
    """
    with correlation_context(actor_id=ARCHIVAL_ACTOR) as request_id:
        logger.info('Archival sweep started', extra={'dry_run': dry_run, 'task_request_id': request_id})
        summary = run_archival_sweep(dry_run=dry_run, page_size=page_size)
        if summary['failed']:
            logger.warning(
                'Archival sweep left procedures for retry',
                extra={'failed_count': summary['failed']}
            )
        return summary
