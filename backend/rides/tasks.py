"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def purge_orphaned_content_task():
    """
    Delete content items whose ride plan no longer exists.

    Deleting a plan leaves its content in place; this task is the periodic
    sweep (schedule it with celery beat).
    """
    from rides.models import ContentItem

    deleted, _ = ContentItem.objects.orphaned().delete()
    if deleted:
        logger.info(f"Purged {deleted} orphaned content item(s)")
    return deleted
