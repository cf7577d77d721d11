from django.core.management.base import BaseCommand
from django.db.models import Count
from rides.models import ContentItem
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Delete content items left behind by deleted ride plans."

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]

        orphans = ContentItem.objects.orphaned()
        per_ride = orphans.values("ride_id").annotate(items=Count("id")).order_by("ride_id")
        items_count = sum(row["items"] for row in per_ride)

        if dry_run:
            for row in per_ride:
                self.stdout.write(f"  ride {row['ride_id']}: {row['items']} item(s)")
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {items_count} orphaned content items from {len(per_ride)} deleted rides."
                )
            )
        else:
            orphans.delete()
            logger.info(f"Purged {items_count} orphaned content items")
            self.stdout.write(
                self.style.SUCCESS(
                    f"Deleted {items_count} orphaned content items from {len(per_ride)} deleted rides."
                )
            )
