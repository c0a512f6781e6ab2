import datetime

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from queues.models import DailyQueue
from queues.services import dispatcher, notifier


class Command(BaseCommand):
    help = "Close daily queues of past days; broadcast a board resync event."

    def add_arguments(self, parser):
        parser.add_argument('--before', help='Close queues dated before this day (YYYY-MM-DD); defaults to today.')
        parser.add_argument('--dry-run', action='store_true', help='List the queues without closing them.')

    def handle(self, *args, **options):
        now = timezone.now()
        before = timezone.localdate(now)
        if options.get('before'):
            try:
                before = datetime.date.fromisoformat(options['before'])
            except ValueError:
                raise CommandError(f"--before must be YYYY-MM-DD, got {options['before']!r}")

        queue_ids = list(
            DailyQueue.objects.filter(is_active=True, queue_date__lt=before)
            .order_by('queue_date')
            .values_list('id', flat=True)
        )
        if options.get('dry_run'):
            for qid in queue_ids:
                self.stdout.write(str(qid))
            self.stdout.write(f"{len(queue_ids)} queue(s) would be closed")
            return

        for qid in queue_ids:
            dispatcher.close_queue(qid, now=now)

        if queue_ids:
            notifier.publish_board_resync(now)

        self.stdout.write(self.style.SUCCESS(f"Closed {len(queue_ids)} queue(s) dated before {before}"))
