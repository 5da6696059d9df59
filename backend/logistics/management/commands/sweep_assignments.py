from django.core.management.base import BaseCommand

from logistics.services import get_engine


class Command(BaseCommand):
    help = "Take back timed out delivery offers and re-offer them; optionally retry order status write-backs."

    def add_arguments(self, parser):
        parser.add_argument(
            '--dispatch-queued',
            action='store_true',
            help="Also try to offer every queued assignment to a free courier.",
        )

    def handle(self, *args, **options):
        engine = get_engine()

        summary = engine.sweep()
        self.stdout.write(
            f"processed={summary.processed} reassigned={summary.reassigned} "
            f"requeued={summary.requeued} skipped={summary.skipped} failed={summary.failed}"
        )

        if options['dispatch_queued']:
            results = engine.dispatcher.dispatch_queued()
            offered = [a for a in results if a.status.value == "offered"]
            self.stdout.write(f"offered {len(offered)} of {len(results)} queued assignments")

        resolved = engine.reconciliation.retry(engine.orders)
        if resolved:
            self.stdout.write(f"reconciled {resolved} order statuses")

        self.stdout.write(self.style.SUCCESS("Sweep complete"))
