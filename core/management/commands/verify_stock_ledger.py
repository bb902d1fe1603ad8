from django.core.management.base import BaseCommand, CommandError

from inventory.services import verify_ledger


class Command(BaseCommand):
    help = "Compare every stock record with the net quantity of its ledger entries."

    def add_arguments(self, parser):
        parser.add_argument(
            "--fail",
            action="store_true",
            help="Exit with an error when any record disagrees with the ledger.",
        )

    def handle(self, *args, **options):
        mismatches = verify_ledger()

        if not mismatches:
            self.stdout.write(self.style.SUCCESS("Stock matches the ledger for every record."))
            return

        for row in mismatches:
            self.stdout.write(
                f"code={row['code']} location={row['location'] or '-'} stock={row['stock']} ledger={row['ledger']} "
                f"diff={row['stock'] - row['ledger']}"
            )

        summary = f"{len(mismatches)} record(s) disagree with the ledger."
        if options["fail"]:
            raise CommandError(summary)
        self.stdout.write(self.style.WARNING(summary))
