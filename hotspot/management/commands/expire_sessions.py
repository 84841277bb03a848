"""
Django management command to end expired hotspot sessions
Run with: python manage.py expire_sessions
"""
from django.core.management.base import BaseCommand

from hotspot.tasks import expire_sessions, sweep_pending_activations


class Command(BaseCommand):
    help = "End sessions whose package time has run out and revoke router access"

    def add_arguments(self, parser):
        parser.add_argument(
            "--sweep-pending",
            action="store_true",
            help="Also drop expired pending activations",
        )

    def handle(self, *args, **options):
        self.stdout.write("Checking for expired sessions...")

        result = expire_sessions()

        self.stdout.write(
            self.style.SUCCESS(f"✓ Ended {result['expired']} expired session(s)")
        )
        if result["revoke_failed"]:
            self.stdout.write(
                self.style.WARNING(
                    f"⚠ Router revoke failed for {result['revoke_failed']} session(s)"
                )
            )
        if result["failed"]:
            self.stdout.write(
                self.style.ERROR(f"✗ Failed to process {result['failed']} session(s)")
            )

        if options["sweep_pending"]:
            sweep = sweep_pending_activations()
            self.stdout.write(
                self.style.SUCCESS(
                    f"✓ Removed {sweep['removed']} expired pending activation(s)"
                )
            )
