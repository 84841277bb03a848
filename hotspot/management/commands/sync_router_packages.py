"""
Push active packages to routers as hotspot user profiles
Run with: python manage.py sync_router_packages [--router-id ID]
"""
from django.core.management.base import BaseCommand, CommandError

from hotspot.models import Router
from hotspot.sync import sync_packages


class Command(BaseCommand):
    help = "Synchronize active packages to router hotspot user profiles"

    def add_arguments(self, parser):
        parser.add_argument(
            "--router-id",
            type=int,
            help="Only sync this router (default: every active router)",
        )

    def handle(self, *args, **options):
        routers = Router.objects.filter(is_active=True)
        if options.get("router_id"):
            routers = Router.objects.filter(pk=options["router_id"])
            if not routers.exists():
                raise CommandError(f"Router {options['router_id']} not found")

        failures = 0
        for router in routers:
            self.stdout.write(f"\nSyncing {router.name} ({router.host})...")
            result = sync_packages(router.pk, actor="manage.py")

            if result.success:
                self.stdout.write(
                    self.style.SUCCESS(f"✓ {result.synced_count} package(s) synced")
                )
            else:
                failures += 1
                self.stdout.write(
                    self.style.ERROR(
                        f"✗ Sync failed ({result.synced_count} synced): "
                        f"{'; '.join(result.errors)}"
                    )
                )

            if result.orphaned_profiles:
                self.stdout.write(
                    self.style.WARNING(
                        f"⚠ Orphaned profiles: {', '.join(result.orphaned_profiles)}"
                    )
                )

        if failures:
            raise CommandError(f"{failures} router(s) failed to sync")
