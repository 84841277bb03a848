"""
Package synchronizer: reconcile a router's hotspot user profiles with the
active billing packages
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.utils import timezone
from routeros_api.exceptions import RouterOsApiError

from . import audit
from .exceptions import RouterError
from .mikrotik import (
    HOTSPOT_PROFILE_PATH,
    AccessProfile,
    error_detail,
    get_router,
    get_router_api,
    list_profiles_with_api,
    safe_close,
    upsert_profile_with_api,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: bool
    synced_count: int = 0
    errors: list = field(default_factory=list)
    orphaned_profiles: list = field(default_factory=list)

    def to_dict(self):
        return {
            "success": self.success,
            "synced_count": self.synced_count,
            "errors": list(self.errors),
            "orphaned_profiles": list(self.orphaned_profiles),
        }


def _save_sync_status(router_id, result: SyncResult):
    from .models import RouterSyncStatus

    RouterSyncStatus.objects.update_or_create(
        router_id=router_id,
        defaults={
            "sync_status": "success" if result.success else "failed",
            "last_sync_at": timezone.now(),
            "packages_synced": result.synced_count,
            "sync_errors": list(result.errors),
        },
    )


def find_orphaned_profiles(profile_names, active_profile_names):
    """
    Managed profiles on the router with no active package behind them.
    Only names carrying the package prefix are considered.
    """
    prefix = settings.ROUTER_PROFILE_PREFIX
    return sorted(
        name
        for name in profile_names
        if name and name.startswith(prefix) and name not in active_profile_names
    )


def sync_packages(router_id, actor="system") -> SyncResult:
    """
    Push every active package to the router as a hotspot user profile.

    One connection serves the whole batch. A failure on one package is
    recorded and the rest continue; any failure marks the run ``failed``.
    Orphaned profiles are reported, never removed.
    """
    from .models import Package, Router

    stopwatch = audit.Stopwatch()
    result = SyncResult(success=False)
    pool = None

    try:
        router = get_router(router_id)
        pool, api = get_router_api(router)
        existing = list_profiles_with_api(api)

        packages = list(Package.objects.filter(is_active=True).order_by("pk"))
        for package in packages:
            profile = AccessProfile.from_package(package)
            try:
                upsert_profile_with_api(api, profile, existing=existing)
                result.synced_count += 1
            except (RouterOsApiError, OSError) as e:
                logger.error(
                    f"Failed to sync package {package.pk} ({package.name}) "
                    f"to router {router_id}: {e}"
                )
                result.errors.append(f"{package.name}: {e}")

        result.orphaned_profiles = find_orphaned_profiles(
            existing.keys(), {p.profile_name for p in packages}
        )
        if result.orphaned_profiles:
            logger.warning(
                f"Router {router_id} has orphaned profiles: "
                f"{', '.join(result.orphaned_profiles)}"
            )
        result.success = not result.errors

    except (RouterError, RouterOsApiError, OSError) as e:
        logger.error(f"Package sync failed for router {router_id}: {e}")
        result.success = False
        result.errors.append(error_detail(e))
    finally:
        safe_close(pool)

    if Router.objects.filter(pk=router_id).exists():
        _save_sync_status(router_id, result)

    audit.record_router_operation(
        router_id,
        "sync_packages",
        f"{HOTSPOT_PROFILE_PATH}/set",
        success=result.success,
        actor=actor,
        parameters={
            "synced_count": result.synced_count,
            "orphaned_profiles": result.orphaned_profiles,
        },
        error_message="; ".join(result.errors),
        duration_ms=stopwatch.elapsed_ms,
    )

    logger.info(
        f"Package sync for router {router_id}: {result.synced_count} synced, "
        f"{len(result.errors)} error(s)"
    )
    return result
