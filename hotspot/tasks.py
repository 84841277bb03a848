"""
Scheduled jobs for the WifiGate hotspot (run by django-crontab, see CRONJOBS)
"""

import logging

from django.utils import timezone

from .activation import end_session
from .pending import get_pending_store

logger = logging.getLogger(__name__)


def expire_sessions():
    """
    End active sessions whose end_time has passed.

    Router access is revoked for each one; a failed revoke is counted but
    the session is still closed locally. Returns a summary dict.
    """
    from .models import Session

    now = timezone.now()
    expired = Session.objects.select_related("package").filter(
        active=True, end_time__isnull=False, end_time__lte=now
    )

    ended = 0
    revoke_failed = 0
    failed = 0
    for session in expired:
        try:
            result = end_session(session, "expired", actor="scheduler")
            ended += 1
            if not result["success"]:
                revoke_failed += 1
        except Exception as e:
            failed += 1
            logger.error(f"Error expiring session {session.pk}: {e}")

    if ended or failed:
        logger.info(
            f"Expired {ended} session(s), {revoke_failed} revoke failure(s), "
            f"{failed} error(s)"
        )

    return {
        "success": failed == 0,
        "expired": ended,
        "revoke_failed": revoke_failed,
        "failed": failed,
    }


def sweep_pending_activations():
    """Drop expired pending activations from stores that need an explicit sweep"""
    removed = get_pending_store().sweep()
    return {"success": True, "removed": removed}
