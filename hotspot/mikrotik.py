"""
MikroTik access-control gateway.

Talks to routers over the RouterOS API on the TLS port (8729 by default).
Every public operation opens its own connection, performs one logical
transaction, closes the connection on every exit path and writes exactly
one audit record. Failures come back as result dicts with a
vendor-agnostic ``message``; router error text only reaches the logs and
the audit trail.
"""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import InvalidToken
import routeros_api
from routeros_api.exceptions import RouterOsApiCommunicationError, RouterOsApiError
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from . import audit
from .credentials import decrypt_secret
from .exceptions import (
    RouterCommandError,
    RouterCredentialsInvalid,
    RouterCredentialsMissing,
    RouterError,
    RouterUnreachable,
)

logger = logging.getLogger(__name__)

UNLIMITED_SESSION_TIMEOUT = "0s"

HOTSPOT_USER_PATH = "/ip/hotspot/user"
HOTSPOT_ACTIVE_PATH = "/ip/hotspot/active"
HOTSPOT_PROFILE_PATH = "/ip/hotspot/user/profile"
IDENTITY_PATH = "/system/identity"


@dataclass(frozen=True)
class AccessProfile:
    """Router-side hotspot user profile derived from a billing package"""

    name: str
    session_timeout: str = UNLIMITED_SESSION_TIMEOUT
    rate_limit: str = ""
    shared_users: int = 1

    @classmethod
    def from_package(cls, package):
        if package.duration_minutes:
            session_timeout = str(package.duration_minutes * 60)
        else:
            session_timeout = UNLIMITED_SESSION_TIMEOUT
        return cls(
            name=package.profile_name,
            session_timeout=session_timeout,
            rate_limit=package.rate_limit or "",
            shared_users=getattr(settings, "ROUTER_PROFILE_SHARED_USERS", 1),
        )

    def to_router_params(self):
        return {
            "name": self.name,
            "session-timeout": self.session_timeout,
            "shared-users": str(self.shared_users),
            "rate-limit": self.rate_limit,
        }


def _item_id(item):
    return item.get(".id") or item.get("id")


def safe_close(pool):
    """Safely close a RouterOS connection pool if present."""
    try:
        if pool:
            pool.disconnect()
    except Exception:
        pass


def get_router(router_id):
    from .models import Router

    try:
        return Router.objects.select_related("credential").get(pk=router_id)
    except Router.DoesNotExist:
        raise RouterError(f"Router {router_id} not found")


def get_router_api(router, retries: Optional[int] = None):
    """
    Open an authenticated RouterOS API connection for ``router``.
    Returns ``(pool, api)``; the caller must call safe_close(pool) in a
    finally block.

    The stored secret is decrypted here and nowhere else.
    """
    credential = getattr(router, "credential", None)
    if credential is None:
        raise RouterCredentialsMissing(
            f"Router {router.name} has no control-plane credentials"
        )

    try:
        password = decrypt_secret(credential.api_password_encrypted)
    except (InvalidToken, ImproperlyConfigured) as e:
        raise RouterCredentialsInvalid(
            f"Router {router.name} credentials cannot be decrypted"
        ) from e

    retries = retries or int(getattr(settings, "ROUTER_API_RETRIES", 1))
    port = credential.api_port or settings.ROUTER_API_DEFAULT_PORT
    timeout = credential.connection_timeout or settings.ROUTER_API_TIMEOUT

    # Set socket timeout for the connection
    original_timeout = socket.getdefaulttimeout()
    socket.setdefaulttimeout(timeout)

    last_error = None
    try:
        for attempt in range(retries):
            pool = routeros_api.RouterOsApiPool(
                router.host,
                username=credential.api_username,
                password=password,
                port=port,
                use_ssl=credential.use_ssl,
                ssl_verify=getattr(settings, "ROUTER_API_SSL_VERIFY", False),
                plaintext_login=True,
            )
            try:
                api = pool.get_api()
                logger.debug(
                    f"RouterOS API connected to {router.host}:{port} on attempt {attempt + 1}"
                )
                return pool, api
            except RouterOsApiCommunicationError as e:
                # The router answered and refused the login: retrying won't help
                safe_close(pool)
                logger.error(f"Router {router.name} rejected API login: {e}")
                raise RouterCommandError("Router rejected the API login") from e
            except (RouterOsApiError, OSError) as e:
                safe_close(pool)
                last_error = e
                logger.warning(
                    f"Router connection attempt {attempt + 1}/{retries} to "
                    f"{router.host}:{port} failed: {e}"
                )
                if attempt < retries - 1:
                    time.sleep(1)
    finally:
        socket.setdefaulttimeout(original_timeout)

    logger.error(f"Failed to connect to router {router.host}:{port}: {last_error}")
    raise RouterUnreachable(f"Cannot connect to router {router.name}") from last_error


def _public_message(error):
    """Vendor-agnostic message for a failure"""
    if isinstance(error, RouterError):
        return error.message
    return RouterCommandError.default_message


def error_detail(error):
    """Full error text for logs and the audit trail, including the cause"""
    if error.__cause__ is not None:
        return f"{error}: {error.__cause__}"
    return str(error)


def _run_router_operation(
    router_id, operation, command, actor, parameters, action, on_failure=None
):
    """
    Connect, run ``action(api, router)``, close, audit.

    ``action`` returns the success result dict. Any router or transport
    error is turned into ``{"success": False, "message": ...}``.
    """
    stopwatch = audit.Stopwatch()
    pool = None
    router = None
    try:
        router = get_router(router_id)
        pool, api = get_router_api(router)
        result = action(api, router)
        result.setdefault("success", True)
        audit.record_router_operation(
            router_id,
            operation,
            command,
            success=True,
            actor=actor,
            parameters=parameters,
            duration_ms=stopwatch.elapsed_ms,
        )
        return result
    except (RouterError, RouterOsApiError, OSError) as e:
        logger.error(f"{operation} failed on router {router_id}: {error_detail(e)}")
        audit.record_router_operation(
            router_id,
            operation,
            command,
            success=False,
            actor=actor,
            parameters=parameters,
            error_message=error_detail(e),
            duration_ms=stopwatch.elapsed_ms,
        )
        result = {"success": False, "message": _public_message(e)}
        if on_failure is not None and router is not None:
            on_failure(router, e)
        return result
    finally:
        safe_close(pool)


# =============================================================================
# HELPERS ON AN OPEN CONNECTION - shared with the package synchronizer
# =============================================================================


def list_profiles_with_api(api):
    """Return hotspot user profiles as {name: raw item}"""
    profiles = api.get_resource(HOTSPOT_PROFILE_PATH).get()
    return {p.get("name"): p for p in profiles if p.get("name")}


def upsert_profile_with_api(api, profile: AccessProfile, existing=None) -> bool:
    """
    Create or update a hotspot user profile by name.
    ``existing`` is an optional {name: item} map from list_profiles_with_api.
    Returns True when the profile was created.
    """
    resource = api.get_resource(HOTSPOT_PROFILE_PATH)
    params = profile.to_router_params()

    if existing is None:
        matches = resource.get(name=profile.name)
        current = matches[0] if matches else None
    else:
        current = existing.get(profile.name)

    if current is not None:
        resource.set(id=_item_id(current), **params)
        logger.info(f"Updated hotspot profile {profile.name}")
        return False

    resource.add(**params)
    logger.info(f"Created hotspot profile {profile.name}")
    return True


def grant_with_api(api, device_identifier, profile_name, comment="") -> bool:
    """
    Create or re-enable the hotspot user for a device.
    Returns True when a new user entry was created.
    """
    users = api.get_resource(HOTSPOT_USER_PATH)
    params = {
        "profile": profile_name,
        "mac-address": device_identifier,
        "disabled": "no",
        "comment": comment or "",
    }

    existing = [
        u for u in users.get() if (u.get("name") or "").upper() == device_identifier
    ]
    if existing:
        for item in existing:
            users.set(id=_item_id(item), **params)
        logger.info(f"Updated and re-enabled hotspot user {device_identifier}")
        return False

    users.add(name=device_identifier, **params)
    logger.info(f"Created hotspot user {device_identifier} ({profile_name})")
    return True


def revoke_with_api(api, device_identifier) -> int:
    """Kick every active session of a device and disable its hotspot user"""
    active = api.get_resource(HOTSPOT_ACTIVE_PATH)
    count = 0
    for session in active.get():
        session_mac = (session.get("mac-address") or "").upper()
        session_user = (session.get("user") or "").upper()
        if device_identifier in (session_mac, session_user):
            active.remove(id=_item_id(session))
            count += 1

    users = api.get_resource(HOTSPOT_USER_PATH)
    for user in users.get():
        if (user.get("name") or "").upper() == device_identifier:
            users.set(id=_item_id(user), disabled="yes")
            logger.info(f"Disabled hotspot user {device_identifier}")

    return count


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================


def test_connection(router_id, actor="system") -> dict:
    """
    Query the router identity and record its reachability.
    The router's status fields are updated whatever the outcome.
    """

    def action(api, router):
        identity_items = api.get_resource(IDENTITY_PATH).get()
        identity = identity_items[0].get("name", "") if identity_items else ""
        now = timezone.now()
        router.identity = identity
        router.status = "online"
        router.last_seen = now
        router.last_health_check = now
        router.last_error = ""
        router.save(
            update_fields=[
                "identity",
                "status",
                "last_seen",
                "last_health_check",
                "last_error",
                "updated_at",
            ]
        )
        return {"identity": identity, "message": "Connection successful"}

    def on_failure(router, error):
        router.status = "offline"
        router.last_health_check = timezone.now()
        router.last_error = error_detail(error)[:500]
        router.save(
            update_fields=["status", "last_health_check", "last_error", "updated_at"]
        )

    result = _run_router_operation(
        router_id,
        "test_connection",
        f"{IDENTITY_PATH}/print",
        actor,
        {},
        action,
        on_failure=on_failure,
    )
    result.setdefault("identity", None)
    return result


def grant_access(
    router_id, device_identifier, profile_name, actor="system", comment=""
) -> dict:
    """Idempotent create-or-reuse of a device's hotspot user"""

    def action(api, router):
        created = grant_with_api(api, device_identifier, profile_name, comment)
        return {
            "created": created,
            "message": f"Access granted to {device_identifier}",
        }

    return _run_router_operation(
        router_id,
        "grant_access",
        f"{HOTSPOT_USER_PATH}/add",
        actor,
        {"device": device_identifier, "profile": profile_name},
        action,
    )


def revoke_access(router_id, device_identifier, actor="system") -> dict:
    """Remove all active sessions of a device; no match is success with count 0"""

    def action(api, router):
        count = revoke_with_api(api, device_identifier)
        return {
            "count": count,
            "message": f"Disconnected {count} session(s)",
        }

    result = _run_router_operation(
        router_id,
        "revoke_access",
        f"{HOTSPOT_ACTIVE_PATH}/remove",
        actor,
        {"device": device_identifier},
        action,
    )
    result.setdefault("count", 0)
    return result


def upsert_access_profile(router_id, profile: AccessProfile, actor="system") -> dict:
    """Create the profile if absent, update it if present (keyed on name)"""

    def action(api, router):
        created = upsert_profile_with_api(api, profile)
        verb = "created" if created else "updated"
        return {"created": created, "message": f"Profile {profile.name} {verb}"}

    return _run_router_operation(
        router_id,
        "upsert_access_profile",
        f"{HOTSPOT_PROFILE_PATH}/set",
        actor,
        profile.to_router_params(),
        action,
    )


def list_access_profiles(router_id, actor="system") -> dict:
    def action(api, router):
        profiles = []
        for p in list_profiles_with_api(api).values():
            profiles.append(
                {
                    "name": p.get("name"),
                    "session_timeout": p.get("session-timeout"),
                    "rate_limit": p.get("rate-limit"),
                    "shared_users": p.get("shared-users"),
                }
            )
        return {"profiles": profiles}

    result = _run_router_operation(
        router_id,
        "list_access_profiles",
        f"{HOTSPOT_PROFILE_PATH}/print",
        actor,
        {},
        action,
    )
    result.setdefault("profiles", [])
    return result


def get_active_sessions(router_id, actor="system") -> dict:
    """List active hotspot sessions on a router"""

    def action(api, router):
        sessions = []
        for s in api.get_resource(HOTSPOT_ACTIVE_PATH).get():
            sessions.append(
                {
                    "user": s.get("user"),
                    "address": s.get("address"),
                    "mac_address": s.get("mac-address"),
                    "uptime": s.get("uptime"),
                    "session_time_left": s.get("session-time-left"),
                    "bytes_in": s.get("bytes-in"),
                    "bytes_out": s.get("bytes-out"),
                }
            )
        return {"sessions": sessions}

    result = _run_router_operation(
        router_id,
        "get_active_sessions",
        f"{HOTSPOT_ACTIVE_PATH}/print",
        actor,
        {},
        action,
    )
    result.setdefault("sessions", [])
    return result
