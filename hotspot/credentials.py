"""
Router control-plane credentials.

Secrets are stored as Fernet tokens (``cryptography``) under a key derived
from ``settings.ENCRYPTION_KEY`` and decrypted only while a connection
is being opened.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass, fields
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 32


def _get_fernet() -> Fernet:
    key = getattr(settings, "ENCRYPTION_KEY", "") or ""
    if len(key) < MIN_KEY_LENGTH:
        raise ImproperlyConfigured(
            f"ENCRYPTION_KEY must be at least {MIN_KEY_LENGTH} characters"
        )
    digest = hashlib.sha256(key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(plaintext: str) -> str:
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_secret(token: str) -> str:
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        logger.error("Failed to decrypt router secret (wrong ENCRYPTION_KEY?)")
        raise


@dataclass(frozen=True)
class CredentialPatch:
    """
    Partial update of a router's control-plane credentials.
    A field left as None keeps its stored value.
    """

    api_username: Optional[str] = None
    api_password: Optional[str] = None
    api_port: Optional[int] = None
    connection_timeout: Optional[int] = None
    use_ssl: Optional[bool] = None

    def changed_fields(self):
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]


def store_router_credentials(
    router,
    api_username: str,
    api_password: str,
    api_port: Optional[int] = None,
    connection_timeout: Optional[int] = None,
    use_ssl: bool = True,
):
    """Create or replace the full credential set for a router"""
    from .models import RouterCredential

    credential, _ = RouterCredential.objects.update_or_create(
        router=router,
        defaults={
            "api_username": api_username,
            "api_password_encrypted": encrypt_secret(api_password),
            "api_port": api_port or settings.ROUTER_API_DEFAULT_PORT,
            "connection_timeout": connection_timeout or settings.ROUTER_API_TIMEOUT,
            "use_ssl": use_ssl,
        },
    )
    logger.info(f"Stored control-plane credentials for router {router.name}")
    return credential


def apply_credential_patch(credential, patch: CredentialPatch):
    """Apply only the fields present in ``patch``; returns the changed names"""
    changed = patch.changed_fields()
    if not changed:
        return []

    update_fields = []
    for name in changed:
        value = getattr(patch, name)
        if name == "api_password":
            credential.api_password_encrypted = encrypt_secret(value)
            update_fields.append("api_password_encrypted")
        else:
            setattr(credential, name, value)
            update_fields.append(name)

    credential.save(update_fields=update_fields + ["updated_at"])
    logger.info(
        f"Updated credentials for router {credential.router_id}: {', '.join(changed)}"
    )
    return changed
