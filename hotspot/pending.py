"""
Pending-activation store.

Bridges "payment requested" and "payment confirmed": a short-lived record,
keyed by the M-Pesa CheckoutRequestID, of the device and package a guest
chose. A second index by device identifier backs the duplicate-request
guard. Records are never mutated after creation; they are deleted on
activation or dropped when their TTL runs out.

Two backends:
  - CachePendingActivationStore: Django cache (Redis in multi-instance
    deployments, local memory otherwise)
  - InMemoryPendingActivationStore: a process-local dict with an explicit
    sweep; correct for a single application instance only
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingActivation:
    checkout_request_id: str
    device_identifier: str
    package_id: int
    phone: str
    amount: int
    router_id: Optional[int] = None
    created_at: datetime = field(default_factory=timezone.now)

    def to_dict(self):
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            data["created_at"] = datetime.fromisoformat(created_at)
        return cls(**data)


# Device-index value held between reserve() and put()
RESERVED = "__reserved__"


def default_ttl():
    return int(getattr(settings, "PENDING_ACTIVATION_TTL", 600))


class PendingActivationStore:
    """Interface of a TTL-bounded pending-activation store"""

    def put(self, activation: PendingActivation, ttl: Optional[int] = None):
        raise NotImplementedError

    def get(self, checkout_request_id: str) -> Optional[PendingActivation]:
        raise NotImplementedError

    def delete(self, checkout_request_id: str):
        raise NotImplementedError

    def pending_for(self, device_identifier: str) -> Optional[PendingActivation]:
        """Unexpired pending activation for a device, if any"""
        raise NotImplementedError

    def has_pending_for(self, device_identifier: str) -> bool:
        return self.pending_for(device_identifier) is not None

    def reserve(self, device_identifier: str, ttl: Optional[int] = None) -> bool:
        """
        Atomically claim the device slot ahead of an STK push.
        False when the device already has a reservation or a pending
        activation. put() turns the reservation into the real record.
        """
        raise NotImplementedError

    def release(self, device_identifier: str):
        """Drop a reservation that never became a pending activation"""
        raise NotImplementedError

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed"""
        return 0


class CachePendingActivationStore(PendingActivationStore):
    """Pending activations in the Django cache, expiry handled by the backend"""

    checkout_prefix = "pending:checkout:"
    device_prefix = "pending:device:"

    def __init__(self, alias: str = "default"):
        self.cache = caches[alias]

    def _checkout_key(self, checkout_request_id):
        return f"{self.checkout_prefix}{checkout_request_id}"

    def _device_key(self, device_identifier):
        return f"{self.device_prefix}{device_identifier.upper()}"

    def put(self, activation, ttl=None):
        ttl = ttl or default_ttl()
        self.cache.set_many(
            {
                self._checkout_key(activation.checkout_request_id): activation.to_dict(),
                self._device_key(activation.device_identifier): activation.checkout_request_id,
            },
            timeout=ttl,
        )
        logger.debug(
            f"Pending activation stored for {activation.checkout_request_id} ({ttl}s)"
        )

    def get(self, checkout_request_id):
        data = self.cache.get(self._checkout_key(checkout_request_id))
        if data is None:
            return None
        return PendingActivation.from_dict(data)

    def delete(self, checkout_request_id):
        activation = self.get(checkout_request_id)
        keys = [self._checkout_key(checkout_request_id)]
        if activation is not None:
            device_key = self._device_key(activation.device_identifier)
            # Only clear the device index if it still points at this checkout
            if self.cache.get(device_key) == checkout_request_id:
                keys.append(device_key)
        self.cache.delete_many(keys)

    def pending_for(self, device_identifier):
        checkout_request_id = self.cache.get(self._device_key(device_identifier))
        if checkout_request_id is None or checkout_request_id == RESERVED:
            return None
        return self.get(checkout_request_id)

    def reserve(self, device_identifier, ttl=None):
        # cache.add only writes when the key is absent (SET NX on Redis)
        return self.cache.add(
            self._device_key(device_identifier), RESERVED, timeout=ttl or default_ttl()
        )

    def release(self, device_identifier):
        device_key = self._device_key(device_identifier)
        if self.cache.get(device_key) == RESERVED:
            self.cache.delete(device_key)


class InMemoryPendingActivationStore(PendingActivationStore):
    """
    Process-local store. Entries expire lazily on read and eagerly on sweep().
    Not shared between workers: use the cache-backed store when the portal
    runs on more than one instance.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}  # checkout_request_id -> (activation, expires_at)
        self._by_device = {}  # device identifier -> checkout_request_id
        self._reservations = {}  # device identifier -> expires_at

    def _expired(self, expires_at):
        return self._clock() >= expires_at

    def _drop(self, checkout_request_id):
        activation, _ = self._entries.pop(checkout_request_id)
        device = activation.device_identifier.upper()
        if self._by_device.get(device) == checkout_request_id:
            del self._by_device[device]

    def put(self, activation, ttl=None):
        ttl = ttl or default_ttl()
        with self._lock:
            self._entries[activation.checkout_request_id] = (
                activation,
                self._clock() + ttl,
            )
            self._by_device[activation.device_identifier.upper()] = (
                activation.checkout_request_id
            )
            self._reservations.pop(activation.device_identifier.upper(), None)

    def get(self, checkout_request_id):
        with self._lock:
            entry = self._entries.get(checkout_request_id)
            if entry is None:
                return None
            activation, expires_at = entry
            if self._expired(expires_at):
                self._drop(checkout_request_id)
                return None
            return activation

    def delete(self, checkout_request_id):
        with self._lock:
            if checkout_request_id in self._entries:
                self._drop(checkout_request_id)

    def pending_for(self, device_identifier):
        with self._lock:
            checkout_request_id = self._by_device.get(device_identifier.upper())
        if checkout_request_id is None:
            return None
        return self.get(checkout_request_id)

    def reserve(self, device_identifier, ttl=None):
        ttl = ttl or default_ttl()
        device = device_identifier.upper()
        with self._lock:
            held_until = self._reservations.get(device)
            if held_until is not None and not self._expired(held_until):
                return False
            checkout_request_id = self._by_device.get(device)
            entry = self._entries.get(checkout_request_id)
            if entry is not None and not self._expired(entry[1]):
                return False
            self._reservations[device] = self._clock() + ttl
            return True

    def release(self, device_identifier):
        with self._lock:
            self._reservations.pop(device_identifier.upper(), None)

    def sweep(self):
        with self._lock:
            for device, held_until in list(self._reservations.items()):
                if self._expired(held_until):
                    del self._reservations[device]
            expired = [
                key
                for key, (_, expires_at) in self._entries.items()
                if self._expired(expires_at)
            ]
            for key in expired:
                self._drop(key)
        if expired:
            logger.info(f"Swept {len(expired)} expired pending activation(s)")
        return len(expired)

    def __len__(self):
        return len(self._entries)


_store = None
_store_lock = threading.Lock()


def get_pending_store() -> PendingActivationStore:
    """Process-wide store instance of the class named by PENDING_ACTIVATION_STORE"""
    global _store
    with _store_lock:
        if _store is None:
            store_class = import_string(settings.PENDING_ACTIVATION_STORE)
            _store = store_class()
        return _store


def reset_pending_store():
    global _store
    with _store_lock:
        _store = None
