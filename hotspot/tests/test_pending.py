"""
Tests for the pending-activation stores
"""
from django.core.cache import cache
from django.test import TestCase, override_settings

from hotspot.pending import (
    CachePendingActivationStore,
    InMemoryPendingActivationStore,
    PendingActivation,
    get_pending_store,
    reset_pending_store,
)


def activation(checkout_request_id="ws_CO_1", device="AA:BB:CC:DD:EE:01"):
    return PendingActivation(
        checkout_request_id=checkout_request_id,
        device_identifier=device,
        package_id=3,
        phone="254712345678",
        amount=20,
        router_id=1,
    )


class InMemoryStoreTest(TestCase):
    def setUp(self):
        self.now = 0.0
        self.store = InMemoryPendingActivationStore(clock=lambda: self.now)

    def test_put_and_get(self):
        self.store.put(activation(), ttl=600)

        found = self.store.get("ws_CO_1")
        self.assertEqual(found.device_identifier, "AA:BB:CC:DD:EE:01")
        self.assertTrue(self.store.has_pending_for("aa:bb:cc:dd:ee:01"))

    def test_entry_expires_after_ttl(self):
        self.store.put(activation(), ttl=600)

        self.now = 599
        self.assertIsNotNone(self.store.get("ws_CO_1"))
        self.now = 600
        self.assertIsNone(self.store.get("ws_CO_1"))
        self.assertFalse(self.store.has_pending_for("AA:BB:CC:DD:EE:01"))

    def test_sweep_removes_only_expired(self):
        self.store.put(activation("ws_CO_1", "AA:BB:CC:DD:EE:01"), ttl=60)
        self.store.put(activation("ws_CO_2", "AA:BB:CC:DD:EE:02"), ttl=600)

        self.now = 120
        removed = self.store.sweep()

        self.assertEqual(removed, 1)
        self.assertEqual(len(self.store), 1)
        self.assertIsNotNone(self.store.get("ws_CO_2"))

    def test_delete_keeps_newer_device_entry(self):
        self.store.put(activation("ws_CO_1"), ttl=600)
        self.store.put(activation("ws_CO_2"), ttl=600)

        self.store.delete("ws_CO_1")

        self.assertEqual(
            self.store.pending_for("AA:BB:CC:DD:EE:01").checkout_request_id, "ws_CO_2"
        )

    def test_reservation_blocks_until_expiry(self):
        self.assertTrue(self.store.reserve("aa:bb:cc:dd:ee:01", ttl=60))
        self.assertFalse(self.store.reserve("AA:BB:CC:DD:EE:01", ttl=60))
        self.assertIsNone(self.store.pending_for("AA:BB:CC:DD:EE:01"))

        self.now = 60
        self.assertTrue(self.store.reserve("AA:BB:CC:DD:EE:01", ttl=60))

    def test_put_replaces_reservation(self):
        self.store.reserve("AA:BB:CC:DD:EE:01")
        self.store.put(activation(), ttl=600)

        self.store.release("AA:BB:CC:DD:EE:01")

        self.assertFalse(self.store.reserve("AA:BB:CC:DD:EE:01"))
        self.assertIsNotNone(self.store.get("ws_CO_1"))

    def test_release_frees_device(self):
        self.store.reserve("AA:BB:CC:DD:EE:01")
        self.store.release("AA:BB:CC:DD:EE:01")
        self.assertTrue(self.store.reserve("AA:BB:CC:DD:EE:01"))


class CacheStoreTest(TestCase):
    def setUp(self):
        cache.clear()
        self.store = CachePendingActivationStore()

    def test_round_trip_preserves_fields(self):
        original = activation()
        self.store.put(original, ttl=600)

        found = self.store.get("ws_CO_1")

        self.assertEqual(found, original)
        self.assertEqual(self.store.pending_for("aa:bb:cc:dd:ee:01"), original)

    def test_delete_clears_device_index(self):
        self.store.put(activation(), ttl=600)

        self.store.delete("ws_CO_1")

        self.assertIsNone(self.store.get("ws_CO_1"))
        self.assertFalse(self.store.has_pending_for("AA:BB:CC:DD:EE:01"))

    def test_reserve_is_exclusive(self):
        self.assertTrue(self.store.reserve("AA:BB:CC:DD:EE:01"))
        self.assertFalse(self.store.reserve("aa:bb:cc:dd:ee:01"))
        self.assertIsNone(self.store.pending_for("AA:BB:CC:DD:EE:01"))

        self.store.release("AA:BB:CC:DD:EE:01")
        self.assertTrue(self.store.reserve("AA:BB:CC:DD:EE:01"))

    def test_release_keeps_pending_activation(self):
        self.store.reserve("AA:BB:CC:DD:EE:01")
        self.store.put(activation(), ttl=600)

        self.store.release("AA:BB:CC:DD:EE:01")

        self.assertTrue(self.store.has_pending_for("AA:BB:CC:DD:EE:01"))
        self.assertFalse(self.store.reserve("AA:BB:CC:DD:EE:01"))

    def test_sweep_is_a_noop(self):
        self.store.put(activation(), ttl=600)
        self.assertEqual(self.store.sweep(), 0)
        self.assertIsNotNone(self.store.get("ws_CO_1"))


class StoreConfigurationTest(TestCase):
    def tearDown(self):
        reset_pending_store()

    @override_settings(
        PENDING_ACTIVATION_STORE="hotspot.pending.InMemoryPendingActivationStore"
    )
    def test_store_class_from_settings(self):
        reset_pending_store()
        store = get_pending_store()
        self.assertIsInstance(store, InMemoryPendingActivationStore)
        self.assertIs(get_pending_store(), store)
