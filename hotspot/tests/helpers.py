"""
Shared fixtures for the hotspot tests: model factories and an in-memory
stand-in for the RouterOS API resources
"""

from decimal import Decimal
from itertools import count
from unittest.mock import MagicMock

from hotspot.credentials import store_router_credentials
from hotspot.models import Package, Router

DEVICE_MAC = "AA:BB:CC:DD:EE:01"
PHONE = "254712345678"


def make_package(name="1 Hour", duration_minutes=60, price="20", **kwargs):
    return Package.objects.create(
        name=name,
        duration_minutes=duration_minutes,
        price=Decimal(price),
        **kwargs,
    )


def make_router(name="Estate A", host="10.0.0.1", with_credentials=True):
    router = Router.objects.create(name=name, host=host)
    if with_credentials:
        store_router_credentials(router, "api-user", "s3cret-pass")
    return router


class FakeResource:
    """Mimics routeros_api resource objects (get/add/set/remove)"""

    _ids = count(1)

    def __init__(self, items=None):
        self.items = []
        self.calls = []
        self.fail_on = {}  # method -> callable(params) returning an exception or None
        for item in items or []:
            self._append(dict(item))

    def _append(self, item):
        item.setdefault(".id", f"*{next(self._ids)}")
        self.items.append(item)
        return item

    def _maybe_fail(self, method, params):
        check = self.fail_on.get(method)
        if check is not None:
            error = check(params)
            if error is not None:
                raise error

    def get(self, **filters):
        self.calls.append(("get", filters))
        self._maybe_fail("get", filters)
        return [
            dict(item)
            for item in self.items
            if all(item.get(k.replace("_", "-")) == v for k, v in filters.items())
        ]

    def add(self, **params):
        self.calls.append(("add", params))
        self._maybe_fail("add", params)
        self._append(dict(params))
        return ""

    def set(self, id, **params):
        self.calls.append(("set", dict(params, id=id)))
        self._maybe_fail("set", params)
        for item in self.items:
            if item[".id"] == id:
                item.update(params)

    def remove(self, id):
        self.calls.append(("remove", {"id": id}))
        self._maybe_fail("remove", {"id": id})
        self.items = [item for item in self.items if item[".id"] != id]

    def calls_to(self, method):
        return [params for name, params in self.calls if name == method]


class FakeRouterApi:
    def __init__(self):
        self.resources = {}

    def resource(self, path, items=None):
        if path not in self.resources:
            self.resources[path] = FakeResource(items)
        return self.resources[path]

    def get_resource(self, path):
        return self.resource(path)


def fake_pool(api=None, connect_error=None):
    """RouterOsApiPool replacement returning ``api`` or raising ``connect_error``"""
    pool = MagicMock()
    if connect_error is not None:
        pool.get_api.side_effect = connect_error
    else:
        pool.get_api.return_value = api
    return pool


def success_callback(
    checkout_request_id="ws_CO_191220191020363925",
    receipt="NLJ7RT61SV",
    amount=20,
    phone=254712345678,
):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_request_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": amount},
                        {"Name": "MpesaReceiptNumber", "Value": receipt},
                        {"Name": "TransactionDate", "Value": 20191219102115},
                        {"Name": "PhoneNumber", "Value": phone},
                    ]
                },
            }
        }
    }


def failed_callback(checkout_request_id="ws_CO_191220191020363925"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_request_id,
                "ResultCode": 1032,
                "ResultDesc": "Request cancelled by user",
            }
        }
    }
