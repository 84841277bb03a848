"""
URL patterns for the hotspot API
"""

from django.urls import path

from . import views

urlpatterns = [
    # Captive portal
    path("packages/", views.package_list, name="package_list"),
    path("payments/initiate/", views.initiate_payment_view, name="initiate_payment"),
    path("payments/mpesa/callback/", views.mpesa_callback, name="mpesa_callback"),
    path(
        "payments/<str:checkout_request_id>/status/",
        views.payment_status,
        name="payment_status",
    ),
    path("devices/<str:mac_address>/status/", views.device_status, name="device_status"),
    # Router operations
    path(
        "routers/<int:router_id>/test-connection/",
        views.router_test_connection,
        name="router_test_connection",
    ),
    path(
        "routers/<int:router_id>/sync-packages/",
        views.router_sync_packages,
        name="router_sync_packages",
    ),
    path(
        "routers/<int:router_id>/credentials/",
        views.router_credentials,
        name="router_credentials",
    ),
    path("sessions/<int:session_id>/retry/", views.session_retry, name="session_retry"),
    path(
        "sessions/<int:session_id>/disconnect/",
        views.session_disconnect,
        name="session_disconnect",
    ),
]
