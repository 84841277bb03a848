"""
Database models for the WifiGate hotspot billing platform
Packages, routers and their control-plane credentials, payments,
sessions and the append-only operation log
"""

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone


class Package(models.Model):
    """
    Billing package sold on the captive portal.
    Referenced packages are never deleted, only deactivated.
    """

    name = models.CharField(max_length=100)
    duration_minutes = models.PositiveIntegerField(
        null=True, blank=True, help_text="Leave empty for unlimited time"
    )
    price = models.DecimalField(max_digits=10, decimal_places=2)
    rate_limit = models.CharField(
        max_length=50, blank=True, help_text="RouterOS rate limit, e.g. 2M/2M"
    )
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["price", "duration_minutes"]

    def __str__(self):
        return f"{self.name} - {self.duration_display} - KES {self.price}"

    @property
    def profile_name(self):
        """Router-side access profile name derived from the package id"""
        return f"{settings.ROUTER_PROFILE_PREFIX}{self.pk}"

    @property
    def duration_display(self):
        minutes = self.duration_minutes
        if not minutes:
            return "Unlimited"
        if minutes < 60:
            return f"{minutes} minutes"
        if minutes < 1440:
            hours, rest = divmod(minutes, 60)
            if rest == 0:
                return f"{hours} {'hour' if hours == 1 else 'hours'}"
            return f"{hours}h {rest}m"
        days, rest = divmod(minutes, 1440)
        hours = rest // 60
        if hours == 0:
            return f"{days} {'day' if days == 1 else 'days'}"
        return f"{days}d {hours}h"


class Router(models.Model):
    """MikroTik router serving a captive portal"""

    STATUS_CHOICES = [
        ("unknown", "Unknown"),
        ("online", "Online"),
        ("offline", "Offline"),
    ]

    name = models.CharField(max_length=100, unique=True)
    host = models.CharField(max_length=255)  # IP or hostname
    description = models.TextField(blank=True)

    # Populated from the router
    identity = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="unknown")
    last_seen = models.DateTimeField(null=True, blank=True)
    last_health_check = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.host})"


class RouterCredential(models.Model):
    """
    Control-channel credentials for a router.
    The API password is stored as a Fernet token, see hotspot.credentials.
    """

    router = models.OneToOneField(
        Router, on_delete=models.CASCADE, related_name="credential"
    )
    api_username = models.CharField(max_length=100)
    api_password_encrypted = models.TextField()
    api_port = models.PositiveIntegerField(default=8729)
    connection_timeout = models.PositiveIntegerField(
        default=10, help_text="Socket timeout in seconds"
    )
    use_ssl = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.api_username}@{self.router.name}:{self.api_port}"


class RouterSyncStatus(models.Model):
    """Outcome of the last package synchronization against a router"""

    STATUS_CHOICES = [
        ("success", "Success"),
        ("failed", "Failed"),
    ]

    router = models.OneToOneField(
        Router, on_delete=models.CASCADE, related_name="sync_status"
    )
    sync_status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    last_sync_at = models.DateTimeField()
    packages_synced = models.PositiveIntegerField(default=0)
    sync_errors = models.JSONField(default=list, blank=True)

    class Meta:
        verbose_name_plural = "router sync statuses"

    def __str__(self):
        return f"{self.router.name} - {self.sync_status} ({self.packages_synced})"


class Payment(models.Model):
    """
    M-Pesa STK push payment.
    Leaves ``pending`` exactly once, driven by the provider callback
    (or by a failed push request).
    """

    STATUS_PENDING = "pending"
    STATUS_SUCCESS = "success"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SUCCESS, "Success"),
        (STATUS_FAILED, "Failed"),
    ]

    phone_number = models.CharField(max_length=15)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    package = models.ForeignKey(
        Package, on_delete=models.PROTECT, related_name="payments"
    )
    router = models.ForeignKey(
        Router,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    device_identifier = models.CharField(max_length=17, db_index=True)
    account_reference = models.CharField(max_length=20)

    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING
    )
    checkout_request_id = models.CharField(
        max_length=100, unique=True, null=True, blank=True
    )
    merchant_request_id = models.CharField(max_length=100, blank=True)
    mpesa_receipt = models.CharField(max_length=50, blank=True)
    # Amount and payer reported by the confirmation, which may differ from the request
    paid_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    paid_phone_number = models.CharField(max_length=15, blank=True)
    result_code = models.IntegerField(null=True, blank=True)
    result_desc = models.CharField(max_length=255, blank=True)
    failure_reason = models.CharField(max_length=255, blank=True)

    # Raw webhook payload kept for dispute resolution
    raw_callback = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["device_identifier", "status"],
                name="hotspot_pay_device__a41c7e_idx",
            ),
        ]

    def __str__(self):
        return f"{self.phone_number} - KES {self.amount} - {self.status}"

    @property
    def is_terminal(self):
        return self.status != self.STATUS_PENDING


class Session(models.Model):
    """
    Timed network access for one device, created once per successful payment.
    ``active`` turns on with the first successful grant and turns off on
    expiry or disconnect; it is never switched back on.
    """

    PROVISIONING_CHOICES = [
        ("pending", "Pending"),
        ("granted", "Granted"),
        ("failed", "Failed"),
    ]

    END_REASON_CHOICES = [
        ("expired", "Expired"),
        ("disconnected", "Disconnected"),
    ]

    device_identifier = models.CharField(max_length=17, db_index=True)
    package = models.ForeignKey(
        Package, on_delete=models.PROTECT, related_name="sessions"
    )
    payment = models.OneToOneField(
        Payment, on_delete=models.PROTECT, related_name="session"
    )
    router = models.ForeignKey(
        Router,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sessions",
    )

    start_time = models.DateTimeField(default=timezone.now)
    end_time = models.DateTimeField(null=True, blank=True)
    active = models.BooleanField(default=False)

    provisioning_status = models.CharField(
        max_length=20, choices=PROVISIONING_CHOICES, default="pending"
    )
    provisioning_error = models.TextField(blank=True)
    provisioned_at = models.DateTimeField(null=True, blank=True)

    end_reason = models.CharField(max_length=20, choices=END_REASON_CHOICES, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["active", "end_time"], name="hotspot_ses_active_3c9d12_idx"
            ),
        ]

    def __str__(self):
        state = "active" if self.active else self.end_reason or self.provisioning_status
        return f"{self.device_identifier} - {self.package.name} - {state}"

    @staticmethod
    def compute_end_time(start_time, package):
        if not package.duration_minutes:
            return None
        return start_time + timedelta(minutes=package.duration_minutes)

    @property
    def is_expired(self):
        return self.end_time is not None and self.end_time <= timezone.now()

    @property
    def remaining_seconds(self):
        """Seconds of access left, None for unlimited sessions"""
        if self.end_time is None:
            return None
        return max(int((self.end_time - timezone.now()).total_seconds()), 0)


class OperationLog(models.Model):
    """
    Append-only audit record of privileged router operations and
    payment state transitions
    """

    CATEGORY_CHOICES = [
        ("router", "Router operation"),
        ("payment", "Payment transition"),
    ]

    actor = models.CharField(max_length=150, default="system")
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    operation = models.CharField(max_length=100)
    resource_type = models.CharField(max_length=50)
    resource_id = models.CharField(max_length=100, blank=True)
    command = models.CharField(max_length=255, blank=True)
    parameters = models.JSONField(default=dict, blank=True)
    success = models.BooleanField()
    error_message = models.TextField(blank=True)
    duration_ms = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["category", "operation", "-created_at"],
                name="hotspot_ope_categor_5b1e0c_idx",
            ),
            models.Index(
                fields=["resource_type", "resource_id"],
                name="hotspot_ope_resourc_8d2f41_idx",
            ),
        ]

    def __str__(self):
        outcome = "ok" if self.success else "failed"
        return f"{self.operation} {self.resource_type}:{self.resource_id} - {outcome}"
