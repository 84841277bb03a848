"""
Django admin configuration for the WifiGate hotspot with Jazzmin
"""

from django import forms
from django.contrib import admin, messages
from django.utils.html import format_html

from .activation import end_session, retry_provisioning
from .credentials import encrypt_secret
from .exceptions import ActivationError
from .mikrotik import test_connection
from .models import (
    OperationLog,
    Package,
    Payment,
    Router,
    RouterCredential,
    RouterSyncStatus,
    Session,
)
from .sync import sync_packages

STATUS_COLORS = {
    "online": "green",
    "offline": "red",
    "unknown": "gray",
    "pending": "orange",
    "success": "green",
    "failed": "red",
    "granted": "green",
}


def _badge(value):
    color = STATUS_COLORS.get(value, "gray")
    return format_html(
        '<span style="background: {}; color: white; padding: 2px 8px; '
        'border-radius: 4px;">{}</span>',
        color,
        (value or "-").upper(),
    )


# =============================================================================
# PACKAGES
# =============================================================================


@admin.register(Package)
class PackageAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "duration_display",
        "price_formatted",
        "rate_limit",
        "profile_name",
        "is_active",
    ]
    list_filter = ["is_active"]
    search_fields = ["name"]
    readonly_fields = ["profile_name", "created_at", "updated_at"]

    def price_formatted(self, obj):
        return f"KES {obj.price:,}"

    price_formatted.short_description = "Price"

    def has_delete_permission(self, request, obj=None):
        # Packages are deactivated, never deleted, once payments reference them
        if obj is not None and obj.payments.exists():
            return False
        return super().has_delete_permission(request, obj)


# =============================================================================
# ROUTERS
# =============================================================================


class RouterCredentialForm(forms.ModelForm):
    """Takes the API password in clear text and stores it encrypted"""

    api_password = forms.CharField(
        widget=forms.PasswordInput(render_value=False),
        required=False,
        strip=False,
        help_text="Leave empty to keep the stored password",
    )

    class Meta:
        model = RouterCredential
        fields = ["api_username", "api_password", "api_port", "connection_timeout", "use_ssl"]

    def clean(self):
        cleaned = super().clean()
        if not self.instance.pk and not cleaned.get("api_password"):
            self.add_error("api_password", "A password is required for new credentials")
        return cleaned

    def save(self, commit=True):
        credential = super().save(commit=False)
        password = self.cleaned_data.get("api_password")
        if password:
            credential.api_password_encrypted = encrypt_secret(password)
        if commit:
            credential.save()
        return credential


class RouterCredentialInline(admin.StackedInline):
    model = RouterCredential
    form = RouterCredentialForm
    can_delete = False
    extra = 0
    max_num = 1


class RouterSyncStatusInline(admin.StackedInline):
    model = RouterSyncStatus
    can_delete = False
    extra = 0
    max_num = 0
    readonly_fields = ["sync_status", "last_sync_at", "packages_synced", "sync_errors"]


@admin.register(Router)
class RouterAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "host",
        "identity",
        "status_badge",
        "last_seen",
        "last_health_check",
        "is_active",
    ]
    list_filter = ["status", "is_active"]
    search_fields = ["name", "host", "identity"]
    readonly_fields = [
        "identity",
        "status",
        "last_seen",
        "last_health_check",
        "last_error",
        "created_at",
        "updated_at",
    ]
    inlines = [RouterCredentialInline, RouterSyncStatusInline]
    actions = ["test_router_connection", "sync_router_packages"]

    def status_badge(self, obj):
        return _badge(obj.status)

    status_badge.short_description = "Status"

    def test_router_connection(self, request, queryset):
        actor = request.user.get_username()
        for router in queryset:
            result = test_connection(router.pk, actor=actor)
            if result["success"]:
                self.message_user(
                    request, f"{router.name}: connected ({result['identity']})"
                )
            else:
                self.message_user(
                    request, f"{router.name}: {result['message']}", level=messages.ERROR
                )

    test_router_connection.short_description = "Test connection"

    def sync_router_packages(self, request, queryset):
        actor = request.user.get_username()
        for router in queryset:
            result = sync_packages(router.pk, actor=actor)
            if result.success:
                self.message_user(
                    request, f"{router.name}: {result.synced_count} package(s) synced"
                )
            else:
                self.message_user(
                    request,
                    f"{router.name}: sync failed ({'; '.join(result.errors)})",
                    level=messages.ERROR,
                )
            if result.orphaned_profiles:
                self.message_user(
                    request,
                    f"{router.name}: orphaned profiles {', '.join(result.orphaned_profiles)}",
                    level=messages.WARNING,
                )

    sync_router_packages.short_description = "Sync packages"


# =============================================================================
# PAYMENTS & SESSIONS
# =============================================================================


class ReadOnlyAdminMixin:
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "phone_number",
        "amount_formatted",
        "package",
        "device_identifier",
        "status_badge",
        "mpesa_receipt",
        "checkout_request_id",
        "created_at",
    ]
    list_filter = ["status", "package", "router", "created_at"]
    search_fields = [
        "phone_number",
        "device_identifier",
        "checkout_request_id",
        "mpesa_receipt",
        "account_reference",
    ]
    ordering = ["-created_at"]

    def amount_formatted(self, obj):
        return f"KES {obj.amount:,}"

    amount_formatted.short_description = "Amount"

    def status_badge(self, obj):
        return _badge(obj.status)

    status_badge.short_description = "Status"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("package", "router")


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    list_display = [
        "device_identifier",
        "package",
        "router",
        "active",
        "provisioning_badge",
        "start_time",
        "end_time",
        "end_reason",
    ]
    list_filter = ["active", "provisioning_status", "end_reason", "router"]
    search_fields = ["device_identifier", "payment__checkout_request_id"]
    readonly_fields = [
        "device_identifier",
        "package",
        "payment",
        "router",
        "start_time",
        "end_time",
        "active",
        "provisioning_status",
        "provisioning_error",
        "provisioned_at",
        "end_reason",
        "ended_at",
    ]
    actions = ["retry_session_provisioning", "disconnect_sessions"]

    def has_add_permission(self, request):
        return False

    def provisioning_badge(self, obj):
        return _badge(obj.provisioning_status)

    provisioning_badge.short_description = "Provisioning"

    def retry_session_provisioning(self, request, queryset):
        actor = request.user.get_username()
        granted = 0
        for session in queryset.select_related("package"):
            try:
                session = retry_provisioning(session, actor=actor)
            except ActivationError as e:
                self.message_user(request, e.message, level=messages.WARNING)
                continue
            if session.provisioning_status == "granted":
                granted += 1
            else:
                self.message_user(
                    request,
                    f"{session.device_identifier}: {session.provisioning_error}",
                    level=messages.ERROR,
                )
        self.message_user(request, f"{granted} session(s) provisioned.")

    retry_session_provisioning.short_description = "Retry provisioning"

    def disconnect_sessions(self, request, queryset):
        actor = request.user.get_username()
        ended = 0
        for session in queryset.filter(end_reason=""):
            result = end_session(session, "disconnected", actor=actor)
            ended += 1
            if not result["success"]:
                self.message_user(
                    request,
                    f"{session.device_identifier}: router revoke failed ({result['message']})",
                    level=messages.WARNING,
                )
        self.message_user(request, f"{ended} session(s) disconnected.")

    disconnect_sessions.short_description = "Disconnect"

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("package", "router", "payment")


@admin.register(OperationLog)
class OperationLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "created_at",
        "category",
        "operation",
        "resource_type",
        "resource_id",
        "actor",
        "success",
        "duration_ms",
    ]
    list_filter = ["category", "operation", "success"]
    search_fields = ["resource_id", "actor", "operation", "error_message"]
    ordering = ["-created_at"]
