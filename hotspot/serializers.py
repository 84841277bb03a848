"""
Serializers for API requests and responses
"""

from rest_framework import serializers

from .models import Package, Payment, Router, Session
from .utils import normalize_mac_address, normalize_phone_number


class PackageSerializer(serializers.ModelSerializer):
    duration_display = serializers.CharField(read_only=True)

    class Meta:
        model = Package
        fields = [
            "id",
            "name",
            "duration_minutes",
            "duration_display",
            "price",
            "description",
        ]
        read_only_fields = fields


class InitiatePaymentSerializer(serializers.Serializer):
    phone_number = serializers.CharField(max_length=20)
    package_id = serializers.IntegerField()
    mac_address = serializers.CharField(max_length=17)
    router_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Router serving the captive portal the guest is on",
    )

    def validate_phone_number(self, value):
        try:
            return normalize_phone_number(value)
        except ValueError:
            raise serializers.ValidationError(
                "Invalid phone number. Please use a valid Safaricom number."
            )

    def validate_mac_address(self, value):
        try:
            return normalize_mac_address(value)
        except ValueError:
            raise serializers.ValidationError("Invalid MAC address format")

    def validate_package_id(self, value):
        try:
            return Package.objects.get(pk=value, is_active=True)
        except Package.DoesNotExist:
            raise serializers.ValidationError("Package not found or inactive")

    def validate_router_id(self, value):
        if value is None:
            return None
        try:
            return Router.objects.get(pk=value, is_active=True)
        except Router.DoesNotExist:
            raise serializers.ValidationError("Router not found or inactive")


class PaymentSerializer(serializers.ModelSerializer):
    package_name = serializers.CharField(source="package.name", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "checkout_request_id",
            "status",
            "amount",
            "package_name",
            "device_identifier",
            "account_reference",
            "created_at",
        ]
        read_only_fields = fields


class SessionSerializer(serializers.ModelSerializer):
    package_name = serializers.CharField(source="package.name", read_only=True)
    remaining_seconds = serializers.IntegerField(read_only=True)

    class Meta:
        model = Session
        fields = [
            "id",
            "device_identifier",
            "package_name",
            "router",
            "start_time",
            "end_time",
            "active",
            "provisioning_status",
            "provisioning_error",
            "end_reason",
            "remaining_seconds",
        ]
        read_only_fields = fields


class RouterCredentialPatchSerializer(serializers.Serializer):
    """Every field optional; an omitted field keeps its stored value"""

    api_username = serializers.CharField(max_length=100, required=False)
    api_password = serializers.CharField(
        required=False, write_only=True, trim_whitespace=False
    )
    api_port = serializers.IntegerField(min_value=1, max_value=65535, required=False)
    connection_timeout = serializers.IntegerField(
        min_value=1, max_value=120, required=False
    )
    use_ssl = serializers.BooleanField(required=False)

    def validate_api_password(self, value):
        if not value:
            raise serializers.ValidationError("Password cannot be blank")
        return value
