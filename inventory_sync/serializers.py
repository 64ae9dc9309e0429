from django.db import transaction
from rest_framework import serializers

from .change_detection import INVENTORY_FINGERPRINT_FIELDS, VENDOR_FINGERPRINT_FIELDS
from .models import Alert, AppSettings, InventoryItem, PurchaseOrder, PurchaseOrderItem, SyncLog, Vendor
from .sync import IMPORT, STRATEGIES


class SyncedRecordSerializer(serializers.ModelSerializer):
    """Local edits to a synced record.

    The key is fixed once the row exists. Editing a fingerprinted field clears
    the stored fingerprint so the next sync re-applies the upstream values.
    """

    fingerprint_fields = ()

    def validate(self, attrs):
        key = self.Meta.model._meta.pk.name
        if self.instance is not None and key in attrs and attrs[key] != getattr(self.instance, key):
            raise serializers.ValidationError({key: "This field cannot be changed."})
        return attrs

    def update(self, instance, validated_data):
        changed = [
            field for field in self.fingerprint_fields
            if field in validated_data and validated_data[field] != getattr(instance, field)
        ]
        if changed:
            validated_data['fingerprint'] = ''
        return super().update(instance, validated_data)


class VendorSerializer(SyncedRecordSerializer):
    fingerprint_fields = VENDOR_FINGERPRINT_FIELDS
    item_count = serializers.IntegerField(source='items.count', read_only=True)

    class Meta:
        model = Vendor
        fields = [
            'external_id', 'name', 'contact_name', 'email', 'phone', 'is_active',
            'item_count', 'last_synced_at',
        ]
        read_only_fields = ['last_synced_at']


class InventoryItemSerializer(SyncedRecordSerializer):
    # the serializer sees the vendor relation, the fingerprint its id
    fingerprint_fields = tuple(
        'vendor' if field == 'vendor_id' else field for field in INVENTORY_FINGERPRINT_FIELDS
    )
    vendor_name = serializers.CharField(source='vendor.name', read_only=True)
    needs_reorder = serializers.BooleanField(read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            'sku', 'name', 'quantity', 'unit_cost', 'reorder_threshold', 'vendor', 'vendor_name',
            'is_active', 'needs_reorder', 'source_modified_at', 'last_synced_at',
        ]
        read_only_fields = ['source_modified_at', 'last_synced_at']


class SyncLogSerializer(serializers.ModelSerializer):
    duration_seconds = serializers.FloatField(read_only=True)

    class Meta:
        model = SyncLog
        fields = [
            'id', 'strategy', 'status', 'dry_run', 'started_at', 'finished_at', 'duration_seconds',
            'items_seen', 'items_changed', 'items_failed', 'alerts_emitted', 'error_summary', 'errors',
        ]
        read_only_fields = fields


class AlertSerializer(serializers.ModelSerializer):
    item_name = serializers.CharField(source='item.name', read_only=True)

    class Meta:
        model = Alert
        fields = [
            'id', 'item', 'item_name', 'severity', 'message', 'email_sent',
            'acknowledged', 'acknowledged_at', 'created_at',
        ]
        read_only_fields = fields


class PurchaseOrderItemSerializer(serializers.ModelSerializer):
    item_name = serializers.CharField(source='item.name', read_only=True)

    class Meta:
        model = PurchaseOrderItem
        fields = ['id', 'item', 'item_name', 'quantity', 'unit_cost']


class PurchaseOrderSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source='vendor.name', read_only=True)
    items = PurchaseOrderItemSerializer(many=True)
    total_cost = serializers.DecimalField(max_digits=14, decimal_places=4, read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            'id', 'vendor', 'vendor_name', 'order_number', 'status', 'expected_date', 'notes',
            'items', 'total_cost', 'created_at', 'updated_at',
        ]
        read_only_fields = ['order_number', 'status', 'created_at', 'updated_at']

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("A purchase order needs at least one line")
        skus = [line['item'].pk for line in value]
        if len(skus) != len(set(skus)):
            raise serializers.ValidationError("Each item may appear only once per order")
        return value

    def create(self, validated_data):
        lines = validated_data.pop('items')
        with transaction.atomic():
            order = PurchaseOrder.objects.create(**validated_data)
            self._write_lines(order, lines)
        return order

    def update(self, instance, validated_data):
        if instance.status != PurchaseOrder.STATUS_DRAFT:
            raise serializers.ValidationError("Only draft purchase orders can be edited")
        lines = validated_data.pop('items', None)
        with transaction.atomic():
            for field, value in validated_data.items():
                setattr(instance, field, value)
            instance.save()
            if lines is not None:
                instance.items.all().delete()
                self._write_lines(instance, lines)
        return instance

    @staticmethod
    def _write_lines(order, lines):
        PurchaseOrderItem.objects.bulk_create([
            PurchaseOrderItem(
                purchase_order=order,
                item=line['item'],
                quantity=line['quantity'],
                unit_cost=line.get('unit_cost', line['item'].unit_cost),
            )
            for line in lines
        ])


class AppSettingsSerializer(serializers.ModelSerializer):
    """Secrets are accepted on write and never echoed back."""

    has_finale_credentials = serializers.SerializerMethodField()
    has_email_api_key = serializers.SerializerMethodField()

    class Meta:
        model = AppSettings
        fields = [
            'finale_api_key', 'finale_api_secret', 'finale_account_path', 'inventory_report_url',
            'sync_enabled', 'email_alerts_enabled', 'alert_emails', 'email_api_key',
            'has_finale_credentials', 'has_email_api_key', 'updated_at',
        ]
        read_only_fields = ['updated_at']
        extra_kwargs = {
            'finale_api_key': {'write_only': True},
            'finale_api_secret': {'write_only': True},
            'email_api_key': {'write_only': True},
        }

    def get_has_finale_credentials(self, obj):
        return bool(obj.finale_api_key and obj.finale_api_secret and obj.finale_account_path)

    def get_has_email_api_key(self, obj):
        return bool(obj.email_api_key)

    def validate_alert_emails(self, value):
        email_field = serializers.EmailField()
        recipients = [email.strip() for email in value.split(',') if email.strip()]
        for email in recipients:
            email_field.run_validation(email)
        return ', '.join(recipients)


class SyncTriggerSerializer(serializers.Serializer):
    strategy = serializers.ChoiceField(
        choices=[strategy for strategy in STRATEGIES if strategy != IMPORT], default='inventory',
    )
    dry_run = serializers.BooleanField(default=False)
    background = serializers.BooleanField(default=False)
