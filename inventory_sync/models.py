from datetime import timedelta

from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.utils import timezone


class VendorManager(models.Manager):
    UPSERT_FIELDS = ['name', 'contact_name', 'email', 'phone', 'is_active', 'fingerprint', 'last_synced_at']

    def upsert_batch(self, rows):
        objs = [self.model(**row) for row in rows]
        with transaction.atomic():
            return self.bulk_create(
                objs,
                update_conflicts=True,
                unique_fields=['external_id'],
                update_fields=self.UPSERT_FIELDS,
            )


class Vendor(models.Model):
    external_id = models.CharField(max_length=100, primary_key=True)
    name = models.CharField(max_length=255)
    contact_name = models.CharField(max_length=255, blank=True, default='')
    email = models.CharField(max_length=254, blank=True, default='')
    phone = models.CharField(max_length=50, blank=True, default='')
    is_active = models.BooleanField(default=True)
    fingerprint = models.CharField(max_length=32, blank=True, default='')
    last_synced_at = models.DateTimeField(null=True, blank=True)

    objects = VendorManager()

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.external_id})"


class InventoryItemManager(models.Manager):
    UPSERT_FIELDS = [
        'name', 'quantity', 'unit_cost', 'reorder_threshold', 'vendor', 'is_active',
        'fingerprint', 'source_modified_at', 'last_synced_at',
    ]

    def upsert_batch(self, rows):
        """Insert or update one batch of records in a single statement."""
        objs = [self.model(**row) for row in rows]
        with transaction.atomic():
            return self.bulk_create(
                objs,
                update_conflicts=True,
                unique_fields=['sku'],
                update_fields=self.UPSERT_FIELDS,
            )

    def needing_reorder(self):
        return self.filter(is_active=True, quantity__lte=models.F('reorder_threshold'))


class InventoryItem(models.Model):
    sku = models.CharField(max_length=100, primary_key=True)
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=0)
    unit_cost = models.DecimalField(
        max_digits=12, decimal_places=4, default=0, validators=[MinValueValidator(0)],
    )
    reorder_threshold = models.PositiveIntegerField(default=0)
    vendor = models.ForeignKey(
        Vendor, on_delete=models.SET_NULL, null=True, blank=True, related_name='items',
    )
    # Sync never deletes rows; items dropped upstream are deactivated instead
    is_active = models.BooleanField(default=True)
    fingerprint = models.CharField(max_length=32, blank=True, default='')
    source_modified_at = models.DateTimeField(null=True, blank=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)

    objects = InventoryItemManager()

    class Meta:
        ordering = ['sku']

    def __str__(self):
        return f"{self.sku} ({self.last_synced_at})"

    @property
    def needs_reorder(self):
        return self.quantity <= self.reorder_threshold


class SyncLogManager(models.Manager):
    def start(self, strategy, dry_run=False):
        return self.create(strategy=strategy, dry_run=dry_run, status=SyncLog.STATUS_RUNNING)

    def latest_for(self, strategy=None):
        qs = self.all()
        if strategy:
            qs = qs.filter(strategy=strategy)
        return qs.order_by('-started_at', '-id').first()

    def last_completed(self, strategies=None):
        qs = self.filter(status=SyncLog.STATUS_COMPLETED, dry_run=False)
        if strategies:
            qs = qs.filter(strategy__in=strategies)
        return qs.order_by('-finished_at').first()

    def mark_stale_as_failed(self, minutes):
        """Fail 'running' entries left behind by a crashed worker."""
        cutoff = timezone.now() - timedelta(minutes=minutes)
        return self.filter(status=SyncLog.STATUS_RUNNING, started_at__lt=cutoff).update(
            status=SyncLog.STATUS_FAILED,
            finished_at=timezone.now(),
            error_summary=f"Marked as failed: still running after {minutes} minutes",
        )


class SyncLog(models.Model):
    STATUS_RUNNING = 'running'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_RUNNING, 'Running'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]

    strategy = models.CharField(max_length=20)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_RUNNING)
    dry_run = models.BooleanField(default=False)
    started_at = models.DateTimeField(default=timezone.now)
    finished_at = models.DateTimeField(null=True, blank=True)
    items_seen = models.PositiveIntegerField(default=0)
    items_changed = models.PositiveIntegerField(default=0)
    items_failed = models.PositiveIntegerField(default=0)
    alerts_emitted = models.PositiveIntegerField(default=0)
    error_summary = models.TextField(blank=True, default='')
    errors = models.JSONField(default=list, blank=True)

    objects = SyncLogManager()

    class Meta:
        ordering = ['-started_at']
        indexes = [models.Index(fields=['strategy', '-started_at'], name='idx_synclog_strategy_started')]

    def __str__(self):
        return f"{self.strategy} {self.status} ({self.started_at})"

    @property
    def is_finished(self):
        return self.status != self.STATUS_RUNNING

    @property
    def duration_seconds(self):
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finish(self, status, items_seen=0, items_changed=0, items_failed=0, alerts_emitted=0,
               errors=None, error_summary=''):
        """Finalize the entry. A log entry is written once and never touched again."""
        if self.is_finished:
            raise ValueError(f"Sync log {self.pk} is already finalized ({self.status})")
        self.status = status
        self.finished_at = timezone.now()
        self.items_seen = items_seen
        self.items_changed = items_changed
        self.items_failed = items_failed
        self.alerts_emitted = alerts_emitted
        self.errors = list(errors or [])
        self.error_summary = error_summary
        self.save()


class Alert(models.Model):
    SEVERITY_WARNING = 'warning'
    SEVERITY_CRITICAL = 'critical'
    SEVERITY_CHOICES = [
        (SEVERITY_WARNING, 'Below reorder point'),
        (SEVERITY_CRITICAL, 'Out of stock'),
    ]

    item = models.ForeignKey(InventoryItem, on_delete=models.CASCADE, related_name='alerts')
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES)
    message = models.TextField()
    email_sent = models.BooleanField(default=False)
    acknowledged = models.BooleanField(default=False)
    acknowledged_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.severity}: {self.item_id}"

    def acknowledge(self):
        if self.acknowledged:
            return
        self.acknowledged = True
        self.acknowledged_at = timezone.now()
        self.save(update_fields=['acknowledged', 'acknowledged_at'])


class AppSettings(models.Model):
    """Single-row settings table (id=1) edited from the settings page."""

    SINGLETON_ID = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID, editable=False)
    finale_api_key = models.CharField(max_length=255, blank=True, default='')
    finale_api_secret = models.CharField(max_length=255, blank=True, default='')
    finale_account_path = models.CharField(max_length=255, blank=True, default='')
    inventory_report_url = models.URLField(max_length=500, blank=True, default='')
    sync_enabled = models.BooleanField(default=True)
    email_alerts_enabled = models.BooleanField(default=False)
    alert_emails = models.TextField(blank=True, default='', help_text="Comma separated recipients")
    email_api_key = models.CharField(max_length=255, blank=True, default='')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'app settings'

    def __str__(self):
        return "Application settings"

    @classmethod
    def load(cls):
        return cls.objects.filter(pk=cls.SINGLETON_ID).first()

    @classmethod
    def save_values(cls, **values):
        settings_row, _ = cls.objects.update_or_create(pk=cls.SINGLETON_ID, defaults=values)
        return settings_row

    @property
    def recipients(self):
        return [email.strip() for email in self.alert_emails.split(',') if email.strip()]


class PurchaseOrder(models.Model):
    STATUS_DRAFT = 'draft'
    STATUS_SUBMITTED = 'submitted'
    STATUS_RECEIVED = 'received'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SUBMITTED, 'Submitted'),
        (STATUS_RECEIVED, 'Received'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name='purchase_orders')
    order_number = models.CharField(max_length=100, blank=True, default='')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    expected_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.order_number or f"PO draft #{self.pk}"

    @property
    def total_cost(self):
        return sum((line.quantity * line.unit_cost for line in self.items.all()), 0)


class PurchaseOrderItem(models.Model):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name='items')
    item = models.ForeignKey(InventoryItem, on_delete=models.PROTECT, related_name='order_lines')
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_cost = models.DecimalField(
        max_digits=12, decimal_places=4, default=0, validators=[MinValueValidator(0)],
    )

    class Meta:
        unique_together = [['purchase_order', 'item']]

    def __str__(self):
        return f"{self.item_id} x{self.quantity}"
