import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from inventory.exceptions import ImmutableRecord


class InventoryItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=128, blank=True, default="")
    manufacturer = models.CharField(max_length=128, blank=True, default="")
    unit = models.CharField(max_length=32, default="ea")
    box_size = models.PositiveIntegerField(default=1)
    stock = models.IntegerField(default=0)
    min_stock = models.PositiveIntegerField(default=0)
    location = models.CharField(max_length=128, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code", "created_at"]
        indexes = [
            models.Index(fields=["code"], name="inv_item_code_idx"),
            models.Index(fields=["location"], name="inv_item_location_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["code", "location"], name="uniq_item_code_location"),
            models.UniqueConstraint(
                fields=["code"],
                condition=Q(location__isnull=True),
                name="uniq_item_code_unassigned",
            ),
        ]

    def __str__(self):
        return f"{self.code}@{self.location or '-'}"

    @property
    def is_shortage(self):
        return self.stock < self.min_stock


class TransactionQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise ImmutableRecord("Ledger entries cannot be updated.")

    def delete(self):
        raise ImmutableRecord("Ledger entries cannot be deleted.")


class Transaction(models.Model):
    class Type(models.TextChoices):
        INBOUND = "inbound", "Inbound"
        OUTBOUND = "outbound", "Outbound"
        MOVE = "move", "Move"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    type = models.CharField(max_length=16, choices=Type.choices)
    item_code = models.CharField(max_length=64)
    item_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    from_location = models.CharField(max_length=128, null=True, blank=True)
    to_location = models.CharField(max_length=128, null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True, default="")
    memo = models.TextField(blank=True, default="")
    stock_before = models.IntegerField(null=True, blank=True)
    stock_after = models.IntegerField(null=True, blank=True)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["item_code", "created_at"], name="inv_txn_code_created_idx"),
            models.Index(fields=["type", "created_at"], name="inv_txn_type_created_idx"),
            models.Index(fields=["created_at"], name="inv_txn_created_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecord("Ledger entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecord("Ledger entries cannot be deleted.")


class WarehouseZone(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    zone_name = models.CharField(max_length=64)
    sub_zone_name = models.CharField(max_length=64)
    floors = models.JSONField(default=list)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["zone_name", "sub_zone_name"]
        unique_together = ("zone_name", "sub_zone_name")


class BomGuide(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    guide_name = models.CharField(max_length=128)
    item_code = models.CharField(max_length=64)
    required_quantity = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["guide_name"], name="inv_bom_guide_idx"),
        ]


class ExchangeQueueEntry(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_code = models.CharField(max_length=64)
    item_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    from_location = models.CharField(max_length=128, null=True, blank=True)
    outbound_transaction = models.ForeignKey(Transaction, on_delete=models.PROTECT, related_name="exchange_entries")
    outbound_date = models.DateTimeField()
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["outbound_date"]
        indexes = [
            models.Index(fields=["processed", "outbound_date"], name="inv_exchange_pending_idx"),
        ]
