import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="InventoryItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=255)),
                ("category", models.CharField(blank=True, default="", max_length=128)),
                ("manufacturer", models.CharField(blank=True, default="", max_length=128)),
                ("unit", models.CharField(default="ea", max_length=32)),
                ("box_size", models.PositiveIntegerField(default=1)),
                ("stock", models.IntegerField(default=0)),
                ("min_stock", models.PositiveIntegerField(default=0)),
                ("location", models.CharField(blank=True, max_length=128, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["code", "created_at"],
                "indexes": [
                    models.Index(fields=["code"], name="inv_item_code_idx"),
                    models.Index(fields=["location"], name="inv_item_location_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("code", "location"), name="uniq_item_code_location"),
                    models.UniqueConstraint(
                        condition=models.Q(("location__isnull", True)),
                        fields=("code",),
                        name="uniq_item_code_unassigned",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("inbound", "Inbound"),
                            ("outbound", "Outbound"),
                            ("move", "Move"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=16,
                    ),
                ),
                ("item_code", models.CharField(max_length=64)),
                ("item_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField()),
                ("from_location", models.CharField(blank=True, max_length=128, null=True)),
                ("to_location", models.CharField(blank=True, max_length=128, null=True)),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("memo", models.TextField(blank=True, default="")),
                ("stock_before", models.IntegerField(blank=True, null=True)),
                ("stock_after", models.IntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["item_code", "created_at"], name="inv_txn_code_created_idx"),
                    models.Index(fields=["type", "created_at"], name="inv_txn_type_created_idx"),
                    models.Index(fields=["created_at"], name="inv_txn_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WarehouseZone",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("zone_name", models.CharField(max_length=64)),
                ("sub_zone_name", models.CharField(max_length=64)),
                ("floors", models.JSONField(default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["zone_name", "sub_zone_name"],
                "unique_together": {("zone_name", "sub_zone_name")},
            },
        ),
        migrations.CreateModel(
            name="BomGuide",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("guide_name", models.CharField(max_length=128)),
                ("item_code", models.CharField(max_length=64)),
                ("required_quantity", models.PositiveIntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["guide_name"], name="inv_bom_guide_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ExchangeQueueEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("item_code", models.CharField(max_length=64)),
                ("item_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField()),
                ("from_location", models.CharField(blank=True, max_length=128, null=True)),
                ("outbound_date", models.DateTimeField()),
                ("processed", models.BooleanField(default=False)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "outbound_transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="exchange_entries",
                        to="inventory.transaction",
                    ),
                ),
            ],
            options={
                "ordering": ["outbound_date"],
                "indexes": [
                    models.Index(fields=["processed", "outbound_date"], name="inv_exchange_pending_idx"),
                ],
            },
        ),
    ]
