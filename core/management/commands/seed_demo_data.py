from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from inventory.bom import import_bom_rows
from inventory.models import Transaction, WarehouseZone
from inventory.services import record_inbound, record_outbound

DEMO_ZONES = [
    ("A", "1", ["1", "2", "3"]),
    ("A", "2", ["1", "2"]),
    ("B", "1", ["1", "2", "3", "4"]),
]

DEMO_RECEIPTS = [
    {"item_code": "BOLT-M6", "item_name": "Hex bolt M6", "category": "Fasteners", "unit": "ea", "quantity": 500, "to_location": "A-1-1", "min_stock": 100},
    {"item_code": "NUT-M6", "item_name": "Hex nut M6", "category": "Fasteners", "unit": "ea", "quantity": 420, "to_location": "A-1-2", "min_stock": 100},
    {"item_code": "PLATE-200", "item_name": "Base plate 200mm", "category": "Sheet metal", "unit": "ea", "quantity": 12, "to_location": "B-1-1", "min_stock": 20},
    {"item_code": "MOTOR-24V", "item_name": "DC motor 24V", "category": "Electrical", "unit": "ea", "quantity": 6, "to_location": "B-1-3", "min_stock": 4},
]

DEMO_BOM = [
    {"guide_name": "Conveyor module", "item_code": "BOLT-M6", "required_quantity": 24},
    {"guide_name": "", "item_code": "NUT-M6", "required_quantity": 24},
    {"guide_name": "", "item_code": "PLATE-200", "required_quantity": 2},
    {"guide_name": "", "item_code": "MOTOR-24V", "required_quantity": 1},
]


class Command(BaseCommand):
    help = "Seed demo warehouse layout, stock and BOM data for local development."

    def _ensure_user(self, User, username, role, password, **extra):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com", "role": role, "is_active": True, **extra},
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user = self._ensure_user(User, "admin", User.Role.ADMIN, "admin1234", is_staff=True, is_superuser=True)
        manager_user = self._ensure_user(User, "manager", User.Role.MANAGER, "manager1234", department="Warehouse")
        self._ensure_user(User, "viewer", User.Role.VIEWER, "viewer1234", department="Production")

        with transaction.atomic():
            for zone_name, sub_zone_name, floors in DEMO_ZONES:
                WarehouseZone.objects.update_or_create(
                    zone_name=zone_name,
                    sub_zone_name=sub_zone_name,
                    defaults={"floors": floors},
                )

        received = 0
        for receipt in DEMO_RECEIPTS:
            if Transaction.objects.filter(item_code=receipt["item_code"]).exists():
                continue
            record_inbound(reason="초기 재고", user=admin_user, **receipt)
            received += 1

        if received:
            record_outbound(item_code="PLATE-200", quantity=2, reason="생산 투입", user=manager_user)

        bom_result = import_bom_rows(DEMO_BOM)

        self.stdout.write(
            self.style.SUCCESS(
                f"Demo data ready: {len(DEMO_ZONES)} zones, {received} new receipts, "
                f"{bom_result['created']} BOM rows. Users: admin/admin1234, manager/manager1234, viewer/viewer1234"
            )
        )
