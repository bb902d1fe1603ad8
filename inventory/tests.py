import threading
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog, User
from inventory.bom import check_guide, import_bom_rows
from inventory.exceptions import Busy, DuplicateKey, InsufficientStock, InvalidLocationFormat, ImmutableRecord, ItemNotFound
from inventory.ledger import append_transaction, net_quantity, query_transactions
from inventory.locations import compose_location, layout_triples, parse_location, resolve_location, validate_location
from inventory.locks import key_locks, stock_key
from inventory.models import BomGuide, ExchangeQueueEntry, InventoryItem, Transaction, WarehouseZone
from inventory.registry import apply_delta, create_item, find_item, total_stock
from inventory.services import (
    bulk_inbound,
    import_master,
    record_adjustment,
    record_inbound,
    record_move,
    record_outbound,
    sync_inventory,
    verify_ledger,
)


def create_layout():
    WarehouseZone.objects.create(zone_name="A", sub_zone_name="1", floors=["1", "2"])
    WarehouseZone.objects.create(zone_name="B", sub_zone_name="2", floors=["1"])


class InventoryApiTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.viewer = self.user_model.objects.create_user(username="viewer", password="pass1234")
        self.manager = self.user_model.objects.create_user(username="manager", password="pass1234", role=User.Role.MANAGER)
        self.admin = self.user_model.objects.create_user(username="admin", password="pass1234", role=User.Role.ADMIN)
        create_layout()

    def post_transaction(self, payload, user=None):
        self.client.force_authenticate(user=user or self.manager)
        return self.client.post("/api/v1/transactions/", payload, format="json")


class TransactionScenarioTests(InventoryApiTestCase):
    def test_inbound_creates_item(self):
        response = self.post_transaction({"type": "inbound", "itemCode": "X1", "quantity": 50, "toLocation": "A-1-1"})

        self.assertEqual(response.status_code, 201)
        item = InventoryItem.objects.get(code="X1")
        self.assertEqual(item.stock, 50)
        self.assertEqual(item.location, "A-1-1")
        self.assertEqual(Transaction.objects.filter(item_code="X1").count(), 1)

        entry = Transaction.objects.get(item_code="X1")
        self.assertEqual(entry.type, Transaction.Type.INBOUND)
        self.assertEqual(entry.to_location, "A-1-1")
        self.assertIsNone(entry.from_location)
        self.assertEqual(entry.user, self.manager)

        payload = response.json()
        self.assertEqual(payload["transaction"]["itemCode"], "X1")
        self.assertEqual(payload["transaction"]["toLocation"], "A-1-1")
        self.assertEqual(payload["transaction"]["userId"], str(self.manager.id))
        self.assertEqual(payload["items"][0]["stock"], 50)
        self.assertIsNone(payload["exchangeEntry"])

    def test_inbound_to_existing_location_adds_stock(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")

        response = self.post_transaction({"type": "inbound", "itemCode": "X1", "quantity": 5, "toLocation": "A-1-1"})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 15)
        self.assertEqual(InventoryItem.objects.filter(code="X1").count(), 1)

    def test_inbound_to_new_location_copies_known_product_attributes(self):
        record_inbound(item_code="X1", item_name="Widget", category="Parts", unit="box", quantity=10, to_location="A-1-1")

        record_inbound(item_code="X1", quantity=4, to_location="B-2-1")

        copy = InventoryItem.objects.get(code="X1", location="B-2-1")
        self.assertEqual(copy.name, "Widget")
        self.assertEqual(copy.category, "Parts")
        self.assertEqual(copy.unit, "box")
        self.assertEqual(total_stock("X1"), 14)

    def test_outbound_insufficient_leaves_state_untouched(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=5, to_location="A-1-1")

        response = self.post_transaction(
            {"type": "outbound", "itemCode": "X1", "quantity": 10, "fromLocation": "A-1-1", "reason": "출고"}
        )

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["errors"]["available"], 5)
        self.assertEqual(payload["errors"]["requested"], 10)
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 5)
        self.assertFalse(Transaction.objects.filter(type=Transaction.Type.OUTBOUND).exists())

    def test_outbound_without_source_uses_oldest_record_with_enough_stock(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=2, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=9, to_location="B-2-1")

        response = self.post_transaction({"type": "outbound", "itemCode": "X1", "quantity": 6, "reason": "출고"})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["transaction"]["fromLocation"], "B-2-1")
        self.assertEqual(InventoryItem.objects.get(code="X1", location="A-1-1").stock, 2)
        self.assertEqual(InventoryItem.objects.get(code="X1", location="B-2-1").stock, 3)

    def test_outbound_of_unknown_item_is_not_found(self):
        response = self.post_transaction({"type": "outbound", "itemCode": "NOPE", "quantity": 1, "reason": "출고"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_move_is_one_entry_across_two_records(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")

        response = self.post_transaction(
            {"type": "move", "itemCode": "X1", "quantity": 8, "fromLocation": "A-1-1", "toLocation": "B-2-1"}
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(InventoryItem.objects.get(code="X1", location="A-1-1").stock, 12)
        self.assertEqual(InventoryItem.objects.get(code="X1", location="B-2-1").stock, 8)
        moves = Transaction.objects.filter(type=Transaction.Type.MOVE)
        self.assertEqual(moves.count(), 1)
        self.assertEqual((moves[0].from_location, moves[0].to_location), ("A-1-1", "B-2-1"))

    def test_move_failure_changes_neither_record(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")

        response = self.post_transaction(
            {"type": "move", "itemCode": "X1", "quantity": 30, "fromLocation": "A-1-1", "toLocation": "B-2-1"}
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(InventoryItem.objects.get(code="X1", location="A-1-1").stock, 20)
        self.assertFalse(InventoryItem.objects.filter(code="X1", location="B-2-1").exists())
        self.assertFalse(Transaction.objects.filter(type=Transaction.Type.MOVE).exists())

    def test_move_to_same_location_is_rejected(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")

        response = self.post_transaction(
            {"type": "move", "itemCode": "X1", "quantity": 1, "fromLocation": "A-1-1", "toLocation": "A-1-1"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "same_location")

    def test_move_without_source_skips_the_destination_record(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=5, to_location="B-2-1")

        response = self.post_transaction({"type": "move", "itemCode": "X1", "quantity": 3, "toLocation": "A-1-1"})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["transaction"]["fromLocation"], "B-2-1")
        self.assertEqual(InventoryItem.objects.get(code="X1", location="A-1-1").stock, 23)
        self.assertEqual(InventoryItem.objects.get(code="X1", location="B-2-1").stock, 2)
        self.assertEqual(verify_ledger(), [])

    def test_move_without_source_fails_when_only_the_destination_has_stock(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=1, to_location="B-2-1")

        with self.assertRaises(InsufficientStock):
            record_move(item_code="X1", quantity=3, to_location="A-1-1")

        self.assertEqual(InventoryItem.objects.get(code="X1", location="A-1-1").stock, 20)
        self.assertFalse(Transaction.objects.filter(type=Transaction.Type.MOVE).exists())

    def test_move_to_undeclared_location_is_rejected(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=20, to_location="A-1-1")

        response = self.post_transaction(
            {"type": "move", "itemCode": "X1", "quantity": 1, "fromLocation": "A-1-1", "toLocation": "C-9-9"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_location_format")
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 20)

    def test_adjustment_records_before_and_after(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=30, to_location="A-1-1")
        item = InventoryItem.objects.get(code="X1")
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            f"/api/v1/inventory/{item.id}/adjust/",
            {"newStock": 25, "reason": "재고 실사"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        item.refresh_from_db()
        self.assertEqual(item.stock, 25)
        entry = Transaction.objects.get(type=Transaction.Type.ADJUSTMENT)
        self.assertEqual(entry.quantity, 5)
        self.assertEqual((entry.stock_before, entry.stock_after), (30, 25))
        self.assertEqual(entry.reason, "재고 실사")
        self.assertTrue(AuditLog.objects.filter(action="stock.adjust", entity_id=item.id).exists())

    def test_adjustment_intent_through_transactions_endpoint(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=30, to_location="A-1-1")

        response = self.post_transaction({"type": "adjustment", "itemCode": "X1", "newStock": 41, "reason": "재고 실사"})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["transaction"]["stockBefore"], 30)
        self.assertEqual(response.json()["transaction"]["stockAfter"], 41)
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 41)

    def test_adjustment_requires_reason_and_a_change(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=30, to_location="A-1-1")

        missing_reason = self.post_transaction({"type": "adjustment", "itemCode": "X1", "newStock": 20})
        same_value = self.post_transaction({"type": "adjustment", "itemCode": "X1", "newStock": 30, "reason": "재고 실사"})

        self.assertEqual(missing_reason.status_code, 400)
        self.assertIn("reason", missing_reason.json()["errors"])
        self.assertEqual(same_value.status_code, 400)
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.ADJUSTMENT).count(), 0)

    def test_intent_schema_is_selected_by_type(self):
        unknown_type = self.post_transaction({"type": "teleport", "itemCode": "X1", "quantity": 1})
        bad_quantity = self.post_transaction({"type": "inbound", "itemCode": "X1", "quantity": 0, "toLocation": "A-1-1"})
        move_without_target = self.post_transaction({"type": "move", "itemCode": "X1", "quantity": 1})

        self.assertEqual(unknown_type.status_code, 400)
        self.assertIn("type", unknown_type.json()["errors"])
        self.assertEqual(bad_quantity.status_code, 400)
        self.assertIn("quantity", bad_quantity.json()["errors"])
        self.assertEqual(move_without_target.status_code, 400)
        self.assertIn("toLocation", move_without_target.json()["errors"])
        self.assertFalse(Transaction.objects.exists())

    def test_viewer_cannot_post_transactions(self):
        response = self.post_transaction(
            {"type": "inbound", "itemCode": "X1", "quantity": 1, "toLocation": "A-1-1"}, user=self.viewer
        )

        self.assertEqual(response.status_code, 403)
        self.assertFalse(InventoryItem.objects.exists())

    def test_ledger_matches_stock_after_mixed_activity(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=40, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=5)
        record_outbound(item_code="X1", quantity=7, from_location="A-1-1", reason="출고")
        record_move(item_code="X1", quantity=10, from_location="A-1-1", to_location="B-2-1")
        record_move(item_code="X1", quantity=2, from_location=None, to_location="A-1-2")
        record_adjustment(item_code="X1", location="B-2-1", new_stock=4, reason="재고 실사")
        record_outbound(item_code="X1", quantity=3, from_location=None, reason="출고")

        for item in InventoryItem.objects.all():
            self.assertEqual(item.stock, net_quantity(item.code, item.location))
        self.assertEqual(verify_ledger(), [])
        self.assertEqual(InventoryItem.objects.get(code="X1", location__isnull=True).stock, 0)


class TransactionQueryTests(InventoryApiTestCase):
    def setUp(self):
        super().setUp()
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        record_inbound(item_code="Y1", item_name="Gadget", quantity=3, to_location="A-1-2")
        record_outbound(item_code="X1", quantity=4, from_location="A-1-1", reason="출고")

    def test_query_is_newest_first_and_filterable(self):
        entries = list(query_transactions())
        self.assertEqual([entry.created_at for entry in entries], sorted((entry.created_at for entry in entries), reverse=True))
        self.assertEqual(query_transactions(item_code="X1").count(), 2)
        self.assertEqual(query_transactions(type=Transaction.Type.OUTBOUND).count(), 1)

    def test_reads_are_idempotent(self):
        first = [entry.id for entry in query_transactions(item_code="X1")]
        second = [entry.id for entry in query_transactions(item_code="X1")]
        self.assertEqual(first, second)

    def test_list_endpoint_filters(self):
        self.client.force_authenticate(user=self.viewer)

        response = self.client.get("/api/v1/transactions/", {"itemCode": "X1", "type": "outbound"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["count"], 1)
        self.assertEqual(payload["results"][0]["type"], "outbound")
        self.assertEqual(payload["results"][0]["fromLocation"], "A-1-1")

    def test_date_range_filters(self):
        self.client.force_authenticate(user=self.viewer)

        future = self.client.get("/api/v1/transactions/", {"dateFrom": "2999-01-01"})
        past = self.client.get("/api/v1/transactions/", {"dateTo": "2000-01-01T00:00:00Z"})
        invalid = self.client.get("/api/v1/transactions/", {"dateFrom": "yesterday"})

        self.assertEqual(future.json()["count"], 0)
        self.assertEqual(past.json()["count"], 0)
        self.assertEqual(invalid.status_code, 400)
        self.assertIn("dateFrom", invalid.json()["errors"])


class LedgerTests(TestCase):
    def test_entries_cannot_be_changed_or_removed(self):
        entry = append_transaction(type=Transaction.Type.INBOUND, item_code="X1", item_name="Widget", quantity=3, to_location="A-1-1")

        entry.quantity = 99
        with self.assertRaises(ImmutableRecord):
            entry.save()
        with self.assertRaises(ImmutableRecord):
            entry.delete()
        with self.assertRaises(ImmutableRecord):
            Transaction.objects.filter(id=entry.id).update(quantity=99)
        with self.assertRaises(ImmutableRecord):
            Transaction.objects.filter(id=entry.id).delete()

        entry.refresh_from_db()
        self.assertEqual(entry.quantity, 3)

    def test_malformed_entries_are_rejected(self):
        with self.assertRaises(ValidationError):
            append_transaction(type=Transaction.Type.INBOUND, item_code="X1", item_name="Widget", quantity=0)
        with self.assertRaises(ValidationError):
            append_transaction(type=Transaction.Type.INBOUND, item_code="", item_name="Widget", quantity=1)
        with self.assertRaises(ValidationError):
            append_transaction(
                type=Transaction.Type.OUTBOUND, item_code="X1", item_name="Widget", quantity=1, to_location="A-1-1"
            )
        with self.assertRaises(ValidationError):
            append_transaction(
                type=Transaction.Type.MOVE, item_code="X1", item_name="Widget", quantity=1, from_location="A-1-1", to_location="A-1-1"
            )
        with self.assertRaises(ValidationError):
            append_transaction(
                type=Transaction.Type.ADJUSTMENT, item_code="X1", item_name="Widget", quantity=2, stock_before=5, stock_after=4
            )
        self.assertFalse(Transaction.objects.exists())

    def test_move_may_touch_the_unassigned_location(self):
        append_transaction(type=Transaction.Type.INBOUND, item_code="X1", item_name="Widget", quantity=6, to_location="A-1-1")
        append_transaction(
            type=Transaction.Type.MOVE, item_code="X1", item_name="Widget", quantity=6, from_location="A-1-1", to_location=None
        )
        append_transaction(
            type=Transaction.Type.MOVE, item_code="X1", item_name="Widget", quantity=2, from_location=None, to_location="B-2-1"
        )

        self.assertEqual(net_quantity("X1", "A-1-1"), 0)
        self.assertEqual(net_quantity("X1", None), 4)
        self.assertEqual(net_quantity("X1", "B-2-1"), 2)

    def test_net_quantity_signs(self):
        append_transaction(type=Transaction.Type.INBOUND, item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        append_transaction(type=Transaction.Type.OUTBOUND, item_code="X1", item_name="Widget", quantity=3, from_location="A-1-1")
        append_transaction(
            type=Transaction.Type.MOVE, item_code="X1", item_name="Widget", quantity=2, from_location="A-1-1", to_location="B-2-1"
        )
        append_transaction(
            type=Transaction.Type.ADJUSTMENT,
            item_code="X1",
            item_name="Widget",
            quantity=4,
            to_location="A-1-1",
            stock_before=5,
            stock_after=1,
        )

        self.assertEqual(net_quantity("X1", "A-1-1"), 1)
        self.assertEqual(net_quantity("X1", "B-2-1"), 2)
        self.assertEqual(net_quantity("X1", None), 0)
        self.assertEqual(net_quantity("Y1", "A-1-1"), 0)


class RegistryTests(TestCase):
    def test_create_rejects_duplicate_key(self):
        create_item(code="X1", name="Widget", location="A-1-1")
        create_item(code="X1", name="Widget", location="A-1-2")
        create_item(code="X1", name="Widget")

        with self.assertRaises(DuplicateKey):
            create_item(code="X1", name="Widget", location="A-1-1")
        with self.assertRaises(DuplicateKey):
            create_item(code="X1", name="Widget")

    def test_find_and_apply_delta(self):
        create_item(code="X1", name="Widget", location="A-1-1", stock=4)

        self.assertEqual(find_item("X1").location, "A-1-1")
        self.assertEqual(apply_delta("X1", "A-1-1", 3).stock, 7)
        with self.assertRaises(ItemNotFound):
            find_item("X1", "B-2-1")
        with self.assertRaises(ItemNotFound):
            apply_delta("X1", "B-2-1", 1)


class LocationTests(TestCase):
    def setUp(self):
        create_layout()

    def test_parse_compose_round_trip_for_layout(self):
        triples = layout_triples()
        self.assertEqual(len(triples), 3)
        for triple in triples:
            self.assertEqual(tuple(parse_location(compose_location(*triple))), triple)

    def test_parse_rejects_malformed_strings(self):
        for value in ["A-1", "A-1-1-1", "A--1", "", "A-1- ", None]:
            with self.assertRaises(InvalidLocationFormat):
                parse_location(value)

    def test_compose_rejects_tokens_with_separator(self):
        with self.assertRaises(InvalidLocationFormat):
            compose_location("A", "1-2", "1")

    def test_validate_and_resolve(self):
        self.assertTrue(validate_location("A", "1", "2"))
        self.assertFalse(validate_location("A", "1", "3"))
        self.assertTrue(validate_location("B", "2", "1", layout={("B", "2", "1")}))
        self.assertEqual(resolve_location(" A - 1 - 2 "), "A-1-2")
        with self.assertRaises(InvalidLocationFormat):
            resolve_location("A-1-3")


class WarehouseLayoutApiTests(InventoryApiTestCase):
    def test_manager_creates_zone_and_viewer_lists(self):
        self.client.force_authenticate(user=self.manager)
        response = self.client.post(
            "/api/v1/warehouse/layout/",
            {"zoneName": "C", "subZoneName": "3", "floors": ["1", "2"]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="warehouse_zone.create").exists())

        self.client.force_authenticate(user=self.viewer)
        listing = self.client.get("/api/v1/warehouse/layout/")
        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["count"], 3)
        self.assertEqual(resolve_location("C-3-2"), "C-3-2")

    def test_zone_names_with_separator_are_rejected(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/warehouse/layout/",
            {"zoneName": "C", "subZoneName": "3-1", "floors": ["1"]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("subZoneName", response.json()["errors"])

    def test_unknown_zone_is_not_found(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/warehouse/layout/8d7f3c1e-0000-4000-8000-000000000000/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")
        self.assertEqual(response.json()["errors"], {"zone_id": "8d7f3c1e-0000-4000-8000-000000000000"})

    def test_duplicate_zone_is_rejected(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/warehouse/layout/",
            {"zoneName": "A", "subZoneName": "1", "floors": ["9"]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_viewer_cannot_change_layout(self):
        self.client.force_authenticate(user=self.viewer)

        response = self.client.post(
            "/api/v1/warehouse/layout/",
            {"zoneName": "C", "subZoneName": "3", "floors": ["1"]},
            format="json",
        )

        self.assertEqual(response.status_code, 403)


class InventoryItemApiTests(InventoryApiTestCase):
    def test_create_and_list_items(self):
        self.client.force_authenticate(user=self.manager)
        response = self.client.post(
            "/api/v1/inventory/",
            {"code": "X1", "name": "Widget", "minStock": 5, "boxSize": 10, "location": "A-1-1"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["stock"], 0)
        self.assertEqual(payload["minStock"], 5)
        self.assertEqual(payload["boxSize"], 10)
        self.assertEqual(payload["unit"], "ea")
        self.assertTrue(payload["isShortage"])

        duplicate = self.client.post("/api/v1/inventory/", {"code": "X1", "name": "Widget", "location": "A-1-1"}, format="json")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["code"], "duplicate_key")

        listing = self.client.get("/api/v1/inventory/", {"code": "X1"})
        self.assertEqual(listing.json()["count"], 1)

    def test_stock_cannot_be_edited_directly(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        item = InventoryItem.objects.get(code="X1")
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/v1/inventory/{item.id}/", {"stock": 99}, format="json")

        self.assertEqual(response.status_code, 400)
        item.refresh_from_db()
        self.assertEqual(item.stock, 10)

    def test_patch_descriptive_fields_and_location(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        item = InventoryItem.objects.get(code="X1")
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(
            f"/api/v1/inventory/{item.id}/",
            {"name": "Widget v2", "minStock": 3, "location": "B-2-1"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        item.refresh_from_db()
        self.assertEqual((item.name, item.min_stock, item.location, item.stock), ("Widget v2", 3, "B-2-1", 10))
        move = Transaction.objects.get(type=Transaction.Type.MOVE)
        self.assertEqual((move.from_location, move.to_location, move.quantity), ("A-1-1", "B-2-1", 10))
        self.assertEqual(verify_ledger(), [])
        self.assertTrue(AuditLog.objects.filter(action="inventory.update", entity_id=item.id).exists())

    def test_unassigning_a_stocked_item_keeps_the_ledger_balanced(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        item = InventoryItem.objects.get(code="X1")
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/v1/inventory/{item.id}/", {"location": None}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["location"])
        item.refresh_from_db()
        self.assertEqual((item.location, item.stock), (None, 10))
        move = Transaction.objects.get(type=Transaction.Type.MOVE)
        self.assertEqual((move.from_location, move.to_location, move.quantity), ("A-1-1", None, 10))
        self.assertEqual(verify_ledger(), [])

        response = self.client.patch(f"/api/v1/inventory/{item.id}/", {"location": "A-1-2"}, format="json")

        self.assertEqual(response.status_code, 200)
        item.refresh_from_db()
        self.assertEqual((item.location, item.stock), ("A-1-2", 10))
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.MOVE).count(), 2)
        self.assertEqual(verify_ledger(), [])

    def test_delete_with_stock_requires_force(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")
        item = InventoryItem.objects.get(code="X1")
        self.client.force_authenticate(user=self.manager)

        blocked = self.client.delete(f"/api/v1/inventory/{item.id}/")
        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.json()["code"], "conflict")
        self.assertTrue(InventoryItem.objects.filter(id=item.id).exists())

        forced = self.client.delete(f"/api/v1/inventory/{item.id}/?force=true")
        self.assertEqual(forced.status_code, 204)
        self.assertFalse(InventoryItem.objects.filter(id=item.id).exists())
        zeroing = Transaction.objects.get(type=Transaction.Type.ADJUSTMENT)
        self.assertEqual((zeroing.stock_before, zeroing.stock_after), (10, 0))
        self.assertEqual(net_quantity("X1", "A-1-1"), 0)
        self.assertTrue(AuditLog.objects.filter(action="inventory.delete", entity_id=item.id).exists())

    def test_delete_empty_record_needs_no_force(self):
        item = create_item(code="X1", name="Widget", location="A-1-1")
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/inventory/{item.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Transaction.objects.exists())

    def test_stats_and_shortages(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=2, to_location="A-1-1", min_stock=5)
        record_inbound(item_code="Y1", item_name="Gadget", quantity=20, to_location="A-1-2", min_stock=5)
        self.client.force_authenticate(user=self.viewer)

        stats = self.client.get("/api/v1/inventory/stats/")
        shortages = self.client.get("/api/v1/inventory/shortages/")

        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.json(), {"totalItems": 2, "totalStock": 22, "shortageItems": 1, "warehouseZones": 2})
        self.assertEqual([row["code"] for row in shortages.json()], ["X1"])


class BomTests(InventoryApiTestCase):
    def test_check_guide_reports_shortage(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=5, to_location="A-1-1")
        BomGuide.objects.create(guide_name="G1", item_code="X1", required_quantity=8)

        report = check_guide("G1")

        self.assertEqual(len(report), 1)
        row = report[0]
        self.assertEqual(
            {key: row[key] for key in ("code", "needed", "current", "status")},
            {"code": "X1", "needed": 8, "current": 5, "status": "shortage"},
        )

    def test_check_guide_sums_all_locations(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=5, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=4, to_location="B-2-1")
        BomGuide.objects.create(guide_name="G1", item_code="X1", required_quantity=8)
        BomGuide.objects.create(guide_name="G1", item_code="Z9", required_quantity=1)

        report = check_guide("G1")

        self.assertEqual(report[0]["current"], 9)
        self.assertEqual(report[0]["status"], "ok")
        self.assertEqual(report[1], {"code": "Z9", "name": "", "needed": 1, "current": 0, "status": "shortage"})
        self.assertEqual(check_guide("G1"), report)

    def test_unknown_guide_is_empty(self):
        self.assertEqual(check_guide("missing"), [])

    def test_bom_api_lifecycle(self):
        self.client.force_authenticate(user=self.manager)
        created = self.client.post(
            "/api/v1/bom/",
            {"guideName": "frame-kit", "components": [{"itemCode": "X1", "requiredQuantity": 2}]},
            format="json",
        )
        self.assertEqual(created.status_code, 201)

        listing = self.client.get("/api/v1/bom/")
        self.assertEqual(listing.json()[0]["guideName"], "frame-kit")
        self.assertEqual(listing.json()[0]["componentCount"], 1)

        detail = self.client.get("/api/v1/bom/frame-kit/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()[0]["requiredQuantity"], 2)

        check = self.client.get("/api/v1/bom/frame-kit/check/")
        self.assertEqual(check.json()[0]["status"], "shortage")

        deleted = self.client.delete("/api/v1/bom/frame-kit/")
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(self.client.get("/api/v1/bom/frame-kit/").status_code, 404)
        self.assertEqual(self.client.delete("/api/v1/bom/frame-kit/").status_code, 404)

    def test_import_replaces_named_guides_and_carries_guide_name(self):
        BomGuide.objects.create(guide_name="G1", item_code="OLD", required_quantity=1)
        BomGuide.objects.create(guide_name="G2", item_code="KEEP", required_quantity=1)

        result = import_bom_rows(
            [
                {"guide_name": "G1", "item_code": "X1", "required_quantity": 2},
                {"guide_name": "", "item_code": "Y1", "required_quantity": 3},
                {"guide_name": "", "item_code": "", "required_quantity": 3},
            ]
        )

        self.assertEqual(result, {"guides": ["G1"], "created": 2, "skipped": 1})
        self.assertEqual(set(BomGuide.objects.filter(guide_name="G1").values_list("item_code", flat=True)), {"X1", "Y1"})
        self.assertTrue(BomGuide.objects.filter(guide_name="G2", item_code="KEEP").exists())

    def test_viewer_cannot_import_bom(self):
        self.client.force_authenticate(user=self.viewer)

        response = self.client.post("/api/v1/bom/import/", {"rows": []}, format="json")

        self.assertEqual(response.status_code, 403)


@override_settings(INVENTORY_DEFECTIVE_EXCHANGE_REASON="불량품 교환 출고")
class ExchangeQueueTests(InventoryApiTestCase):
    def setUp(self):
        super().setUp()
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")

    def test_defective_outbound_queues_exchange_and_processing_restocks(self):
        response = self.post_transaction(
            {"type": "outbound", "itemCode": "X1", "quantity": 2, "fromLocation": "A-1-1", "reason": "불량품 교환 출고"}
        )
        self.assertEqual(response.status_code, 201)
        entry_payload = response.json()["exchangeEntry"]
        self.assertEqual(entry_payload["fromLocation"], "A-1-1")
        self.assertFalse(entry_payload["processed"])
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 8)

        pending = self.client.get("/api/v1/exchange-queue/")
        self.assertEqual(pending.json()["count"], 1)

        processed = self.client.post(f"/api/v1/exchange-queue/{entry_payload['id']}/process/")
        self.assertEqual(processed.status_code, 201)
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 10)
        self.assertTrue(ExchangeQueueEntry.objects.get(id=entry_payload["id"]).processed)
        self.assertEqual(self.client.get("/api/v1/exchange-queue/").json()["count"], 0)

        again = self.client.post(f"/api/v1/exchange-queue/{entry_payload['id']}/process/")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "conflict")
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 10)
        self.assertEqual(verify_ledger(), [])

    def test_regular_outbound_does_not_queue(self):
        record_outbound(item_code="X1", quantity=2, from_location="A-1-1", reason="출고")

        self.assertFalse(ExchangeQueueEntry.objects.exists())

    def test_viewer_cannot_process_exchange(self):
        applied = record_outbound(item_code="X1", quantity=1, from_location="A-1-1", reason="불량품 교환 출고")
        self.client.force_authenticate(user=self.viewer)

        response = self.client.post(f"/api/v1/exchange-queue/{applied.exchange_entry.id}/process/")

        self.assertEqual(response.status_code, 403)


class ImportTests(InventoryApiTestCase):
    def test_bulk_inbound_collects_row_errors(self):
        result = bulk_inbound(
            [
                {"code": "X1", "name": "Widget", "quantity": 5, "location": "A-1-1"},
                {"code": "X1", "quantity": 2, "location": "A-1-1", "memo": "second pallet"},
                {"code": "", "quantity": 5},
                {"code": "Y1", "quantity": 0},
                {"code": "Z1", "quantity": 1, "location": "Q-1-1"},
            ]
        )

        self.assertEqual(result["total"], 5)
        self.assertEqual(result["created"], 2)
        self.assertEqual(result["skipped"], 2)
        self.assertEqual(result["errors"], 1)
        self.assertEqual(result["error_details"][0]["row"], 5)
        self.assertEqual(result["error_details"][0]["error"], "invalid_location_format")
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 7)
        self.assertEqual(Transaction.objects.filter(reason="엑셀 일괄 입고").count(), 2)

    def test_master_import_updates_attributes_without_touching_stock(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=5, to_location="A-1-1")
        record_inbound(item_code="X1", quantity=3, to_location="B-2-1")

        result = import_master(
            [
                {"code": "X1", "name": "Widget Pro", "category": "Parts", "min_stock": 4},
                {"code": "N1", "name": "New part"},
                {"code": ""},
            ]
        )

        self.assertEqual(result, {"total": 3, "updated": 1, "created": 1, "skipped": 1})
        for item in InventoryItem.objects.filter(code="X1"):
            self.assertEqual((item.name, item.category, item.min_stock), ("Widget Pro", "Parts", 4))
        self.assertEqual(total_stock("X1"), 8)
        new_item = InventoryItem.objects.get(code="N1")
        self.assertIsNone(new_item.location)
        self.assertEqual(new_item.stock, 0)

    def test_sync_replaces_records_and_keeps_ledger_balanced(self):
        record_inbound(item_code="X1", item_name="Widget", quantity=30, to_location="A-1-1")
        record_inbound(item_code="GONE", item_name="Retired", quantity=7, to_location="A-1-2")

        result = sync_inventory(
            [
                {"code": "X1", "name": "Widget", "stock": 10, "location": "A-1-1"},
                {"code": "Y1", "name": "Gadget", "stock": 4},
                {"code": "Y1", "name": "Gadget", "stock": 1},
                {"code": "Z1", "stock": 1, "location": "nowhere"},
            ]
        )

        self.assertEqual(result["synced"], 2)
        self.assertEqual(result["errors"], 2)
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 10)
        self.assertEqual(InventoryItem.objects.get(code="Y1").stock, 4)
        self.assertFalse(InventoryItem.objects.filter(code="GONE").exists())
        self.assertEqual(verify_ledger(), [])
        self.assertEqual(net_quantity("GONE", "A-1-2"), 0)
        self.assertEqual(Transaction.objects.filter(reason="재고 전체 동기화").count(), 3)

    def test_upload_endpoints_and_permissions(self):
        self.client.force_authenticate(user=self.manager)
        added = self.client.post(
            "/api/v1/upload/inventory-add/",
            {"rows": [{"code": "X1", "name": "Widget", "quantity": 5, "location": "A-1-1"}]},
            format="json",
        )
        master = self.client.post("/api/v1/upload/master/", {"rows": [{"code": "X1", "boxSize": 12}]}, format="json")
        sync_denied = self.client.post("/api/v1/upload/inventory-sync/", {"rows": []}, format="json")

        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()["created"], 1)
        self.assertEqual(master.status_code, 200)
        self.assertEqual(InventoryItem.objects.get(code="X1").box_size, 12)
        self.assertEqual(sync_denied.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        synced = self.client.post(
            "/api/v1/upload/inventory-sync/",
            {"rows": [{"code": "X1", "name": "Widget", "stock": 2, "location": "A-1-1"}]},
            format="json",
        )
        self.assertEqual(synced.status_code, 200)
        self.assertEqual(synced.json()["synced"], 1)
        self.assertTrue(AuditLog.objects.filter(action="inventory.sync", actor=self.admin).exists())


class LockTests(TestCase):
    def setUp(self):
        create_layout()
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")

    @override_settings(INVENTORY_LOCK_TIMEOUT=0.05)
    def test_held_key_surfaces_busy(self):
        with key_locks.hold(stock_key("X1", "A-1-1")):
            with self.assertRaises(Busy) as ctx:
                record_outbound(item_code="X1", quantity=1, from_location="A-1-1", reason="출고")

        self.assertEqual(ctx.exception.default_code, "busy")
        self.assertEqual(InventoryItem.objects.get(code="X1").stock, 10)
        self.assertEqual(key_locks.active_keys(), [])

    def test_keys_are_released_after_failures(self):
        with self.assertRaises(InsufficientStock):
            record_outbound(item_code="X1", quantity=50, from_location="A-1-1", reason="출고")

        self.assertEqual(key_locks.active_keys(), [])

    def test_hold_acquires_keys_in_sorted_order(self):
        with key_locks.hold(stock_key("X1", "B-2-1"), stock_key("X1", "A-1-1"), stock_key("X1", "A-1-1")):
            self.assertEqual(key_locks.active_keys(), [("X1", "A-1-1"), ("X1", "B-2-1")])


class ConcurrentOutboundTests(TransactionTestCase):
    workers = 6

    def setUp(self):
        create_layout()
        record_inbound(item_code="C1", item_name="Clip", quantity=10, to_location="A-1-1")

    def test_concurrent_outbounds_never_oversell(self):
        results = []
        barrier = threading.Barrier(self.workers)

        def worker():
            try:
                barrier.wait()
                record_outbound(item_code="C1", quantity=3, from_location="A-1-1", reason="출고")
                results.append("ok")
            except InsufficientStock:
                results.append("insufficient")
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), self.workers)
        self.assertEqual(results.count("ok"), 3)
        self.assertEqual(results.count("insufficient"), self.workers - 3)
        self.assertEqual(InventoryItem.objects.get(code="C1").stock, 1)
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.OUTBOUND).count(), 3)
        self.assertEqual(verify_ledger(), [])


class ConcurrentSwappedMoveTests(TransactionTestCase):
    workers = 6
    rounds = 5

    def setUp(self):
        create_layout()
        record_inbound(item_code="C1", item_name="Clip", quantity=50, to_location="A-1-1")
        record_inbound(item_code="C1", quantity=50, to_location="B-2-1")

    def test_opposing_moves_do_not_deadlock(self):
        results = []
        barrier = threading.Barrier(self.workers)

        def worker(source, destination):
            try:
                barrier.wait()
                for _ in range(self.rounds):
                    record_move(item_code="C1", quantity=1, from_location=source, to_location=destination)
                    results.append("ok")
            except Busy:
                results.append("busy")
            finally:
                connection.close()

        threads = []
        for index in range(self.workers):
            route = ("A-1-1", "B-2-1") if index % 2 == 0 else ("B-2-1", "A-1-1")
            threads.append(threading.Thread(target=worker, args=route))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results, ["ok"] * (self.workers * self.rounds))
        self.assertEqual(InventoryItem.objects.get(code="C1", location="A-1-1").stock, 50)
        self.assertEqual(InventoryItem.objects.get(code="C1", location="B-2-1").stock, 50)
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.MOVE).count(), self.workers * self.rounds)
        self.assertEqual(key_locks.active_keys(), [])
        self.assertEqual(verify_ledger(), [])


class ManagementCommandTests(TestCase):
    def test_seed_demo_data_is_repeatable(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(WarehouseZone.objects.count(), 3)
        self.assertEqual(InventoryItem.objects.get(code="PLATE-200").stock, 10)
        report = check_guide("Conveyor module")
        self.assertEqual(len(report), 4)
        self.assertEqual({row["status"] for row in report}, {"ok"})
        self.assertEqual(verify_ledger(), [])

    def test_verify_stock_ledger_reports_drift(self):
        create_layout()
        record_inbound(item_code="X1", item_name="Widget", quantity=10, to_location="A-1-1")

        out = StringIO()
        call_command("verify_stock_ledger", stdout=out)
        self.assertIn("matches the ledger", out.getvalue())

        InventoryItem.objects.filter(code="X1").update(stock=12)
        out = StringIO()
        call_command("verify_stock_ledger", stdout=out)
        self.assertIn("diff=2", out.getvalue())
        with self.assertRaises(CommandError):
            call_command("verify_stock_ledger", "--fail", stdout=StringIO())
