from datetime import datetime, time

from django.db.models import Q
from django.http import Http404
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.pagination import StandardResultsSetPagination
from common.permissions import RoleCapabilityPermission
from common.utils import optional_text, parse_bool
from inventory.bom import check_guide, create_guide_rows, delete_guide, guide_rows, guide_summaries, import_bom_rows
from inventory.exceptions import GuideNotFound, ZoneNotFound
from inventory.ledger import query_transactions
from inventory.locations import resolve_location
from inventory.models import ExchangeQueueEntry, InventoryItem, Transaction, WarehouseZone
from inventory.registry import create_item, delete_items, inventory_stats, set_location, shortage_items, update_descriptive
from inventory.serializers import (
    BomGuideCreateSerializer,
    BomGuideSerializer,
    BomImportSerializer,
    ExchangeQueueEntrySerializer,
    InboundImportSerializer,
    InventoryItemCreateSerializer,
    InventoryItemSerializer,
    InventoryItemUpdateSerializer,
    MasterImportSerializer,
    StockAdjustmentSerializer,
    SyncImportSerializer,
    TransactionIntentSerializer,
    TransactionSerializer,
    WarehouseZoneSerializer,
)
from inventory.services import apply_transaction, bulk_inbound, import_master, process_exchange, record_adjustment, sync_inventory

INVENTORY_ENTITY = "inventory_item"


def applied_payload(applied):
    return {
        "transaction": TransactionSerializer(applied.transaction).data,
        "items": InventoryItemSerializer(applied.items, many=True).data,
        "exchangeEntry": ExchangeQueueEntrySerializer(applied.exchange_entry).data if applied.exchange_entry else None,
    }


def parse_date_boundary(value, *, field, end=False):
    """Accept an ISO datetime or a bare date; bare dates cover the whole day."""
    if not value:
        return None
    try:
        day = parse_date(value)
        if day is not None:
            parsed = datetime.combine(day, time.max if end else time.min)
        else:
            parsed = parse_datetime(value)
        if parsed is None:
            raise ValueError(value)
    except ValueError:
        raise ValidationError({field: "Use an ISO date or datetime."})
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance=None, entity_id=None, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=entity_id or getattr(instance, "id", None),
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )


class InventoryItemViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = InventoryItem.objects.all()
    serializer_class = InventoryItemSerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "stats": "inventory.view",
        "shortages": "inventory.view",
        "create": "inventory.manage",
        "partial_update": "inventory.manage",
        "destroy": "inventory.manage",
        "adjust": "stock.adjust",
    }
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]
    audit_entity = INVENTORY_ENTITY

    def get_queryset(self):
        qs = self.queryset.order_by("code", "created_at")
        params = self.request.query_params

        code = params.get("code")
        location = params.get("location")
        category = params.get("category")
        search = params.get("search")

        if code:
            qs = qs.filter(code=code)
        if location:
            qs = qs.filter(location=location)
        if category:
            qs = qs.filter(category=category)
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search))
        if parse_bool(params.get("unassigned")):
            qs = qs.filter(location__isnull=True)
        return qs

    def create(self, request, *args, **kwargs):
        serializer = InventoryItemCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        location = optional_text(data.pop("location", None))
        if location is not None:
            location = resolve_location(location)

        item = create_item(location=location, stock=0, **data)
        payload = self.get_serializer(item).data
        self._audit(action="inventory.create", instance=item, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        item = self.get_object()
        serializer = InventoryItemUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        before_snapshot = self.get_serializer(item).data

        if "location" in changes:
            new_location = changes.pop("location")
            item = set_location(item.code, new_location, current_location=item.location, user=request.user)
        item = update_descriptive(item, **changes)

        payload = self.get_serializer(item).data
        self._audit(action="inventory.update", instance=item, before_snapshot=before_snapshot, after_snapshot=payload)
        return Response(payload)

    def destroy(self, request, *args, **kwargs):
        item = self.get_object()
        force = parse_bool(request.query_params.get("force"))
        before_snapshot = self.get_serializer(item).data
        delete_items(item.code, item.location, force=force, user=request.user)
        self._audit(action="inventory.delete", entity_id=before_snapshot["id"], before_snapshot=before_snapshot)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="adjust")
    def adjust(self, request, pk=None):
        item = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_snapshot = self.get_serializer(item).data
        applied = record_adjustment(item_code=item.code, location=item.location, user=request.user, **serializer.validated_data)
        payload = applied_payload(applied)
        self._audit(
            action="stock.adjust",
            instance=item,
            before_snapshot=before_snapshot,
            after_snapshot=payload["items"][0],
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        stats = inventory_stats()
        return Response(
            {
                "totalItems": stats["total_items"],
                "totalStock": stats["total_stock"],
                "shortageItems": stats["shortage_items"],
                "warehouseZones": stats["warehouse_zones"],
            }
        )

    @action(detail=False, methods=["get"], url_path="shortages")
    def shortages(self, request):
        return Response(self.get_serializer(shortage_items(), many=True).data)


class TransactionViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = TransactionSerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "transaction.process",
    }

    def get_queryset(self):
        params = self.request.query_params
        transaction_type = params.get("type")
        if transaction_type and transaction_type not in Transaction.Type.values:
            raise ValidationError({"type": f"Unknown transaction type {transaction_type!r}."})

        return query_transactions(
            item_code=params.get("itemCode"),
            type=transaction_type,
            date_from=parse_date_boundary(params.get("dateFrom"), field="dateFrom"),
            date_to=parse_date_boundary(params.get("dateTo"), field="dateTo", end=True),
        )

    def create(self, request, *args, **kwargs):
        serializer = TransactionIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        applied = apply_transaction(serializer.validated_data, user=request.user)
        return Response(applied_payload(applied), status=status.HTTP_201_CREATED)


class WarehouseZoneViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = WarehouseZone.objects.all()
    serializer_class = WarehouseZoneSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "warehouse.manage",
        "update": "warehouse.manage",
        "partial_update": "warehouse.manage",
        "destroy": "warehouse.manage",
    }
    audit_entity = "warehouse_zone"

    def get_object(self):
        try:
            return super().get_object()
        except Http404 as exc:
            raise ZoneNotFound(zone_id=str(self.kwargs.get(self.lookup_field))) from exc

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit(action="warehouse_zone.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action="warehouse_zone.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        self._audit(action="warehouse_zone.delete", instance=instance, before_snapshot=self.get_serializer(instance).data)
        instance.delete()


class BomGuideViewSet(AuditedMutationMixin, viewsets.ViewSet):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "check": "inventory.view",
        "create": "bom.manage",
        "destroy": "bom.manage",
        "import_rows": "bom.manage",
    }
    lookup_field = "guide_name"
    lookup_value_regex = "[^/]+"
    audit_entity = "bom_guide"

    def list(self, request):
        return Response(
            [
                {
                    "guideName": row["guide_name"],
                    "componentCount": row["component_count"],
                    "createdAt": row["first_created_at"],
                }
                for row in guide_summaries()
            ]
        )

    def retrieve(self, request, guide_name=None):
        rows = guide_rows(guide_name)
        if not rows.exists():
            raise GuideNotFound(guide_name=guide_name)
        return Response(BomGuideSerializer(rows, many=True).data)

    def create(self, request):
        serializer = BomGuideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        rows = create_guide_rows(serializer.validated_data["guide_name"], serializer.validated_data["components"])
        payload = BomGuideSerializer(rows, many=True).data
        self._audit(action="bom_guide.create", after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def destroy(self, request, guide_name=None):
        before_snapshot = BomGuideSerializer(guide_rows(guide_name), many=True).data
        delete_guide(guide_name)
        self._audit(action="bom_guide.delete", before_snapshot=before_snapshot)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"], url_path="check")
    def check(self, request, guide_name=None):
        return Response(check_guide(guide_name))

    @action(detail=False, methods=["post"], url_path="import")
    def import_rows(self, request):
        serializer = BomImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = import_bom_rows(serializer.validated_data["rows"])
        self._audit(action="bom_guide.import", after_snapshot=result)
        return Response(result)


class ExchangeQueueViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = ExchangeQueueEntry.objects.all()
    serializer_class = ExchangeQueueEntrySerializer
    pagination_class = StandardResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "process": "exchange.process",
    }

    def get_queryset(self):
        qs = self.queryset.order_by("outbound_date")
        if self.action == "list":
            qs = qs.filter(processed=parse_bool(self.request.query_params.get("processed")))
        return qs

    @action(detail=True, methods=["post"], url_path="process")
    def process(self, request, pk=None):
        entry = self.get_object()
        applied = process_exchange(entry.id, user=request.user)
        return Response(applied_payload(applied), status=status.HTTP_201_CREATED)


class ImportUploadView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "inventory.import"}
    serializer_class = None
    audit_action = None

    def run(self, rows, user):
        raise NotImplementedError

    def post(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.run(serializer.validated_data["rows"], request.user)
        create_audit_log_from_request(request, action=self.audit_action, entity=INVENTORY_ENTITY, after_snapshot=result)
        return Response(result)


class InventoryAddUploadView(ImportUploadView):
    serializer_class = InboundImportSerializer
    audit_action = "inventory.import_inbound"

    def run(self, rows, user):
        return bulk_inbound(rows, user=user)


class MasterUploadView(ImportUploadView):
    serializer_class = MasterImportSerializer
    audit_action = "inventory.import_master"

    def run(self, rows, user):
        return import_master(rows)


class InventorySyncUploadView(ImportUploadView):
    permission_action_map = {"post": "inventory.sync"}
    serializer_class = SyncImportSerializer
    audit_action = "inventory.sync"

    def run(self, rows, user):
        return sync_inventory(rows, user=user)
