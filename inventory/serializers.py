from rest_framework import serializers

from inventory.locations import SEPARATOR, is_valid_token
from inventory.models import BomGuide, ExchangeQueueEntry, InventoryItem, Transaction, WarehouseZone


class InventoryItemSerializer(serializers.ModelSerializer):
    minStock = serializers.IntegerField(source="min_stock", min_value=0, required=False)
    boxSize = serializers.IntegerField(source="box_size", min_value=1, required=False)
    isShortage = serializers.BooleanField(source="is_shortage", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            "id",
            "code",
            "name",
            "category",
            "manufacturer",
            "stock",
            "minStock",
            "unit",
            "location",
            "boxSize",
            "isShortage",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = ["id", "stock", "location"]


class InventoryItemCreateSerializer(serializers.Serializer):
    """Explicit creation of an empty stock record; stock arrives through inbound transactions."""

    code = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255)
    category = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    manufacturer = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    minStock = serializers.IntegerField(source="min_stock", min_value=0, required=False, default=0)
    boxSize = serializers.IntegerField(source="box_size", min_value=1, required=False, default=1)
    location = serializers.CharField(max_length=128, required=False, allow_null=True, allow_blank=True, default=None)


class InventoryItemUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    category = serializers.CharField(max_length=128, required=False, allow_blank=True)
    manufacturer = serializers.CharField(max_length=128, required=False, allow_blank=True)
    unit = serializers.CharField(max_length=32, required=False)
    minStock = serializers.IntegerField(source="min_stock", min_value=0, required=False)
    boxSize = serializers.IntegerField(source="box_size", min_value=1, required=False)
    location = serializers.CharField(max_length=128, required=False, allow_null=True, allow_blank=True)

    def validate(self, attrs):
        if "stock" in self.initial_data:
            raise serializers.ValidationError({"stock": "Stock changes go through transactions or adjustments."})
        return attrs


class StockAdjustmentSerializer(serializers.Serializer):
    newStock = serializers.IntegerField(source="new_stock", min_value=0)
    reason = serializers.CharField(max_length=255)
    memo = serializers.CharField(required=False, allow_blank=True, default="")


class TransactionSerializer(serializers.ModelSerializer):
    itemCode = serializers.CharField(source="item_code", read_only=True)
    itemName = serializers.CharField(source="item_name", read_only=True)
    fromLocation = serializers.CharField(source="from_location", read_only=True)
    toLocation = serializers.CharField(source="to_location", read_only=True)
    stockBefore = serializers.IntegerField(source="stock_before", read_only=True)
    stockAfter = serializers.IntegerField(source="stock_after", read_only=True)
    userId = serializers.UUIDField(source="user_id", read_only=True)
    username = serializers.CharField(source="user.username", read_only=True, default=None)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "type",
            "itemCode",
            "itemName",
            "quantity",
            "fromLocation",
            "toLocation",
            "reason",
            "memo",
            "stockBefore",
            "stockAfter",
            "userId",
            "username",
            "createdAt",
        ]
        read_only_fields = fields


class BaseIntentSerializer(serializers.Serializer):
    itemCode = serializers.CharField(source="item_code", max_length=64)
    itemName = serializers.CharField(source="item_name", max_length=255, required=False, allow_blank=True)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    memo = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")

    def validate_memo(self, value):
        return value or ""


class InboundIntentSerializer(BaseIntentSerializer):
    quantity = serializers.IntegerField(min_value=1)
    toLocation = serializers.CharField(source="to_location", max_length=128, required=False, allow_null=True, allow_blank=True)
    category = serializers.CharField(max_length=128, required=False, allow_blank=True)
    manufacturer = serializers.CharField(max_length=128, required=False, allow_blank=True)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True)
    boxSize = serializers.IntegerField(source="box_size", min_value=1, required=False)
    minStock = serializers.IntegerField(source="min_stock", min_value=0, required=False)


class OutboundIntentSerializer(BaseIntentSerializer):
    quantity = serializers.IntegerField(min_value=1)
    fromLocation = serializers.CharField(source="from_location", max_length=128, required=False, allow_null=True, allow_blank=True)
    reason = serializers.CharField(max_length=255)


class MoveIntentSerializer(BaseIntentSerializer):
    quantity = serializers.IntegerField(min_value=1)
    fromLocation = serializers.CharField(source="from_location", max_length=128, required=False, allow_null=True, allow_blank=True)
    toLocation = serializers.CharField(source="to_location", max_length=128)


class AdjustmentIntentSerializer(serializers.Serializer):
    itemCode = serializers.CharField(source="item_code", max_length=64)
    location = serializers.CharField(max_length=128, required=False, allow_null=True, allow_blank=True)
    newStock = serializers.IntegerField(source="new_stock", min_value=0)
    reason = serializers.CharField(max_length=255)
    memo = serializers.CharField(required=False, allow_blank=True, default="")


INTENT_SERIALIZERS = {
    Transaction.Type.INBOUND: InboundIntentSerializer,
    Transaction.Type.OUTBOUND: OutboundIntentSerializer,
    Transaction.Type.MOVE: MoveIntentSerializer,
    Transaction.Type.ADJUSTMENT: AdjustmentIntentSerializer,
}


class TransactionIntentSerializer(serializers.Serializer):
    """Validates a transaction intent with the schema matching its `type`."""

    type = serializers.ChoiceField(choices=Transaction.Type.choices)

    def validate(self, attrs):
        intent_serializer = INTENT_SERIALIZERS[attrs["type"]](data=self.initial_data)
        intent_serializer.is_valid(raise_exception=True)
        return {"type": attrs["type"], **intent_serializer.validated_data}


class WarehouseZoneSerializer(serializers.ModelSerializer):
    zoneName = serializers.CharField(source="zone_name", max_length=64)
    subZoneName = serializers.CharField(source="sub_zone_name", max_length=64)
    floors = serializers.ListField(child=serializers.CharField(max_length=32), allow_empty=False)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = WarehouseZone
        fields = ["id", "zoneName", "subZoneName", "floors", "createdAt"]
        read_only_fields = ["id", "createdAt"]
        # (zone_name, sub_zone_name) uniqueness is checked in validate() with camelCase error keys.
        validators = []

    def _check_token(self, value, field):
        value = value.strip()
        if not is_valid_token(value):
            raise serializers.ValidationError({field: f"Names may not be blank or contain '{SEPARATOR}'."})
        return value

    def validate(self, attrs):
        attrs["zone_name"] = self._check_token(attrs.get("zone_name", getattr(self.instance, "zone_name", "")), "zoneName")
        attrs["sub_zone_name"] = self._check_token(
            attrs.get("sub_zone_name", getattr(self.instance, "sub_zone_name", "")), "subZoneName"
        )
        if "floors" in attrs:
            floors = [self._check_token(floor, "floors") for floor in attrs["floors"]]
            if len(set(floors)) != len(floors):
                raise serializers.ValidationError({"floors": "Floor labels must be unique within a zone."})
            attrs["floors"] = floors

        duplicates = WarehouseZone.objects.filter(zone_name=attrs["zone_name"], sub_zone_name=attrs["sub_zone_name"])
        if self.instance is not None:
            duplicates = duplicates.exclude(id=self.instance.id)
        if duplicates.exists():
            raise serializers.ValidationError({"subZoneName": "This zone and sub zone already exist."})
        return attrs


class BomGuideSerializer(serializers.ModelSerializer):
    guideName = serializers.CharField(source="guide_name", read_only=True)
    itemCode = serializers.CharField(source="item_code", read_only=True)
    requiredQuantity = serializers.IntegerField(source="required_quantity", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = BomGuide
        fields = ["id", "guideName", "itemCode", "requiredQuantity", "createdAt"]
        read_only_fields = fields


class BomComponentSerializer(serializers.Serializer):
    itemCode = serializers.CharField(source="item_code", max_length=64)
    requiredQuantity = serializers.IntegerField(source="required_quantity", min_value=1)


class BomGuideCreateSerializer(serializers.Serializer):
    guideName = serializers.CharField(source="guide_name", max_length=128)
    components = BomComponentSerializer(many=True, allow_empty=False)


class BomImportRowSerializer(serializers.Serializer):
    guideName = serializers.CharField(source="guide_name", max_length=128, required=False, allow_blank=True, allow_null=True)
    itemCode = serializers.CharField(source="item_code", max_length=64, required=False, allow_blank=True, allow_null=True)
    requiredQuantity = serializers.IntegerField(source="required_quantity", required=False, allow_null=True)


class ExchangeQueueEntrySerializer(serializers.ModelSerializer):
    itemCode = serializers.CharField(source="item_code", read_only=True)
    itemName = serializers.CharField(source="item_name", read_only=True)
    fromLocation = serializers.CharField(source="from_location", read_only=True)
    outboundTransactionId = serializers.UUIDField(source="outbound_transaction_id", read_only=True)
    outboundDate = serializers.DateTimeField(source="outbound_date", read_only=True)
    processedAt = serializers.DateTimeField(source="processed_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = ExchangeQueueEntry
        fields = [
            "id",
            "itemCode",
            "itemName",
            "quantity",
            "fromLocation",
            "outboundTransactionId",
            "outboundDate",
            "processed",
            "processedAt",
            "createdAt",
        ]
        read_only_fields = fields


class InboundImportRowSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    quantity = serializers.IntegerField(required=False, allow_null=True)
    location = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)
    memo = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class MasterImportRowSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    category = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)
    manufacturer = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)
    boxSize = serializers.IntegerField(source="box_size", min_value=1, required=False, allow_null=True)
    minStock = serializers.IntegerField(source="min_stock", min_value=0, required=False, allow_null=True)


class SyncImportRowSerializer(MasterImportRowSerializer):
    stock = serializers.IntegerField(required=False, allow_null=True, default=0)
    location = serializers.CharField(max_length=128, required=False, allow_blank=True, allow_null=True)


class ImportRowsSerializer(serializers.Serializer):
    """Envelope for already-normalized import rows: `{"rows": [...]}`."""

    row_serializer_class = None

    def get_fields(self):
        fields = super().get_fields()
        fields["rows"] = self.row_serializer_class(many=True)
        return fields


class InboundImportSerializer(ImportRowsSerializer):
    row_serializer_class = InboundImportRowSerializer


class MasterImportSerializer(ImportRowsSerializer):
    row_serializer_class = MasterImportRowSerializer


class SyncImportSerializer(ImportRowsSerializer):
    row_serializer_class = SyncImportRowSerializer


class BomImportSerializer(ImportRowsSerializer):
    row_serializer_class = BomImportRowSerializer
