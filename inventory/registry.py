import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.db.models.functions import Coalesce
from rest_framework.exceptions import ValidationError

from common.utils import normalize_text, optional_text
from inventory.exceptions import Conflict, DuplicateKey, ItemNotFound
from inventory.ledger import append_transaction
from inventory.locations import resolve_location
from inventory.locks import key_locks, stock_key
from inventory.models import InventoryItem, Transaction, WarehouseZone

logger = logging.getLogger(__name__)

UNSET = object()

DESCRIPTIVE_FIELDS = ("name", "category", "manufacturer", "unit", "box_size", "min_stock")
ADMIN_DELETE_REASON = "관리자 삭제"
RELOCATE_REASON = "위치 지정"


def _key_filter(code, location):
    if location is None:
        return {"code": code, "location__isnull": True}
    return {"code": code, "location": location}


def find_item(code, location=UNSET, *, for_update=False):
    """Exact lookup by code and location; the first record by creation when location is omitted."""
    qs = InventoryItem.objects.all()
    if for_update:
        qs = qs.select_for_update()

    if location is UNSET:
        item = qs.filter(code=code).order_by("created_at").first()
    else:
        item = qs.filter(**_key_filter(code, location)).first()

    if item is None:
        raise ItemNotFound(item_code=code, location=None if location is UNSET else location)
    return item


def item_exists(code, location):
    return InventoryItem.objects.filter(**_key_filter(code, location)).exists()


def items_for_code(code):
    return InventoryItem.objects.filter(code=code).order_by("created_at")


def total_stock(code):
    return InventoryItem.objects.filter(code=code).aggregate(total=Coalesce(Sum("stock"), 0))["total"]


def descriptive_defaults(code):
    """Descriptive attributes of an existing record for `code`, used to fill new locations."""
    known = items_for_code(code).first()
    if known is None:
        return {}
    return {field: getattr(known, field) for field in DESCRIPTIVE_FIELDS}


def create_item(*, code, name, location=None, stock=0, category="", manufacturer="", unit=None, box_size=1, min_stock=0):
    code = normalize_text(code)
    name = normalize_text(name)
    location = optional_text(location)
    if not code:
        raise ValidationError({"code": "This field is required."})
    if not name:
        raise ValidationError({"name": "This field is required."})
    if item_exists(code, location):
        raise DuplicateKey(item_code=code, location=location)

    try:
        with transaction.atomic():
            return InventoryItem.objects.create(
                code=code,
                name=name,
                location=location,
                stock=stock,
                category=category or "",
                manufacturer=manufacturer or "",
                unit=unit or getattr(settings, "INVENTORY_DEFAULT_UNIT", "ea"),
                box_size=box_size or 1,
                min_stock=min_stock or 0,
            )
    except IntegrityError as exc:
        raise DuplicateKey(item_code=code, location=location) from exc


def apply_delta(code, location, delta):
    """Atomically add `delta` to the stock of (code, location) and return the fresh record."""
    with transaction.atomic():
        item = find_item(code, location, for_update=True)
        item.stock = item.stock + delta
        item.save(update_fields=["stock", "updated_at"])
    return item


def update_descriptive(item, **changes):
    fields = []
    for field in DESCRIPTIVE_FIELDS:
        if field in changes and changes[field] is not None:
            setattr(item, field, changes[field])
            fields.append(field)
    if fields:
        item.save(update_fields=fields + ["updated_at"])
    return item


def set_location(code, new_location, *, current_location=UNSET, user=None):
    """Reassign a stock record to another location.

    Positive stock travels with the record and is written to the ledger as a
    move so the per-location history stays balanced; `new_location=None`
    unassigns the record. Oversold records must be adjusted before they can be
    relocated.
    """
    new_location = optional_text(new_location)
    if new_location is not None:
        new_location = resolve_location(new_location)
    if current_location is UNSET:
        candidates = list(items_for_code(code))
        if not candidates:
            raise ItemNotFound(item_code=code)
        if len(candidates) > 1:
            raise ValidationError({"location": "Item is stored at several locations; specify the current location."})
        current_location = candidates[0].location

    if current_location == new_location:
        return find_item(code, current_location)

    with key_locks.hold(stock_key(code, current_location), stock_key(code, new_location)):
        with transaction.atomic():
            item = find_item(code, current_location, for_update=True)
            if item_exists(code, new_location):
                raise DuplicateKey(item_code=code, location=new_location)
            if item.stock < 0:
                raise ValidationError({"stock": "Oversold stock must be adjusted before relocation."})

            if item.stock > 0:
                append_transaction(
                    type=Transaction.Type.MOVE,
                    item_code=item.code,
                    item_name=item.name,
                    quantity=item.stock,
                    from_location=current_location,
                    to_location=new_location,
                    reason=RELOCATE_REASON,
                    user=user,
                )
            item.location = new_location
            item.save(update_fields=["location", "updated_at"])

    logger.info("item_relocated", extra={"item_code": code, "location": new_location})
    return item


def delete_items(code, location=UNSET, *, force=False, user=None):
    """Delete stock records for a code; non-zero stock requires `force`.

    A forced delete first records an adjustment to zero so a later record at
    the same location starts from a balanced ledger. Returns deleted records.
    """
    if location is UNSET:
        targets = list(items_for_code(code))
    else:
        targets = list(InventoryItem.objects.filter(**_key_filter(code, location)))
    if not targets:
        raise ItemNotFound(item_code=code)

    keys = [stock_key(item.code, item.location) for item in targets]
    deleted = []
    with key_locks.hold(*keys):
        with transaction.atomic():
            for target in targets:
                item = find_item(target.code, target.location, for_update=True)
                if item.stock != 0 and not force:
                    raise Conflict(
                        "Item still holds stock; pass force to delete it.",
                        item_code=item.code,
                        location=item.location,
                        stock=item.stock,
                    )
                if item.stock != 0:
                    append_transaction(
                        type=Transaction.Type.ADJUSTMENT,
                        item_code=item.code,
                        item_name=item.name,
                        quantity=abs(item.stock),
                        to_location=item.location,
                        reason=ADMIN_DELETE_REASON,
                        stock_before=item.stock,
                        stock_after=0,
                        user=user,
                    )
                deleted.append(item)
                item.delete()

    logger.info("items_deleted", extra={"item_code": code, "quantity": len(deleted)})
    return deleted


def inventory_stats():
    totals = InventoryItem.objects.aggregate(total_items=Count("id"), total_stock=Coalesce(Sum("stock"), 0))
    return {
        "total_items": totals["total_items"],
        "total_stock": totals["total_stock"],
        "shortage_items": shortage_items().count(),
        "warehouse_zones": WarehouseZone.objects.count(),
    }


def shortage_items():
    return InventoryItem.objects.filter(stock__lt=F("min_stock")).order_by("code", "location")
