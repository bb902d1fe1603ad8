import logging
from collections import namedtuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import APIException, NotFound, ValidationError

from common.utils import normalize_text, optional_text
from inventory.exceptions import Conflict, InsufficientStock, ItemNotFound, SameLocation
from inventory.ledger import append_transaction, net_quantity
from inventory.locations import resolve_location
from inventory.locks import key_locks, stock_key
from inventory.models import ExchangeQueueEntry, InventoryItem, Transaction
from inventory.registry import (
    DESCRIPTIVE_FIELDS,
    UNSET,
    apply_delta,
    create_item,
    descriptive_defaults,
    find_item,
    item_exists,
    items_for_code,
    total_stock,
    update_descriptive,
)

logger = logging.getLogger(__name__)

DEFAULT_DEFECTIVE_EXCHANGE_REASON = "불량품 교환 출고"
EXCHANGE_INBOUND_REASON = "불량품 교환 입고"
BULK_INBOUND_REASON = "엑셀 일괄 입고"
SYNC_REASON = "재고 전체 동기화"

AppliedTransaction = namedtuple("AppliedTransaction", ["transaction", "items", "exchange_entry"])


def defective_exchange_reason():
    return getattr(settings, "INVENTORY_DEFECTIVE_EXCHANGE_REASON", DEFAULT_DEFECTIVE_EXCHANGE_REASON)


def _require_quantity(quantity):
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError({"quantity": "Quantity must be a positive integer."})


def _require_code(item_code):
    code = normalize_text(item_code)
    if not code:
        raise ValidationError({"item_code": "This field is required."})
    return code


def _log_applied(entry):
    logger.info(
        "transaction_applied",
        extra={
            "item_code": entry.item_code,
            "location": entry.to_location or entry.from_location,
            "transaction_type": entry.type,
            "quantity": entry.quantity,
        },
    )


def _pick_source(code, quantity, *, exclude=UNSET):
    """Location of the oldest record for `code` that can cover `quantity`.

    `exclude` names a location that may not serve as the source, e.g. a move's destination.
    """
    candidates = list(items_for_code(code))
    if not candidates:
        raise ItemNotFound(item_code=code)
    for item in candidates:
        if exclude is not UNSET and item.location == exclude:
            continue
        if item.stock >= quantity:
            return item.location
    raise InsufficientStock(item_code=code, available=total_stock(code), requested=quantity)


def _credit_locked(code, location, quantity, attributes):
    """Credit (code, location), creating the record when it does not exist yet.

    Caller holds the key lock and an open atomic block. Missing descriptive
    attributes of a new record are copied from the same product at another
    location; a product never seen before is named after its code.
    """
    if item_exists(code, location):
        return apply_delta(code, location, quantity)

    known = descriptive_defaults(code)
    values = {field: attributes.get(field) for field in DESCRIPTIVE_FIELDS}
    for field, value in known.items():
        if values.get(field) in (None, ""):
            values[field] = value
    values["name"] = values.get("name") or code

    return create_item(code=code, location=location, stock=quantity, **values)


def record_inbound(
    *,
    item_code,
    quantity,
    to_location=None,
    item_name=None,
    category=None,
    manufacturer=None,
    unit=None,
    box_size=None,
    min_stock=None,
    reason="",
    memo="",
    user=None,
):
    code = _require_code(item_code)
    _require_quantity(quantity)
    to_location = optional_text(to_location)
    if to_location is not None:
        to_location = resolve_location(to_location)

    attributes = {
        "name": normalize_text(item_name),
        "category": category,
        "manufacturer": manufacturer,
        "unit": unit,
        "box_size": box_size,
        "min_stock": min_stock,
    }

    with key_locks.hold(stock_key(code, to_location)):
        with transaction.atomic():
            item = _credit_locked(code, to_location, quantity, attributes)
            entry = append_transaction(
                type=Transaction.Type.INBOUND,
                item_code=code,
                item_name=attributes["name"] or item.name,
                quantity=quantity,
                to_location=to_location,
                reason=reason,
                memo=memo,
                user=user,
            )

    _log_applied(entry)
    return AppliedTransaction(entry, [item], None)


def record_outbound(*, item_code, quantity, from_location=UNSET, item_name=None, reason="", memo="", user=None):
    """Debit stock; a defective-exchange reason also queues a compensating inbound.

    Without `from_location` the oldest record able to cover the quantity is used.
    """
    code = _require_code(item_code)
    _require_quantity(quantity)
    if from_location is UNSET:
        from_location = _pick_source(code, quantity)
    else:
        from_location = optional_text(from_location)

    exchange_entry = None
    with key_locks.hold(stock_key(code, from_location)):
        with transaction.atomic():
            item = find_item(code, from_location, for_update=True)
            if item.stock < quantity:
                raise InsufficientStock(
                    item_code=code,
                    location=from_location,
                    available=item.stock,
                    requested=quantity,
                )
            item = apply_delta(code, from_location, -quantity)
            entry = append_transaction(
                type=Transaction.Type.OUTBOUND,
                item_code=code,
                item_name=normalize_text(item_name) or item.name,
                quantity=quantity,
                from_location=from_location,
                reason=reason,
                memo=memo,
                user=user,
            )
            if normalize_text(reason) == defective_exchange_reason():
                exchange_entry = ExchangeQueueEntry.objects.create(
                    item_code=code,
                    item_name=entry.item_name,
                    quantity=quantity,
                    from_location=from_location,
                    outbound_transaction=entry,
                    outbound_date=entry.created_at,
                )

    _log_applied(entry)
    return AppliedTransaction(entry, [item], exchange_entry)


def record_move(*, item_code, quantity, to_location, from_location=UNSET, item_name=None, reason="", memo="", user=None):
    """Relocate stock between two records of the same product in one ledger entry."""
    code = _require_code(item_code)
    _require_quantity(quantity)
    if not optional_text(to_location):
        raise ValidationError({"to_location": "This field is required for a move."})
    to_location = resolve_location(to_location)
    if from_location is UNSET:
        from_location = _pick_source(code, quantity, exclude=to_location)
    else:
        from_location = optional_text(from_location)

    if from_location == to_location:
        raise SameLocation(item_code=code, location=to_location)

    with key_locks.hold(stock_key(code, from_location), stock_key(code, to_location)):
        with transaction.atomic():
            source = find_item(code, from_location, for_update=True)
            if source.stock < quantity:
                raise InsufficientStock(
                    item_code=code,
                    location=from_location,
                    available=source.stock,
                    requested=quantity,
                )
            source = apply_delta(code, from_location, -quantity)
            destination = _credit_locked(
                code,
                to_location,
                quantity,
                {field: getattr(source, field) for field in DESCRIPTIVE_FIELDS},
            )
            entry = append_transaction(
                type=Transaction.Type.MOVE,
                item_code=code,
                item_name=normalize_text(item_name) or source.name,
                quantity=quantity,
                from_location=from_location,
                to_location=to_location,
                reason=reason,
                memo=memo,
                user=user,
            )

    _log_applied(entry)
    return AppliedTransaction(entry, [source, destination], None)


def record_adjustment(*, item_code, new_stock, reason, location=UNSET, memo="", user=None):
    """Correct a record to an absolute stock value, keeping the before/after pair."""
    code = _require_code(item_code)
    if not isinstance(new_stock, int) or isinstance(new_stock, bool) or new_stock < 0:
        raise ValidationError({"new_stock": "New stock must be a non-negative integer."})
    if not normalize_text(reason):
        raise ValidationError({"reason": "A reason is required for stock adjustments."})

    if location is UNSET:
        candidates = list(items_for_code(code))
        if not candidates:
            raise ItemNotFound(item_code=code)
        if len(candidates) > 1:
            raise ValidationError({"location": "Item is stored at several locations; specify which one to adjust."})
        location = candidates[0].location
    else:
        location = optional_text(location)

    with key_locks.hold(stock_key(code, location)):
        with transaction.atomic():
            item = find_item(code, location, for_update=True)
            stock_before = item.stock
            delta = new_stock - stock_before
            if delta == 0:
                raise ValidationError({"new_stock": "New stock equals the current stock."})
            item = apply_delta(code, location, delta)
            entry = append_transaction(
                type=Transaction.Type.ADJUSTMENT,
                item_code=code,
                item_name=item.name,
                quantity=abs(delta),
                to_location=location,
                reason=reason,
                memo=memo,
                stock_before=stock_before,
                stock_after=item.stock,
                user=user,
            )

    _log_applied(entry)
    return AppliedTransaction(entry, [item], None)


def apply_transaction(intent, user=None):
    """Apply one validated transaction intent (see `TransactionIntentSerializer`)."""
    intent = dict(intent)
    transaction_type = intent.pop("type")
    handlers = {
        Transaction.Type.INBOUND: record_inbound,
        Transaction.Type.OUTBOUND: record_outbound,
        Transaction.Type.MOVE: record_move,
        Transaction.Type.ADJUSTMENT: record_adjustment,
    }
    handler = handlers.get(transaction_type)
    if handler is None:
        raise ValidationError({"type": f"Unknown transaction type {transaction_type!r}."})

    try:
        return handler(user=user, **intent)
    except APIException as exc:
        logger.warning(
            "transaction_rejected code=%s detail=%s",
            getattr(exc, "default_code", "error"),
            exc.detail,
            extra={"item_code": intent.get("item_code"), "transaction_type": transaction_type},
        )
        raise


def process_exchange(entry_id, *, user=None):
    """Mark a queued defective exchange as processed and receive the replacement."""
    entry = ExchangeQueueEntry.objects.filter(id=entry_id).first()
    if entry is None:
        raise NotFound("Exchange queue entry not found.")

    with key_locks.hold(stock_key(entry.item_code, entry.from_location)):
        with transaction.atomic():
            entry = ExchangeQueueEntry.objects.select_for_update().get(id=entry_id)
            if entry.processed:
                raise Conflict("Exchange entry was already processed.", entry_id=str(entry.id))

            item = _credit_locked(entry.item_code, entry.from_location, entry.quantity, {"name": entry.item_name})
            inbound = append_transaction(
                type=Transaction.Type.INBOUND,
                item_code=entry.item_code,
                item_name=entry.item_name,
                quantity=entry.quantity,
                to_location=entry.from_location,
                reason=EXCHANGE_INBOUND_REASON,
                memo=f"exchange:{entry.id}",
                user=user,
            )
            entry.processed = True
            entry.processed_at = timezone.now()
            entry.save(update_fields=["processed", "processed_at"])

    _log_applied(inbound)
    return AppliedTransaction(inbound, [item], entry)


def bulk_inbound(rows, *, user=None):
    """Receive normalized import rows as independent inbound transactions."""
    result = {"total": len(rows), "created": 0, "skipped": 0, "errors": 0, "error_details": []}
    for index, row in enumerate(rows, start=1):
        code = normalize_text(row.get("code"))
        quantity = row.get("quantity") or 0
        if not code or quantity <= 0:
            result["skipped"] += 1
            continue

        try:
            record_inbound(
                item_code=code,
                item_name=row.get("name"),
                quantity=quantity,
                to_location=row.get("location"),
                reason=BULK_INBOUND_REASON,
                memo=row.get("memo") or "",
                user=user,
            )
        except APIException as exc:
            result["errors"] += 1
            result["error_details"].append(
                {"row": index, "code": code, "error": getattr(exc, "default_code", "error"), "message": str(exc.detail)}
            )
        else:
            result["created"] += 1

    logger.info("bulk_inbound_completed created=%s skipped=%s errors=%s", result["created"], result["skipped"], result["errors"])
    return result


def import_master(rows):
    """Apply product master rows to every stock record of each code; stock is untouched."""
    result = {"total": len(rows), "updated": 0, "created": 0, "skipped": 0}
    with transaction.atomic():
        for row in rows:
            code = normalize_text(row.get("code"))
            if not code:
                result["skipped"] += 1
                continue

            changes = {field: row.get(field) for field in DESCRIPTIVE_FIELDS if row.get(field) not in (None, "")}
            records = list(items_for_code(code))
            if records:
                for item in records:
                    update_descriptive(item, **changes)
                result["updated"] += 1
                continue

            changes.setdefault("name", code)
            create_item(code=code, location=None, stock=0, **changes)
            result["created"] += 1
    return result


def sync_inventory(rows, *, user=None):
    """Replace every stock record with the supplied rows.

    Each (code, location) whose stock changes gets an adjustment entry from the
    old value (0 when absent) to the new one (0 when dropped), so the ledger
    still explains every remaining record.
    """
    result = {"total": len(rows), "synced": 0, "errors": 0, "error_details": []}
    accepted = {}
    for index, row in enumerate(rows, start=1):
        code = normalize_text(row.get("code"))
        if not code:
            result["errors"] += 1
            result["error_details"].append({"row": index, "code": code, "error": "validation_error", "message": "Code is required."})
            continue
        try:
            location = optional_text(row.get("location"))
            if location is not None:
                location = resolve_location(location)
        except APIException as exc:
            result["errors"] += 1
            result["error_details"].append({"row": index, "code": code, "error": exc.default_code, "message": str(exc.detail)})
            continue

        key = (code, location)
        if key in accepted:
            result["errors"] += 1
            result["error_details"].append(
                {"row": index, "code": code, "error": "duplicate_key", "message": "Duplicate code and location in sync rows."}
            )
            continue
        accepted[key] = row

    existing_keys = set(InventoryItem.objects.values_list("code", "location"))
    lock_keys = [stock_key(code, location) for code, location in existing_keys | set(accepted)]

    with key_locks.hold(*lock_keys):
        with transaction.atomic():
            previous = {(item.code, item.location): item for item in InventoryItem.objects.select_for_update()}
            InventoryItem.objects.filter(id__in=[item.id for item in previous.values()]).delete()

            for (code, location), row in accepted.items():
                new_stock = int(row.get("stock") or 0)
                name = normalize_text(row.get("name")) or code
                create_item(
                    code=code,
                    name=name,
                    location=location,
                    stock=new_stock,
                    category=row.get("category") or "",
                    manufacturer=row.get("manufacturer") or "",
                    unit=row.get("unit"),
                    box_size=row.get("box_size") or 1,
                    min_stock=row.get("min_stock") or 0,
                )
                old_stock = previous[(code, location)].stock if (code, location) in previous else 0
                _record_sync_adjustment(code, location, name, old_stock, new_stock, user)
                result["synced"] += 1

            for key, item in previous.items():
                if key not in accepted:
                    _record_sync_adjustment(item.code, item.location, item.name, item.stock, 0, user)

    logger.info("inventory_sync_completed synced=%s errors=%s", result["synced"], result["errors"])
    return result


def _record_sync_adjustment(code, location, name, stock_before, stock_after, user):
    if stock_before == stock_after:
        return None
    return append_transaction(
        type=Transaction.Type.ADJUSTMENT,
        item_code=code,
        item_name=name,
        quantity=abs(stock_after - stock_before),
        to_location=location,
        reason=SYNC_REASON,
        stock_before=stock_before,
        stock_after=stock_after,
        user=user,
    )


def verify_ledger():
    """Records whose stock disagrees with the ledger's net quantity for their key."""
    mismatches = []
    for item in InventoryItem.objects.order_by("code", "location"):
        expected = net_quantity(item.code, item.location)
        if expected != item.stock:
            mismatches.append(
                {
                    "id": item.id,
                    "code": item.code,
                    "location": item.location,
                    "stock": item.stock,
                    "ledger": expected,
                }
            )
    return mismatches
