from collections import OrderedDict

from django.db import transaction
from django.db.models import Count, Min, Sum
from django.db.models.functions import Coalesce
from rest_framework.exceptions import ValidationError

from common.utils import normalize_text
from inventory.exceptions import GuideNotFound
from inventory.models import BomGuide, InventoryItem

STATUS_OK = "ok"
STATUS_SHORTAGE = "shortage"


def guide_rows(guide_name):
    return BomGuide.objects.filter(guide_name=guide_name).order_by("created_at", "item_code")


def check_guide(guide_name):
    """Per-component sufficiency of live stock for one BOM guide.

    Components listed more than once are summed; current stock is the total
    over every location. An unknown guide yields an empty list.
    """
    needed_by_code = OrderedDict()
    for row in guide_rows(guide_name):
        needed_by_code[row.item_code] = needed_by_code.get(row.item_code, 0) + row.required_quantity

    if not needed_by_code:
        return []

    stock_rows = (
        InventoryItem.objects.filter(code__in=list(needed_by_code))
        .values("code")
        .annotate(current=Coalesce(Sum("stock"), 0), item_name=Min("name"))
        .order_by()
    )
    stock_by_code = {row["code"]: row for row in stock_rows}

    report = []
    for code, needed in needed_by_code.items():
        stock = stock_by_code.get(code)
        current = stock["current"] if stock else 0
        report.append(
            {
                "code": code,
                "name": stock["item_name"] if stock else "",
                "needed": needed,
                "current": current,
                "status": STATUS_SHORTAGE if current < needed else STATUS_OK,
            }
        )
    return report


def guide_summaries():
    return list(
        BomGuide.objects.values("guide_name")
        .annotate(component_count=Count("id"), first_created_at=Min("created_at"))
        .order_by("guide_name")
    )


def create_guide_rows(guide_name, components):
    guide_name = normalize_text(guide_name)
    if not guide_name:
        raise ValidationError({"guide_name": "This field is required."})
    if not components:
        raise ValidationError({"components": "At least one component is required."})

    return BomGuide.objects.bulk_create(
        [
            BomGuide(
                guide_name=guide_name,
                item_code=normalize_text(component["item_code"]),
                required_quantity=component["required_quantity"],
            )
            for component in components
        ]
    )


def delete_guide(guide_name):
    deleted, _ = BomGuide.objects.filter(guide_name=guide_name).delete()
    if not deleted:
        raise GuideNotFound(guide_name=guide_name)
    return deleted


def import_bom_rows(rows):
    """Replace the guides named in `rows`.

    A blank guide name continues the previous row's guide, the way merged
    cells arrive from a spreadsheet. Rows without a component code are skipped.
    """
    grouped = OrderedDict()
    current_guide = ""
    skipped = 0
    for row in rows:
        current_guide = normalize_text(row.get("guide_name")) or current_guide
        code = normalize_text(row.get("item_code"))
        quantity = row.get("required_quantity") or 0
        if not current_guide or not code or quantity <= 0:
            skipped += 1
            continue
        grouped.setdefault(current_guide, []).append({"item_code": code, "required_quantity": quantity})

    with transaction.atomic():
        BomGuide.objects.filter(guide_name__in=list(grouped)).delete()
        created = 0
        for guide_name, components in grouped.items():
            created += len(create_guide_rows(guide_name, components))

    return {"guides": list(grouped), "created": created, "skipped": skipped}
