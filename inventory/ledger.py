from django.db.models import Case, F, IntegerField, Q, Sum, Value, When
from django.db.models.functions import Coalesce
from rest_framework.exceptions import ValidationError

from common.utils import normalize_text, optional_text
from inventory.models import Transaction

FORBIDDEN_LOCATION_FIELD = {
    Transaction.Type.INBOUND: "from_location",
    Transaction.Type.OUTBOUND: "to_location",
    Transaction.Type.ADJUSTMENT: "from_location",
}


def _validate_entry(*, type, item_code, item_name, quantity, from_location, to_location, stock_before, stock_after):
    errors = {}
    if type not in Transaction.Type.values:
        errors["type"] = f"Unknown transaction type {type!r}."
    if not item_code:
        errors["item_code"] = "This field is required."
    if not item_name:
        errors["item_name"] = "This field is required."
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        errors["quantity"] = "Quantity must be a positive integer."

    locations = {"from_location": from_location, "to_location": to_location}
    forbidden = FORBIDDEN_LOCATION_FIELD.get(type)
    if forbidden and locations[forbidden]:
        errors[forbidden] = "This field is not allowed for this transaction type."
    # Either side of a move may be the unassigned (null) location, but not both.
    if type == Transaction.Type.MOVE and from_location == to_location:
        errors["to_location"] = "Move source and destination must differ."

    if type == Transaction.Type.ADJUSTMENT:
        if stock_before is None or stock_after is None:
            errors["stock_after"] = "Adjustments must record stock before and after."
        elif isinstance(quantity, int) and abs(stock_after - stock_before) != quantity:
            errors["quantity"] = "Adjustment quantity must equal the stock change."

    if errors:
        raise ValidationError(errors)


def append_transaction(
    *,
    type,
    item_code,
    item_name,
    quantity,
    from_location=None,
    to_location=None,
    reason="",
    memo="",
    user=None,
    stock_before=None,
    stock_after=None,
):
    """Store one immutable ledger entry and return it."""
    item_code = normalize_text(item_code)
    item_name = normalize_text(item_name)
    from_location = optional_text(from_location)
    to_location = optional_text(to_location)

    _validate_entry(
        type=type,
        item_code=item_code,
        item_name=item_name,
        quantity=quantity,
        from_location=from_location,
        to_location=to_location,
        stock_before=stock_before,
        stock_after=stock_after,
    )

    return Transaction.objects.create(
        type=type,
        item_code=item_code,
        item_name=item_name,
        quantity=quantity,
        from_location=from_location,
        to_location=to_location,
        reason=normalize_text(reason),
        memo=normalize_text(memo),
        stock_before=stock_before,
        stock_after=stock_after,
        user=user if getattr(user, "is_authenticated", False) else None,
    )


def query_transactions(*, item_code=None, date_from=None, date_to=None, type=None):
    qs = Transaction.objects.select_related("user")
    if item_code:
        qs = qs.filter(item_code=item_code)
    if type:
        qs = qs.filter(type=type)
    if date_from:
        qs = qs.filter(created_at__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__lte=date_to)
    return qs.order_by("-created_at")


def _location_match(field, location):
    if location is None:
        return Q(**{f"{field}__isnull": True})
    return Q(**{field: location})


def net_quantity(code, location):
    """Signed sum of every ledger entry touching (code, location)."""
    credit_types = [Transaction.Type.INBOUND, Transaction.Type.MOVE]
    debit_types = [Transaction.Type.OUTBOUND, Transaction.Type.MOVE]

    contribution = Case(
        When(
            Q(type=Transaction.Type.ADJUSTMENT) & _location_match("to_location", location),
            then=F("stock_after") - F("stock_before"),
        ),
        When(Q(type__in=credit_types) & _location_match("to_location", location), then=F("quantity")),
        default=Value(0),
        output_field=IntegerField(),
    )
    debit = Case(
        When(Q(type__in=debit_types) & _location_match("from_location", location), then=F("quantity")),
        default=Value(0),
        output_field=IntegerField(),
    )

    totals = Transaction.objects.filter(item_code=code).aggregate(
        credit=Coalesce(Sum(contribution), Value(0)),
        debit=Coalesce(Sum(debit), Value(0)),
    )
    return totals["credit"] - totals["debit"]

