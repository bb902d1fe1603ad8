from rest_framework import status
from rest_framework.exceptions import APIException, NotFound


class InventoryError(APIException):
    """Base for business-rule rejections raised by the stock engine.

    `extra` carries structured context (item code, available stock, ...) that the
    shared error envelope exposes under `errors`.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Inventory operation rejected."
    default_code = "inventory_error"

    def __init__(self, detail=None, code=None, **extra):
        super().__init__(detail=detail, code=code)
        self.extra = extra or None


class ItemNotFound(InventoryError, NotFound):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Inventory item not found."
    default_code = "not_found"


class GuideNotFound(InventoryError, NotFound):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "BOM guide not found."
    default_code = "not_found"


class ZoneNotFound(InventoryError, NotFound):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Warehouse zone not found."
    default_code = "not_found"


class DuplicateKey(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "An item with this code already exists at this location."
    default_code = "duplicate_key"


class InsufficientStock(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"


class SameLocation(InventoryError):
    default_detail = "Source and destination locations are the same."
    default_code = "same_location"


class InvalidLocationFormat(InventoryError):
    default_detail = "Location must use the Zone-SubZone-Floor format of a declared warehouse zone."
    default_code = "invalid_location_format"


class Conflict(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The request conflicts with the current inventory state."
    default_code = "conflict"


class Busy(Conflict):
    default_detail = "Inventory record is busy. Try again."
    default_code = "busy"


class ImmutableRecord(Exception):
    """Raised when code tries to rewrite or remove a ledger entry."""
